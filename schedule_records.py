"""
Transport and announcement records.

Domain dataclasses plus the mapping between them and the flat rows stored in
the ``transports`` and ``announcements`` tables. Optional text fields are
``None`` in domain form and an explicit null in row form, so a cleared field
is written back as a clear rather than dropped from the payload.

Times of day are stored in the 12-hour display form used by the dashboard
("9:00 AM"). Ordering always goes through :func:`pickup_sort_key`, which maps
either form to a 24-hour "HH:MM" key.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, asdict
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

TRANSPORT_STATUSES = ("scheduled", "in-progress", "completed")
ANNOUNCEMENT_PRIORITIES = ("high", "medium", "low")
DEFAULT_STATUS = "scheduled"
DEFAULT_PRIORITY = "medium"

# Sorts after every valid "HH:MM" key
UNKNOWN_TIME_KEY = "99:99"

_CLOCK_RE = re.compile(
    r"^\s*(\d{1,2}):(\d{2})(?::(\d{2}))?\s*(?:([AP])\.?\s*M\.?)?\s*$",
    re.IGNORECASE,
)

REQUIRED_TRANSPORT_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("client", "name"),
    ("client", "phone"),
    ("pickup", "location"),
    ("pickup", "time"),
    ("pickup", "date"),
    ("dropoff", "location"),
    ("staff", "requested_by"),
    ("staff", "driver"),
)

REQUIRED_ANNOUNCEMENT_FIELDS = ("title", "content", "author")

# Accepted spellings for nested payload keys (dashboard forms send camelCase)
_KEY_ALIASES = {
    "requested_by": ("requested_by", "requestedBy"),
    "client_count": ("client_count", "clientCount"),
    "car_seats": ("car_seats", "carSeats"),
}


class MappingError(ValueError):
    """A stored row does not match the expected schema."""


@dataclass
class ClientInfo:
    name: str
    phone: str


@dataclass
class Stop:
    location: str
    time: str
    date: str


@dataclass
class StaffAssignment:
    requested_by: str
    driver: str
    assistant: Optional[str] = None


@dataclass
class Transport:
    id: str
    client: ClientInfo
    pickup: Stop
    dropoff: Stop
    staff: StaffAssignment
    client_count: int = 1
    status: str = DEFAULT_STATUS
    car_seats: int = 0
    notes: Optional[str] = None
    vehicle: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Announcement:
    id: str
    title: str
    content: str
    date: str  # YYYY-MM-DD, display grouping
    timestamp: str  # ISO 8601, ordering and unread comparison
    priority: str = DEFAULT_PRIORITY
    author: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return str(value)


def _required(row: Mapping[str, Any], key: str) -> Any:
    if key not in row or row[key] is None:
        raise MappingError(f"row is missing {key}")
    return row[key]


def _pick(data: Mapping[str, Any], key: str) -> Any:
    for candidate in _KEY_ALIASES.get(key, (key,)):
        if candidate in data:
            return data[candidate]
    return None


# ---------------------------
# Time of day
# ---------------------------
def parse_clock(value: Any) -> Optional[Tuple[int, int]]:
    """Parse "9:00 AM", "09:00", "14:30:00" or "2:00 pm" into (hour, minute)."""
    if not isinstance(value, str):
        return None
    match = _CLOCK_RE.match(value)
    if not match:
        return None
    hour = int(match.group(1))
    minute = int(match.group(2))
    meridiem = (match.group(4) or "").upper()
    if minute > 59:
        return None
    if meridiem:
        if hour < 1 or hour > 12:
            return None
        if meridiem == "A":
            hour = 0 if hour == 12 else hour
        else:
            hour = 12 if hour == 12 else hour + 12
    elif hour > 23:
        return None
    return hour, minute


def pickup_sort_key(value: Any) -> str:
    parsed = parse_clock(value)
    if parsed is None:
        return UNKNOWN_TIME_KEY
    return f"{parsed[0]:02d}:{parsed[1]:02d}"


def to_display_time(value: Any) -> str:
    """Convert a 24-hour form value to "h:mm AM"; 12-hour and unparseable values pass through."""
    if value is None:
        return ""
    text = str(value).strip()
    if not text or re.search(r"[AP]\.?\s*M", text, re.IGNORECASE):
        return text
    parsed = parse_clock(text)
    if parsed is None:
        return text
    hour, minute = parsed
    suffix = "AM" if hour < 12 else "PM"
    return f"{hour % 12 or 12}:{minute:02d} {suffix}"


# ---------------------------
# Dates
# ---------------------------
def parse_iso_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f"invalid date: {value!r}")
    return datetime.strptime(value.strip(), "%Y-%m-%d").date()


def week_dates(start: Any) -> List[str]:
    first = parse_iso_date(start)
    return [(first + timedelta(days=offset)).isoformat() for offset in range(7)]


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# ---------------------------
# Row mapping
# ---------------------------
def transport_from_row(row: Mapping[str, Any]) -> Transport:
    status = _required(row, "status")
    if status not in TRANSPORT_STATUSES:
        raise MappingError(f"unknown transport status: {status!r}")
    try:
        client_count = int(_required(row, "client_count"))
        car_seats = int(row.get("car_seats") or 0)
    except (TypeError, ValueError) as exc:
        raise MappingError(f"invalid count in transport row: {exc}") from exc
    return Transport(
        id=str(_required(row, "id")),
        client=ClientInfo(
            name=_required(row, "client_name"),
            phone=_required(row, "client_phone"),
        ),
        pickup=Stop(
            location=_required(row, "pickup_location"),
            time=_required(row, "pickup_time"),
            date=_required(row, "pickup_date"),
        ),
        dropoff=Stop(
            location=_required(row, "dropoff_location"),
            time=row.get("dropoff_time") or "",
            date=row.get("dropoff_date") or "",
        ),
        staff=StaffAssignment(
            requested_by=_required(row, "staff_requester"),
            driver=_required(row, "staff_driver"),
            assistant=_optional_text(row.get("staff_assistant")),
        ),
        client_count=client_count,
        status=status,
        car_seats=car_seats,
        notes=_optional_text(row.get("notes")),
        vehicle=_optional_text(row.get("vehicle")),
    )


def transport_to_row(transport: Transport) -> Dict[str, Any]:
    """Flatten a transport. ``id`` is only included once the store has assigned one."""
    row: Dict[str, Any] = {}
    if transport.id:
        row["id"] = transport.id
    row.update(
        {
            "client_name": transport.client.name,
            "client_phone": transport.client.phone,
            "pickup_location": transport.pickup.location,
            "pickup_time": transport.pickup.time,
            "pickup_date": transport.pickup.date,
            "dropoff_location": transport.dropoff.location,
            "dropoff_time": transport.dropoff.time,
            "dropoff_date": transport.dropoff.date,
            "staff_requester": transport.staff.requested_by,
            "staff_driver": transport.staff.driver,
            "staff_assistant": transport.staff.assistant,
            "client_count": transport.client_count,
            "status": transport.status,
            "notes": transport.notes,
            "vehicle": transport.vehicle,
            "car_seats": transport.car_seats,
        }
    )
    return row


def announcement_from_row(row: Mapping[str, Any]) -> Announcement:
    priority = _required(row, "priority")
    if priority not in ANNOUNCEMENT_PRIORITIES:
        raise MappingError(f"unknown announcement priority: {priority!r}")
    return Announcement(
        id=str(_required(row, "id")),
        title=_required(row, "title"),
        content=_required(row, "content"),
        date=_required(row, "date"),
        timestamp=_required(row, "timestamp"),
        priority=priority,
        author=row.get("author") or "",
    )


def announcement_to_row(announcement: Announcement) -> Dict[str, Any]:
    row: Dict[str, Any] = {}
    if announcement.id:
        row["id"] = announcement.id
    row.update(
        {
            "title": announcement.title,
            "content": announcement.content,
            "date": announcement.date,
            "timestamp": announcement.timestamp,
            "priority": announcement.priority,
            "author": announcement.author,
        }
    )
    return row


# ---------------------------
# Form input
# ---------------------------
def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = data.get(name)
    return value if isinstance(value, Mapping) else {}


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def missing_transport_fields(data: Mapping[str, Any]) -> List[str]:
    missing: List[str] = []
    for section, key in REQUIRED_TRANSPORT_FIELDS:
        if _is_blank(_pick(_section(data, section), key)):
            missing.append(f"{section}.{key}")
    return missing


def invalid_transport_fields(data: Mapping[str, Any]) -> List[str]:
    invalid: List[str] = []
    pickup_date = _section(data, "pickup").get("date")
    if not _is_blank(pickup_date):
        try:
            parse_iso_date(pickup_date)
        except ValueError:
            invalid.append("pickup.date")
    status = data.get("status")
    if not _is_blank(status) and status not in TRANSPORT_STATUSES:
        invalid.append("status")
    client_count = _pick(data, "client_count")
    if not _is_blank(client_count):
        try:
            if int(client_count) < 1:
                invalid.append("client_count")
        except (TypeError, ValueError):
            invalid.append("client_count")
    car_seats = _pick(data, "car_seats")
    if not _is_blank(car_seats):
        try:
            if int(car_seats) < 0:
                invalid.append("car_seats")
        except (TypeError, ValueError):
            invalid.append("car_seats")
    return invalid


def transport_from_input(data: Mapping[str, Any], transport_id: str = "") -> Transport:
    """Build a transport from a validated form payload, applying create defaults."""
    client = _section(data, "client")
    pickup = _section(data, "pickup")
    dropoff = _section(data, "dropoff")
    staff = _section(data, "staff")
    pickup_date = parse_iso_date(pickup["date"]).isoformat()
    client_count = _pick(data, "client_count")
    car_seats = _pick(data, "car_seats")
    return Transport(
        id=transport_id,
        client=ClientInfo(name=str(client["name"]).strip(), phone=str(client["phone"]).strip()),
        pickup=Stop(
            location=str(pickup["location"]).strip(),
            time=to_display_time(pickup["time"]),
            date=pickup_date,
        ),
        dropoff=Stop(
            location=str(dropoff["location"]).strip(),
            time=to_display_time(dropoff.get("time")),
            date=str(dropoff.get("date") or pickup_date),
        ),
        staff=StaffAssignment(
            requested_by=str(_pick(staff, "requested_by")).strip(),
            driver=str(staff["driver"]).strip(),
            assistant=_optional_text(staff.get("assistant")),
        ),
        client_count=1 if _is_blank(client_count) else int(client_count),
        status=DEFAULT_STATUS if _is_blank(data.get("status")) else data["status"],
        car_seats=0 if _is_blank(car_seats) else int(car_seats),
        notes=_optional_text(data.get("notes")),
        vehicle=_optional_text(data.get("vehicle")),
    )


def missing_announcement_fields(data: Mapping[str, Any]) -> List[str]:
    return [key for key in REQUIRED_ANNOUNCEMENT_FIELDS if _is_blank(data.get(key))]


def invalid_announcement_fields(data: Mapping[str, Any]) -> List[str]:
    invalid: List[str] = []
    priority = data.get("priority")
    if not _is_blank(priority) and priority not in ANNOUNCEMENT_PRIORITIES:
        invalid.append("priority")
    if not _is_blank(data.get("date")):
        try:
            parse_iso_date(data["date"])
        except ValueError:
            invalid.append("date")
    return invalid


def announcement_from_input(
    data: Mapping[str, Any],
    announcement_id: str = "",
    now: Optional[datetime] = None,
) -> Announcement:
    created = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    day = data.get("date")
    return Announcement(
        id=announcement_id,
        title=str(data["title"]).strip(),
        content=str(data["content"]).strip(),
        date=created.date().isoformat() if _is_blank(day) else parse_iso_date(day).isoformat(),
        timestamp=created.isoformat(),
        priority=DEFAULT_PRIORITY if _is_blank(data.get("priority")) else data["priority"],
        author=str(data["author"]).strip(),
    )


# ---------------------------
# Projections
# ---------------------------
def sort_by_pickup_time(transports: Iterable[Transport]) -> List[Transport]:
    return sorted(transports, key=lambda t: pickup_sort_key(t.pickup.time))


def _timestamp_value(announcement: Announcement) -> float:
    parsed = parse_timestamp(announcement.timestamp)
    return parsed.timestamp() if parsed else 0.0


def sort_newest_first(announcements: Iterable[Announcement]) -> List[Announcement]:
    return sorted(announcements, key=_timestamp_value, reverse=True)


def sort_by_priority(announcements: Iterable[Announcement]) -> List[Announcement]:
    rank = {priority: index for index, priority in enumerate(ANNOUNCEMENT_PRIORITIES)}
    return sorted(
        announcements,
        key=lambda a: (rank.get(a.priority, len(rank)), -_timestamp_value(a)),
    )


__all__ = [
    "Announcement",
    "ClientInfo",
    "MappingError",
    "StaffAssignment",
    "Stop",
    "Transport",
    "announcement_from_input",
    "announcement_from_row",
    "announcement_to_row",
    "missing_announcement_fields",
    "missing_transport_fields",
    "invalid_announcement_fields",
    "invalid_transport_fields",
    "parse_iso_date",
    "parse_timestamp",
    "pickup_sort_key",
    "sort_by_pickup_time",
    "sort_by_priority",
    "sort_newest_first",
    "to_display_time",
    "transport_from_input",
    "transport_from_row",
    "transport_to_row",
    "week_dates",
]
