"""CSV export of one day's transport schedule."""

import csv
import io
from typing import Any, Iterable

from schedule_records import Transport, parse_iso_date, sort_by_pickup_time

EXPORT_HEADER = [
    "Pick up Time",
    "Client Name",
    "Phone",
    "Pickup Address",
    "Dropoff Address",
    "Clients Count",
    "Car Seats",
    "Staff Requesting",
    "Driver",
    "Return Time",
]


def export_filename(day: Any) -> str:
    return f"Transport_Schedule_{parse_iso_date(day).isoformat()}.csv"


def build_schedule_csv(transports: Iterable[Transport]) -> str:
    # QUOTE_MINIMAL quotes fields holding a comma, quote or newline and doubles inner quotes
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(EXPORT_HEADER)
    for transport in sort_by_pickup_time(transports):
        writer.writerow(
            [
                transport.pickup.time or "",
                transport.client.name or "",
                transport.client.phone or "",
                transport.pickup.location or "",
                transport.dropoff.location or "",
                str(transport.client_count),
                str(transport.car_seats or 0),
                transport.staff.requested_by or "",
                transport.staff.driver or "",
                transport.dropoff.time or "",
            ]
        )
    return buffer.getvalue()


__all__ = ["EXPORT_HEADER", "build_schedule_csv", "export_filename"]
