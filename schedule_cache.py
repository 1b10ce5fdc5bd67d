"""
Date-keyed schedule loading and the in-memory view cache.

Loads never raise: a failed query yields an empty (but correctly dated) result
and a warning string the HTTP layer passes through to the dashboard. Cached
collections are disposable copies of store state; every successful load or
reconciliation replaces the affected list wholesale.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from schedule_records import (
    Announcement,
    MappingError,
    Transport,
    announcement_from_row,
    parse_iso_date,
    sort_by_pickup_time,
    sort_newest_first,
    transport_from_row,
    week_dates,
)
from store_client import ANNOUNCEMENTS_TABLE, TRANSPORTS_TABLE, StoreClient, StoreError


@dataclass
class DaySchedule:
    date: str
    transports: List[Transport] = field(default_factory=list)
    warning: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "transports": [t.to_dict() for t in self.transports],
            "warning": self.warning,
        }


class ScheduleCache:
    def __init__(self, store: StoreClient):
        self._store = store
        self._lock = asyncio.Lock()
        self._days: Dict[str, List[Transport]] = {}
        self._announcements: Optional[List[Announcement]] = None

    # ---------------------------
    # Transports
    # ---------------------------
    async def fetch_day(self, day: Any) -> DaySchedule:
        day_key = parse_iso_date(day).isoformat()
        try:
            rows = await self._store.select(
                TRANSPORTS_TABLE,
                eq={"pickup_date": day_key},
                order="pickup_time",
            )
            # Store order is on the display string ("10:00 AM" < "9:00 AM"), so re-sort
            transports = sort_by_pickup_time(transport_from_row(row) for row in rows)
        except (StoreError, MappingError) as exc:
            print(f"[schedule] fetch {day_key} failed: {exc}")
            return DaySchedule(date=day_key, warning=f"Could not load transports: {exc}")
        async with self._lock:
            self._days[day_key] = list(transports)
        return DaySchedule(date=day_key, transports=transports)

    async def fetch_by_date(self, day: Any) -> List[Transport]:
        return (await self.fetch_day(day)).transports

    async def fetch_week(self, start: Any = None) -> List[DaySchedule]:
        dates = week_dates(start if start is not None else date.today())
        try:
            rows = await self._store.select(
                TRANSPORTS_TABLE,
                in_={"pickup_date": dates},
                order="pickup_time",
            )
            transports = [transport_from_row(row) for row in rows]
        except (StoreError, MappingError) as exc:
            print(f"[schedule] fetch week of {dates[0]} failed: {exc}")
            warning = f"Could not load transports: {exc}"
            return [DaySchedule(date=day_key, warning=warning) for day_key in dates]

        by_date: Dict[str, List[Transport]] = {day_key: [] for day_key in dates}
        for transport in transports:
            bucket = by_date.get(transport.pickup.date)
            if bucket is not None:
                bucket.append(transport)
        week = [
            DaySchedule(date=day_key, transports=sort_by_pickup_time(by_date[day_key]))
            for day_key in dates
        ]
        async with self._lock:
            for day_schedule in week:
                self._days[day_schedule.date] = list(day_schedule.transports)
        return week

    def cached_day(self, day: Any) -> Optional[List[Transport]]:
        cached = self._days.get(parse_iso_date(day).isoformat())
        return list(cached) if cached is not None else None

    async def reconcile_transport_added(self, transport: Transport) -> None:
        async with self._lock:
            day_key = transport.pickup.date
            if day_key in self._days:
                self._days[day_key] = sort_by_pickup_time(self._days[day_key] + [transport])

    async def reconcile_transport_updated(self, transport: Transport) -> None:
        async with self._lock:
            replaced: Dict[str, List[Transport]] = {}
            for day_key, cached in self._days.items():
                kept = [t for t in cached if t.id != transport.id]
                if day_key == transport.pickup.date:
                    kept = sort_by_pickup_time(kept + [transport])
                replaced[day_key] = kept
            self._days = replaced

    async def reconcile_transport_removed(self, transport_id: str) -> None:
        async with self._lock:
            self._days = {
                day_key: [t for t in cached if t.id != transport_id]
                for day_key, cached in self._days.items()
            }

    # ---------------------------
    # Announcements
    # ---------------------------
    async def load_announcements(self) -> Tuple[List[Announcement], Optional[str]]:
        try:
            rows = await self._store.select(ANNOUNCEMENTS_TABLE, order="timestamp", ascending=False)
            announcements = sort_newest_first(announcement_from_row(row) for row in rows)
        except (StoreError, MappingError) as exc:
            print(f"[schedule] fetch announcements failed: {exc}")
            return [], f"Could not load announcements: {exc}"
        async with self._lock:
            self._announcements = list(announcements)
        return announcements, None

    async def fetch_announcements(self) -> List[Announcement]:
        announcements, _warning = await self.load_announcements()
        return announcements

    def cached_announcements(self) -> Optional[List[Announcement]]:
        if self._announcements is None:
            return None
        return list(self._announcements)

    async def reconcile_announcement_added(self, announcement: Announcement) -> None:
        async with self._lock:
            if self._announcements is not None:
                self._announcements = sort_newest_first(self._announcements + [announcement])

    async def reconcile_announcement_updated(self, announcement: Announcement) -> None:
        async with self._lock:
            if self._announcements is not None:
                kept = [a for a in self._announcements if a.id != announcement.id]
                self._announcements = sort_newest_first(kept + [announcement])

    async def reconcile_announcement_removed(self, announcement_id: str) -> None:
        async with self._lock:
            if self._announcements is not None:
                self._announcements = [a for a in self._announcements if a.id != announcement_id]


__all__ = ["DaySchedule", "ScheduleCache"]
