"""Unread announcement tracking against a locally persisted "last viewed" watermark."""

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from schedule_records import Announcement, parse_timestamp

WATERMARK_KEY = "last_announcement_view"


def count_unread(announcements: Iterable[Announcement], watermark: Optional[str]) -> int:
    """Count announcements newer than ``watermark``; everything is unread when it is absent."""
    items = list(announcements)
    last_view = parse_timestamp(watermark)
    if last_view is None:
        return len(items)
    unread = 0
    for announcement in items:
        stamp = parse_timestamp(announcement.timestamp)
        if stamp is None or stamp > last_view:
            unread += 1
    return unread


class WatermarkStore:
    """File-backed scalar scoped to this installation. A missing or unreadable file means never viewed."""

    def __init__(self, path: Path):
        self._path = path
        self._lock = asyncio.Lock()
        self._value: Optional[str] = None
        self._load_sync()

    def _load_sync(self) -> None:
        self._value = None
        if not self._path.exists():
            self._path.parent.mkdir(parents=True, exist_ok=True)
            return
        try:
            raw = json.loads(self._path.read_text())
        except (json.JSONDecodeError, OSError):
            return
        value = raw.get(WATERMARK_KEY) if isinstance(raw, dict) else None
        if isinstance(value, str) and parse_timestamp(value) is not None:
            self._value = value

    async def _persist(self) -> None:
        payload = json.dumps({WATERMARK_KEY: self._value}, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(payload)
        tmp_path.replace(self._path)

    async def read(self) -> Optional[str]:
        async with self._lock:
            return self._value

    async def write(self, value: str) -> None:
        async with self._lock:
            self._value = value
            await self._persist()


class UnreadCounter:
    def __init__(self, store: WatermarkStore):
        self._store = store

    async def count(self, announcements: Iterable[Announcement]) -> int:
        return count_unread(announcements, await self._store.read())

    async def mark_viewed(self, now: Optional[datetime] = None) -> str:
        """Acknowledge the whole list at once; called per visit to the announcements view."""
        stamp = (now or datetime.now(timezone.utc)).astimezone(timezone.utc).isoformat()
        await self._store.write(stamp)
        return stamp


__all__ = ["UnreadCounter", "WatermarkStore", "count_unread"]
