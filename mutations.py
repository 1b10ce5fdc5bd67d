"""
Validated, confirmed-only mutations for transports and announcements.

Every mutation walks ``validating -> persisting -> reconciling -> done``.
Validation failures stop at ``rejected`` without touching the store; store
failures stop at ``failed`` (or ``not_found``) with the store's own message,
and a store 401 stops at ``unauthenticated``.
The view cache is only touched after the store confirms, so nothing is ever
rolled back. There are no retries: one attempt per call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, List, Mapping, Optional

from schedule_cache import ScheduleCache
from schedule_errors import (
    NotFound,
    PersistenceFailed,
    ScheduleError,
    SessionExpired,
    ValidationRejected,
)
from schedule_records import (
    MappingError,
    announcement_from_input,
    announcement_from_row,
    announcement_to_row,
    invalid_announcement_fields,
    invalid_transport_fields,
    missing_announcement_fields,
    missing_transport_fields,
    transport_from_input,
    transport_from_row,
    transport_to_row,
)
from store_client import ANNOUNCEMENTS_TABLE, TRANSPORTS_TABLE, StoreClient, StoreError

VALIDATING = "validating"
PERSISTING = "persisting"
RECONCILING = "reconciling"
DONE = "done"
REJECTED = "rejected"
FAILED = "failed"
NOT_FOUND = "not_found"
UNAUTHENTICATED = "unauthenticated"


@dataclass
class MutationOutcome:
    status: str
    entity: Any = None
    error: Optional[ScheduleError] = None
    phases: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == DONE


class _Mutation:
    """Tracks the phases one mutation passes through."""

    def __init__(self, label: str):
        self.label = label
        self.phases: List[str] = [VALIDATING]

    def enter(self, phase: str) -> None:
        self.phases.append(phase)

    def done(self, entity: Any = None) -> MutationOutcome:
        self.enter(DONE)
        return MutationOutcome(status=DONE, entity=entity, phases=self.phases)

    def stop(self, status: str, error: ScheduleError) -> MutationOutcome:
        self.enter(status)
        print(f"[mutations] {self.label} {status}: {error}")
        return MutationOutcome(status=status, error=error, phases=self.phases)

    def store_failed(self, exc: StoreError) -> MutationOutcome:
        # PostgREST answers 401 once the user's token has expired
        if exc.status_code == 401:
            return self.stop(UNAUTHENTICATED, SessionExpired(str(exc)))
        return self.stop(FAILED, PersistenceFailed(str(exc), exc.status_code))


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MutationCoordinator:
    def __init__(
        self,
        store: StoreClient,
        cache: ScheduleCache,
        clock: Callable[[], datetime] = _now,
    ):
        self._store = store
        self._cache = cache
        self._clock = clock

    # ---------------------------
    # Transports
    # ---------------------------
    async def add_transport(self, data: Mapping[str, Any]) -> MutationOutcome:
        mutation = _Mutation("add transport")
        problems = missing_transport_fields(data) + invalid_transport_fields(data)
        if problems:
            return mutation.stop(REJECTED, ValidationRejected(problems))

        mutation.enter(PERSISTING)
        draft = transport_from_input(data)
        try:
            row = await self._store.insert(TRANSPORTS_TABLE, transport_to_row(draft))
            created = transport_from_row(row)
        except StoreError as exc:
            return mutation.store_failed(exc)
        except MappingError as exc:
            return mutation.stop(FAILED, PersistenceFailed(str(exc)))

        mutation.enter(RECONCILING)
        await self._cache.reconcile_transport_added(created)
        return mutation.done(created)

    async def update_transport(self, transport_id: str, data: Mapping[str, Any]) -> MutationOutcome:
        mutation = _Mutation(f"update transport {transport_id}")
        problems = missing_transport_fields(data) + invalid_transport_fields(data)
        if not transport_id:
            problems.insert(0, "id")
        if problems:
            return mutation.stop(REJECTED, ValidationRejected(problems))

        mutation.enter(PERSISTING)
        row = transport_to_row(transport_from_input(data))
        try:
            stored = await self._store.update(TRANSPORTS_TABLE, transport_id, row)
            if stored is None:
                return mutation.stop(NOT_FOUND, NotFound("transport", transport_id))
            updated = transport_from_row(stored)
        except StoreError as exc:
            return mutation.store_failed(exc)
        except MappingError as exc:
            return mutation.stop(FAILED, PersistenceFailed(str(exc)))

        mutation.enter(RECONCILING)
        await self._cache.reconcile_transport_updated(updated)
        return mutation.done(updated)

    async def delete_transport(self, transport_id: str) -> MutationOutcome:
        mutation = _Mutation(f"delete transport {transport_id}")
        if not transport_id:
            return mutation.stop(REJECTED, ValidationRejected(["id"]))

        mutation.enter(PERSISTING)
        try:
            existing = await self._store.get_by_id(
                TRANSPORTS_TABLE, transport_id, columns="id,pickup_date"
            )
            if existing is None:
                return mutation.stop(NOT_FOUND, NotFound("transport", transport_id))
            removed = await self._store.delete(TRANSPORTS_TABLE, transport_id)
        except StoreError as exc:
            return mutation.store_failed(exc)
        if removed == 0:
            # Removed elsewhere between the existence check and the delete
            return mutation.stop(NOT_FOUND, NotFound("transport", transport_id))

        mutation.enter(RECONCILING)
        await self._cache.reconcile_transport_removed(transport_id)
        day = existing.get("pickup_date")
        if day:
            await self._cache.fetch_day(day)
        return mutation.done({"id": transport_id, "pickup_date": day})

    # ---------------------------
    # Announcements
    # ---------------------------
    async def add_announcement(self, data: Mapping[str, Any]) -> MutationOutcome:
        mutation = _Mutation("add announcement")
        problems = missing_announcement_fields(data) + invalid_announcement_fields(data)
        if problems:
            return mutation.stop(REJECTED, ValidationRejected(problems))

        mutation.enter(PERSISTING)
        draft = announcement_from_input(data, now=self._clock())
        try:
            row = await self._store.insert(ANNOUNCEMENTS_TABLE, announcement_to_row(draft))
            created = announcement_from_row(row)
        except StoreError as exc:
            return mutation.store_failed(exc)
        except MappingError as exc:
            return mutation.stop(FAILED, PersistenceFailed(str(exc)))

        mutation.enter(RECONCILING)
        await self._cache.reconcile_announcement_added(created)
        return mutation.done(created)

    async def update_announcement(self, announcement_id: str, data: Mapping[str, Any]) -> MutationOutcome:
        mutation = _Mutation(f"update announcement {announcement_id}")
        problems = missing_announcement_fields(data) + invalid_announcement_fields(data)
        if not announcement_id:
            problems.insert(0, "id")
        if problems:
            return mutation.stop(REJECTED, ValidationRejected(problems))

        mutation.enter(PERSISTING)
        row = announcement_to_row(announcement_from_input(data, now=self._clock()))
        # The creation timestamp orders the feed and is never rewritten
        row.pop("timestamp", None)
        if not str(data.get("date") or "").strip():
            # Without an explicit date the stored display date stays
            row.pop("date", None)
        try:
            stored = await self._store.update(ANNOUNCEMENTS_TABLE, announcement_id, row)
            if stored is None:
                return mutation.stop(NOT_FOUND, NotFound("announcement", announcement_id))
            updated = announcement_from_row(stored)
        except StoreError as exc:
            return mutation.store_failed(exc)
        except MappingError as exc:
            return mutation.stop(FAILED, PersistenceFailed(str(exc)))

        mutation.enter(RECONCILING)
        await self._cache.reconcile_announcement_updated(updated)
        return mutation.done(updated)

    async def delete_announcement(self, announcement_id: str) -> MutationOutcome:
        mutation = _Mutation(f"delete announcement {announcement_id}")
        if not announcement_id:
            return mutation.stop(REJECTED, ValidationRejected(["id"]))

        mutation.enter(PERSISTING)
        try:
            existing = await self._store.get_by_id(ANNOUNCEMENTS_TABLE, announcement_id, columns="id")
            if existing is None:
                return mutation.stop(NOT_FOUND, NotFound("announcement", announcement_id))
            removed = await self._store.delete(ANNOUNCEMENTS_TABLE, announcement_id)
        except StoreError as exc:
            return mutation.store_failed(exc)
        if removed == 0:
            return mutation.stop(NOT_FOUND, NotFound("announcement", announcement_id))

        mutation.enter(RECONCILING)
        await self._cache.reconcile_announcement_removed(announcement_id)
        return mutation.done({"id": announcement_id})


__all__ = [
    "DONE",
    "FAILED",
    "MutationCoordinator",
    "MutationOutcome",
    "NOT_FOUND",
    "REJECTED",
    "UNAUTHENTICATED",
]
