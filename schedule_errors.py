"""Failure types shared by the mutation coordinator and the session gate."""

from __future__ import annotations

from typing import Optional, Sequence


class ScheduleError(Exception):
    """Base class for failures scoped to a single dashboard operation."""


class ValidationRejected(ScheduleError):
    def __init__(self, fields: Sequence[str]):
        self.fields = list(fields)
        super().__init__(f"missing or invalid fields: {', '.join(self.fields)}")


class PersistenceFailed(ScheduleError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class NotFound(ScheduleError):
    def __init__(self, kind: str, record_id: str):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} not found: {record_id}")


class Unauthenticated(ScheduleError):
    def __init__(self, message: str = "sign in required"):
        super().__init__(message)


class SessionExpired(Unauthenticated):
    """The store refused the signed-in user's token (expired or revoked)."""

    def __init__(self, message: str = "session expired; sign in again"):
        super().__init__(message)


class Forbidden(ScheduleError):
    def __init__(self, message: str = "admin access required"):
        super().__init__(message)


__all__ = [
    "Forbidden",
    "NotFound",
    "PersistenceFailed",
    "ScheduleError",
    "SessionExpired",
    "Unauthenticated",
    "ValidationRejected",
]
