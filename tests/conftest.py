import asyncio
import itertools
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from auth_client import SIGNED_IN, SIGNED_OUT, AuthError, AuthSession  # noqa: E402
from store_client import StoreError  # noqa: E402


class FakeStore:
    """In-memory stand-in for StoreClient. Orders on raw column text like the database does."""

    def __init__(self) -> None:
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {
            "transports": {},
            "announcements": {},
            "users": {},
        }
        self.calls: List[tuple] = []
        self.fail_with: Optional[StoreError] = None
        self.access_token: Optional[str] = None
        self._ids = itertools.count(1)

    def seed(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        stored = dict(row)
        stored.setdefault("id", f"{table[:-1]}-{next(self._ids)}")
        self.tables[table][stored["id"]] = stored
        return dict(stored)

    def set_access_token(self, token: Optional[str]) -> None:
        self.access_token = token

    def _check(self, *call: Any) -> None:
        self.calls.append(call)
        if self.fail_with is not None:
            raise self.fail_with

    async def select(self, table, *, eq=None, in_=None, order=None, ascending=True, columns="*", limit=None):
        self._check("select", table, eq, in_)
        rows = list(self.tables[table].values())
        for column, value in (eq or {}).items():
            rows = [row for row in rows if str(row.get(column)) == str(value)]
        for column, values in (in_ or {}).items():
            allowed = {str(v) for v in values}
            rows = [row for row in rows if str(row.get(column)) in allowed]
        if order:
            rows.sort(key=lambda row: str(row.get(order) or ""), reverse=not ascending)
        if limit is not None:
            rows = rows[:limit]
        return [dict(row) for row in rows]

    async def get_by_id(self, table, row_id, columns="*"):
        self._check("get_by_id", table, row_id)
        row = self.tables[table].get(row_id)
        return dict(row) if row else None

    async def insert(self, table, row):
        self._check("insert", table, dict(row))
        assert "id" not in row, "new rows must not carry client-side ids"
        return self.seed(table, row)

    async def update(self, table, row_id, row):
        self._check("update", table, row_id, dict(row))
        existing = self.tables[table].get(row_id)
        if existing is None:
            return None
        existing.update(row)
        return dict(existing)

    async def delete(self, table, row_id):
        self._check("delete", table, row_id)
        return 1 if self.tables[table].pop(row_id, None) is not None else 0

    async def aclose(self):
        return None


class FakeAuth:
    """In-memory stand-in for AuthClient with a working change-event stream."""

    def __init__(self) -> None:
        self.accounts: Dict[str, tuple] = {}
        self.session: Optional[AuthSession] = None
        self.sign_in_delay = 0.0
        self.sign_out_error: Optional[AuthError] = None
        self.sign_out_scopes: List[str] = []
        self._listeners: List[Any] = []

    def add_account(self, email: str, password: str, user_id: str) -> None:
        self.accounts[email] = (password, user_id)

    def on_auth_state_change(self, listener):
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _emit(self, event, session):
        for listener in list(self._listeners):
            await listener(event, session)

    async def sign_in_with_password(self, email, password):
        if self.sign_in_delay:
            await asyncio.sleep(self.sign_in_delay)
        account = self.accounts.get(email)
        if account is None or account[0] != password:
            raise AuthError("Invalid login credentials", status_code=400)
        self.session = AuthSession(access_token=f"token-{account[1]}", user_id=account[1], email=email)
        await self._emit(SIGNED_IN, self.session)
        return self.session

    async def get_session(self):
        return self.session

    async def sign_out(self, scope="global"):
        self.sign_out_scopes.append(scope)
        self.session = None
        await self._emit(SIGNED_OUT, None)
        if self.sign_out_error is not None:
            raise self.sign_out_error

    async def aclose(self):
        return None


def transport_row(**overrides: Any) -> Dict[str, Any]:
    row = {
        "client_name": "Ada Client",
        "client_phone": "555-0100",
        "pickup_location": "12 Elm St",
        "pickup_time": "9:00 AM",
        "pickup_date": "2024-06-01",
        "dropoff_location": "Clinic",
        "dropoff_time": "11:00 AM",
        "dropoff_date": "2024-06-01",
        "staff_requester": "Sam",
        "staff_driver": "Dee",
        "staff_assistant": None,
        "client_count": 1,
        "status": "scheduled",
        "notes": None,
        "vehicle": None,
        "car_seats": 0,
    }
    row.update(overrides)
    return row


def transport_payload(**overrides: Any) -> Dict[str, Any]:
    payload = {
        "client": {"name": "Ada Client", "phone": "555-0100"},
        "pickup": {"location": "12 Elm St", "time": "09:00", "date": "2024-06-01"},
        "dropoff": {"location": "Clinic", "time": "11:00"},
        "staff": {"requested_by": "Sam", "driver": "Dee"},
        "client_count": 2,
    }
    payload.update(overrides)
    return payload


@pytest.fixture()
def store():
    return FakeStore()


@pytest.fixture()
def auth():
    return FakeAuth()


@pytest.fixture()
def make_row():
    return transport_row


@pytest.fixture()
def make_payload():
    return transport_payload
