"""
Session and identity gate for admin-only dashboard actions.

The admin check here only decides what the dashboard offers. The store's
row-level policies are what actually permit or refuse a write, so every
mutation still runs with the signed-in user's token.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, Optional

from auth_client import SIGNED_IN, SIGNED_OUT, AuthClient, AuthError, AuthSession
from schedule_errors import Forbidden, Unauthenticated
from store_client import USERS_TABLE, StoreClient, StoreError

DEFAULT_LOGIN_TIMEOUT_S = 8.0


@dataclass
class SessionUser:
    id: str
    username: str
    is_admin: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SessionGate:
    def __init__(
        self,
        auth: AuthClient,
        store: StoreClient,
        login_timeout_s: float = DEFAULT_LOGIN_TIMEOUT_S,
        on_reload: Optional[Callable[[], None]] = None,
    ):
        self._auth = auth
        self._store = store
        self._login_timeout_s = login_timeout_s
        self._on_reload = on_reload
        self._user: Optional[SessionUser] = None
        self._unsubscribe = auth.on_auth_state_change(self._handle_auth_event)

    @property
    def current_user(self) -> Optional[SessionUser]:
        return self._user

    @property
    def is_authenticated(self) -> bool:
        return self._user is not None

    @property
    def can_administer(self) -> bool:
        return self._user is not None and self._user.is_admin

    def require_admin(self) -> SessionUser:
        if self._user is None:
            raise Unauthenticated()
        if not self._user.is_admin:
            raise Forbidden()
        return self._user

    def close(self) -> None:
        self._unsubscribe()

    def _clear(self) -> None:
        self._user = None
        self._store.set_access_token(None)

    async def _resolve_user(self, session: AuthSession) -> Optional[SessionUser]:
        """Look up the dashboard user for ``session``. On failure the gate is left signed out."""
        self._store.set_access_token(session.access_token)
        try:
            row = await self._store.get_by_id(USERS_TABLE, session.user_id)
        except StoreError as exc:
            print(f"[session] user lookup failed for {session.user_id}: {exc}")
            self._clear()
            return None
        if row is None:
            print(f"[session] no user row for {session.user_id}")
            self._clear()
            return None
        return SessionUser(
            id=session.user_id,
            username=row.get("username") or session.email or "",
            is_admin=bool(row.get("is_admin")),
        )

    async def _handle_auth_event(self, event: str, session: Optional[AuthSession]) -> None:
        if event == SIGNED_IN and session is not None:
            self._user = await self._resolve_user(session)
        elif event == SIGNED_OUT:
            self._clear()

    async def restore(self) -> bool:
        """Pick up an existing provider session, e.g. after a restart of the dashboard."""
        try:
            session = await self._auth.get_session()
        except AuthError as exc:
            print(f"[session] session check failed: {exc}")
            return False
        if session is None:
            self._clear()
            return False
        self._user = await self._resolve_user(session)
        return self._user is not None

    async def login(self, email: str, password: str) -> bool:
        if not email or not password:
            return False
        try:
            session = await asyncio.wait_for(
                self._auth.sign_in_with_password(email, password),
                timeout=self._login_timeout_s,
            )
        except asyncio.TimeoutError:
            print(f"[session] sign-in timed out after {self._login_timeout_s}s")
            return False
        except AuthError as exc:
            print(f"[session] sign-in failed: {exc}")
            return False
        user = self._user
        if user is not None and user.id == session.user_id:
            return True
        # Signed in with the provider but not a dashboard user: drop that session
        self._clear()
        await self._end_provider_session("local")
        return False

    async def _end_provider_session(self, scope: str) -> None:
        try:
            await self._auth.sign_out(scope=scope)
        except AuthError as exc:
            print(f"[session] sign-out failed: {exc}")

    async def expire(self) -> None:
        """The store rejected our token: forget the identity so admin actions stop being offered."""
        print("[session] store rejected the session token; signing out")
        self._clear()
        await self._end_provider_session("local")

    async def logout(self) -> None:
        """Drop local identity first, then end the provider session, then force a reload."""
        self._clear()
        try:
            await self._end_provider_session("global")
        finally:
            if self._on_reload is not None:
                self._on_reload()


__all__ = ["SessionGate", "SessionUser"]
