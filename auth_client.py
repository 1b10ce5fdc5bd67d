"""Async client for the hosted auth provider (GoTrue REST API)."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"

AuthListener = Callable[[str, Optional["AuthSession"]], Awaitable[None]]


class AuthError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class AuthSession:
    access_token: str
    user_id: str
    email: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("error_description", "msg", "message", "error"):
            value = body.get(key)
            if value:
                return str(value)
    return response.text.strip() or f"HTTP {response.status_code}"


class AuthClient:
    """Password sign-in, session lookup, global sign-out and a change-event stream."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._auth_url = f"{base_url.rstrip('/')}/auth/v1"
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._session: Optional[AuthSession] = None
        self._listeners: List[AuthListener] = []

    @classmethod
    def from_env(cls) -> "AuthClient":
        """Build an ``AuthClient`` from the same ``STORE_URL``/``STORE_ANON_KEY`` pair as the store."""

        base_url = (os.getenv("STORE_URL") or "").strip()
        api_key = (os.getenv("STORE_ANON_KEY") or "").strip()

        missing: List[str] = []
        if not base_url:
            missing.append("STORE_URL")
        if not api_key:
            missing.append("STORE_ANON_KEY")
        if missing:
            raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")

        timeout = float(os.getenv("STORE_HTTP_TIMEOUT_S", "10"))
        return cls(base_url=base_url, api_key=api_key, timeout=timeout)

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self._session = None

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        """Register ``listener(event, session)``; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _emit(self, event: str, session: Optional[AuthSession]) -> None:
        for listener in list(self._listeners):
            try:
                await listener(event, session)
            except Exception as exc:
                print(f"[auth] listener failed on {event}: {exc}")

    def _headers(self, token: Optional[str] = None) -> Dict[str, str]:
        headers = {"apikey": self._api_key, "Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        client = await self._ensure_client()
        try:
            response = await client.post(
                f"{self._auth_url}/token",
                params={"grant_type": "password"},
                json={"email": email, "password": password},
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            raise AuthError(f"sign-in request failed: {exc}") from exc
        if response.status_code >= 400:
            raise AuthError(_error_message(response), status_code=response.status_code)

        data: Dict[str, Any] = response.json()
        user = data.get("user") or {}
        token = data.get("access_token")
        if not token or not user.get("id"):
            raise AuthError("sign-in response did not include a session")
        self._session = AuthSession(
            access_token=token,
            user_id=str(user["id"]),
            email=user.get("email"),
            refresh_token=data.get("refresh_token"),
            expires_in=data.get("expires_in"),
        )
        await self._emit(SIGNED_IN, self._session)
        return self._session

    async def get_session(self) -> Optional[AuthSession]:
        """Return the current session if the provider still accepts its token."""
        session = self._session
        if session is None:
            return None
        client = await self._ensure_client()
        try:
            response = await client.get(
                f"{self._auth_url}/user",
                headers=self._headers(session.access_token),
            )
        except httpx.HTTPError as exc:
            raise AuthError(f"session lookup failed: {exc}") from exc
        if response.status_code in {401, 403}:
            self._session = None
            await self._emit(SIGNED_OUT, None)
            return None
        if response.status_code >= 400:
            raise AuthError(_error_message(response), status_code=response.status_code)
        return self._session

    async def sign_out(self, scope: str = "global") -> None:
        """End the session on every device. Local state is cleared even if the call fails."""
        session = self._session
        self._session = None
        try:
            if session is not None:
                client = await self._ensure_client()
                try:
                    response = await client.post(
                        f"{self._auth_url}/logout",
                        params={"scope": scope},
                        headers=self._headers(session.access_token),
                    )
                except httpx.HTTPError as exc:
                    raise AuthError(f"sign-out request failed: {exc}") from exc
                if response.status_code >= 400 and response.status_code not in {401, 404}:
                    raise AuthError(_error_message(response), status_code=response.status_code)
        finally:
            await self._emit(SIGNED_OUT, None)


__all__ = ["AuthClient", "AuthError", "AuthSession", "SIGNED_IN", "SIGNED_OUT"]
