"""Async client for the hosted schedule database (PostgREST REST API)."""
from __future__ import annotations

import os
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import httpx

TRANSPORTS_TABLE = "transports"
ANNOUNCEMENTS_TABLE = "announcements"
USERS_TABLE = "users"


class StoreError(RuntimeError):
    """The store rejected a request or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _quote_value(value: Any) -> str:
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("message", "error_description", "msg", "error", "hint"):
            value = body.get(key)
            if value:
                return str(value)
    text = response.text.strip()
    return text or f"HTTP {response.status_code}"


class StoreClient:
    """Minimal table client: equality and set-membership filters, one order column, CRUD by id."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._rest_url = f"{base_url.rstrip('/')}/rest/v1"
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self._access_token: Optional[str] = None
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_env(cls) -> "StoreClient":
        """Build a ``StoreClient`` from ``STORE_URL`` and ``STORE_ANON_KEY``.

        ``STORE_HTTP_TIMEOUT_S`` optionally overrides the 10 second request timeout.
        """

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

    def set_access_token(self, token: Optional[str]) -> None:
        """Use a signed-in user's token so row-level policies apply to that user."""
        self._access_token = token

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _headers(self, extra: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._access_token or self._api_key}",
            "Accept": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    async def _request(
        self,
        method: str,
        table: str,
        params: Sequence[Tuple[str, str]] = (),
        json: Any = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> httpx.Response:
        client = await self._ensure_client()
        try:
            response = await client.request(
                method,
                f"{self._rest_url}/{table}",
                params=list(params),
                json=json,
                headers=self._headers(headers),
            )
        except httpx.HTTPError as exc:
            raise StoreError(f"{table} request failed: {exc}") from exc
        if response.status_code >= 400:
            raise StoreError(_error_message(response), status_code=response.status_code)
        return response

    @staticmethod
    def _rows(response: httpx.Response) -> List[Dict[str, Any]]:
        if not response.content:
            return []
        try:
            data = response.json()
        except ValueError as exc:
            raise StoreError(f"invalid JSON from store: {exc}", status_code=response.status_code) from exc
        if isinstance(data, dict):
            return [data]
        if isinstance(data, list):
            return [row for row in data if isinstance(row, dict)]
        return []

    async def select(
        self,
        table: str,
        *,
        eq: Optional[Mapping[str, Any]] = None,
        in_: Optional[Mapping[str, Sequence[Any]]] = None,
        order: Optional[str] = None,
        ascending: bool = True,
        columns: str = "*",
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        params: List[Tuple[str, str]] = [("select", columns)]
        for column, value in (eq or {}).items():
            params.append((column, f"eq.{value}"))
        for column, values in (in_ or {}).items():
            joined = ",".join(_quote_value(v) for v in values)
            params.append((column, f"in.({joined})"))
        if order:
            params.append(("order", f"{order}.{'asc' if ascending else 'desc'}"))
        if limit is not None:
            params.append(("limit", str(limit)))
        response = await self._request("GET", table, params=params)
        return self._rows(response)

    async def get_by_id(self, table: str, row_id: str, columns: str = "*") -> Optional[Dict[str, Any]]:
        rows = await self.select(table, eq={"id": row_id}, columns=columns, limit=1)
        return rows[0] if rows else None

    async def insert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        response = await self._request(
            "POST",
            table,
            json=dict(row),
            headers={"Prefer": "return=representation"},
        )
        rows = self._rows(response)
        if not rows:
            raise StoreError(f"{table} insert returned no row", status_code=response.status_code)
        return rows[0]

    async def update(self, table: str, row_id: str, row: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        """Overwrite the given columns of one row. ``None`` when no row matched."""
        response = await self._request(
            "PATCH",
            table,
            params=[("id", f"eq.{row_id}")],
            json=dict(row),
            headers={"Prefer": "return=representation"},
        )
        rows = self._rows(response)
        return rows[0] if rows else None

    async def delete(self, table: str, row_id: str) -> int:
        """Delete one row by id and return how many rows the store removed."""
        response = await self._request(
            "DELETE",
            table,
            params=[("id", f"eq.{row_id}")],
            headers={"Prefer": "return=representation"},
        )
        return len(self._rows(response))


__all__ = [
    "ANNOUNCEMENTS_TABLE",
    "StoreClient",
    "StoreError",
    "TRANSPORTS_TABLE",
    "USERS_TABLE",
]
