import asyncio
import json

import httpx
import pytest

from store_client import StoreClient, StoreError


def _client(handler) -> StoreClient:
    return StoreClient(
        base_url="https://db.example.com/",
        api_key="anon-key",
        transport=httpx.MockTransport(handler),
    )


def test_from_env_lists_missing_variables(monkeypatch):
    monkeypatch.delenv("STORE_URL", raising=False)
    monkeypatch.setenv("STORE_ANON_KEY", "")
    with pytest.raises(RuntimeError) as excinfo:
        StoreClient.from_env()
    assert "STORE_URL" in str(excinfo.value)
    assert "STORE_ANON_KEY" in str(excinfo.value)


def test_select_builds_filters_and_order():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[{"id": "1"}])

    client = _client(handler)
    rows = asyncio.run(
        client.select(
            "transports",
            eq={"status": "scheduled"},
            in_={"pickup_date": ["2024-06-01", "2024-06-02"]},
            order="pickup_time",
        )
    )

    assert rows == [{"id": "1"}]
    request = seen[0]
    assert request.url.path == "/rest/v1/transports"
    params = request.url.params
    assert params["select"] == "*"
    assert params["status"] == "eq.scheduled"
    assert params["pickup_date"] == 'in.("2024-06-01","2024-06-02")'
    assert params["order"] == "pickup_time.asc"
    assert request.headers["apikey"] == "anon-key"
    assert request.headers["Authorization"] == "Bearer anon-key"


def test_user_token_replaces_anon_bearer():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[])

    client = _client(handler)
    client.set_access_token("user-jwt")
    assert asyncio.run(client.get_by_id("users", "u-1")) is None
    assert seen[0].headers["Authorization"] == "Bearer user-jwt"
    assert seen[0].url.params["id"] == "eq.u-1"
    assert seen[0].url.params["limit"] == "1"


def test_insert_asks_for_the_stored_row():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert request.headers["Prefer"] == "return=representation"
        body = json.loads(request.content)
        return httpx.Response(201, json=[{**body, "id": "new-id"}])

    client = _client(handler)
    row = asyncio.run(client.insert("announcements", {"title": "Hi"}))
    assert row == {"title": "Hi", "id": "new-id"}


def test_update_and_delete_report_missing_rows():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["id"] == "eq.missing"
        return httpx.Response(200, json=[])

    async def scenario():
        client = _client(handler)
        try:
            updated = await client.update("transports", "missing", {"status": "completed"})
            removed = await client.delete("transports", "missing")
        finally:
            await client.aclose()
        return updated, removed

    assert asyncio.run(scenario()) == (None, 0)


def test_store_error_carries_message_and_status():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            403,
            json={"code": "42501", "message": "new row violates row-level security policy"},
        )

    client = _client(handler)
    with pytest.raises(StoreError) as excinfo:
        asyncio.run(client.insert("transports", {"client_name": "x"}))
    assert str(excinfo.value) == "new row violates row-level security policy"
    assert excinfo.value.status_code == 403


def test_transport_failure_becomes_store_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)
    with pytest.raises(StoreError) as excinfo:
        asyncio.run(client.select("transports"))
    assert excinfo.value.status_code is None
    assert "connection refused" in str(excinfo.value)
