import asyncio
import json

import httpx
import pytest

from auth_client import SIGNED_IN, SIGNED_OUT, AuthClient, AuthError


TOKEN_BODY = {
    "access_token": "jwt-1",
    "refresh_token": "refresh-1",
    "expires_in": 3600,
    "user": {"id": "u-1", "email": "admin@example.com"},
}


def _client(handler) -> AuthClient:
    return AuthClient(
        base_url="https://db.example.com",
        api_key="anon-key",
        transport=httpx.MockTransport(handler),
    )


def _recorder(client: AuthClient):
    events = []

    async def listener(event, session):
        events.append((event, session.user_id if session else None))

    client.on_auth_state_change(listener)
    return events


def test_password_sign_in_emits_signed_in():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/auth/v1/token"
        assert request.url.params["grant_type"] == "password"
        assert json.loads(request.content) == {"email": "admin@example.com", "password": "pw"}
        return httpx.Response(200, json=TOKEN_BODY)

    client = _client(handler)
    events = _recorder(client)

    session = asyncio.run(client.sign_in_with_password("admin@example.com", "pw"))

    assert session.access_token == "jwt-1"
    assert session.user_id == "u-1"
    assert events == [(SIGNED_IN, "u-1")]


def test_bad_credentials_raise_without_event():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400, json={"error": "invalid_grant", "error_description": "Invalid login credentials"}
        )

    client = _client(handler)
    events = _recorder(client)

    with pytest.raises(AuthError) as excinfo:
        asyncio.run(client.sign_in_with_password("admin@example.com", "nope"))
    assert str(excinfo.value) == "Invalid login credentials"
    assert excinfo.value.status_code == 400
    assert events == []


def test_global_sign_out_always_emits_signed_out():
    paths = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append((request.url.path, dict(request.url.params)))
        if request.url.path.endswith("/token"):
            return httpx.Response(200, json=TOKEN_BODY)
        return httpx.Response(500, json={"msg": "logout exploded"})

    async def scenario(client):
        await client.sign_in_with_password("admin@example.com", "pw")
        try:
            await client.sign_out()
        finally:
            await client.aclose()

    client = _client(handler)
    events = _recorder(client)

    with pytest.raises(AuthError):
        asyncio.run(scenario(client))

    assert paths[-1] == ("/auth/v1/logout", {"scope": "global"})
    assert events == [(SIGNED_IN, "u-1"), (SIGNED_OUT, None)]


def test_expired_session_is_reported_signed_out():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/token"):
            return httpx.Response(200, json=TOKEN_BODY)
        assert request.headers["Authorization"] == "Bearer jwt-1"
        return httpx.Response(401, json={"msg": "JWT expired"})

    async def scenario(client):
        await client.sign_in_with_password("admin@example.com", "pw")
        first = await client.get_session()
        second = await client.get_session()
        await client.aclose()
        return first, second

    client = _client(handler)
    events = _recorder(client)

    assert asyncio.run(scenario(client)) == (None, None)
    assert events == [(SIGNED_IN, "u-1"), (SIGNED_OUT, None)]


def test_unsubscribed_listener_and_failing_listener():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=TOKEN_BODY)

    client = _client(handler)
    events = []

    async def broken(event, session):
        raise ValueError("listener bug")

    async def quiet(event, session):
        events.append(event)

    client.on_auth_state_change(broken)
    unsubscribe = client.on_auth_state_change(quiet)
    unsubscribe()

    session = asyncio.run(client.sign_in_with_password("admin@example.com", "pw"))

    assert session.user_id == "u-1"
    assert events == []
