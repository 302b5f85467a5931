import asyncio

import httpx
import pytest

from jai_core.api.client import TokenedClient
from jai_core.domain.exceptions import (
    ApiError,
    AuthRejectedError,
    NetworkError,
    RateLimitError,
    TokenFetchError,
)
from jai_core.domain.models import AuthUser


class SettingsStub:
    api_base_url = "https://chat.example.com/api"
    http_timeout = 1.0


class SessionsStub:
    def __init__(self, user=None):
        self.current_user = user


class IdentityStub:
    def __init__(self, error=None):
        self.error = error
        self.token_calls = 0

    async def get_fresh_id_token(self, user):
        self.token_calls += 1
        if self.error is not None:
            raise self.error
        return f"fresh-{self.token_calls}"


USER = AuthUser(uid="u1", email="a@b.c", email_verified=True, provider_ids=("password",))


def _install_client(monkeypatch, response=None, error=None):
    captured = []

    class Client:
        def __init__(self, *a, **kw):
            captured.append({"init": kw})

        async def __aenter__(self):
            return self

        async def __aexit__(self, *a):
            return False

        async def request(self, method, url, json=None, headers=None):
            captured.append({"method": method, "url": url, "json": json, "headers": headers})
            if error is not None:
                raise error
            return response

    monkeypatch.setattr("httpx.AsyncClient", Client)
    return captured


def test_attaches_fresh_token_on_every_call(monkeypatch):
    captured = _install_client(monkeypatch, httpx.Response(200, json=[]))
    identity = IdentityStub()
    client = TokenedClient(SessionsStub(USER), identity, SettingsStub())

    asyncio.run(client.get_json("/conversations"))
    asyncio.run(client.get_json("/conversations"))

    requests = [c for c in captured if "method" in c]
    assert requests[0]["url"] == "https://chat.example.com/api/conversations"
    assert requests[0]["headers"]["Authorization"] == "Bearer fresh-1"
    assert requests[1]["headers"]["Authorization"] == "Bearer fresh-2"
    assert identity.token_calls == 2


def test_no_user_dispatches_unauthenticated(monkeypatch):
    captured = _install_client(monkeypatch, httpx.Response(200, json={"ok": True}))
    identity = IdentityStub()
    client = TokenedClient(SessionsStub(None), identity, SettingsStub())

    data = asyncio.run(client.post_json("/chat", {"prompt": "hi"}))

    request = [c for c in captured if "method" in c][0]
    assert data == {"ok": True}
    assert "Authorization" not in request["headers"]
    assert request["json"] == {"prompt": "hi"}
    assert identity.token_calls == 0


def test_server_rejection_carries_server_message(monkeypatch):
    _install_client(monkeypatch, httpx.Response(500, json={"error": "quota exceeded"}))
    client = TokenedClient(SessionsStub(USER), IdentityStub(), SettingsStub())

    with pytest.raises(ApiError) as exc_info:
        asyncio.run(client.post_json("/chat", {"prompt": "hi"}))
    assert exc_info.value.message == "quota exceeded"
    assert exc_info.value.http_status == 500


def test_status_mapping(monkeypatch):
    client = TokenedClient(SessionsStub(USER), IdentityStub(), SettingsStub())

    _install_client(monkeypatch, httpx.Response(401, json={"message": "token expired"}))
    with pytest.raises(AuthRejectedError):
        asyncio.run(client.get_json("/conversations"))

    _install_client(monkeypatch, httpx.Response(429, json={"error": "slow down"}))
    with pytest.raises(RateLimitError) as exc_info:
        asyncio.run(client.get_json("/conversations"))
    assert exc_info.value.message == "slow down"


def test_transport_error_becomes_network_error(monkeypatch):
    _install_client(monkeypatch, error=httpx.ConnectError("connection refused"))
    client = TokenedClient(SessionsStub(USER), IdentityStub(), SettingsStub())

    with pytest.raises(NetworkError):
        asyncio.run(client.delete("/conversations/c1"))


def test_token_fetch_failure_sends_nothing(monkeypatch):
    captured = _install_client(monkeypatch, httpx.Response(200, json=[]))
    identity = IdentityStub(error=AuthRejectedError(code="TOKEN_EXPIRED", message="TOKEN_EXPIRED"))
    client = TokenedClient(SessionsStub(USER), identity, SettingsStub())

    with pytest.raises(TokenFetchError):
        asyncio.run(client.get_json("/conversations"))
    assert captured == []


def test_malformed_json_is_an_api_error(monkeypatch):
    _install_client(monkeypatch, httpx.Response(200, text="<html>"))
    client = TokenedClient(SessionsStub(None), IdentityStub(), SettingsStub())

    with pytest.raises(ApiError) as exc_info:
        asyncio.run(client.get_json("/conversations"))
    assert exc_info.value.code == "INVALID_JSON"


def test_html_error_page_is_not_used_as_message(monkeypatch):
    _install_client(monkeypatch, httpx.Response(502, text="<html><body>Bad Gateway</body></html>"))
    client = TokenedClient(SessionsStub(None), IdentityStub(), SettingsStub())

    with pytest.raises(ApiError) as exc_info:
        asyncio.run(client.post_json("/chat", {"prompt": "hi"}))
    assert exc_info.value.message == ""
    assert exc_info.value.http_status == 502
