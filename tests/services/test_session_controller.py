"""Tests for SessionController — login, refresh and logout against a fake bot API."""

import json

import httpx
import pytest

from fleetdeck.errors import AuthFailure, RefreshExpired, RefreshFailure, RefreshTransient
from fleetdeck.services.bot_types import LoginCredentials, SessionStatus
from fleetdeck.services.credential_store import InMemoryCredentialStore
from fleetdeck.services.session_controller import (
    SessionController,
    build_base_url,
    build_ws_url,
    is_transient_status,
)
from tests.helpers import FakeBotApi, make_identity

BOT_URL = "http://10.0.0.1:8080"


def _logged_in_store(**overrides) -> InMemoryCredentialStore:
    values = dict(
        api_url=BOT_URL, username="bob", access_token="at0", refresh_token="rt0", auto_refresh=True,
    )
    values.update(overrides)
    return InMemoryCredentialStore([make_identity("bot", 0, **values)])


class TestUrlHelpers:

    def test_base_url_appends_prefix(self):
        assert build_base_url(BOT_URL) == f"{BOT_URL}/api/v1"

    def test_base_url_does_not_double_prefix(self):
        assert build_base_url(f"{BOT_URL}/api/v1") == f"{BOT_URL}/api/v1"

    def test_base_url_of_empty_url(self):
        assert build_base_url("") == "/api/v1"

    @pytest.mark.parametrize("base,expected", [
        ("http://h:1/api/v1", "ws://h:1/api/v1"),
        ("https://h/api/v1", "wss://h/api/v1"),
        ("/api/v1", ""),
        ("ftp://h", ""),
    ])
    def test_ws_url(self, base, expected):
        assert build_ws_url(base) == expected

    @pytest.mark.parametrize("status,transient", [
        (404, True), (500, True), (502, True), (503, True), (401, False), (403, False), (400, False),
    ])
    def test_transient_status(self, status, transient):
        assert is_transient_status(status) is transient


class TestReadSide:

    def test_absent_identity_reads_as_placeholder(self):
        controller = SessionController("ghost", InMemoryCredentialStore())
        info = controller.get_login_info()
        assert info.bot_id == "ghost"
        assert info.access_token == ""
        assert controller.base_url == "/api/v1"
        assert controller.base_ws_url == ""
        assert controller.session_status() is SessionStatus.no_session

    def test_logged_in_identity(self):
        controller = SessionController("bot", _logged_in_store())
        assert controller.access_token == "at0"
        assert controller.auto_refresh is True
        assert controller.base_ws_url == "ws://10.0.0.1:8080/api/v1"
        assert controller.session_status() is SessionStatus.authenticated

    def test_update_bot_and_auto_refresh(self):
        store = _logged_in_store()
        controller = SessionController("bot", store)
        controller.update_bot(bot_name="renamed", api_url="http://10.0.0.9:9000")
        controller.set_auto_refresh(False)
        info = store.get("bot")
        assert info.bot_name == "renamed"
        assert info.api_url == "http://10.0.0.9:9000"
        assert info.auto_refresh is False
        assert info.access_token == "at0"

    def test_update_absent_bot_is_noop(self):
        store = InMemoryCredentialStore()
        SessionController("ghost", store).update_bot(bot_name="x")
        assert store.count() == 0


class TestLogin:

    @pytest.mark.asyncio
    async def test_login_creates_identity_at_end_of_order(self):
        store = InMemoryCredentialStore([make_identity("first", 0)])
        api = FakeBotApi(users={"10.0.0.1:8080": ("bob", "pw")})
        async with api.client() as http:
            controller = SessionController("bot", store, http_client=http)
            info = await controller.login(LoginCredentials(BOT_URL, "bob", "pw", bot_name="Bot"))

        assert info.sort_id == 1
        assert info.bot_name == "Bot"
        assert info.username == "bob"
        assert info.access_token == "access-1"
        assert info.refresh_token == "refresh-1"
        assert info.auto_refresh is True

        request = api.requests[0]
        assert request.method == "POST"
        assert str(request.url) == f"{BOT_URL}/api/v1/token/login"
        assert json.loads(request.content) == {}

    @pytest.mark.asyncio
    async def test_login_updates_existing_and_keeps_sort_id(self):
        store = InMemoryCredentialStore([
            make_identity("a", 0), make_identity("bot", 1, api_url=BOT_URL, auto_refresh=False),
        ])
        api = FakeBotApi(users={"10.0.0.1:8080": ("bob", "pw")})
        async with api.client() as http:
            await SessionController("bot", store, http_client=http).login(
                LoginCredentials(BOT_URL, "bob", "pw"),
            )
        info = store.get("bot")
        assert info.sort_id == 1
        assert info.bot_name == "bot"
        assert info.auto_refresh is True

    @pytest.mark.asyncio
    async def test_failed_login_leaves_record_untouched(self):
        store = _logged_in_store()
        before = store.get("bot")
        api = FakeBotApi(users={"10.0.0.1:8080": ("bob", "right")})
        async with api.client() as http:
            controller = SessionController("bot", store, http_client=http)
            with pytest.raises(AuthFailure) as exc_info:
                await controller.login(LoginCredentials(BOT_URL, "bob", "wrong"))
        assert exc_info.value.status_code == 401
        assert store.get("bot") == before

    @pytest.mark.asyncio
    async def test_login_missing_refresh_token_is_failure(self):
        def handler(request):
            return httpx.Response(200, json={"access_token": "only"})

        store = InMemoryCredentialStore()
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            with pytest.raises(AuthFailure):
                await SessionController("bot", store, http_client=http).login(
                    LoginCredentials(BOT_URL, "bob", "pw"),
                )
        assert store.count() == 0

    @pytest.mark.asyncio
    async def test_login_unreachable_raises_transport_error(self):
        api = FakeBotApi(unreachable={"10.0.0.1:8080"})
        async with api.client() as http:
            with pytest.raises(httpx.TransportError):
                await SessionController("bot", InMemoryCredentialStore(), http_client=http).login(
                    LoginCredentials(BOT_URL, "bob", "pw"),
                )


class TestRefresh:

    @pytest.mark.asyncio
    async def test_refresh_success_updates_access_token_only(self):
        store = _logged_in_store()
        api = FakeBotApi()
        async with api.client() as http:
            controller = SessionController("bot", store, http_client=http)
            token = await controller.refresh()

        assert token == "access-1"
        info = store.get("bot")
        assert info.access_token == "access-1"
        assert info.refresh_token == "rt0"
        request = api.requests[0]
        assert str(request.url) == f"{BOT_URL}/api/v1/token/refresh"
        assert request.headers["authorization"] == "Bearer rt0"
        assert controller.is_refreshing is False

    @pytest.mark.asyncio
    async def test_refresh_401_clears_session(self):
        store = _logged_in_store()
        api = FakeBotApi(refresh_status=401)
        async with api.client() as http:
            controller = SessionController("bot", store, http_client=http)
            with pytest.raises(RefreshExpired):
                await controller.refresh()

        info = store.get("bot")
        assert info.access_token == ""
        assert info.refresh_token == ""
        assert info.username == "bob"
        assert controller.session_status() is SessionStatus.expired

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [404, 500, 503])
    async def test_refresh_transient_keeps_session(self, status):
        store = _logged_in_store()
        before = store.get("bot")
        api = FakeBotApi(refresh_status=status)
        async with api.client() as http:
            controller = SessionController("bot", store, http_client=http)
            with pytest.raises(RefreshTransient) as exc_info:
                await controller.refresh()
        assert exc_info.value.status_code == status
        assert store.get("bot") == before
        assert controller.session_status() is SessionStatus.authenticated

    @pytest.mark.asyncio
    async def test_refresh_other_rejection_keeps_session(self):
        store = _logged_in_store()
        before = store.get("bot")
        api = FakeBotApi(refresh_status=403)
        async with api.client() as http:
            with pytest.raises(RefreshFailure) as exc_info:
                await SessionController("bot", store, http_client=http).refresh()
        assert not isinstance(exc_info.value, (RefreshExpired, RefreshTransient))
        assert store.get("bot") == before

    @pytest.mark.asyncio
    async def test_refresh_without_refresh_token_makes_no_request(self):
        store = _logged_in_store(access_token="", refresh_token="")
        api = FakeBotApi()
        async with api.client() as http:
            with pytest.raises(RefreshFailure):
                await SessionController("bot", store, http_client=http).refresh()
        assert api.requests == []

    @pytest.mark.asyncio
    async def test_refresh_network_error_keeps_session(self):
        store = _logged_in_store()
        before = store.get("bot")
        api = FakeBotApi(unreachable={"10.0.0.1:8080"})
        async with api.client() as http:
            controller = SessionController("bot", store, http_client=http)
            with pytest.raises(httpx.TransportError):
                await controller.refresh()
        assert store.get("bot") == before
        assert controller.is_refreshing is False


class TestLogout:

    def test_logout_removes_and_renormalizes(self):
        store = InMemoryCredentialStore([
            make_identity("a", 0), make_identity("bot", 1), make_identity("c", 2),
        ])
        SessionController("bot", store).logout()
        assert [(i.bot_id, i.sort_id) for i in store.list()] == [("a", 0), ("c", 1)]
