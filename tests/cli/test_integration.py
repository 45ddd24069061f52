"""Integration tests for the CLI — end-to-end command execution.

The SQL store, the control-plane client and the bot HTTP client are
patched with in-memory and MockTransport-backed fakes.
"""

import json
from unittest.mock import patch

import httpx
import pytest
from typer.testing import CliRunner

from fleetdeck.cli.main import app
from fleetdeck.services.control_plane_client import ControlPlaneClient
from fleetdeck.services.credential_store import InMemoryCredentialStore
from tests.helpers import FakeBotApi, make_identity

runner = CliRunner()

SERVERS = [{"id": 1, "name": "alpha", "ip": "10.0.0.1", "status": "online"}]
CONTAINERS = [
    {"container_name": "ft-btc", "status": "running", "is_freqtrade": True, "api_port": 8080},
    {"container_name": "redis", "status": "running", "is_freqtrade": False, "api_port": None},
]


def control_plane_handler(hint: dict | None = None, fail: bool = False):
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if fail:
            return httpx.Response(403, json={"detail": "Forbidden"})
        if path.endswith("/auth-hint"):
            if hint is None:
                return httpx.Response(404, json={"detail": "No config"})
            return httpx.Response(200, json=hint)
        if path.endswith("/vps/1/discover"):
            return httpx.Response(200, json={
                "ok": True, "message": "Scan complete", "discovered": 2, "freqtrade_discovered": 1,
            })
        if path.endswith("/vps/1/containers"):
            return httpx.Response(200, json=CONTAINERS)
        if path.endswith("/vps"):
            return httpx.Response(200, json=SERVERS)
        return httpx.Response(404, json={"detail": "Not Found"})
    return handler


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """No config file from the developer machine."""
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def store():
    store = InMemoryCredentialStore()
    with patch("fleetdeck.cli.main.get_store", return_value=store):
        yield store


@pytest.fixture
def bot_api():
    api = FakeBotApi(users={"10.0.0.1:8080": ("freq", "pw")})
    with patch("fleetdeck.cli.main._bot_client", side_effect=lambda cfg: api.client()):
        yield api


def patch_control_plane(**kwargs):
    return patch(
        "fleetdeck.cli.main.get_control_plane",
        side_effect=lambda cfg: ControlPlaneClient(
            "http://cp:3000", transport=httpx.MockTransport(control_plane_handler(**kwargs)),
        ),
    )


class TestCLICommands:

    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "FleetDeck" in result.stdout

    def test_help(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for group in ("bots", "servers", "discovery", "config"):
            assert group in result.stdout

    def test_config_validate_missing_file(self, tmp_path):
        result = runner.invoke(app, ["config", "validate", "--config", str(tmp_path / "nope.yaml")])
        assert result.exit_code == 1

    def test_config_validate_with_file(self, tmp_path):
        config_file = tmp_path / "fleetdeck.yaml"
        config_file.write_text("control_plane:\n  actor: operator\n")
        result = runner.invoke(app, ["config", "validate", "--config", str(config_file)])
        assert result.exit_code == 0
        assert "valid" in result.stdout.lower()

    def test_config_validate_bad_value(self, tmp_path):
        config_file = tmp_path / "fleetdeck.yaml"
        config_file.write_text("logging:\n  level: chatty\n")
        result = runner.invoke(app, ["config", "validate", "--config", str(config_file)])
        assert result.exit_code == 1
        assert "validation failed" in result.stdout.lower()

    def test_config_show_masks_token(self, tmp_path):
        config_file = tmp_path / "fleetdeck.yaml"
        config_file.write_text("control_plane:\n  token: super-secret\n")
        result = runner.invoke(app, ["--config", str(config_file), "config", "show"])
        assert result.exit_code == 0
        assert "super-secret" not in result.stdout
        assert "***" in result.stdout


class TestBotCommands:

    def test_list_json(self, store):
        store.insert(make_identity("manual.a", 0, access_token="at", refresh_token="rt"))
        result = runner.invoke(app, ["bots", "list", "--json"])
        assert result.exit_code == 0
        parsed = json.loads(result.stdout)
        assert parsed[0]["bot_id"] == "manual.a"
        assert "at" not in [v for v in parsed[0].values() if isinstance(v, str)]

    def test_add_logs_in(self, store, bot_api):
        result = runner.invoke(app, [
            "bots", "add", "My Bot", "http://10.0.0.1:8080/", "-u", "freq", "-p", "pw",
        ])
        assert result.exit_code == 0, result.stdout
        info = store.get("manual.my-bot")
        assert info.api_url == "http://10.0.0.1:8080"
        assert info.bot_name == "My Bot"
        assert info.access_token == "access-1"

    def test_add_duplicate_fails(self, store, bot_api):
        store.insert(make_identity("manual.my-bot", 0))
        result = runner.invoke(app, ["bots", "add", "My Bot", "http://10.0.0.1:8080", "-u", "freq", "-p", "pw"])
        assert result.exit_code == 1
        assert "already exists" in result.stdout
        assert bot_api.requests == []

    def test_add_bad_password_fails(self, store, bot_api):
        result = runner.invoke(app, ["bots", "add", "B", "http://10.0.0.1:8080", "-u", "freq", "-p", "no"])
        assert result.exit_code == 1
        assert store.count() == 0

    def test_login_uses_stored_url_and_username(self, store, bot_api):
        store.insert(make_identity("source.1.container.ft-btc", 0, api_url="http://10.0.0.1:8080", username="freq"))
        result = runner.invoke(app, ["bots", "login", "source.1.container.ft-btc", "-p", "pw"])
        assert result.exit_code == 0, result.stdout
        assert store.get("source.1.container.ft-btc").access_token == "access-1"

    def test_login_unknown_bot(self, store, bot_api):
        result = runner.invoke(app, ["bots", "login", "ghost", "-u", "x", "-p", "y"])
        assert result.exit_code == 1
        assert "Unknown bot" in result.stdout

    def test_logout_removes(self, store):
        store.insert(make_identity("a", 0))
        store.insert(make_identity("b", 1))
        result = runner.invoke(app, ["bots", "logout", "a"])
        assert result.exit_code == 0
        assert [(i.bot_id, i.sort_id) for i in store.list()] == [("b", 0)]

    def test_rename(self, store):
        store.insert(make_identity("a", 0))
        result = runner.invoke(app, ["bots", "rename", "a", "Renamed"])
        assert result.exit_code == 0
        assert store.get("a").bot_name == "Renamed"

    def test_refresh_all_reports_failures(self, store, bot_api):
        store.insert(make_identity(
            "good", 0, api_url="http://10.0.0.1:8080", access_token="at", refresh_token="rt", auto_refresh=True,
        ))
        store.insert(make_identity(
            "down", 1, api_url="http://10.0.0.2:8080", access_token="at", refresh_token="rt", auto_refresh=True,
        ))
        store.insert(make_identity("manual", 2, auto_refresh=False))
        bot_api.unreachable.add("10.0.0.2:8080")

        result = runner.invoke(app, ["bots", "refresh"])
        assert result.exit_code == 1
        assert "good" in result.stdout
        assert "refreshed" in result.stdout
        assert "unreachable" in result.stdout
        assert store.get("good").access_token == "access-1"
        assert len(bot_api.requests) == 2

    def test_refresh_single_expired(self, store, bot_api):
        store.insert(make_identity(
            "b", 0, api_url="http://10.0.0.1:8080", access_token="at", refresh_token="rt", auto_refresh=True,
        ))
        bot_api.refresh_status = 401
        result = runner.invoke(app, ["bots", "refresh", "b"])
        assert result.exit_code == 1
        assert store.get("b").refresh_token == ""


class TestServerCommands:

    def test_servers_list_json(self):
        with patch_control_plane():
            result = runner.invoke(app, ["servers", "list", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)[0]["name"] == "alpha"

    def test_servers_discover(self):
        with patch_control_plane():
            result = runner.invoke(app, ["servers", "discover", "1"])
        assert result.exit_code == 0
        assert "Scan complete" in result.stdout

    def test_control_plane_error_exits_1(self):
        with patch_control_plane(fail=True):
            result = runner.invoke(app, ["servers", "list"])
        assert result.exit_code == 1
        assert "Forbidden" in result.stdout


class TestDiscoveryCommands:

    def test_discovery_list_json(self, store):
        with patch_control_plane():
            result = runner.invoke(app, ["discovery", "list", "--json"])
        assert result.exit_code == 0
        parsed = json.loads(result.stdout)
        assert [r["selection_key"] for r in parsed] == ["1:ft-btc", "1:redis"]
        assert parsed[0]["import_eligible"] is True

    def test_discovery_list_survives_failing_server(self, store):
        servers = SERVERS + [{"id": 2, "name": "beta", "ip": "10.0.0.2", "status": "online"}]
        healthy = control_plane_handler()

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/vps/2/containers"):
                return httpx.Response(502, json={"detail": "ssh timeout"})
            if request.url.path.endswith("/vps"):
                return httpx.Response(200, json=servers)
            return healthy(request)

        with patch(
            "fleetdeck.cli.main.get_control_plane",
            side_effect=lambda cfg: ControlPlaneClient("http://cp:3000", transport=httpx.MockTransport(handler)),
        ):
            result = runner.invoke(app, ["discovery", "list"])
        assert result.exit_code == 0, result.output
        assert "1:ft-btc" in result.output
        assert "server 2 unavailable" in result.output
        assert "ssh timeout" in result.output

    def test_discovery_list_managed_only(self, store):
        with patch_control_plane():
            result = runner.invoke(app, ["discovery", "list", "--managed-only", "--json"])
        assert [r["container_name"] for r in json.loads(result.stdout)] == ["ft-btc"]

    def test_import_requires_selection(self, store):
        result = runner.invoke(app, ["discovery", "import"])
        assert result.exit_code == 1

    def test_import_all_eligible_with_auto_login(self, store, bot_api):
        hint = {"found": True, "url": None, "username": "freq", "password": "pw",
                "message": None, "config_path": "/freqtrade/config.json"}
        with patch_control_plane(hint=hint):
            result = runner.invoke(app, ["discovery", "import", "--all-eligible", "--json"])
        assert result.exit_code == 0, result.stdout
        report = json.loads(result.stdout)
        assert report["added"] == 1
        assert report["auto_logged"] == 1
        info = store.get("source.1.container.ft-btc")
        assert info.bot_name == "alpha:ft-btc"
        assert info.access_token == "access-1"

    def test_import_selected_rows_without_hint(self, store, bot_api):
        with patch_control_plane():
            result = runner.invoke(app, [
                "discovery", "import", "--select", "1:ft-btc", "--select", "1:redis", "--json",
            ])
        assert result.exit_code == 0, result.stdout
        report = json.loads(result.stdout)
        assert report["added"] == 1
        assert report["skipped_not_eligible"] == 1
        assert report["auto_login_failed"] == 1
        assert store.get("source.1.container.ft-btc").access_token == ""

    def test_import_unknown_selection(self, store, bot_api):
        with patch_control_plane():
            result = runner.invoke(app, ["discovery", "import", "--select", "9:nope"])
        assert result.exit_code == 1
        assert "9:nope" in result.stdout
