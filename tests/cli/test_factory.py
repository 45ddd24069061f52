"""Tests for the CLI service factories."""

from unittest.mock import patch

from fleetdeck.cli.config import FleetDeckConfig
from fleetdeck.cli.factory import get_control_plane, get_store
from fleetdeck.services.credential_store import SqlCredentialStore
from tests.helpers import make_identity


class TestGetStore:

    def test_builds_sql_store_from_config(self, tmp_path):
        cfg = FleetDeckConfig(storage={
            "database_url": f"sqlite:///{tmp_path / 'bots.db'}",
            "key_dir": str(tmp_path / "keys"),
        })
        store = get_store(cfg)
        assert isinstance(store, SqlCredentialStore)
        store.insert(make_identity("x", 0, access_token="at", refresh_token="rt"))

        reopened = get_store(cfg)
        assert reopened.get("x").access_token == "at"
        assert (tmp_path / "keys" / ".fleetdeck_key").exists()


class TestGetControlPlane:

    def test_uses_configured_token(self):
        cfg = FleetDeckConfig(control_plane={"base_url": "http://cp:9", "actor": "operator", "token": "t"})
        client = get_control_plane(cfg)
        assert client.api_base_url == "http://cp:9/api/v1"
        assert client.actor == "operator"
        assert client._token == "t"

    @patch("fleetdeck.services.keyring_store.keyring")
    def test_falls_back_to_keyring(self, mock_kr):
        mock_kr.get_password.return_value = "from-keyring"
        client = get_control_plane(FleetDeckConfig())
        assert client._token == "from-keyring"
