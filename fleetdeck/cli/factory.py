"""Factories wiring config into the store and the control-plane client.

CLI commands never construct concrete services directly, so tests can
patch these two functions to swap in an in-memory store or a mocked
transport.
"""

from fleetdeck.cli.config import FleetDeckConfig
from fleetdeck.db.connection import create_db_engine, get_database_url, init_db, make_session_factory
from fleetdeck.services.control_plane_client import ControlPlaneClient
from fleetdeck.services.credential_encryption import get_or_create_key
from fleetdeck.services.credential_store import CredentialStore, SqlCredentialStore
from fleetdeck.services.keyring_store import resolve_control_plane_token


def get_store(config: FleetDeckConfig) -> CredentialStore:
    """Open the SQL-backed credential store named by the config."""
    engine = create_db_engine(get_database_url(config.storage.database_url))
    init_db(engine)
    key = get_or_create_key(config.storage.key_dir)
    return SqlCredentialStore(make_session_factory(engine), key)


def get_control_plane(config: FleetDeckConfig) -> ControlPlaneClient:
    """Build an (unopened) control-plane client from the config."""
    cp = config.control_plane
    return ControlPlaneClient(
        base_url=cp.base_url,
        actor=cp.actor,
        token=resolve_control_plane_token(cp.token),
        timeout=cp.timeout_seconds,
    )
