"""Root-level pytest fixtures for all tests.

Provides shared fixtures:
- Credential stores (in-memory and SQL on in-memory SQLite)
- Control-plane inventory samples
"""

import os

import pytest

from fleetdeck.db.connection import create_db_engine, init_db, make_session_factory
from fleetdeck.services.bot_types import ContainerRecord, ServerRecord
from fleetdeck.services.credential_store import InMemoryCredentialStore, SqlCredentialStore
from tests.helpers import TEST_KEY


# ============================================================================
# Pytest Markers
# ============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests requiring external services"
    )


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Keep FLEETDECK_* variables from the developer shell out of tests."""
    for key in list(os.environ):
        if key.startswith("FLEETDECK_"):
            monkeypatch.delenv(key, raising=False)


# ============================================================================
# Store Fixtures
# ============================================================================


@pytest.fixture
def memory_store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def session_factory():
    """Session factory over a fresh in-memory SQLite database."""
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def sql_store(session_factory) -> SqlCredentialStore:
    return SqlCredentialStore(session_factory, TEST_KEY)


# ============================================================================
# Inventory Fixtures
# ============================================================================


@pytest.fixture
def sample_servers() -> list[ServerRecord]:
    return [
        ServerRecord(id=1, name="alpha", ip="10.0.0.1", status="online"),
        ServerRecord(id=2, name="beta", ip="10.0.0.2", status="online"),
    ]


@pytest.fixture
def sample_containers() -> dict[int, list[ContainerRecord]]:
    return {
        1: [
            ContainerRecord(name="ft-btc", status="running", is_managed=True, api_port=8080),
            ContainerRecord(name="redis", status="running", is_managed=False, api_port=None),
        ],
        2: [
            ContainerRecord(name="ft-eth", status="running", is_managed=True, api_port=8081),
            ContainerRecord(name="ft-noport", status="exited", is_managed=True, api_port=None),
        ],
    }
