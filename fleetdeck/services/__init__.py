"""Service layer for FleetDeck.

Provides the credential store, per-bot session control, the discovery
catalog and the bulk importer.
"""

from fleetdeck.services.credential_store import (
    CredentialStore,
    InMemoryCredentialStore,
    SqlCredentialStore,
)
from fleetdeck.services.discovery_catalog import DiscoveryCandidateRow, DiscoveryCatalog
from fleetdeck.services.import_orchestrator import ImportOrchestrator, ImportReport
from fleetdeck.services.session_controller import SessionController

__all__ = [
    "CredentialStore",
    "InMemoryCredentialStore",
    "SqlCredentialStore",
    "SessionController",
    "DiscoveryCatalog",
    "DiscoveryCandidateRow",
    "ImportOrchestrator",
    "ImportReport",
]
