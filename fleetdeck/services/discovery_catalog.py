"""DiscoveryCatalog — import-candidate view over servers and containers.

Pure projection: joins each (server, container) pair from the live
inventory into a DiscoveryCandidateRow, classifies import eligibility,
and cross-references the credential store. Rows are recomputed on
every read; nothing here mutates the inventory or the store.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from fleetdeck.services.bot_types import (
    ContainerRecord,
    LoginStatus,
    ServerRecord,
    derive_bot_id,
)
from fleetdeck.services.credential_store import CredentialStore

REASON_NOT_MANAGED = "Not a freqtrade container"
REASON_NO_PORT = "No API port detected"


@dataclass(frozen=True)
class DiscoveryCandidateRow:
    """One discovered container on one server, ready for import selection."""

    server_id: int
    server_name: str
    server_ip: str
    container_name: str
    container_status: str
    is_managed: bool
    api_port: int | None
    suggested_url: str
    import_eligible: bool
    eligibility_reason: str
    image: str = ""
    strategy: str | None = None
    exchange: str | None = None
    pairlist: str | None = None
    trading_mode: str | None = None

    @property
    def bot_id(self) -> str:
        return derive_bot_id(self.server_id, self.container_name)

    @property
    def selection_key(self) -> str:
        """Operator-facing handle: '<server_id>:<container_name>'."""
        return f"{self.server_id}:{self.container_name}"

    @property
    def display_name(self) -> str:
        return f"{self.server_name}:{self.container_name}"


@dataclass(frozen=True)
class CatalogEntry:
    """A candidate row plus its standing in the credential store."""

    row: DiscoveryCandidateRow
    imported: bool
    login_status: LoginStatus
    last_import_status: LoginStatus | None = None


def suggested_url_for(server: ServerRecord, container: ContainerRecord) -> str:
    if container.api_port is None:
        return ""
    return f"http://{server.ip}:{container.api_port}"


def eligibility(container: ContainerRecord) -> tuple[bool, str]:
    """(eligible, reason). Eligible only when managed AND a port is known."""
    if not container.is_managed:
        return False, REASON_NOT_MANAGED
    if container.api_port is None:
        return False, REASON_NO_PORT
    return True, ""


def build_candidate_row(server: ServerRecord, container: ContainerRecord) -> DiscoveryCandidateRow:
    eligible, reason = eligibility(container)
    return DiscoveryCandidateRow(
        server_id=server.id,
        server_name=server.name,
        server_ip=server.ip,
        container_name=container.name,
        container_status=container.status,
        is_managed=container.is_managed,
        api_port=container.api_port,
        suggested_url=suggested_url_for(server, container),
        import_eligible=eligible,
        eligibility_reason=reason,
        image=container.image,
        strategy=container.strategy,
        exchange=container.exchange,
        pairlist=container.pairlist,
        trading_mode=container.trading_mode,
    )


def build_candidate_rows(
    servers: Iterable[ServerRecord],
    containers_by_server: Mapping[int, Iterable[ContainerRecord]],
    managed_only: bool = False,
) -> list[DiscoveryCandidateRow]:
    """All rows, sorted by server name then container name (case-sensitive)."""
    rows = [
        build_candidate_row(server, container)
        for server in servers
        for container in containers_by_server.get(server.id, ())
    ]
    rows.sort(key=lambda r: (r.server_name, r.container_name))
    if managed_only:
        rows = [r for r in rows if r.is_managed]
    return rows


def classify_login(
    row: DiscoveryCandidateRow, store: CredentialStore,
) -> tuple[bool, LoginStatus]:
    """(imported, login status) of a row against the store.

    Only the stored tokens count; an outcome recorded by the importer is
    reported next to this status, never instead of it.
    """
    identity = store.get(row.bot_id)
    if identity is None:
        return False, LoginStatus.not_imported
    if identity.access_token:
        return True, LoginStatus.auto_logged
    return True, LoginStatus.manual_login


class DiscoveryCatalog:
    """Live view over the inventory collections and the credential store.

    Args:
        servers: Server records; the list is read, never copied.
        containers_by_server: Containers per server id; read, never copied.
        store: Credential store to cross-reference.
        import_outcomes: Login classification the importer recorded per
            bot id in this process, if any.
    """

    def __init__(
        self,
        servers: list[ServerRecord],
        containers_by_server: Mapping[int, list[ContainerRecord]],
        store: CredentialStore,
        import_outcomes: Mapping[str, LoginStatus] | None = None,
    ) -> None:
        self._servers = servers
        self._containers = containers_by_server
        self._store = store
        self._import_outcomes = import_outcomes if import_outcomes is not None else {}

    def rows(self, managed_only: bool = False) -> list[DiscoveryCandidateRow]:
        return build_candidate_rows(self._servers, self._containers, managed_only=managed_only)

    def entries(self, managed_only: bool = False) -> list[CatalogEntry]:
        entries = []
        for row in self.rows(managed_only=managed_only):
            imported, status = classify_login(row, self._store)
            entries.append(CatalogEntry(
                row=row,
                imported=imported,
                login_status=status,
                last_import_status=self._import_outcomes.get(row.bot_id),
            ))
        return entries

    def select(self, keys: Iterable[str]) -> list[DiscoveryCandidateRow]:
        """Rows matching '<server_id>:<container_name>' keys, in key order.

        Raises:
            KeyError: If a key matches no row.
        """
        by_key = {row.selection_key: row for row in self.rows()}
        selected = []
        for key in keys:
            if key not in by_key:
                raise KeyError(key)
            selected.append(by_key[key])
        return selected

    def eligible_rows(self) -> list[DiscoveryCandidateRow]:
        return [row for row in self.rows() if row.import_eligible]
