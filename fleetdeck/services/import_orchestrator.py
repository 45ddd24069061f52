"""ImportOrchestrator — bulk import of discovered containers as bots.

Rows are processed strictly one after another, in input order. Each
accepted row takes the next sort_id, computed from an explicit
accumulator over the identities added so far in the batch, so store
writes land in exactly the input order.

A row is skipped as a duplicate URL when either its suggested URL or
the URL its auth hint resolves to is already stored.

Failure containment per row:
- auth-hint fetch failures become a HintOutcome value; the row still
  imports with its suggested URL and no credentials;
- auto-login failures leave the imported identity in place, classified
  for manual login.

Nothing is rolled back. A StorageError aborts the batch immediately;
rows already written stay committed.
"""

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field

import httpx

from fleetdeck.errors import AuthFailure, ControlPlaneError, HintUnavailable
from fleetdeck.services.bot_types import AuthHint, LoginCredentials, LoginStatus, SkipReason
from fleetdeck.services.credential_store import CredentialStore
from fleetdeck.services.discovery_catalog import DiscoveryCandidateRow
from fleetdeck.services.session_controller import SessionController

logger = logging.getLogger(__name__)

# async def(server_id, container_name) -> AuthHint
HintFetcher = Callable[[int, str], Awaitable[AuthHint]]
ControllerFactory = Callable[[str], SessionController]


@dataclass(frozen=True)
class HintOutcome:
    """Result of the best-effort auth-hint fetch."""

    hint: AuthHint | None = None
    error: HintUnavailable | None = None

    @property
    def ok(self) -> bool:
        return self.hint is not None

    @property
    def credentials_available(self) -> bool:
        return self.hint is not None and self.hint.has_credentials


@dataclass(frozen=True)
class ImportRowOutcome:
    """Terminal classification of one selected row."""

    selection_key: str
    bot_id: str
    skip_reason: SkipReason | None = None
    login_status: LoginStatus | None = None
    api_url: str = ""
    message: str = ""

    @property
    def added(self) -> bool:
        return self.skip_reason is None


@dataclass
class ImportReport:
    """Aggregate counters for one import batch, plus per-row outcomes."""

    added: int = 0
    skipped_not_eligible: int = 0
    skipped_duplicate_id: int = 0
    skipped_duplicate_url: int = 0
    auto_logged: int = 0
    auto_login_failed: int = 0
    outcomes: list[ImportRowOutcome] = field(default_factory=list)

    def record(self, outcome: ImportRowOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.skip_reason is SkipReason.not_eligible:
            self.skipped_not_eligible += 1
        elif outcome.skip_reason is SkipReason.duplicate_id:
            self.skipped_duplicate_id += 1
        elif outcome.skip_reason is SkipReason.duplicate_url:
            self.skipped_duplicate_url += 1
        else:
            self.added += 1
            if outcome.login_status is LoginStatus.auto_logged:
                self.auto_logged += 1
            else:
                self.auto_login_failed += 1

    @property
    def skipped(self) -> int:
        return self.skipped_not_eligible + self.skipped_duplicate_id + self.skipped_duplicate_url

    def summary(self) -> str:
        """One-line summary suitable for a single notification."""
        parts = [f"Imported {self.added} bot(s)"]
        if self.added:
            parts.append(
                f"{self.auto_logged} logged in automatically, "
                f"{self.auto_login_failed} need manual login"
            )
        if self.skipped:
            parts.append(
                f"skipped {self.skipped} "
                f"(not eligible: {self.skipped_not_eligible}, "
                f"duplicate id: {self.skipped_duplicate_id}, "
                f"duplicate url: {self.skipped_duplicate_url})"
            )
        return "; ".join(parts)


async def fetch_hint(fetcher: HintFetcher, row: DiscoveryCandidateRow) -> HintOutcome:
    """Fetch an auth hint, turning control-plane, HTTP and decode failures into a value."""
    try:
        hint = await fetcher(row.server_id, row.container_name)
    except (ControlPlaneError, httpx.HTTPError, ValueError) as e:
        logger.info("No auth hint for %s: %s", row.selection_key, e)
        return HintOutcome(error=HintUnavailable(str(e)))
    return HintOutcome(hint=hint)


class ImportOrchestrator:
    """Imports selected discovery rows into the credential store.

    Args:
        store: Credential store receiving the identities.
        hint_fetcher: Async callable returning an AuthHint for a container.
        controller_factory: Builds a SessionController for a bot id.
            Defaults to one sharing ``http_client``.
        http_client: Optional httpx client for auto-login requests.
    """

    def __init__(
        self,
        store: CredentialStore,
        hint_fetcher: HintFetcher,
        controller_factory: ControllerFactory | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._store = store
        self._hint_fetcher = hint_fetcher
        self._controller_factory = controller_factory or (
            lambda bot_id: SessionController(bot_id, store, http_client=http_client)
        )
        self.login_outcomes: dict[str, LoginStatus] = {}

    async def import_selected(self, rows: Iterable[DiscoveryCandidateRow]) -> ImportReport:
        """Import rows sequentially and report what happened to each."""
        report = ImportReport()
        base_count = self._store.count()
        accepted = 0
        for row in rows:
            outcome = await self._import_row(row, sort_id=base_count + accepted)
            if outcome.added:
                accepted += 1
            report.record(outcome)
        logger.info("Import finished: %s", report.summary())
        return report

    async def _import_row(self, row: DiscoveryCandidateRow, sort_id: int) -> ImportRowOutcome:
        bot_id = row.bot_id

        if not row.import_eligible or not row.suggested_url:
            return ImportRowOutcome(
                row.selection_key, bot_id, skip_reason=SkipReason.not_eligible,
                message=row.eligibility_reason,
            )
        if self._store.exists(bot_id):
            return ImportRowOutcome(
                row.selection_key, bot_id, skip_reason=SkipReason.duplicate_id,
                message=f"Bot '{bot_id}' is already imported",
            )
        if self._url_taken(row.suggested_url):
            return self._duplicate_url(row, row.suggested_url)

        hint_outcome = await fetch_hint(self._hint_fetcher, row)
        api_url = row.suggested_url
        if hint_outcome.ok and hint_outcome.hint.found and hint_outcome.hint.url:
            api_url = hint_outcome.hint.url
        if api_url != row.suggested_url and self._url_taken(api_url):
            return self._duplicate_url(row, api_url)

        self._store.upsert_ensure(bot_id, row.display_name, api_url, sort_id)

        status, message = LoginStatus.manual_login, "No credentials hint available"
        if hint_outcome.credentials_available:
            status, message = await self._auto_login(bot_id, row, api_url, hint_outcome.hint)
        self.login_outcomes[bot_id] = status

        return ImportRowOutcome(
            row.selection_key, bot_id, login_status=status, api_url=api_url, message=message,
        )

    def _url_taken(self, api_url: str) -> bool:
        return any(identity.api_url == api_url for identity in self._store.list())

    @staticmethod
    def _duplicate_url(row: DiscoveryCandidateRow, api_url: str) -> ImportRowOutcome:
        return ImportRowOutcome(
            row.selection_key, row.bot_id, skip_reason=SkipReason.duplicate_url,
            api_url=api_url, message=f"A bot already uses {api_url}",
        )

    async def _auto_login(
        self, bot_id: str, row: DiscoveryCandidateRow, api_url: str, hint: AuthHint,
    ) -> tuple[LoginStatus, str]:
        controller = self._controller_factory(bot_id)
        try:
            await controller.login(LoginCredentials(
                url=api_url,
                username=hint.username,
                password=hint.password,
                bot_name=row.display_name,
            ))
        except (AuthFailure, httpx.HTTPError) as e:
            logger.info("Auto-login failed for %s: %s", bot_id, e)
            return LoginStatus.manual_login, f"Auto-login failed: {e}"
        return LoginStatus.auto_logged, "Logged in automatically"
