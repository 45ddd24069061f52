"""SessionController — per-bot login, refresh and logout.

One controller per bot identity, layered over a CredentialStore. Login
and refresh are deliberately separate paths:

- a failed login never touches the stored record, so a working session
  survives a mistyped password;
- a refresh answered with HTTP 401 means the refresh token is dead, so
  both tokens are cleared and the operator is prompted to log in again;
- a refresh answered with 404/5xx means the bot is offline; nothing is
  changed and the caller decides when to retry.

Nothing here retries or schedules. Periodic refresh belongs to the caller.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx

from fleetdeck.errors import AuthFailure, RefreshExpired, RefreshFailure, RefreshTransient
from fleetdeck.services.bot_types import (
    API_PREFIX,
    BotIdentity,
    BotIdentityPatch,
    LoginCredentials,
    SessionStatus,
    empty_identity,
)
from fleetdeck.services.control_plane_client import error_detail
from fleetdeck.services.credential_store import CredentialStore
from fleetdeck.utils.redaction import sanitize_error_message

logger = logging.getLogger(__name__)

LOGIN_PATH = f"{API_PREFIX}/token/login"
REFRESH_PATH = "/token/refresh"

DEFAULT_TIMEOUT = 10.0


def build_base_url(api_url: str) -> str:
    """Append the API prefix to a bot URL unless it is already there."""
    if not api_url:
        return API_PREFIX
    if api_url.endswith(API_PREFIX):
        return api_url
    return f"{api_url}{API_PREFIX}"


def build_ws_url(base_url: str) -> str:
    """Rewrite http(s) to ws(s); empty for any other scheme."""
    if base_url.startswith("http://"):
        return "ws://" + base_url[len("http://"):]
    if base_url.startswith("https://"):
        return "wss://" + base_url[len("https://"):]
    return ""


def is_transient_status(status_code: int) -> bool:
    """404 and any 5xx mean the bot API is unavailable, not that auth failed."""
    return status_code == 404 or status_code >= 500


class SessionController:
    """Login/refresh/logout facade for one bot identity.

    Args:
        bot_id: Identity this controller manages.
        store: Shared credential store.
        http_client: Optional shared httpx.AsyncClient. When omitted a
            short-lived client is opened per request.
        timeout: Request timeout for the short-lived client.
    """

    def __init__(
        self,
        bot_id: str,
        store: CredentialStore,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._bot_id = bot_id
        self._store = store
        self._http_client = http_client
        self._timeout = timeout
        self._expired = False
        self._refreshing = False

    @property
    def bot_id(self) -> str:
        return self._bot_id

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield client

    # --- read side ---

    def get_login_info(self) -> BotIdentity:
        """Current record, or a zero-valued placeholder when absent."""
        return self._store.get(self._bot_id) or empty_identity(self._bot_id)

    @property
    def access_token(self) -> str:
        return self.get_login_info().access_token

    @property
    def auto_refresh(self) -> bool:
        return self.get_login_info().auto_refresh

    @property
    def base_url(self) -> str:
        return build_base_url(self.get_login_info().api_url)

    @property
    def base_ws_url(self) -> str:
        return build_ws_url(self.base_url)

    @property
    def is_refreshing(self) -> bool:
        return self._refreshing

    def session_status(self) -> SessionStatus:
        info = self.get_login_info()
        if info.is_authenticated:
            return SessionStatus.authenticated
        if self._expired:
            return SessionStatus.expired
        return SessionStatus.no_session

    # --- descriptor updates ---

    def update_bot(self, bot_name: str | None = None, api_url: str | None = None) -> None:
        """Rename a bot or move it to a new URL. No-op if absent."""
        self._store.merge(self._bot_id, BotIdentityPatch(bot_name=bot_name, api_url=api_url))

    def set_auto_refresh(self, value: bool) -> None:
        self._store.merge(self._bot_id, BotIdentityPatch(auto_refresh=value))

    # --- session lifecycle ---

    async def login(self, credentials: LoginCredentials) -> BotIdentity:
        """Exchange username/password for an access and refresh token.

        Creates the identity (appended at the end of the ordering) if it
        does not exist yet; otherwise updates it and keeps its sort_id.

        Raises:
            AuthFailure: Non-2xx response, or a body missing either token.
                The stored record is left untouched.
            httpx.TransportError: The bot could not be reached.
        """
        login_url = f"{credentials.url}{LOGIN_PATH}"
        logger.info("Logging in to bot %s at %s as %s", self._bot_id, credentials.url, credentials.username)
        async with self._client() as client:
            resp = await client.post(
                login_url,
                json={},
                auth=(credentials.username, credentials.password),
            )

        if resp.status_code >= 400:
            raise AuthFailure(
                f"Login to {credentials.url} failed (HTTP {resp.status_code}): "
                f"{sanitize_error_message(error_detail(resp))}",
                status_code=resp.status_code,
            )
        try:
            data = resp.json()
        except ValueError as e:
            raise AuthFailure(f"Login to {credentials.url} returned a non-JSON body") from e
        access_token = data.get("access_token") if isinstance(data, dict) else None
        refresh_token = data.get("refresh_token") if isinstance(data, dict) else None
        if not access_token or not refresh_token:
            raise AuthFailure(f"Login to {credentials.url} did not return both tokens")

        existing = self._store.get(self._bot_id)
        if existing is None:
            self._store.insert(BotIdentity(
                bot_id=self._bot_id,
                bot_name=credentials.bot_name or "",
                api_url=credentials.url,
                sort_id=self._store.count(),
                username=credentials.username,
                access_token=access_token,
                refresh_token=refresh_token,
                auto_refresh=True,
            ))
        else:
            self._store.merge(self._bot_id, BotIdentityPatch(
                bot_name=credentials.bot_name,
                api_url=credentials.url,
                username=credentials.username,
                access_token=access_token,
                refresh_token=refresh_token,
                auto_refresh=True,
            ))
        self._expired = False
        logger.info("Bot %s logged in", self._bot_id)
        return self.get_login_info()

    async def refresh(self) -> str:
        """Trade the stored refresh token for a new access token.

        Returns:
            The new access token (already merged into the store).

        Raises:
            RefreshExpired: HTTP 401; both tokens were cleared.
            RefreshTransient: HTTP 404 or 5xx; nothing changed.
            RefreshFailure: Any other rejection, a malformed body, or no
                refresh token stored; nothing changed.
            httpx.TransportError: Network failure; nothing changed.
        """
        info = self._store.get(self._bot_id)
        if info is None or not info.refresh_token:
            raise RefreshFailure(self._bot_id, f"Bot '{self._bot_id}' has no refresh token")

        logger.info("Refreshing token for bot %s", self._bot_id)
        self._refreshing = True
        try:
            async with self._client() as client:
                resp = await client.post(
                    f"{build_base_url(info.api_url)}{REFRESH_PATH}",
                    json={},
                    headers={"Authorization": f"Bearer {info.refresh_token}"},
                )
        except httpx.TransportError as e:
            logger.warning("Token refresh for bot %s failed: %s", self._bot_id, type(e).__name__)
            raise
        finally:
            self._refreshing = False

        if resp.status_code == 401:
            logger.warning("Refresh token of bot %s was rejected; clearing session", self._bot_id)
            self._store.merge(self._bot_id, BotIdentityPatch(access_token="", refresh_token=""))
            self._expired = True
            raise RefreshExpired(self._bot_id)
        if is_transient_status(resp.status_code):
            logger.info("Bot %s seems to be offline (HTTP %d) - retry later", self._bot_id, resp.status_code)
            raise RefreshTransient(self._bot_id, resp.status_code)
        if resp.status_code >= 400:
            raise RefreshFailure(
                self._bot_id,
                f"Token refresh for bot '{self._bot_id}' rejected (HTTP {resp.status_code})",
                resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise RefreshFailure(self._bot_id, "Token refresh returned a non-JSON body") from e
        access_token = data.get("access_token") if isinstance(data, dict) else None
        if not access_token:
            raise RefreshFailure(self._bot_id, "Token refresh response has no access_token")

        self._store.merge(self._bot_id, BotIdentityPatch(access_token=access_token))
        return access_token

    def logout(self) -> None:
        """Forget the bot entirely (record removed, ordering re-normalized)."""
        logger.info("Logging out bot %s", self._bot_id)
        self._store.remove(self._bot_id)
        self._expired = False
