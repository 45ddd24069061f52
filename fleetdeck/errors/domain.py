"""Typed domain exceptions for session, import and control-plane failures.

Callers catch specific exception types instead of matching on message
strings. Login and refresh failures surface to the immediate caller and
are never retried inside the library.

Usage:
    # In a service
    raise RefreshExpired(bot_id, status_code=401)

    # In a CLI command
    try:
        await controller.refresh()
    except RefreshTransient:
        console.print("Bot offline, retry later")
"""


class FleetDeckError(Exception):
    """Base exception for all FleetDeck domain errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class StorageError(FleetDeckError):
    """The credential store could not be read or written."""


class DuplicateIdentityError(FleetDeckError):
    """A bot identity with this id already exists."""

    def __init__(self, bot_id: str) -> None:
        super().__init__(f"Bot '{bot_id}' already exists")
        self.bot_id = bot_id


class AuthFailure(FleetDeckError):
    """Login was rejected or the login response was malformed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RefreshFailure(FleetDeckError):
    """Access token refresh failed without touching the stored session."""

    def __init__(
        self, bot_id: str, message: str = "", status_code: int | None = None,
    ) -> None:
        super().__init__(message or f"Token refresh failed for bot '{bot_id}'")
        self.bot_id = bot_id
        self.status_code = status_code


class RefreshExpired(RefreshFailure):
    """Refresh token rejected (HTTP 401). The stored session was cleared."""

    def __init__(self, bot_id: str, status_code: int = 401) -> None:
        super().__init__(
            bot_id,
            f"Refresh token for bot '{bot_id}' expired; login required",
            status_code,
        )


class RefreshTransient(RefreshFailure):
    """Bot API unavailable (HTTP 404/5xx). Session untouched, retry later."""

    def __init__(self, bot_id: str, status_code: int) -> None:
        super().__init__(
            bot_id,
            f"Bot '{bot_id}' seems to be offline (HTTP {status_code})",
            status_code,
        )


class HintUnavailable(FleetDeckError):
    """Auth-hint enrichment failed. Carried as a value, not raised to callers."""


class ControlPlaneError(FleetDeckError):
    """Non-2xx response (or transport failure) from the VPS control plane."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"[{self.status_code}] {self.message}"
