"""Shared types and constants for bot identities, sessions and discovery.

Neutral module with no DB, HTTP or service-layer imports. Used by the
credential store, session controller, discovery catalog and importer.
"""

import re
from dataclasses import dataclass, field, fields, replace
from enum import Enum


# --- Shared Constants ---

API_PREFIX = "/api/v1"

MANAGED_KIND = "freqtrade"

_SLUG_PATTERN = re.compile(r"[^a-z0-9]+")


class SessionStatus(str, Enum):
    """Externally visible session state of one bot identity.

    Lifecycle: no_session -> authenticated -> expired (refresh 401)
    A refresh in flight does not change the external status.
    """

    no_session = "no_session"
    authenticated = "authenticated"
    expired = "expired"


class LoginStatus(str, Enum):
    """Login classification of a discovery row or an imported identity."""

    auto_logged = "auto-logged"
    manual_login = "manual-login"
    not_imported = "not-imported"


class SkipReason(str, Enum):
    """Why the importer did not add a selected row."""

    not_eligible = "not-eligible"
    duplicate_id = "duplicate-id"
    duplicate_url = "duplicate-url"


# --- Bot identity ---


@dataclass(frozen=True)
class BotIdentity:
    """Persisted session/profile record of one managed bot."""

    bot_id: str
    bot_name: str = ""
    api_url: str = ""
    sort_id: int | None = None
    username: str = ""
    access_token: str = ""
    refresh_token: str = ""
    auto_refresh: bool = False

    @property
    def is_authenticated(self) -> bool:
        """True while either bearer token is present."""
        return bool(self.access_token or self.refresh_token)

    @property
    def needs_manual_login(self) -> bool:
        return not self.is_authenticated


@dataclass(frozen=True)
class BotIdentityPatch:
    """Partial update for a BotIdentity. ``None`` means "leave unchanged"."""

    bot_name: str | None = None
    api_url: str | None = None
    sort_id: int | None = None
    username: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    auto_refresh: bool | None = None

    def changes(self) -> dict:
        """Return only the fields this patch sets."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }

    def is_empty(self) -> bool:
        return not self.changes()


def apply_patch(identity: BotIdentity, patch: BotIdentityPatch) -> BotIdentity:
    """Shallow-merge a patch into an identity, returning a new identity.

    ``bot_id`` is not part of the patch type and can never change.
    """
    changes = patch.changes()
    if not changes:
        return identity
    return replace(identity, **changes)


def empty_identity(bot_id: str = "") -> BotIdentity:
    """Zero-valued placeholder for an absent identity."""
    return BotIdentity(bot_id=bot_id)


def sort_key(identity: BotIdentity) -> tuple[float, str]:
    """Ordering key: sort_id ascending (absent last), then bot_id."""
    sort_id = identity.sort_id if identity.sort_id is not None else float("inf")
    return (sort_id, identity.bot_id)


# --- Origin identifiers ---


def slugify(name: str) -> str:
    """Lowercase a container name and collapse non-alphanumerics to '-'."""
    slug = _SLUG_PATTERN.sub("-", name.strip().lower()).strip("-")
    return slug or "container"


def derive_bot_id(server_id: int | str, container_name: str) -> str:
    """Deterministic bot id for a discovered container."""
    return f"source.{server_id}.container.{slugify(container_name)}"


def manual_bot_id(bot_name: str) -> str:
    """Bot id for a bot added by hand rather than imported."""
    return f"manual.{slugify(bot_name)}"


# --- Login payloads ---


@dataclass(frozen=True)
class LoginCredentials:
    """Username/password login against a bot control API."""

    url: str
    username: str
    password: str = field(repr=False)
    bot_name: str | None = None


# --- Control-plane records ---


@dataclass(frozen=True)
class ServerRecord:
    """A VPS known to the control plane."""

    id: int
    name: str
    ip: str
    status: str = ""
    docker_available: bool | None = None
    last_error: str | None = None

    @classmethod
    def from_api(cls, data: dict) -> "ServerRecord":
        """Construct from API JSON, tolerating extra fields."""
        return cls(
            id=int(data["id"]),
            name=data.get("name", ""),
            ip=data.get("ip", ""),
            status=data.get("status", ""),
            docker_available=data.get("docker_available"),
            last_error=data.get("last_error"),
        )


@dataclass(frozen=True)
class ContainerRecord:
    """A container discovered on a VPS."""

    name: str
    status: str = ""
    is_managed: bool = False
    api_port: int | None = None
    image: str = ""
    strategy: str | None = None
    exchange: str | None = None
    pairlist: str | None = None
    trading_mode: str | None = None

    @classmethod
    def from_api(cls, data: dict) -> "ContainerRecord":
        """Construct from API JSON, tolerating extra fields."""
        api_port = data.get("api_port")
        return cls(
            name=data["container_name"],
            status=data.get("status", ""),
            is_managed=bool(data.get("is_freqtrade", False)),
            api_port=int(api_port) if api_port is not None else None,
            image=data.get("image", "") or "",
            strategy=data.get("strategy"),
            exchange=data.get("exchange"),
            pairlist=data.get("pairlist"),
            trading_mode=data.get("trading_mode"),
        )


@dataclass(frozen=True)
class AuthHint:
    """Credential suggestion read from a container's own configuration."""

    found: bool = False
    url: str = ""
    username: str = ""
    password: str = field(default="", repr=False)
    message: str = ""
    config_path: str = ""

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password)

    @classmethod
    def from_api(cls, data: dict) -> "AuthHint":
        """Construct from API JSON; null fields become empty strings."""
        return cls(
            found=bool(data.get("found", False)),
            url=data.get("url") or "",
            username=data.get("username") or "",
            password=data.get("password") or "",
            message=data.get("message") or "",
            config_path=data.get("config_path") or "",
        )
