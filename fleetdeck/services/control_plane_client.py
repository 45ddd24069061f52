"""HTTP client for the VPS control plane.

Thin wrapper around httpx that talks to the control-plane REST API
(``{base_url}/api/v1``). Every request carries the acting role in an
``X-Actor`` header. Error responses raise ControlPlaneError with the
server's ``detail`` string when it sent one.

Usage:
    async with ControlPlaneClient("http://cp:3000", actor="operator") as cp:
        inventory = await cp.load_inventory()
"""

import logging
from dataclasses import dataclass, field
from urllib.parse import quote

import httpx

from fleetdeck.errors import ControlPlaneError
from fleetdeck.services.bot_types import API_PREFIX, AuthHint, ContainerRecord, ServerRecord
from fleetdeck.utils.redaction import redact_for_logging

logger = logging.getLogger(__name__)

ACTOR_OPTIONS = ("admin", "operator", "readonly")

ACTOR_PERMISSIONS: dict[str, list[str]] = {
    "admin": ["vps:manage", "bot:manage", "logs:read", "system:admin"],
    "operator": ["vps:read", "bot:manage", "logs:read"],
    "readonly": ["vps:read", "bot:read", "logs:read"],
}


def normalize_actor(value: str) -> str:
    """Map any actor string onto a known role; unknown values become admin."""
    candidate = (value or "").strip().lower()
    if candidate in ("operator", "readonly"):
        return candidate
    return "admin"


def actor_permissions(actor: str) -> list[str]:
    return list(ACTOR_PERMISSIONS[normalize_actor(actor)])


def error_detail(resp: httpx.Response) -> str:
    """Prefer a non-blank string ``detail`` from the JSON body, else the text."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text or resp.reason_phrase
    if isinstance(body, dict):
        detail = body.get("detail")
        if isinstance(detail, str) and detail.strip():
            return detail
    return resp.text or resp.reason_phrase


def decode_json(resp: httpx.Response, expected: type) -> object:
    """Decode a 2xx body, raising ControlPlaneError when it is not the expected shape."""
    try:
        data = resp.json()
    except ValueError as e:
        raise ControlPlaneError(
            f"Control plane returned a non-JSON body for {resp.request.url.path}",
        ) from e
    if not isinstance(data, expected):
        raise ControlPlaneError(
            f"Control plane returned {type(data).__name__} for {resp.request.url.path}, "
            f"expected {expected.__name__}",
        )
    return data


@dataclass
class Inventory:
    """Servers with their containers, plus the servers whose listing failed."""

    servers: list[ServerRecord] = field(default_factory=list)
    containers: dict[int, list[ContainerRecord]] = field(default_factory=dict)
    failures: dict[int, ControlPlaneError] = field(default_factory=dict)


class ControlPlaneClient:
    """Async client for servers, containers, discovery and auth hints."""

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:3000",
        actor: str = "admin",
        token: str = "",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize with the control-plane origin.

        Args:
            base_url: Control-plane origin, without the API prefix.
            actor: Acting role sent as X-Actor (normalized).
            token: Optional bearer token for the control plane.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (tests).
        """
        self._base_url = base_url.rstrip("/")
        self._actor = normalize_actor(actor)
        self._token = token.strip()
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def actor(self) -> str:
        return self._actor

    @property
    def api_base_url(self) -> str:
        return f"{self._base_url}{API_PREFIX}"

    def status_stream_url(self) -> str:
        """URL of the server-sent status stream for the current actor."""
        return f"{self.api_base_url}/stream/status?actor={quote(self._actor)}"

    async def __aenter__(self) -> "ControlPlaneClient":
        headers = {"X-Actor": self._actor}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        self._client = httpx.AsyncClient(
            base_url=self.api_base_url,
            timeout=self._timeout,
            headers=headers,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        if self._client is None:
            raise RuntimeError("ControlPlaneClient must be used as an async context manager")
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise ControlPlaneError(
                f"Control plane unreachable at {self._base_url}: {type(e).__name__}"
            ) from e
        if resp.status_code >= 400:
            raise ControlPlaneError(error_detail(resp), status_code=resp.status_code)
        return resp

    async def list_servers(self) -> list[ServerRecord]:
        """GET /vps."""
        resp = await self._request("GET", "/vps")
        return [ServerRecord.from_api(item) for item in decode_json(resp, list)]

    async def list_containers(self, vps_id: int) -> list[ContainerRecord]:
        """GET /vps/{id}/containers."""
        resp = await self._request("GET", f"/vps/{vps_id}/containers")
        return [ContainerRecord.from_api(item) for item in decode_json(resp, list)]

    async def discover(self, vps_id: int) -> dict:
        """POST /vps/{id}/discover — ask the control plane to rescan a server.

        Returns:
            Dict with ok, message, discovered and freqtrade_discovered.
        """
        resp = await self._request("POST", f"/vps/{vps_id}/discover")
        return decode_json(resp, dict)

    async def container_auth_hint(self, vps_id: int, container_name: str) -> AuthHint:
        """GET /vps/{id}/containers/{name}/auth-hint."""
        resp = await self._request(
            "GET", f"/vps/{vps_id}/containers/{quote(container_name, safe='')}/auth-hint",
        )
        data = decode_json(resp, dict)
        logger.debug(
            "Auth hint for %s on vps %s: %s", container_name, vps_id, redact_for_logging(data),
        )
        return AuthHint.from_api(data)

    async def load_inventory(self) -> Inventory:
        """Fetch all servers and the containers of each, one server at a time.

        A server whose container listing fails gets an empty list and an
        entry in ``failures``; the other servers are still listed.

        Raises:
            ControlPlaneError: If the server list itself cannot be fetched.
        """
        inventory = Inventory(servers=await self.list_servers())
        for server in inventory.servers:
            try:
                inventory.containers[server.id] = await self.list_containers(server.id)
            except ControlPlaneError as e:
                logger.warning("Listing containers of vps %s failed: %s", server.id, e)
                inventory.containers[server.id] = []
                inventory.failures[server.id] = e
        return inventory
