"""Control-plane token storage in the system keychain.

Uses the `keyring` library, which maps to macOS Keychain, Windows
Credential Manager or the Secret Service API on Linux. All values live
under the service name 'com.fleetdeck.app'.
"""

import logging

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

logger = logging.getLogger(__name__)

SERVICE_NAME = "com.fleetdeck.app"

CONTROL_PLANE_TOKEN = "CONTROL_PLANE_TOKEN"


class KeyringStore:
    """Thin wrapper around keyring for secret CRUD."""

    def __init__(self, service_name: str = SERVICE_NAME) -> None:
        self._service = service_name

    def get(self, key: str) -> str | None:
        """Retrieve a secret. Returns None if unset or the keyring is unavailable."""
        try:
            return keyring.get_password(self._service, key)
        except KeyringError:
            logger.warning("Keyring read failed for %s", key, exc_info=True)
            return None

    def set(self, key: str, value: str) -> None:
        keyring.set_password(self._service, key, value)
        logger.info("Stored secret: %s", key)

    def delete(self, key: str) -> None:
        try:
            keyring.delete_password(self._service, key)
            logger.info("Deleted secret: %s", key)
        except PasswordDeleteError:
            logger.debug("Secret %s not found for deletion", key)

    def has(self, key: str) -> bool:
        return self.get(key) is not None


def resolve_control_plane_token(configured: str = "", store: KeyringStore | None = None) -> str:
    """Configured token wins; otherwise fall back to the keychain."""
    if configured and configured.strip():
        return configured.strip()
    return (store or KeyringStore()).get(CONTROL_PLANE_TOKEN) or ""
