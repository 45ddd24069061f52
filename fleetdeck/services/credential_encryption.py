"""AES-256-GCM encryption of bot session tokens at rest.

The credential store keeps each bot's access and refresh token in one
encrypted JSON envelope, bound to the bot id through AAD so an envelope
copied onto another row fails to decrypt.

Key source precedence:
    1. FLEETDECK_CREDENTIAL_KEY env var (base64-encoded 32-byte key)
    2. FLEETDECK_CREDENTIAL_KEY_FILE env var (path to raw key file)
    3. Key file in the given key_dir (platformdirs default), auto-generated

Envelope format: {"v": 1, "alg": "AES-256-GCM", "nonce": <b64>, "ct": <b64>}
"""

import base64
import binascii
import json
import logging
import os
import platform
import stat

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

KEY_FILENAME = ".fleetdeck_key"
KEY_ENV_VAR = "FLEETDECK_CREDENTIAL_KEY"
KEY_FILE_ENV_VAR = "FLEETDECK_CREDENTIAL_KEY_FILE"
_CURRENT_VERSION = 1
_ALGORITHM = "AES-256-GCM"
_REQUIRED_KEY_LENGTH = 32
_NONCE_LENGTH = 12


class CredentialDecryptionError(Exception):
    """Raised when a token envelope cannot be decrypted for any reason."""


def bot_aad(bot_id: str) -> str:
    """AAD string binding a token envelope to its bot id."""
    return f"bot:{bot_id}"


def _read_key_file(path: str) -> bytes:
    with open(path, "rb") as f:
        key = f.read()
    if len(key) != _REQUIRED_KEY_LENGTH:
        raise ValueError(
            f"Key file {path} has invalid length {len(key)} "
            f"(expected {_REQUIRED_KEY_LENGTH}). Delete the file to regenerate."
        )
    return key


def get_or_create_key(key_dir: str | None = None) -> bytes:
    """Load or generate the 32-byte AES-256 key.

    Args:
        key_dir: Directory for the auto-generated key file. Defaults to
            the platformdirs user data directory.

    Returns:
        32-byte encryption key.

    Raises:
        ValueError: If a configured key is malformed or has the wrong length.
    """
    env_key = os.environ.get(KEY_ENV_VAR, "").strip()
    if env_key:
        try:
            key = base64.b64decode(env_key, validate=True)
        except binascii.Error as e:
            raise ValueError(f"{KEY_ENV_VAR} contains invalid base64: {e}") from e
        if len(key) != _REQUIRED_KEY_LENGTH:
            raise ValueError(
                f"{KEY_ENV_VAR} has invalid length {len(key)} (expected {_REQUIRED_KEY_LENGTH})"
            )
        return key

    env_key_file = os.environ.get(KEY_FILE_ENV_VAR, "").strip()
    if env_key_file:
        if not os.path.isfile(env_key_file):
            raise ValueError(f"{KEY_FILE_ENV_VAR} is not a regular file: {env_key_file}")
        if os.path.islink(env_key_file):
            raise ValueError(f"{KEY_FILE_ENV_VAR} is a symlink: {env_key_file}")
        return _read_key_file(env_key_file)

    if key_dir is None:
        from fleetdeck.utils.paths import get_data_dir

        key_dir = str(get_data_dir())
    os.makedirs(key_dir, exist_ok=True)
    key_path = os.path.join(key_dir, KEY_FILENAME)

    if os.path.exists(key_path):
        key = _read_key_file(key_path)
        if platform.system() != "Windows":
            mode = stat.S_IMODE(os.stat(key_path).st_mode)
            if mode & (stat.S_IRGRP | stat.S_IWGRP | stat.S_IROTH | stat.S_IWOTH):
                logger.warning(
                    "Key file %s has permissions %o — recommend chmod 600",
                    key_path, mode,
                )
        return key

    key = os.urandom(_REQUIRED_KEY_LENGTH)
    try:
        fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        try:
            os.write(fd, key)
        finally:
            os.close(fd)
    except FileExistsError:
        # Another process created it between the exists() check and open().
        return _read_key_file(key_path)

    logger.info("Generated new token encryption key at %s", key_path)
    return key


def encrypt_tokens(tokens: dict, key: bytes, aad: str = "") -> str:
    """Encrypt a token dict into a versioned JSON envelope string.

    Raises:
        ValueError: If key is not exactly 32 bytes.
    """
    if len(key) != _REQUIRED_KEY_LENGTH:
        raise ValueError(
            f"Encryption key must be exactly {_REQUIRED_KEY_LENGTH} bytes (got {len(key)})"
        )
    nonce = os.urandom(_NONCE_LENGTH)
    plaintext = json.dumps(tokens, sort_keys=True).encode("utf-8")
    ciphertext = AESGCM(key).encrypt(nonce, plaintext, aad.encode("utf-8") if aad else None)
    return json.dumps({
        "v": _CURRENT_VERSION,
        "alg": _ALGORITHM,
        "nonce": base64.b64encode(nonce).decode("ascii"),
        "ct": base64.b64encode(ciphertext).decode("ascii"),
    })


def decrypt_tokens(encrypted: str, key: bytes, aad: str = "") -> dict:
    """Decrypt an envelope produced by encrypt_tokens.

    Raises:
        CredentialDecryptionError: On wrong key, wrong AAD, tampering or
            any malformed envelope.
    """
    if len(key) != _REQUIRED_KEY_LENGTH:
        raise CredentialDecryptionError(
            f"Decryption key must be exactly {_REQUIRED_KEY_LENGTH} bytes (got {len(key)})"
        )
    try:
        envelope = json.loads(encrypted)
    except (json.JSONDecodeError, TypeError) as e:
        raise CredentialDecryptionError(f"Invalid envelope format: {e}") from e
    if not isinstance(envelope, dict):
        raise CredentialDecryptionError("Envelope is not a JSON object")

    if envelope.get("v") != _CURRENT_VERSION:
        raise CredentialDecryptionError(
            f"Unsupported envelope version {envelope.get('v')} (expected {_CURRENT_VERSION})"
        )
    if envelope.get("alg") != _ALGORITHM:
        raise CredentialDecryptionError(
            f"Unsupported algorithm '{envelope.get('alg')}' (expected '{_ALGORITHM}')"
        )

    try:
        nonce = base64.b64decode(envelope["nonce"], validate=True)
        ciphertext = base64.b64decode(envelope["ct"], validate=True)
    except (KeyError, TypeError, binascii.Error) as e:
        raise CredentialDecryptionError(f"Malformed envelope fields: {e}") from e
    if len(nonce) != _NONCE_LENGTH:
        raise CredentialDecryptionError(
            f"Invalid nonce length {len(nonce)} (expected {_NONCE_LENGTH})"
        )

    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext, aad.encode("utf-8") if aad else None)
        result = json.loads(plaintext.decode("utf-8"))
    except Exception as e:
        raise CredentialDecryptionError(f"Decryption failed: {e}") from e
    if not isinstance(result, dict):
        raise CredentialDecryptionError(
            f"Decrypted payload is not a dict (got {type(result).__name__})"
        )
    return result
