"""CredentialStore — durable ``bot_id -> BotIdentity`` mapping.

All store semantics (ordering, ensure, merge, remove, normalization)
live in the CredentialStore base class and operate on the whole
mapping, which backends read and write through two hooks:

- InMemoryCredentialStore: a dict, for tests and embedding.
- SqlCredentialStore: the ``bot_login_infos`` table, tokens encrypted
  with AES-256-GCM bound to the bot id.

The store has no lock. All mutation happens on a single thread of
control; concurrent callers must serialize externally.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import replace

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fleetdeck.db.connection import session_scope
from fleetdeck.db.models import BotLoginInfo, utc_now_iso
from fleetdeck.errors import DuplicateIdentityError, StorageError
from fleetdeck.services.bot_types import (
    BotIdentity,
    BotIdentityPatch,
    apply_patch,
    sort_key,
)
from fleetdeck.services.credential_encryption import (
    CredentialDecryptionError,
    bot_aad,
    decrypt_tokens,
    encrypt_tokens,
)

logger = logging.getLogger(__name__)

ChangeListener = Callable[[list[BotIdentity]], None]


def ordered_identities(identities: Iterable[BotIdentity]) -> list[BotIdentity]:
    """Sort by sort_id ascending (absent last), ties by bot_id."""
    return sorted(identities, key=sort_key)


def normalize_order(
    identities: Iterable[BotIdentity],
) -> tuple[dict[str, BotIdentity], bool]:
    """Re-derive dense sort ids 0..n-1 from the current ordering.

    Pure function. Running it on its own output changes nothing.

    Returns:
        (normalized mapping in display order, whether any sort_id changed)
    """
    changed = False
    normalized: dict[str, BotIdentity] = {}
    for index, identity in enumerate(ordered_identities(identities)):
        if identity.sort_id != index:
            changed = True
            identity = replace(identity, sort_id=index)
        normalized[identity.bot_id] = identity
    return normalized, changed


class CredentialStore:
    """Shared store logic over a whole-mapping read/write backend.

    Subclasses implement ``_read`` and ``_write`` and call
    ``super().__init__()`` once their backend is ready; construction runs
    the startup normalization pass.
    """

    def __init__(self, normalize_on_load: bool = True) -> None:
        self._listeners: list[ChangeListener] = []
        if normalize_on_load:
            self.normalize_order()

    # --- backend hooks ---

    def _read(self) -> dict[str, BotIdentity]:
        raise NotImplementedError

    def _write(self, mapping: dict[str, BotIdentity]) -> None:
        raise NotImplementedError

    def _persist(self, mapping: dict[str, BotIdentity]) -> None:
        self._write(mapping)
        if self._listeners:
            snapshot = ordered_identities(mapping.values())
            for listener in list(self._listeners):
                listener(snapshot)

    # --- reads ---

    def list(self) -> list[BotIdentity]:
        """All identities in display order, read fresh from the backend."""
        return ordered_identities(self._read().values())

    def get(self, bot_id: str) -> BotIdentity | None:
        return self._read().get(bot_id)

    def exists(self, bot_id: str) -> bool:
        return bot_id in self._read()

    def count(self) -> int:
        return len(self._read())

    # --- writes ---

    def add_listener(self, listener: ChangeListener) -> None:
        """Register a callback fired after every persisted write."""
        self._listeners.append(listener)

    def insert(self, identity: BotIdentity) -> None:
        """Insert a new identity.

        Raises:
            DuplicateIdentityError: If the bot id is already stored.
        """
        mapping = self._read()
        if identity.bot_id in mapping:
            raise DuplicateIdentityError(identity.bot_id)
        mapping[identity.bot_id] = identity
        self._persist(mapping)
        logger.info("Added bot %s (sort_id=%s)", identity.bot_id, identity.sort_id)

    def upsert_ensure(
        self, bot_id: str, bot_name: str, api_url: str, sort_id: int,
    ) -> None:
        """Create the identity if absent, else refresh its name and URL.

        Username, tokens, auto_refresh and sort_id of an existing identity
        are preserved, so ensuring never clears a session.
        """
        mapping = self._read()
        existing = mapping.get(bot_id)
        if existing is None:
            mapping[bot_id] = BotIdentity(
                bot_id=bot_id, bot_name=bot_name, api_url=api_url, sort_id=sort_id,
            )
            logger.info("Ensured new bot %s (sort_id=%d)", bot_id, sort_id)
        else:
            updated = apply_patch(
                existing, BotIdentityPatch(bot_name=bot_name, api_url=api_url),
            )
            if updated == existing:
                return
            mapping[bot_id] = updated
            logger.debug("Ensured existing bot %s, session preserved", bot_id)
        self._persist(mapping)

    def merge(self, bot_id: str, patch: BotIdentityPatch) -> None:
        """Shallow-merge ``patch`` into an existing identity.

        No-op when the bot id is not stored.
        """
        mapping = self._read()
        existing = mapping.get(bot_id)
        if existing is None:
            logger.debug("Merge skipped for unknown bot %s", bot_id)
            return
        updated = apply_patch(existing, patch)
        if updated == existing:
            return
        mapping[bot_id] = updated
        self._persist(mapping)
        logger.debug("Merged %s into bot %s", sorted(patch.changes()), bot_id)

    def remove(self, bot_id: str) -> None:
        """Delete an identity, then re-normalize the ordering."""
        mapping = self._read()
        if mapping.pop(bot_id, None) is None:
            return
        normalized, _ = normalize_order(mapping.values())
        self._persist(normalized)
        logger.info("Removed bot %s", bot_id)

    def normalize_order(self) -> bool:
        """Make sort ids dense 0..n-1; write only if something changed.

        Returns:
            True if the normalized ordering was persisted.
        """
        normalized, changed = normalize_order(self._read().values())
        if changed:
            self._persist(normalized)
            logger.info("Normalized sort order of %d bots", len(normalized))
        return changed


class InMemoryCredentialStore(CredentialStore):
    """Dict-backed store. Shares all semantics with the SQL store."""

    def __init__(
        self, identities: Iterable[BotIdentity] = (), normalize_on_load: bool = True,
    ) -> None:
        self._data: dict[str, BotIdentity] = {i.bot_id: i for i in identities}
        super().__init__(normalize_on_load=normalize_on_load)

    def _read(self) -> dict[str, BotIdentity]:
        return dict(self._data)

    def _write(self, mapping: dict[str, BotIdentity]) -> None:
        self._data = dict(mapping)


class SqlCredentialStore(CredentialStore):
    """SQLAlchemy-backed store over the ``bot_login_infos`` table.

    Args:
        session_factory: Callable returning a new Session.
        key: 32-byte AES-256 key for token envelopes.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        key: bytes,
        normalize_on_load: bool = True,
    ) -> None:
        self._session_factory = session_factory
        self._key = key
        super().__init__(normalize_on_load=normalize_on_load)

    def _decode(self, row: BotLoginInfo) -> BotIdentity:
        access_token = refresh_token = ""
        if row.encrypted_tokens:
            try:
                tokens = decrypt_tokens(row.encrypted_tokens, self._key, bot_aad(row.bot_id))
                access_token = tokens.get("access_token", "")
                refresh_token = tokens.get("refresh_token", "")
            except CredentialDecryptionError as e:
                logger.warning(
                    "Stored session for bot %s cannot be decrypted (%s); "
                    "treating as logged out", row.bot_id, e,
                )
        return BotIdentity(
            bot_id=row.bot_id,
            bot_name=row.bot_name,
            api_url=row.api_url,
            sort_id=row.sort_id,
            username=row.username,
            access_token=access_token,
            refresh_token=refresh_token,
            auto_refresh=bool(row.auto_refresh),
        )

    def _encode_tokens(self, identity: BotIdentity) -> str | None:
        if not identity.is_authenticated:
            return None
        return encrypt_tokens(
            {"access_token": identity.access_token, "refresh_token": identity.refresh_token},
            self._key,
            bot_aad(identity.bot_id),
        )

    def _apply(self, row: BotLoginInfo, identity: BotIdentity, tokens_changed: bool) -> None:
        row.bot_name = identity.bot_name
        row.api_url = identity.api_url
        row.sort_id = identity.sort_id
        row.username = identity.username
        row.auto_refresh = identity.auto_refresh
        if tokens_changed:
            row.encrypted_tokens = self._encode_tokens(identity)
        row.updated_at = utc_now_iso()

    def _read(self) -> dict[str, BotIdentity]:
        try:
            with session_scope(self._session_factory) as db:
                rows = db.execute(select(BotLoginInfo)).scalars().all()
                return {row.bot_id: self._decode(row) for row in rows}
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read bot credentials: {e}") from e

    def _write(self, mapping: dict[str, BotIdentity]) -> None:
        try:
            with session_scope(self._session_factory) as db:
                rows = {
                    row.bot_id: row
                    for row in db.execute(select(BotLoginInfo)).scalars().all()
                }
                for bot_id, row in rows.items():
                    if bot_id not in mapping:
                        db.delete(row)
                for bot_id, identity in mapping.items():
                    row = rows.get(bot_id)
                    if row is None:
                        row = BotLoginInfo(bot_id=bot_id, created_at=utc_now_iso())
                        self._apply(row, identity, tokens_changed=True)
                        db.add(row)
                        continue
                    current = self._decode(row)
                    if current == identity:
                        continue
                    tokens_changed = (
                        current.access_token != identity.access_token
                        or current.refresh_token != identity.refresh_token
                    )
                    self._apply(row, identity, tokens_changed)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to write bot credentials: {e}") from e
