"""
Session Control
===============

Vault unlock/lock lifecycle.

A ``Session`` is the explicit handle for one unlocked vault: it owns the
derived key, the algorithm for new writes, the decrypted entry index and the
image cache. ``SessionManager.unlock`` creates it, ``SessionManager.lock``
destroys it (key zeroed, index and cache cleared).

Concurrency:
    - Mutations run under ``Session.mutating()``, one at a time per vault
    - Reads take a ``KeySnapshot`` and call ``ensure_current`` before
      handing back plaintext, so a lock racing a read yields LockedError
      instead of stale plaintext
    - ``lock`` waits for an in-flight mutation to finish its rename
    - At most one unlocked Session per vault root per process; an unlock
      reserves its root before deriving the key, so two concurrent unlocks
      of the same root cannot both succeed
    - Decrypted images enter the cache only while the session is open
"""

from __future__ import annotations

import atexit
import hmac
import logging
import threading
import weakref
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Final, Iterator, Optional

from journalvault.core.config import VaultConfig
from journalvault.core.crypto.aead import SealedField, TextEncryption, get_cipher, supported_algorithms
from journalvault.core.crypto.kdf import derive_key, generate_salt
from journalvault.core.errors import AuthenticationFailure, LockedError, VaultBusy, WrongPassphrase
from journalvault.core.memory import SecureBuffer, ZeroizeContext
from journalvault.core.storage.atomic import StagedWrites
from journalvault.core.storage.metadata import VaultMetadata, VaultMetadataStore

if TYPE_CHECKING:
    from journalvault.core.storage.entries import EntryIndexRecord

CANARY_PLAINTEXT: Final[bytes] = b"journalvault-key-canary-v1"
CANARY_AAD: Final[bytes] = b"journalvault:canary"

_REGISTRY_LOCK = threading.Lock()
_ACTIVE_SESSIONS: "weakref.WeakValueDictionary[Path, Session]" = weakref.WeakValueDictionary()
# Roots with an unlock in progress, reserved before key derivation starts
_CLAIMED_ROOTS: set[Path] = set()


def _claim_root(root: Path) -> None:
    with _REGISTRY_LOCK:
        holder = _ACTIVE_SESSIONS.get(root)
        if root in _CLAIMED_ROOTS or (holder is not None and holder.is_unlocked):
            raise VaultBusy(f"Vault at {root} is already unlocked")
        _CLAIMED_ROOTS.add(root)


def _register_session(root: Path, session: Optional["Session"]) -> None:
    """Release the claim on ``root``, publishing ``session`` if given."""
    with _REGISTRY_LOCK:
        if session is not None:
            _ACTIVE_SESSIONS[root] = session
        _CLAIMED_ROOTS.discard(root)


@dataclass(frozen=True, slots=True)
class KeySnapshot:
    """Key and write algorithm captured atomically at the start of an operation."""

    key: bytes
    algorithm: TextEncryption

    def __repr__(self) -> str:
        """Safe representation without key material."""
        return f"KeySnapshot(algorithm={self.algorithm.value})"


class ImageCache:
    """
    Session-scoped LRU of decrypted image bytes, bounded by total size.

    Never persisted and never shared between sessions.
    """

    def __init__(self, max_bytes: int) -> None:
        self._max_bytes = max_bytes
        self._items: OrderedDict[str, bytes] = OrderedDict()
        self._size = 0
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            data = self._items.get(key)
            if data is not None:
                self._items.move_to_end(key)
            return data

    def put(self, key: str, data: bytes) -> None:
        if len(data) > self._max_bytes:
            return
        with self._lock:
            old = self._items.pop(key, None)
            if old is not None:
                self._size -= len(old)
            self._items[key] = data
            self._size += len(data)
            while self._size > self._max_bytes:
                _, evicted = self._items.popitem(last=False)
                self._size -= len(evicted)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
            self._size = 0

    @property
    def size_bytes(self) -> int:
        return self._size

    def __len__(self) -> int:
        return len(self._items)


class Session:
    """
    One unlocked vault.

    Created only by ``SessionManager.unlock``. After ``close`` every
    accessor raises LockedError.
    """

    def __init__(
        self,
        root: Path,
        metadata: VaultMetadata,
        key: SecureBuffer,
        algorithm: TextEncryption,
        image_cache_max_bytes: int,
        fsync: bool = True,
    ) -> None:
        self._root = root
        self._metadata = metadata
        self._key = key
        self._algorithm = algorithm
        self._fsync = fsync
        self._unlocked = True
        self._state_lock = threading.RLock()
        self._mutation_lock = threading.Lock()
        self._index: dict[str, EntryIndexRecord] = {}
        self.image_cache = ImageCache(image_cache_max_bytes)

    def __repr__(self) -> str:
        state = "unlocked" if self._unlocked else "locked"
        return f"Session(root={str(self._root)!r}, {state})"

    @property
    def root(self) -> Path:
        return self._root

    @property
    def fsync(self) -> bool:
        return self._fsync

    @property
    def is_unlocked(self) -> bool:
        return self._unlocked

    @property
    def metadata(self) -> VaultMetadata:
        with self._state_lock:
            self._require_unlocked()
            return self._metadata

    @property
    def text_encryption(self) -> TextEncryption:
        with self._state_lock:
            self._require_unlocked()
            return self._algorithm

    def _require_unlocked(self) -> None:
        if not self._unlocked:
            raise LockedError("Vault is locked")

    def snapshot(self) -> KeySnapshot:
        """
        Capture key and write algorithm atomically.

        Raises:
            LockedError: If the session has been closed
        """
        with self._state_lock:
            self._require_unlocked()
            return KeySnapshot(key=self._key.data, algorithm=self._algorithm)

    def ensure_current(self) -> None:
        """Re-check immediately before returning decrypted data."""
        with self._state_lock:
            self._require_unlocked()

    @contextmanager
    def mutating(self) -> Iterator[KeySnapshot]:
        """
        Serialize a mutation against this vault.

        Raises:
            LockedError: If the session is closed (checked after the
                mutation lock is acquired, before any I/O)
        """
        with self._mutation_lock:
            yield self.snapshot()

    def set_algorithm(self, algorithm: TextEncryption, metadata: VaultMetadata) -> None:
        with self._state_lock:
            self._require_unlocked()
            self._algorithm = algorithm
            self._metadata = metadata

    def set_metadata(self, metadata: VaultMetadata) -> None:
        with self._state_lock:
            self._require_unlocked()
            self._metadata = metadata

    def replace_key(self, key: SecureBuffer, metadata: VaultMetadata) -> None:
        """Install the key of a changed passphrase and wipe the previous one."""
        with self._state_lock:
            if not self._unlocked:
                key.wipe()
                raise LockedError("Vault is locked")
            previous, self._key = self._key, key
            self._metadata = metadata
            previous.wipe()

    def cache_image(self, reference: str, data: bytes) -> None:
        """
        Cache decrypted image bytes.

        Checked and stored under the state lock, so nothing is cached
        into a session that ``close`` has already cleared.

        Raises:
            LockedError: If the session has been closed
        """
        with self._state_lock:
            self._require_unlocked()
            self.image_cache.put(reference, data)

    # Entry index -----------------------------------------------------------

    def index_records(self) -> list["EntryIndexRecord"]:
        with self._state_lock:
            self._require_unlocked()
            return list(self._index.values())

    def index_get(self, entry_id: str) -> Optional["EntryIndexRecord"]:
        with self._state_lock:
            self._require_unlocked()
            return self._index.get(entry_id)

    def index_put(self, record: "EntryIndexRecord") -> None:
        with self._state_lock:
            self._require_unlocked()
            self._index[record.id] = record

    def index_remove(self, entry_id: str) -> None:
        with self._state_lock:
            self._require_unlocked()
            self._index.pop(entry_id, None)

    def index_replace(self, records: list["EntryIndexRecord"]) -> None:
        with self._state_lock:
            self._require_unlocked()
            self._index = {record.id: record for record in records}

    # Lifecycle ---------------------------------------------------------------

    def close(self) -> None:
        """
        Zero the key and drop all decrypted state. Idempotent.

        Waits for an in-flight mutation so its rename and index update
        complete together.
        """
        with self._mutation_lock, self._state_lock:
            if not self._unlocked:
                return
            self._unlocked = False
            self._key.wipe()
            self._index.clear()
            self.image_cache.clear()


@dataclass
class UnlockResult:
    """Outcome of a successful unlock."""

    session: Session
    entries: list["EntryIndexRecord"]
    created: bool
    last_saved: Optional[datetime]
    vault_root: Path
    text_encryption: TextEncryption
    available_text_encryptions: list[TextEncryption]
    damaged_entries: list[str] = field(default_factory=list)


class SessionManager:
    """
    Locked/Unlocked state machine for one caller.

    Usage:
        manager = SessionManager(config)
        result = manager.unlock("passphrase", Path("/path/to/vault"))
        entries = EntryStore(manager.session).list()
        manager.lock()

    Security Notes:
        - A wrong passphrase raises WrongPassphrase and writes nothing
        - The derived key lives only in a SecureBuffer owned by the Session
    """

    def __init__(
        self,
        config: Optional[VaultConfig] = None,
        metadata_store: Optional[VaultMetadataStore] = None,
    ) -> None:
        self._config = config or VaultConfig.get_instance()
        self._metadata_store = metadata_store or VaultMetadataStore(
            default_params=self._config.kdf.params(),
            salt_length=self._config.kdf.salt_length,
            fsync=self._config.storage.fsync,
        )
        self._session: Optional[Session] = None
        self._lock = threading.Lock()
        self._log = logging.getLogger("journalvault.session")

    @property
    def config(self) -> VaultConfig:
        return self._config

    @property
    def metadata_store(self) -> VaultMetadataStore:
        return self._metadata_store

    @property
    def is_unlocked(self) -> bool:
        session = self._session
        return session is not None and session.is_unlocked

    @property
    def session(self) -> Session:
        """
        The active session.

        Raises:
            LockedError: If no vault is unlocked
        """
        session = self._session
        if session is None or not session.is_unlocked:
            raise LockedError("Vault is locked")
        return session

    def unlock(
        self,
        passphrase: str,
        root: Path,
        preferred_algorithm: Optional[TextEncryption] = None,
    ) -> UnlockResult:
        """
        Unlock (or create) the vault at ``root``.

        Raises:
            WrongPassphrase: If the derived key fails validation
            VaultBusy: If another manager holds this root unlocked or is
                unlocking it
            VaultCorrupt: If vault files are malformed
            VaultIOError: On filesystem failure
        """
        root = Path(root).resolve()
        with self._lock:
            self._lock_current()
            _claim_root(root)
            session: Optional[Session] = None
            try:
                session, created, metadata, entries, damaged = self._open(
                    passphrase, root, preferred_algorithm
                )
            finally:
                _register_session(root, session)
            self._session = session

        self._log.info(
            "Vault unlocked at %s (created=%s, entries=%d)", root, created, len(entries)
        )
        return UnlockResult(
            session=session,
            entries=entries,
            created=created,
            last_saved=metadata.updated_at,
            vault_root=root,
            text_encryption=session.text_encryption,
            available_text_encryptions=list(metadata.available_text_encryptions),
            damaged_entries=damaged,
        )

    def _open(
        self,
        passphrase: str,
        root: Path,
        preferred_algorithm: Optional[TextEncryption],
    ) -> tuple[Session, bool, VaultMetadata, list["EntryIndexRecord"], list[str]]:
        """Create or load, validate the key and build the index. Caller holds the root claim."""
        from journalvault.core.storage.entries import EntryStore

        store = self._metadata_store
        created = not store.exists(root)
        if created:
            algorithm = preferred_algorithm or self._config.storage.default_text_encryption
            metadata = store.create(root, algorithm)
        else:
            metadata = store.load(root)

        derived = derive_key(passphrase, metadata.salt, metadata.kdf)
        with ZeroizeContext(derived):
            self._validate_key(root, bytes(derived), metadata)
            key = SecureBuffer.from_bytes(derived)

        session = Session(
            root=root,
            metadata=metadata,
            key=key,
            algorithm=preferred_algorithm or metadata.text_encryption,
            image_cache_max_bytes=self._config.storage.image_cache_max_bytes,
            fsync=self._config.storage.fsync,
        )
        try:
            metadata = store.update(
                root, metadata, append_algorithms=tuple(supported_algorithms())
            )
            session.set_metadata(metadata)
            damaged = EntryStore(session).rebuild_index()
            entries = EntryStore(session).list()
        except BaseException:
            session.close()
            raise
        return session, created, metadata, entries, damaged

    def _validate_key(self, root: Path, key: bytes, metadata: VaultMetadata) -> None:
        """
        Prove the derived key is the vault key.

        Uses the canary when present, otherwise the title of an existing
        entry. A vault with neither (fresh, or interrupted right after
        creation) gets a canary under this key.
        """
        from journalvault.core.storage.entries import first_sealed_title

        canary = self._metadata_store.load_canary(root)
        if canary is not None:
            try:
                plaintext = get_cipher(canary.algorithm).decrypt(canary, key, aad=CANARY_AAD)
            except AuthenticationFailure as e:
                self._log.warning("Unlock rejected for %s: wrong passphrase", root)
                raise WrongPassphrase("Wrong passphrase") from e
            if not hmac.compare_digest(plaintext, CANARY_PLAINTEXT):
                raise WrongPassphrase("Wrong passphrase")
            return

        fallback = first_sealed_title(root)
        if fallback is not None:
            sealed, aad = fallback
            try:
                get_cipher(sealed.algorithm).decrypt(sealed, key, aad=aad)
            except AuthenticationFailure as e:
                self._log.warning("Unlock rejected for %s: wrong passphrase", root)
                raise WrongPassphrase("Wrong passphrase") from e

        self._write_canary(root, key, metadata.text_encryption)

    def _write_canary(self, root: Path, key: bytes, algorithm: TextEncryption) -> None:
        sealed: SealedField = get_cipher(algorithm).encrypt(CANARY_PLAINTEXT, key, aad=CANARY_AAD)
        self._metadata_store.write_canary(root, sealed)
        self._log.debug("Wrote key canary for %s", root)

    def set_text_encryption(self, algorithm: TextEncryption) -> VaultMetadata:
        """
        Change the default algorithm for new writes.

        Existing entries keep the algorithm they were written with.

        Raises:
            LockedError: If no vault is unlocked
        """
        session = self.session
        with session.mutating():
            metadata = self._metadata_store.update(
                session.root, session.metadata, text_encryption=algorithm
            )
            session.set_algorithm(algorithm, metadata)
        self._log.info("Default text encryption set to %s", algorithm.value)
        return metadata

    def change_passphrase(self, old_passphrase: str, new_passphrase: str) -> VaultMetadata:
        """
        Re-encrypt the unlocked vault under a new passphrase.

        A new salt is generated and the KDF cost parameters are kept. Every
        entry, every image and the canary are re-encrypted into temp files
        first; only when all of them are ready are they renamed into place,
        ``vault.json`` last. A failure while re-encrypting leaves the vault
        exactly as it was.

        Raises:
            LockedError: If no vault is unlocked
            WrongPassphrase: If ``old_passphrase`` is not the vault passphrase
            AuthenticationFailure: If a damaged entry or image cannot be opened
            VaultCorrupt: If a vault file is malformed
            VaultIOError: On filesystem failure
        """
        from journalvault.core.storage.entries import EntryStore
        from journalvault.core.storage.images import ImageStore

        session = self.session
        with session.mutating() as snapshot:
            metadata = session.metadata
            current = derive_key(old_passphrase, metadata.salt, metadata.kdf)
            with ZeroizeContext(current):
                if not hmac.compare_digest(bytes(current), snapshot.key):
                    self._log.warning("Passphrase change rejected for %s: wrong passphrase", session.root)
                    raise WrongPassphrase("Wrong passphrase")

            salt = generate_salt(self._metadata_store.salt_length)
            derived = derive_key(new_passphrase, salt, metadata.kdf)
            with ZeroizeContext(derived):
                new_key = bytes(derived)
                canary = get_cipher(metadata.text_encryption).encrypt(
                    CANARY_PLAINTEXT, new_key, aad=CANARY_AAD
                )
                with StagedWrites(fsync=session.fsync) as batch:
                    entries = EntryStore(session).stage_rekey(batch, snapshot.key, new_key)
                    images = ImageStore(session).stage_rekey(batch, snapshot.key, new_key)
                    updated = self._metadata_store.stage_rekey(
                        batch, session.root, metadata, salt, canary
                    )
                    batch.commit()
                session.replace_key(SecureBuffer.from_bytes(derived), updated)

        self._log.info(
            "Passphrase changed for %s (%d entries, %d images re-encrypted)",
            session.root, entries, images,
        )
        return updated

    def lock(self) -> None:
        """Lock the vault. Idempotent from Locked."""
        with self._lock:
            self._lock_current()

    def _lock_current(self) -> None:
        session = self._session
        if session is None:
            return
        self._session = None
        session.close()
        with _REGISTRY_LOCK:
            if _ACTIVE_SESSIONS.get(session.root) is session:
                del _ACTIVE_SESSIONS[session.root]
        self._log.info("Vault locked at %s", session.root)


def lock_all_sessions() -> None:
    """Close every live session in this process (key material zeroed)."""
    with _REGISTRY_LOCK:
        sessions = list(_ACTIVE_SESSIONS.values())
        _ACTIVE_SESSIONS.clear()
    for session in sessions:
        session.close()


atexit.register(lock_all_sessions)
