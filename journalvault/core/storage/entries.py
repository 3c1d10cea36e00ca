"""
Entry Store
===========

Per-entry encrypted files plus the decrypted in-memory index.

File Format (entries/<id>.json):
    {
      "format_version": 1,
      "id": "<uuid4>",
      "created_at": "<iso-8601>",
      "updated_at": "<iso-8601>",
      "folder": null | "<label>",
      "algorithm": "aes256_gcm" | "chacha20_poly1305",
      "title":   {"nonce": "<b64>", "ciphertext": "<b64>"},
      "content": {"nonce": "<b64>", "ciphertext": "<b64>"}
    }

Title and content are encrypted independently, each with its own fresh
nonce and with ``journalvault:entry:<id>:<field>`` as associated data, so a
ciphertext cannot be moved to another field or another entry.

The index is rebuilt on unlock by decrypting only titles, and updated in
place by create/update/delete after the file write has committed.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Final, Mapping, Optional

from journalvault.core.crypto.aead import SealedField, TextEncryption, get_cipher
from journalvault.core.errors import (
    AuthenticationFailure,
    EntryNotFound,
    VaultCorrupt,
    VaultIOError,
)
from journalvault.core.session.session_control import KeySnapshot, Session
from journalvault.core.storage.atomic import StagedWrites, atomic_write_json, remove_stale_temp_files
from journalvault.utils.validators import (
    ValidationError,
    validate_entry_id,
    validate_optional_string,
    validate_string_safe,
)

ENTRIES_DIRNAME: Final[str] = "entries"
ENTRY_SUFFIX: Final[str] = ".json"
ENTRY_FORMAT_VERSION: Final[int] = 1
DEFAULT_TITLE: Final[str] = "Untitled entry"
MAX_TITLE_LENGTH: Final[int] = 1000
MAX_FOLDER_LENGTH: Final[int] = 255

_log = logging.getLogger("journalvault.entries")


def entry_aad(entry_id: str, field_name: str) -> bytes:
    return f"journalvault:entry:{entry_id}:{field_name}".encode("utf-8")


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class EntryIndexRecord:
    """Decrypted projection of one entry kept in memory while unlocked."""

    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    folder: Optional[str]
    algorithm: TextEncryption

    def __repr__(self) -> str:
        """Safe representation (no title)."""
        return f"EntryIndexRecord(id={self.id!r}, updated_at={self.updated_at.isoformat()})"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "folder": self.folder,
            "algorithm": self.algorithm.value,
        }


@dataclass(frozen=True)
class Entry:
    """A decrypted journal entry."""

    id: str
    title: str
    content: str
    created_at: datetime
    updated_at: datetime
    folder: Optional[str] = None
    algorithm: TextEncryption = TextEncryption.AES256_GCM

    def __repr__(self) -> str:
        """Safe representation (no title or content)."""
        return f"Entry(id={self.id!r}, content_len={len(self.content)})"

    def summary(self) -> EntryIndexRecord:
        return EntryIndexRecord(
            id=self.id,
            title=self.title,
            created_at=self.created_at,
            updated_at=self.updated_at,
            folder=self.folder,
            algorithm=self.algorithm,
        )

    def to_dict(self) -> dict[str, Any]:
        return {**self.summary().to_dict(), "content": self.content}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Entry":
        """
        Build an entry from caller input (e.g. an update request).

        Raises:
            ValidationError: If required fields are missing or malformed
        """
        if not isinstance(data, Mapping):
            raise ValidationError("Entry must be an object")
        try:
            now = datetime.now(timezone.utc)
            created_raw = data.get("created_at")
            updated_raw = data.get("updated_at")
            return cls(
                id=validate_entry_id(data["id"]),
                title=validate_optional_string(data.get("title"), "title") or "",
                content=validate_optional_string(data.get("content"), "content") or "",
                created_at=_parse_timestamp(created_raw) if created_raw else now,
                updated_at=_parse_timestamp(updated_raw) if updated_raw else now,
                folder=validate_optional_string(data.get("folder"), "folder") or None,
                algorithm=TextEncryption.parse(data.get("algorithm") or TextEncryption.AES256_GCM),
            )
        except KeyError as e:
            raise ValidationError(f"Entry is missing field {e.args[0]!r}") from e
        except ValueError as e:
            if isinstance(e, ValidationError):
                raise
            raise ValidationError(f"Invalid entry: {e}") from e


@dataclass(frozen=True)
class StoredEntry:
    """On-disk form of an entry (nothing here is plaintext except metadata)."""

    id: str
    created_at: datetime
    updated_at: datetime
    folder: Optional[str]
    algorithm: TextEncryption
    title: SealedField
    content: SealedField

    def to_dict(self) -> dict[str, Any]:
        return {
            "format_version": ENTRY_FORMAT_VERSION,
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "folder": self.folder,
            "algorithm": self.algorithm.value,
            "title": self.title.to_dict(include_algorithm=False),
            "content": self.content.to_dict(include_algorithm=False),
        }

    @classmethod
    def from_dict(cls, data: Any, expected_id: str) -> "StoredEntry":
        """
        Parse an entry file.

        Raises:
            VaultCorrupt: On any structural error or id mismatch
        """
        if not isinstance(data, dict):
            raise VaultCorrupt("Entry file must be a JSON object")
        try:
            if int(data["format_version"]) != ENTRY_FORMAT_VERSION:
                raise VaultCorrupt(f"Unsupported entry format version: {data['format_version']}")
            entry_id = str(data["id"])
            if entry_id != expected_id:
                raise VaultCorrupt("Entry id does not match its file name")
            algorithm = TextEncryption.parse(data["algorithm"])
            folder = data.get("folder")
            return cls(
                id=entry_id,
                created_at=_parse_timestamp(data["created_at"]),
                updated_at=_parse_timestamp(data["updated_at"]),
                folder=str(folder) if folder is not None else None,
                algorithm=algorithm,
                title=SealedField.from_dict(data["title"], algorithm=algorithm),
                content=SealedField.from_dict(data["content"], algorithm=algorithm),
            )
        except VaultCorrupt:
            raise
        except (KeyError, TypeError, ValueError) as e:
            raise VaultCorrupt(f"Malformed entry file: {e}") from e


def entries_dir(root: Path) -> Path:
    return root / ENTRIES_DIRNAME


def _entry_files(directory: Path) -> list[tuple[str, Path]]:
    """(id, path) for every well-named entry file, sorted by id."""
    if not directory.is_dir():
        return []
    found = []
    for path in directory.iterdir():
        if not path.is_file() or path.suffix != ENTRY_SUFFIX:
            continue
        try:
            entry_id = validate_entry_id(path.stem)
        except ValidationError:
            continue
        if path.stem == entry_id:
            found.append((entry_id, path))
    return sorted(found)


def _read_stored(path: Path, entry_id: str) -> StoredEntry:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise EntryNotFound(f"Entry {entry_id} not found", subject=entry_id) from e
    except OSError as e:
        raise VaultIOError(f"Failed to read entry {entry_id}: {e.strerror or e}") from e
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise VaultCorrupt(f"Entry {entry_id} is not valid JSON: {e.msg}", subject=entry_id) from e
    return StoredEntry.from_dict(data, entry_id)


def first_sealed_title(root: Path) -> Optional[tuple[SealedField, bytes]]:
    """
    Sealed title and AAD of the first readable entry, for key validation.

    Returns None if the vault has no parsable entry files.
    """
    for entry_id, path in _entry_files(entries_dir(root)):
        try:
            stored = _read_stored(path, entry_id)
        except (VaultCorrupt, EntryNotFound):
            continue
        return stored.title, entry_aad(entry_id, "title")
    return None


class EntryStore:
    """
    Encrypted entry persistence bound to one session.

    Usage:
        store = EntryStore(session)
        entry = store.create("Day one", "Dear diary")
        store.update(replace(entry, content="Edited"))
        store.delete(entry.id)

    Security Notes:
        - Every write uses fresh nonces, even for unchanged text
        - LockedError is raised before any I/O once the session is closed
    """

    def __init__(self, session: Session) -> None:
        self._session = session
        self._dir = entries_dir(session.root)

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, entry_id: str) -> Path:
        return self._dir / f"{entry_id}{ENTRY_SUFFIX}"

    # Reads -------------------------------------------------------------------

    def list(self) -> list[EntryIndexRecord]:
        """Index records, most recently updated first (ties by id)."""
        records = sorted(self._session.index_records(), key=lambda r: r.id)
        records.sort(key=lambda r: r.updated_at, reverse=True)
        return records

    def search(self, query: str) -> list[EntryIndexRecord]:
        """Case-insensitive match on titles and folders, from the index only."""
        needle = query.strip().casefold()
        records = self.list()
        if not needle:
            return records
        return [
            r for r in records
            if needle in r.title.casefold() or (r.folder and needle in r.folder.casefold())
        ]

    def load(self, entry_id: str) -> Entry:
        """
        Decrypt one entry.

        Raises:
            LockedError: If the session is closed
            EntryNotFound: If no such entry exists
            AuthenticationFailure: If either field fails authentication
            VaultCorrupt: If the file is malformed
        """
        snapshot = self._session.snapshot()
        entry_id = validate_entry_id(entry_id)
        stored = _read_stored(self._path(entry_id), entry_id)
        entry = self._open(stored, snapshot)
        self._session.ensure_current()
        return entry

    def _open(self, stored: StoredEntry, snapshot: KeySnapshot) -> Entry:
        cipher = get_cipher(stored.algorithm)
        try:
            title = cipher.decrypt(stored.title, snapshot.key, aad=entry_aad(stored.id, "title"))
            content = cipher.decrypt(stored.content, snapshot.key, aad=entry_aad(stored.id, "content"))
        except AuthenticationFailure as e:
            _log.warning("Entry %s failed authentication", stored.id)
            raise AuthenticationFailure(f"Entry {stored.id} failed authentication", subject=stored.id) from e

        try:
            return Entry(
                id=stored.id,
                title=title.decode("utf-8"),
                content=content.decode("utf-8"),
                created_at=stored.created_at,
                updated_at=stored.updated_at,
                folder=stored.folder,
                algorithm=stored.algorithm,
            )
        except UnicodeDecodeError as e:
            raise VaultCorrupt(f"Entry {stored.id} is not valid UTF-8", subject=stored.id) from e

    def _open_title(self, stored: StoredEntry, snapshot: KeySnapshot) -> EntryIndexRecord:
        cipher = get_cipher(stored.algorithm)
        try:
            title = cipher.decrypt(stored.title, snapshot.key, aad=entry_aad(stored.id, "title"))
        except AuthenticationFailure as e:
            raise AuthenticationFailure(f"Entry {stored.id} failed authentication", subject=stored.id) from e
        try:
            decoded = title.decode("utf-8")
        except UnicodeDecodeError as e:
            raise VaultCorrupt(f"Entry {stored.id} title is not valid UTF-8", subject=stored.id) from e
        return EntryIndexRecord(
            id=stored.id,
            title=decoded,
            created_at=stored.created_at,
            updated_at=stored.updated_at,
            folder=stored.folder,
            algorithm=stored.algorithm,
        )

    def rebuild_index(self) -> list[str]:
        """
        Rebuild the index from disk, decrypting titles only.

        Entry files that cannot be parsed or authenticated are left out of
        the index and reported.

        Returns:
            Ids of damaged entries, sorted
        """
        snapshot = self._session.snapshot()
        removed = remove_stale_temp_files(self._dir)
        if removed:
            _log.info("Removed %d stale temporary entry file(s)", removed)

        records: list[EntryIndexRecord] = []
        damaged: list[str] = []
        for entry_id, path in _entry_files(self._dir):
            try:
                records.append(self._open_title(_read_stored(path, entry_id), snapshot))
            except (VaultCorrupt, AuthenticationFailure) as e:
                _log.warning("Skipping unreadable entry %s: %s", entry_id, e.code)
                damaged.append(entry_id)

        self._session.index_replace(records)
        _log.debug("Index rebuilt with %d entries", len(records))
        return damaged

    def load_all(self) -> list[Entry]:
        """
        Decrypt every entry file on disk, newest first.

        Unlike ``list`` this does not trust the index, so an entry left out
        of it as damaged makes the whole call fail.

        Raises:
            LockedError: If the session is closed
            AuthenticationFailure: If any entry fails authentication
            VaultCorrupt: If any entry file is malformed
        """
        self._session.ensure_current()
        entries = [self.load(entry_id) for entry_id, _ in _entry_files(self._dir)]
        entries.sort(key=lambda e: e.updated_at, reverse=True)
        return entries

    def stage_rekey(self, batch: StagedWrites, old_key: bytes, new_key: bytes) -> int:
        """
        Stage every entry file re-encrypted under ``new_key``.

        Each entry keeps its algorithm and timestamps and gets fresh nonces.
        Called with the session's mutation lock held.

        Returns:
            Number of entries staged

        Raises:
            AuthenticationFailure: If an entry does not open under ``old_key``
            VaultCorrupt: If an entry file is malformed
        """
        count = 0
        for entry_id, path in _entry_files(self._dir):
            stored = _read_stored(path, entry_id)
            opened = self._open(stored, KeySnapshot(key=old_key, algorithm=stored.algorithm))
            sealed_title, sealed_content = self._seal(
                entry_id,
                opened.title,
                opened.content,
                KeySnapshot(key=new_key, algorithm=stored.algorithm),
            )
            rekeyed = StoredEntry(
                id=entry_id,
                created_at=stored.created_at,
                updated_at=stored.updated_at,
                folder=stored.folder,
                algorithm=stored.algorithm,
                title=sealed_title,
                content=sealed_content,
            )
            batch.stage_json(path, rekeyed.to_dict())
            count += 1
        return count

    # Mutations ---------------------------------------------------------------

    def _seal(self, entry_id: str, title: str, content: str, snapshot: KeySnapshot) -> tuple[SealedField, SealedField]:
        cipher = get_cipher(snapshot.algorithm)
        sealed_title = cipher.encrypt(title.encode("utf-8"), snapshot.key, aad=entry_aad(entry_id, "title"))
        sealed_content = cipher.encrypt(content.encode("utf-8"), snapshot.key, aad=entry_aad(entry_id, "content"))
        return sealed_title, sealed_content

    def _write(self, stored: StoredEntry) -> None:
        atomic_write_json(self._path(stored.id), stored.to_dict(), fsync=self._session.fsync)

    @staticmethod
    def _clean_title(title: Any) -> str:
        title = validate_optional_string(title, "title")
        return validate_string_safe(
            title if title and title.strip() else DEFAULT_TITLE,
            max_length=MAX_TITLE_LENGTH,
            field_name="title",
        )

    @staticmethod
    def _clean_folder(folder: Any) -> Optional[str]:
        folder = validate_optional_string(folder, "folder")
        if folder is None:
            return None
        folder = validate_string_safe(
            folder.strip(), max_length=MAX_FOLDER_LENGTH, allow_empty=True, field_name="folder"
        )
        return folder or None

    def create(
        self,
        title: Optional[str] = None,
        content: Optional[str] = None,
        folder: Optional[str] = None,
    ) -> Entry:
        """
        Create and persist a new entry.

        Raises:
            LockedError: If the session is closed
            VaultIOError: If the file cannot be written
        """
        title = self._clean_title(title)
        content = validate_optional_string(content, "content") or ""
        folder = self._clean_folder(folder)

        with self._session.mutating() as snapshot:
            entry_id = str(uuid.uuid4())
            now = datetime.now(timezone.utc)
            sealed_title, sealed_content = self._seal(entry_id, title, content, snapshot)
            self._write(StoredEntry(
                id=entry_id,
                created_at=now,
                updated_at=now,
                folder=folder,
                algorithm=snapshot.algorithm,
                title=sealed_title,
                content=sealed_content,
            ))
            entry = Entry(
                id=entry_id,
                title=title,
                content=content,
                created_at=now,
                updated_at=now,
                folder=folder,
                algorithm=snapshot.algorithm,
            )
            self._session.index_put(entry.summary())

        _log.info("Created entry %s", entry_id)
        return entry

    def update(self, entry: Entry) -> Entry:
        """
        Re-encrypt and persist an existing entry.

        ``created_at`` is taken from disk; ``updated_at`` always moves
        forward. The entry is re-encrypted under the session's current
        algorithm.

        Raises:
            LockedError: If the session is closed
            EntryNotFound: If the entry no longer exists
            VaultCorrupt: If the existing file is malformed
            VaultIOError: If the file cannot be written
        """
        entry_id = validate_entry_id(entry.id)
        title = self._clean_title(entry.title)
        content = validate_optional_string(entry.content, "content") or ""
        folder = self._clean_folder(entry.folder)

        with self._session.mutating() as snapshot:
            previous = _read_stored(self._path(entry_id), entry_id)
            now = datetime.now(timezone.utc)
            if now <= previous.updated_at:
                now = previous.updated_at + timedelta(microseconds=1)

            sealed_title, sealed_content = self._seal(entry_id, title, content, snapshot)
            self._write(StoredEntry(
                id=entry_id,
                created_at=previous.created_at,
                updated_at=now,
                folder=folder,
                algorithm=snapshot.algorithm,
                title=sealed_title,
                content=sealed_content,
            ))
            updated = Entry(
                id=entry_id,
                title=title,
                content=content,
                created_at=previous.created_at,
                updated_at=now,
                folder=folder,
                algorithm=snapshot.algorithm,
            )
            self._session.index_put(updated.summary())

        _log.info("Updated entry %s", entry_id)
        return updated

    def delete(self, entry_id: str) -> None:
        """
        Delete an entry file and its index record.

        Raises:
            LockedError: If the session is closed
            EntryNotFound: If no such entry exists
            VaultIOError: If the file cannot be removed
        """
        entry_id = validate_entry_id(entry_id)
        with self._session.mutating():
            path = self._path(entry_id)
            try:
                path.unlink()
            except FileNotFoundError as e:
                self._session.index_remove(entry_id)
                raise EntryNotFound(f"Entry {entry_id} not found", subject=entry_id) from e
            except OSError as e:
                raise VaultIOError(f"Failed to delete entry {entry_id}: {e.strerror or e}") from e
            self._session.index_remove(entry_id)

        _log.info("Deleted entry %s", entry_id)
