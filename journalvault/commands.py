"""
JournalVault Command Surface
============================

The operations a user-interface shell calls. Inputs and outputs are plain
JSON-friendly values (dicts, lists, strings, bytes); errors are the typed
exceptions from ``journalvault.core.errors`` plus ``ValidationError`` for
bad input.

Usage:
    commands = VaultCommands()
    info = commands.unlock("correct horse battery staple", "/path/to/vault")
    entry = commands.create_entry(title="Day one")
    commands.lock()
"""

from __future__ import annotations

import base64
import binascii
import logging
from pathlib import Path
from typing import Any, Mapping, Optional

from journalvault.core.config import VaultConfig
from journalvault.core.crypto.aead import TextEncryption
from journalvault.core.session.session_control import SessionManager
from journalvault.core.storage.entries import Entry, EntryStore
from journalvault.core.storage.export import ExportEngine
from journalvault.core.storage.images import ImageStore
from journalvault.utils.validators import (
    ValidationError,
    validate_optional_string,
    validate_string_safe,
    validate_vault_directory,
)

MAX_PASSPHRASE_LENGTH = 4096
MIN_NEW_PASSPHRASE_LENGTH = 6


def _parse_algorithm(value: Any) -> TextEncryption:
    try:
        return TextEncryption.parse(value)
    except ValueError as e:
        raise ValidationError(str(e)) from e


def _image_bytes(data: Any) -> bytes:
    """Accept raw bytes, a list of byte values or a base64 string."""
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    if isinstance(data, str):
        try:
            return base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValidationError("Image data is not valid base64") from e
    if isinstance(data, list):
        try:
            return bytes(data)
        except (TypeError, ValueError) as e:
            raise ValidationError("Image data must be a list of byte values") from e
    raise ValidationError("Image data is missing or has an unsupported type")


class VaultCommands:
    """
    Facade over the session manager and the stores of the active session.

    One instance serves one caller; it holds at most one unlocked vault.
    """

    def __init__(self, config: Optional[VaultConfig] = None) -> None:
        self._config = config or VaultConfig.get_instance()
        self._manager = SessionManager(self._config)
        self._log = logging.getLogger("journalvault.commands")

    @property
    def manager(self) -> SessionManager:
        return self._manager

    def _entries(self) -> EntryStore:
        return EntryStore(self._manager.session)

    def _images(self) -> ImageStore:
        return ImageStore(self._manager.session)

    def _vault_info(self) -> dict[str, Any]:
        session = self._manager.session
        metadata = session.metadata
        return {
            "vault_root": str(session.root),
            "text_encryption": session.text_encryption.value,
            "available_text_encryptions": [a.value for a in metadata.available_text_encryptions],
            "last_saved": metadata.updated_at.isoformat(),
        }

    # Lifecycle ---------------------------------------------------------------

    def unlock(
        self,
        passphrase: str,
        directory: Optional[str | Path] = None,
        algorithm: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Unlock the vault in ``directory`` (created on first use).

        Raises:
            ValidationError: On an empty passphrase or unusable directory
            WrongPassphrase: If the passphrase does not match
        """
        validate_string_safe(passphrase, min_length=1, max_length=MAX_PASSPHRASE_LENGTH, field_name="passphrase")
        root = validate_vault_directory(directory, self._config.paths.data_dir)
        preferred = _parse_algorithm(algorithm) if algorithm else None

        result = self._manager.unlock(passphrase, root, preferred_algorithm=preferred)
        return {
            "entries": [record.to_dict() for record in result.entries],
            "created": result.created,
            "last_saved": result.last_saved.isoformat() if result.last_saved else None,
            "vault_root": str(result.vault_root),
            "text_encryption": result.text_encryption.value,
            "available_text_encryptions": [a.value for a in result.available_text_encryptions],
            "damaged_entries": list(result.damaged_entries),
        }

    def lock(self) -> None:
        self._manager.lock()

    def status(self) -> dict[str, Any]:
        if not self._manager.is_unlocked:
            return {"unlocked": False, "vault_root": None}
        return {"unlocked": True, "vault_root": str(self._manager.session.root)}

    def set_text_encryption(self, algorithm: str) -> dict[str, Any]:
        self._manager.set_text_encryption(_parse_algorithm(algorithm))
        return self._vault_info()

    def change_passphrase(self, old_passphrase: str, new_passphrase: str) -> dict[str, Any]:
        """
        Re-encrypt the unlocked vault under ``new_passphrase``.

        Raises:
            ValidationError: If the new passphrase is blank or shorter than
                six characters
            WrongPassphrase: If ``old_passphrase`` is wrong
        """
        validate_string_safe(old_passphrase, min_length=1, max_length=MAX_PASSPHRASE_LENGTH, field_name="old passphrase")
        validate_string_safe(
            new_passphrase,
            min_length=MIN_NEW_PASSPHRASE_LENGTH,
            max_length=MAX_PASSPHRASE_LENGTH,
            field_name="new passphrase",
        )
        if not new_passphrase.strip():
            raise ValidationError("new passphrase cannot be blank")
        self._manager.change_passphrase(old_passphrase, new_passphrase)
        return self._vault_info()

    # Entries -----------------------------------------------------------------

    def list_entries(self) -> list[dict[str, Any]]:
        return [record.to_dict() for record in self._entries().list()]

    def search_entries(self, query: str) -> list[dict[str, Any]]:
        query = validate_string_safe(query, allow_empty=True, field_name="query")
        return [record.to_dict() for record in self._entries().search(query)]

    def load_entry(self, entry_id: str) -> dict[str, Any]:
        return self._entries().load(entry_id).to_dict()

    def create_entry(
        self,
        title: Optional[str] = None,
        content: Optional[str] = None,
        folder: Optional[str] = None,
    ) -> dict[str, Any]:
        return self._entries().create(title=title, content=content, folder=folder).to_dict()

    def update_entry(self, entry: Mapping[str, Any]) -> dict[str, Any]:
        store = self._entries()
        return store.update(Entry.from_dict(entry)).to_dict()

    def delete_entry(self, entry_id: str) -> None:
        self._entries().delete(entry_id)

    # Export ------------------------------------------------------------------

    def export_plaintext(self) -> str:
        return ExportEngine(self._manager.session).render()

    def export_plaintext_file(self, destination: Optional[str | Path] = None) -> str:
        return str(ExportEngine(self._manager.session).export_plaintext(destination))

    # Images ------------------------------------------------------------------

    def store_image(self, source_path: str | Path) -> str:
        images = self._images()
        if not str(source_path).strip():
            raise ValidationError("Image path cannot be empty")
        return images.store_file(source_path)

    def import_clipboard_image(self, payload: Mapping[str, Any]) -> str:
        images = self._images()
        if not isinstance(payload, Mapping):
            raise ValidationError("Clipboard payload must be an object")
        return images.import_clipboard(
            _image_bytes(payload.get("data")),
            mime=validate_optional_string(payload.get("mime"), "mime"),
            name=validate_optional_string(payload.get("name"), "name"),
        )

    def decrypt_image(self, relative_path: str) -> bytes:
        images = self._images()
        validate_string_safe(relative_path, field_name="image path")
        return images.decrypt(relative_path)
