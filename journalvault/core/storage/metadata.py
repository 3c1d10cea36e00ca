"""
Vault Metadata Store
====================

Persists the per-vault salt, KDF cost parameters and algorithm settings in
``vault.json`` under the vault root, plus the key canary in ``canary.json``.

File Format (vault.json):
    {
      "format_version": 1,
      "salt": "<base64>",
      "kdf": {"algorithm": "argon2id", "memory_cost": ..., "time_cost": ...,
              "parallelism": ..., "hash_len": 32},
      "text_encryption": "aes256_gcm",
      "available_text_encryptions": ["aes256_gcm", "chacha20_poly1305"],
      "created_at": "<iso-8601>",
      "updated_at": "<iso-8601>"
    }

Nothing in this file is secret; it is needed before a key exists.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Final, Optional

from journalvault.core.crypto.aead import SealedField, TextEncryption, supported_algorithms
from journalvault.core.crypto.kdf import MIN_SALT_SIZE, KdfParams, generate_salt
from journalvault.core.errors import AlreadyInitialized, VaultCorrupt, VaultIOError, VaultNotFound
from journalvault.core.storage.atomic import StagedWrites, atomic_write_json

METADATA_FILENAME: Final[str] = "vault.json"
CANARY_FILENAME: Final[str] = "canary.json"
METADATA_FORMAT_VERSION: Final[int] = 1
CANARY_FORMAT_VERSION: Final[int] = 1


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class VaultMetadata:
    """
    Per-vault settings loaded from ``vault.json``.

    Salt and KDF parameters change only when the passphrase is changed.
    """

    salt: bytes
    kdf: KdfParams
    text_encryption: TextEncryption
    available_text_encryptions: tuple[TextEncryption, ...]
    created_at: datetime
    updated_at: datetime
    format_version: int = METADATA_FORMAT_VERSION

    def __repr__(self) -> str:
        """Safe representation (no salt)."""
        return (
            f"VaultMetadata(version={self.format_version}, "
            f"text_encryption={self.text_encryption.value})"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "format_version": self.format_version,
            "salt": base64.b64encode(self.salt).decode("ascii"),
            "kdf": self.kdf.to_dict(),
            "text_encryption": self.text_encryption.value,
            "available_text_encryptions": [a.value for a in self.available_text_encryptions],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "VaultMetadata":
        """
        Parse the metadata document.

        Raises:
            VaultCorrupt: On any structural or value error
        """
        if not isinstance(data, dict):
            raise VaultCorrupt("Vault metadata must be a JSON object")
        try:
            version = int(data["format_version"])
            if version != METADATA_FORMAT_VERSION:
                raise VaultCorrupt(f"Unsupported vault format version: {version}")

            salt = base64.b64decode(data["salt"], validate=True)
            if len(salt) < MIN_SALT_SIZE:
                raise VaultCorrupt("Vault salt is too short")

            text_encryption = TextEncryption.parse(data["text_encryption"])
            available = tuple(
                TextEncryption.parse(a)
                for a in data.get("available_text_encryptions", [text_encryption.value])
            )
            if text_encryption not in available:
                available = available + (text_encryption,)

            return cls(
                salt=salt,
                kdf=KdfParams.from_dict(data["kdf"]),
                text_encryption=text_encryption,
                available_text_encryptions=available,
                created_at=datetime.fromisoformat(data["created_at"]),
                updated_at=datetime.fromisoformat(data.get("updated_at") or data["created_at"]),
                format_version=version,
            )
        except VaultCorrupt:
            raise
        except (KeyError, TypeError, AttributeError, ValueError, binascii.Error) as e:
            raise VaultCorrupt(f"Malformed vault metadata: {e}") from e


@dataclass
class VaultMetadataStore:
    """
    Loads and persists vault metadata under a vault root.

    Usage:
        store = VaultMetadataStore(default_params=KdfParams())
        if store.exists(root):
            metadata = store.load(root)
        else:
            metadata = store.create(root, TextEncryption.AES256_GCM)
    """

    default_params: KdfParams = field(default_factory=KdfParams)
    salt_length: int = 16
    fsync: bool = True

    def __post_init__(self) -> None:
        self._log = logging.getLogger("journalvault.metadata")

    @staticmethod
    def metadata_path(root: Path) -> Path:
        return root / METADATA_FILENAME

    @staticmethod
    def canary_path(root: Path) -> Path:
        return root / CANARY_FILENAME

    def exists(self, root: Path) -> bool:
        return self.metadata_path(root).is_file()

    def load(self, root: Path) -> VaultMetadata:
        """
        Load metadata for ``root``.

        Raises:
            VaultNotFound: If no metadata file exists
            VaultCorrupt: If the file cannot be parsed
            VaultIOError: If the file cannot be read
        """
        path = self.metadata_path(root)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise VaultNotFound(f"No vault at {root}") from e
        except OSError as e:
            raise VaultIOError(f"Failed to read vault metadata: {e.strerror or e}") from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise VaultCorrupt(f"Vault metadata is not valid JSON: {e.msg}") from e

        return VaultMetadata.from_dict(data)

    def create(
        self,
        root: Path,
        algorithm: TextEncryption,
        params: Optional[KdfParams] = None,
    ) -> VaultMetadata:
        """
        Initialize a new vault at ``root``.

        Raises:
            AlreadyInitialized: If metadata already exists
            VaultIOError: If the file cannot be written
        """
        if self.exists(root):
            raise AlreadyInitialized(f"Vault already initialized at {root}")

        now = utc_now()
        available = tuple(supported_algorithms())
        metadata = VaultMetadata(
            salt=generate_salt(self.salt_length),
            kdf=params or self.default_params,
            text_encryption=algorithm,
            available_text_encryptions=available,
            created_at=now,
            updated_at=now,
        )
        self.save(root, metadata)
        self._log.info("Created vault metadata at %s (%s)", root, algorithm.value)
        return metadata

    def save(self, root: Path, metadata: VaultMetadata) -> None:
        """Atomically rewrite ``vault.json``."""
        atomic_write_json(self.metadata_path(root), metadata.to_dict(), fsync=self.fsync)

    def update(
        self,
        root: Path,
        metadata: VaultMetadata,
        *,
        text_encryption: Optional[TextEncryption] = None,
        append_algorithms: tuple[TextEncryption, ...] = (),
    ) -> VaultMetadata:
        """
        Apply one of the permitted mutations and persist.

        Only the default algorithm and the available-algorithms list can
        change; salt and KDF parameters are carried over untouched. Returns
        ``metadata`` unchanged (and writes nothing) when there is nothing to do.
        """
        available = metadata.available_text_encryptions
        for algo in append_algorithms:
            if algo not in available:
                available = available + (algo,)

        new_default = text_encryption or metadata.text_encryption
        if new_default not in available:
            available = available + (new_default,)

        if new_default is metadata.text_encryption and available == metadata.available_text_encryptions:
            return metadata

        updated = replace(
            metadata,
            text_encryption=new_default,
            available_text_encryptions=available,
            updated_at=utc_now(),
        )
        self.save(root, updated)
        return updated

    def write_canary(self, root: Path, sealed: SealedField) -> None:
        """Persist the key canary next to ``vault.json``."""
        atomic_write_json(self.canary_path(root), _canary_payload(sealed), fsync=self.fsync)

    def stage_rekey(
        self,
        batch: StagedWrites,
        root: Path,
        metadata: VaultMetadata,
        salt: bytes,
        canary: SealedField,
    ) -> VaultMetadata:
        """
        Stage the canary and then ``vault.json`` for a new salt.

        Staged last so that ``vault.json`` is the final rename of a
        passphrase change.
        """
        if len(salt) < MIN_SALT_SIZE:
            raise ValueError(f"Salt must be at least {MIN_SALT_SIZE} bytes")
        updated = replace(metadata, salt=salt, updated_at=utc_now())
        batch.stage_json(self.canary_path(root), _canary_payload(canary))
        batch.stage_json(self.metadata_path(root), updated.to_dict())
        return updated

    def load_canary(self, root: Path) -> Optional[SealedField]:
        """
        Load the key canary, or None if the vault has none.

        Raises:
            VaultCorrupt: If the canary file is malformed
        """
        path = self.canary_path(root)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise VaultIOError(f"Failed to read key canary: {e.strerror or e}") from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise VaultCorrupt(f"Key canary is not valid JSON: {e.msg}") from e
        if not isinstance(data, dict) or data.get("format_version") != CANARY_FORMAT_VERSION:
            raise VaultCorrupt("Unsupported key canary format")

        return SealedField.from_dict(data)


def _canary_payload(sealed: SealedField) -> dict[str, Any]:
    return {"format_version": CANARY_FORMAT_VERSION, **sealed.to_dict()}
