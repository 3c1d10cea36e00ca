"""
Image Store
===========

Encrypted image attachments referenced from entry content.

Images live at ``images/YYYY/MM/<uuid>.<ext>`` under the vault root and are
referenced by that root-relative POSIX path.

Binary Format:
    offset  size  field
    0       4     magic b"JVIM"
    4       2     format version (big-endian u16)
    6       1     algorithm code (1 = AES-256-GCM, 2 = ChaCha20-Poly1305)
    7       12    nonce
    19      ...   AEAD ciphertext with tag

Associated data is ``journalvault:image:<relative path>``, so a blob copied
to another path fails authentication.
"""

from __future__ import annotations

import logging
import struct
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Final, Optional

from journalvault.core.crypto.aead import NONCE_SIZE, TAG_SIZE, SealedField, TextEncryption, get_cipher
from journalvault.core.errors import ImageNotFound, VaultCorrupt, VaultIOError
from journalvault.core.session.session_control import Session
from journalvault.core.storage.atomic import StagedWrites, atomic_write, is_temp_file
from journalvault.utils.paths import (
    infer_extension,
    is_path_within_directory,
    normalize_reference,
    to_posix_relative,
)
from journalvault.utils.validators import ValidationError

IMAGES_DIRNAME: Final[str] = "images"
IMAGE_MAGIC: Final[bytes] = b"JVIM"
IMAGE_FORMAT_VERSION: Final[int] = 1

_HEADER = struct.Struct(">4sHB")
HEADER_SIZE: Final[int] = _HEADER.size + NONCE_SIZE

_ALGORITHM_CODES: Final[dict[TextEncryption, int]] = {
    TextEncryption.AES256_GCM: 1,
    TextEncryption.CHACHA20_POLY1305: 2,
}
_CODE_ALGORITHMS: Final[dict[int, TextEncryption]] = {v: k for k, v in _ALGORITHM_CODES.items()}


def image_aad(relative_path: str) -> bytes:
    return f"journalvault:image:{relative_path}".encode("utf-8")


def pack_image(sealed: SealedField) -> bytes:
    """Serialize a sealed image to the on-disk binary layout."""
    header = _HEADER.pack(IMAGE_MAGIC, IMAGE_FORMAT_VERSION, _ALGORITHM_CODES[sealed.algorithm])
    return header + sealed.nonce + sealed.ciphertext


def unpack_image(blob: bytes) -> SealedField:
    """
    Parse the binary layout.

    Raises:
        VaultCorrupt: On bad magic, version, algorithm code or length
    """
    if len(blob) < HEADER_SIZE + TAG_SIZE:
        raise VaultCorrupt("Encrypted image is truncated")

    magic, version, code = _HEADER.unpack_from(blob)
    if magic != IMAGE_MAGIC:
        raise VaultCorrupt("Not an encrypted vault image")
    if version != IMAGE_FORMAT_VERSION:
        raise VaultCorrupt(f"Unsupported image format version: {version}")
    algorithm = _CODE_ALGORITHMS.get(code)
    if algorithm is None:
        raise VaultCorrupt(f"Unknown image algorithm code: {code}")

    nonce = blob[_HEADER.size:HEADER_SIZE]
    return SealedField(algorithm=algorithm, nonce=nonce, ciphertext=blob[HEADER_SIZE:])


class ImageStore:
    """
    Stores and decrypts image attachments for one session.

    Usage:
        images = ImageStore(session)
        ref = images.store_file(Path("photo.jpg"))  # "images/2024/05/<uuid>.jpg"
        data = images.decrypt(ref)
    """

    def __init__(self, session: Session) -> None:
        self._session = session
        self._dir = session.root / IMAGES_DIRNAME
        self._log = logging.getLogger("journalvault.images")

    def store(self, data: bytes, suggested_name: Optional[str] = None, mime: Optional[str] = None) -> str:
        """
        Encrypt ``data`` into a new image file.

        Returns:
            Vault-root-relative POSIX path of the stored image

        Raises:
            ValidationError: If ``data`` is empty
            LockedError: If the session is closed
            VaultIOError: If the file cannot be written
        """
        if not data:
            raise ValidationError("Image data cannot be empty")
        extension = infer_extension(suggested_name, mime)

        with self._session.mutating() as snapshot:
            now = datetime.now(timezone.utc)
            target = self._dir / f"{now:%Y}" / f"{now:%m}" / f"{uuid.uuid4()}.{extension}"
            relative = to_posix_relative(target, self._session.root)

            sealed = get_cipher(snapshot.algorithm).encrypt(
                bytes(data), snapshot.key, aad=image_aad(relative)
            )
            atomic_write(target, pack_image(sealed), fsync=self._session.fsync)

        self._log.info("Stored image %s (%d bytes)", relative, len(data))
        return relative

    def store_file(self, source_path: Path | str) -> str:
        """
        Encrypt an image file from disk into the vault.

        Raises:
            ImageNotFound: If ``source_path`` does not exist
            VaultIOError: If it cannot be read
        """
        self._session.ensure_current()
        source = Path(source_path).expanduser()
        try:
            data = source.read_bytes()
        except (FileNotFoundError, IsADirectoryError) as e:
            raise ImageNotFound(f"Source image not found: {source}", subject=str(source)) from e
        except OSError as e:
            raise VaultIOError(f"Failed to read source image: {e.strerror or e}") from e
        return self.store(data, suggested_name=source.name)

    def import_clipboard(self, data: bytes, mime: Optional[str] = None, name: Optional[str] = None) -> str:
        """Store pasted image bytes; extension from ``name``, then ``mime``."""
        return self.store(data, suggested_name=name, mime=mime)

    def resolve(self, reference: str) -> tuple[Path, str]:
        """
        Map an image reference to (absolute path, relative POSIX path).

        Raises:
            ImageNotFound: If the reference points outside ``images/``
        """
        root = self._session.root
        raw = Path(reference.strip())
        if raw.is_absolute() and is_path_within_directory(raw, root):
            candidate = raw.resolve()
        else:
            candidate = (root / normalize_reference(reference)).resolve()

        if candidate == self._dir.resolve() or not is_path_within_directory(candidate, self._dir):
            raise ImageNotFound(f"Image reference outside the vault: {reference}", subject=reference)
        return candidate, to_posix_relative(candidate, root)

    def decrypt(self, relative_path: str) -> bytes:
        """
        Decrypt an image by reference.

        Raises:
            LockedError: If the session is closed
            ImageNotFound: If the image does not exist
            VaultCorrupt: If the header is malformed
            AuthenticationFailure: If the ciphertext fails authentication
        """
        snapshot = self._session.snapshot()
        path, relative = self.resolve(relative_path)

        cached = self._session.image_cache.get(relative)
        if cached is not None:
            self._session.ensure_current()
            return cached

        try:
            blob = path.read_bytes()
        except (FileNotFoundError, IsADirectoryError) as e:
            raise ImageNotFound(f"Image not found: {relative}", subject=relative) from e
        except OSError as e:
            raise VaultIOError(f"Failed to read image: {e.strerror or e}") from e

        sealed = unpack_image(blob)
        data = get_cipher(sealed.algorithm).decrypt(sealed, snapshot.key, aad=image_aad(relative))

        # Raises LockedError if a lock happened since the snapshot
        self._session.cache_image(relative, data)
        return data

    def stage_rekey(self, batch: StagedWrites, old_key: bytes, new_key: bytes) -> int:
        """
        Stage every image blob re-encrypted under ``new_key``.

        Blobs keep their path (and so their associated data) and algorithm.
        Called with the session's mutation lock held.

        Returns:
            Number of images staged

        Raises:
            AuthenticationFailure: If a blob does not open under ``old_key``
            VaultCorrupt: If a blob header is malformed
            VaultIOError: If a blob cannot be read
        """
        if not self._dir.is_dir():
            return 0

        count = 0
        for path in sorted(self._dir.rglob("*")):
            if not path.is_file() or is_temp_file(path):
                continue
            relative = to_posix_relative(path, self._session.root)
            try:
                blob = path.read_bytes()
            except OSError as e:
                raise VaultIOError(f"Failed to read image {relative}: {e.strerror or e}") from e

            sealed = unpack_image(blob)
            cipher = get_cipher(sealed.algorithm)
            data = cipher.decrypt(sealed, old_key, aad=image_aad(relative))
            batch.stage(path, pack_image(cipher.encrypt(data, new_key, aad=image_aad(relative))))
            count += 1
        return count
