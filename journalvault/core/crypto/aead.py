"""
AEAD Cipher Interface
=====================

Algorithm-agnostic authenticated encryption used for entries, images and
the key canary.

Every encryption draws a fresh random 96-bit nonce; a (key, nonce) pair is
never reused. The algorithm used for a ciphertext travels with it as a
``TextEncryption`` tag so that records written under an older default stay
readable after the vault default changes.
"""

from __future__ import annotations

import base64
import binascii
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Any, Final, Mapping, Optional

from cryptography.exceptions import InvalidTag

from journalvault.core.errors import AuthenticationFailure, VaultCorrupt

KEY_SIZE: Final[int] = 32  # 256 bits
NONCE_SIZE: Final[int] = 12  # 96 bits
TAG_SIZE: Final[int] = 16  # 128 bits


class TextEncryption(str, Enum):
    """Supported content-encryption algorithms."""

    AES256_GCM = "aes256_gcm"
    CHACHA20_POLY1305 = "chacha20_poly1305"

    @classmethod
    def parse(cls, value: "TextEncryption | str") -> "TextEncryption":
        """Parse an algorithm tag, raising ValueError on unknown names."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unsupported text encryption: {value!r}") from None


DEFAULT_TEXT_ENCRYPTION: Final[TextEncryption] = TextEncryption.AES256_GCM


@dataclass(frozen=True, slots=True)
class SealedField:
    """
    A single AEAD ciphertext together with what is needed to open it.

    Attributes:
        algorithm: Algorithm tag used to produce the ciphertext
        nonce: Unique nonce used for this encryption
        ciphertext: Encrypted data with appended authentication tag
    """

    algorithm: TextEncryption
    nonce: bytes
    ciphertext: bytes

    def __repr__(self) -> str:
        """Safe representation."""
        return (
            f"SealedField(algorithm={self.algorithm.value}, "
            f"ciphertext_len={len(self.ciphertext)})"
        )

    def to_dict(self, include_algorithm: bool = True) -> dict[str, str]:
        """Serialize to a JSON-friendly dict (base64 without padding)."""
        data = {
            "nonce": _b64encode(self.nonce),
            "ciphertext": _b64encode(self.ciphertext),
        }
        if include_algorithm:
            data["algorithm"] = self.algorithm.value
        return data

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        algorithm: Optional[TextEncryption] = None,
    ) -> "SealedField":
        """
        Deserialize from a dict produced by ``to_dict``.

        Raises:
            VaultCorrupt: If fields are missing or malformed
        """
        try:
            algo = algorithm or TextEncryption.parse(data["algorithm"])
            nonce = _b64decode(data["nonce"])
            ciphertext = _b64decode(data["ciphertext"])
        except (KeyError, TypeError, ValueError, binascii.Error) as e:
            raise VaultCorrupt(f"Malformed sealed field: {e}") from e

        if len(nonce) != NONCE_SIZE:
            raise VaultCorrupt("Invalid nonce length")
        if len(ciphertext) < TAG_SIZE:
            raise VaultCorrupt("Ciphertext too short (missing authentication tag)")

        return cls(algorithm=algo, nonce=nonce, ciphertext=ciphertext)


class AeadCipher:
    """
    Base class for the AEAD variants.

    Subclasses set ``algorithm`` and ``_primitive`` (a class from
    ``cryptography.hazmat.primitives.ciphers.aead``).

    Usage:
        cipher = get_cipher(TextEncryption.AES256_GCM)
        sealed = cipher.encrypt(b"text", key, aad=b"context")
        plaintext = cipher.decrypt(sealed, key, aad=b"context")
    """

    __slots__ = ()

    algorithm: TextEncryption
    _primitive: Any

    @staticmethod
    def generate_nonce() -> bytes:
        """
        Generate a cryptographically secure random nonce.

        Security:
            96-bit random nonces have negligible collision probability
            for up to 2^32 encryptions under the same key.
        """
        return secrets.token_bytes(NONCE_SIZE)

    def encrypt(
        self,
        plaintext: bytes,
        key: bytes,
        aad: Optional[bytes] = None,
    ) -> SealedField:
        """
        Encrypt plaintext under ``key`` with a fresh nonce.

        Raises:
            ValueError: If the key has the wrong size
        """
        if len(key) != KEY_SIZE:
            raise ValueError(f"Key must be exactly {KEY_SIZE} bytes")

        nonce = self.generate_nonce()
        ciphertext = self._primitive(key).encrypt(nonce, plaintext, aad)

        return SealedField(
            algorithm=self.algorithm,
            nonce=nonce,
            ciphertext=ciphertext,
        )

    def decrypt(
        self,
        sealed: SealedField,
        key: bytes,
        aad: Optional[bytes] = None,
    ) -> bytes:
        """
        Verify and decrypt a sealed field.

        Raises:
            ValueError: If key or nonce sizes are invalid
            AuthenticationFailure: If the tag does not verify (wrong key,
                wrong AAD, corruption or tampering)

        Security Notes:
            No plaintext is ever returned unless the tag verifies.
        """
        if sealed.algorithm is not self.algorithm:
            raise ValueError(
                f"Sealed field uses {sealed.algorithm.value}, not {self.algorithm.value}"
            )
        if len(key) != KEY_SIZE:
            raise ValueError(f"Key must be exactly {KEY_SIZE} bytes")
        if len(sealed.nonce) != NONCE_SIZE:
            raise ValueError(f"Nonce must be exactly {NONCE_SIZE} bytes")
        if len(sealed.ciphertext) < TAG_SIZE:
            raise AuthenticationFailure("Ciphertext too short (missing authentication tag)")

        try:
            return self._primitive(key).decrypt(sealed.nonce, sealed.ciphertext, aad)
        except InvalidTag as e:
            raise AuthenticationFailure("Authentication tag mismatch") from e


def get_cipher(algorithm: TextEncryption | str) -> AeadCipher:
    """Return the cipher implementation for an algorithm tag."""
    from journalvault.core.crypto.aes_gcm import AesGcmCipher
    from journalvault.core.crypto.chacha20 import ChaCha20Cipher

    algo = TextEncryption.parse(algorithm)
    if algo is TextEncryption.AES256_GCM:
        return AesGcmCipher()
    return ChaCha20Cipher()


def supported_algorithms() -> list[TextEncryption]:
    """All algorithms this build can read and write, in declaration order."""
    return list(TextEncryption)


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii").rstrip("=")


def _b64decode(text: str) -> bytes:
    if not isinstance(text, str):
        raise TypeError("expected base64 text")
    padding = "=" * (-len(text) % 4)
    return base64.b64decode(text + padding, validate=True)
