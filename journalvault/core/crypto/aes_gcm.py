"""
AES-256-GCM Authenticated Encryption
====================================

Security Properties:
    - 256-bit key (128-bit security level)
    - 96-bit nonce (NIST recommended)
    - 128-bit authentication tag
    - Authenticated Additional Data (AAD) support

NIST SP 800-38D Compliance:
    - GCM mode with 96-bit IV
    - Unique nonce for each encryption under same key

WARNING:
    - Never reuse (key, nonce) pairs
    - Always verify tag before using plaintext
"""

from __future__ import annotations

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from journalvault.core.crypto.aead import AeadCipher, TextEncryption


class AesGcmCipher(AeadCipher):
    """
    AES-256-GCM Authenticated Encryption with Associated Data (AEAD).

    Usage:
        cipher = AesGcmCipher()
        sealed = cipher.encrypt(plaintext, key, aad=b"context")
        plaintext = cipher.decrypt(sealed, key, aad=b"context")

    Security Notes:
        - A new random nonce is drawn for every call to encrypt()
        - Integrity is verified before any plaintext is returned
    """

    __slots__ = ()

    algorithm = TextEncryption.AES256_GCM
    _primitive = AESGCM
