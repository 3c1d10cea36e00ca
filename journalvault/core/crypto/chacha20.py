"""
ChaCha20-Poly1305 Authenticated Encryption
==========================================

Security Properties:
    - 256-bit key
    - 96-bit nonce
    - 128-bit Poly1305 authentication tag
    - IETF RFC 8439 compliant

Why ChaCha20-Poly1305 as an alternative:
    - Algorithm diversity (defense against AES-specific attacks)
    - Constant-time in software (no AES-NI dependency)
"""

from __future__ import annotations

from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305

from journalvault.core.crypto.aead import AeadCipher, TextEncryption


class ChaCha20Cipher(AeadCipher):
    """
    ChaCha20-Poly1305 AEAD cipher (RFC 8439).

    Usage:
        cipher = ChaCha20Cipher()
        sealed = cipher.encrypt(plaintext, key, aad=b"context")
        plaintext = cipher.decrypt(sealed, key, aad=b"context")
    """

    __slots__ = ()

    algorithm = TextEncryption.CHACHA20_POLY1305
    _primitive = ChaCha20Poly1305
