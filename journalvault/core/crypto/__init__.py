"""
JournalVault Cryptographic Core
===============================

Authenticated encryption and key derivation for the vault engine.

Architecture:
    1. AES-256-GCM: Default content encryption
    2. ChaCha20-Poly1305: Alternative content encryption
    3. Argon2id: Passphrase-based key derivation

Security Properties:
    - All encryption is authenticated (AEAD)
    - Keys never touch disk (memory-only)
    - Fresh random nonce for every encryption
    - Algorithm tag stored with every ciphertext

WARNING: This module handles sensitive cryptographic material.
         Incorrect usage can compromise security.
"""

from journalvault.core.crypto.aead import (
    AeadCipher,
    SealedField,
    TextEncryption,
    DEFAULT_TEXT_ENCRYPTION,
    get_cipher,
    supported_algorithms,
)
from journalvault.core.crypto.aes_gcm import AesGcmCipher
from journalvault.core.crypto.chacha20 import ChaCha20Cipher
from journalvault.core.crypto.kdf import KdfParams, derive_key, generate_salt

__all__ = [
    "AeadCipher",
    "SealedField",
    "TextEncryption",
    "DEFAULT_TEXT_ENCRYPTION",
    "get_cipher",
    "supported_algorithms",
    "AesGcmCipher",
    "ChaCha20Cipher",
    "KdfParams",
    "derive_key",
    "generate_salt",
]
