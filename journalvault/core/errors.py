"""
Vault Error Taxonomy
====================

Typed errors raised by the vault engine.

Every error carries a stable ``code`` string that the command surface and the
HTTP adapter hand back to callers. Messages never contain passphrases, key
material or decrypted text.
"""

from __future__ import annotations

from typing import Optional


class VaultError(Exception):
    """Base class for all vault engine errors."""

    code: str = "vault_error"

    def __init__(self, message: str = "", *, subject: Optional[str] = None) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.subject = subject


class WrongPassphrase(VaultError):
    """The passphrase does not unlock this vault."""

    code = "wrong_passphrase"


class VaultCorrupt(VaultError):
    """A vault file is malformed or cannot be parsed."""

    code = "vault_corrupt"


class AuthenticationFailure(VaultError):
    """Ciphertext failed authentication (corrupted or tampered)."""

    code = "authentication_failure"


class NotFoundError(VaultError):
    """Requested object does not exist."""

    code = "not_found"


class EntryNotFound(NotFoundError):
    """Entry not found."""

    code = "entry_not_found"


class ImageNotFound(NotFoundError):
    """Image not found."""

    code = "image_not_found"


class VaultNotFound(NotFoundError):
    """No vault metadata exists at this location."""

    code = "vault_not_found"


class LockedError(VaultError):
    """The vault is locked."""

    code = "locked"


class VaultIOError(VaultError):
    """Filesystem operation failed."""

    code = "io_error"


class AlreadyInitialized(VaultError):
    """Vault metadata already exists at this location."""

    code = "already_initialized"


class VaultBusy(VaultError):
    """The vault root is already unlocked by another session."""

    code = "vault_busy"

