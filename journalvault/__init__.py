"""
JournalVault - An Encrypted Local Journal
=========================================

This package provides the vault engine behind a passphrase-protected
journal: key derivation, authenticated encryption of entries and images,
atomic on-disk persistence and a command surface for UI shells.

Security Notice:
- No secrets are logged
- Fail-closed design pattern
- No plaintext title, content or image is written to entry or image files
"""

from journalvault.commands import VaultCommands
from journalvault.core.config import VaultConfig
from journalvault.core.logging import configure_logging, get_secure_logger

__version__ = "0.1.0"
__author__ = "JournalVault Team"

__all__ = ["VaultCommands", "VaultConfig", "configure_logging", "get_secure_logger", "__version__"]
