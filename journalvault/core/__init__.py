"""
Core module - Contains configuration, logging, errors and the vault engine.
"""

from journalvault.core.config import VaultConfig
from journalvault.core.errors import VaultError
from journalvault.core.logging import SecureLogFilter, configure_logging, get_secure_logger

__all__ = ["VaultConfig", "VaultError", "SecureLogFilter", "configure_logging", "get_secure_logger"]
