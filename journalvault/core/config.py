"""
Vault Configuration Module
==========================

Frozen settings objects, loaded once per process, with environment overrides.

Security Features:
- Settings cannot be changed after construction
- Secrets are never read from the environment
- Default locations follow each OS's conventions

KDF settings here apply to newly created vaults only. Existing vaults
always use the cost parameters stored in their own metadata.
"""

from __future__ import annotations

import hashlib
import os
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Final, Optional

from journalvault.core.crypto.aead import DEFAULT_TEXT_ENCRYPTION, TextEncryption
from journalvault.core.crypto.kdf import (
    ARGON2_MEMORY_COST,
    ARGON2_PARALLELISM,
    ARGON2_TIME_COST,
    MIN_SALT_SIZE,
    SALT_SIZE,
    KdfParams,
)

APP_NAME: Final[str] = "JournalVault"
ENV_PREFIX: Final[str] = "JOURNALVAULT"

# Any override whose key contains one of these is dropped
_SECRET_MARKERS: Final[tuple[str, ...]] = (
    "password", "passphrase", "secret", "token", "private", "credential",
)


def _looks_secret(config_key: str) -> bool:
    lowered = config_key.lower()
    return any(marker in lowered for marker in _SECRET_MARKERS)


def _home_relative(env_var: str, *fallback: str) -> Path:
    value = os.environ.get(env_var)
    return Path(value) if value else Path.home().joinpath(*fallback)


def _default_vault_dir() -> Path:
    """Where a vault lives when the caller does not choose a directory."""
    system = platform.system()
    if system == "Windows":
        return _home_relative("LOCALAPPDATA", "AppData", "Local") / APP_NAME / "Vault"
    if system == "Darwin":
        return Path.home() / "Library" / "Application Support" / APP_NAME
    return _home_relative("XDG_DATA_HOME", ".local", "share") / APP_NAME.lower()


def _default_log_dir() -> Path:
    system = platform.system()
    if system == "Windows":
        return _home_relative("LOCALAPPDATA", "AppData", "Local") / APP_NAME / "Logs"
    if system == "Darwin":
        return Path.home() / "Library" / "Logs" / APP_NAME
    return _home_relative("XDG_STATE_HOME", ".local", "state") / APP_NAME.lower() / "logs"


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Not a boolean: {value!r}")


@dataclass(frozen=True, slots=True)
class PathConfig:
    """Default vault and log locations."""

    data_dir: Path = field(default_factory=_default_vault_dir)
    log_dir: Path = field(default_factory=_default_log_dir)

    def __post_init__(self) -> None:
        for name in ("data_dir", "log_dir"):
            if not getattr(self, name).is_absolute():
                raise ValueError(f"{name} must be absolute, got {getattr(self, name)}")


@dataclass(frozen=True, slots=True)
class KdfConfig:
    """Argon2id defaults for new vaults."""

    memory_cost: int = ARGON2_MEMORY_COST
    time_cost: int = ARGON2_TIME_COST
    parallelism: int = ARGON2_PARALLELISM
    salt_length: int = SALT_SIZE

    def __post_init__(self) -> None:
        if self.salt_length < MIN_SALT_SIZE:
            raise ValueError(f"Salt length must be at least {MIN_SALT_SIZE} bytes")
        # Surfaces invalid combinations at load time rather than at first unlock
        self.params()

    def params(self) -> KdfParams:
        return KdfParams(
            memory_cost=self.memory_cost,
            time_cost=self.time_cost,
            parallelism=self.parallelism,
        )


@dataclass(frozen=True, slots=True)
class StorageConfig:
    """On-disk and in-memory storage behavior."""

    default_text_encryption: TextEncryption = DEFAULT_TEXT_ENCRYPTION
    image_cache_max_bytes: int = 64 * 1024 * 1024
    fsync: bool = True

    def __post_init__(self) -> None:
        if self.image_cache_max_bytes < 0:
            raise ValueError("image_cache_max_bytes cannot be negative")


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Log level and handler selection for the ``journalvault`` logger tree."""

    level: str = "INFO"
    max_file_size_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5
    enable_console: bool = True
    enable_file: bool = False
    enable_json: bool = False

    def __post_init__(self) -> None:
        if self.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {self.level}")


_SECTIONS: Final[dict[str, type]] = {
    "paths": PathConfig,
    "kdf": KdfConfig,
    "storage": StorageConfig,
    "logging": LoggingConfig,
}

# section.field -> parser for the raw environment string
_OVERRIDE_PARSERS: Final[dict[str, Callable[[str], Any]]] = {
    "paths.data_dir": lambda v: Path(v).expanduser(),
    "paths.log_dir": lambda v: Path(v).expanduser(),
    "kdf.memory_cost": int,
    "kdf.time_cost": int,
    "kdf.parallelism": int,
    "kdf.salt_length": int,
    "storage.default_text_encryption": TextEncryption.parse,
    "storage.image_cache_max_bytes": int,
    "storage.fsync": _parse_bool,
    "logging.level": str.upper,
    "logging.max_file_size_bytes": int,
    "logging.backup_count": int,
    "logging.enable_console": _parse_bool,
    "logging.enable_file": _parse_bool,
    "logging.enable_json": _parse_bool,
}


class VaultConfig:
    """
    Process-wide settings: paths, KDF defaults, storage and logging.

    Usage:
        config = VaultConfig.load()
        root = config.paths.data_dir
        params = config.kdf.params()

    Environment variables use the JOURNALVAULT_ prefix and a double
    underscore between section and field:
        JOURNALVAULT_LOGGING__LEVEL=DEBUG
        JOURNALVAULT_KDF__MEMORY_COST=65536
        JOURNALVAULT_PATHS__DATA_DIR=/custom/path
        JOURNALVAULT_STORAGE__DEFAULT_TEXT_ENCRYPTION=chacha20_poly1305
    """

    __slots__ = ("_paths", "_kdf", "_storage", "_logging", "_sealed", "_fingerprint")

    _instance: Optional[VaultConfig] = None

    def __init__(
        self,
        paths: Optional[PathConfig] = None,
        kdf: Optional[KdfConfig] = None,
        storage: Optional[StorageConfig] = None,
        logging: Optional[LoggingConfig] = None,
    ) -> None:
        values = {
            "_paths": paths or PathConfig(),
            "_kdf": kdf or KdfConfig(),
            "_storage": storage or StorageConfig(),
            "_logging": logging or LoggingConfig(),
        }
        for name, value in values.items():
            object.__setattr__(self, name, value)
        digest = hashlib.sha256("|".join(repr(v) for v in values.values()).encode("utf-8"))
        object.__setattr__(self, "_fingerprint", digest.hexdigest()[:16])
        object.__setattr__(self, "_sealed", True)

    @property
    def paths(self) -> PathConfig:
        return self._paths

    @property
    def kdf(self) -> KdfConfig:
        return self._kdf

    @property
    def storage(self) -> StorageConfig:
        return self._storage

    @property
    def logging(self) -> LoggingConfig:
        return self._logging

    @property
    def config_hash(self) -> str:
        """Short digest of all settings, for comparing configurations in logs."""
        return self._fingerprint

    @classmethod
    def load(cls, env_prefix: str = ENV_PREFIX) -> VaultConfig:
        """
        Build configuration from defaults plus environment overrides.

        Unknown keys are ignored.

        Raises:
            ValueError: If an override has an invalid value
        """
        per_section: dict[str, dict[str, Any]] = {name: {} for name in _SECTIONS}
        for key, raw in cls._parse_env_overrides(env_prefix).items():
            parser = _OVERRIDE_PARSERS.get(key)
            if parser is None:
                continue
            section, name = key.split(".", 1)
            per_section[section][name] = parser(raw)

        return cls(**{
            section: _SECTIONS[section](**kwargs) if kwargs else None
            for section, kwargs in per_section.items()
        })

    @staticmethod
    def _parse_env_overrides(prefix: str) -> dict[str, str]:
        """Map ``PREFIX_SECTION__FIELD`` variables to ``section.field`` keys."""
        marker = f"{prefix.upper()}_"
        found: dict[str, str] = {}
        for env_key, value in os.environ.items():
            if not env_key.startswith(marker):
                continue
            config_key = env_key[len(marker):].lower().replace("__", ".")
            # SECURITY: never accept secrets from the environment
            if not _looks_secret(config_key):
                found[config_key] = value
        return found

    @classmethod
    def get_instance(cls) -> VaultConfig:
        """Get or create the singleton configuration instance."""
        if cls._instance is None:
            cls._instance = cls.load()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Drop the singleton so the next ``get_instance`` reloads. For tests."""
        cls._instance = None

    def __repr__(self) -> str:
        return f"VaultConfig(hash={self._fingerprint}, data_dir={self._paths.data_dir})"

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "_sealed", False):
            raise AttributeError("VaultConfig is read-only")
        object.__setattr__(self, name, value)
