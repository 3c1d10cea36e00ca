"""Shared test fixtures and configuration."""

import pytest

from journalvault.commands import VaultCommands
from journalvault.core.config import KdfConfig, PathConfig, StorageConfig, VaultConfig
from journalvault.core.session.session_control import SessionManager
from journalvault.core.storage.entries import EntryStore
from journalvault.core.storage.images import ImageStore

PASSPHRASE = "correct horse battery staple"


@pytest.fixture(autouse=True)
def reset_config_singleton():
    """Keep the configuration singleton from leaking between tests."""
    VaultConfig.reset_instance()
    yield
    VaultConfig.reset_instance()


@pytest.fixture
def passphrase():
    return PASSPHRASE


@pytest.fixture
def fast_config(tmp_path):
    """Configuration with cheap Argon2 costs and no fsync."""
    return VaultConfig(
        paths=PathConfig(data_dir=tmp_path / "default-vault", log_dir=tmp_path / "logs"),
        kdf=KdfConfig(memory_cost=1024, time_cost=1, parallelism=1),
        storage=StorageConfig(image_cache_max_bytes=1024 * 1024, fsync=False),
    )


@pytest.fixture
def vault_root(tmp_path):
    """Empty directory for a new vault."""
    root = tmp_path / "vault"
    root.mkdir()
    return root.resolve()


@pytest.fixture
def manager(fast_config):
    """Session manager that is locked again after the test."""
    manager = SessionManager(fast_config)
    yield manager
    manager.lock()


@pytest.fixture
def session(manager, vault_root):
    """An unlocked session on a freshly created vault."""
    return manager.unlock(PASSPHRASE, vault_root).session


@pytest.fixture
def entry_store(session):
    return EntryStore(session)


@pytest.fixture
def image_store(session):
    return ImageStore(session)


@pytest.fixture
def commands(fast_config, vault_root):
    """Unlocked command facade."""
    commands = VaultCommands(fast_config)
    commands.unlock(PASSPHRASE, vault_root)
    yield commands
    commands.lock()


@pytest.fixture
def png_bytes():
    """Small PNG-looking payload (content is opaque to the vault)."""
    return b"\x89PNG\r\n\x1a\n" + bytes(range(256)) * 4
