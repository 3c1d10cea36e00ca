"""Tests for journalvault.core.storage.metadata."""

import json

import pytest

from journalvault.core.crypto.aead import TextEncryption
from journalvault.core.crypto.kdf import KdfParams
from journalvault.core.errors import AlreadyInitialized, VaultCorrupt, VaultNotFound
from journalvault.core.storage.metadata import VaultMetadataStore

FAST = KdfParams(memory_cost=1024, time_cost=1, parallelism=1)


@pytest.fixture
def store():
    return VaultMetadataStore(default_params=FAST, fsync=False)


def _rewrite(path, **changes):
    data = json.loads(path.read_text())
    data.update(changes)
    path.write_text(json.dumps(data))


class TestCreateAndLoad:
    def test_round_trip(self, store, vault_root):
        created = store.create(vault_root, TextEncryption.CHACHA20_POLY1305)
        loaded = store.load(vault_root)

        assert loaded == created
        assert len(loaded.salt) == 16
        assert loaded.kdf == FAST
        assert loaded.text_encryption is TextEncryption.CHACHA20_POLY1305
        assert set(loaded.available_text_encryptions) == set(TextEncryption)

    def test_explicit_params_are_stored(self, store, vault_root):
        params = KdfParams(memory_cost=2048, time_cost=1, parallelism=2)

        assert store.create(vault_root, TextEncryption.AES256_GCM, params).kdf == params
        assert store.load(vault_root).kdf == params

    def test_salt_is_random_per_vault(self, store, tmp_path):
        first = store.create(tmp_path / "a", TextEncryption.AES256_GCM)
        second = store.create(tmp_path / "b", TextEncryption.AES256_GCM)

        assert first.salt != second.salt

    def test_create_twice(self, store, vault_root):
        store.create(vault_root, TextEncryption.AES256_GCM)

        with pytest.raises(AlreadyInitialized):
            store.create(vault_root, TextEncryption.AES256_GCM)

    def test_missing(self, store, vault_root):
        assert not store.exists(vault_root)
        with pytest.raises(VaultNotFound):
            store.load(vault_root)

    def test_repr_hides_salt(self, store, vault_root):
        metadata = store.create(vault_root, TextEncryption.AES256_GCM)

        assert "salt" not in repr(metadata)


class TestCorruption:
    @pytest.fixture
    def metadata_path(self, store, vault_root):
        store.create(vault_root, TextEncryption.AES256_GCM)
        return store.metadata_path(vault_root)

    def test_invalid_json(self, store, vault_root, metadata_path):
        metadata_path.write_text("{not json")

        with pytest.raises(VaultCorrupt):
            store.load(vault_root)

    @pytest.mark.parametrize("changes", [
        {"format_version": 99},
        {"salt": "AAAA"},
        {"salt": "%%%"},
        {"text_encryption": "rot13"},
        {"kdf": {"algorithm": "scrypt"}},
        {"kdf": "argon2id"},
        {"created_at": "yesterday"},
    ])
    def test_bad_values(self, store, vault_root, metadata_path, changes):
        _rewrite(metadata_path, **changes)

        with pytest.raises(VaultCorrupt):
            store.load(vault_root)

    def test_missing_field(self, store, vault_root, metadata_path):
        data = json.loads(metadata_path.read_text())
        del data["salt"]
        metadata_path.write_text(json.dumps(data))

        with pytest.raises(VaultCorrupt):
            store.load(vault_root)

    def test_not_an_object(self, store, vault_root, metadata_path):
        metadata_path.write_text("[]")

        with pytest.raises(VaultCorrupt):
            store.load(vault_root)


class TestUpdate:
    def test_changes_default_and_keeps_salt(self, store, vault_root):
        original = store.create(vault_root, TextEncryption.AES256_GCM)
        updated = store.update(
            vault_root, original, text_encryption=TextEncryption.CHACHA20_POLY1305
        )
        reloaded = store.load(vault_root)

        assert reloaded.text_encryption is TextEncryption.CHACHA20_POLY1305
        assert reloaded.salt == original.salt
        assert reloaded.kdf == original.kdf
        assert reloaded.created_at == original.created_at
        assert updated.updated_at >= original.updated_at

    def test_no_change_writes_nothing(self, store, vault_root):
        original = store.create(vault_root, TextEncryption.AES256_GCM)
        path = store.metadata_path(vault_root)
        before = path.read_bytes()

        result = store.update(vault_root, original, append_algorithms=tuple(TextEncryption))

        assert result is original
        assert path.read_bytes() == before

    def test_appends_missing_algorithms(self, store, vault_root):
        store.create(vault_root, TextEncryption.AES256_GCM)
        _rewrite(store.metadata_path(vault_root), available_text_encryptions=["aes256_gcm"])
        narrowed = store.load(vault_root)

        widened = store.update(vault_root, narrowed, append_algorithms=tuple(TextEncryption))

        assert widened.available_text_encryptions == tuple(TextEncryption)
        assert store.load(vault_root).available_text_encryptions == tuple(TextEncryption)


def test_canary_absent_by_default(store, vault_root):
    store.create(vault_root, TextEncryption.AES256_GCM)

    assert store.load_canary(vault_root) is None


def test_corrupt_canary(store, vault_root):
    store.create(vault_root, TextEncryption.AES256_GCM)
    store.canary_path(vault_root).write_text('{"format_version": 7}')

    with pytest.raises(VaultCorrupt):
        store.load_canary(vault_root)
