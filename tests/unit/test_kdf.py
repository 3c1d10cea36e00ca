"""Tests for journalvault.core.crypto.kdf."""

import pytest

from journalvault.core.crypto.kdf import KdfParams, derive_key, generate_salt

FAST = KdfParams(memory_cost=1024, time_cost=1, parallelism=1)


class TestDeriveKey:
    """Argon2id derivation."""

    def test_deterministic(self):
        salt = generate_salt()

        assert derive_key("passphrase", salt, FAST) == derive_key("passphrase", salt, FAST)

    def test_returns_32_byte_mutable_buffer(self):
        key = derive_key("passphrase", generate_salt(), FAST)

        assert isinstance(key, bytearray)
        assert len(key) == 32

    def test_salt_changes_key(self):
        assert derive_key("passphrase", generate_salt(), FAST) != derive_key(
            "passphrase", generate_salt(), FAST
        )

    def test_passphrase_changes_key(self):
        salt = generate_salt()

        assert derive_key("passphrase", salt, FAST) != derive_key("Passphrase", salt, FAST)

    def test_params_change_key(self):
        salt = generate_salt()
        other = KdfParams(memory_cost=2048, time_cost=1, parallelism=1)

        assert derive_key("passphrase", salt, FAST) != derive_key("passphrase", salt, other)

    def test_empty_passphrase_rejected(self):
        with pytest.raises(ValueError):
            derive_key("", generate_salt(), FAST)

    def test_short_salt_rejected(self):
        with pytest.raises(ValueError):
            derive_key("passphrase", b"\x00" * 15, FAST)


class TestKdfParams:
    """Parameter validation and metadata serialization."""

    def test_defaults(self):
        params = KdfParams()

        assert (params.memory_cost, params.time_cost, params.parallelism) == (32768, 2, 4)

    @pytest.mark.parametrize("kwargs", [
        {"parallelism": 0},
        {"time_cost": 0},
        {"memory_cost": 31, "parallelism": 4},
        {"hash_len": 16},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            KdfParams(**kwargs)

    def test_dict_round_trip(self):
        data = FAST.to_dict()

        assert data["algorithm"] == "argon2id"
        assert KdfParams.from_dict(data) == FAST

    def test_unknown_algorithm(self):
        with pytest.raises(ValueError):
            KdfParams.from_dict({**FAST.to_dict(), "algorithm": "scrypt"})

    def test_missing_field(self):
        with pytest.raises(ValueError):
            KdfParams.from_dict({"memory_cost": 1024, "time_cost": 1})


def test_generate_salt_minimum_length():
    assert len(generate_salt()) == 16
    assert len(generate_salt(32)) == 32
    with pytest.raises(ValueError):
        generate_salt(8)
