"""
Key Derivation Functions
========================

Passphrase-based key derivation for vault keys.

Implements:
    - Argon2id for memory-hard passphrase stretching

Cost parameters are always taken from the stored vault metadata, never from
runtime defaults, so a vault stays unlockable when the defaults for new
vaults change in a later release.
"""

from __future__ import annotations

import secrets
from dataclasses import asdict, dataclass
from typing import Any, Final, Mapping

from argon2.low_level import Type, hash_secret_raw

KDF_ALGORITHM: Final[str] = "argon2id"

# Defaults for newly created vaults
ARGON2_MEMORY_COST: Final[int] = 32768  # 32 MB in KiB
ARGON2_TIME_COST: Final[int] = 2
ARGON2_PARALLELISM: Final[int] = 4
ARGON2_HASH_LEN: Final[int] = 32

SALT_SIZE: Final[int] = 16
MIN_SALT_SIZE: Final[int] = 16


@dataclass(frozen=True, slots=True)
class KdfParams:
    """
    Argon2id cost parameters as stored in vault metadata.

    Attributes:
        memory_cost: Memory usage in KiB
        time_cost: Number of iterations
        parallelism: Degree of parallelism (lanes)
        hash_len: Derived key length in bytes
    """

    memory_cost: int = ARGON2_MEMORY_COST
    time_cost: int = ARGON2_TIME_COST
    parallelism: int = ARGON2_PARALLELISM
    hash_len: int = ARGON2_HASH_LEN

    def __post_init__(self) -> None:
        """Reject parameters argon2 would refuse or that weaken the key."""
        if self.parallelism < 1:
            raise ValueError("parallelism must be at least 1")
        if self.time_cost < 1:
            raise ValueError("time_cost must be at least 1")
        if self.memory_cost < 8 * self.parallelism:
            raise ValueError("memory_cost must be at least 8 KiB per lane")
        if self.hash_len != ARGON2_HASH_LEN:
            raise ValueError(f"hash_len must be {ARGON2_HASH_LEN} bytes")

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the metadata file."""
        return {"algorithm": KDF_ALGORITHM, **asdict(self)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "KdfParams":
        """
        Deserialize from the metadata file.

        Raises:
            ValueError: If the algorithm is unknown or values are invalid
        """
        algorithm = data.get("algorithm", KDF_ALGORITHM)
        if algorithm != KDF_ALGORITHM:
            raise ValueError(f"Unsupported KDF: {algorithm!r}")
        try:
            return cls(
                memory_cost=int(data["memory_cost"]),
                time_cost=int(data["time_cost"]),
                parallelism=int(data["parallelism"]),
                hash_len=int(data.get("hash_len", ARGON2_HASH_LEN)),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed KDF parameters: {e}") from e


def generate_salt(length: int = SALT_SIZE) -> bytes:
    """Generate a random salt (at least 16 bytes)."""
    if length < MIN_SALT_SIZE:
        raise ValueError(f"Salt must be at least {MIN_SALT_SIZE} bytes")
    return secrets.token_bytes(length)


def derive_key(
    passphrase: str,
    salt: bytes,
    params: KdfParams,
) -> bytearray:
    """
    Derive a vault key from a passphrase using Argon2id.

    Args:
        passphrase: User passphrase
        salt: Salt stored in vault metadata (at least 16 bytes)
        params: Cost parameters stored in vault metadata

    Returns:
        Derived key in a mutable buffer so the caller can zeroize it

    Raises:
        ValueError: If the passphrase is empty or the salt is too short

    Security:
        - Deterministic: same passphrase + salt + params = same key
        - Memory-hard (resistant to GPU/ASIC attacks)
    """
    if not passphrase:
        raise ValueError("Passphrase cannot be empty")
    if len(salt) < MIN_SALT_SIZE:
        raise ValueError(f"Salt must be at least {MIN_SALT_SIZE} bytes")

    raw = hash_secret_raw(
        secret=passphrase.encode("utf-8"),
        salt=salt,
        time_cost=params.time_cost,
        memory_cost=params.memory_cost,
        parallelism=params.parallelism,
        hash_len=params.hash_len,
        type=Type.ID,
    )
    return bytearray(raw)
