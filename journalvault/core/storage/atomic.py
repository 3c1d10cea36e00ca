"""
Atomic File Persistence
=======================

Every vault file (metadata, canary, entries, images, exports) is written
through ``atomic_write``:

1. write the full payload to a temporary file in the target directory
2. flush and fsync it
3. ``os.replace`` it over the final path (the single commit point)

The final path therefore either keeps its previous version or holds the
complete new one, never a partial write. On failure before the rename the
temporary file is removed and the previous version is left intact.

``StagedWrites`` extends this to a batch: all payloads are written to temp
files first, then renamed in order, so a failure while preparing the batch
changes nothing on disk.
"""

from __future__ import annotations

import json
import os
import secrets
from pathlib import Path
from typing import Any, Final

from journalvault.core.errors import VaultIOError

TEMP_PREFIX: Final[str] = "."
TEMP_SUFFIX: Final[str] = ".tmp"


def temp_path_for(path: Path) -> Path:
    """Unique sibling temp path for ``path`` (hidden, ``.tmp`` suffix)."""
    return path.with_name(f"{TEMP_PREFIX}{path.name}.{secrets.token_hex(6)}{TEMP_SUFFIX}")


def is_temp_file(path: Path) -> bool:
    """True for files produced by ``temp_path_for``."""
    return path.name.startswith(TEMP_PREFIX) and path.name.endswith(TEMP_SUFFIX)


def _fsync_directory(directory: Path) -> None:
    """Persist the rename itself; not supported on Windows."""
    if os.name == "nt":
        return
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def _write_temp(path: Path, data: bytes, fsync: bool) -> Path:
    """Write ``data`` to a fresh sibling temp file of ``path`` and return it."""
    tmp = temp_path_for(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp, "xb") as f:
            f.write(data)
            f.flush()
            if fsync:
                os.fsync(f.fileno())
    except OSError as e:
        _discard(tmp)
        raise VaultIOError(f"Failed to write {path.name}: {e.strerror or e}") from e
    return tmp


def _discard(tmp: Path) -> None:
    try:
        tmp.unlink(missing_ok=True)
    except OSError:
        pass  # Original error is the one worth reporting


def atomic_write(path: Path, data: bytes, fsync: bool = True) -> None:
    """
    Atomically replace ``path`` with ``data``.

    Raises:
        VaultIOError: If any filesystem step fails (cause chained)
    """
    tmp = _write_temp(path, data, fsync)
    try:
        os.replace(tmp, path)
        if fsync:
            _fsync_directory(path.parent)
    except OSError as e:
        _discard(tmp)
        raise VaultIOError(f"Failed to write {path.name}: {e.strerror or e}") from e


def atomic_write_json(path: Path, payload: Any, fsync: bool = True) -> None:
    """Serialize ``payload`` as indented UTF-8 JSON and write it atomically."""
    atomic_write(path, _json_bytes(payload), fsync=fsync)


def _json_bytes(payload: Any) -> bytes:
    return json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8")


class StagedWrites:
    """
    A batch of file replacements prepared up front and renamed together.

    Every payload is written and synced to its temp file by ``stage``;
    nothing visible changes until ``commit`` renames them in staging order.
    Leaving the ``with`` block through an exception removes every temp file.

    Usage:
        with StagedWrites(fsync=True) as batch:
            batch.stage(path_a, data_a)
            batch.stage_json(path_b, payload)
            batch.commit()
    """

    def __init__(self, fsync: bool = True) -> None:
        self._fsync = fsync
        self._pending: list[tuple[Path, Path]] = []

    def __len__(self) -> int:
        return len(self._pending)

    def stage(self, path: Path, data: bytes) -> None:
        self._pending.append((_write_temp(path, data, self._fsync), path))

    def stage_json(self, path: Path, payload: Any) -> None:
        self.stage(path, _json_bytes(payload))

    def commit(self) -> None:
        """
        Rename every staged file into place.

        Raises:
            VaultIOError: If a rename fails; files renamed before it stay
                replaced, the rest are discarded
        """
        directories: set[Path] = set()
        while self._pending:
            tmp, path = self._pending[0]
            try:
                os.replace(tmp, path)
            except OSError as e:
                raise VaultIOError(f"Failed to replace {path.name}: {e.strerror or e}") from e
            self._pending.pop(0)
            directories.add(path.parent)
        if self._fsync:
            try:
                for directory in sorted(directories):
                    _fsync_directory(directory)
            except OSError as e:
                raise VaultIOError(f"Failed to sync directory: {e.strerror or e}") from e

    def discard(self) -> None:
        for tmp, _ in self._pending:
            _discard(tmp)
        self._pending.clear()

    def __enter__(self) -> "StagedWrites":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.discard()


def remove_stale_temp_files(directory: Path) -> int:
    """
    Delete leftovers of interrupted writes in ``directory``.

    Returns:
        Number of files removed
    """
    if not directory.is_dir():
        return 0

    removed = 0
    for candidate in directory.iterdir():
        if candidate.is_file() and is_temp_file(candidate):
            try:
                candidate.unlink()
                removed += 1
            except OSError as e:
                raise VaultIOError(f"Failed to remove {candidate.name}: {e.strerror or e}") from e
    return removed
