"""
Secure Key Storage
==================

Holds the derived vault key for the lifetime of a session.

Security Properties:
- Explicit zeroization on lock (don't rely on Python GC)
- Memory locking where supported (prevent swapping)
- Exception-safe cleanup

Limitations:
- Python's memory model copies data internally
- Best-effort security, not guaranteed
"""

from __future__ import annotations

import ctypes
import platform
from typing import Final

from journalvault.core.memory.zeroization import secure_zero

IS_WINDOWS: Final[bool] = platform.system() == "Windows"
IS_LINUX: Final[bool] = platform.system() == "Linux"
IS_MACOS: Final[bool] = platform.system() == "Darwin"


_WINDOWS_CALLS: Final[dict[str, str]] = {"mlock": "VirtualLock", "munlock": "VirtualUnlock"}


def _libc_call(name: str, address: int, size: int) -> bool:
    """Call mlock/munlock (or the Windows equivalents); False on any failure."""
    try:
        if IS_WINDOWS:
            func = getattr(ctypes.windll.kernel32, _WINDOWS_CALLS[name])
            return bool(func(ctypes.c_void_p(address), ctypes.c_size_t(size)))
        if IS_LINUX or IS_MACOS:
            libc = ctypes.CDLL("libc.so.6" if IS_LINUX else "libc.dylib", use_errno=True)
            return getattr(libc, name)(ctypes.c_void_p(address), ctypes.c_size_t(size)) == 0
    except (OSError, AttributeError):
        return False
    return False


class SecureBuffer:
    """
    Fixed-size key buffer with explicit zeroization.

    Usage:
        key = SecureBuffer.from_bytes(derived)
        try:
            cipher.encrypt(data, key.data)
        finally:
            key.wipe()

    Security Notes:
        - ``data`` returns a copy; keep its lifetime short
        - wipe() is idempotent and also runs on garbage collection
    """

    __slots__ = ("_buffer", "_wiped", "_locked", "__weakref__")

    def __init__(self, size: int, lock_memory: bool = True) -> None:
        if size <= 0:
            raise ValueError("Buffer size must be positive")

        self._buffer = bytearray(size)
        self._wiped = False
        self._locked = False

        if lock_memory:
            self._locked = _libc_call("mlock", self._address(), size)

    @classmethod
    def from_bytes(cls, data: bytes | bytearray, lock_memory: bool = True) -> "SecureBuffer":
        """
        Copy key material into a new buffer.

        The source is NOT wiped; callers holding a bytearray should
        secure_zero() it themselves.
        """
        buf = cls(size=len(data), lock_memory=lock_memory)
        buf._buffer[:] = data
        return buf

    def _address(self) -> int:
        return ctypes.addressof((ctypes.c_char * len(self._buffer)).from_buffer(self._buffer))

    @property
    def data(self) -> bytes:
        """Buffer content as immutable bytes (a copy)."""
        if self._wiped:
            raise ValueError("Buffer has been wiped")
        return bytes(self._buffer)

    @property
    def is_wiped(self) -> bool:
        return self._wiped

    @property
    def is_locked(self) -> bool:
        """True when the pages are pinned in RAM."""
        return self._locked

    def wipe(self) -> None:
        """Overwrite the buffer and release any memory lock."""
        if self._wiped:
            return

        secure_zero(self._buffer)
        if self._locked:
            _libc_call("munlock", self._address(), len(self._buffer))
            self._locked = False
        self._wiped = True

    def __enter__(self) -> "SecureBuffer":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.wipe()

    def __del__(self) -> None:
        try:
            self.wipe()
        except Exception:
            pass  # Best effort during interpreter shutdown

    def __len__(self) -> int:
        return len(self._buffer)

    def __repr__(self) -> str:
        """Safe representation."""
        if self._wiped:
            return "SecureBuffer(WIPED)"
        return f"SecureBuffer(size={len(self._buffer)}, locked={self._locked})"
