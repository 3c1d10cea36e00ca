"""
Memory Zeroization Utilities
============================

Explicit overwriting of key material and derived secrets.

Key Concepts:
- Zeroization: Overwriting memory with zeros/patterns
- Guard: Automatic cleanup on scope exit
"""

from __future__ import annotations

import ctypes
from contextlib import contextmanager
from typing import Iterator


def secure_zero(data: bytearray | memoryview) -> None:
    """
    Securely zero a mutable byte buffer.

    Uses ctypes for direct memory access on bytearrays, with a
    Python-level fallback for memoryviews.

    Security Notes:
        - This is best-effort; Python may hold copies elsewhere
        - Buffer must be mutable (bytearray, not bytes)
    """
    size = len(data)
    if size == 0:
        return

    if isinstance(data, memoryview):
        for i in range(size):
            data[i] = 0
        return

    addr = ctypes.addressof((ctypes.c_char * size).from_buffer(data))
    ctypes.memset(addr, 0, size)
    ctypes.memset(addr, 0xFF, size)
    ctypes.memset(addr, 0, size)


@contextmanager
def ZeroizeContext(*buffers: bytearray) -> Iterator[None]:
    """
    Context manager that zeroizes buffers on exit, normal or exceptional.

    Usage:
        key = derive_key(passphrase, salt, params)
        with ZeroizeContext(key):
            validate(key)
        # key is now zeroed
    """
    try:
        yield
    finally:
        for buf in buffers:
            secure_zero(buf)
