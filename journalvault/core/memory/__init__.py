"""
JournalVault Memory Security Module
===================================

Secure handling of the derived vault key.

Components:
- secure_memory.py: SecureBuffer holding the session key
- zeroization.py: Memory wiping utilities

WARNING:
- Python's memory model doesn't guarantee secure erasure
- These are best-effort mitigations
"""

from journalvault.core.memory.secure_memory import SecureBuffer
from journalvault.core.memory.zeroization import ZeroizeContext, secure_zero

__all__ = [
    "SecureBuffer",
    "ZeroizeContext",
    "secure_zero",
]
