"""
Session module - Vault unlock/lock lifecycle.
"""

from journalvault.core.session.session_control import (
    ImageCache,
    KeySnapshot,
    Session,
    SessionManager,
    UnlockResult,
    lock_all_sessions,
)

__all__ = [
    "ImageCache",
    "KeySnapshot",
    "Session",
    "SessionManager",
    "UnlockResult",
    "lock_all_sessions",
]
