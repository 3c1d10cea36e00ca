"""
Export Engine
=============

Plaintext Markdown export of every entry.

This is the only operation that deliberately writes plaintext, and only to
the destination the caller asked for (default ``exports/diary-YYYY-MM-DD.md``
under the vault root). Every entry file on disk is decrypted before anything
is written, including entries left out of the index as damaged at unlock;
if one fails, the export fails and no file appears at the destination.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Final, Optional

from journalvault.core.session.session_control import Session
from journalvault.core.storage.atomic import atomic_write
from journalvault.core.storage.entries import Entry, EntryStore

EXPORTS_DIRNAME: Final[str] = "exports"
SECTION_SEPARATOR: Final[str] = "\n---\n\n"

_log = logging.getLogger("journalvault.export")


def render_entry(entry: Entry) -> str:
    lines = [
        f"# {entry.title}",
        f"Created: {entry.created_at.isoformat()}",
        f"Updated: {entry.updated_at.isoformat()}",
    ]
    if entry.folder:
        lines.append(f"Folder: {entry.folder}")
    return "\n".join(lines) + f"\n\n{entry.content}\n"


def default_export_path(root: Path, now: Optional[datetime] = None) -> Path:
    now = now or datetime.now(timezone.utc)
    return root / EXPORTS_DIRNAME / f"diary-{now:%Y-%m-%d}.md"


class ExportEngine:
    """
    Renders all entries, newest first, as one Markdown document.

    Holds the session's mutation lock while decrypting so the document
    reflects a single consistent state of the vault.
    """

    def __init__(self, session: Session) -> None:
        self._session = session
        self._entries = EntryStore(session)

    def _render_all(self) -> tuple[str, int]:
        entries = self._entries.load_all()
        return SECTION_SEPARATOR.join(render_entry(e) for e in entries), len(entries)

    def render(self) -> str:
        """
        Decrypt every entry and return the Markdown document.

        Raises:
            LockedError: If the session is closed
            AuthenticationFailure: If any entry fails authentication
            VaultCorrupt: If any entry file is malformed
        """
        with self._session.mutating():
            document, _ = self._render_all()
        self._session.ensure_current()
        return document

    def export_plaintext(self, destination: Optional[Path | str] = None) -> Path:
        """
        Write the Markdown document to ``destination``.

        Returns:
            Path of the written file

        Raises:
            LockedError: If the session is closed
            AuthenticationFailure: If any entry fails authentication
            VaultCorrupt: If any entry file is malformed
            VaultIOError: If the document cannot be written
        """
        with self._session.mutating():
            document, count = self._render_all()
            target = (
                Path(destination).expanduser()
                if destination is not None
                else default_export_path(self._session.root)
            )
            atomic_write(target, document.encode("utf-8"), fsync=self._session.fsync)

        _log.info("Exported %d entries to %s", count, target)
        return target
