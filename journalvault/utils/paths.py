"""
Path Utilities
==============

OS-aware path handling for vault-relative references.
"""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Final, Optional

from werkzeug.utils import secure_filename

DEFAULT_EXTENSION: Final[str] = "bin"
MAX_EXTENSION_LENGTH: Final[int] = 10

_MIME_EXTENSIONS: Final[dict[str, str]] = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/bmp": "bmp",
    "image/svg+xml": "svg",
}


def is_path_within_directory(path: Path, directory: Path) -> bool:
    """
    Check if a path is safely within a directory (prevents path traversal).

    Args:
        path: The path to check
        directory: The containing directory

    Returns:
        True if path is safely within directory
    """
    try:
        resolved_path = path.resolve()
        resolved_dir = directory.resolve()
        return resolved_path.is_relative_to(resolved_dir)
    except (ValueError, RuntimeError, OSError):
        return False


def to_posix_relative(path: Path, root: Path) -> str:
    """Render ``path`` relative to ``root`` with forward slashes."""
    return PurePosixPath(*path.relative_to(root).parts).as_posix()


def normalize_reference(reference: str) -> str:
    """
    Normalize an image reference as found in entry content.

    Backslashes become forward slashes and leading separators are dropped,
    so "/images/a.png", "\\images\\a.png" and "images/a.png" are equivalent.
    """
    return reference.strip().replace("\\", "/").lstrip("/")


def infer_extension(name: Optional[str] = None, mime: Optional[str] = None) -> str:
    """
    Pick a file extension for a stored image.

    The extension of ``name`` wins, then a known ``mime`` type, else "bin".
    The result is lowercase, alphanumeric and short.
    """
    if name:
        cleaned = secure_filename(name)
        suffix = Path(cleaned).suffix.lstrip(".").lower()
        if suffix and suffix.isalnum() and len(suffix) <= MAX_EXTENSION_LENGTH:
            return suffix

    if mime:
        ext = _MIME_EXTENSIONS.get(mime.strip().lower())
        if ext:
            return ext

    return DEFAULT_EXTENSION
