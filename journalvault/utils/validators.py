"""
Validation Utilities
====================

Input validation for the command surface.
"""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import Any, Optional

from journalvault.core.errors import VaultIOError


class ValidationError(ValueError):
    """Raised when caller input is invalid."""

    code = "invalid_input"


def validate_string_safe(
    value: str,
    min_length: int = 0,
    max_length: int = 1000,
    allow_empty: bool = False,
    field_name: str = "value",
) -> str:
    """
    Validate a string value for safety.

    Raises:
        ValidationError: If validation fails
    """
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string")

    if not allow_empty and not value:
        raise ValidationError(f"{field_name} cannot be empty")

    if len(value) < min_length:
        raise ValidationError(
            f"{field_name} must be at least {min_length} characters"
        )

    if len(value) > max_length:
        raise ValidationError(
            f"{field_name} must be at most {max_length} characters"
        )

    # Null bytes are never valid in names or labels
    if "\x00" in value:
        raise ValidationError(f"{field_name} contains invalid characters")

    return value


def validate_optional_string(value: Any, field_name: str = "value") -> Optional[str]:
    """Accept None or a string, reject any other type."""
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string")
    return value


def validate_entry_id(value: str) -> str:
    """
    Validate an entry id (canonical UUID string).

    Entry ids become file names, so anything else is rejected before it
    can reach the filesystem.
    """
    if not isinstance(value, str):
        raise ValidationError("entry id must be a string")
    try:
        parsed = uuid.UUID(value)
    except ValueError as e:
        raise ValidationError(f"Invalid entry id: {value!r}") from e
    if str(parsed) != value.lower():
        raise ValidationError(f"Invalid entry id: {value!r}")
    return str(parsed)


def validate_vault_directory(directory: Optional[str | Path], default: Path) -> Path:
    """
    Resolve the vault root chosen by the caller.

    A missing directory argument selects ``default``. Blank strings and
    paths to existing files are rejected. The directory is created if it
    does not exist yet.

    Raises:
        ValidationError: If the directory is unusable
        VaultIOError: If it cannot be created
    """
    if directory is None:
        path = default
    else:
        text = str(directory).strip()
        if not text:
            raise ValidationError("Vault directory cannot be empty")
        path = Path(text).expanduser()

    if path.is_file():
        raise ValidationError(f"Vault location is a file, not a directory: {path}")

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise VaultIOError(f"Cannot create vault directory {path}: {e.strerror or e}") from e
    return path.resolve()
