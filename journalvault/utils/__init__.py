"""
Utils module - Path and input validation helpers.
"""

from journalvault.utils.paths import (
    infer_extension,
    is_path_within_directory,
    normalize_reference,
    to_posix_relative,
)
from journalvault.utils.validators import (
    ValidationError,
    validate_entry_id,
    validate_optional_string,
    validate_string_safe,
    validate_vault_directory,
)

__all__ = [
    "infer_extension",
    "is_path_within_directory",
    "normalize_reference",
    "to_posix_relative",
    "ValidationError",
    "validate_entry_id",
    "validate_optional_string",
    "validate_string_safe",
    "validate_vault_directory",
]
