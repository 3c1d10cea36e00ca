"""
Storage module - Vault metadata, encrypted entries, images and export.
"""

from journalvault.core.storage.atomic import atomic_write, atomic_write_json, remove_stale_temp_files
from journalvault.core.storage.metadata import VaultMetadata, VaultMetadataStore

__all__ = [
    "atomic_write",
    "atomic_write_json",
    "remove_stale_temp_files",
    "VaultMetadata",
    "VaultMetadataStore",
]
