"""
Web module - Local HTTP adapter for the command surface.
"""

from journalvault.web.app import create_app

__all__ = ["create_app"]
