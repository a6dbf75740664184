"""
Security helpers for silo-cache.

File permission handling for the on-disk cache database.
"""

from .permissions import set_secure_file_permissions

__all__ = ["set_secure_file_permissions"]
