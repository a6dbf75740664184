"""silo-cache Shared Module.

This package contains constants, types, error handling and logging used
across silo-cache.
"""

__all__ = ["constants", "errors", "logging", "types"]
