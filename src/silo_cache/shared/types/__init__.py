"""Shared type aliases for silo-cache."""

from .cache import NetworkFetch

__all__ = ["NetworkFetch"]
