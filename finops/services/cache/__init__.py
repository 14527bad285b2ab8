"""Local cache for fetched billing data."""

from .store import DATA_TYPES, CacheEntry, CacheStore

__all__ = ["CacheEntry", "CacheStore", "DATA_TYPES"]
