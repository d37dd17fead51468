"""
app/repositories package marker.
"""

from app.repositories.dataset_cache import CacheEntry, DatasetCache
from app.repositories.errors import (
    EmptySourceError,
    MalformedHeaderError,
    SourceUnavailableError,
    TabularStoreError,
)

__all__ = [
    "CacheEntry",
    "DatasetCache",
    "EmptySourceError",
    "MalformedHeaderError",
    "SourceUnavailableError",
    "TabularStoreError",
]
