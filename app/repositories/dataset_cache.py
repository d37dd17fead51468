"""
app/repositories/dataset_cache.py

Process-wide snapshot cache for tabular store loads.

Rules
-----
* One entry per source id, stamped with the load time.
* Entries older than the TTL are stale: the next ``get`` reloads, and the
  entry is replaced only when that reload succeeds. Stale entries are never
  evicted proactively.
* Concurrent ``get`` calls for the same source while a load is running wait
  on that load's future instead of starting another one.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """
    One cached snapshot and the clock reading at which it was loaded.
    """

    data: T
    loaded_at: float


class DatasetCache(Generic[T]):
    """
    TTL cache with a single in-flight load per key.

    Parameters
    ----------
    loader:
        Callable performing the actual load for a source id. Exceptions it
        raises propagate to every caller waiting on that load.
    ttl_seconds:
        Entry lifetime. ``0`` disables reuse entirely.
    clock:
        Monotonic time source; injectable so tests can move time forward.
    """

    def __init__(
        self,
        loader: Callable[[str], T],
        *,
        ttl_seconds: float = 1800.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader
        self._ttl_seconds = max(0.0, ttl_seconds)
        self._clock = clock
        self._entries: dict[str, CacheEntry[T]] = {}
        self._in_flight: dict[str, Future] = {}
        self._lock = threading.Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def get(self, source_id: str) -> T:
        """
        Return the cached snapshot for *source_id*, loading it when needed.
        """

        with self._lock:
            entry = self._entries.get(source_id)
            if entry is not None and self._is_fresh(entry):
                logger.debug("Dataset cache hit source=%r", source_id)
                return entry.data

            future = self._in_flight.get(source_id)
            owner = future is None
            if owner:
                future = Future()
                self._in_flight[source_id] = future

        if not owner:
            logger.debug("Dataset cache waiting on in-flight load source=%r", source_id)
            return future.result()

        try:
            data = self._loader(source_id)
        except BaseException as exc:
            with self._lock:
                self._in_flight.pop(source_id, None)
            future.set_exception(exc)
            raise

        with self._lock:
            self._entries[source_id] = CacheEntry(data=data, loaded_at=self._clock())
            self._in_flight.pop(source_id, None)
        future.set_result(data)
        logger.info("Dataset cache stored source=%r", source_id)
        return data

    def peek(self, source_id: str) -> CacheEntry[T] | None:
        """
        Return the raw entry (fresh or stale) without loading.
        """

        with self._lock:
            return self._entries.get(source_id)

    def invalidate(self, source_id: str | None = None) -> None:
        """
        Drop one entry, or every entry when *source_id* is ``None``.
        """

        with self._lock:
            if source_id is None:
                self._entries.clear()
            else:
                self._entries.pop(source_id, None)

    def _is_fresh(self, entry: CacheEntry[T]) -> bool:
        return (self._clock() - entry.loaded_at) < self._ttl_seconds
