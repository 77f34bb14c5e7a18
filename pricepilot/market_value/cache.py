"""Two-tier cache: process-local LRU with short TTL, durable SQLite with long TTL.

Both tiers share the ``get(key) -> value | None`` / ``set(key, value)``
contract. Expired entries are treated as absent even before eviction.
The tiers are independent; staleness up to the TTL is accepted.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

from ..common.config import Config
from ..common.database import get_connection
from .models import CacheEntry

logger = logging.getLogger(__name__)


class MemoryCache:
    """Thread-safe bounded LRU cache with a per-instance TTL.

    Args:
        max_size: Entries kept before least-recently-used eviction.
        ttl: Seconds an entry stays fresh.
        clock: Time source (seconds).
    """

    def __init__(
        self,
        max_size: int = 100,
        ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self.ttl = ttl
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return entry.payload

    def set(self, key: str, value: Any) -> None:
        entry = CacheEntry(key=key, payload=value, created_at=self._clock(), ttl=self.ttl)
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = entry
            while len(self._entries) > self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted %s from memory cache", evicted)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None


class DurableCache:
    """SQLite-backed cache tier shared across processes.

    Rows live in ``vehicle_value_cache``; freshness is filtered on read by
    ``created_at``. ``set`` upserts, so a refreshed value restarts its TTL.
    Errors propagate; the engine decides which ones to swallow.
    """

    def __init__(
        self,
        config: Config | None = None,
        ttl: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or Config()
        self.ttl = self.config.durable_cache_ttl if ttl is None else ttl
        self._clock = clock

    def get(self, key: str) -> Any | None:
        cutoff = self._clock() - self.ttl
        conn = get_connection(self.config)
        try:
            row = conn.execute(
                "SELECT value_data FROM vehicle_value_cache "
                "WHERE cache_key = ? AND created_at >= ?",
                (key, cutoff),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return json.loads(row["value_data"])

    def set(self, key: str, value: Any, make: str = "", model: str = "", year: int = 0) -> None:
        now = self._clock()
        conn = get_connection(self.config)
        try:
            conn.execute(
                """
                INSERT INTO vehicle_value_cache
                    (cache_key, make, model, year, value_data, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(cache_key) DO UPDATE SET
                    value_data = excluded.value_data,
                    created_at = excluded.created_at,
                    updated_at = excluded.updated_at
                """,
                (key, make, model, year, json.dumps(value), now, now),
            )
            conn.commit()
        finally:
            conn.close()

    def purge_expired(self) -> int:
        """Delete stale rows. Returns the number removed."""
        cutoff = self._clock() - self.ttl
        conn = get_connection(self.config)
        try:
            cursor = conn.execute(
                "DELETE FROM vehicle_value_cache WHERE created_at < ?", (cutoff,)
            )
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()
