"""Concrete implementation of the in-memory TTL Caching Service.

Entries expire purely by time: there is no size bound and no LRU ordering.
An expired entry is invisible to `get` immediately; a periodic sweep
removes the ones that are never read again.
"""

import asyncio
import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

# Domain Layer Imports
from atsgate.domain.interfaces.cache import CacheService
from atsgate.domain.models.common import CacheKey, Clock
from atsgate.infrastructure.resilience.periodic import PeriodicTask

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60 * 60 # 1 hour
DEFAULT_SWEEP_INTERVAL_SECONDS = 5 * 60 # 5 minutes

@dataclass
class CacheEntry:
    """Internal representation of a cache entry with expiry."""
    value: Any
    expires_at: float # Unix timestamp when the entry expires

def derive_cache_key(resume_text: str, job_desc_text: str) -> CacheKey:
    """Builds the content-addressed key for a (resume, job description) pair.

    Callers pass normalized text. The raw text never becomes the key, and
    identical content maps to the same key whoever asks. The pair is hashed as
    a JSON array so no separator character inside either text can make two
    different pairs collide.
    """
    combined = json.dumps([resume_text, job_desc_text], ensure_ascii=False)
    return CacheKey(hashlib.sha256(combined.encode("utf-8")).hexdigest())

class TTLCache(CacheService):
    """In-memory key/value store with per-entry expiry."""

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Clock = time.time,
    ):
        """Initializes the caching service.

        Args:
            default_ttl: Seconds an entry lives when `set` is given no ttl.
            sweep_interval: Seconds between background purges.
            clock: Returns the current Unix time; injectable for tests.
        """
        if default_ttl <= 0:
            raise ValueError(f"default_ttl must be positive, got {default_ttl}")
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._lock = asyncio.Lock()
        self._sweeper = PeriodicTask(self.sweep, sweep_interval, name="cache-sweep")
        logger.info(f"TTLCache initialized (ttl={default_ttl}s, sweep every {sweep_interval}s)")

    # --- CacheService Interface Implementation ---

    async def get(self, key: CacheKey) -> Optional[Any]:
        """Returns the value for `key`, or None if missing or expired."""
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                logger.debug(f"Cache miss for key: {key[:12]}")
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                logger.debug(f"Cache entry expired for key: {key[:12]}")
                return None
            logger.debug(f"Cache hit for key: {key[:12]}")
            return entry.value

    async def set(self, key: CacheKey, value: Any, ttl: Optional[float] = None) -> None:
        """Stores `value`, overwriting any previous entry for `key`."""
        effective_ttl = ttl if ttl is not None else self.default_ttl
        async with self._lock:
            self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + effective_ttl)
        logger.debug(f"Stored item in cache: key={key[:12]}, ttl={effective_ttl}s")

    async def delete(self, key: CacheKey) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()
        logger.info("Cleared in-memory cache.")

    async def has(self, key: CacheKey) -> bool:
        """True for a live entry, including one whose value is None."""
        async with self._lock:
            entry = self._entries.get(key)
            return entry is not None and self._clock() < entry.expires_at

    async def sweep(self) -> int:
        """Removes every expired entry. Returns how many were removed."""
        async with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if now >= e.expires_at]
            for k in expired:
                del self._entries[k]
        if expired:
            logger.debug(f"Swept {len(expired)} expired cache entries")
        return len(expired)

    def stats(self) -> Dict[str, Any]:
        return {"size": len(self._entries), "ttl_seconds": self.default_ttl}

    # --- Lifecycle ---

    def start(self) -> None:
        """Starts the background sweep on the running event loop."""
        self._sweeper.start()

    async def stop(self) -> None:
        """Stops the background sweep."""
        await self._sweeper.stop()

    async def __aenter__(self) -> "TTLCache":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()
