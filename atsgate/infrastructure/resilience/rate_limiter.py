"""Implementation of a rate limiter.

Controls how many requests each identifier may make per time window.
Uses a fixed-window counter: a burst of up to 2x max_requests can straddle
a window boundary, which is accepted behaviour for this limiter.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional

from atsgate.domain.models.common import Clock, Identifier, RateLimitDecision, RateLimitStats
from atsgate.infrastructure.resilience.periodic import PeriodicTask

logger = logging.getLogger(__name__)

DEFAULT_MAX_REQUESTS = 10 # Max 10 requests...
DEFAULT_WINDOW_SECONDS = 60.0 # ...per 60 seconds
DEFAULT_SWEEP_INTERVAL_SECONDS = 60.0

@dataclass
class RateLimitRecord:
    """Internal per-identifier counter. Never leaves the limiter."""
    count: int
    reset_at: float

class RateLimiter:
    """Fixed-window per-identifier rate limiter."""

    def __init__(
        self,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Clock = time.time,
    ):
        """Initializes the rate limiter.

        Args:
            max_requests: Maximum number of requests allowed in one window.
            window_seconds: Length of the window in seconds.
            sweep_interval: Seconds between background purges of expired records.
            clock: Returns the current Unix time; injectable for tests.
        """
        if max_requests < 1:
            raise ValueError(f"max_requests must be at least 1, got {max_requests}")
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {window_seconds}")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._records: Dict[str, RateLimitRecord] = {}
        self._lock = asyncio.Lock()
        self._sweeper = PeriodicTask(self.sweep, sweep_interval, name="rate-limiter-sweep")
        logger.info(f"RateLimiter initialized: {max_requests} requests / {window_seconds} seconds")

    @property
    def size(self) -> int:
        """Number of records currently held, expired ones included."""
        return len(self._records)

    async def check(self, identifier: Identifier) -> RateLimitDecision:
        """Counts one request for `identifier` and reports whether it is allowed."""
        async with self._lock:
            now = self._clock()
            record = self._records.get(identifier)

            # No record or expired window
            if record is None or now >= record.reset_at:
                record = RateLimitRecord(count=1, reset_at=now + self.window_seconds)
                self._records[identifier] = record
                return RateLimitDecision(
                    allowed=True,
                    remaining=self.max_requests - 1,
                    reset_at=record.reset_at,
                )

            # Within window - check limit
            if record.count < self.max_requests:
                record.count += 1
                return RateLimitDecision(
                    allowed=True,
                    remaining=self.max_requests - record.count,
                    reset_at=record.reset_at,
                )

            logger.debug(f"Rate limit reached for '{identifier}' until {record.reset_at:.3f}")
            return RateLimitDecision(allowed=False, remaining=0, reset_at=record.reset_at)

    async def peek_stats(self, identifier: Identifier) -> RateLimitStats:
        """Returns current usage for `identifier` without counting a request."""
        async with self._lock:
            record = self._records.get(identifier)
            if record is None or self._clock() >= record.reset_at:
                return RateLimitStats(requests=0, remaining=self.max_requests, reset_at=None)
            return RateLimitStats(
                requests=record.count,
                remaining=max(0, self.max_requests - record.count),
                reset_at=record.reset_at,
            )

    async def sweep(self) -> int:
        """Removes records whose window has ended. Returns how many were removed."""
        async with self._lock:
            now = self._clock()
            expired = [k for k, r in self._records.items() if now >= r.reset_at]
            for k in expired:
                del self._records[k]
        if expired:
            logger.debug(f"Swept {len(expired)} expired rate-limit records")
        return len(expired)

    async def reset(self, identifier: Optional[Identifier] = None) -> None:
        """Forgets one identifier's window, or all of them."""
        async with self._lock:
            if identifier is None:
                self._records.clear()
            else:
                self._records.pop(identifier, None)

    # --- Lifecycle ---

    def start(self) -> None:
        """Starts the background sweep on the running event loop."""
        self._sweeper.start()

    async def stop(self) -> None:
        """Stops the background sweep."""
        await self._sweeper.stop()

    async def __aenter__(self) -> "RateLimiter":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()
