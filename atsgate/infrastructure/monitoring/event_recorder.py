"""Bounded in-memory log of operational events.

Keeps the most recent events in a ring buffer for stats and health
reporting. The API is synchronous and thread-safe so logging handlers and
worker threads can record alongside the event loop.
"""

import dataclasses
import logging
import threading
import time
from collections import deque
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Deque, Dict, List, Optional

from atsgate.domain.events.api_events import API_CALL, LOG_PREFIX, TIMING, Event
from atsgate.domain.models.common import Clock

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000
DEFAULT_STATS_WINDOW_SECONDS = 24 * 60 * 60

def _detached(event: Event) -> Event:
    """Copy of `event` whose payload is not shared with the buffer."""
    return dataclasses.replace(event, payload=dict(event.payload))

class EventRecorder:
    """Fixed-capacity FIFO event buffer."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY, clock: Clock = time.time):
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self._clock = clock
        # deque drops from the left once maxlen is reached
        self._events: Deque[Event] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._events)

    def record(self, kind: str, payload: Optional[Dict[str, Any]] = None) -> Event:
        """Appends an event, evicting the oldest one when full."""
        event = Event(kind=kind, timestamp=self._clock(), payload=dict(payload or {}))
        with self._lock:
            self._events.append(event)
        return _detached(event)

    def track_call(
        self,
        name: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None,
        **details: Any,
    ) -> Event:
        """Records a standard call-telemetry event."""
        payload = {"name": name, "duration_ms": duration_ms, "success": success, "error": error}
        payload.update(details)
        return self.record(API_CALL, payload)

    def recent(self, count: int = 50) -> List[Event]:
        """Returns up to `count` of the newest events, oldest first."""
        if count <= 0:
            return []
        with self._lock:
            snapshot = list(self._events)[-count:]
        return [_detached(e) for e in snapshot]

    def stats(self, window_seconds: float = DEFAULT_STATS_WINDOW_SECONDS) -> Dict[str, int]:
        """Summarizes the buffer: total, recent (within window), errors, api_calls."""
        with self._lock:
            snapshot = list(self._events)
        now = self._clock()
        return {
            "total": len(snapshot),
            "recent": sum(1 for e in snapshot if now - e.timestamp < window_seconds),
            "errors": sum(1 for e in snapshot if e.is_error),
            "api_calls": sum(1 for e in snapshot if e.kind == API_CALL),
        }

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    @asynccontextmanager
    async def measure(self, name: str) -> AsyncIterator[None]:
        """Times the enclosed block, logs the duration and records a timing event."""
        start = time.perf_counter()
        try:
            yield
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.warning(f"Performance: {name} failed after {duration_ms:.1f}ms: {e}")
            self.record(TIMING, {"name": name, "duration_ms": duration_ms, "success": False, "error": str(e)})
            raise
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(f"Performance: {name} took {duration_ms:.1f}ms")
        self.record(TIMING, {"name": name, "duration_ms": duration_ms, "success": True})

class RecorderLogHandler(logging.Handler):
    """Mirrors log records into an EventRecorder as `log_<level>` events."""

    def __init__(self, recorder: EventRecorder, level: int = logging.INFO):
        super().__init__(level)
        self.recorder = recorder

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.recorder.record(
                f"{LOG_PREFIX}{record.levelname.lower()}",
                {"message": record.getMessage(), "logger": record.name},
            )
        except Exception:
            self.handleError(record)
