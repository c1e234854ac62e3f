"""Domain Events recorded by the governance layer.

Every event carries a kind, a timestamp and a free-form payload. The
well-known kinds are listed here so producers and the stats scan agree.
"""

from dataclasses import dataclass, field
import time
from typing import Any, Dict

# --- Event kinds ---
API_CALL = "api_call"                 # One upstream attempt or one finished analysis
RETRY_SCHEDULED = "retry_scheduled"   # A backoff delay was scheduled
TIMING = "timing"                     # Duration of a measured block
RATE_LIMIT_DENIED = "rate_limit_denied"
CACHE_HIT = "cache_hit"
CACHE_MISS = "cache_miss"
LOG_PREFIX = "log_"                   # log_info, log_warning, log_error
LOG_ERROR = "log_error"

@dataclass(frozen=True)
class Event:
    """A single operational event held by the EventRecorder."""
    kind: str
    timestamp: float = field(default_factory=time.time)
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        """Error-level log records. A failure is logged at ERROR once, where it is finally handled."""
        return self.kind == LOG_ERROR
