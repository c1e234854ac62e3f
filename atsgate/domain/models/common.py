"""Defines common Value Objects used across different domain contexts.

These objects represent simple values like cache keys, identifiers and the
decisions returned by the rate limiter, ensuring consistency and type safety.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, NewType, Optional

# === Core Value Objects ===

# Using NewType for semantic clarity, although they are strings at runtime.
Identifier = NewType("Identifier", str)        # Requester identity (e.g. client IP)
ResumeText = NewType("ResumeText", str)        # Raw or normalized resume text
JobDescText = NewType("JobDescText", str)      # Raw or normalized job description

# === Caching Context ===
CacheKey = NewType("CacheKey", str)            # SHA-256 hex digest of normalized content

# === Time ===
Clock = Callable[[], float]                    # Returns Unix epoch seconds

# === Monitoring Context ===
EventKind = NewType("EventKind", str)          # 'api_call', 'log_error', ...
EventPayload = Dict[str, Any]

# --- Rate Limiting ---

@dataclass(frozen=True)
class RateLimitDecision:
    """Result of a single rate-limit check."""
    allowed: bool
    remaining: int
    reset_at: float # Unix timestamp when the current window ends

@dataclass(frozen=True)
class RateLimitStats:
    """Read-only view of an identifier's usage in the current window."""
    requests: int
    remaining: int
    reset_at: Optional[float] = None # None when no window is active
