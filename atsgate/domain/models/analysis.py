"""Domain models for resume analysis and upstream requests.

AnalysisResult is the value stored in the cache, so it is frozen and built
from tuples: handing the same instance to several callers is safe.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from .common import RateLimitDecision


@dataclass(frozen=True)
class RetryableRequest:
    """One logical call to the generation upstream.

    Attributes:
        system_prompt: Instruction sent as the system message.
        user_text: Content sent as the user message.
        max_retries: Total number of attempts allowed (at least 1).
        timeout_seconds: Per-attempt timeout.
        name: Label used in logs and telemetry events.
    """
    system_prompt: str
    user_text: str
    max_retries: int = 3
    timeout_seconds: float = 30.0
    name: str = "generate"

    def __post_init__(self):
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {self.max_retries}")
        if self.timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {self.timeout_seconds}")


@dataclass(frozen=True)
class Suggestion:
    """A rewritten resume bullet that weaves in missing keywords."""
    original: str
    suggested: str


@dataclass(frozen=True)
class AnalysisResult:
    """Outcome of matching a resume against a job description."""
    score: int
    matched: Tuple[str, ...] = ()
    missing: Tuple[str, ...] = ()
    suggestions: Tuple[Suggestion, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "matched": list(self.matched),
            "missing": list(self.missing),
            "suggestions": [
                {"original": s.original, "suggested": s.suggested}
                for s in self.suggestions
            ],
        }


# Outcome statuses returned by the analysis workflow
STATUS_OK = "ok"
STATUS_RATE_LIMITED = "rate_limited"
STATUS_NO_KEYWORDS = "no_keywords"


@dataclass(frozen=True)
class AnalysisOutcome:
    """Everything the caller needs to build a response for one analysis request."""
    status: str
    decision: RateLimitDecision
    result: Optional[AnalysisResult] = None
    cached: bool = False
    duration_ms: float = field(default=0.0, compare=False)

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK
