"""
Core service for handling resume analysis requests.

Coordinates the governance layer for one request: rate-limit check, cache
lookup, keyword extraction and suggestion generation through the resilient
client, then stores the result. Concurrent identical requests are not
coalesced; both may call upstream and the last write to the cache wins.
"""

import contextlib
import json
import logging
import math
import re
import time
from typing import List, Optional, Tuple

from atsgate.domain.events.api_events import CACHE_HIT, CACHE_MISS, RATE_LIMIT_DENIED
from atsgate.domain.models.analysis import (
    STATUS_NO_KEYWORDS,
    STATUS_OK,
    STATUS_RATE_LIMITED,
    AnalysisOutcome,
    AnalysisResult,
    RetryableRequest,
    Suggestion,
)
from atsgate.domain.models.common import Identifier
from atsgate.infrastructure.cache.caching_service import TTLCache, derive_cache_key
from atsgate.infrastructure.config.settings import CallSettings, GovernanceSettings
from atsgate.infrastructure.monitoring.event_recorder import EventRecorder
from atsgate.infrastructure.resilience.api_retry import ResilientClient, UpstreamHardFailure
from atsgate.infrastructure.resilience.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

# --- Configuration ---
MAX_MISSING_FOR_SUGGESTIONS = 20  # Larger sets make the suggestion prompt too big
ANALYZE_CALL_NAME = "analyze"

# Control characters except tab, LF and CR
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")

# --- Prompts ---
KEYWORDS_SYSTEM_PROMPT = (
    "As an expert hiring manager, extract crucial ATS keywords (skills, software, quals, "
    "responsibilities). Ignore fluff. Return JSON array of strings."
)

SUGGESTIONS_SYSTEM_PROMPT = """You are an expert ATS resume optimizer and career coach. Your task is to naturally incorporate missing keywords into existing resume bullets WITHOUT adding new sentences.

RULES:
1. ONLY modify the original sentence - do NOT add additional sentences at the end
2. Weave keywords naturally into the existing text where they fit contextually
3. Maintain the original impact, metrics, and tone
4. Keep the same sentence structure and flow
5. Only suggest changes if keywords can be added authentically based on existing context
6. If a keyword doesn't fit naturally, skip that bullet (don't force it)
7. The suggested version should be ONE cohesive sentence, not two separate ideas

Return JSON: {"suggestions":[{"original":"...","suggested":"..."}]}"""

KEYWORDS_SHAPE = {"type": "array", "items": {"type": "string"}}

SUGGESTIONS_SHAPE = {
    "type": "object",
    "properties": {
        "suggestions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "original": {"type": "string"},
                    "suggested": {"type": "string"},
                },
                "required": ["original", "suggested"],
            },
        },
    },
    "required": ["suggestions"],
}

# --- Text helpers ---

def normalize_text(text: str) -> str:
    """Strips control characters, normalizes line endings and trims."""
    return _CONTROL_CHARS.sub("", text).replace("\r\n", "\n").strip()

def parse_keywords(text: str) -> List[str]:
    """Parses a JSON array of keywords, keeping only string items."""
    data = json.loads(text)
    if not isinstance(data, list):
        raise ValueError(f"Expected a JSON array, got {type(data).__name__}")
    return [item for item in data if isinstance(item, str)]

def parse_suggestions(text: str) -> Tuple[Suggestion, ...]:
    """Parses {"suggestions": [{"original", "suggested"}]}, dropping blank entries."""
    data = json.loads(text)
    if not isinstance(data, dict) or not isinstance(data.get("suggestions"), list):
        raise ValueError("Expected an object with a 'suggestions' array")
    suggestions = []
    for item in data["suggestions"]:
        if not isinstance(item, dict):
            continue
        original, suggested = item.get("original"), item.get("suggested")
        if isinstance(original, str) and isinstance(suggested, str) and original.strip() and suggested.strip():
            suggestions.append(Suggestion(original=original, suggested=suggested))
    return tuple(suggestions)

def unique_lowercase(keywords: List[str]) -> List[str]:
    """Lower-cases and de-duplicates keywords, preserving first-seen order."""
    seen = {}
    for keyword in keywords:
        lowered = keyword.strip().lower()
        if lowered:
            seen.setdefault(lowered, None)
    return list(seen)

def match_keywords(keywords: List[str], resume_text: str) -> Tuple[List[str], List[str]]:
    """Splits keywords into those present in the resume as whole words and those missing."""
    matched: List[str] = []
    missing: List[str] = []
    resume_lower = resume_text.lower()
    for keyword in keywords:
        # Lookarounds instead of \b so keywords like "c++" still match
        pattern = re.compile(rf"(?<!\w){re.escape(keyword)}(?!\w)", re.IGNORECASE)
        (matched if pattern.search(resume_lower) else missing).append(keyword)
    return matched, missing

def compute_score(matched_count: int, total: int) -> int:
    """Percentage of matched keywords, rounded half up."""
    return int(math.floor(matched_count / max(total, 1) * 100 + 0.5))


class AnalysisService:
    """Orchestrates the resume analysis workflow."""

    def __init__(
        self,
        rate_limiter: RateLimiter,
        cache: TTLCache,
        client: ResilientClient,
        recorder: Optional[EventRecorder] = None,
        settings: Optional[GovernanceSettings] = None,
    ):
        """Initializes the AnalysisService with its dependencies."""
        self.rate_limiter = rate_limiter
        self.cache = cache
        self.client = client
        self.recorder = recorder
        self.settings = settings or GovernanceSettings()
        logger.info("AnalysisService initialized")

    async def analyze(self, identifier: Identifier, resume_text: str, job_desc_text: str) -> AnalysisOutcome:
        """Runs one analysis request through the governance layer.

        Raises:
            UpstreamHardFailure: If the upstream rejects a call with a non-retryable status.
        """
        start_time = time.perf_counter()

        decision = await self.rate_limiter.check(identifier)
        if not decision.allowed:
            logger.warning(f"Rate limit exceeded for '{identifier}', resets at {decision.reset_at:.0f}")
            self._record(RATE_LIMIT_DENIED, {"identifier": identifier, "reset_at": decision.reset_at})
            return AnalysisOutcome(STATUS_RATE_LIMITED, decision, duration_ms=self._elapsed_ms(start_time))

        resume = normalize_text(resume_text)
        job_desc = normalize_text(job_desc_text)
        cache_key = derive_cache_key(resume, job_desc)

        cached = await self.cache.get(cache_key)
        if cached is not None:
            duration_ms = self._elapsed_ms(start_time)
            logger.info(f"Cache hit for '{identifier}' in {duration_ms:.1f}ms")
            self._record(CACHE_HIT, {"identifier": identifier})
            return AnalysisOutcome(STATUS_OK, decision, cached, cached=True, duration_ms=duration_ms)
        self._record(CACHE_MISS, {"identifier": identifier})

        try:
            unique = unique_lowercase(await self._extract_keywords(job_desc))
            if not unique:
                logger.warning(f"No keywords extracted for '{identifier}'")
                return AnalysisOutcome(STATUS_NO_KEYWORDS, decision, duration_ms=self._elapsed_ms(start_time))

            logger.info(f"Keywords extracted: {len(unique)}")
            matched, missing = match_keywords(unique, resume)
            score = compute_score(len(matched), len(unique))
            logger.info(f"Match analysis complete: score={score}, matched={len(matched)}, missing={len(missing)}")

            suggestions: Tuple[Suggestion, ...] = ()
            if 0 < len(missing) <= MAX_MISSING_FOR_SUGGESTIONS:
                suggestions = await self._generate_suggestions(resume, job_desc, missing)

        except UpstreamHardFailure as e:
            duration_ms = self._elapsed_ms(start_time)
            logger.error(f"Analysis failed for '{identifier}' after {duration_ms:.1f}ms: {e}", exc_info=True)
            if self.recorder is not None:
                self.recorder.track_call(ANALYZE_CALL_NAME, duration_ms, False, error=str(e))
            raise

        result = AnalysisResult(
            score=score,
            matched=tuple(matched),
            missing=tuple(missing),
            suggestions=suggestions,
        )
        await self.cache.set(cache_key, result, ttl=self.settings.cache_ttl_seconds)

        duration_ms = self._elapsed_ms(start_time)
        logger.info(f"Analysis complete for '{identifier}' in {duration_ms:.1f}ms, score={score}")
        if self.recorder is not None:
            self.recorder.track_call(ANALYZE_CALL_NAME, duration_ms, True)
        return AnalysisOutcome(STATUS_OK, decision, result, cached=False, duration_ms=duration_ms)

    async def _extract_keywords(self, job_desc: str) -> List[str]:
        request = self._request("extract_keywords", KEYWORDS_SYSTEM_PROMPT, job_desc, self.settings.keywords_call)
        async with self._measure(request.name):
            return await self.client.invoke(request, KEYWORDS_SHAPE, parse_keywords, [])

    async def _generate_suggestions(self, resume: str, job_desc: str, missing: List[str]) -> Tuple[Suggestion, ...]:
        user_text = (
            f"My Resume:\n{resume}\n\nJob Description:\n{job_desc}\n\n"
            f"Missing Keywords to Integrate:\n{', '.join(missing)}\n\n"
            "For each resume bullet, integrate relevant missing keywords naturally into the SAME sentence. "
            "Do not append new sentences."
        )
        request = self._request(
            "generate_suggestions", SUGGESTIONS_SYSTEM_PROMPT, user_text, self.settings.suggestions_call
        )
        async with self._measure(request.name):
            return await self.client.invoke(request, SUGGESTIONS_SHAPE, parse_suggestions, ())

    @staticmethod
    def _request(name: str, system_prompt: str, user_text: str, call: CallSettings) -> RetryableRequest:
        return RetryableRequest(
            system_prompt=system_prompt,
            user_text=user_text,
            max_retries=call.max_retries,
            timeout_seconds=call.timeout_seconds,
            name=name,
        )

    def _measure(self, name: str):
        if self.recorder is None:
            return contextlib.nullcontext()
        return self.recorder.measure(name)

    def _record(self, kind: str, payload: dict) -> None:
        if self.recorder is not None:
            self.recorder.record(kind, payload)

    @staticmethod
    def _elapsed_ms(start_time: float) -> float:
        return (time.perf_counter() - start_time) * 1000
