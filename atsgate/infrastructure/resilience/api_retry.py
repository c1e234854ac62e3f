"""Service for executing upstream generation calls with automatic retries.

One `invoke` performs up to `max_retries` sequential attempts:

- 429 from upstream: retried with exponential backoff capped at 10s.
- Network errors and timeouts: retried with exponential backoff capped at 5s.
- Empty generated text: retried after a fixed 1s.
- Any other non-2xx status: raised immediately as UpstreamHardFailure.
- Unparseable text: resolved to the caller's fallback value.

Every degraded outcome except a hard failure resolves to the fallback, so
callers only need exception handling for UpstreamHardFailure.
"""

import asyncio
import enum
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from openai import APIConnectionError, APIStatusError

from atsgate.domain.events.api_events import RETRY_SCHEDULED
from atsgate.domain.models.analysis import RetryableRequest
from atsgate.infrastructure.ai.gemini_client import GeminiClient
from atsgate.infrastructure.monitoring.event_recorder import EventRecorder

logger = logging.getLogger(__name__)

T = TypeVar("T")

RATE_LIMIT_STATUS = 429
EMPTY_RESPONSE_BACKOFF_S = 1.0
RATE_LIMIT_BACKOFF_CAP_S = 10.0
TRANSIENT_BACKOFF_CAP_S = 5.0

# --- Custom Exceptions ---
class UpstreamError(Exception):
    """Base class for upstream failure classifications."""

class UpstreamHardFailure(UpstreamError):
    """Non-retryable upstream failure (any non-2xx status other than 429)."""
    def __init__(self, status_code: Optional[int], body: Any = None):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Upstream call failed: {status_code} - {body}")

class UpstreamRateLimited(UpstreamError):
    """Upstream answered 429. Retried internally, never raised from invoke."""

class UpstreamTransientFailure(UpstreamError):
    """Network error or timeout. Retried internally, never raised from invoke."""

class EmptyResponse(UpstreamError):
    """2xx with no generated text. Retried, then downgraded to the fallback."""

class ParseFailure(UpstreamError):
    """The parser rejected the generated text. Downgraded to the fallback."""

class AttemptOutcome(str, enum.Enum):
    SUCCESS = "success"
    PARSE_FAILURE = "parse_failure"
    EMPTY_RETRY = "empty_retry"
    RATE_LIMIT_RETRY = "rate_limit_retry"
    TRANSIENT_RETRY = "transient_retry"
    HARD_FAIL = "hard_fail"

class Resolution(str, enum.Enum):
    RESULT = "result"
    FALLBACK = "fallback"
    ERROR = "error"

def rate_limit_backoff(attempt: int) -> float:
    """Delay before retrying after a 429 on `attempt` (1-based)."""
    return min(float(2 ** attempt), RATE_LIMIT_BACKOFF_CAP_S)

def transient_backoff(attempt: int) -> float:
    """Delay before retrying after a network error or timeout on `attempt` (1-based)."""
    return min(float(2 ** (attempt - 1)), TRANSIENT_BACKOFF_CAP_S)

def classify_error(e: Exception) -> UpstreamError:
    """Maps an SDK or timeout exception onto the upstream error taxonomy."""
    if isinstance(e, APIStatusError):
        if e.status_code == RATE_LIMIT_STATUS:
            return UpstreamRateLimited(str(e))
        body = e.body if e.body is not None else e.message
        return UpstreamHardFailure(e.status_code, body)
    if isinstance(e, asyncio.TimeoutError):
        return UpstreamTransientFailure("request timed out")
    if isinstance(e, APIConnectionError):
        return UpstreamTransientFailure(str(e))
    raise TypeError(f"Unclassifiable upstream exception: {type(e).__name__}") from e

# --- Retry Service ---

class ResilientClient:
    """Performs one logical generation call with retry, timeout and fallback."""

    def __init__(
        self,
        model_client: GeminiClient,
        recorder: Optional[EventRecorder] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initializes the ResilientClient.

        Args:
            model_client: Adapter that performs a single upstream request.
            recorder: Optional EventRecorder that receives one event per attempt.
            sleep: Coroutine used for backoff delays; injectable for tests.
        """
        self.model_client = model_client
        self.recorder = recorder
        self._sleep = sleep

    async def invoke(
        self,
        request: RetryableRequest,
        response_shape: Dict[str, Any],
        parser: Callable[[str], T],
        fallback: T,
    ) -> T:
        """Runs the request until it succeeds, hard-fails or runs out of attempts.

        Args:
            request: Prompt, attempt budget and per-attempt timeout.
            response_shape: JSON schema describing the expected output.
            parser: Turns generated text into the result; may raise.
            fallback: Returned for every soft failure.

        Returns:
            The parsed result, or `fallback`.

        Raises:
            UpstreamHardFailure: If the upstream answers with a non-retryable status.
        """
        payload = self.model_client.build_payload(request, response_shape)
        max_attempts = request.max_retries

        for attempt in range(1, max_attempts + 1):
            start_time = time.perf_counter()
            try:
                text = await self._attempt(payload, request.timeout_seconds)
                result = self._parse(parser, text)

            except UpstreamHardFailure as e:
                self._track(request, attempt, start_time, AttemptOutcome.HARD_FAIL, str(e))
                logger.warning(f"{request.name}: non-retryable upstream error {e.status_code} on attempt {attempt}")
                self._resolve(request, Resolution.ERROR)
                raise

            except ParseFailure as e:
                self._track(request, attempt, start_time, AttemptOutcome.PARSE_FAILURE, str(e))
                logger.warning(f"{request.name}: failed to parse response: {e}")
                return self._resolve(request, Resolution.FALLBACK, fallback)

            except (UpstreamRateLimited, UpstreamTransientFailure, EmptyResponse) as e:
                if isinstance(e, UpstreamRateLimited):
                    outcome, delay = AttemptOutcome.RATE_LIMIT_RETRY, rate_limit_backoff(attempt)
                elif isinstance(e, UpstreamTransientFailure):
                    outcome, delay = AttemptOutcome.TRANSIENT_RETRY, transient_backoff(attempt)
                else:
                    outcome, delay = AttemptOutcome.EMPTY_RETRY, EMPTY_RESPONSE_BACKOFF_S
                self._track(request, attempt, start_time, outcome, str(e))

                if attempt >= max_attempts:
                    logger.warning(f"{request.name}: all {max_attempts} attempts exhausted ({outcome.value})")
                    break
                logger.warning(
                    f"{request.name}: {type(e).__name__} on attempt {attempt}/{max_attempts}, "
                    f"retrying in {delay:.1f}s"
                )
                await self._backoff(request, attempt, delay, outcome)
                continue

            self._track(request, attempt, start_time, AttemptOutcome.SUCCESS)
            return self._resolve(request, Resolution.RESULT, result)

        return self._resolve(request, Resolution.FALLBACK, fallback)

    async def _attempt(self, payload: Dict[str, Any], timeout: float) -> str:
        """Issues one request under `timeout`. Raises an UpstreamError subclass on failure."""
        try:
            text = await asyncio.wait_for(
                self.model_client.generate(payload, timeout=timeout),
                timeout=timeout,
            )
        except (APIStatusError, APIConnectionError, asyncio.TimeoutError) as e:
            raise classify_error(e) from e
        if not text or not text.strip():
            raise EmptyResponse("empty response")
        return text

    @staticmethod
    def _parse(parser: Callable[[str], T], text: str) -> T:
        try:
            return parser(text)
        except Exception as e:
            logger.debug(f"Unparseable text: {text!r}")
            raise ParseFailure(f"{type(e).__name__}: {e}") from e

    async def _backoff(
        self, request: RetryableRequest, attempt: int, delay: float, reason: AttemptOutcome
    ) -> None:
        if self.recorder is not None:
            self.recorder.record(RETRY_SCHEDULED, {
                "name": request.name,
                "attempt": attempt,
                "delay_seconds": delay,
                "reason": reason.value,
            })
        await self._sleep(delay)

    def _track(
        self,
        request: RetryableRequest,
        attempt: int,
        start_time: float,
        outcome: AttemptOutcome,
        error: Optional[str] = None,
    ) -> None:
        if self.recorder is None:
            return
        duration_ms = (time.perf_counter() - start_time) * 1000
        self.recorder.track_call(
            request.name,
            duration_ms,
            outcome is AttemptOutcome.SUCCESS,
            error=error,
            attempt=attempt,
            outcome=outcome.value,
        )

    def _resolve(self, request: RetryableRequest, resolution: Resolution, value: Any = None) -> Any:
        logger.debug(f"{request.name}: resolved with {resolution.value}")
        return value
