import pytest
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai

from atsgate.infrastructure.ai.gemini_client import GeminiClient
from atsgate.infrastructure.config import settings as config_settings
from atsgate.infrastructure.monitoring.event_recorder import EventRecorder

UPSTREAM_REQUEST = httpx.Request("POST", "https://generativelanguage.googleapis.com/v1beta/openai/chat/completions")


class FakeClock:
    """Manually advanced Unix clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Stands in for asyncio.sleep: records each delay and returns immediately."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def status_error(status_code: int, body=None) -> openai.APIStatusError:
    """Builds the SDK exception the openai client raises for an HTTP status."""
    response = httpx.Response(status_code, request=UPSTREAM_REQUEST, json=body)
    if status_code == 429:
        return openai.RateLimitError("Rate limit exceeded", response=response, body=body)
    if status_code >= 500:
        return openai.InternalServerError("Server error", response=response, body=body)
    return openai.APIStatusError("Request failed", response=response, body=body)


def connection_error() -> openai.APIConnectionError:
    return openai.APIConnectionError(request=UPSTREAM_REQUEST)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def recorder(clock):
    return EventRecorder(capacity=1000, clock=clock)


@pytest.fixture
def mock_model_client():
    """GeminiClient double: payload building is trivial, generate is an AsyncMock."""
    mock = MagicMock(spec=GeminiClient)
    mock.build_payload.return_value = {"model": "test-model", "messages": []}
    mock.generate = AsyncMock(return_value='["python"]')
    return mock


@pytest.fixture(autouse=True)
def reset_test_config():
    """Keeps configuration overrides from leaking between tests."""
    config_settings.clear_test_config()
    yield
    config_settings.clear_test_config()


@pytest.fixture
def make_status_error():
    return status_error


@pytest.fixture
def make_connection_error():
    return connection_error
