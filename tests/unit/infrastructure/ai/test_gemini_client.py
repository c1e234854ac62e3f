import pytest
from unittest.mock import AsyncMock, MagicMock

from atsgate.domain.models.analysis import RetryableRequest
from atsgate.infrastructure.ai.gemini_client import DEFAULT_BASE_URL, DEFAULT_MODEL, GeminiClient

SHAPE = {"type": "array", "items": {"type": "string"}}


@pytest.fixture
def mock_sdk():
    """AsyncOpenAI double whose chat.completions.create is awaitable."""
    sdk = MagicMock()
    sdk.chat.completions.create = AsyncMock()
    return sdk


def completion(content):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    return response


def test_builds_sdk_client_without_sdk_retries(mocker):
    mock_async_openai = mocker.patch("atsgate.infrastructure.ai.gemini_client.AsyncOpenAI")

    client = GeminiClient(api_key="test-key")

    mock_async_openai.assert_called_once_with(api_key="test-key", base_url=DEFAULT_BASE_URL, max_retries=0)
    assert client.client is mock_async_openai.return_value
    assert client.model == DEFAULT_MODEL


def test_reads_api_key_from_environment(mocker, monkeypatch):
    mock_async_openai = mocker.patch("atsgate.infrastructure.ai.gemini_client.AsyncOpenAI")
    monkeypatch.setenv("GEMINI_API_KEY", "env-key")

    GeminiClient(base_url="http://localhost:9999/v1/")

    mock_async_openai.assert_called_once_with(api_key="env-key", base_url="http://localhost:9999/v1/", max_retries=0)


def test_missing_api_key_raises(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)

    with pytest.raises(ValueError, match="Gemini API key not provided"):
        GeminiClient()


def test_build_payload(mock_sdk):
    client = GeminiClient(model="gemini-test", client=mock_sdk)
    request = RetryableRequest(system_prompt="Extract.", user_text="Job text", name="extract_keywords")

    payload = client.build_payload(request, SHAPE)

    assert payload == {
        "model": "gemini-test",
        "messages": [
            {"role": "system", "content": "Extract."},
            {"role": "user", "content": "Job text"},
        ],
        "response_format": {
            "type": "json_schema",
            "json_schema": {"name": "extract_keywords", "schema": SHAPE},
        },
        "temperature": 0.3,
    }


@pytest.mark.asyncio
async def test_generate_returns_content(mock_sdk):
    mock_sdk.chat.completions.create.return_value = completion('["python"]')
    client = GeminiClient(client=mock_sdk)

    text = await client.generate({"model": "m", "messages": []}, timeout=12.5)

    assert text == '["python"]'
    mock_sdk.chat.completions.create.assert_awaited_once_with(model="m", messages=[], timeout=12.5)


@pytest.mark.asyncio
async def test_generate_without_choices_returns_none(mock_sdk):
    response = MagicMock()
    response.choices = []
    mock_sdk.chat.completions.create.return_value = response
    client = GeminiClient(client=mock_sdk)

    assert await client.generate({"model": "m", "messages": []}) is None


@pytest.mark.asyncio
async def test_generate_propagates_sdk_errors(mock_sdk, make_status_error):
    mock_sdk.chat.completions.create.side_effect = make_status_error(429)
    client = GeminiClient(client=mock_sdk)

    with pytest.raises(Exception) as exc_info:
        await client.generate({"model": "m", "messages": []})

    assert exc_info.value.status_code == 429
