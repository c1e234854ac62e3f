import asyncio
import json

import pytest

from atsgate.domain.events.api_events import API_CALL, RETRY_SCHEDULED
from atsgate.domain.models.analysis import RetryableRequest
from atsgate.infrastructure.resilience.api_retry import (
    AttemptOutcome,
    ResilientClient,
    UpstreamHardFailure,
    rate_limit_backoff,
    transient_backoff,
)

SHAPE = {"type": "object", "properties": {"answer": {"type": "string"}}}
FALLBACK = {"answer": "fallback"}


def make_request(max_retries: int = 3, timeout_seconds: float = 30.0) -> RetryableRequest:
    return RetryableRequest(
        system_prompt="You are terse.",
        user_text="Say hi",
        max_retries=max_retries,
        timeout_seconds=timeout_seconds,
        name="greet",
    )


@pytest.fixture
def client(mock_model_client, recorder, recording_sleep):
    return ResilientClient(mock_model_client, recorder=recorder, sleep=recording_sleep)


def attempt_events(recorder):
    return [e for e in recorder.recent(1000) if e.kind == API_CALL]


@pytest.mark.asyncio
async def test_success_returns_parsed_body(client, mock_model_client, recorder, recording_sleep):
    mock_model_client.generate.return_value = '{"answer": "hi"}'

    result = await client.invoke(make_request(), SHAPE, json.loads, FALLBACK)

    assert result == {"answer": "hi"}
    mock_model_client.build_payload.assert_called_once_with(make_request(), SHAPE)
    mock_model_client.generate.assert_awaited_once()
    assert mock_model_client.generate.call_args.kwargs["timeout"] == 30.0
    events = attempt_events(recorder)
    assert len(events) == 1
    assert events[0].payload["success"] is True
    assert events[0].payload["outcome"] == AttemptOutcome.SUCCESS.value
    assert recording_sleep.delays == []


@pytest.mark.asyncio
async def test_rate_limited_twice_then_success(client, mock_model_client, recorder, recording_sleep, make_status_error):
    mock_model_client.generate.side_effect = [
        make_status_error(429),
        make_status_error(429),
        '{"answer": "hi"}',
    ]

    result = await client.invoke(make_request(max_retries=3), SHAPE, json.loads, FALLBACK)

    assert result == {"answer": "hi"}
    assert mock_model_client.generate.await_count == 3
    outcomes = [e.payload["outcome"] for e in attempt_events(recorder)]
    assert outcomes == ["rate_limit_retry", "rate_limit_retry", "success"]
    assert recording_sleep.delays == [2.0, 4.0]
    assert recording_sleep.delays == sorted(recording_sleep.delays)
    assert all(d <= 10.0 for d in recording_sleep.delays)


@pytest.mark.asyncio
async def test_rate_limit_backoff_is_capped(client, mock_model_client, recording_sleep, make_status_error):
    mock_model_client.generate.side_effect = [make_status_error(429)] * 5 + ['{"answer": "late"}']

    result = await client.invoke(make_request(max_retries=6), SHAPE, json.loads, FALLBACK)

    assert result == {"answer": "late"}
    assert recording_sleep.delays == [2.0, 4.0, 8.0, 10.0, 10.0]


@pytest.mark.asyncio
async def test_hard_failure_raises_without_retry(client, mock_model_client, recorder, recording_sleep, make_status_error):
    mock_model_client.generate.side_effect = make_status_error(500, body={"error": "internal"})

    with pytest.raises(UpstreamHardFailure) as exc_info:
        await client.invoke(make_request(max_retries=3), SHAPE, json.loads, FALLBACK)

    assert exc_info.value.status_code == 500
    assert exc_info.value.body == {"error": "internal"}
    assert mock_model_client.generate.await_count == 1
    assert recording_sleep.delays == []
    events = attempt_events(recorder)
    assert [e.payload["outcome"] for e in events] == ["hard_fail"]
    assert events[0].payload["success"] is False


@pytest.mark.asyncio
async def test_client_error_status_is_also_hard_failure(client, mock_model_client, make_status_error):
    mock_model_client.generate.side_effect = [make_status_error(400), '{"answer": "never"}']

    with pytest.raises(UpstreamHardFailure) as exc_info:
        await client.invoke(make_request(), SHAPE, json.loads, FALLBACK)

    assert exc_info.value.status_code == 400
    assert mock_model_client.generate.await_count == 1


@pytest.mark.asyncio
async def test_empty_body_every_attempt_returns_fallback(client, mock_model_client, recorder, recording_sleep):
    mock_model_client.generate.return_value = "   "

    result = await client.invoke(make_request(max_retries=3), SHAPE, json.loads, FALLBACK)

    assert result is FALLBACK
    assert mock_model_client.generate.await_count == 3
    assert [e.payload["outcome"] for e in attempt_events(recorder)] == ["empty_retry"] * 3
    assert recording_sleep.delays == [1.0, 1.0]


@pytest.mark.asyncio
async def test_none_body_is_treated_as_empty(client, mock_model_client):
    mock_model_client.generate.side_effect = [None, '{"answer": "second"}']

    result = await client.invoke(make_request(), SHAPE, json.loads, FALLBACK)

    assert result == {"answer": "second"}


@pytest.mark.asyncio
async def test_parse_failure_returns_fallback_without_retry(client, mock_model_client, recorder, recording_sleep):
    mock_model_client.generate.return_value = "not json at all"

    result = await client.invoke(make_request(), SHAPE, json.loads, FALLBACK)

    assert result is FALLBACK
    assert mock_model_client.generate.await_count == 1
    assert recording_sleep.delays == []
    assert [e.payload["outcome"] for e in attempt_events(recorder)] == ["parse_failure"]


@pytest.mark.asyncio
async def test_network_errors_back_off_then_fall_back(client, mock_model_client, recording_sleep, make_connection_error):
    mock_model_client.generate.side_effect = make_connection_error()

    result = await client.invoke(make_request(max_retries=4), SHAPE, json.loads, FALLBACK)

    assert result is FALLBACK
    assert mock_model_client.generate.await_count == 4
    assert recording_sleep.delays == [1.0, 2.0, 4.0]


@pytest.mark.asyncio
async def test_network_error_then_success(client, mock_model_client, make_connection_error):
    mock_model_client.generate.side_effect = [make_connection_error(), '{"answer": "ok"}']

    result = await client.invoke(make_request(), SHAPE, json.loads, FALLBACK)

    assert result == {"answer": "ok"}


@pytest.mark.asyncio
async def test_timeout_cancels_attempt_and_retries(client, mock_model_client, recorder, recording_sleep):
    calls = []

    async def slow_then_fast(payload, timeout=None):
        calls.append(timeout)
        if len(calls) == 1:
            await asyncio.sleep(5)
        return '{"answer": "fast"}'

    mock_model_client.generate.side_effect = slow_then_fast

    result = await client.invoke(make_request(max_retries=2, timeout_seconds=0.05), SHAPE, json.loads, FALLBACK)

    assert result == {"answer": "fast"}
    assert calls == [0.05, 0.05]
    assert recording_sleep.delays == [1.0]
    assert [e.payload["outcome"] for e in attempt_events(recorder)] == ["transient_retry", "success"]


@pytest.mark.asyncio
async def test_rate_limited_on_last_attempt_returns_fallback(client, mock_model_client, recording_sleep, make_status_error):
    mock_model_client.generate.side_effect = make_status_error(429)

    result = await client.invoke(make_request(max_retries=2), SHAPE, json.loads, FALLBACK)

    assert result is FALLBACK
    assert mock_model_client.generate.await_count == 2
    assert recording_sleep.delays == [2.0]


@pytest.mark.asyncio
async def test_retry_scheduled_events_are_recorded(client, mock_model_client, recorder, make_status_error):
    mock_model_client.generate.side_effect = [make_status_error(429), '{"answer": "hi"}']

    await client.invoke(make_request(), SHAPE, json.loads, FALLBACK)

    scheduled = [e for e in recorder.recent(1000) if e.kind == RETRY_SCHEDULED]
    assert len(scheduled) == 1
    assert scheduled[0].payload == {
        "name": "greet",
        "attempt": 1,
        "delay_seconds": 2.0,
        "reason": "rate_limit_retry",
    }


@pytest.mark.asyncio
async def test_works_without_recorder(mock_model_client, recording_sleep):
    client = ResilientClient(mock_model_client, sleep=recording_sleep)
    mock_model_client.generate.return_value = '{"answer": "hi"}'

    assert await client.invoke(make_request(), SHAPE, json.loads, FALLBACK) == {"answer": "hi"}


def test_backoff_schedules():
    assert [rate_limit_backoff(a) for a in range(1, 6)] == [2.0, 4.0, 8.0, 10.0, 10.0]
    assert [transient_backoff(a) for a in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_request_validation():
    with pytest.raises(ValueError):
        make_request(max_retries=0)
    with pytest.raises(ValueError):
        make_request(timeout_seconds=0)
