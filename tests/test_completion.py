import asyncio
import random

import pytest

from fakes import BackendError, FakeBackend, RecordingSleep, make_client
from roomie.completion import (
    ResultKind,
    RetryPolicy,
    ServiceUnavailableError,
    StreamPhase,
    is_retryable,
    next_stream_phase,
)
from roomie.models import Turn


def collect(client, history=(), text="hi"):
    async def run():
        return [piece async for piece in client.complete_streamed(list(history), text)]

    return asyncio.run(run())


class CodedError(Exception):
    code = 503


def test_retryable_classification():
    assert is_retryable(BackendError(429))
    assert is_retryable(BackendError(504))
    assert is_retryable(CodedError("boom"))
    assert is_retryable(RuntimeError("The model is overloaded"))
    assert is_retryable(RuntimeError("temporarily unavailable"))
    assert not is_retryable(BackendError(400, "invalid argument"))
    assert not is_retryable(ValueError("bad json"))


def test_backoff_delay_grows_with_jitter():
    policy = RetryPolicy(max_attempts=4, base_delay=0.4, jitter=0.25)
    rng = random.Random(7)
    assert 0.3 <= policy.delay_for(0, rng) <= 0.5
    assert 1.2 <= policy.delay_for(2, rng) <= 2.0
    assert policy.can_retry(2)
    assert not policy.can_retry(3)


def test_structured_retries_transient_errors_then_parses():
    backend = FakeBackend(structured=[BackendError(503), BackendError(503), '{"suggest": true}'])
    sleep = RecordingSleep()
    result = asyncio.run(make_client(backend, sleep).complete_structured("sofa", "SCHEMA"))

    assert result.kind is ResultKind.PARSED
    assert result.data == {"suggest": True}
    assert result.attempts == 3
    assert len(sleep.delays) == 2
    assert all(call["model"] == "spec-model" for call in backend.structured_calls)
    assert backend.structured_calls[0]["schema"] == "SCHEMA"


def test_structured_fatal_error_is_not_retried():
    backend = FakeBackend(structured=[BackendError(400)])
    sleep = RecordingSleep()
    result = asyncio.run(make_client(backend, sleep).complete_structured("sofa", "SCHEMA"))

    assert result.kind is ResultKind.CALL_FAILURE
    assert result.data == {}
    assert result.attempts == 1
    assert sleep.delays == []


def test_structured_gives_up_after_max_attempts():
    backend = FakeBackend(structured=[BackendError(503)] * 4)
    sleep = RecordingSleep()
    result = asyncio.run(make_client(backend, sleep).complete_structured("sofa", "SCHEMA"))

    assert result.kind is ResultKind.CALL_FAILURE
    assert result.attempts == 4
    assert len(sleep.delays) == 3


def test_structured_parse_failure_is_final():
    backend = FakeBackend(structured=["not json at all", '{"never": "reached"}'])
    result = asyncio.run(make_client(backend).complete_structured("sofa", "SCHEMA"))

    assert result.kind is ResultKind.PARSE_FAILURE
    assert result.data == {}
    assert len(backend.structured_calls) == 1


def test_stream_retries_before_first_fragment_without_duplicates():
    backend = FakeBackend(streams=[[BackendError(503)], ["Hel", "lo"]])
    sleep = RecordingSleep()

    assert collect(make_client(backend, sleep)) == ["Hel", "lo"]
    assert len(backend.stream_calls) == 2
    assert len(sleep.delays) == 1


def test_stream_failure_after_first_fragment_is_not_retried():
    backend = FakeBackend(streams=[["Hel", BackendError(503)], ["never"]])

    assert collect(make_client(backend)) == ["Hel"]
    assert len(backend.stream_calls) == 1


def test_stream_uses_fallback_after_exhausting_retries():
    backend = FakeBackend(streams=[[BackendError(503)]] * 4 + [["ok"]])
    sleep = RecordingSleep()

    assert collect(make_client(backend, sleep)) == ["ok"]
    models = [call["model"] for call in backend.stream_calls]
    assert models == ["chat-model"] * 4 + ["fallback-model"]
    assert len(sleep.delays) == 3


def test_stream_fatal_error_goes_straight_to_fallback():
    backend = FakeBackend(streams=[[BackendError(400)], ["ok"]])
    sleep = RecordingSleep()

    assert collect(make_client(backend, sleep)) == ["ok"]
    assert [call["model"] for call in backend.stream_calls] == ["chat-model", "fallback-model"]
    assert sleep.delays == []


def test_empty_stream_goes_to_fallback():
    backend = FakeBackend(streams=[[], ["hi"]])
    assert collect(make_client(backend)) == ["hi"]


def test_stream_raises_when_fallback_also_fails():
    backend = FakeBackend(streams=[[BackendError(400)], [BackendError(500)]])
    with pytest.raises(ServiceUnavailableError):
        collect(make_client(backend))


def test_stream_passes_history_to_backend():
    history = [Turn(role="user", text="hi"), Turn(role="model", text="hello")]
    backend = FakeBackend(streams=[["ok"]])
    collect(make_client(backend), history=history, text="next")

    assert backend.stream_calls[0]["history"] == history
    assert backend.stream_calls[0]["text"] == "next"


def test_next_stream_phase_decisions():
    policy = RetryPolicy(max_attempts=4)
    assert next_stream_phase(BackendError(503), 0, 1, policy) is StreamPhase.DONE
    assert next_stream_phase(BackendError(400), 0, 3, policy) is StreamPhase.DONE
    assert next_stream_phase(BackendError(503), 0, 0, policy) is StreamPhase.RETRY
    assert next_stream_phase(BackendError(503), 3, 0, policy) is StreamPhase.FALLBACK
    assert next_stream_phase(BackendError(400), 0, 0, policy) is StreamPhase.FALLBACK
