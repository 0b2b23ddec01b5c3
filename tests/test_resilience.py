from __future__ import annotations

import asyncio
import logging

import pytest

from conftest import ScriptedEmbeddingProvider, make_coordinator
from docassist.errors import (
    DeadlineExceeded,
    ProviderCircuitOpen,
    ProviderRateLimited,
    ProviderRejected,
    ProviderUnavailable,
    RetriesExhausted,
)
from docassist.resilience import CircuitBreaker, CircuitState, Deadline


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _events(caplog, step: str) -> list[dict]:
    return [
        record.msg
        for record in caplog.records
        if isinstance(record.msg, dict) and record.msg.get("step") == step
    ]


@pytest.mark.anyio
async def test_rate_limited_three_times_then_succeeds(caplog) -> None:
    caplog.set_level(logging.DEBUG)
    provider = ScriptedEmbeddingProvider([ProviderRateLimited("429", provider="p")] * 3)
    coordinator = make_coordinator(max_attempts=5)

    result = await coordinator.call("embeddings", "embed", lambda: provider.embed(["hello"]))

    assert len(result) == 1
    assert provider.calls == 4
    assert len(_events(caplog, "provider.retry")) == 3
    calls = _events(caplog, "provider.call")
    assert calls[-1]["details"]["attempts"] == 4
    assert "error_kind" not in calls[-1]["details"]


@pytest.mark.anyio
async def test_unavailable_beyond_attempt_bound_raises_retries_exhausted() -> None:
    failure = ProviderUnavailable("down", provider="p")
    provider = ScriptedEmbeddingProvider(fail_forever=failure)
    coordinator = make_coordinator(max_attempts=5, failure_threshold=5)

    with pytest.raises(RetriesExhausted) as excinfo:
        await coordinator.call("embeddings", "embed", lambda: provider.embed(["hello"]))

    error = excinfo.value
    assert provider.calls == 5
    assert error.attempts == 5
    assert error.provider == "embeddings"
    assert error.last_error is failure
    assert error.__cause__ is failure
    assert "ProviderUnavailable" in str(error)
    assert error.to_dict()["cause"] == "provider_unavailable"


@pytest.mark.anyio
async def test_non_retryable_error_is_not_retried() -> None:
    provider = ScriptedEmbeddingProvider(fail_forever=ProviderRejected("bad input", provider="p"))
    coordinator = make_coordinator()

    with pytest.raises(ProviderRejected):
        await coordinator.call("embeddings", "embed", lambda: provider.embed(["hello"]))

    assert provider.calls == 1


@pytest.mark.anyio
async def test_open_circuit_fails_fast() -> None:
    provider = ScriptedEmbeddingProvider(fail_forever=ProviderUnavailable("down", provider="p"))
    coordinator = make_coordinator(max_attempts=5, failure_threshold=2)

    with pytest.raises(ProviderCircuitOpen):
        await coordinator.call("embeddings", "embed", lambda: provider.embed(["hello"]))
    assert provider.calls == 2

    with pytest.raises(ProviderCircuitOpen) as excinfo:
        await coordinator.call("embeddings", "embed", lambda: provider.embed(["hello"]))
    assert provider.calls == 2
    assert excinfo.value.retry_after > 0


@pytest.mark.anyio
async def test_circuit_is_per_provider() -> None:
    coordinator = make_coordinator(max_attempts=1, failure_threshold=1)
    failing = ScriptedEmbeddingProvider(fail_forever=ProviderUnavailable("down"))
    healthy = ScriptedEmbeddingProvider()

    with pytest.raises(RetriesExhausted):
        await coordinator.call("failing", "embed", lambda: failing.embed(["x"]))

    assert await coordinator.call("healthy", "embed", lambda: healthy.embed(["x"]))
    assert coordinator.breaker("failing").state is CircuitState.OPEN
    assert coordinator.breaker("healthy").state is CircuitState.CLOSED


def test_half_open_trial_closes_or_reopens_circuit() -> None:
    clock = FakeClock()
    breaker = CircuitBreaker("llm", failure_threshold=2, cooldown=10.0, clock=clock)
    breaker.record_failure(ProviderUnavailable("down"))
    breaker.record_failure(ProviderUnavailable("down"))
    assert breaker.state is CircuitState.OPEN
    with pytest.raises(ProviderCircuitOpen):
        breaker.before_call()

    clock.now += 10.0
    assert breaker.state is CircuitState.HALF_OPEN
    breaker.before_call()
    with pytest.raises(ProviderCircuitOpen):
        breaker.before_call()
    breaker.record_failure(ProviderUnavailable("still down"))
    assert breaker.state is CircuitState.OPEN

    clock.now += 10.0
    breaker.before_call()
    breaker.record_success()
    assert breaker.state is CircuitState.CLOSED
    assert breaker.failures == 0


def test_non_retryable_failures_do_not_trip_the_breaker() -> None:
    breaker = CircuitBreaker("llm", failure_threshold=1)
    breaker.record_failure(ProviderRejected("bad prompt"))

    assert breaker.state is CircuitState.CLOSED


@pytest.mark.anyio
async def test_attempt_bounded_by_deadline() -> None:
    coordinator = make_coordinator()

    async def slow() -> str:
        await asyncio.sleep(5)
        return "late"

    with pytest.raises(DeadlineExceeded):
        await coordinator.call("llm", "generate", slow, deadline=Deadline(0.05))


@pytest.mark.anyio
async def test_expired_deadline_skips_the_call() -> None:
    clock = FakeClock()
    deadline = Deadline(1.0, clock=clock)
    clock.now += 2.0
    provider = ScriptedEmbeddingProvider()
    coordinator = make_coordinator()

    with pytest.raises(DeadlineExceeded):
        await coordinator.call("embeddings", "embed", lambda: provider.embed(["x"]), deadline=deadline)

    assert provider.calls == 0
    assert deadline.expired


@pytest.mark.anyio
async def test_cancelled_trial_leaves_circuit_usable() -> None:
    clock = FakeClock()
    coordinator = make_coordinator(max_attempts=1, failure_threshold=1, cooldown=10.0, clock=clock)
    failing = ScriptedEmbeddingProvider(fail_forever=ProviderUnavailable("down"))
    with pytest.raises(RetriesExhausted):
        await coordinator.call("llm", "generate", lambda: failing.embed(["x"]))
    clock.now += 10.0

    started = asyncio.Event()

    async def hang() -> str:
        started.set()
        await asyncio.Event().wait()
        return "never"

    task = asyncio.create_task(coordinator.call("llm", "generate", hang))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    healthy = ScriptedEmbeddingProvider()
    assert await coordinator.call("llm", "generate", lambda: healthy.embed(["x"]))
    assert coordinator.breaker("llm").state is CircuitState.CLOSED


@pytest.mark.anyio
async def test_cancelled_call_is_not_counted_as_failure() -> None:
    coordinator = make_coordinator(failure_threshold=1)
    started = asyncio.Event()

    async def hang() -> str:
        started.set()
        await asyncio.Event().wait()
        return "never"

    task = asyncio.create_task(coordinator.call("llm", "generate", hang))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    breaker = coordinator.breaker("llm")
    assert breaker.state is CircuitState.CLOSED
    assert breaker.failures == 0


def test_timed_out_trial_reopens_the_circuit() -> None:
    clock = FakeClock()
    breaker = CircuitBreaker("llm", failure_threshold=1, cooldown=10.0, clock=clock)
    breaker.record_failure(ProviderUnavailable("down"))
    clock.now += 10.0

    assert breaker.before_call() is True
    breaker.record_failure(asyncio.TimeoutError())

    assert breaker.state is CircuitState.OPEN


@pytest.mark.anyio
async def test_hanging_provider_trips_the_breaker() -> None:
    coordinator = make_coordinator(failure_threshold=1)

    async def slow() -> str:
        await asyncio.sleep(5)
        return "late"

    with pytest.raises(DeadlineExceeded):
        await coordinator.call("llm", "generate", slow, deadline=Deadline(0.05))

    assert coordinator.breaker("llm").state is CircuitState.OPEN


@pytest.mark.anyio
async def test_zero_elapsed_budget_allows_a_single_attempt() -> None:
    provider = ScriptedEmbeddingProvider(fail_forever=ProviderUnavailable("down"))
    coordinator = make_coordinator(max_attempts=5, max_elapsed=0.0)

    with pytest.raises(RetriesExhausted) as excinfo:
        await coordinator.call("embeddings", "embed", lambda: provider.embed(["x"]))

    assert excinfo.value.attempts == 1
    assert provider.calls == 1


@pytest.mark.anyio
async def test_elapsed_budget_stops_retries_before_attempt_bound() -> None:
    calls = 0

    async def slow_failure() -> None:
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.03)
        raise ProviderUnavailable("still down")

    coordinator = make_coordinator(max_attempts=50, max_elapsed=0.05, failure_threshold=100)

    with pytest.raises(RetriesExhausted) as excinfo:
        await coordinator.call("embeddings", "embed", slow_failure)

    assert 2 <= excinfo.value.attempts < 50
    assert calls == excinfo.value.attempts
