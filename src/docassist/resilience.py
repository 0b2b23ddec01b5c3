"""Retry, backoff, circuit breaking and deadlines for provider calls."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential_jitter,
)

from docassist.config import Settings
from docassist.errors import (
    DeadlineExceeded,
    ProviderCircuitOpen,
    RetriesExhausted,
)
from docassist.telemetry import emit_circuit_event, emit_provider_call_event, emit_retry_event

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


def is_retryable(error: BaseException) -> bool:
    return bool(getattr(error, "retryable", False))


def counts_as_outage(error: BaseException) -> bool:
    """Failures that say the provider is unhealthy: transient errors and hangs."""

    return is_retryable(error) or isinstance(error, (asyncio.TimeoutError, DeadlineExceeded))


class Deadline:
    """Absolute point in time after which a request must stop waiting."""

    def __init__(self, seconds: float, *, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self.expires_at = clock() + seconds

    @classmethod
    def from_timeout(cls, seconds: Optional[float], *, clock: Clock = time.monotonic) -> Optional["Deadline"]:
        if seconds is None:
            return None
        return cls(seconds, clock=clock)

    def remaining(self) -> float:
        return self.expires_at - self._clock()

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0


@dataclass(slots=True)
class RetryPolicy:
    max_attempts: int = 5
    max_elapsed: float = 30.0
    initial_wait: float = 0.5
    max_wait: float = 8.0
    jitter: float = 0.5

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            max_elapsed=settings.retry_max_elapsed,
            initial_wait=settings.retry_initial_wait,
            max_wait=settings.retry_max_wait,
            jitter=settings.retry_jitter,
        )


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Per-provider breaker counting consecutive retryable failures.

    After ``failure_threshold`` such failures the circuit opens and calls fail
    fast for ``cooldown`` seconds. The first call after the cooldown is let
    through alone; its outcome closes or re-opens the circuit.
    """

    def __init__(
        self,
        provider: str,
        *,
        failure_threshold: int = 5,
        cooldown: float = 30.0,
        clock: Clock = time.monotonic,
    ) -> None:
        self.provider = provider
        self.failure_threshold = max(failure_threshold, 1)
        self.cooldown = cooldown
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = 0.0
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        if self._state is CircuitState.OPEN and self._clock() - self._opened_at >= self.cooldown:
            return CircuitState.HALF_OPEN
        return self._state

    @property
    def failures(self) -> int:
        return self._failures

    def before_call(self) -> bool:
        """Raise :class:`ProviderCircuitOpen` when the call must not proceed.

        Returns ``True`` when the call is the half-open trial.
        """

        state = self.state
        if state is CircuitState.CLOSED:
            return False
        if state is CircuitState.HALF_OPEN and not self._trial_in_flight:
            self._transition(CircuitState.HALF_OPEN)
            self._trial_in_flight = True
            return True
        retry_after = max(self.cooldown - (self._clock() - self._opened_at), 0.0)
        raise ProviderCircuitOpen(self.provider, retry_after=retry_after)

    def record_success(self) -> None:
        self._failures = 0
        self._trial_in_flight = False
        if self._state is not CircuitState.CLOSED:
            self._transition(CircuitState.CLOSED)

    def record_failure(self, error: BaseException) -> None:
        if not counts_as_outage(error):
            # the provider answered; only outages trip the breaker
            if self._trial_in_flight:
                self.record_success()
            return
        self._failures += 1
        if self._trial_in_flight or self._failures >= self.failure_threshold:
            self._trial_in_flight = False
            self._opened_at = self._clock()
            self._transition(CircuitState.OPEN)

    def abandon_trial(self) -> None:
        """Free the half-open slot of a trial that ended without an outcome."""

        self._trial_in_flight = False

    def _transition(self, state: CircuitState) -> None:
        self._state = state
        emit_circuit_event(provider=self.provider, state=state.value, failures=self._failures)


class FailureRetryCoordinator:
    """Wrap provider calls with bounded retries and a per-provider circuit."""

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        *,
        failure_threshold: int = 5,
        cooldown: float = 30.0,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self.failure_threshold = failure_threshold
        self.cooldown = cooldown
        self._clock = clock
        self._sleep = sleep
        self._breakers: Dict[str, CircuitBreaker] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "FailureRetryCoordinator":
        return cls(
            RetryPolicy.from_settings(settings),
            failure_threshold=settings.circuit_failure_threshold,
            cooldown=settings.circuit_cooldown,
        )

    def breaker(self, provider: str) -> CircuitBreaker:
        breaker = self._breakers.get(provider)
        if breaker is None:
            breaker = CircuitBreaker(
                provider,
                failure_threshold=self.failure_threshold,
                cooldown=self.cooldown,
                clock=self._clock,
            )
            self._breakers[provider] = breaker
        return breaker

    async def call(
        self,
        provider: str,
        operation: str,
        func: Callable[[], Awaitable[T]],
        *,
        deadline: Optional[Deadline] = None,
    ) -> T:
        """Run ``func`` until it succeeds, fails permanently or the budget runs out.

        Raises:
            ProviderCircuitOpen: the provider's circuit is open.
            RetriesExhausted: every allowed attempt failed with a retryable error.
            DeadlineExceeded: ``deadline`` passed before a result was obtained.
            ProviderError: a non-retryable failure, re-raised unchanged.
        """

        breaker = self.breaker(provider)
        started = time.perf_counter()
        attempts = 0

        def _log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            if error is not None:
                emit_retry_event(
                    provider=provider,
                    operation=operation,
                    attempt=retry_state.attempt_number,
                    delay=delay,
                    error=error,
                )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.policy.max_attempts) | stop_after_delay(self.policy.max_elapsed),
            wait=wait_exponential_jitter(
                multiplier=self.policy.initial_wait,
                max=self.policy.max_wait,
                jitter=self.policy.jitter,
            ),
            retry=retry_if_exception(is_retryable),
            before_sleep=_log_retry,
            sleep=self._sleep,
            reraise=False,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    result = await self._attempt(breaker, func, deadline)
        except RetryError as error:
            last_error = error.last_attempt.exception()
            exhausted = RetriesExhausted(provider, attempts=attempts, last_error=last_error)
            emit_provider_call_event(
                provider=provider,
                operation=operation,
                attempts=attempts,
                duration_ms=(time.perf_counter() - started) * 1000.0,
                error=exhausted,
            )
            raise exhausted from last_error
        except Exception as error:
            emit_provider_call_event(
                provider=provider,
                operation=operation,
                attempts=attempts,
                duration_ms=(time.perf_counter() - started) * 1000.0,
                error=error,
            )
            raise

        emit_provider_call_event(
            provider=provider,
            operation=operation,
            attempts=attempts,
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        return result

    async def _attempt(
        self,
        breaker: CircuitBreaker,
        func: Callable[[], Awaitable[T]],
        deadline: Optional[Deadline],
    ) -> T:
        timeout = None
        if deadline is not None:
            timeout = deadline.remaining()
            if timeout <= 0:
                raise DeadlineExceeded("Request deadline passed before the provider call", provider=breaker.provider)
        trial = breaker.before_call()
        try:
            if timeout is None:
                result = await func()
            else:
                result = await asyncio.wait_for(func(), timeout)
        except asyncio.CancelledError:
            if trial:
                breaker.abandon_trial()
            raise
        except asyncio.TimeoutError as error:
            breaker.record_failure(error)
            raise DeadlineExceeded(
                "Provider call did not finish before the request deadline",
                provider=breaker.provider,
                cause=error,
            ) from error
        except Exception as error:
            breaker.record_failure(error)
            raise
        breaker.record_success()
        return result


__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "Deadline",
    "FailureRetryCoordinator",
    "RetryPolicy",
    "counts_as_outage",
    "is_retryable",
]
