"""Circuit breaker, retry with backoff, and rate limiting per operation id.

State lives in process memory only and is created lazily the first time
an operation id is seen. Counter updates for a given operation id are
serialized by a per-key lock; the lock is never held across an await.
"""

from __future__ import annotations

import asyncio
import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from homie.core.types import CircuitState
from homie.errors import CircuitOpenError, RateLimitExceededError, ValidationError
from homie.resilience.policies import (
    DEFAULT_CIRCUIT_BREAKER,
    DEFAULT_RATE_LIMITER,
    DEFAULT_RETRY,
    CircuitBreakerConfig,
    RateLimiterConfig,
    RetryConfig,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
Operation = Callable[[], Awaitable[T]]


@dataclass
class OperationState:
    """Mutable counters for one operation id."""

    circuit: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    consecutive_successes: int = 0
    last_failure_time: float | None = None
    window_start: float | None = None
    request_count: int = 0


class ResilienceManager:
    """Applies resilience policies to async operations keyed by operation id.

    ``clock``, ``sleep`` and ``rand`` are injectable so tests can drive
    time and jitter deterministically.
    """

    def __init__(
        self,
        *,
        circuit_breaker: CircuitBreakerConfig = DEFAULT_CIRCUIT_BREAKER,
        retry: RetryConfig = DEFAULT_RETRY,
        rate_limiter: RateLimiterConfig = DEFAULT_RATE_LIMITER,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rand: Callable[[], float] = random.random,
    ) -> None:
        self.circuit_breaker_config = circuit_breaker
        self.retry_config = retry
        self.rate_limiter_config = rate_limiter
        self._clock = clock
        self._sleep = sleep
        self._rand = rand
        self._states: dict[str, OperationState] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    # -- state ---------------------------------------------------------------

    def _entry(self, operation_id: str) -> tuple[OperationState, threading.Lock]:
        with self._registry_lock:
            state = self._states.get(operation_id)
            if state is None:
                state = OperationState()
                self._states[operation_id] = state
                self._locks[operation_id] = threading.Lock()
            return state, self._locks[operation_id]

    def get_state(self, operation_id: str) -> CircuitState:
        state, lock = self._entry(operation_id)
        with lock:
            return state.circuit

    def get_metrics(self, operation_id: str) -> dict[str, Any] | None:
        with self._registry_lock:
            state = self._states.get(operation_id)
            lock = self._locks.get(operation_id)
        if state is None or lock is None:
            return None
        with lock:
            return {
                "operation_id": operation_id,
                "circuit_state": state.circuit.value,
                "failure_count": state.failure_count,
                "consecutive_successes": state.consecutive_successes,
                "last_failure_time": state.last_failure_time,
                "request_count": state.request_count,
                "window_start": state.window_start,
            }

    def reset_operation(self, operation_id: str) -> None:
        with self._registry_lock:
            self._states.pop(operation_id, None)
            self._locks.pop(operation_id, None)

    def reset_all(self) -> None:
        with self._registry_lock:
            self._states.clear()
            self._locks.clear()

    # -- circuit breaker -----------------------------------------------------

    def check_circuit(
        self, operation_id: str, config: CircuitBreakerConfig | None = None
    ) -> None:
        """Raise ``CircuitOpenError`` if calls must currently fail fast."""
        config = config or self.circuit_breaker_config
        state, lock = self._entry(operation_id)
        with lock:
            if state.circuit is not CircuitState.OPEN:
                return
            now = self._clock()
            if (
                state.last_failure_time is not None
                and now - state.last_failure_time >= config.reset_timeout
            ):
                state.circuit = CircuitState.HALF_OPEN
                state.consecutive_successes = 0
                logger.info("Circuit for %s is half-open", operation_id)
                return
        raise CircuitOpenError(operation_id)

    def record_success(
        self, operation_id: str, config: CircuitBreakerConfig | None = None
    ) -> None:
        config = config or self.circuit_breaker_config
        state, lock = self._entry(operation_id)
        with lock:
            if state.circuit is CircuitState.HALF_OPEN:
                state.consecutive_successes += 1
                if state.consecutive_successes >= config.success_threshold:
                    state.circuit = CircuitState.CLOSED
                    state.failure_count = 0
                    state.consecutive_successes = 0
                    logger.info("Circuit for %s closed", operation_id)
            elif state.circuit is CircuitState.CLOSED:
                state.failure_count = 0

    def record_failure(
        self, operation_id: str, config: CircuitBreakerConfig | None = None
    ) -> None:
        config = config or self.circuit_breaker_config
        state, lock = self._entry(operation_id)
        with lock:
            state.last_failure_time = self._clock()
            if state.circuit is CircuitState.HALF_OPEN:
                state.circuit = CircuitState.OPEN
                state.consecutive_successes = 0
                logger.warning("Circuit for %s reopened after half-open failure", operation_id)
            elif state.circuit is CircuitState.CLOSED:
                state.failure_count += 1
                if state.failure_count >= config.failure_threshold:
                    state.circuit = CircuitState.OPEN
                    logger.warning(
                        "Circuit for %s opened after %d failures",
                        operation_id,
                        state.failure_count,
                    )

    async def execute_with_circuit_breaker(
        self,
        operation_id: str,
        operation: Operation[T],
        config: CircuitBreakerConfig | None = None,
    ) -> T:
        self.check_circuit(operation_id, config)
        try:
            result = await operation()
        except (RateLimitExceededError, ValidationError):
            raise
        except Exception:
            self.record_failure(operation_id, config)
            raise
        self.record_success(operation_id, config)
        return result

    # -- rate limiter --------------------------------------------------------

    def check_rate_limit(
        self, operation_id: str, config: RateLimiterConfig | None = None
    ) -> None:
        """Admit one call or raise ``RateLimitExceededError``.

        Fixed window: the first call of a window is always admitted. Later
        calls are rejected while ``count / elapsed`` reaches the allowed
        rate (an elapsed time of zero counts as an unbounded rate), or once
        the burst limit for the window is reached.
        """
        config = config or self.rate_limiter_config
        state, lock = self._entry(operation_id)
        with lock:
            now = self._clock()
            if state.window_start is None or now - state.window_start >= config.window_size:
                state.window_start = now
                state.request_count = 1
                return

            elapsed = now - state.window_start
            if elapsed <= 0 or state.request_count / elapsed >= config.requests_per_second:
                retry_after = 1.0 / config.requests_per_second
                raise RateLimitExceededError(operation_id, retry_after)
            if config.burst_limit is not None and state.request_count >= config.burst_limit:
                retry_after = config.window_size - elapsed
                raise RateLimitExceededError(operation_id, retry_after)
            state.request_count += 1

    async def execute_with_rate_limit(
        self,
        operation_id: str,
        operation: Operation[T],
        config: RateLimiterConfig | None = None,
    ) -> T:
        self.check_rate_limit(operation_id, config)
        return await operation()

    # -- retry ---------------------------------------------------------------

    def compute_delay(self, attempt: int, config: RetryConfig | None = None) -> float:
        """Backoff for the given zero-based retry attempt, with jitter in [50%, 100%]."""
        config = config or self.retry_config
        delay = min(config.base_delay * config.backoff_multiplier**attempt, config.max_delay)
        return delay * (0.5 + self._rand() * 0.5)

    @staticmethod
    def is_retryable(exc: BaseException, config: RetryConfig) -> bool:
        if not getattr(exc, "retryable", False):
            return False
        if not config.retryable_errors:
            return True
        code = str(getattr(exc, "code", ""))
        message = str(exc)
        return any(
            token in code or token in message for token in config.retryable_errors
        )

    async def execute_with_retry(
        self,
        operation_id: str,
        operation: Operation[T],
        config: RetryConfig | None = None,
    ) -> T:
        config = config or self.retry_config
        attempt = 0
        last_error: Exception | None = None
        while True:
            try:
                return await operation()
            except CircuitOpenError:
                if last_error is None:
                    raise
                # The breaker opened on an earlier attempt of this sequence.
                logger.warning("%s: circuit opened, giving up after %d attempts", operation_id, attempt)
                raise last_error
            except Exception as exc:
                last_error = exc
                if attempt >= config.max_retries or not self.is_retryable(exc, config):
                    raise
                delay = self.compute_delay(attempt, config)
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.2fs",
                    operation_id,
                    attempt + 1,
                    config.max_retries + 1,
                    exc,
                    delay,
                )
                await self._sleep(delay)
                attempt += 1

    # -- composition ---------------------------------------------------------

    async def execute_resilient(
        self,
        operation_id: str,
        operation: Operation[T],
        *,
        circuit_breaker: CircuitBreakerConfig | None = None,
        retry: RetryConfig | None = None,
        rate_limiter: RateLimiterConfig | None = None,
    ) -> T:
        """Run ``operation`` wrapped as retry(circuit_breaker(rate_limit(op))).

        A layer is applied only when its config is given.
        """
        call = operation

        if rate_limiter is not None:
            limited = call

            async def call() -> T:  # type: ignore[no-redef]
                return await self.execute_with_rate_limit(operation_id, limited, rate_limiter)

        if circuit_breaker is not None:
            guarded = call

            async def call() -> T:  # type: ignore[no-redef]
                return await self.execute_with_circuit_breaker(
                    operation_id, guarded, circuit_breaker
                )

        if retry is not None:
            return await self.execute_with_retry(operation_id, call, retry)
        return await call()
