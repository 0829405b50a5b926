"""Tests for the circuit breaker, retry and rate limiter."""

from __future__ import annotations

import pytest

from homie.core.config import ResilienceConfig
from homie.core.types import CircuitState
from homie.errors import (
    CircuitOpenError,
    RateLimitExceededError,
    RemoteError,
    TransportError,
    ValidationError,
)
from homie.resilience import (
    CircuitBreakerConfig,
    RateLimiterConfig,
    ResilienceManager,
    RetryConfig,
)
from homie.resilience.policies import policies_from_settings
from tests.conftest import FakeClock, SleepRecorder

OP = "radarr:http://radarr.lan:7878"


def _manager(**overrides) -> tuple[ResilienceManager, FakeClock, SleepRecorder]:
    clock = FakeClock()
    sleep = SleepRecorder()
    defaults = {
        "circuit_breaker": CircuitBreakerConfig(failure_threshold=3, reset_timeout=30, success_threshold=2),
        "retry": RetryConfig(max_retries=3, base_delay=1.0, max_delay=30.0, backoff_multiplier=2.0),
        "rate_limiter": RateLimiterConfig(requests_per_second=2, burst_limit=3, window_size=60),
        "clock": clock,
        "sleep": sleep,
        "rand": lambda: 1.0,
    }
    defaults.update(overrides)
    return ResilienceManager(**defaults), clock, sleep


class Flaky:
    """Async operation that raises the queued errors, then returns ``value``."""

    def __init__(self, *errors: Exception, value="ok") -> None:
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


def _network_error() -> TransportError:
    return TransportError("connection refused")


# ---------------------------------------------------------------------------
# Circuit breaker
# ---------------------------------------------------------------------------


class TestCircuitBreaker:
    @pytest.mark.asyncio
    async def test_opens_after_threshold(self):
        manager, _, _ = _manager()
        for _ in range(3):
            with pytest.raises(TransportError):
                await manager.execute_with_circuit_breaker(OP, Flaky(_network_error()))
        assert manager.get_state(OP) is CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast(self):
        manager, _, _ = _manager()
        for _ in range(3):
            manager.record_failure(OP)
        op = Flaky()
        with pytest.raises(CircuitOpenError):
            await manager.execute_with_circuit_breaker(OP, op)
        assert op.calls == 0

    @pytest.mark.asyncio
    async def test_half_open_after_reset_timeout(self):
        manager, clock, _ = _manager()
        for _ in range(3):
            manager.record_failure(OP)
        clock.advance(30)
        assert await manager.execute_with_circuit_breaker(OP, Flaky()) == "ok"
        assert manager.get_state(OP) is CircuitState.HALF_OPEN

    @pytest.mark.asyncio
    async def test_closes_after_success_threshold(self):
        manager, clock, _ = _manager()
        for _ in range(3):
            manager.record_failure(OP)
        clock.advance(31)
        await manager.execute_with_circuit_breaker(OP, Flaky())
        await manager.execute_with_circuit_breaker(OP, Flaky())
        assert manager.get_state(OP) is CircuitState.CLOSED
        assert manager.get_metrics(OP)["failure_count"] == 0

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self):
        manager, clock, _ = _manager()
        for _ in range(3):
            manager.record_failure(OP)
        clock.advance(30)
        with pytest.raises(TransportError):
            await manager.execute_with_circuit_breaker(OP, Flaky(_network_error()))
        assert manager.get_state(OP) is CircuitState.OPEN

    def test_success_while_closed_resets_failures(self):
        manager, _, _ = _manager()
        manager.record_failure(OP)
        manager.record_failure(OP)
        manager.record_success(OP)
        assert manager.get_metrics(OP)["failure_count"] == 0

    @pytest.mark.asyncio
    async def test_validation_errors_do_not_count(self):
        manager, _, _ = _manager()
        for _ in range(5):
            with pytest.raises(ValidationError):
                await manager.execute_with_circuit_breaker(OP, Flaky(ValidationError("bad input")))
        assert manager.get_state(OP) is CircuitState.CLOSED

    def test_operation_ids_are_independent(self):
        manager, _, _ = _manager()
        for _ in range(3):
            manager.record_failure(OP)
        assert manager.get_state("sonarr:http://sonarr.lan:8989") is CircuitState.CLOSED

    def test_reset_operation(self):
        manager, _, _ = _manager()
        for _ in range(3):
            manager.record_failure(OP)
        manager.reset_operation(OP)
        assert manager.get_metrics(OP) is None
        assert manager.get_state(OP) is CircuitState.CLOSED

    def test_reset_all(self):
        manager, _, _ = _manager()
        manager.record_failure(OP)
        manager.record_failure("other")
        manager.reset_all()
        assert manager.get_metrics(OP) is None
        assert manager.get_metrics("other") is None


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------


class TestRetry:
    @pytest.mark.asyncio
    async def test_retries_retryable_errors(self):
        manager, _, sleep = _manager()
        op = Flaky(_network_error(), _network_error())
        assert await manager.execute_with_retry(OP, op) == "ok"
        assert op.calls == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        manager, _, sleep = _manager()
        op = Flaky(*[_network_error() for _ in range(10)])
        with pytest.raises(TransportError):
            await manager.execute_with_retry(OP, op)
        assert op.calls == 4
        assert len(sleep.delays) == 3

    @pytest.mark.asyncio
    async def test_non_retryable_error_stops_immediately(self):
        manager, _, sleep = _manager()
        op = Flaky(RemoteError("unauthorized", http_status=401))
        with pytest.raises(RemoteError):
            await manager.execute_with_retry(OP, op)
        assert op.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self):
        manager, _, _ = _manager()
        op = Flaky(RemoteError("boom", http_status=503))
        assert await manager.execute_with_retry(OP, op) == "ok"
        assert op.calls == 2

    @pytest.mark.asyncio
    async def test_retryable_error_filter(self):
        manager, _, _ = _manager()
        config = RetryConfig(max_retries=3, retryable_errors=("TIMEOUT",))
        op = Flaky(_network_error())
        with pytest.raises(TransportError):
            await manager.execute_with_retry(OP, op, config)
        assert op.calls == 1

    def test_delay_is_capped(self):
        manager, _, _ = _manager()
        assert manager.compute_delay(10) == 30.0

    def test_delay_jitter_lower_bound(self):
        manager, _, _ = _manager(rand=lambda: 0.0)
        assert manager.compute_delay(2) == 2.0


# ---------------------------------------------------------------------------
# Rate limiter
# ---------------------------------------------------------------------------


class TestRateLimiter:
    def test_first_call_admitted(self):
        manager, _, _ = _manager()
        manager.check_rate_limit(OP)

    def test_immediate_second_call_rejected(self):
        manager, _, _ = _manager()
        manager.check_rate_limit(OP)
        with pytest.raises(RateLimitExceededError) as exc_info:
            manager.check_rate_limit(OP)
        assert exc_info.value.retry_after == pytest.approx(0.5)

    def test_calls_within_rate_admitted(self):
        manager, clock, _ = _manager()
        manager.check_rate_limit(OP)
        clock.advance(1)
        manager.check_rate_limit(OP)
        clock.advance(1)
        manager.check_rate_limit(OP)

    def test_call_at_exact_rate_rejected(self):
        manager, clock, _ = _manager()
        manager.check_rate_limit(OP)
        clock.advance(0.5)
        with pytest.raises(RateLimitExceededError):
            manager.check_rate_limit(OP)

    def test_burst_limit(self):
        manager, clock, _ = _manager()
        for _ in range(3):
            manager.check_rate_limit(OP)
            clock.advance(1)
        with pytest.raises(RateLimitExceededError) as exc_info:
            manager.check_rate_limit(OP)
        assert exc_info.value.retry_after == pytest.approx(57)

    def test_new_window_resets(self):
        manager, clock, _ = _manager()
        for _ in range(3):
            manager.check_rate_limit(OP)
            clock.advance(1)
        clock.advance(60)
        manager.check_rate_limit(OP)

    @pytest.mark.asyncio
    async def test_rate_limited_calls_do_not_trip_circuit(self):
        manager, _, _ = _manager()
        limiter = RateLimiterConfig(requests_per_second=1, burst_limit=1, window_size=60)
        await manager.execute_resilient(OP, Flaky(), circuit_breaker=manager.circuit_breaker_config, rate_limiter=limiter)
        for _ in range(5):
            with pytest.raises(RateLimitExceededError):
                await manager.execute_resilient(
                    OP, Flaky(), circuit_breaker=manager.circuit_breaker_config, rate_limiter=limiter
                )
        assert manager.get_state(OP) is CircuitState.CLOSED


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------


class TestExecuteResilient:
    @pytest.mark.asyncio
    async def test_plain_call_without_layers(self):
        manager, _, _ = _manager()
        assert await manager.execute_resilient(OP, Flaky(value=5)) == 5

    @pytest.mark.asyncio
    async def test_retry_stops_when_circuit_opens(self):
        manager, _, sleep = _manager(
            circuit_breaker=CircuitBreakerConfig(failure_threshold=2, reset_timeout=30, success_threshold=1)
        )
        op = Flaky(*[_network_error() for _ in range(10)])
        with pytest.raises(TransportError) as exc_info:
            await manager.execute_resilient(
                OP,
                op,
                circuit_breaker=manager.circuit_breaker_config,
                retry=manager.retry_config,
            )
        assert exc_info.value.message == "connection refused"
        assert op.calls == 2
        assert len(sleep.delays) == 2
        assert manager.get_state(OP) is CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast_on_next_sequence(self):
        manager, _, _ = _manager(
            circuit_breaker=CircuitBreakerConfig(failure_threshold=1, reset_timeout=30, success_threshold=1)
        )
        with pytest.raises(TransportError):
            await manager.execute_resilient(
                OP, Flaky(_network_error()), circuit_breaker=manager.circuit_breaker_config
            )
        op = Flaky()
        with pytest.raises(CircuitOpenError):
            await manager.execute_resilient(
                OP, op, circuit_breaker=manager.circuit_breaker_config, retry=manager.retry_config
            )
        assert op.calls == 0

    @pytest.mark.asyncio
    async def test_recovers_within_retry_budget(self):
        manager, _, _ = _manager()
        op = Flaky(_network_error())
        result = await manager.execute_resilient(
            OP, op, circuit_breaker=manager.circuit_breaker_config, retry=manager.retry_config
        )
        assert result == "ok"
        assert manager.get_metrics(OP)["failure_count"] == 0


class TestPoliciesFromSettings:
    def test_defaults(self):
        breaker, retry, limiter = policies_from_settings(ResilienceConfig())
        assert breaker == CircuitBreakerConfig(failure_threshold=5, reset_timeout=60.0, success_threshold=3)
        assert retry.max_retries == 3
        assert limiter.burst_limit == 20

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("HOMIE_RESILIENCE_FAILURE_THRESHOLD", "9")
        breaker, _, _ = policies_from_settings(ResilienceConfig())
        assert breaker.failure_threshold == 9
