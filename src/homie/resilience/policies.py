"""Immutable resilience policy values. Durations are in seconds."""

from __future__ import annotations

from dataclasses import dataclass

from homie.core.config import ResilienceConfig


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    reset_timeout: float = 60.0
    success_threshold: int = 3


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    # Error codes (or message fragments) eligible for retry. Empty means
    # every error flagged retryable is retried.
    retryable_errors: tuple[str, ...] = ()


@dataclass(frozen=True)
class RateLimiterConfig:
    requests_per_second: float = 10.0
    burst_limit: int | None = 20
    window_size: float = 60.0


DEFAULT_CIRCUIT_BREAKER = CircuitBreakerConfig()
DEFAULT_RETRY = RetryConfig()
DEFAULT_RATE_LIMITER = RateLimiterConfig()


def policies_from_settings(
    config: ResilienceConfig,
) -> tuple[CircuitBreakerConfig, RetryConfig, RateLimiterConfig]:
    """Build the three policy objects from environment-driven settings."""
    return (
        CircuitBreakerConfig(
            failure_threshold=config.failure_threshold,
            reset_timeout=config.reset_timeout,
            success_threshold=config.success_threshold,
        ),
        RetryConfig(
            max_retries=config.max_retries,
            base_delay=config.base_delay,
            max_delay=config.max_delay,
            backoff_multiplier=config.backoff_multiplier,
        ),
        RateLimiterConfig(
            requests_per_second=config.requests_per_second,
            burst_limit=config.burst_limit,
            window_size=config.window_size,
        ),
    )
