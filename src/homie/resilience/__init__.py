"""Resilience policies: circuit breaker, retry with backoff, rate limiting."""

from __future__ import annotations

from homie.resilience.manager import ResilienceManager
from homie.resilience.policies import (
    DEFAULT_CIRCUIT_BREAKER,
    DEFAULT_RATE_LIMITER,
    DEFAULT_RETRY,
    CircuitBreakerConfig,
    RateLimiterConfig,
    RetryConfig,
)

__all__ = [
    "DEFAULT_CIRCUIT_BREAKER",
    "DEFAULT_RATE_LIMITER",
    "DEFAULT_RETRY",
    "CircuitBreakerConfig",
    "RateLimiterConfig",
    "ResilienceManager",
    "RetryConfig",
]
