"""Error taxonomy for the adapter and transport layer.

Every failure that crosses a component boundary is an ``AdapterError``.
Whether it may be retried is decided once, when the error is created,
and never re-derived by callers.
"""

from __future__ import annotations

from typing import Any

from homie.core.types import ErrorDetail


class AdapterError(Exception):
    """Base class for all adapter failures."""

    default_code = "UNKNOWN_ERROR"
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: Any = None,
        http_status: int | None = None,
        retryable: bool | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details
        self.http_status = http_status
        self.retryable = self.default_retryable if retryable is None else retryable
        self.cause = cause

    def to_detail(self) -> ErrorDetail:
        return ErrorDetail(
            code=self.code,
            message=self.message,
            details=self.details,
            http_status=self.http_status,
            retryable=self.retryable,
            kind=type(self).__name__,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class ValidationError(AdapterError):
    """Rejected before any network activity. Never retried."""

    default_code = "VALIDATION_ERROR"

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs["retryable"] = False
        super().__init__(message, **kwargs)


class EndpointNotFoundError(AdapterError):
    default_code = "ENDPOINT_NOT_FOUND"

    def __init__(self, endpoint: str, **kwargs: Any) -> None:
        kwargs.setdefault("http_status", 404)
        super().__init__(f"Endpoint {endpoint!r} is not defined", **kwargs)
        self.endpoint = endpoint


class TransportError(AdapterError):
    """Connection refused, DNS failure, timeout and friends."""

    default_code = "NETWORK_ERROR"
    default_retryable = True


class RemoteError(AdapterError):
    """The remote side answered, but with a failure.

    Retryable for 5xx and 429 unless told otherwise.
    """

    default_code = "REMOTE_ERROR"

    def __init__(self, message: str, **kwargs: Any) -> None:
        status = kwargs.get("http_status")
        if kwargs.get("retryable") is None and status is not None:
            kwargs["retryable"] = status >= 500 or status == 429
        kwargs.setdefault("code", f"HTTP_{status}" if status is not None else None)
        super().__init__(message, **kwargs)


class TransformError(AdapterError):
    default_code = "TRANSFORM_ERROR"


class DiscoveryError(AdapterError):
    default_code = "DISCOVERY_ERROR"


class CircuitOpenError(AdapterError):
    default_code = "CIRCUIT_OPEN"

    def __init__(self, operation_id: str, **kwargs: Any) -> None:
        kwargs["retryable"] = False
        super().__init__(
            f"Circuit breaker is open for {operation_id}",
            **kwargs,
        )
        self.operation_id = operation_id


class RateLimitExceededError(AdapterError):
    default_code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, operation_id: str, retry_after: float, **kwargs: Any) -> None:
        kwargs["retryable"] = False
        kwargs.setdefault("http_status", 429)
        super().__init__(
            f"Rate limit exceeded for {operation_id}. Try again in {retry_after:.1f}s",
            **kwargs,
        )
        self.operation_id = operation_id
        self.retry_after = retry_after
