"""Normalize adapter and dispatcher results into the outbound envelope."""

from __future__ import annotations

import itertools
import logging
import math
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from homie.core.types import AdapterResponse, ErrorDetail
from homie.errors import AdapterError
from homie.formatting.models import (
    CacheMetadata,
    EnvelopeError,
    EnvelopeMetadata,
    PaginationMetadata,
    RateLimitMetadata,
    StandardResponse,
)

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})
RETRYABLE_CODES = ("TIMEOUT", "NETWORK_ERROR", "ECONNRESET", "ENOTFOUND")


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ResponseFormatter:
    """Builds ``StandardResponse`` envelopes.

    Correlation ids are ``<epoch ms>_<counter>``, the counter wrapping at
    one million, unless an adapter response already carries a request id. ``node_id`` and ``version`` are only reported when a call
    asks for ``include_metadata``.
    """

    def __init__(self, *, node_id: str = "unknown", version: str = "1.0.0") -> None:
        self._node_id = node_id
        self._version = version
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def correlation_id(self) -> str:
        with self._lock:
            n = next(self._counter) % 1_000_000
        return f"{int(time.time() * 1000)}_{n:06d}"

    # -- public API ---------------------------------------------------------

    def format_success(
        self,
        data: Any,
        operation: str,
        service_type: str,
        *,
        include_metadata: bool = False,
        transform: Callable[[Any], Any] | None = None,
        fields: list[str] | None = None,
        duration: float | None = None,
        pagination: PaginationMetadata | None = None,
        rate_limit: RateLimitMetadata | None = None,
        cache: CacheMetadata | None = None,
        correlation_id: str | None = None,
    ) -> StandardResponse:
        if transform is not None:
            data = transform(data)
        if fields and isinstance(data, list):
            data = [
                {f: item[f] for f in fields if f in item} if isinstance(item, dict) else item
                for item in data
            ]
        metadata = self._metadata(operation, service_type, include_metadata, duration, correlation_id)
        metadata.pagination = pagination
        metadata.rate_limit = rate_limit
        metadata.cache = cache
        logger.debug("Formatted %s/%s success [%s]", service_type, operation, metadata.correlation_id)
        return StandardResponse(success=True, data=data, metadata=metadata)

    def format_error(
        self,
        error: AdapterError | ErrorDetail | BaseException,
        operation: str,
        service_type: str,
        *,
        include_metadata: bool = False,
        include_details: bool = True,
        duration: float | None = None,
        correlation_id: str | None = None,
    ) -> StandardResponse:
        metadata = self._metadata(operation, service_type, include_metadata, duration, correlation_id)
        code, message, details, http_status = self._describe(error)
        envelope_error = EnvelopeError(
            code=code,
            message=message,
            details=details if include_details else None,
            http_status=http_status,
            timestamp=metadata.timestamp,
            correlation_id=metadata.correlation_id,
            retryable=self.is_retryable(error),
            suggestions=self.suggestions(code, http_status, service_type),
        )
        logger.warning(
            "Formatted %s/%s error [%s] %s: %s",
            service_type,
            operation,
            metadata.correlation_id,
            code,
            message,
        )
        return StandardResponse(success=False, error=envelope_error, metadata=metadata)

    def format_adapter_response(
        self,
        response: AdapterResponse,
        operation: str,
        service_type: str,
        **options: Any,
    ) -> StandardResponse:
        """Wrap an ``AdapterResponse``, reusing its request id as the correlation id."""
        duration = response.metadata.response_time
        request_id = response.metadata.request_id
        if response.success:
            return self.format_success(
                response.data,
                operation,
                service_type,
                duration=duration,
                correlation_id=request_id,
                **options,
            )
        error = response.error or ErrorDetail(code="UNKNOWN_ERROR", message="Unknown error")
        return self.format_error(
            error,
            operation,
            service_type,
            duration=duration,
            include_metadata=options.get("include_metadata", False),
            correlation_id=request_id,
        )

    def format_paginated(
        self,
        data: list[Any],
        total: int,
        page: int,
        limit: int,
        operation: str,
        service_type: str,
        **options: Any,
    ) -> StandardResponse:
        total_pages = math.ceil(total / limit) if limit > 0 else 0
        pagination = PaginationMetadata(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )
        return self.format_success(data, operation, service_type, pagination=pagination, **options)

    def format_rate_limited(
        self,
        data: Any,
        *,
        limit: int,
        remaining: int,
        reset_in: float,
        window_size: float,
        operation: str,
        service_type: str,
        **options: Any,
    ) -> StandardResponse:
        reset_time = datetime.now(timezone.utc) + timedelta(seconds=reset_in)
        rate_limit = RateLimitMetadata(
            limit=limit,
            remaining=remaining,
            reset_time=reset_time.isoformat(),
            window_size=window_size,
        )
        return self.format_success(data, operation, service_type, rate_limit=rate_limit, **options)

    def format_cached(
        self,
        data: Any,
        *,
        hit: bool,
        operation: str,
        service_type: str,
        ttl: float | None = None,
        key: str | None = None,
        source: str | None = None,
        **options: Any,
    ) -> StandardResponse:
        cache = CacheMetadata(hit=hit, ttl=ttl, key=key, source=source)
        return self.format_success(data, operation, service_type, cache=cache, **options)

    # -- classification -----------------------------------------------------

    @staticmethod
    def _describe(error: Any) -> tuple[str, str, Any, int | None]:
        if isinstance(error, (AdapterError, ErrorDetail)):
            return error.code, error.message, error.details, error.http_status
        code = type(error).__name__.upper() if isinstance(error, BaseException) else "UNKNOWN_ERROR"
        return code, str(error) or "An unexpected error occurred", None, None

    def is_retryable(self, error: Any) -> bool:
        if isinstance(error, (AdapterError, ErrorDetail)):
            return error.retryable
        code, _, _, status = self._describe(error)
        if status in RETRYABLE_STATUSES:
            return True
        return any(marker in code for marker in RETRYABLE_CODES)

    @staticmethod
    def suggestions(code: str, http_status: int | None, service_type: str) -> list[str]:
        tips: list[str] = []
        if http_status == 401:
            tips += [
                "Check if authentication credentials are correct",
                "Verify API key or token is valid and not expired",
            ]
        elif http_status == 403:
            tips += [
                "Verify user has sufficient permissions for this operation",
                "Check if API key has required scopes",
            ]
        elif http_status == 404:
            tips += [
                "Verify the resource exists and path is correct",
                "Check if the service endpoint is accessible",
            ]
        elif http_status == 429:
            tips += [
                "Reduce request frequency",
                "Wait before retrying the request",
            ]
        elif http_status is not None and http_status >= 500:
            tips += [
                "Check if the service is running and accessible",
                "Try again later as this may be a temporary server issue",
            ]

        if service_type == "proxmox" and "AUTH" in code:
            tips.append("Check that the Proxmox user has the required privileges")
            tips.append("Proxmox tickets expire after two hours")

        if "TIMEOUT" in code:
            tips += ["Increase timeout configuration", "Check network connectivity to the service"]
        elif "NETWORK" in code:
            tips += ["Verify network connectivity", "Ensure the service URL is reachable"]
        elif code.startswith("GUARD_"):
            tips.append("The operation was blocked by the read-only safety policy")
        return tips

    # -- internal -----------------------------------------------------------

    def _metadata(
        self,
        operation: str,
        service_type: str,
        include_metadata: bool,
        duration: float | None,
        correlation_id: str | None = None,
    ) -> EnvelopeMetadata:
        return EnvelopeMetadata(
            timestamp=_iso_now(),
            correlation_id=correlation_id or self.correlation_id(),
            service_type=service_type,
            operation=operation,
            duration=duration,
            node_id=self._node_id if include_metadata else None,
            version=self._version if include_metadata else None,
        )
