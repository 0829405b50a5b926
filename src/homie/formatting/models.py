"""Outbound response envelope.

Serialized with camelCase keys (``model_dump(by_alias=True,
exclude_none=True)``) so the wire format matches what dashboard clients
expect.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _Envelope(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CacheMetadata(_Envelope):
    hit: bool
    ttl: float | None = None
    key: str | None = None
    source: str | None = None


class PaginationMetadata(_Envelope):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class RateLimitMetadata(_Envelope):
    limit: int
    remaining: int
    reset_time: str
    window_size: float


class EnvelopeMetadata(_Envelope):
    timestamp: str
    correlation_id: str
    service_type: str
    operation: str
    duration: float | None = None
    version: str | None = None
    node_id: str | None = None
    pagination: PaginationMetadata | None = None
    rate_limit: RateLimitMetadata | None = None
    cache: CacheMetadata | None = None


class EnvelopeError(_Envelope):
    code: str
    message: str
    details: Any = None
    http_status: int | None = None
    timestamp: str
    correlation_id: str
    retryable: bool = False
    suggestions: list[str] = []


class StandardResponse(_Envelope):
    success: bool
    data: Any = None
    error: EnvelopeError | None = None
    metadata: EnvelopeMetadata

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
