"""Map adapter errors to HTTP status codes for the JSON edge."""

from __future__ import annotations

from fastapi.responses import JSONResponse

from homie.core.types import ErrorDetail
from homie.formatting import StandardResponse

_STATUS_BY_KIND = {
    "ValidationError": 400,
    "EndpointNotFoundError": 404,
    "DiscoveryError": 404,
    "RateLimitExceededError": 429,
    "CircuitOpenError": 503,
    "TransportError": 502,
    "RemoteError": 502,
    "TransformError": 502,
}


def status_for(error: ErrorDetail | None) -> int:
    if error is None:
        return 200
    return _STATUS_BY_KIND.get(error.kind, 500)


def envelope_response(envelope: StandardResponse, error: ErrorDetail | None = None) -> JSONResponse:
    return JSONResponse(envelope.to_wire(), status_code=status_for(error))
