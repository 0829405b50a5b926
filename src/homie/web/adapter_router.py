"""FastAPI router for adapter discovery, validation and statistics."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from homie.core.types import ServiceType
from homie.errors import ValidationError
from homie.web.envelopes import envelope_response

router = APIRouter()


class DiscoverRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    base_url: str = Field(alias="baseUrl")
    expected_type: ServiceType | None = Field(default=None, alias="expectedType")


class ValidateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    service_type: str = Field(alias="serviceType")
    config: dict[str, Any] = Field(default_factory=dict)


@router.post("/api/adapters/discover")
async def discover_service(body: DiscoverRequest, request: Request) -> JSONResponse:
    """Probe a base URL and rank the service types that answer there."""
    context = request.app.state.context
    service_type = body.expected_type.value if body.expected_type else "unknown"
    if not body.base_url.strip():
        error = ValidationError("Base URL is required", code="INVALID_REQUEST")
        return envelope_response(
            context.formatter.format_error(error, "discover", service_type), error.to_detail()
        )
    results = await context.factory.discover_service(body.base_url, body.expected_type)
    envelope = context.formatter.format_success(
        [r.model_dump(mode="json", by_alias=True, exclude_none=True) for r in results],
        "discover",
        service_type,
    )
    return envelope_response(envelope)


@router.post("/api/adapters/validate")
async def validate_adapter_config(body: ValidateRequest, request: Request) -> JSONResponse:
    """Check an adapter configuration without connecting."""
    context = request.app.state.context
    result = context.factory.validate_config(body.service_type, body.config)
    envelope = context.formatter.format_success(
        result.model_dump(), "validate_config", body.service_type
    )
    return envelope_response(envelope)


@router.get("/api/adapters/stats")
async def adapter_stats(request: Request) -> dict[str, Any]:
    """Registry counters plus the supported service types."""
    context = request.app.state.context
    return {
        **context.factory.get_stats(),
        "supportedServices": [t.value for t in context.factory.get_supported_services()],
    }


@router.get("/api/adapters/templates/{service_type}")
async def config_template(service_type: ServiceType, request: Request) -> JSONResponse:
    """Default configuration to start a new instance of ``service_type`` from."""
    context = request.app.state.context
    template = context.factory.get_config_template(service_type)
    envelope = context.formatter.format_success(template, "config_template", service_type.value)
    return envelope_response(envelope)
