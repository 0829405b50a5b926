"""FastAPI router for manifest-driven service calls."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from homie.core.types import AdapterResponse
from homie.errors import AdapterError
from homie.repositories import resolve
from homie.transport.models import ServiceRecord
from homie.web.envelopes import envelope_response

router = APIRouter()


class DataRequest(BaseModel):
    endpoint: str
    params: dict[str, Any] = Field(default_factory=dict)


class ActionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action_id: str = Field(alias="actionId")


def _respond(request: Request, response: AdapterResponse, operation: str, service_type: str) -> JSONResponse:
    formatter = request.app.state.context.formatter
    envelope = formatter.format_adapter_response(response, operation, service_type)
    return envelope_response(envelope, response.error)


def _not_found(request: Request, service_id: str, operation: str) -> JSONResponse:
    formatter = request.app.state.context.formatter
    envelope = formatter.format_error(
        AdapterError(f"Service {service_id!r} not found", code="SERVICE_NOT_FOUND", http_status=404),
        operation,
        "unknown",
    )
    return JSONResponse(envelope.to_wire(), status_code=404)


async def _load(request: Request, service_id: str) -> ServiceRecord | None:
    repository = request.app.state.context.repository
    if repository is None:
        return None
    return await resolve(repository.get_service(service_id))


@router.post("/api/services/{service_id}/data")
async def fetch_service_data(service_id: str, body: DataRequest, request: Request) -> JSONResponse:
    """Run one manifest endpoint of a service."""
    service = await _load(request, service_id)
    if service is None:
        return _not_found(request, service_id, body.endpoint)
    dispatcher = request.app.state.context.dispatcher
    response = await dispatcher.execute(service, body.endpoint, body.params)
    return _respond(request, response, body.endpoint, service.service_type)


@router.post("/api/services/{service_id}/test")
async def test_service_connection(service_id: str, request: Request) -> JSONResponse:
    """Probe the manifest's connection test endpoint."""
    service = await _load(request, service_id)
    if service is None:
        return _not_found(request, service_id, "test_connection")
    dispatcher = request.app.state.context.dispatcher
    response = await dispatcher.test_connection(service)
    return _respond(request, response, "test_connection", service.service_type)


@router.post("/api/services/{service_id}/actions")
async def run_service_action(service_id: str, body: ActionRequest, request: Request) -> JSONResponse:
    """Run a manifest quick action."""
    operation = f"action:{body.action_id}"
    service = await _load(request, service_id)
    if service is None:
        return _not_found(request, service_id, operation)
    dispatcher = request.app.state.context.dispatcher
    response = await dispatcher.execute_action(service, body.action_id)
    return _respond(request, response, operation, service.service_type)
