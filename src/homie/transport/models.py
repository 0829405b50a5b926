"""Manifest and service record models consumed by the dispatcher.

Manifests arrive as camelCase JSON from the marketplace; every model
accepts both the camelCase alias and the snake_case field name.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from homie.core.types import ServiceStatus, Transport


class _ManifestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class EndpointDefinition(_ManifestModel):
    """How to call one logical operation on a service."""

    transport: Transport = Transport.HTTP
    method: str = "GET"
    path: str | None = None
    command: str | None = None
    url: str | None = None
    params: dict[str, Any] = Field(default_factory=dict)
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None
    message: Any = None
    parser: Literal["raw", "json"] | None = None
    transform: str | None = None
    # Milliseconds, as written in manifests.
    timeout_ms: int | None = Field(default=None, alias="timeout")
    allow_non_zero_exit: bool = Field(default=False, alias="allowNonZeroExit")

    @property
    def timeout(self) -> float | None:
        return self.timeout_ms / 1000 if self.timeout_ms else None


class ManifestApi(_ManifestModel):
    headers: dict[str, str] = Field(default_factory=dict)
    endpoints: dict[str, EndpointDefinition] = Field(default_factory=dict)


class ConnectionTest(_ManifestModel):
    path: str = "/"
    method: str = "GET"
    headers: dict[str, str] = Field(default_factory=dict)
    success_indicator: str | None = Field(default=None, alias="successIndicator")
    expected_status: int = Field(default=200, alias="expectedStatus")


class ManifestConnection(_ManifestModel):
    test_endpoint: ConnectionTest | None = Field(default=None, alias="testEndpoint")


class QuickActionApi(_ManifestModel):
    method: str = "POST"
    endpoint: str
    body: Any = None


class QuickAction(_ManifestModel):
    id: str
    name: str = ""
    api: QuickActionApi


class ServiceManifest(_ManifestModel):
    id: str = ""
    name: str = ""
    version: str = ""
    api: ManifestApi = Field(default_factory=ManifestApi)
    connection: ManifestConnection = Field(default_factory=ManifestConnection)
    quick_actions: list[QuickAction] = Field(default_factory=list, alias="quickActions")

    def find_action(self, action_id: str) -> QuickAction | None:
        for action in self.quick_actions:
            if action.id == action_id:
                return action
        return None


class ServiceRecord(_ManifestModel):
    """An installed service: its user-supplied config plus its manifest.

    ``config`` is free-form; ``url`` is the HTTP base and ``host``,
    ``port``, ``username``, ``password`` and ``privateKey`` feed SSH.
    """

    id: str
    name: str = ""
    service_type: str = Field(default="custom", alias="serviceType")
    config: dict[str, Any] = Field(default_factory=dict)
    manifest: ServiceManifest = Field(default_factory=ServiceManifest)
    status: ServiceStatus = ServiceStatus.UNKNOWN
    last_checked: datetime | None = Field(default=None, alias="lastChecked")


@dataclass
class TransportResult:
    """Raw outcome of one transport call, before transforms."""

    data: Any
    status_code: int | None = None
    headers: dict[str, str] = field(default_factory=dict)
