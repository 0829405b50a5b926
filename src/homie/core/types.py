"""Core type definitions shared across all homie modules."""

from __future__ import annotations

import time
import uuid
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class ServiceType(StrEnum):
    """Service kinds known to the adapter layer."""

    PROXMOX = "proxmox"
    DOCKER = "docker"
    SONARR = "sonarr"
    RADARR = "radarr"
    SABNZBD = "sabnzbd"
    QBITTORRENT = "qbittorrent"
    DELUGE = "deluge"
    JELLYFIN = "jellyfin"
    PLEX = "plex"
    TRANSMISSION = "transmission"
    NZBGET = "nzbget"
    LIDARR = "lidarr"
    BAZARR = "bazarr"
    TAUTULLI = "tautulli"
    OVERSEERR = "overseerr"
    CUSTOM = "custom"


class AuthType(StrEnum):
    """How an adapter authenticates against its service."""

    NONE = "none"
    API_KEY = "api_key"
    TOKEN = "token"
    USERNAME_PASSWORD = "username_password"
    CERTIFICATE = "certificate"


class ServiceStatus(StrEnum):
    """Reachability status recorded on a service record."""

    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"
    STARTING = "starting"
    STOPPING = "stopping"
    ERROR = "error"


class HealthState(StrEnum):
    """Result of an adapter health check."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"
    MAINTENANCE = "maintenance"
    UNKNOWN = "unknown"


class CircuitState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class Transport(StrEnum):
    HTTP = "http"
    DOCKER = "docker"
    SSH = "ssh"
    WS = "ws"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class HealthCheckResult(BaseModel):
    """Outcome of a single adapter health probe."""

    status: HealthState
    response_time: float = 0.0
    message: str = ""
    version: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    checked_at: datetime = Field(default_factory=_now)


class ErrorDetail(BaseModel):
    """Serializable view of a failed call."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    details: Any = None
    http_status: int | None = None
    retryable: bool = False
    kind: str = "AdapterError"


class ResponseMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    response_time: float = 0.0
    request_id: str = ""
    timestamp: datetime = Field(default_factory=_now)
    endpoint: str = ""
    service_version: str | None = None


class AdapterResponse(BaseModel, Generic[T]):
    """Immutable result of an adapter or dispatcher call.

    Exactly one of ``data`` (on success) or ``error`` (on failure) is
    meaningful; ``metadata`` is always present.
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    data: T | None = None
    error: ErrorDetail | None = None
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)


def new_request_id(prefix: str) -> str:
    """Correlation id of the form ``<prefix>_<epoch ms>_<random>``."""
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
