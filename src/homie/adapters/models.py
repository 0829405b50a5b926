"""Pydantic models for typed service adapters."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from homie.core.types import AuthType, ServiceType


class AdapterConfig(BaseModel):
    """Connection settings for one service instance.

    ``base_url`` may be a bare host (``radarr.lan``) or a full URL; a bare
    host gets its scheme from ``use_ssl``. ``timeout`` is in seconds.
    """

    model_config = ConfigDict(populate_by_name=True)

    base_url: str = Field(default="", alias="baseUrl")
    port: int | None = None
    use_ssl: bool = Field(default=False, alias="useSSL")
    verify_ssl: bool = Field(default=True, alias="verifySSL")
    timeout: float = 5.0
    max_retries: int = Field(default=3, alias="maxRetries")
    headers: dict[str, str] = Field(default_factory=dict)
    auth_type: AuthType = Field(default=AuthType.NONE, alias="authType")
    api_key: str | None = Field(default=None, alias="apiKey")
    username: str | None = None
    password: str | None = None
    token: str | None = None
    certificate: str | None = None
    private_key: str | None = Field(default=None, alias="privateKey")
    service_config: dict[str, Any] = Field(default_factory=dict, alias="serviceConfig")

    def origin(self) -> str:
        """``scheme://host[:port]`` without any path."""
        raw = self.base_url.strip()
        if "://" not in raw:
            raw = f"{'https' if self.use_ssl else 'http'}://{raw}"
        url = httpx.URL(raw)
        if self.port is not None:
            url = url.copy_with(port=self.port)
        origin = f"{url.scheme}://{url.host}"
        if url.port is not None:
            origin += f":{url.port}"
        return origin


@dataclass
class ConnectionState:
    is_connected: bool = False
    retry_count: int = 0
    max_retries: int = 3
    last_connection_attempt: datetime | None = None
    connection_error: str | None = None


class ServiceDiscoveryResult(BaseModel):
    """Outcome of probing one base URL for one service type."""

    model_config = ConfigDict(populate_by_name=True)

    service_type: ServiceType = Field(alias="serviceType")
    detected: bool = False
    confidence: float = 0.0
    version: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class ConfigValidationResult(BaseModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
