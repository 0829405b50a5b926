"""Docker Engine API adapter.

Talks to the daemon over TCP (2375 plain, 2376 TLS) or, when
``service_config["socketPath"]`` is set, over a Unix domain socket. With
``service_config["readOnly"]`` every request passes the control-socket
guard before it is sent.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from homie.adapters.base import BaseServiceAdapter, ErrorRule
from homie.adapters.models import AdapterConfig
from homie.adapters.services.servarr import page_params
from homie.core.types import AdapterResponse, AuthType, HealthCheckResult, ServiceType
from homie.transport.guards import validate_control_socket_request

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "v1.43"

# Host part is ignored when talking over a Unix socket.
_SOCKET_BASE_URL = "http://docker"


def _filters(filters: dict[str, list[str]] | None) -> str | None:
    return json.dumps(filters) if filters else None


class DockerAdapter(BaseServiceAdapter):
    service_type = ServiceType.DOCKER
    default_ports = (2375, 2376)
    error_map = {
        304: ErrorRule("DOCKER_NOT_MODIFIED", "Container already in requested state"),
        400: ErrorRule("DOCKER_BAD_PARAMETER", "Bad parameter"),
        404: ErrorRule("DOCKER_NOT_FOUND", "No such container or image"),
        409: ErrorRule("DOCKER_CONFLICT", "Conflict with the current state"),
        500: ErrorRule("DOCKER_SERVER_ERROR", "Docker daemon error", retryable=True),
    }

    def __init__(self, config: AdapterConfig, **kwargs: Any) -> None:
        socket_path = config.service_config.get("socketPath")
        if socket_path:
            if not config.base_url:
                config = config.model_copy(update={"base_url": _SOCKET_BASE_URL})
            kwargs.setdefault("transport", httpx.AsyncHTTPTransport(uds=socket_path))
        super().__init__(config, **kwargs)

    @property
    def api_base_path(self) -> str:  # type: ignore[override]
        version = self._config.service_config.get("apiVersion", DEFAULT_API_VERSION)
        return f"/{version.lstrip('/')}"

    @property
    def read_only(self) -> bool:
        return bool(self._config.service_config.get("readOnly", False))

    def _validate_service_config(self, errors: list[str]) -> None:
        cfg = self._config
        if cfg.service_config.get("socketPath"):
            logger.info("Using Docker socket at %s", cfg.service_config["socketPath"])
        elif cfg.port is None:
            logger.warning("Docker port not specified; expected 2375 or 2376")
        elif cfg.port not in self.default_ports:
            logger.warning("Non-standard Docker port %s specified", cfg.port)
        if cfg.auth_type is AuthType.NONE and cfg.use_ssl:
            logger.warning("Docker TLS is enabled without a client certificate")

    async def _send(
        self,
        method: str,
        endpoint: str,
        data: Any = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        if self.read_only:
            validate_control_socket_request(method, endpoint)
        return await super()._send(method, endpoint, data, params)

    async def health_check(self) -> HealthCheckResult:
        result, data = await self._probe("/version")
        if isinstance(data, dict):
            result.version = data.get("Version") or data.get("version")
            result.details = {
                "dockerVersion": data.get("Version"),
                "apiVersion": data.get("ApiVersion"),
            }
        return result

    # -- system --------------------------------------------------------------

    async def get_version(self) -> AdapterResponse:
        return await self.get("/version")

    async def get_info(self) -> AdapterResponse:
        return await self.get("/info")

    async def get_events(
        self, since: int | None = None, until: int | None = None, filters: dict[str, list[str]] | None = None
    ) -> AdapterResponse:
        return await self.get(
            "/events", page_params(since=since, until=until, filters=_filters(filters))
        )

    # -- containers ----------------------------------------------------------

    async def list_containers(
        self, all: bool = False, filters: dict[str, list[str]] | None = None
    ) -> AdapterResponse:
        return await self.get(
            "/containers/json", page_params(all=str(all).lower(), filters=_filters(filters))
        )

    async def get_container(self, container_id: str) -> AdapterResponse:
        return await self.get(f"/containers/{container_id}/json")

    async def create_container(self, options: dict[str, Any], name: str | None = None) -> AdapterResponse:
        return await self.post("/containers/create", options, page_params(name=name))

    async def start_container(self, container_id: str) -> AdapterResponse:
        return await self.post(f"/containers/{container_id}/start")

    async def stop_container(self, container_id: str, timeout: int | None = None) -> AdapterResponse:
        return await self.post(f"/containers/{container_id}/stop", params=page_params(t=timeout))

    async def restart_container(self, container_id: str, timeout: int | None = None) -> AdapterResponse:
        return await self.post(f"/containers/{container_id}/restart", params=page_params(t=timeout))

    async def pause_container(self, container_id: str) -> AdapterResponse:
        return await self.post(f"/containers/{container_id}/pause")

    async def unpause_container(self, container_id: str) -> AdapterResponse:
        return await self.post(f"/containers/{container_id}/unpause")

    async def kill_container(self, container_id: str, signal: str | None = None) -> AdapterResponse:
        return await self.post(f"/containers/{container_id}/kill", params=page_params(signal=signal))

    async def remove_container(
        self, container_id: str, force: bool = False, remove_volumes: bool = False
    ) -> AdapterResponse:
        return await self.delete(
            f"/containers/{container_id}",
            {"force": str(force).lower(), "v": str(remove_volumes).lower()},
        )

    async def get_container_logs(
        self,
        container_id: str,
        tail: int | str = 100,
        timestamps: bool = False,
        since: int | None = None,
    ) -> AdapterResponse:
        return await self.get(
            f"/containers/{container_id}/logs",
            page_params(
                stdout="true",
                stderr="true",
                tail=tail,
                timestamps=str(timestamps).lower(),
                since=since,
            ),
        )

    async def get_container_stats(self, container_id: str) -> AdapterResponse:
        return await self.get(f"/containers/{container_id}/stats", {"stream": "false"})

    # -- images --------------------------------------------------------------

    async def list_images(
        self, all: bool = False, filters: dict[str, list[str]] | None = None
    ) -> AdapterResponse:
        return await self.get(
            "/images/json", page_params(all=str(all).lower(), filters=_filters(filters))
        )

    async def get_image(self, image_id: str) -> AdapterResponse:
        return await self.get(f"/images/{image_id}/json")

    async def pull_image(self, image: str, tag: str = "latest") -> AdapterResponse:
        return await self.post("/images/create", params={"fromImage": image, "tag": tag})

    async def remove_image(self, image_id: str, force: bool = False) -> AdapterResponse:
        return await self.delete(f"/images/{image_id}", {"force": str(force).lower()})

    async def prune_images(self, filters: dict[str, list[str]] | None = None) -> AdapterResponse:
        return await self.post("/images/prune", params=page_params(filters=_filters(filters)))

    # -- networks and volumes ------------------------------------------------

    async def list_networks(self) -> AdapterResponse:
        return await self.get("/networks")

    async def list_volumes(self) -> AdapterResponse:
        return await self.get("/volumes")
