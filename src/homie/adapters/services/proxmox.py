"""Proxmox VE adapter.

Username/password auth trades credentials for a ticket at
``/access/ticket``; the ticket is sent as the ``PVEAuthCookie`` cookie
and, for write calls, with the ``CSRFPreventionToken`` header. Tickets
live two hours.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

from homie.adapters.base import BaseServiceAdapter, ErrorRule
from homie.core.types import AdapterResponse, AuthType, HealthCheckResult, HealthState, ServiceType
from homie.errors import AdapterError, RemoteError, ValidationError

logger = logging.getLogger(__name__)

TICKET_LIFETIME = 7200.0


class ProxmoxAdapter(BaseServiceAdapter):
    service_type = ServiceType.PROXMOX
    api_base_path = "/api2/json"
    default_ports = (8006,)
    error_map = {
        400: ErrorRule("PROXMOX_BAD_REQUEST", "Invalid parameters"),
        401: ErrorRule("PROXMOX_AUTH_FAILED", "Authentication failed or ticket expired"),
        403: ErrorRule("INSUFFICIENT_PRIVILEGES", "Insufficient privileges for this operation"),
        404: ErrorRule("PROXMOX_NOT_FOUND", "Resource not found"),
        500: ErrorRule("PROXMOX_SERVER_ERROR", "Proxmox server error", retryable=True),
        595: ErrorRule("PROXMOX_NODE_UNREACHABLE", "Node is unreachable", retryable=True),
    }

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._ticket: str | None = None
        self._csrf_token: str | None = None
        self._ticket_issued: float | None = None
        self._login_lock = asyncio.Lock()

    @property
    def realm(self) -> str:
        return str(self._config.service_config.get("realm", "pam"))

    @property
    def default_node(self) -> str | None:
        return self._config.service_config.get("node")

    # -- auth ----------------------------------------------------------------

    def ticket_valid(self) -> bool:
        return (
            self._ticket is not None
            and self._ticket_issued is not None
            and time.monotonic() - self._ticket_issued < TICKET_LIFETIME
        )

    def clear_ticket(self) -> None:
        self._ticket = None
        self._csrf_token = None
        self._ticket_issued = None

    def get_auth_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self._ticket:
            headers["Cookie"] = f"PVEAuthCookie={self._ticket}"
        if self._csrf_token:
            headers["CSRFPreventionToken"] = self._csrf_token
        return headers

    async def _prepare_request(self) -> None:
        if self.ticket_valid():
            return
        async with self._login_lock:
            if not self.ticket_valid():
                await self._login()

    async def _login(self) -> None:
        username = self._config.username or ""
        if "@" not in username:
            username = f"{username}@{self.realm}"
        logger.info("Authenticating with Proxmox API as %s", username)
        try:
            response = await self._client.post(
                "/access/ticket",
                data={"username": username, "password": self._config.password or ""},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as exc:
            raise self.handle_error(exc, "authentication") from exc
        if response.is_error:
            raise self.handle_error(response, "authentication")

        payload = response.json().get("data") or {}
        if not payload.get("ticket"):
            raise RemoteError(
                "Authentication failed: invalid response from Proxmox API",
                code="PROXMOX_AUTH_FAILED",
                retryable=False,
            )
        self._ticket = payload["ticket"]
        self._csrf_token = payload.get("CSRFPreventionToken")
        self._ticket_issued = time.monotonic()

    def handle_error(self, error: httpx.Response | BaseException, context: str = "") -> AdapterError:
        mapped = super().handle_error(error, context)
        if mapped.http_status == 401:
            self.clear_ticket()
        return mapped

    # -- hooks ---------------------------------------------------------------

    def _validate_service_config(self, errors: list[str]) -> None:
        cfg = self._config
        if not cfg.username:
            errors.append("Username is required for Proxmox authentication")
        if not cfg.password:
            errors.append("Password is required for Proxmox authentication")
        if cfg.auth_type not in (AuthType.USERNAME_PASSWORD, AuthType.NONE):
            errors.append("Proxmox requires username/password authentication")
        if cfg.port is not None and cfg.port not in self.default_ports:
            logger.warning("Non-standard Proxmox port %s specified", cfg.port)

    def _on_client_rebuilt(self) -> None:
        self.clear_ticket()

    def _unwrap(self, data: Any) -> Any:
        if isinstance(data, dict) and "data" in data:
            return data["data"]
        return data

    async def health_check(self) -> HealthCheckResult:
        result, data = await self._probe("/version")
        if result.status is HealthState.ACTIVE and isinstance(data, dict):
            result.version = data.get("version")
            result.details = {"version": data.get("version"), "release": data.get("release")}
        return result

    async def _on_node(
        self, node: str | None, suffix: str, *, method: str = "GET", params: dict[str, Any] | None = None
    ) -> AdapterResponse:
        """Call ``/nodes/<node><suffix>``, falling back to the configured node."""
        node = node or self.default_node
        if not node:
            error = ValidationError("A Proxmox node name is required", code="PROXMOX_NODE_REQUIRED")
            return self._failed(error, method, f"/nodes/{{node}}{suffix}")
        return await self._request(method, f"/nodes/{node}{suffix}", params=params)

    # -- endpoints -----------------------------------------------------------

    async def get_version(self) -> AdapterResponse:
        return await self.get("/version")

    async def get_nodes(self) -> AdapterResponse:
        return await self.get("/nodes")

    async def get_node_status(self, node: str | None = None) -> AdapterResponse:
        return await self._on_node(node, "/status")

    async def get_cluster_resources(self, resource_type: str | None = None) -> AdapterResponse:
        return await self.get("/cluster/resources", {"type": resource_type} if resource_type else None)

    async def get_cluster_status(self) -> AdapterResponse:
        return await self.get("/cluster/status")

    async def get_storage(self, node: str | None = None) -> AdapterResponse:
        if node or self.default_node:
            return await self._on_node(node, "/storage")
        return await self.get("/storage")

    async def get_vms(self, node: str | None = None) -> AdapterResponse:
        return await self._on_node(node, "/qemu")

    async def get_vm_status(self, vmid: int, node: str | None = None) -> AdapterResponse:
        return await self._on_node(node, f"/qemu/{vmid}/status/current")

    async def get_vm_config(self, vmid: int, node: str | None = None) -> AdapterResponse:
        return await self._on_node(node, f"/qemu/{vmid}/config")

    async def vm_action(self, vmid: int, action: str, node: str | None = None) -> AdapterResponse:
        """``action`` is one of start, stop, shutdown, reboot, suspend, resume."""
        return await self._on_node(node, f"/qemu/{vmid}/status/{action}", method="POST")

    async def start_vm(self, vmid: int, node: str | None = None) -> AdapterResponse:
        return await self.vm_action(vmid, "start", node)

    async def stop_vm(self, vmid: int, node: str | None = None) -> AdapterResponse:
        return await self.vm_action(vmid, "stop", node)

    async def reboot_vm(self, vmid: int, node: str | None = None) -> AdapterResponse:
        return await self.vm_action(vmid, "reboot", node)

    async def get_containers(self, node: str | None = None) -> AdapterResponse:
        return await self._on_node(node, "/lxc")

    async def get_container_status(self, vmid: int, node: str | None = None) -> AdapterResponse:
        return await self._on_node(node, f"/lxc/{vmid}/status/current")

    async def container_action(self, vmid: int, action: str, node: str | None = None) -> AdapterResponse:
        return await self._on_node(node, f"/lxc/{vmid}/status/{action}", method="POST")

    async def start_container(self, vmid: int, node: str | None = None) -> AdapterResponse:
        return await self.container_action(vmid, "start", node)

    async def stop_container(self, vmid: int, node: str | None = None) -> AdapterResponse:
        return await self.container_action(vmid, "stop", node)

    async def get_tasks(self, node: str | None = None, limit: int | None = None) -> AdapterResponse:
        return await self._on_node(node, "/tasks", params={"limit": limit} if limit else None)

    async def get_task_status(self, upid: str, node: str | None = None) -> AdapterResponse:
        return await self._on_node(node, f"/tasks/{upid}/status")
