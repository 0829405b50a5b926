"""SABnzbd Usenet downloader adapter.

SABnzbd exposes a single ``/api`` endpoint selected by the ``mode`` query
parameter and authenticates with an ``apikey`` query parameter.
"""

from __future__ import annotations

import logging
from typing import Any

from homie.adapters.base import BaseServiceAdapter, ErrorRule
from homie.adapters.services.servarr import page_params
from homie.core.types import AdapterResponse, HealthCheckResult, HealthState, ServiceType
from homie.errors import RemoteError

logger = logging.getLogger(__name__)

API_PATH = "/api"


class SabnzbdAdapter(BaseServiceAdapter):
    service_type = ServiceType.SABNZBD
    default_ports = (8080,)
    error_map = {
        400: ErrorRule("SABNZBD_BAD_REQUEST", "Invalid request data"),
        401: ErrorRule("SABNZBD_UNAUTHORIZED", "API key invalid or missing"),
        404: ErrorRule("SABNZBD_NOT_FOUND", "Resource not found"),
        500: ErrorRule("SABNZBD_SERVER_ERROR", "SABnzbd server error", retryable=True),
    }

    def _validate_service_config(self, errors: list[str]) -> None:
        if not self._config.api_key:
            errors.append("API key is required for SABnzbd authentication")
        if self._config.port is not None and self._config.port not in self.default_ports:
            logger.warning("Non-standard SABnzbd port %s specified", self._config.port)

    def get_auth_headers(self) -> dict[str, str]:
        return {}

    def _auth_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {"output": "json"}
        if self._config.api_key:
            params["apikey"] = self._config.api_key
        return params

    def _unwrap(self, data: Any) -> Any:
        # Errors arrive as HTTP 200 with {"status": false, "error": "..."}.
        if isinstance(data, dict) and data.get("status") is False and data.get("error"):
            message = str(data["error"])
            code = "SABNZBD_UNAUTHORIZED" if "api key" in message.lower() else "SABNZBD_ERROR"
            raise RemoteError(message, code=code, retryable=False, details=data)
        return data

    async def call(self, mode: str, **params: Any) -> AdapterResponse:
        """Invoke one ``mode`` of the SABnzbd API."""
        return await self.get(API_PATH, {"mode": mode, **page_params(**params)})

    async def health_check(self) -> HealthCheckResult:
        result, data = await self._probe(API_PATH, {"mode": "version"})
        if result.status is HealthState.ACTIVE and isinstance(data, dict):
            result.version = data.get("version")
            result.details = {"version": data.get("version")}
        return result

    async def get_version(self) -> AdapterResponse:
        return await self.call("version")

    async def get_queue(
        self, start: int | None = None, limit: int | None = None, search: str | None = None
    ) -> AdapterResponse:
        return await self.call("queue", start=start, limit=limit, search=search)

    async def get_history(
        self,
        start: int | None = None,
        limit: int | None = None,
        category: str | None = None,
        search: str | None = None,
    ) -> AdapterResponse:
        return await self.call("history", start=start, limit=limit, category=category, search=search)

    async def add_nzb_url(
        self,
        url: str,
        category: str | None = None,
        priority: int | None = None,
        nzbname: str | None = None,
        password: str | None = None,
    ) -> AdapterResponse:
        return await self.call(
            "addurl", name=url, cat=category, priority=priority, nzbname=nzbname, password=password
        )

    async def pause_queue(self) -> AdapterResponse:
        return await self.call("pause")

    async def resume_queue(self) -> AdapterResponse:
        return await self.call("resume")

    async def pause_job(self, nzo_id: str) -> AdapterResponse:
        return await self.call("queue", name="pause", value=nzo_id)

    async def resume_job(self, nzo_id: str) -> AdapterResponse:
        return await self.call("queue", name="resume", value=nzo_id)

    async def delete_job(self, nzo_id: str, delete_files: bool = False) -> AdapterResponse:
        return await self.call(
            "queue", name="delete", value=nzo_id, del_files=1 if delete_files else None
        )

    async def change_job_priority(self, nzo_id: str, priority: int) -> AdapterResponse:
        return await self.call("queue", name="priority", value=nzo_id, value2=priority)

    async def change_job_category(self, nzo_id: str, category: str) -> AdapterResponse:
        return await self.call("change_cat", value=nzo_id, value2=category)

    async def delete_history_item(self, nzo_id: str) -> AdapterResponse:
        return await self.call("history", name="delete", value=nzo_id)

    async def retry_history_item(self, nzo_id: str) -> AdapterResponse:
        return await self.call("retry", value=nzo_id)

    async def get_categories(self) -> AdapterResponse:
        return await self.call("get_cats")

    async def get_warnings(self) -> AdapterResponse:
        return await self.call("warnings")

    async def clear_warnings(self) -> AdapterResponse:
        return await self.call("warnings", name="clear")

    async def get_server_stats(self) -> AdapterResponse:
        return await self.call("server_stats")
