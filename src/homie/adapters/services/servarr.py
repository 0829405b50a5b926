"""Shared behaviour for the *arr family (Radarr, Sonarr) on API v3."""

from __future__ import annotations

import logging
from typing import Any

from homie.adapters.base import BaseServiceAdapter, ErrorRule
from homie.core.types import AdapterResponse, AuthType, HealthCheckResult

logger = logging.getLogger(__name__)


def servarr_error_map(prefix: str, label: str) -> dict[int, ErrorRule]:
    return {
        400: ErrorRule(f"{prefix}_BAD_REQUEST", "Invalid request data"),
        401: ErrorRule(f"{prefix}_UNAUTHORIZED", "API key invalid or missing"),
        404: ErrorRule(f"{prefix}_NOT_FOUND", "Resource not found"),
        409: ErrorRule(f"{prefix}_CONFLICT", "Resource conflict"),
        500: ErrorRule(f"{prefix}_SERVER_ERROR", f"{label} server error", retryable=True),
    }


def page_params(**values: Any) -> dict[str, Any]:
    """Drop unset query parameters."""
    return {key: value for key, value in values.items() if value is not None}


class ServarrAdapter(BaseServiceAdapter):
    """Endpoints common to every *arr application."""

    api_base_path = "/api/v3"

    def _validate_service_config(self, errors: list[str]) -> None:
        if not self._config.api_key:
            errors.append(f"API key is required for {self.service_type.value.title()} authentication")
        if self._config.auth_type not in (AuthType.API_KEY, AuthType.NONE):
            errors.append(f"{self.service_type.value.title()} only supports API key authentication")
        if self._config.port is not None and self._config.port not in self.default_ports:
            logger.warning(
                "Non-standard %s port %s specified", self.service_type, self._config.port
            )

    def get_auth_headers(self) -> dict[str, str]:
        # The *arr API always takes the key as a header, whatever auth_type says.
        if self._config.api_key:
            return {"X-Api-Key": self._config.api_key}
        return {}

    async def health_check(self) -> HealthCheckResult:
        result, data = await self._probe("/system/status")
        if isinstance(data, dict):
            result.version = data.get("version")
            result.details = {"version": data.get("version"), "branch": data.get("branch")}
        return result

    async def get_system_status(self) -> AdapterResponse:
        return await self.get("/system/status")

    async def get_quality_profiles(self) -> AdapterResponse:
        return await self.get("/qualityprofile")

    async def get_quality_profile(self, profile_id: int) -> AdapterResponse:
        return await self.get(f"/qualityprofile/{profile_id}")

    async def get_root_folders(self) -> AdapterResponse:
        return await self.get("/rootfolder")

    async def get_disk_space(self) -> AdapterResponse:
        return await self.get("/diskspace")

    async def get_queue(
        self,
        page: int | None = None,
        page_size: int | None = None,
        sort_key: str | None = None,
        sort_dir: str | None = None,
    ) -> AdapterResponse:
        return await self.get(
            "/queue",
            page_params(page=page, pageSize=page_size, sortKey=sort_key, sortDirection=sort_dir),
        )

    async def delete_queue_item(
        self,
        item_id: int,
        remove_from_client: bool | None = None,
        blocklist: bool | None = None,
    ) -> AdapterResponse:
        return await self.delete(
            f"/queue/{item_id}",
            page_params(removeFromClient=remove_from_client, blocklist=blocklist),
        )

    async def get_history(
        self,
        page: int | None = None,
        page_size: int | None = None,
        **filters: Any,
    ) -> AdapterResponse:
        return await self.get("/history", page_params(page=page, pageSize=page_size, **filters))

    async def get_wanted(self, page: int | None = None, page_size: int | None = None) -> AdapterResponse:
        return await self.get("/wanted/missing", page_params(page=page, pageSize=page_size))

    async def get_calendar(self, start: str | None = None, end: str | None = None) -> AdapterResponse:
        return await self.get("/calendar", page_params(start=start, end=end))

    async def get_logs(
        self, page: int | None = None, page_size: int | None = None, level: str | None = None
    ) -> AdapterResponse:
        return await self.get("/log", page_params(page=page, pageSize=page_size, level=level))

    async def get_blocklist(self, page: int | None = None, page_size: int | None = None) -> AdapterResponse:
        return await self.get("/blocklist", page_params(page=page, pageSize=page_size))

    async def delete_from_blocklist(self, item_id: int) -> AdapterResponse:
        return await self.delete(f"/blocklist/{item_id}")

    async def run_command(self, name: str, **arguments: Any) -> AdapterResponse:
        return await self.post("/command", {"name": name, **arguments})

    async def rss_sync(self) -> AdapterResponse:
        return await self.run_command("RssSync")

    async def backup(self) -> AdapterResponse:
        return await self.run_command("Backup")
