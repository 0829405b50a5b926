"""Sonarr TV series manager adapter."""

from __future__ import annotations

from typing import Any

from homie.adapters.services.servarr import ServarrAdapter, page_params, servarr_error_map
from homie.core.types import AdapterResponse, ServiceType


class SonarrAdapter(ServarrAdapter):
    service_type = ServiceType.SONARR
    default_ports = (8989,)
    error_map = servarr_error_map("SONARR", "Sonarr")

    async def get_series(self) -> AdapterResponse:
        return await self.get("/series")

    async def get_series_by_id(self, series_id: int) -> AdapterResponse:
        return await self.get(f"/series/{series_id}")

    async def lookup_series(self, term: str) -> AdapterResponse:
        return await self.get("/series/lookup", {"term": term})

    async def add_series(self, series: dict[str, Any]) -> AdapterResponse:
        return await self.post("/series", series)

    async def update_series(self, series_id: int, series: dict[str, Any]) -> AdapterResponse:
        return await self.put(f"/series/{series_id}", series)

    async def delete_series(
        self,
        series_id: int,
        delete_files: bool | None = None,
        add_import_exclusion: bool | None = None,
    ) -> AdapterResponse:
        return await self.delete(
            f"/series/{series_id}",
            page_params(deleteFiles=delete_files, addImportListExclusion=add_import_exclusion),
        )

    async def get_episodes(self, series_id: int, season_number: int | None = None) -> AdapterResponse:
        return await self.get(
            "/episode", page_params(seriesId=series_id, seasonNumber=season_number)
        )

    async def get_episode(self, episode_id: int) -> AdapterResponse:
        return await self.get(f"/episode/{episode_id}")

    async def monitor_episodes(self, episode_ids: list[int], monitored: bool) -> AdapterResponse:
        return await self.put("/episode/monitor", {"episodeIds": episode_ids, "monitored": monitored})

    async def search_episodes(
        self, series_id: int | None = None, season_number: int | None = None
    ) -> AdapterResponse:
        if season_number is not None and series_id is not None:
            return await self.run_command(
                "SeasonSearch", seriesId=series_id, seasonNumber=season_number
            )
        if series_id is not None:
            return await self.run_command("SeriesSearch", seriesId=series_id)
        return await self.run_command("MissingEpisodeSearch")

    async def refresh_series(self, series_id: int | None = None) -> AdapterResponse:
        if series_id is None:
            return await self.run_command("RefreshSeries")
        return await self.run_command("RefreshSeries", seriesId=series_id)
