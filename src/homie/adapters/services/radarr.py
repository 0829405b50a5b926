"""Radarr movie manager adapter."""

from __future__ import annotations

from typing import Any

from homie.adapters.services.servarr import ServarrAdapter, page_params, servarr_error_map
from homie.core.types import AdapterResponse, ServiceType


class RadarrAdapter(ServarrAdapter):
    service_type = ServiceType.RADARR
    default_ports = (7878,)
    error_map = servarr_error_map("RADARR", "Radarr")

    async def get_movies(self) -> AdapterResponse:
        return await self.get("/movie")

    async def get_movie(self, movie_id: int) -> AdapterResponse:
        return await self.get(f"/movie/{movie_id}")

    async def lookup_movie(self, term: str) -> AdapterResponse:
        return await self.get("/movie/lookup", {"term": term})

    async def add_movie(self, movie: dict[str, Any]) -> AdapterResponse:
        return await self.post("/movie", movie)

    async def update_movie(self, movie_id: int, movie: dict[str, Any]) -> AdapterResponse:
        return await self.put(f"/movie/{movie_id}", movie)

    async def delete_movie(
        self,
        movie_id: int,
        delete_files: bool | None = None,
        add_import_exclusion: bool | None = None,
    ) -> AdapterResponse:
        return await self.delete(
            f"/movie/{movie_id}",
            page_params(deleteFiles=delete_files, addImportExclusion=add_import_exclusion),
        )

    async def search_movie(self, movie_id: int) -> AdapterResponse:
        return await self.run_command("MoviesSearch", movieIds=[movie_id])

    async def search_all_missing(self) -> AdapterResponse:
        return await self.run_command("MissingMoviesSearch")

    async def refresh_movie(self, movie_id: int | None = None) -> AdapterResponse:
        if movie_id is None:
            return await self.run_command("RefreshMovie")
        return await self.run_command("RefreshMovie", movieIds=[movie_id])

    async def get_collections(self) -> AdapterResponse:
        return await self.get("/collection")

    async def get_import_lists(self) -> AdapterResponse:
        return await self.get("/importlist")
