"""FastAPI application for the homie adapter layer.

Exposes manifest-driven service calls, adapter discovery and validation,
and a health check. The idle-adapter sweep runs for the lifetime of the
app.

Run with:
    uvicorn homie.web.app:create_app --factory --port 8080
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from homie.context import VERSION, AdapterContext, build_context
from homie.core.config import Settings
from homie.repositories.memory import InMemoryServiceRepository, load_services
from homie.repositories.protocols import ServiceRepository
from homie.web.adapter_router import router as adapter_router
from homie.web.service_router import router as service_router

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str
    version: str = VERSION
    environment: str


def create_app(
    settings: Settings | None = None,
    repository: ServiceRepository | None = None,
    context: AdapterContext | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Uses the factory pattern so tests can create isolated app instances
    with their own repository or a pre-built context.

    Args:
        settings: Application settings. Defaults to Settings().
        repository: Service record store. Defaults to an empty in-memory store.
        context: Optional pre-built AdapterContext; overrides the other two.

    Returns:
        A configured FastAPI instance.
    """
    if context is None:
        if settings is None:
            settings = Settings()
        if repository is None:
            services = load_services(settings.services_file) if settings.services_file else []
            repository = InMemoryServiceRepository(services)
        context = build_context(settings, repository)
    settings = context.settings

    logging.getLogger("homie").setLevel(settings.log_level.upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        context.factory.start_cleanup()
        try:
            yield
        finally:
            await context.aclose()
            logger.info("Adapter context closed")

    app = FastAPI(
        title="Homie Service Adapters",
        description="Multi-transport adapter and resilience layer for home-lab services",
        version=VERSION,
        debug=settings.debug,
        lifespan=lifespan,
    )

    # CORS for development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.context = context
    app.state.settings = settings

    app.include_router(service_router)
    app.include_router(adapter_router)

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(
            status="ok", service="homie-adapters", environment=settings.environment
        )

    return app
