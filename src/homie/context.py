"""Wiring of the adapter layer's long-lived collaborators.

One ``AdapterContext`` is built per application and handed to whoever
needs it (the FastAPI app keeps it on ``app.state``); nothing in the
package is a module-level singleton.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from homie.adapters.factory import ServiceAdapterFactory
from homie.adapters.registry import AdapterRegistry
from homie.core.config import Settings
from homie.formatting import ResponseFormatter
from homie.repositories.protocols import ServiceRepository
from homie.resilience.manager import ResilienceManager
from homie.resilience.policies import policies_from_settings
from homie.transport.dispatcher import TransportDispatcher

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@dataclass
class AdapterContext:
    settings: Settings
    resilience: ResilienceManager
    factory: ServiceAdapterFactory
    dispatcher: TransportDispatcher
    formatter: ResponseFormatter
    repository: ServiceRepository | None = None

    async def aclose(self) -> None:
        await self.factory.shutdown()
        await self.dispatcher.close()


def build_context(
    settings: Settings | None = None,
    repository: ServiceRepository | None = None,
) -> AdapterContext:
    """Build the resilience manager, adapter factory, dispatcher and formatter."""
    if settings is None:
        settings = Settings()

    circuit_breaker, retry, rate_limiter = policies_from_settings(settings.resilience)
    resilience = ResilienceManager(
        circuit_breaker=circuit_breaker, retry=retry, rate_limiter=rate_limiter
    )
    registry = AdapterRegistry(
        resilience=resilience,
        connect_retry_delay=settings.registry.connect_retry_delay,
    )
    factory = ServiceAdapterFactory(registry=registry, config=settings.registry)
    dispatcher = TransportDispatcher(
        resilience=resilience,
        config=settings.dispatcher,
        repository=repository,
    )
    formatter = ResponseFormatter(node_id=settings.node_id, version=VERSION)
    logger.info("Adapter context ready (environment=%s)", settings.environment)
    return AdapterContext(
        settings=settings,
        resilience=resilience,
        factory=factory,
        dispatcher=dispatcher,
        formatter=formatter,
        repository=repository,
    )
