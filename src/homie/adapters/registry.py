"""Cache of live service adapters keyed by service type and origin."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from homie.adapters.base import BaseServiceAdapter
from homie.adapters.models import AdapterConfig
from homie.adapters.services import ADAPTER_REGISTRY
from homie.core.types import ServiceType
from homie.errors import ValidationError

logger = logging.getLogger(__name__)


def adapter_key(service_type: ServiceType | str, config: AdapterConfig) -> str:
    return f"{ServiceType(service_type).value}:{config.origin()}"


class AdapterRegistry:
    """Creates, caches and evicts adapter instances.

    ``adapter_kwargs`` are passed to every adapter constructor (resilience
    manager, rate limiter, test transports).
    """

    def __init__(
        self,
        adapter_classes: dict[ServiceType, type[BaseServiceAdapter]] | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        **adapter_kwargs: Any,
    ) -> None:
        self._classes = dict(ADAPTER_REGISTRY if adapter_classes is None else adapter_classes)
        self._adapters: dict[str, BaseServiceAdapter] = {}
        self._clock = clock
        self._adapter_kwargs = adapter_kwargs

    def register_adapter_class(
        self, service_type: ServiceType, adapter_class: type[BaseServiceAdapter]
    ) -> None:
        self._classes[service_type] = adapter_class
        logger.info("Registered adapter class for service type %s", service_type)

    def get_supported_services(self) -> list[ServiceType]:
        return list(self._classes)

    def get_or_create(self, service_type: ServiceType | str, config: AdapterConfig) -> BaseServiceAdapter:
        """Return the cached adapter for this type and origin, creating it if needed."""
        try:
            service_type = ServiceType(service_type)
        except ValueError:
            service_type = None
        adapter_class = self._classes.get(service_type) if service_type else None
        if adapter_class is None:
            raise ValidationError(
                f"No adapter class registered for service type: {service_type}",
                code="UNSUPPORTED_SERVICE_TYPE",
            )

        key = adapter_key(service_type, config)
        adapter = self._adapters.get(key)
        if adapter is not None:
            logger.debug("Reusing adapter %s", key)
            return adapter

        adapter = adapter_class(config, **self._adapter_kwargs)
        self._adapters[key] = adapter
        logger.info("Created adapter instance %s", key)
        return adapter

    def get_adapter(self, service_type: ServiceType | str, config: AdapterConfig) -> BaseServiceAdapter | None:
        return self._adapters.get(adapter_key(service_type, config))

    async def remove_adapter(self, service_type: ServiceType | str, config: AdapterConfig) -> bool:
        key = adapter_key(service_type, config)
        adapter = self._adapters.pop(key, None)
        if adapter is None:
            return False
        await adapter.close()
        logger.info("Removed adapter instance %s", key)
        return True

    async def cleanup_idle_adapters(self, max_idle: float = 300.0) -> int:
        """Evict adapters unused for ``max_idle`` seconds.

        Adapters with calls in flight are skipped.
        """
        now = self._clock()
        cleaned = 0
        for key, adapter in list(self._adapters.items()):
            if adapter.in_flight or now - adapter.last_used <= max_idle:
                continue
            self._adapters.pop(key, None)
            await adapter.close()
            cleaned += 1
        if cleaned:
            logger.info("Cleaned up %d idle adapter instances", cleaned)
        return cleaned

    async def close_all(self) -> None:
        adapters, self._adapters = list(self._adapters.values()), {}
        for adapter in adapters:
            await adapter.close()

    def get_stats(self) -> dict[str, Any]:
        by_type: dict[str, int] = {}
        for adapter in self._adapters.values():
            by_type[adapter.service_type.value] = by_type.get(adapter.service_type.value, 0) + 1
        return {
            "totalRegisteredTypes": len(self._classes),
            "totalActiveInstances": len(self._adapters),
            "instancesByType": by_type,
        }

    def __len__(self) -> int:
        return len(self._adapters)
