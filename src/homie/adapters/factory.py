"""Entry point for obtaining validated, cached service adapters."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

import pydantic

from homie.adapters.base import BaseServiceAdapter
from homie.adapters.discovery import ServiceDiscovery, normalize_base_url
from homie.adapters.models import AdapterConfig, ConfigValidationResult, ServiceDiscoveryResult
from homie.adapters.registry import AdapterRegistry
from homie.adapters.validation import ConfigurationValidator
from homie.core.config import RegistryConfig
from homie.core.types import AuthType, ServiceType
from homie.errors import DiscoveryError, ValidationError

logger = logging.getLogger(__name__)


def _coerce_config(config: AdapterConfig | dict[str, Any]) -> AdapterConfig:
    if isinstance(config, AdapterConfig):
        return config
    try:
        return AdapterConfig.model_validate(config)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Invalid adapter configuration: {exc}", code="INVALID_CONFIG") from exc


class ServiceAdapterFactory:
    """Validates configuration, then hands out registry-cached adapters.

    Also owns the periodic sweep that evicts idle adapters.
    """

    def __init__(
        self,
        registry: AdapterRegistry | None = None,
        discovery: ServiceDiscovery | None = None,
        validator: ConfigurationValidator | None = None,
        *,
        config: RegistryConfig | None = None,
    ) -> None:
        self._config = config or RegistryConfig()
        self.registry = (
            registry
            if registry is not None
            else AdapterRegistry(connect_retry_delay=self._config.connect_retry_delay)
        )
        self.discovery = (
            discovery if discovery is not None else ServiceDiscovery(timeout=self._config.discovery_timeout)
        )
        self.validator = validator if validator is not None else ConfigurationValidator()
        self._sweep_task: asyncio.Task | None = None

    # -- adapters ------------------------------------------------------------

    def validate_config(
        self, service_type: ServiceType | str, config: AdapterConfig | dict[str, Any]
    ) -> ConfigValidationResult:
        try:
            adapter_config = _coerce_config(config)
        except ValidationError as exc:
            return ConfigValidationResult(valid=False, errors=[exc.message])
        return self.validator.validate_config(service_type, adapter_config)

    async def create_adapter(
        self, service_type: ServiceType | str, config: AdapterConfig | dict[str, Any]
    ) -> BaseServiceAdapter:
        """Validate ``config`` and return the cached or a new, initialized adapter."""
        adapter_config = _coerce_config(config)
        validation = self.validator.validate_config(service_type, adapter_config)
        if not validation.valid:
            logger.error(
                "Adapter creation for %s failed due to invalid configuration: %s",
                service_type,
                "; ".join(validation.errors),
            )
            raise ValidationError(
                f"Configuration validation failed: {', '.join(validation.errors)}",
                code="INVALID_CONFIG",
                details={"errors": validation.errors, "warnings": validation.warnings},
            )

        existing = self.registry.get_adapter(service_type, adapter_config)
        if existing is not None:
            return existing
        adapter = self.registry.get_or_create(service_type, adapter_config)
        await adapter.initialize()
        return adapter

    async def create_adapter_with_discovery(
        self, base_url: str, **config: Any
    ) -> tuple[BaseServiceAdapter, ServiceDiscoveryResult]:
        results = await self.discovery.discover_service(base_url)
        if not results or not results[0].detected:
            raise DiscoveryError(
                f"No service detected at {base_url}",
                code="SERVICE_NOT_DETECTED",
                http_status=404,
                details={"results": [r.model_dump(by_alias=True) for r in results]},
            )
        best = results[0]
        logger.info(
            "Discovered %s at %s with confidence %.2f", best.service_type, base_url, best.confidence
        )
        default_auth = (
            AuthType.USERNAME_PASSWORD if best.service_type is ServiceType.PROXMOX else AuthType.API_KEY
        )
        full_config = {"authType": default_auth, **config, "baseUrl": normalize_base_url(base_url)}
        adapter = await self.create_adapter(best.service_type, full_config)
        return adapter, best

    async def discover_service(
        self, base_url: str, expected_type: ServiceType | None = None
    ) -> list[ServiceDiscoveryResult]:
        return await self.discovery.discover_service(base_url, expected_type)

    def get_supported_services(self) -> list[ServiceType]:
        return self.registry.get_supported_services()

    def get_config_template(self, service_type: ServiceType | str) -> dict[str, Any]:
        return self.validator.template(service_type)

    async def remove_adapter(
        self, service_type: ServiceType | str, config: AdapterConfig | dict[str, Any]
    ) -> bool:
        return await self.registry.remove_adapter(service_type, _coerce_config(config))

    def get_stats(self) -> dict[str, Any]:
        return {
            "registry": self.registry.get_stats(),
            "discoverableServices": [t.value for t in self.discovery.get_discoverable_services()],
            "validatableServices": [t.value for t in self.validator.get_validatable_services()],
        }

    # -- idle sweep ----------------------------------------------------------

    async def cleanup(self) -> int:
        cleaned = await self.registry.cleanup_idle_adapters(self._config.idle_timeout)
        logger.debug("Factory cleanup removed %d idle adapters", cleaned)
        return cleaned

    def start_cleanup(self) -> None:
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop_cleanup(self) -> None:
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweep_task
        self._sweep_task = None

    async def shutdown(self) -> None:
        await self.stop_cleanup()
        await self.registry.close_all()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.cleanup_interval)
            try:
                await self.cleanup()
            except Exception:
                logger.exception("Idle adapter sweep failed")
