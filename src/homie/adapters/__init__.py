"""Typed service adapters, their registry and discovery."""

from homie.adapters.base import BaseServiceAdapter, ErrorRule, ServiceAdapter
from homie.adapters.factory import ServiceAdapterFactory
from homie.adapters.models import AdapterConfig, ConfigValidationResult, ServiceDiscoveryResult
from homie.adapters.registry import AdapterRegistry

__all__ = [
    "AdapterConfig",
    "AdapterRegistry",
    "BaseServiceAdapter",
    "ConfigValidationResult",
    "ErrorRule",
    "ServiceAdapter",
    "ServiceAdapterFactory",
    "ServiceDiscoveryResult",
]
