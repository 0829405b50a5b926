"""Advisory configuration checks per service type.

Unlike ``BaseServiceAdapter.validate_config`` these never raise: problems
are collected as errors (blocking), warnings and suggestions.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from homie.adapters.models import AdapterConfig, ConfigValidationResult
from homie.core.types import AuthType, ServiceType

logger = logging.getLogger(__name__)

Validator = Callable[[AdapterConfig], ConfigValidationResult]

DEFAULT_PORTS: dict[ServiceType, tuple[int, ...]] = {
    ServiceType.RADARR: (7878,),
    ServiceType.SONARR: (8989,),
    ServiceType.SABNZBD: (8080,),
    ServiceType.PROXMOX: (8006,),
    ServiceType.DOCKER: (2375, 2376),
}

# Starting configuration per service type, keyed by the wire (camelCase)
# field names. Timeouts are in seconds.
CONFIG_TEMPLATES: dict[ServiceType, dict[str, Any]] = {
    ServiceType.PROXMOX: {
        "port": 8006,
        "useSSL": True,
        "verifySSL": True,
        "authType": AuthType.USERNAME_PASSWORD,
        "timeout": 10.0,
        "maxRetries": 3,
    },
    ServiceType.DOCKER: {
        "port": 2376,
        "useSSL": True,
        "verifySSL": False,
        "authType": AuthType.CERTIFICATE,
        "timeout": 5.0,
        "maxRetries": 2,
    },
    ServiceType.SONARR: {"port": 8989, "authType": AuthType.API_KEY},
    ServiceType.RADARR: {"port": 7878, "authType": AuthType.API_KEY},
    ServiceType.SABNZBD: {"port": 8080, "authType": AuthType.API_KEY},
}

_TEMPLATE_BASE: dict[str, Any] = {
    "useSSL": False,
    "verifySSL": True,
    "authType": AuthType.NONE,
    "timeout": 5.0,
    "maxRetries": 3,
}

_LABELS = {
    ServiceType.RADARR: "Radarr",
    ServiceType.SONARR: "Sonarr",
    ServiceType.SABNZBD: "SABnzbd",
    ServiceType.PROXMOX: "Proxmox",
    ServiceType.DOCKER: "Docker",
}


def _port_warning(service_type: ServiceType, config: AdapterConfig, warnings: list[str]) -> None:
    ports = DEFAULT_PORTS[service_type]
    if config.port is not None and config.port not in ports:
        expected = " or ".join(str(p) for p in ports)
        warnings.append(f"Non-standard {_LABELS[service_type]} port detected. Default is {expected}")


def _base_url_error(config: AdapterConfig, errors: list[str]) -> None:
    if not config.base_url:
        errors.append("Base URL is required")


def api_key_validator(service_type: ServiceType) -> Validator:
    """Radarr, Sonarr and SABnzbd all authenticate with an API key."""
    label = _LABELS[service_type]

    def validate(config: AdapterConfig) -> ConfigValidationResult:
        errors: list[str] = []
        warnings: list[str] = []
        suggestions: list[str] = []
        _base_url_error(config, errors)
        if not config.api_key:
            errors.append(f"API key is required for {label} authentication")
            suggestions.append(f"Copy the API key from {label} under Settings > General")
        if config.auth_type is not AuthType.API_KEY:
            errors.append(f"{label} requires API key authentication")
        _port_warning(service_type, config, warnings)
        return ConfigValidationResult(
            valid=not errors, errors=errors, warnings=warnings, suggestions=suggestions
        )

    return validate


def validate_proxmox(config: AdapterConfig) -> ConfigValidationResult:
    errors: list[str] = []
    warnings: list[str] = []
    suggestions: list[str] = []
    _base_url_error(config, errors)
    if not config.username:
        errors.append("Username is required for Proxmox authentication")
    if not config.password:
        errors.append("Password is required for Proxmox authentication")
    if config.auth_type is not AuthType.USERNAME_PASSWORD:
        errors.append("Proxmox requires username/password authentication")
    _port_warning(ServiceType.PROXMOX, config, warnings)
    if not config.verify_ssl:
        warnings.append("SSL verification is disabled. This may pose security risks")
        suggestions.append("Enable SSL verification in production environments")
    if config.timeout < 5:
        warnings.append("Timeout may be too short for Proxmox API calls")
        suggestions.append("Consider using a timeout of at least 5 seconds")
    return ConfigValidationResult(
        valid=not errors, errors=errors, warnings=warnings, suggestions=suggestions
    )


def validate_docker(config: AdapterConfig) -> ConfigValidationResult:
    errors: list[str] = []
    warnings: list[str] = []
    suggestions: list[str] = []
    if not config.service_config.get("socketPath"):
        _base_url_error(config, errors)
    _port_warning(ServiceType.DOCKER, config, warnings)
    if config.use_ssl and not config.verify_ssl:
        warnings.append("SSL verification is disabled. This may pose security risks")
        suggestions.append("Enable SSL verification in production environments")
    if config.auth_type is AuthType.NONE:
        warnings.append("No authentication configured for Docker")
        suggestions.append("Consider TLS client certificates for remote Docker daemons")
    return ConfigValidationResult(
        valid=not errors, errors=errors, warnings=warnings, suggestions=suggestions
    )


DEFAULT_VALIDATORS: dict[ServiceType, Validator] = {
    ServiceType.RADARR: api_key_validator(ServiceType.RADARR),
    ServiceType.SONARR: api_key_validator(ServiceType.SONARR),
    ServiceType.SABNZBD: api_key_validator(ServiceType.SABNZBD),
    ServiceType.PROXMOX: validate_proxmox,
    ServiceType.DOCKER: validate_docker,
}


class ConfigurationValidator:
    def __init__(self, validators: dict[ServiceType, Validator] | None = None) -> None:
        self._validators = dict(DEFAULT_VALIDATORS if validators is None else validators)

    def register_validator(self, service_type: ServiceType, validator: Validator) -> None:
        self._validators[service_type] = validator

    def get_validatable_services(self) -> list[ServiceType]:
        return list(self._validators)

    def template(self, service_type: ServiceType | str) -> dict[str, Any]:
        """Default settings for a new ``service_type`` instance, minus host and credentials.

        Unknown types get the generic defaults.
        """
        try:
            overrides = CONFIG_TEMPLATES.get(ServiceType(service_type), {})
        except ValueError:
            overrides = {}
        return {**_TEMPLATE_BASE, **overrides}

    def validate_config(self, service_type: ServiceType | str, config: AdapterConfig) -> ConfigValidationResult:
        validator = self._validators.get(service_type)
        if validator is None:
            return ConfigValidationResult(
                valid=False,
                errors=[f"No validator registered for service type: {service_type}"],
                suggestions=["Use one of: " + ", ".join(t.value for t in self._validators)],
            )
        result = validator(config)
        if not result.valid:
            logger.info("Configuration for %s rejected: %s", service_type, "; ".join(result.errors))
        return result
