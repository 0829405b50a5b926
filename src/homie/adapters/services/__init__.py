"""Typed adapters for the supported home-lab services."""

from homie.adapters.base import BaseServiceAdapter
from homie.adapters.services.docker import DockerAdapter
from homie.adapters.services.proxmox import ProxmoxAdapter
from homie.adapters.services.radarr import RadarrAdapter
from homie.adapters.services.sabnzbd import SabnzbdAdapter
from homie.adapters.services.sonarr import SonarrAdapter
from homie.core.types import ServiceType

ADAPTER_REGISTRY: dict[ServiceType, type[BaseServiceAdapter]] = {
    ServiceType.RADARR: RadarrAdapter,
    ServiceType.SONARR: SonarrAdapter,
    ServiceType.SABNZBD: SabnzbdAdapter,
    ServiceType.PROXMOX: ProxmoxAdapter,
    ServiceType.DOCKER: DockerAdapter,
}

__all__ = [
    "ADAPTER_REGISTRY",
    "DockerAdapter",
    "ProxmoxAdapter",
    "RadarrAdapter",
    "SabnzbdAdapter",
    "SonarrAdapter",
]
