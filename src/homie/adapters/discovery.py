"""Detect which supported service answers at a base URL.

Each probe issues one read-only GET. A version field in the expected shape
gives confidence 0.9; an authentication challenge on an endpoint only that
service exposes gives 0.6. Probe failures of any kind are reported as
``detected=False``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

from homie.adapters.models import ServiceDiscoveryResult
from homie.core.types import ServiceType
from homie.errors import DiscoveryError

logger = logging.getLogger(__name__)

VERSION_CONFIDENCE = 0.9
AUTH_CHALLENGE_CONFIDENCE = 0.6

Probe = Callable[[httpx.AsyncClient, str], Awaitable[ServiceDiscoveryResult]]


def normalize_base_url(base_url: str) -> str:
    raw = base_url.strip().rstrip("/")
    if "://" not in raw:
        raw = f"http://{raw}"
    return raw


def _json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise DiscoveryError("Response is not JSON", code="DISCOVERY_NOT_JSON") from exc


def _version(value: Any) -> str | None:
    return str(value) if value not in (None, "") else None


def _not_detected(service_type: ServiceType, **details: Any) -> ServiceDiscoveryResult:
    return ServiceDiscoveryResult(service_type=service_type, details=details)


async def probe_proxmox(client: httpx.AsyncClient, base_url: str) -> ServiceDiscoveryResult:
    response = await client.get(f"{base_url}/api2/json/version")
    if response.is_success:
        body = _json(response)
        data = body.get("data") if isinstance(body, dict) else None
        if isinstance(data, dict) and data.get("version"):
            return ServiceDiscoveryResult(
                service_type=ServiceType.PROXMOX,
                detected=True,
                confidence=VERSION_CONFIDENCE,
                version=_version(data["version"]),
                details=data,
            )
    if response.status_code == 401:
        return ServiceDiscoveryResult(
            service_type=ServiceType.PROXMOX,
            detected=True,
            confidence=AUTH_CHALLENGE_CONFIDENCE,
            details={"httpStatus": 401},
        )
    return _not_detected(ServiceType.PROXMOX, httpStatus=response.status_code)


async def probe_docker(client: httpx.AsyncClient, base_url: str) -> ServiceDiscoveryResult:
    response = await client.get(f"{base_url}/version")
    if response.is_success:
        data = _json(response)
        if isinstance(data, dict) and (data.get("Version") or data.get("ApiVersion")):
            return ServiceDiscoveryResult(
                service_type=ServiceType.DOCKER,
                detected=True,
                confidence=VERSION_CONFIDENCE,
                version=_version(data.get("Version") or data.get("ApiVersion")),
                details=data,
            )
    return _not_detected(ServiceType.DOCKER, httpStatus=response.status_code)


def servarr_probe(service_type: ServiceType, app_name: str) -> Probe:
    """Probe for an *arr application identified by its ``appName``."""

    async def probe(client: httpx.AsyncClient, base_url: str) -> ServiceDiscoveryResult:
        response = await client.get(f"{base_url}/api/v3/system/status")
        if response.status_code in (401, 403):
            return ServiceDiscoveryResult(
                service_type=service_type,
                detected=True,
                confidence=AUTH_CHALLENGE_CONFIDENCE,
                details={"httpStatus": response.status_code},
            )
        if response.is_success:
            data = _json(response)
            if isinstance(data, dict) and str(data.get("appName", "")).lower() == app_name:
                return ServiceDiscoveryResult(
                    service_type=service_type,
                    detected=True,
                    confidence=VERSION_CONFIDENCE,
                    version=_version(data.get("version")),
                    details=data,
                )
        return _not_detected(service_type, httpStatus=response.status_code)

    return probe


async def probe_sabnzbd(client: httpx.AsyncClient, base_url: str) -> ServiceDiscoveryResult:
    response = await client.get(f"{base_url}/api", params={"mode": "version", "output": "json"})
    if response.is_success:
        data = _json(response)
        if isinstance(data, dict) and data.get("version"):
            return ServiceDiscoveryResult(
                service_type=ServiceType.SABNZBD,
                detected=True,
                confidence=VERSION_CONFIDENCE,
                version=_version(data["version"]),
                details=data,
            )
    return _not_detected(ServiceType.SABNZBD, httpStatus=response.status_code)


DEFAULT_PROBES: dict[ServiceType, Probe] = {
    ServiceType.PROXMOX: probe_proxmox,
    ServiceType.DOCKER: probe_docker,
    ServiceType.SONARR: servarr_probe(ServiceType.SONARR, "sonarr"),
    ServiceType.RADARR: servarr_probe(ServiceType.RADARR, "radarr"),
    ServiceType.SABNZBD: probe_sabnzbd,
}


class ServiceDiscovery:
    """Runs the registered probes concurrently against one base URL."""

    def __init__(
        self,
        probes: dict[ServiceType, Probe] | None = None,
        *,
        timeout: float = 5.0,
        verify: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._probes = dict(DEFAULT_PROBES if probes is None else probes)
        self._timeout = timeout
        self._verify = verify
        self._transport = transport

    def register_probe(self, service_type: ServiceType, probe: Probe) -> None:
        self._probes[service_type] = probe

    def get_discoverable_services(self) -> list[ServiceType]:
        return list(self._probes)

    async def discover_service(
        self, base_url: str, expected_type: ServiceType | None = None
    ) -> list[ServiceDiscoveryResult]:
        """Probe ``base_url`` and return results ranked by confidence."""
        base = normalize_base_url(base_url)
        if expected_type is not None:
            probes = {expected_type: self._probes[expected_type]} if expected_type in self._probes else {}
        else:
            probes = self._probes

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout),
            verify=self._verify,
            headers={"Accept": "application/json"},
            transport=self._transport,
        ) as client:
            results = await asyncio.gather(
                *(self._run(service_type, probe, client, base) for service_type, probe in probes.items())
            )
        return sorted(results, key=lambda r: r.confidence, reverse=True)

    async def _run(
        self, service_type: ServiceType, probe: Probe, client: httpx.AsyncClient, base_url: str
    ) -> ServiceDiscoveryResult:
        try:
            return await probe(client, base_url)
        except (httpx.HTTPError, DiscoveryError) as exc:
            logger.debug("Discovery of %s at %s failed: %s", service_type, base_url, exc)
            return _not_detected(service_type, error=str(exc))
        except Exception as exc:
            logger.warning("Discovery probe for %s at %s raised %r", service_type, base_url, exc)
            return _not_detected(service_type, error=str(exc))
