"""Tests for adapter registry, discovery, validation and the factory."""

from __future__ import annotations

import httpx
import pytest

from homie.adapters import AdapterConfig, AdapterRegistry, ServiceAdapterFactory
from homie.adapters.discovery import ServiceDiscovery, normalize_base_url
from homie.adapters.models import ServiceDiscoveryResult
from homie.adapters.services import RadarrAdapter, SonarrAdapter
from homie.adapters.validation import ConfigurationValidator
from homie.context import build_context
from homie.core.config import Settings
from homie.core.types import ServiceType
from homie.errors import DiscoveryError, ValidationError
from tests.conftest import FakeClock

RADARR = {"baseUrl": "http://radarr.lan", "port": 7878, "authType": "api_key", "apiKey": "k"}


def _config(**overrides) -> AdapterConfig:
    return AdapterConfig.model_validate({**RADARR, **overrides})


def _answer(routes: dict[str, httpx.Response | dict]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        answer = routes.get(request.url.path)
        if answer is None:
            return httpx.Response(404)
        if isinstance(answer, httpx.Response):
            return answer
        return httpx.Response(200, json=answer)

    return httpx.MockTransport(handler)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestAdapterRegistry:
    def test_same_origin_reuses_instance(self):
        registry = AdapterRegistry()
        first = registry.get_or_create(ServiceType.RADARR, _config())
        second = registry.get_or_create("radarr", _config(apiKey="other"))
        assert first is second
        assert len(registry) == 1

    def test_different_origin_creates_new_instance(self):
        registry = AdapterRegistry()
        first = registry.get_or_create(ServiceType.RADARR, _config())
        second = registry.get_or_create(ServiceType.RADARR, _config(port=7879))
        assert first is not second

    def test_unsupported_type(self):
        registry = AdapterRegistry()
        with pytest.raises(ValidationError) as exc_info:
            registry.get_or_create(ServiceType.PLEX, _config())
        assert exc_info.value.code == "UNSUPPORTED_SERVICE_TYPE"

    def test_unknown_type_string(self):
        with pytest.raises(ValidationError):
            AdapterRegistry().get_or_create("not-a-service", _config())

    def test_register_adapter_class(self):
        registry = AdapterRegistry({})
        registry.register_adapter_class(ServiceType.SONARR, SonarrAdapter)
        assert registry.get_supported_services() == [ServiceType.SONARR]

    @pytest.mark.asyncio
    async def test_remove_adapter(self):
        registry = AdapterRegistry()
        registry.get_or_create(ServiceType.RADARR, _config())
        assert await registry.remove_adapter(ServiceType.RADARR, _config()) is True
        assert await registry.remove_adapter(ServiceType.RADARR, _config()) is False
        assert registry.get_adapter(ServiceType.RADARR, _config()) is None

    @pytest.mark.asyncio
    async def test_cleanup_evicts_idle(self):
        clock = FakeClock()
        registry = AdapterRegistry(clock=clock)
        idle = registry.get_or_create(ServiceType.RADARR, _config())
        fresh = registry.get_or_create(ServiceType.RADARR, _config(port=7879))
        idle.last_used = clock.now - 400
        fresh.last_used = clock.now - 10
        assert await registry.cleanup_idle_adapters(300) == 1
        assert registry.get_adapter(ServiceType.RADARR, _config()) is None
        assert registry.get_adapter(ServiceType.RADARR, _config(port=7879)) is fresh

    @pytest.mark.asyncio
    async def test_evicted_adapter_still_answers_held_callers(self):
        clock = FakeClock()
        registry = AdapterRegistry(
            clock=clock, transport=_answer({"/api/v3/system/status": {"version": "5.0"}})
        )
        adapter = registry.get_or_create(ServiceType.RADARR, _config(maxRetries=0))
        adapter.last_used = clock.now - 1000
        assert await registry.cleanup_idle_adapters(300) == 1
        response = await adapter.get("/system/status")
        assert response.success is True
        assert response.data == {"version": "5.0"}

    @pytest.mark.asyncio
    async def test_cleanup_skips_in_flight(self):
        clock = FakeClock()
        registry = AdapterRegistry(clock=clock)
        adapter = registry.get_or_create(ServiceType.RADARR, _config())
        adapter.last_used = clock.now - 1000
        adapter._in_flight = 1
        assert await registry.cleanup_idle_adapters(300) == 0

    def test_stats(self):
        registry = AdapterRegistry()
        registry.get_or_create(ServiceType.RADARR, _config())
        registry.get_or_create(ServiceType.SONARR, _config(baseUrl="http://sonarr.lan", port=8989))
        stats = registry.get_stats()
        assert stats["totalActiveInstances"] == 2
        assert stats["instancesByType"] == {"radarr": 1, "sonarr": 1}
        assert stats["totalRegisteredTypes"] == 5

    @pytest.mark.asyncio
    async def test_close_all(self):
        registry = AdapterRegistry()
        registry.get_or_create(ServiceType.RADARR, _config())
        await registry.close_all()
        assert len(registry) == 0


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


class TestNormalizeBaseUrl:
    def test_adds_scheme(self):
        assert normalize_base_url("nas.lan:8080") == "http://nas.lan:8080"

    def test_strips_trailing_slash(self):
        assert normalize_base_url(" https://pve.lan:8006/ ") == "https://pve.lan:8006"


class TestServiceDiscovery:
    @pytest.mark.asyncio
    async def test_detects_radarr(self):
        transport = _answer({"/api/v3/system/status": {"appName": "Radarr", "version": "5.2.0"}})
        results = await ServiceDiscovery(transport=transport).discover_service("radarr.lan:7878")
        best = results[0]
        assert best.service_type is ServiceType.RADARR
        assert best.confidence == 0.9
        assert best.version == "5.2.0"
        sonarr = next(r for r in results if r.service_type is ServiceType.SONARR)
        assert sonarr.detected is False

    @pytest.mark.asyncio
    async def test_results_are_ranked(self):
        transport = _answer(
            {
                "/api2/json/version": httpx.Response(401),
                "/version": {"Version": "24.0.7", "ApiVersion": "1.43"},
            }
        )
        results = await ServiceDiscovery(transport=transport).discover_service("http://host.lan")
        assert [r.service_type for r in results[:2]] == [ServiceType.DOCKER, ServiceType.PROXMOX]
        assert results[1].confidence == 0.6
        assert [r.confidence for r in results] == sorted((r.confidence for r in results), reverse=True)

    @pytest.mark.asyncio
    async def test_expected_type_limits_probes(self):
        seen: list[str] = []

        def handler(request):
            seen.append(request.url.path)
            return httpx.Response(200, json={"version": "4.2.1"})

        discovery = ServiceDiscovery(transport=httpx.MockTransport(handler))
        results = await discovery.discover_service("http://sab.lan:8080", ServiceType.SABNZBD)
        assert len(results) == 1
        assert results[0].detected is True
        assert seen == ["/api"]

    @pytest.mark.asyncio
    async def test_network_failure_is_not_detected(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        discovery = ServiceDiscovery(transport=httpx.MockTransport(handler))
        results = await discovery.discover_service("http://down.lan")
        assert all(not r.detected for r in results)
        assert "error" in results[0].details

    @pytest.mark.asyncio
    async def test_non_json_body_is_not_detected(self):
        transport = _answer({"/version": httpx.Response(200, text="<html></html>")})
        results = await ServiceDiscovery(transport=transport).discover_service(
            "http://web.lan", ServiceType.DOCKER
        )
        assert results[0].detected is False

    @pytest.mark.asyncio
    async def test_numeric_version_is_stringified(self):
        transport = _answer({"/api": {"version": 4}})
        results = await ServiceDiscovery(transport=transport).discover_service(
            "http://sab.lan:8080", ServiceType.SABNZBD
        )
        assert results[0].detected is True
        assert results[0].version == "4"

    @pytest.mark.asyncio
    async def test_raising_detector_reports_not_detected(self):
        async def broken(client, base_url):
            raise KeyError("version")

        discovery = ServiceDiscovery({ServiceType.DOCKER: broken})
        results = await discovery.discover_service("http://host.lan")
        assert results[0].detected is False
        assert "version" in results[0].details["error"]

    @pytest.mark.asyncio
    async def test_register_probe(self):
        discovery = ServiceDiscovery({})

        async def probe(client, base_url):
            return ServiceDiscoveryResult(service_type=ServiceType.PLEX, detected=True, confidence=0.5)

        discovery.register_probe(ServiceType.PLEX, probe)
        assert discovery.get_discoverable_services() == [ServiceType.PLEX]
        results = await discovery.discover_service("http://plex.lan")
        assert results[0].service_type is ServiceType.PLEX


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestConfigurationValidator:
    def test_template_for_typed_service(self):
        template = ConfigurationValidator().template(ServiceType.PROXMOX)
        assert template["port"] == 8006
        assert template["useSSL"] is True
        assert template["timeout"] == 10.0
        config = AdapterConfig.model_validate(
            {**template, "baseUrl": "pve.lan", "username": "root", "password": "pw"}
        )
        assert ConfigurationValidator().validate_config(ServiceType.PROXMOX, config).valid is True

    def test_template_falls_back_to_generic_defaults(self):
        template = ConfigurationValidator().template("custom")
        assert "port" not in template
        assert template["maxRetries"] == 3
        assert ConfigurationValidator().template("not-a-service") == template

    def test_valid_radarr(self):
        result = ConfigurationValidator().validate_config(ServiceType.RADARR, _config())
        assert result.valid is True
        assert result.errors == []

    def test_missing_api_key_has_suggestion(self):
        result = ConfigurationValidator().validate_config(ServiceType.RADARR, _config(apiKey=None))
        assert result.valid is False
        assert result.suggestions

    def test_non_standard_port_warns(self):
        result = ConfigurationValidator().validate_config(ServiceType.SONARR, _config(port=9999))
        assert result.valid is True
        assert result.warnings

    def test_proxmox_warnings(self):
        config = _config(
            authType="username_password",
            username="root",
            password="pw",
            port=8006,
            verifySSL=False,
            timeout=2,
        )
        result = ConfigurationValidator().validate_config(ServiceType.PROXMOX, config)
        assert result.valid is True
        assert len(result.warnings) == 2

    def test_docker_socket_needs_no_base_url(self):
        config = AdapterConfig.model_validate(
            {"authType": "none", "serviceConfig": {"socketPath": "/var/run/docker.sock"}}
        )
        result = ConfigurationValidator().validate_config(ServiceType.DOCKER, config)
        assert result.valid is True

    def test_unknown_type(self):
        result = ConfigurationValidator().validate_config(ServiceType.PLEX, _config())
        assert result.valid is False
        assert "plex" in result.errors[0]


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


class TestServiceAdapterFactory:
    @pytest.mark.asyncio
    async def test_create_adapter(self):
        factory = ServiceAdapterFactory()
        adapter = await factory.create_adapter("radarr", RADARR)
        assert isinstance(adapter, RadarrAdapter)
        assert await factory.create_adapter("radarr", RADARR) is adapter

    @pytest.mark.asyncio
    async def test_create_adapter_rejects_invalid_config(self):
        factory = ServiceAdapterFactory()
        with pytest.raises(ValidationError) as exc_info:
            await factory.create_adapter(ServiceType.RADARR, {**RADARR, "apiKey": None})
        assert exc_info.value.code == "INVALID_CONFIG"
        assert exc_info.value.details["errors"]
        assert len(factory.registry) == 0

    @pytest.mark.asyncio
    async def test_create_adapter_rejects_malformed_config(self):
        with pytest.raises(ValidationError):
            await ServiceAdapterFactory().create_adapter(ServiceType.RADARR, {"port": "not-a-port"})

    def test_validate_config_never_raises(self):
        result = ServiceAdapterFactory().validate_config(ServiceType.RADARR, {"port": "x"})
        assert result.valid is False

    def test_keeps_injected_empty_registry(self):
        registry = AdapterRegistry()
        validator = ConfigurationValidator({})
        factory = ServiceAdapterFactory(registry=registry, validator=validator)
        assert factory.registry is registry
        assert factory.validator is validator

    def test_context_adapters_share_resilience_manager(self, monkeypatch):
        monkeypatch.setenv("HOMIE_RESILIENCE_FAILURE_THRESHOLD", "2")
        context = build_context(Settings())
        adapter = context.factory.registry.get_or_create(ServiceType.RADARR, _config())
        assert adapter._resilience is context.resilience
        assert adapter._resilience.circuit_breaker_config.failure_threshold == 2

    @pytest.mark.asyncio
    async def test_create_with_discovery(self):
        transport = _answer({"/api/v3/system/status": {"appName": "Radarr", "version": "5.2.0"}})
        factory = ServiceAdapterFactory(discovery=ServiceDiscovery(transport=transport))
        adapter, best = await factory.create_adapter_with_discovery("radarr.lan:7878", apiKey="k")
        assert best.service_type is ServiceType.RADARR
        assert adapter.service_type is ServiceType.RADARR
        assert adapter.operation_id == "radarr:http://radarr.lan:7878"

    @pytest.mark.asyncio
    async def test_discovery_finds_nothing(self):
        factory = ServiceAdapterFactory(discovery=ServiceDiscovery(transport=_answer({})))
        with pytest.raises(DiscoveryError) as exc_info:
            await factory.create_adapter_with_discovery("http://empty.lan")
        assert exc_info.value.code == "SERVICE_NOT_DETECTED"
        assert exc_info.value.http_status == 404

    @pytest.mark.asyncio
    async def test_remove_and_stats(self):
        factory = ServiceAdapterFactory()
        await factory.create_adapter(ServiceType.RADARR, RADARR)
        stats = factory.get_stats()
        assert stats["registry"]["totalActiveInstances"] == 1
        assert "proxmox" in stats["discoverableServices"]
        assert await factory.remove_adapter(ServiceType.RADARR, RADARR) is True

    @pytest.mark.asyncio
    async def test_start_and_shutdown_sweep(self):
        factory = ServiceAdapterFactory()
        factory.start_cleanup()
        assert factory._sweep_task is not None
        await factory.shutdown()
        assert factory._sweep_task is None
