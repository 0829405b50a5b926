"""Tests for the FastAPI surface: service calls, adapters and health."""

from __future__ import annotations

import httpx
import pytest
from fastapi.testclient import TestClient

from homie.context import build_context
from homie.core.config import Settings
from homie.core.types import ServiceStatus, Transport
from homie.repositories.memory import InMemoryServiceRepository, load_services
from homie.resilience import RetryConfig
from homie.transport import TransportDispatcher
from homie.transport.http import HttpTransport
from homie.web.app import create_app
from tests.conftest import make_service


def _upstream(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/api/status":
        return httpx.Response(200, json={"version": "1.2.3"})
    if request.url.path == "/api/restart":
        return httpx.Response(202, json={"queued": True})
    return httpx.Response(503, text="unavailable")


def _service():
    return make_service(
        {
            "status": {"path": "/api/status"},
            "broken": {"path": "/api/broken"},
            "create": {"transport": "docker", "method": "POST", "path": "/containers/create"},
        },
        connection={"testEndpoint": {"path": "/api/status", "successIndicator": "version"}},
        quickActions=[{"id": "restart", "api": {"endpoint": "/api/restart"}}],
    )


@pytest.fixture
def repository():
    return InMemoryServiceRepository([_service()])


@pytest.fixture
def client(repository):
    settings = Settings(node_id="test-node")
    context = build_context(settings, repository)
    context.dispatcher = TransportDispatcher(
        resilience=context.resilience,
        config=settings.dispatcher,
        repository=repository,
        retry=RetryConfig(max_retries=0),
        transports={
            Transport.HTTP: HttpTransport(httpx.AsyncClient(transport=httpx.MockTransport(_upstream)))
        },
    )
    with TestClient(create_app(context=context)) as test_client:
        yield test_client


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["service"] == "homie-adapters"


# ---------------------------------------------------------------------------
# Service calls
# ---------------------------------------------------------------------------


class TestServiceData:
    def test_success(self, client, repository):
        resp = client.post("/api/services/svc-1/data", json={"endpoint": "status"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["data"] == {"version": "1.2.3"}
        assert body["metadata"]["operation"] == "status"
        assert body["metadata"]["serviceType"] == "custom"
        assert repository.get_service("svc-1").status is ServiceStatus.ONLINE

    def test_upstream_failure_is_bad_gateway(self, client):
        resp = client.post("/api/services/svc-1/data", json={"endpoint": "broken"})
        assert resp.status_code == 502
        body = resp.json()
        assert body["success"] is False
        assert body["error"]["code"] == "HTTP_503"
        assert body["error"]["retryable"] is True

    def test_guard_rejection_is_bad_request(self, client):
        resp = client.post("/api/services/svc-1/data", json={"endpoint": "create"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "GUARD_MUTATING_PATH"

    def test_unknown_endpoint(self, client):
        resp = client.post("/api/services/svc-1/data", json={"endpoint": "nope"})
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "ENDPOINT_NOT_FOUND"

    def test_unknown_service(self, client):
        resp = client.post("/api/services/ghost/data", json={"endpoint": "status"})
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "SERVICE_NOT_FOUND"

    def test_missing_endpoint_field(self, client):
        resp = client.post("/api/services/svc-1/data", json={})
        assert resp.status_code == 422


class TestConnectionAndActions:
    def test_connection_test(self, client):
        resp = client.post("/api/services/svc-1/test")
        assert resp.status_code == 200
        assert resp.json()["metadata"]["operation"] == "test_connection"

    def test_quick_action(self, client):
        resp = client.post("/api/services/svc-1/actions", json={"actionId": "restart"})
        assert resp.status_code == 200
        assert resp.json()["data"] == {"queued": True}

    def test_unknown_action(self, client):
        resp = client.post("/api/services/svc-1/actions", json={"actionId": "explode"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "UNKNOWN_ACTION"


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------


class TestAdapterEndpoints:
    def test_validate_valid(self, client):
        resp = client.post(
            "/api/adapters/validate",
            json={
                "serviceType": "radarr",
                "config": {"baseUrl": "http://radarr.lan", "authType": "api_key", "apiKey": "k"},
            },
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["valid"] is True

    def test_validate_invalid(self, client):
        resp = client.post(
            "/api/adapters/validate",
            json={"serviceType": "proxmox", "config": {"baseUrl": "https://pve.lan"}},
        )
        data = resp.json()["data"]
        assert data["valid"] is False
        assert data["errors"]

    def test_discover_requires_url(self, client):
        resp = client.post("/api/adapters/discover", json={"baseUrl": "  "})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_REQUEST"

    def test_discover_rejects_unknown_type(self, client):
        resp = client.post(
            "/api/adapters/discover", json={"baseUrl": "http://x.lan", "expectedType": "toaster"}
        )
        assert resp.status_code == 422

    def test_config_template(self, client):
        resp = client.get("/api/adapters/templates/radarr")
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["port"] == 7878
        assert data["authType"] == "api_key"

    def test_config_template_unknown_type(self, client):
        assert client.get("/api/adapters/templates/toaster").status_code == 422

    def test_stats(self, client):
        resp = client.get("/api/adapters/stats")
        assert resp.status_code == 200
        body = resp.json()
        assert body["registry"]["totalActiveInstances"] == 0
        assert "radarr" in body["supportedServices"]


# ---------------------------------------------------------------------------
# Service file loading
# ---------------------------------------------------------------------------


class TestLoadServices:
    def test_reads_yaml(self, tmp_path):
        path = tmp_path / "services.yaml"
        path.write_text(
            "services:\n"
            "  - id: sonarr-main\n"
            "    serviceType: sonarr\n"
            "    config:\n"
            "      url: http://sonarr.lan:8989\n"
            "    manifest:\n"
            "      api:\n"
            "        endpoints:\n"
            "          series:\n"
            "            path: /api/v3/series\n"
        )
        services = load_services(path)
        assert [s.id for s in services] == ["sonarr-main"]
        assert services[0].manifest.api.endpoints["series"].path == "/api/v3/series"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "services.yaml"
        path.write_text("")
        assert load_services(path) == []

    def test_app_loads_services_file(self, tmp_path):
        path = tmp_path / "services.yaml"
        path.write_text("services:\n  - id: nas\n    config:\n      url: http://nas.lan\n")
        app = create_app(Settings(services_file=str(path)))
        assert app.state.context.repository.get_service("nas") is not None
