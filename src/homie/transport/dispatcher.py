"""Manifest-driven dispatch of endpoint calls over http, docker, ssh and ws.

HTTP calls run under retry and circuit breaker. The docker, ssh and ws
transports run under the circuit breaker only: they reach privileged
control planes, so a failed call is surfaced rather than repeated.
"""

from __future__ import annotations

import logging
import time
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable

from homie.core.config import DispatcherConfig
from homie.core.types import (
    AdapterResponse,
    ResponseMetadata,
    ServiceStatus,
    Transport,
    new_request_id,
)
from homie.errors import (
    AdapterError,
    CircuitOpenError,
    EndpointNotFoundError,
    RemoteError,
    TransportError,
    ValidationError,
)
from homie.repositories import resolve
from homie.repositories.protocols import ServiceRepository
from homie.resilience.manager import ResilienceManager
from homie.resilience.policies import CircuitBreakerConfig, RetryConfig
from homie.transport.base import PreparedCall, TransportClient
from homie.transport.docker import DockerSocketTransport
from homie.transport.http import HttpTransport
from homie.transport.interpolate import (
    has_placeholder,
    interpolate,
    interpolate_mapping,
    interpolate_value,
)
from homie.transport.models import (
    ConnectionTest,
    EndpointDefinition,
    ServiceRecord,
    TransportResult,
)
from homie.transport.ssh import SSHTransport
from homie.transport.transforms import TransformRegistry
from homie.transport.ws import WebSocketTransport, websocket_url

logger = logging.getLogger(__name__)

_BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def date_range_params(today: date, days: int) -> dict[str, str]:
    """Default ``{today}``, ``{start}`` and ``{end}`` placeholders."""
    end = today + timedelta(days=days)
    return {
        "today": today.isoformat(),
        "start": today.isoformat(),
        "end": end.isoformat(),
        "startDate": today.isoformat(),
        "endDate": end.isoformat(),
    }


class TransportDispatcher:
    """Executes manifest endpoint definitions against a service record."""

    def __init__(
        self,
        *,
        resilience: ResilienceManager,
        config: DispatcherConfig | None = None,
        repository: ServiceRepository | None = None,
        transports: dict[Transport, TransportClient] | None = None,
        transforms: TransformRegistry | None = None,
        circuit_breaker: CircuitBreakerConfig | None = None,
        retry: RetryConfig | None = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config or DispatcherConfig()
        self._resilience = resilience
        self._repository = repository
        self._transforms = transforms or TransformRegistry()
        self._circuit_breaker = circuit_breaker or resilience.circuit_breaker_config
        self._retry = retry or resilience.retry_config
        self._now = now

        self._transports: dict[Transport, TransportClient] = {
            Transport.HTTP: HttpTransport(),
            Transport.DOCKER: DockerSocketTransport(self._config.docker_socket_path),
            Transport.SSH: SSHTransport(known_hosts=self._config.ssh_known_hosts),
            Transport.WS: WebSocketTransport(),
        }
        if transports:
            self._transports.update(transports)

    # -- public API ----------------------------------------------------------

    async def execute(
        self,
        service: ServiceRecord,
        endpoint_name: str,
        params: dict[str, Any] | None = None,
    ) -> AdapterResponse:
        """Resolve ``endpoint_name`` from the service manifest and run it."""
        started = time.monotonic()
        request_id = new_request_id(service.service_type)
        endpoint = service.manifest.api.endpoints.get(endpoint_name)

        try:
            if endpoint is None:
                raise EndpointNotFoundError(endpoint_name)
            call = self.prepare(service, endpoint, params or {})
            result = await self._send(service, call, retry=call.transport is Transport.HTTP)
        except AdapterError as exc:
            return await self._failed(service, endpoint_name, exc, started, request_id)

        data = self._transforms.apply_safely(endpoint.transform, result.data)
        await self._record_status(service, ServiceStatus.ONLINE)
        return self._succeeded(endpoint_name, data, result, started, request_id)

    async def execute_by_id(
        self,
        service_id: str,
        endpoint_name: str,
        params: dict[str, Any] | None = None,
    ) -> AdapterResponse:
        service = await self._load(service_id)
        return await self.execute(service, endpoint_name, params)

    async def test_connection(self, service: ServiceRecord) -> AdapterResponse:
        """Probe the manifest's test endpoint and record reachability."""
        started = time.monotonic()
        request_id = new_request_id(service.service_type)
        test = service.manifest.connection.test_endpoint

        try:
            if test is None:
                raise ValidationError(
                    "No test endpoint defined for this service", code="NO_TEST_ENDPOINT"
                )
            call = PreparedCall(
                transport=Transport.HTTP,
                target=self._http_url(service, test.path),
                method=test.method,
                headers=interpolate_mapping(
                    {**service.manifest.api.headers, **test.headers}, service.config
                ),
                timeout=self._config.test_timeout,
            )
            result = await self._transports[Transport.HTTP].send(service, call)
            if not self._test_passed(test, result):
                raise RemoteError(
                    "Connection test failed",
                    code="CONNECTION_TEST_FAILED",
                    http_status=result.status_code,
                    retryable=False,
                )
        except AdapterError as exc:
            return await self._failed(service, "test_connection", exc, started, request_id)

        await self._record_status(service, ServiceStatus.ONLINE)
        return self._succeeded("test_connection", result.data, result, started, request_id)

    async def execute_action(self, service: ServiceRecord, action_id: str) -> AdapterResponse:
        """Run a manifest quick action.

        An action whose ``endpoint`` names a manifest endpoint is dispatched
        through that endpoint's transport; otherwise it is an HTTP path.
        Actions are never retried.
        """
        started = time.monotonic()
        request_id = new_request_id(service.service_type)
        operation = f"action:{action_id}"
        action = service.manifest.find_action(action_id)

        try:
            if action is None:
                raise ValidationError(f"Unknown action: {action_id}", code="UNKNOWN_ACTION")
            endpoint = service.manifest.api.endpoints.get(action.api.endpoint)
            if endpoint is not None:
                call = self.prepare(service, endpoint, {})
            else:
                method = action.api.method.upper()
                call = PreparedCall(
                    transport=Transport.HTTP,
                    target=self._http_url(service, action.api.endpoint),
                    method=method,
                    headers=interpolate_mapping(service.manifest.api.headers, service.config),
                    body=interpolate_value(action.api.body, service.config),
                    timeout=self._config.http_timeout,
                )
            result = await self._send(service, call, retry=False)
        except AdapterError as exc:
            return await self._failed(service, operation, exc, started, request_id)

        await self._record_status(service, ServiceStatus.ONLINE)
        return self._succeeded(operation, result.data, result, started, request_id)

    async def close(self) -> None:
        for transport in self._transports.values():
            await transport.close()

    # -- call preparation ----------------------------------------------------

    def prepare(
        self,
        service: ServiceRecord,
        endpoint: EndpointDefinition,
        params: dict[str, Any],
    ) -> PreparedCall:
        """Interpolate an endpoint definition into a concrete call."""
        today = self._now().date()
        context = {
            **service.config,
            **date_range_params(today, self._config.date_range_days),
            **params,
        }
        method = (endpoint.method or "GET").upper()
        transport = endpoint.transport

        if transport is Transport.HTTP:
            if endpoint.url:
                target = interpolate(endpoint.url, context)
            else:
                target = self._http_url(service, interpolate(endpoint.path or "", context))
            timeout = endpoint.timeout or self._config.http_timeout
        elif transport is Transport.DOCKER:
            if not endpoint.path:
                raise ValidationError("Docker endpoint requires a path", code="INVALID_ENDPOINT")
            target = interpolate(endpoint.path, context)
            timeout = endpoint.timeout or self._config.docker_timeout
        elif transport is Transport.SSH:
            if not endpoint.command:
                raise ValidationError("SSH endpoint requires a command", code="INVALID_ENDPOINT")
            target = interpolate(endpoint.command, context)
            timeout = endpoint.timeout or self._config.ssh_timeout
        else:
            if endpoint.url:
                target = interpolate(endpoint.url, context)
            else:
                target = websocket_url(self._base_url(service), interpolate(endpoint.path or "", context))
            timeout = endpoint.timeout or self._config.ws_timeout

        if has_placeholder(target):
            raise ValidationError(
                f"Unresolved placeholder in endpoint target: {target}",
                code="UNRESOLVED_PLACEHOLDER",
            )

        body = None
        if transport is Transport.WS:
            raw = endpoint.message if endpoint.message is not None else endpoint.body
            body = interpolate_value(raw, context)
        elif method in _BODY_METHODS and endpoint.body is not None:
            body = interpolate_value(endpoint.body, context)

        return PreparedCall(
            transport=transport,
            target=target,
            method=method,
            params=interpolate_mapping(endpoint.params, context),
            headers=interpolate_mapping(
                {**service.manifest.api.headers, **endpoint.headers}, service.config
            ),
            body=body,
            timeout=timeout,
            parser=endpoint.parser,
            allow_non_zero_exit=endpoint.allow_non_zero_exit,
        )

    # -- internal ------------------------------------------------------------

    async def _send(self, service: ServiceRecord, call: PreparedCall, *, retry: bool) -> TransportResult:
        client = self._transports[call.transport]
        operation_id = f"dispatch:{service.id}:{call.transport.value}"
        return await self._resilience.execute_resilient(
            operation_id,
            lambda: client.send(service, call),
            circuit_breaker=self._circuit_breaker,
            retry=self._retry if retry else None,
        )

    @staticmethod
    def _base_url(service: ServiceRecord) -> str:
        url = service.config.get("url")
        if not url:
            raise ValidationError(
                "Service not configured. Please configure in settings.",
                code="SERVICE_NOT_CONFIGURED",
            )
        return str(url).rstrip("/")

    def _http_url(self, service: ServiceRecord, path: str) -> str:
        if path and not path.startswith("/"):
            path = "/" + path
        return f"{self._base_url(service)}{path}"

    @staticmethod
    def _test_passed(test: ConnectionTest, result: TransportResult) -> bool:
        if test.success_indicator:
            return isinstance(result.data, dict) and test.success_indicator in result.data
        return result.status_code == test.expected_status

    async def _load(self, service_id: str) -> ServiceRecord:
        if self._repository is None:
            raise LookupError("No service repository configured")
        service = await resolve(self._repository.get_service(service_id))
        if service is None:
            raise LookupError(f"Service {service_id!r} not found")
        return service

    async def _record_status(self, service: ServiceRecord, status: ServiceStatus) -> None:
        if self._repository is None:
            return
        try:
            await resolve(self._repository.update_status(service.id, status, self._now()))
        except Exception:
            logger.exception("Failed to record %s status for service %s", status, service.id)

    def _succeeded(
        self,
        operation: str,
        data: Any,
        result: TransportResult,
        started: float,
        request_id: str,
    ) -> AdapterResponse:
        return AdapterResponse(
            success=True,
            data=data,
            metadata=ResponseMetadata(
                response_time=(time.monotonic() - started) * 1000,
                request_id=request_id,
                endpoint=operation,
                service_version=result.headers.get("x-api-version"),
            ),
        )

    async def _failed(
        self,
        service: ServiceRecord,
        operation: str,
        exc: AdapterError,
        started: float,
        request_id: str,
    ) -> AdapterResponse:
        logger.warning("%s on service %s failed: %s", operation, service.id, exc.message)
        if isinstance(exc, (TransportError, RemoteError, CircuitOpenError)):
            await self._record_status(service, ServiceStatus.OFFLINE)
        return AdapterResponse(
            success=False,
            error=exc.to_detail(),
            metadata=ResponseMetadata(
                response_time=(time.monotonic() - started) * 1000,
                request_id=request_id,
                endpoint=operation,
            ),
        )
