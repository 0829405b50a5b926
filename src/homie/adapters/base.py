"""Service adapter protocol and the shared HTTP adapter implementation."""

from __future__ import annotations

import abc
import asyncio
import base64
import dataclasses
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

import httpx
import pydantic

from homie.adapters.models import AdapterConfig, ConnectionState
from homie.core.types import (
    AdapterResponse,
    AuthType,
    HealthCheckResult,
    HealthState,
    ResponseMetadata,
    ServiceType,
    new_request_id,
)
from homie.errors import AdapterError, RemoteError, TransportError, ValidationError
from homie.resilience.manager import ResilienceManager
from homie.resilience.policies import RateLimiterConfig

logger = logging.getLogger(__name__)

USER_AGENT = "Homie-Service-Adapter/1.0"

# Config fields that require a fresh HTTP client when changed.
_CLIENT_FIELDS = frozenset(
    {"base_url", "port", "use_ssl", "verify_ssl", "timeout", "headers", "certificate", "private_key"}
)


@runtime_checkable
class ServiceAdapter(Protocol):
    """Capabilities every typed service adapter offers."""

    @property
    def service_type(self) -> ServiceType: ...

    async def get(self, endpoint: str, params: dict[str, Any] | None = None) -> AdapterResponse: ...

    async def post(
        self, endpoint: str, data: Any = None, params: dict[str, Any] | None = None
    ) -> AdapterResponse: ...

    async def health_check(self) -> HealthCheckResult: ...

    def handle_error(self, error: httpx.Response | BaseException, context: str = "") -> AdapterError: ...

    async def close(self) -> None: ...


@dataclass(frozen=True)
class ErrorRule:
    """How one HTTP status maps to a service-specific error."""

    code: str
    message: str
    retryable: bool = False


class BaseServiceAdapter(abc.ABC):
    """Typed HTTP client bound to one service instance.

    Every public call auto-initializes and auto-connects, then runs through
    the resilience manager under the operation id
    ``"<service_type>:<origin>"``. Failures are classified exactly once by
    ``handle_error``, using the subclass ``error_map`` before falling back
    to generic ``HTTP_<status>`` codes.
    """

    service_type: ServiceType
    api_base_path: str = ""
    default_ports: tuple[int, ...] = ()
    error_map: dict[int, ErrorRule] = {}

    def __init__(
        self,
        config: AdapterConfig,
        *,
        resilience: ResilienceManager | None = None,
        rate_limiter: RateLimiterConfig | None = None,
        connect_retry_delay: float = 2.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._config = config.model_copy(deep=True)
        self._resilience = resilience or ResilienceManager()
        self._rate_limiter = rate_limiter
        self._connect_retry_delay = connect_retry_delay
        self._transport = transport
        self._sleep = sleep
        self._initialized = False
        self._connect_lock = asyncio.Lock()
        self._in_flight = 0
        self._close_pending = False
        self._retired_clients: list[httpx.AsyncClient] = []
        self.connection_state = ConnectionState(max_retries=config.max_retries)
        self.last_used = time.monotonic()
        self._client = self._build_client()

    # -- properties ----------------------------------------------------------

    @property
    def config(self) -> AdapterConfig:
        return self._config.model_copy(deep=True)

    @property
    def base_url(self) -> str:
        return self._config.origin() + self.api_base_path

    @property
    def operation_id(self) -> str:
        return f"{self.service_type.value}:{self._config.origin()}"

    @property
    def is_connected(self) -> bool:
        return self.connection_state.is_connected

    @property
    def in_flight(self) -> int:
        return self._in_flight

    # -- lifecycle -----------------------------------------------------------

    async def initialize(self) -> None:
        logger.info("Initializing %s adapter for %s", self.service_type, self._config.base_url)
        self.validate_config()
        self._initialized = True

    async def connect(self) -> bool:
        """Health-check the service, retrying up to ``max_retries`` times."""
        async with self._connect_lock:
            if not self._initialized:
                await self.initialize()
            state = self.connection_state
            state.retry_count = 0
            while True:
                state.last_connection_attempt = datetime.now(timezone.utc)
                health = await self.health_check()
                if health.status is HealthState.ACTIVE:
                    state.is_connected = True
                    state.retry_count = 0
                    state.connection_error = None
                    logger.info("%s service connected", self.service_type)
                    return True

                state.is_connected = False
                state.connection_error = health.message
                if state.retry_count >= state.max_retries:
                    logger.error(
                        "Failed to connect to %s after %d attempts: %s",
                        self.service_type,
                        state.retry_count + 1,
                        health.message,
                    )
                    return False
                state.retry_count += 1
                logger.warning(
                    "Connection to %s failed (%s); retrying in %.1fs",
                    self.service_type,
                    health.message,
                    self._connect_retry_delay,
                )
                await self._sleep(self._connect_retry_delay)

    async def disconnect(self) -> None:
        self.connection_state.is_connected = False
        self.connection_state.connection_error = None
        logger.info("Disconnected from %s service", self.service_type)

    async def close(self) -> None:
        """Disconnect and release the HTTP client once in-flight calls finish."""
        await self.disconnect()
        if self._in_flight:
            self._close_pending = True
            return
        await self._release_clients(include_current=True)

    # -- configuration -------------------------------------------------------

    def validate_config(self) -> bool:
        errors: list[str] = []
        if not self._config.base_url:
            errors.append("Base URL is required")
        else:
            try:
                self._config.origin()
            except httpx.InvalidURL:
                errors.append("Base URL is invalid")
        if self._config.timeout < 1:
            errors.append("Timeout must be at least 1 second")
        if self._config.max_retries < 0:
            errors.append("Max retries cannot be negative")
        self._validate_service_config(errors)
        if errors:
            raise ValidationError(
                f"Configuration validation failed: {', '.join(errors)}",
                code="INVALID_CONFIG",
                details={"errors": errors},
            )
        return True

    async def update_config(self, **changes: Any) -> None:
        """Apply a partial config update, rolling back if it does not validate."""
        old_config = self._config
        try:
            new_config = AdapterConfig.model_validate({**old_config.model_dump(), **changes})
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Invalid configuration: {exc}", code="INVALID_CONFIG") from exc

        self._config = new_config
        try:
            self.validate_config()
        except ValidationError:
            self._config = old_config
            logger.error("Rejected %s configuration update", self.service_type)
            raise

        if _CLIENT_FIELDS.intersection(changes):
            self._retired_clients.append(self._client)
            self._client = self._build_client()
            self._on_client_rebuilt()
            if not self._in_flight:
                await self._release_clients(include_current=False)
        self.connection_state.max_retries = new_config.max_retries

        if self.connection_state.is_connected:
            self.connection_state.is_connected = False
            if not await self.connect():
                logger.warning("%s configuration updated but connection test failed", self.service_type)
        logger.info("%s adapter configuration updated", self.service_type)

    def build_url(self, endpoint: str, params: dict[str, Any] | None = None) -> str:
        path = endpoint if endpoint.startswith("/") else f"/{endpoint}"
        url = f"{self.base_url}{path}"
        if params:
            url = f"{url}?{httpx.QueryParams(params)}"
        return url

    def get_auth_headers(self) -> dict[str, str]:
        cfg = self._config
        if cfg.auth_type is AuthType.API_KEY and cfg.api_key:
            return {"X-Api-Key": cfg.api_key}
        if cfg.auth_type is AuthType.TOKEN and cfg.token:
            return {"Authorization": f"Bearer {cfg.token}"}
        if cfg.auth_type is AuthType.USERNAME_PASSWORD and cfg.username and cfg.password:
            raw = f"{cfg.username}:{cfg.password}".encode()
            return {"Authorization": f"Basic {base64.b64encode(raw).decode()}"}
        # Certificates are presented by the transport, not as a header.
        return {}

    # -- HTTP verbs ----------------------------------------------------------

    async def get(self, endpoint: str, params: dict[str, Any] | None = None) -> AdapterResponse:
        return await self._request("GET", endpoint, params=params)

    async def post(
        self, endpoint: str, data: Any = None, params: dict[str, Any] | None = None
    ) -> AdapterResponse:
        return await self._request("POST", endpoint, data=data, params=params)

    async def put(
        self, endpoint: str, data: Any = None, params: dict[str, Any] | None = None
    ) -> AdapterResponse:
        return await self._request("PUT", endpoint, data=data, params=params)

    async def patch(
        self, endpoint: str, data: Any = None, params: dict[str, Any] | None = None
    ) -> AdapterResponse:
        return await self._request("PATCH", endpoint, data=data, params=params)

    async def delete(self, endpoint: str, params: dict[str, Any] | None = None) -> AdapterResponse:
        return await self._request("DELETE", endpoint, params=params)

    # -- error mapping -------------------------------------------------------

    def handle_error(self, error: httpx.Response | BaseException, context: str = "") -> AdapterError:
        """Classify a failure once into an ``AdapterError``."""
        if isinstance(error, AdapterError):
            return error
        if isinstance(error, httpx.HTTPStatusError):
            error = error.response
        if isinstance(error, httpx.Response):
            return self._status_error(error)
        if isinstance(error, httpx.TimeoutException):
            return TransportError(
                f"{self.service_type} request timed out", code="TIMEOUT", cause=error
            )
        if isinstance(error, httpx.HTTPError):
            return TransportError(
                f"Could not reach {self.service_type}: {error}", code="NETWORK_ERROR", cause=error
            )
        return AdapterError(
            str(error) or "An unknown error occurred",
            code="INTERNAL_ERROR",
            details={"context": context} if context else None,
            cause=error,
        )

    def _status_error(self, response: httpx.Response) -> RemoteError:
        status = response.status_code
        details = _decode(response) if response.content else None
        rule = self.error_map.get(status)
        if rule is not None:
            return RemoteError(
                rule.message,
                code=rule.code,
                http_status=status,
                retryable=rule.retryable,
                details=details,
            )
        return RemoteError(
            response.reason_phrase or f"HTTP {status}",
            code=f"HTTP_{status}",
            http_status=status,
            details=details,
        )

    # -- subclass hooks ------------------------------------------------------

    @abc.abstractmethod
    async def health_check(self) -> HealthCheckResult:
        """Lightweight status call used by ``connect()``."""

    def _validate_service_config(self, errors: list[str]) -> None:
        """Append service-specific validation errors."""

    def _service_headers(self) -> dict[str, str]:
        return {}

    def _auth_params(self) -> dict[str, Any]:
        """Credentials sent as query parameters rather than headers."""
        return {}

    async def _prepare_request(self) -> None:
        """Runs before every send; used for session-based auth."""

    def _on_client_rebuilt(self) -> None:
        """Called after the HTTP client was replaced."""

    def _unwrap(self, data: Any) -> Any:
        return data

    # -- internal ------------------------------------------------------------

    def _build_client(self) -> httpx.AsyncClient:
        cfg = self._config
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
            **cfg.headers,
            **self._service_headers(),
        }
        cert = None
        if cfg.auth_type is AuthType.CERTIFICATE and cfg.certificate:
            cert = (cfg.certificate, cfg.private_key) if cfg.private_key else cfg.certificate
        try:
            base_url = self.base_url if cfg.base_url else ""
        except httpx.InvalidURL:
            base_url = ""
        return httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(cfg.timeout),
            headers=headers,
            verify=cfg.verify_ssl,
            cert=cert,
            transport=self._transport,
            event_hooks={"request": [self._apply_auth]},
        )

    async def _apply_auth(self, request: httpx.Request) -> None:
        request.headers.update(self.get_auth_headers())

    async def _send(
        self,
        method: str,
        endpoint: str,
        data: Any = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        if self._client.is_closed:
            # Evicted while this call was on its way in.
            self._client = self._build_client()
            self._on_client_rebuilt()
        await self._prepare_request()
        query = {**self._auth_params(), **(params or {})}
        kwargs: dict[str, Any] = {"params": query or None}
        if data is not None:
            kwargs["json"] = data
        try:
            response = await self._client.request(method, endpoint, **kwargs)
        except httpx.HTTPError as exc:
            raise self.handle_error(exc, f"{method} {endpoint}") from exc
        if response.is_error:
            raise self.handle_error(response, f"{method} {endpoint}")
        return response

    async def _ensure_ready(self) -> None:
        if not self._initialized:
            await self.initialize()
        if not self.connection_state.is_connected and not await self.connect():
            raise TransportError(
                f"Unable to connect to {self.service_type}: {self.connection_state.connection_error}",
                code="CONNECTION_FAILED",
            )

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        data: Any = None,
        params: dict[str, Any] | None = None,
    ) -> AdapterResponse:
        started = time.monotonic()
        request_id = new_request_id(self.service_type.value)
        self._in_flight += 1
        self.last_used = started
        try:
            await self._ensure_ready()
            retry = dataclasses.replace(
                self._resilience.retry_config, max_retries=self._config.max_retries
            )
            response = await self._resilience.execute_resilient(
                self.operation_id,
                lambda: self._send(method, endpoint, data, params),
                circuit_breaker=self._resilience.circuit_breaker_config,
                retry=retry,
                rate_limiter=self._rate_limiter,
            )
            payload = self._unwrap(_decode(response)) if response.content else None
        except AdapterError as exc:
            return self._failed(exc, method, endpoint, started, request_id)
        finally:
            self._in_flight -= 1
            self.last_used = time.monotonic()
            if not self._in_flight and (self._close_pending or self._retired_clients):
                await self._release_clients(include_current=self._close_pending)

        return AdapterResponse(
            success=True,
            data=payload,
            metadata=self._metadata(
                started, request_id, endpoint, response.headers.get("x-api-version")
            ),
        )

    def _failed(
        self,
        error: AdapterError,
        method: str,
        endpoint: str,
        started: float | None = None,
        request_id: str | None = None,
    ) -> AdapterResponse:
        logger.error(
            "%s %s on %s failed [%s]: %s",
            method,
            endpoint,
            self.service_type,
            error.code,
            error.message,
        )
        return AdapterResponse(
            success=False,
            error=error.to_detail(),
            metadata=self._metadata(
                started if started is not None else time.monotonic(),
                request_id or new_request_id(self.service_type.value),
                endpoint,
            ),
        )

    async def _probe(self, endpoint: str, params: dict[str, Any] | None = None) -> tuple[HealthCheckResult, Any]:
        """Single unretried GET used by health checks."""
        started = time.monotonic()
        try:
            response = await self._send("GET", endpoint, params=params)
            data = self._unwrap(_decode(response)) if response.content else None
        except AdapterError as exc:
            return (
                HealthCheckResult(
                    status=HealthState.ERROR,
                    response_time=(time.monotonic() - started) * 1000,
                    message=exc.message,
                    details={"code": exc.code},
                ),
                None,
            )
        return (
            HealthCheckResult(
                status=HealthState.ACTIVE,
                response_time=(time.monotonic() - started) * 1000,
                message=f"{self.service_type} is reachable",
            ),
            data,
        )

    async def _release_clients(self, *, include_current: bool) -> None:
        retired, self._retired_clients = self._retired_clients, []
        for client in retired:
            await client.aclose()
        if include_current:
            self._close_pending = False
            await self._client.aclose()

    @staticmethod
    def _metadata(
        started: float, request_id: str, endpoint: str, version: str | None = None
    ) -> ResponseMetadata:
        return ResponseMetadata(
            response_time=(time.monotonic() - started) * 1000,
            request_id=request_id,
            endpoint=endpoint,
            service_version=version,
        )


def _decode(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text
