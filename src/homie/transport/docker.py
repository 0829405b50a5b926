"""Docker Engine API over the local control socket."""

from __future__ import annotations

import logging

import httpx

from homie.core.types import Transport
from homie.transport.base import PreparedCall, TransportClient, decode_text
from homie.transport.guards import (
    DEFAULT_CONTROL_SOCKET_POLICY,
    ControlSocketPolicy,
    validate_control_socket_request,
)
from homie.transport.http import body_kwargs, request_error, response_error
from homie.transport.models import ServiceRecord, TransportResult

logger = logging.getLogger(__name__)

# Host part is ignored when talking over a Unix socket.
_SOCKET_BASE_URL = "http://docker"


class DockerSocketTransport(TransportClient):
    """Sends guarded, read-only requests to the Docker daemon socket.

    ``transport_factory`` builds the httpx transport for a socket path and
    exists so tests can swap in ``httpx.MockTransport``.
    """

    transport = Transport.DOCKER

    def __init__(
        self,
        socket_path: str = "/var/run/docker.sock",
        *,
        policy: ControlSocketPolicy = DEFAULT_CONTROL_SOCKET_POLICY,
        transport_factory=None,
    ) -> None:
        self._default_socket = socket_path
        self._policy = policy
        self._transport_factory = transport_factory or (
            lambda path: httpx.AsyncHTTPTransport(uds=path)
        )
        self._clients: dict[str, httpx.AsyncClient] = {}

    def _client_for(self, socket_path: str) -> httpx.AsyncClient:
        client = self._clients.get(socket_path)
        if client is None:
            client = httpx.AsyncClient(
                transport=self._transport_factory(socket_path),
                base_url=_SOCKET_BASE_URL,
            )
            self._clients[socket_path] = client
        return client

    async def send(self, service: ServiceRecord, call: PreparedCall) -> TransportResult:
        validate_control_socket_request(call.method, call.target, self._policy)

        socket_path = service.config.get("socketPath") or self._default_socket
        path = call.target if call.target.startswith("/") else f"/{call.target}"
        if call.params:
            path = f"{path}?{httpx.QueryParams(call.params)}"
        logger.debug("Docker socket %s %s via %s", call.method, path, socket_path)

        try:
            response = await self._client_for(socket_path).request(
                call.method.upper(),
                path,
                headers=call.headers or None,
                timeout=call.timeout,
                **body_kwargs(call.body),
            )
        except httpx.HTTPError as exc:
            raise request_error(exc) from exc

        if not response.is_success:
            raise response_error(service, response)
        return TransportResult(
            data=decode_text(response.text, call.parser) if response.content else None,
            status_code=response.status_code,
            headers=dict(response.headers),
        )

    async def close(self) -> None:
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()
