"""Plain HTTP(S) transport backed by a shared httpx client."""

from __future__ import annotations

import httpx

from homie.core.types import Transport
from homie.errors import RemoteError, TransportError
from homie.transport.base import PreparedCall, TransportClient, decode_text
from homie.transport.models import ServiceRecord, TransportResult


def response_error(service: ServiceRecord, response: httpx.Response) -> RemoteError:
    """Map a non-2xx response to a ``RemoteError``."""
    status = response.status_code
    if status == 401:
        message = "Authentication failed. Check your credentials."
    elif status == 403:
        message = "Access denied. Check the account permissions."
    elif status == 404:
        message = "Resource not found on the service."
    else:
        message = f"{service.name or service.id} responded with HTTP {status}"
    return RemoteError(
        message,
        http_status=status,
        details=decode_text(response.text, None) if response.text else None,
    )


def request_error(exc: httpx.HTTPError) -> TransportError:
    if isinstance(exc, httpx.TimeoutException):
        return TransportError("Request timed out", code="TIMEOUT", cause=exc)
    return TransportError(f"Network error: {exc}", cause=exc)


def body_kwargs(body) -> dict:
    if body is None:
        return {}
    if isinstance(body, (dict, list)):
        return {"json": body}
    if isinstance(body, bytes):
        return {"content": body}
    return {"content": str(body)}


class HttpTransport(TransportClient):
    transport = Transport.HTTP

    def __init__(self, client: httpx.AsyncClient | None = None, *, verify: bool = True) -> None:
        self._client = client
        self._verify = verify

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(verify=self._verify, follow_redirects=True)
        return self._client

    async def send(self, service: ServiceRecord, call: PreparedCall) -> TransportResult:
        try:
            response = await self.client.request(
                call.method.upper(),
                call.target,
                params=call.params or None,
                headers=call.headers or None,
                timeout=call.timeout,
                **body_kwargs(call.body),
            )
        except httpx.HTTPError as exc:
            raise request_error(exc) from exc

        if not response.is_success:
            raise response_error(service, response)
        data = decode_text(response.text, call.parser) if response.content else None
        return TransportResult(
            data=data,
            status_code=response.status_code,
            headers=dict(response.headers),
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
