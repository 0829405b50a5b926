"""One-shot WebSocket request: connect, optionally send, read one message."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

import websockets
from websockets.exceptions import WebSocketException

from homie.core.types import Transport
from homie.errors import TransportError
from homie.transport.base import PreparedCall, TransportClient, decode_text
from homie.transport.models import ServiceRecord, TransportResult

logger = logging.getLogger(__name__)

Connector = Callable[..., Awaitable[Any]]


def websocket_url(base_url: str, path: str | None = None) -> str:
    """Swap an http(s) base URL to ws(s) and append ``path``."""
    if base_url.startswith("https://"):
        url = "wss://" + base_url[len("https://"):]
    elif base_url.startswith("http://"):
        url = "ws://" + base_url[len("http://"):]
    else:
        url = base_url
    if path:
        url = url.rstrip("/") + "/" + path.lstrip("/")
    return url


class WebSocketTransport(TransportClient):
    transport = Transport.WS

    def __init__(self, *, connect: Connector | None = None) -> None:
        self._connect = connect or websockets.connect

    async def send(self, service: ServiceRecord, call: PreparedCall) -> TransportResult:
        try:
            socket = await asyncio.wait_for(
                self._connect(call.target, additional_headers=call.headers or None),
                timeout=call.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise TransportError("WebSocket connect timed out", code="TIMEOUT", cause=exc) from exc
        except (OSError, WebSocketException) as exc:
            raise TransportError(f"WebSocket connect failed: {exc}", cause=exc) from exc

        try:
            if call.body is not None:
                message = call.body if isinstance(call.body, str) else json.dumps(call.body)
                await socket.send(message)
            raw = await asyncio.wait_for(socket.recv(), timeout=call.timeout)
        except asyncio.TimeoutError as exc:
            raise TransportError(
                "No WebSocket message received before timeout", code="TIMEOUT", cause=exc
            ) from exc
        except (OSError, WebSocketException) as exc:
            raise TransportError(f"WebSocket error: {exc}", cause=exc) from exc
        finally:
            await socket.close()

        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        return TransportResult(data=decode_text(raw, call.parser or "raw"))
