"""Abstract transport client and the prepared call it consumes."""

from __future__ import annotations

import abc
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from homie.core.types import Transport
from homie.transport.models import ServiceRecord, TransportResult

logger = logging.getLogger(__name__)


@dataclass
class PreparedCall:
    """A fully interpolated endpoint call, ready to be sent.

    ``target`` is the URL for http and ws, the request path for docker,
    and the command line for ssh.
    """

    transport: Transport
    target: str
    method: str = "GET"
    params: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    timeout: float = 10.0
    parser: str | None = None
    allow_non_zero_exit: bool = False


def decode_text(text: str, parser: str | None) -> Any:
    """Decode a textual payload.

    ``json`` and ``None`` (auto) try JSON first and fall back to the raw
    text; ``raw`` never parses.
    """
    if parser == "raw":
        return text
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        if parser == "json":
            logger.warning("Expected JSON payload, returning raw text")
        return text


class TransportClient(abc.ABC):
    """One wire protocol used by the dispatcher."""

    transport: Transport

    @abc.abstractmethod
    async def send(self, service: ServiceRecord, call: PreparedCall) -> TransportResult:
        """Perform the call. Raises ``AdapterError`` subclasses on failure."""

    async def close(self) -> None:
        """Release pooled connections. Override if the transport holds any."""
