"""Shared test fixtures and helpers."""

from __future__ import annotations

from typing import Any

from homie.transport.models import ServiceRecord


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Stand-in for ``asyncio.sleep`` that records delays and returns at once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_service(
    endpoints: dict[str, Any] | None = None,
    *,
    config: dict[str, Any] | None = None,
    **manifest: Any,
) -> ServiceRecord:
    """Build a service record with a manifest holding ``endpoints``."""
    return ServiceRecord.model_validate(
        {
            "id": "svc-1",
            "name": "Test Service",
            "serviceType": "custom",
            "config": {"url": "http://svc.lan:8080", **(config or {})},
            "manifest": {
                "id": "test",
                "name": "Test",
                "api": {"endpoints": endpoints or {}, "headers": manifest.pop("headers", {})},
                **manifest,
            },
        }
    )
