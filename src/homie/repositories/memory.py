"""In-memory service store for tests and single-process deployments."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import yaml

from homie.core.types import ServiceStatus
from homie.transport.models import ServiceRecord


class InMemoryServiceRepository:
    """Dict-backed ``ServiceRepository``."""

    def __init__(self, services: list[ServiceRecord] | None = None) -> None:
        self._services: dict[str, ServiceRecord] = {}
        for service in services or []:
            self.save_service(service)

    def save_service(self, service: ServiceRecord) -> None:
        self._services[service.id] = service

    def get_service(self, service_id: str) -> ServiceRecord | None:
        return self._services.get(service_id)

    def list_services(self) -> list[ServiceRecord]:
        return list(self._services.values())

    def update_status(
        self, service_id: str, status: ServiceStatus, last_checked: datetime
    ) -> None:
        service = self._services.get(service_id)
        if service is None:
            raise KeyError(f"Service {service_id!r} not found")
        self._services[service_id] = service.model_copy(
            update={"status": status, "last_checked": last_checked}
        )


def load_services(path: str | Path) -> list[ServiceRecord]:
    """Read service records from a YAML file with a top-level ``services`` list."""
    with open(path) as fh:
        data = yaml.safe_load(fh) or {}
    return [ServiceRecord.model_validate(raw) for raw in data.get("services", [])]
