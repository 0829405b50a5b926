"""Protocol definitions for the persistence collaborator.

Methods may be implemented sync (in-memory) or async (database backed);
callers wrap every call in ``resolve()``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from homie.core.types import ServiceStatus
from homie.transport.models import ServiceRecord


@runtime_checkable
class ServiceRepository(Protocol):
    """Read service records and write their reachability status."""

    def get_service(self, service_id: str) -> ServiceRecord | None: ...

    def list_services(self) -> list[ServiceRecord]: ...

    def update_status(
        self, service_id: str, status: ServiceStatus, last_checked: datetime
    ) -> None: ...
