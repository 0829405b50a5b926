"""Repository layer for service records.

Provides the protocol the adapter layer consumes and a resolve() helper
that transparently handles both sync (in-memory) and async store
returns.
"""

from __future__ import annotations

import inspect
from typing import Awaitable, TypeVar

T = TypeVar("T")


async def resolve(value: T | Awaitable[T]) -> T:
    """Await a value if it is awaitable, otherwise return it directly.

    Lets callers use any store uniformly:
        service = await resolve(repository.get_service(service_id))
    """
    if inspect.isawaitable(value):
        return await value  # type: ignore[return-value]
    return value  # type: ignore[return-value]
