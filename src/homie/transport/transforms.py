"""Sandboxed response transforms.

A manifest ``transform`` is either the name of a registered Python
function or a JMESPath expression evaluated against the response data.
Nothing from a manifest is ever executed as code.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

import jmespath

from homie.errors import TransformError

logger = logging.getLogger(__name__)

TransformFn = Callable[[Any], Any]


def _count(data: Any) -> int:
    return len(data) if hasattr(data, "__len__") else 0


def _first(data: Any) -> Any:
    if isinstance(data, list):
        return data[0] if data else None
    return data


def _records(data: Any) -> Any:
    if isinstance(data, dict):
        for key in ("records", "data", "items", "results"):
            if key in data:
                return data[key]
    return data


def _keys(data: Any) -> list[str]:
    if isinstance(data, dict):
        return list(data.keys())
    raise TypeError("keys transform requires an object")


BUILTIN_TRANSFORMS: dict[str, TransformFn] = {
    "identity": lambda data: data,
    "count": _count,
    "first": _first,
    "records": _records,
    "keys": _keys,
}


class TransformRegistry:
    """Named transforms with a JMESPath fallback."""

    def __init__(self, transforms: dict[str, TransformFn] | None = None) -> None:
        self._transforms: dict[str, TransformFn] = dict(BUILTIN_TRANSFORMS)
        if transforms:
            self._transforms.update(transforms)
        self._compiled: dict[str, Any] = {}

    def register(self, name: str, fn: TransformFn) -> None:
        self._transforms[name] = fn

    def names(self) -> list[str]:
        return sorted(self._transforms)

    def apply(self, expression: str, data: Any) -> Any:
        """Evaluate ``expression`` against ``data``; raise ``TransformError`` on failure."""
        expression = expression.strip()
        fn = self._transforms.get(expression)
        try:
            if fn is not None:
                return fn(data)
            compiled = self._compiled.get(expression)
            if compiled is None:
                compiled = jmespath.compile(expression)
                self._compiled[expression] = compiled
            return compiled.search(data)
        except Exception as exc:
            raise TransformError(
                f"Transform {expression!r} failed: {exc}",
                details={"transform": expression},
                cause=exc,
            ) from exc

    def apply_safely(self, expression: str | None, data: Any) -> Any:
        """Apply a transform, returning ``data`` unchanged if it fails."""
        if not expression:
            return data
        try:
            return self.apply(expression, data)
        except TransformError as exc:
            logger.warning("%s; returning untransformed data", exc.message)
            return data
