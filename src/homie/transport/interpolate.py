"""``{key}`` placeholder substitution for manifest-supplied strings."""

from __future__ import annotations

import re
from typing import Any, Mapping

_PLACEHOLDER = re.compile(r"\{([^{}]+)\}")


def interpolate(template: str, context: Mapping[str, Any]) -> str:
    """Replace each ``{key}`` with ``str(context[key])``.

    Keys that are missing or map to ``None`` are left as the literal token.
    """
    if not isinstance(template, str):
        return template

    def _sub(match: re.Match[str]) -> str:
        key = match.group(1).strip()
        value = context.get(key)
        if value is None:
            return match.group(0)
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    return _PLACEHOLDER.sub(_sub, template)


def has_placeholder(value: Any) -> bool:
    return isinstance(value, str) and "{" in value


def interpolate_value(value: Any, context: Mapping[str, Any]) -> Any:
    """Interpolate strings nested inside dicts and lists; other values pass through."""
    if isinstance(value, str):
        return interpolate(value, context)
    if isinstance(value, Mapping):
        return {k: interpolate_value(v, context) for k, v in value.items()}
    if isinstance(value, list):
        return [interpolate_value(v, context) for v in value]
    return value


def interpolate_mapping(
    mapping: Mapping[str, Any] | None, context: Mapping[str, Any]
) -> dict[str, Any]:
    """Interpolate every value and drop entries that still hold a placeholder."""
    result: dict[str, Any] = {}
    for key, value in (mapping or {}).items():
        filled = interpolate_value(value, context)
        if has_placeholder(filled):
            continue
        result[key] = filled
    return result
