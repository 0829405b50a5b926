"""Tests for placeholder interpolation and response transforms."""

from __future__ import annotations

import pytest

from homie.errors import TransformError
from homie.transport.interpolate import interpolate, interpolate_mapping, interpolate_value
from homie.transport.transforms import TransformRegistry


class TestInterpolate:
    def test_replaces_known_keys(self):
        assert interpolate("/api/{version}/items/{id}", {"version": "v3", "id": 42}) == "/api/v3/items/42"

    def test_unknown_keys_stay_literal(self):
        assert interpolate("/items/{missing}", {}) == "/items/{missing}"

    def test_none_values_stay_literal(self):
        assert interpolate("{a}-{b}", {"a": None, "b": "x"}) == "{a}-x"

    def test_booleans_are_lowercase(self):
        assert interpolate("all={all}", {"all": True}) == "all=true"

    def test_text_without_placeholders_unchanged(self):
        assert interpolate("plain text", {"a": 1}) == "plain text"

    def test_non_string_passes_through(self):
        assert interpolate(None, {"a": 1}) is None

    def test_whitespace_in_key_is_ignored(self):
        assert interpolate("{ host }", {"host": "nas"}) == "nas"


class TestInterpolateValue:
    def test_nested_structures(self):
        body = {"ids": ["{id}", 7], "meta": {"name": "{name}"}, "flag": False}
        result = interpolate_value(body, {"id": "a1", "name": "box"})
        assert result == {"ids": ["a1", 7], "meta": {"name": "box"}, "flag": False}


class TestInterpolateMapping:
    def test_drops_unresolved_entries(self):
        result = interpolate_mapping(
            {"X-Api-Key": "{apiKey}", "X-Static": "yes"}, {}
        )
        assert result == {"X-Static": "yes"}

    def test_keeps_resolved_entries(self):
        result = interpolate_mapping({"X-Api-Key": "{apiKey}"}, {"apiKey": "secret"})
        assert result == {"X-Api-Key": "secret"}

    def test_none_mapping(self):
        assert interpolate_mapping(None, {"a": 1}) == {}


# ---------------------------------------------------------------------------
# Transforms
# ---------------------------------------------------------------------------


class TestTransformRegistry:
    def test_builtin_count(self):
        assert TransformRegistry().apply("count", [1, 2, 3]) == 3

    def test_builtin_records(self):
        assert TransformRegistry().apply("records", {"records": [1], "total": 1}) == [1]

    def test_jmespath_expression(self):
        data = {"queue": {"slots": [{"filename": "a"}, {"filename": "b"}]}}
        assert TransformRegistry().apply("queue.slots[].filename", data) == ["a", "b"]

    def test_registered_function(self):
        registry = TransformRegistry()
        registry.register("double", lambda data: data * 2)
        assert registry.apply("double", 21) == 42
        assert "double" in registry.names()

    def test_invalid_expression_raises(self):
        with pytest.raises(TransformError):
            TransformRegistry().apply("[[[", {"a": 1})

    def test_failing_function_raises(self):
        with pytest.raises(TransformError):
            TransformRegistry().apply("keys", [1, 2])

    def test_apply_safely_returns_original_on_failure(self):
        data = {"a": 1}
        assert TransformRegistry().apply_safely("[[[", data) is data

    def test_apply_safely_without_expression(self):
        data = [1]
        assert TransformRegistry().apply_safely(None, data) is data
