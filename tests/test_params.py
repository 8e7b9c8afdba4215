"""
Tests for parameter normalization, summaries and identifier validation.
"""

import json

import pytest

from apicache.exceptions import ValidationError
from apicache.utils.params import (
    MAX_PARAMS_DEPTH,
    normalize_params,
    summarize_params,
    validate_identifier,
)


# =============================================================================
# NORMALIZATION
# =============================================================================

class TestNormalizeParams:
    """Canonical form used for cache keys."""

    def test_sorts_keys_recursively(self):
        normalized = normalize_params({"b": 1, "a": {"d": 2, "c": 3}})
        assert list(normalized) == ["a", "b"]
        assert list(normalized["a"]) == ["c", "d"]

    def test_drops_none_values(self):
        assert normalize_params({"a": 1, "b": None, "c": {"d": None}}) == {"a": 1, "c": {}}

    def test_list_order_preserved(self):
        assert normalize_params({"ids": [3, 1, 2]}) == {"ids": [3, 1, 2]}

    def test_list_none_elements_dropped(self):
        assert normalize_params([1, None, 2]) == [1, 2]

    def test_tuple_becomes_list(self):
        assert normalize_params({"pair": (1, 2)}) == {"pair": [1, 2]}

    def test_scalars_pass_through(self):
        assert normalize_params("x") == "x"
        assert normalize_params(1.5) == 1.5
        assert normalize_params(True) is True

    def test_unsupported_type_rejected(self):
        with pytest.raises(ValidationError):
            normalize_params({"when": object()})

    def test_depth_limit(self):
        params = {}
        current = params
        for _ in range(MAX_PARAMS_DEPTH + 1):
            current["n"] = {}
            current = current["n"]
        with pytest.raises(ValidationError, match="depth"):
            normalize_params(params)

    def test_depth_within_limit(self):
        params = {}
        current = params
        for _ in range(MAX_PARAMS_DEPTH - 1):
            current["n"] = {}
            current = current["n"]
        normalize_params(params)


# =============================================================================
# SUMMARIES
# =============================================================================

class TestSummarizeParams:
    """Short human readable parameter summaries."""

    def test_empty(self):
        assert summarize_params({}) == "[]"
        assert summarize_params([]) == "[]"

    def test_long_string_truncated(self):
        summary = json.loads(summarize_params({"q": "x" * 150}))
        assert summary["q"] == "x" * 100 + "..."

    def test_short_values_kept(self):
        summary = json.loads(summarize_params({"q": "shoes", "limit": 10, "live": True}))
        assert summary == {"limit": 10, "live": True, "q": "shoes"}

    def test_nested_values_encoded(self):
        summary = json.loads(summarize_params({"filters": {"a": 1}}))
        assert summary["filters"] == '{"a":1}'

    def test_nested_values_truncated(self):
        summary = json.loads(summarize_params({"ids": list(range(100))}, character_limit=20))
        assert summary["ids"].endswith("...")
        assert len(summary["ids"]) == 23

    def test_single_task_array_flattened(self):
        summary = json.loads(summarize_params([{"keyword": "shoes"}]))
        assert summary == {"keyword": "shoes"}

    def test_task_array_detection_disabled(self):
        summary = json.loads(summarize_params([{"keyword": "shoes"}], detect_task_array=False))
        assert summary == ['{"keyword":"shoes"}']

    def test_pretty_print(self):
        assert "\n    " in summarize_params({"a": 1, "b": 2}, pretty_print=True)

    def test_non_ascii_kept(self):
        assert "löparskor" in summarize_params({"q": "löparskor"})


# =============================================================================
# IDENTIFIERS
# =============================================================================

class TestValidateIdentifier:

    @pytest.mark.parametrize("name", ["demo", "data-for-seo", "client_2", "A1"])
    def test_valid(self, name):
        assert validate_identifier(name) == name

    @pytest.mark.parametrize("name", ["", "demo client", "demo;drop", "ünicode", None])
    def test_invalid(self, name):
        with pytest.raises(ValidationError):
            validate_identifier(name)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
