"""
Request parameter helpers.

normalize_params() gives a canonical form used for cache keys, and
summarize_params() gives a short human readable form stored next to each
cached response.
"""

import json
import re
from typing import Any, Dict, List, Union

from apicache.exceptions import ValidationError

MAX_PARAMS_DEPTH = 20

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

Params = Union[Dict[str, Any], List[Any]]


def validate_identifier(identifier: str, label: str = "client") -> str:
    """Ensure a client identifier is safe for table names and cache keys."""
    if not isinstance(identifier, str) or not identifier:
        raise ValidationError(f"Invalid {label} identifier: must be a non-empty string")
    if not IDENTIFIER_PATTERN.match(identifier):
        raise ValidationError(
            f"Invalid {label} identifier '{identifier}': "
            "only letters, numbers, underscores and hyphens are allowed"
        )
    return identifier


def normalize_params(params: Any, depth: int = 0) -> Any:
    """
    Canonicalize request parameters.

    Dict values of None are dropped and keys are sorted, recursively. Lists
    keep their order; their elements are normalized. Anything that is not a
    JSON scalar, dict, list or tuple is rejected.

    Raises:
        ValidationError: unsupported value type or nesting deeper than 20
    """
    if depth > MAX_PARAMS_DEPTH:
        raise ValidationError(f"Maximum parameter depth of {MAX_PARAMS_DEPTH} exceeded")

    if isinstance(params, dict):
        normalized = {}
        for key in sorted(params.keys(), key=str):
            value = params[key]
            if value is None:
                continue
            normalized[key] = normalize_params(value, depth + 1)
        return normalized

    if isinstance(params, (list, tuple)):
        return [normalize_params(value, depth + 1) for value in params if value is not None]

    if params is None or isinstance(params, (str, int, float, bool)):
        return params

    raise ValidationError(
        f"Unsupported parameter type: {type(params).__name__}"
    )


def _encode(value: Any, pretty_print: bool = False) -> str:
    if pretty_print:
        return json.dumps(value, ensure_ascii=False, indent=4)
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def _truncate(text: str, limit: int) -> str:
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def summarize_params(
    params: Params,
    normalize: bool = True,
    pretty_print: bool = False,
    character_limit: int = 100,
    detect_task_array: bool = True,
) -> str:
    """
    Build a short JSON summary of request parameters.

    Strings longer than character_limit are cut and suffixed with "...".
    Nested dicts/lists are JSON encoded and cut the same way. Numbers and
    booleans are kept as is. A list holding a single dict (the usual shape
    of a DataForSEO task array) is summarized as that dict.

    Returns:
        JSON string, "[]" for empty params
    """
    if normalize:
        params = normalize_params(params)

    if not params:
        return "[]"

    if (
        detect_task_array
        and isinstance(params, list)
        and len(params) == 1
        and isinstance(params[0], dict)
    ):
        params = params[0]

    def summarize_value(value: Any) -> Any:
        if isinstance(value, str):
            return _truncate(value, character_limit)
        if isinstance(value, (dict, list, tuple)):
            return _truncate(_encode(value), character_limit)
        return value

    if isinstance(params, dict):
        summary = {key: summarize_value(value) for key, value in params.items()}
    else:
        summary = [summarize_value(value) for value in params]

    return _encode(summary, pretty_print)
