"""Deterministic JSON canonicalization.

Two values that are semantically equal (same keys and values, regardless of
object key order) always serialize to the same bytes:

- object keys are sorted lexicographically (by code point);
- arrays keep their order;
- separators are compact and output is UTF-8;
- floats use Python's shortest round-trip representation, which does not
  depend on locale; NaN and Infinity are rejected.

Anything that is not plain JSON data raises :class:`SerializationError`.
That is a programming error in the caller, not a recoverable condition.
"""

import json
from typing import Any

from governance_api.errors import SerializationError


class _StrictEncoder(json.JSONEncoder):
    """Encoder that refuses anything beyond basic JSON types."""

    def default(self, o: object) -> object:
        raise TypeError(f"Object of type {type(o).__name__} is not JSON serializable")


def _check_keys(value: Any, _seen: set) -> None:
    # json.dumps silently coerces int/float/bool/None keys to strings, which
    # would let {1: x} and {"1": x} collide. Reject them up front.
    if isinstance(value, dict):
        marker = id(value)
        if marker in _seen:
            raise SerializationError("Circular reference detected")
        _seen.add(marker)
        for key, item in value.items():
            if not isinstance(key, str):
                raise SerializationError(
                    f"Object keys must be strings, got {type(key).__name__}"
                )
            _check_keys(item, _seen)
        _seen.discard(marker)
    elif isinstance(value, (list, tuple)):
        marker = id(value)
        if marker in _seen:
            raise SerializationError("Circular reference detected")
        _seen.add(marker)
        for item in value:
            _check_keys(item, _seen)
        _seen.discard(marker)


def canonicalize_text(value: Any) -> str:
    """Return the canonical JSON text for ``value``."""
    _check_keys(value, set())
    try:
        return json.dumps(
            value,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
            cls=_StrictEncoder,
        )
    except (TypeError, ValueError, RecursionError) as exc:
        raise SerializationError(f"Value is not canonicalizable: {exc}") from exc


def canonicalize(value: Any) -> bytes:
    """Return the canonical UTF-8 bytes for ``value``."""
    return canonicalize_text(value).encode("utf-8")
