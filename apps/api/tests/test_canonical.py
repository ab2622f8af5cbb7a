"""Tests for canonical serialization and hashing."""

import hashlib
from datetime import datetime
from decimal import Decimal

import pytest

from governance_api.errors import SerializationError
from governance_api.ledger.canonical import canonicalize, canonicalize_text
from governance_api.ledger.hashing import GENESIS_HASH, hash_bytes, hash_canonical


def test_key_order_does_not_matter():
    a = {"b": 1, "a": {"y": [3, 2, 1], "x": None}, "c": "text"}
    b = {"c": "text", "a": {"x": None, "y": [3, 2, 1]}, "b": 1}
    assert canonicalize(a) == canonicalize(b)
    assert hash_canonical(a) == hash_canonical(b)


def test_compact_sorted_output():
    assert canonicalize_text({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'


def test_array_order_is_significant():
    assert canonicalize([1, 2]) != canonicalize([2, 1])


def test_unicode_is_emitted_as_utf8():
    assert canonicalize({"name": "Zoë"}) == '{"name":"Zoë"}'.encode("utf-8")


def test_hash_is_sha256_of_canonical_bytes():
    value = {"k": "v", "n": 1.5}
    assert hash_canonical(value) == hashlib.sha256(b'{"k":"v","n":1.5}').hexdigest()
    assert hash_bytes(b"") == hashlib.sha256(b"").hexdigest()


def test_genesis_hash_shape():
    assert GENESIS_HASH == "0" * 64


@pytest.mark.parametrize(
    "value",
    [
        {"when": datetime(2026, 1, 1)},
        {"amount": Decimal("1.5")},
        {"items": {1, 2}},
        {"fn": print},
        {"bad": float("nan")},
        {"bad": float("inf")},
        {1: "non-string key"},
    ],
)
def test_non_json_values_are_rejected(value):
    with pytest.raises(SerializationError):
        canonicalize(value)


def test_circular_reference_is_rejected():
    value = {"a": []}
    value["a"].append(value)
    with pytest.raises(SerializationError):
        canonicalize(value)


def test_shared_but_acyclic_references_are_allowed():
    shared = {"x": 1}
    assert canonicalize_text({"a": shared, "b": shared}) == '{"a":{"x":1},"b":{"x":1}}'
