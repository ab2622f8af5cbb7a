"""Content hashing for ledger events and report payloads (unkeyed SHA-256)."""

import hashlib
from typing import Any

from governance_api.ledger.canonical import canonicalize

# previous_hash of the first event in every organization's chain
GENESIS_HASH = "0" * 64


def hash_bytes(data: bytes) -> str:
    """Return the SHA-256 hex digest of ``data``."""
    return hashlib.sha256(data).hexdigest()


def hash_canonical(value: Any) -> str:
    """Return the SHA-256 hex digest over the canonical encoding of ``value``."""
    return hash_bytes(canonicalize(value))
