"""
Commitment Hashing
==================

Deterministic digests over canonicalized data.

Two logically identical objects hash identically regardless of key order:
mappings are sorted recursively before serialization.

Version: 0.1.0
"""

import hashlib
import json
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any


def canonicalize(data: Any) -> Any:
    """
    Convert ``data`` to a JSON-compatible structure with sorted mapping keys.

    Dates become ISO strings, enums their values, Decimals strings, and
    sets/tuples sorted/plain lists.
    """
    if isinstance(data, Mapping):
        return {str(k): canonicalize(data[k]) for k in sorted(data, key=str)}
    if isinstance(data, (list, tuple)):
        return [canonicalize(v) for v in data]
    if isinstance(data, (set, frozenset)):
        return sorted((canonicalize(v) for v in data), key=lambda v: json.dumps(v, sort_keys=True))
    if isinstance(data, Enum):
        return canonicalize(data.value)
    if isinstance(data, (datetime, date)):
        return data.isoformat()
    if isinstance(data, Decimal):
        return str(data)
    if hasattr(data, "model_dump"):
        return canonicalize(data.model_dump(mode="json"))
    return data


def canonical_json(data: Any) -> str:
    """Compact, key-sorted JSON for ``data``."""
    return json.dumps(
        canonicalize(data),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def commitment_hash(data: Any) -> str:
    """
    SHA-256 hex digest of the canonical form of ``data``.

    Example:
        commitment_hash({"a": 1, "b": 2}) == commitment_hash({"b": 2, "a": 1})
    """
    return hashlib.sha256(canonical_json(data).encode("utf-8")).hexdigest()


def salted_digest(value: str, salt: str) -> str:
    """Hash a private value with a per-buyer salt so it cannot be brute forced."""
    return hashlib.sha256(f"{salt}:{value}".encode()).hexdigest()
