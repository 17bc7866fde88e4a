"""Stable content digests for destination payloads."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Callable
from typing import Any

DigestStrategy = Callable[[Any], str]


def _dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def _key_order(key: Any) -> tuple[str, str]:
    return str(key), type(key).__name__


def normalize(value: Any) -> Any:
    """Return *value* with mapping keys in sorted order at every depth.

    Sequence element order is preserved. Keys are ordered by their string form,
    then by type name, so ``{1: ..., "1": ...}`` normalizes the same way
    whatever the insertion order. Sets have no order of their own and become
    lists sorted by the encoded form of each element.
    """
    if isinstance(value, dict):
        return {key: normalize(value[key]) for key in sorted(value, key=_key_order)}
    if isinstance(value, (list, tuple)):
        return [normalize(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted((normalize(item) for item in value), key=_dumps)
    return value


def stable_digest(value: Any) -> str:
    """Compute a SHA-256 hex digest of *value* that ignores mapping key order."""
    return hashlib.sha256(_dumps(normalize(value)).encode("utf-8")).hexdigest()
