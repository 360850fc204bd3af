# src/record_ingest/digest.py

"""
Content-addressed identity for rows.

A row's identity is the SHA-1 hex digest of its canonical serialized form:
compact JSON (no whitespace between tokens), non-ASCII characters written
literally, fields in the row's own field order, encoded as UTF-8. Records
already stored by earlier deployments were keyed this way, so any change to
the serialization silently breaks idempotency against existing data.
"""

import hashlib
import json
from collections.abc import Mapping
from typing import Any

_SEPARATORS = (",", ":")


def canonicalize(row: Mapping[str, Any]) -> str:
    """Serializes *row* to its canonical form, preserving field order."""
    return json.dumps(dict(row), separators=_SEPARATORS, ensure_ascii=False)


def canonical_size(row: Mapping[str, Any]) -> int:
    """Size in bytes of the row's canonical form."""
    return len(canonicalize(row).encode("utf-8"))


def digest(canonical: str) -> str:
    return hashlib.sha1(canonical.encode("utf-8")).hexdigest()


def record_id(row: Mapping[str, Any]) -> str:
    return digest(canonicalize(row))
