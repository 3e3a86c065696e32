"""Canonical hashing helpers for content addressing.

Every peer must derive the same bytes from the same record, so the
serialization here is part of the interop contract.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from typing import Any


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes: deterministic, sorted, compact.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def canonical_timestamp(value: datetime) -> str:
    """Render a datetime as a fixed-width UTC string.

    Naive datetimes are taken to be UTC.  The format never varies with
    the interpreter or the serializer, e.g. ``2026-01-02T03:04:05.000006Z``.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def compute_record_id(signable: dict[str, Any]) -> str:
    """SHA-256 of a review record's signable fields.

    The caller passes every field except ``id`` and ``signature``.
    """
    return sha256_hex(canonical_json_bytes(signable))
