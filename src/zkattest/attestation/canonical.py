"""Canonical JSON serialization for attested payloads."""

from __future__ import annotations

import hashlib
import json
from typing import Any


def canonicalize(payload: Any) -> str:
    """Serialize payload to compact JSON with object keys sorted at every depth.

    Two equal payloads always serialize identically, whatever key order the
    provider response or a client re-serialization used.

    Raises:
        TypeError: If payload holds values JSON can't represent
        ValueError: If payload holds NaN or infinite floats
    """
    return json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def digest(serialization: str) -> bytes:
    """SHA-256 over the UTF-8 bytes of a canonical serialization."""
    return hashlib.sha256(serialization.encode("utf-8")).digest()
