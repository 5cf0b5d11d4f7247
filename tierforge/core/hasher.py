"""Canonical hashing for stage-history seals and simulated artifact refs.

Every hash in Tierforge is SHA-256 over canonical JSON: sorted keys,
compact separators, ASCII-only, UTF-8 encoded.  Two processes that agree
on the data therefore agree on the hash.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any


def canonical_bytes(obj: Any) -> bytes:
    """Serialize *obj* to canonical JSON bytes."""
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def digest(obj: Any) -> str:
    return hashlib.sha256(canonical_bytes(obj)).hexdigest()


def content_address(obj: Any) -> str:
    """Return ``sha256:<hex>`` for a JSON-serializable object."""
    return f"sha256:{digest(obj)}"


def seal(fields: dict[str, Any]) -> str:
    """Hash a stage-history entry's fields, ignoring its own ``entry_hash``."""
    return digest({key: value for key, value in fields.items() if key != "entry_hash"})
