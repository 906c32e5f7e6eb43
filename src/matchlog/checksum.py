"""Checksums for detecting silent corruption of persisted snapshots.

The checksum guards against accidental damage (truncated writes, hand
edits, storage bugs), not deliberate tampering, so a truncated SHA-256 of
the canonical JSON form is enough.
"""

import hashlib
import json
from collections.abc import Mapping
from typing import Any

CHECKSUM_FIELD = "checksum"


def canonical_json(data: Any) -> str:
    """Deterministic JSON: sorted keys, no whitespace. List order is kept."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_checksum(data: Any) -> str:
    """Hash the canonical form of a JSON-serializable structure."""
    return hashlib.sha256(canonical_json(data).encode("utf-8")).hexdigest()[:16]


def snapshot_checksum(snapshot: Mapping[str, Any]) -> str:
    """Checksum of a snapshot dict with its own checksum field blanked."""
    return compute_checksum({**snapshot, CHECKSUM_FIELD: ""})


def verify_checksum(snapshot: Mapping[str, Any]) -> bool:
    """True if the stored checksum matches the snapshot contents."""
    expected = snapshot.get(CHECKSUM_FIELD)
    if not isinstance(expected, str) or not expected:
        return False
    return expected == snapshot_checksum(snapshot)
