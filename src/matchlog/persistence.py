"""Snapshot persistence for the match event log.

Every write replaces the whole snapshot: envelope, full event list
(undone events included), auxiliary maps and a fresh checksum. Every load
verifies the checksum and the event chronology before anything is trusted.

Failure policy:
- save() reports failure as False, never raises
- load() degrades to an empty snapshot on corruption, never raises
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from pydantic import ValidationError

from .checksum import snapshot_checksum, verify_checksum
from .constants import DEFAULT_STORAGE_KEY, MATCH_ID_PREFIX, SNAPSHOT_VERSION
from .exceptions import StorageError, StorageQuotaExceeded
from .models import MatchEvent, SnapshotMetadata, StoreSnapshot, generate_id, now_ms
from .storage import KeyValueStorage
from .validation import validate_sequence

logger = logging.getLogger(__name__)


def _default_envelope() -> dict[str, Any]:
    return {
        "matchId": None,
        "version": SNAPSHOT_VERSION,
        "created": None,
        "lastUpdated": None,
        "checksum": "",
        "events": [],
        "goalScorers": {},
        "corrections": {},
        "metadata": {"eventCount": 0, "lastSequence": 0},
    }


def merge_with_defaults(loaded: Mapping[str, Any]) -> dict[str, Any]:
    """Fill missing envelope keys from defaults (one level deep for objects)."""
    merged = _default_envelope()
    for key, value in loaded.items():
        default = merged.get(key)
        if isinstance(default, dict) and isinstance(value, dict):
            merged[key] = {**default, **value}
        else:
            merged[key] = value
    return merged


class SnapshotPersistence:
    """Reads and writes StoreSnapshots through a key-value storage slot."""

    def __init__(
        self,
        storage: KeyValueStorage,
        key: str = DEFAULT_STORAGE_KEY,
        clock: Callable[[], int] = now_ms,
    ):
        """Initialize persistence.

        Args:
            storage: Backend holding the snapshot
            key: Slot the snapshot lives under
            clock: Source of epoch-ms timestamps for created/lastUpdated
        """
        self.storage = storage
        self.key = key
        self._clock = clock

    def empty_snapshot(self) -> StoreSnapshot:
        """A fresh snapshot with no events."""
        now = self._clock()
        return StoreSnapshot(
            match_id=generate_id(MATCH_ID_PREFIX),
            created=now,
            last_updated=now,
        )

    def build_snapshot(
        self,
        events: Sequence[MatchEvent],
        *,
        match_id: str | None = None,
        created: int | None = None,
        goal_scorers: Mapping[str, Any] | None = None,
        corrections: Mapping[str, Any] | None = None,
        last_sequence: int | None = None,
        extra_metadata: Mapping[str, Any] | None = None,
    ) -> StoreSnapshot:
        """Build a checksummed snapshot for an event list."""
        now = self._clock()
        if last_sequence is None:
            last_sequence = max((e.sequence for e in events), default=0)
        metadata = SnapshotMetadata(
            **dict(extra_metadata or {}),
            event_count=len(events),
            last_sequence=last_sequence,
        )
        snapshot = StoreSnapshot(
            match_id=match_id or generate_id(MATCH_ID_PREFIX),
            created=created or now,
            last_updated=now,
            events=list(events),
            goal_scorers=dict(goal_scorers or {}),
            corrections=dict(corrections or {}),
            metadata=metadata,
        )
        return snapshot.model_copy(update={"checksum": snapshot_checksum(snapshot.to_dict())})

    def save(self, events: Sequence[MatchEvent], **aux: Any) -> bool:
        """Write the full snapshot for ``events``.

        Keyword arguments are passed to build_snapshot(). Returns False if
        the snapshot could not be serialized or stored.
        """
        try:
            snapshot = self.build_snapshot(events, **aux)
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to build snapshot: {e}")
            return False
        return self.write_snapshot(snapshot)

    def write_snapshot(self, snapshot: StoreSnapshot) -> bool:
        """Serialize and store an already-built snapshot."""
        try:
            payload = json.dumps(snapshot.to_dict())
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to serialize snapshot: {e}")
            return False

        try:
            self.storage.set(self.key, payload)
            return True
        except StorageQuotaExceeded as e:
            logger.warning(f"Storage quota exceeded, clearing slot and retrying: {e}")
            self.clear()
            try:
                self.storage.set(self.key, payload)
                return True
            except StorageError as retry_error:
                logger.error(f"Failed to save even after clearing storage: {retry_error}")
                return False
        except StorageError as e:
            logger.warning(f"Failed to save snapshot: {e}")
            return False

    def read_raw(self) -> str | None:
        """The stored blob exactly as persisted, or None."""
        try:
            return self.storage.get(self.key)
        except StorageError as e:
            logger.warning(f"Failed to read snapshot: {e}")
            return None

    def has_stored_state(self) -> bool:
        return self.read_raw() is not None

    def load(self) -> StoreSnapshot | None:
        """Load and verify the stored snapshot.

        Returns:
            None if nothing (or an empty event list) is stored; an empty
            snapshot if the stored data fails parsing, checksum or
            chronology checks; otherwise the verified snapshot.
        """
        raw = self.read_raw()
        if raw is None:
            return None

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Stored snapshot is not valid JSON, starting with empty events: {e}")
            return self.empty_snapshot()

        if not isinstance(parsed, dict):
            logger.warning("Invalid snapshot format in storage, starting with empty events")
            return self.empty_snapshot()

        data = merge_with_defaults(parsed)
        if not data["events"]:
            return None

        if not verify_checksum(data):
            logger.warning("Snapshot checksum mismatch, starting with empty events")
            return self.empty_snapshot()

        try:
            snapshot = StoreSnapshot.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Snapshot failed schema validation, starting with empty events: {e}")
            return self.empty_snapshot()

        if not validate_sequence(snapshot.events):
            logger.warning("Event sequence validation failed, starting with empty events")
            return self.empty_snapshot()

        return snapshot

    def clear(self) -> bool:
        """Remove the stored snapshot."""
        try:
            self.storage.remove(self.key)
            return True
        except StorageError as e:
            logger.warning(f"Failed to clear snapshot: {e}")
            return False

    def storage_info(self) -> dict[str, Any]:
        """Size and presence of the stored snapshot."""
        raw = self.read_raw()
        return {
            "key": self.key,
            "present": raw is not None,
            "size": len(raw.encode("utf-8")) if raw is not None else 0,
        }
