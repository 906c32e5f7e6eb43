"""Match logger - orchestrates event store, persistence, listeners and derived metrics.

One MatchLogger per match session. It is the surface the rest of the
coaching app talks to: log events, query them, correct them, and read
derived facts such as effective playing time.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import Any

from .bus import Listener, ListenerBus
from .constants import DEFAULT_STORAGE_KEY, DEFAULT_UNDO_REASON, GOAL_UNDO_REASON, SQLITE_DB_NAME
from .events import EventStore
from .exceptions import PersistenceWriteFailed
from .models import SCORING_TYPES, EventType, MatchEvent, StoreSnapshot, now_ms
from .persistence import SnapshotPersistence
from .stats import PlayerTimes, player_time_totals, score_timeline
from .storage import FileStorage, KeyValueStorage, SQLiteStorage
from .timing import effective_playing_time, match_time_of, total_elapsed_time
from .validation import ValidationIssue, recover_snapshot, validate_match_data

logger = logging.getLogger(__name__)


class MatchLogger:
    """Main entry point for match event operations.

    Thread-safety: designed for a single-threaded event loop. Every
    operation completes (mutate -> persist -> notify) before returning,
    so no locking is needed as long as one thread drives the logger.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        storage_key: str = DEFAULT_STORAGE_KEY,
        clock: Callable[[], int] = now_ms,
        initialize: bool = True,
    ):
        """Create a logger over a storage backend.

        Args:
            storage: Key-value backend holding the snapshot
            storage_key: Slot the snapshot lives under
            clock: Source of epoch-ms timestamps
            initialize: Load any persisted snapshot immediately
        """
        self.storage = storage
        self._clock = clock
        self.persistence = SnapshotPersistence(storage, storage_key, clock=clock)
        self.store = EventStore(self.persistence, ListenerBus(), clock=clock)
        if initialize:
            self.initialize_event_logger()

    @classmethod
    def open(
        cls,
        store_dir: Path,
        backend: str = "file",
        storage_key: str = DEFAULT_STORAGE_KEY,
        clock: Callable[[], int] = now_ms,
    ) -> "MatchLogger":
        """Open a logger on a store directory.

        Args:
            store_dir: Directory holding the snapshot file or database
            backend: "file" (one JSON file per key) or "sqlite"
        """
        store_dir = Path(store_dir)
        if backend == "sqlite":
            storage: KeyValueStorage = SQLiteStorage(store_dir / SQLITE_DB_NAME)
        elif backend == "file":
            storage = FileStorage(store_dir)
        else:
            raise ValueError(f"Unknown storage backend: {backend}")
        return cls(storage, storage_key=storage_key, clock=clock)

    def close(self) -> None:
        """Release backend resources (SQLite connection)."""
        if isinstance(self.storage, SQLiteStorage):
            self.storage.close()

    # --- Lifecycle ---

    def initialize_event_logger(self) -> StoreSnapshot | None:
        """Load the persisted snapshot, or start empty if there is none."""
        snapshot = self.store.load()
        if snapshot is None:
            logger.debug("No stored match events, starting fresh")
        return snapshot

    def clear_all_events(self) -> bool:
        """Hard reset: drop every event and the persisted snapshot."""
        return self.store.clear()

    # --- Append and query ---

    def log_event(
        self,
        event_type: EventType | str,
        data: Mapping[str, Any] | None = None,
        custom_timestamp: int | None = None,
    ) -> MatchEvent:
        """Record a match event. See EventStore.append for failure modes."""
        return self.store.append(event_type, data, custom_timestamp)

    def get_match_events(
        self,
        include_undone: bool = False,
        event_types: Iterable[EventType | str] | None = None,
        start_time: int | None = None,
        end_time: int | None = None,
    ) -> list[MatchEvent]:
        return self.store.query(
            include_undone=include_undone,
            event_types=event_types,
            start_time=start_time,
            end_time=end_time,
        )

    def get_event_by_id(self, event_id: str) -> MatchEvent | None:
        return self.store.get_by_id(event_id)

    def get_all_events(self) -> list[MatchEvent]:
        return self.store.get_all()

    def get_match_start_time(self) -> int | None:
        return self.store.match_start_time

    # --- Corrections ---

    def remove_event(self, event_id: str) -> bool:
        return self.store.remove_by_id(event_id)

    def mark_event_as_undone(self, event_id: str, reason: str = DEFAULT_UNDO_REASON) -> bool:
        return self.store.mark_undone(event_id, reason)

    def update_event_data(self, event_id: str, partial: Mapping[str, Any]) -> bool:
        return self.store.patch_data(event_id, partial)

    def rewrite_goal_scores(self) -> bool:
        """Patch every active goal's running score to match the goal history.

        Goals keep their place in the timeline; only ``ownScore`` and
        ``opponentScore`` change, and only where they differ.
        """
        for event_id, own, opponent in score_timeline(self.store.query(event_types=SCORING_TYPES)):
            event = self.store.get_by_id(event_id)
            if event.data.get("ownScore") == own and event.data.get("opponentScore") == opponent:
                continue
            if not self.store.patch_data(event_id, {"ownScore": own, "opponentScore": opponent}):
                return False
        return True

    def undo_goal(self, event_id: str, reason: str = GOAL_UNDO_REASON) -> bool:
        """Retract a goal and rewrite the running score of every later goal.

        Returns False if the id is unknown, is not a goal, or a write fails.
        """
        event = self.store.get_by_id(event_id)
        if event is None or event.type not in SCORING_TYPES:
            logger.warning(f"No goal event to undo: {event_id}")
            return False
        if not event.undone and not self.store.mark_undone(event_id, reason):
            return False
        return self.rewrite_goal_scores()

    # --- Derived metrics ---

    def calculate_match_time(self, timestamp: int | None, start_time: int | None = None) -> str:
        """Match clock for a timestamp, against ``start_time`` or the match start."""
        if start_time is None:
            start_time = self.store.match_start_time
        return match_time_of(timestamp, start_time)

    def get_effective_playing_time(self, now: int | None = None) -> int:
        """Playing time so far in ms, pauses excluded."""
        return effective_playing_time(self.store.query(), now=self._clock() if now is None else now)

    def get_total_elapsed_time(self, now: int | None = None) -> int:
        return total_elapsed_time(self.store.query(), now=self._clock() if now is None else now)

    def player_time_totals(self) -> dict[str, PlayerTimes]:
        return player_time_totals(self.store.query())

    def validate(
        self,
        expected_effective_time: int | None = None,
        players: Iterable[Mapping[str, Any]] | None = None,
    ) -> list[ValidationIssue]:
        """Integrity report over the full event list (undone events included)."""
        return validate_match_data(
            self.store.get_all(),
            expected_effective_time=expected_effective_time,
            players=players,
            now=self._clock(),
        )

    # --- Recovery ---

    def recover_from_crash(self, apply: bool = False) -> StoreSnapshot | None:
        """Attempt to salvage the persisted snapshot.

        Args:
            apply: Persist the repaired snapshot and reload the store from it

        Returns:
            The repaired (or already sound) snapshot, or None if nothing
            could be salvaged.

        Raises:
            PersistenceWriteFailed: ``apply`` was set and the write failed
        """
        snapshot = recover_snapshot(self.persistence.read_raw(), clock=self._clock)
        if snapshot is None or not apply:
            return snapshot
        if not self.store.restore(snapshot):
            raise PersistenceWriteFailed("recovery")
        logger.info(f"Restored {len(snapshot.events)} events from recovered snapshot")
        return snapshot

    # --- Subscription ---

    def add_event_listener(self, callback: Listener) -> Callable[[], None]:
        """Subscribe to mutations. Returns an unsubscribe function."""
        return self.store.subscribe(callback)
