"""Append-only match event store with write-through persistence.

The in-memory event list is the authoritative copy. Every mutation builds
a new list, persists the full snapshot, and only then swaps the new list
in and notifies listeners. A failed write leaves the store exactly as it
was before the call.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from .bus import Listener, ListenerBus
from .constants import (
    DEFAULT_UNDO_REASON,
    EVENT_REMOVED,
    EVENTS_CLEARED,
    EVENTS_SAVED,
    MATCH_ID_PREFIX,
    ZERO_MATCH_TIME,
)
from .exceptions import EventValidationFailed, InvalidEventType, PersistenceWriteFailed
from .models import EventType, MatchEvent, StoreSnapshot, generate_id, now_ms
from .persistence import SnapshotPersistence
from .timing import match_time_of
from .validation import validate_event

logger = logging.getLogger(__name__)


class EventStore:
    """Sole owner of a match's event list, sequence counter and start anchor.

    Single-threaded by design: each call runs to completion
    (mutate copy -> persist -> commit -> notify) before the next begins.
    Events handed out are copies; mutating them never touches the store.
    """

    def __init__(
        self,
        persistence: SnapshotPersistence,
        bus: ListenerBus | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        """Initialize an empty event store.

        Args:
            persistence: Snapshot persistence every mutation writes through
            bus: Listener bus notified after each committed mutation
            clock: Source of epoch-ms timestamps
        """
        self.persistence = persistence
        self.bus = bus or ListenerBus()
        self._clock = clock
        self._reset()

    def _reset(self) -> None:
        self._events: list[MatchEvent] = []
        self._sequence = 0
        self._match_start_time: int | None = None
        self._match_id = generate_id(MATCH_ID_PREFIX)
        self._created: int | None = None
        self._goal_scorers: dict[str, Any] = {}
        self._corrections: dict[str, Any] = {}

    # --- Read-only state ---

    @property
    def last_sequence(self) -> int:
        return self._sequence

    @property
    def match_start_time(self) -> int | None:
        return self._match_start_time

    @property
    def match_id(self) -> str:
        return self._match_id

    @property
    def goal_scorers(self) -> dict[str, Any]:
        return dict(self._goal_scorers)

    @property
    def corrections(self) -> dict[str, Any]:
        return dict(self._corrections)

    def __len__(self) -> int:
        return len(self._events)

    # --- Internal helpers ---

    def _index_of(self, event_id: str) -> int | None:
        for i, event in enumerate(self._events):
            if event.id == event_id:
                return i
        return None

    @staticmethod
    def _copies(events: Iterable[MatchEvent]) -> list[MatchEvent]:
        return [event.model_copy(deep=True) for event in events]

    def _commit(
        self,
        events: list[MatchEvent],
        *,
        sequence: int | None = None,
        match_start_time: int | None = None,
        goal_scorers: dict[str, Any] | None = None,
        corrections: dict[str, Any] | None = None,
    ) -> bool:
        """Persist a candidate list; swap it in only if the write succeeds."""
        sequence = self._sequence if sequence is None else sequence
        goal_scorers = self._goal_scorers if goal_scorers is None else goal_scorers
        corrections = self._corrections if corrections is None else corrections
        created = self._created or self._clock()

        saved = self.persistence.save(
            events,
            match_id=self._match_id,
            created=created,
            goal_scorers=goal_scorers,
            corrections=corrections,
            last_sequence=sequence,
        )
        if not saved:
            return False

        self._events = events
        self._sequence = sequence
        self._created = created
        self._goal_scorers = goal_scorers
        self._corrections = corrections
        if match_start_time is not None:
            self._match_start_time = match_start_time
        return True

    def _saved_payload(self) -> dict[str, Any]:
        return {
            "events": self._copies(self._events),
            "metadata": {
                "match_id": self._match_id,
                "event_count": len(self._events),
                "last_sequence": self._sequence,
            },
        }

    def _build_event(
        self, event_type: EventType, data: dict[str, Any], timestamp: Any, sequence: int
    ) -> MatchEvent:
        raw = {
            "id": data.get("eventId") or generate_id(),
            "type": event_type.value,
            "timestamp": timestamp,
            "sequence": sequence,
            "periodNumber": data.get("periodNumber"),
            "data": data,
            "undone": False,
            "relatedEventId": data.get("relatedEventId"),
        }
        problems = validate_event(raw)
        if problems:
            raise EventValidationFailed(problems)

        if event_type == EventType.MATCH_START:
            raw["matchTime"] = ZERO_MATCH_TIME
        else:
            raw["matchTime"] = match_time_of(timestamp, self._match_start_time)

        try:
            return MatchEvent.model_validate(raw)
        except ValidationError as e:
            problems = [f"Invalid {'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors()]
            raise EventValidationFailed(problems) from e

    # --- Mutations ---

    def append(
        self,
        event_type: EventType | str,
        data: Mapping[str, Any] | None = None,
        custom_timestamp: int | None = None,
    ) -> MatchEvent:
        """Append a new event.

        An ``eventId`` in ``data`` is used as the event id; if an event with
        that id already exists it is replaced by the new record.

        Args:
            event_type: Member (or value) of EventType
            data: Type-specific payload; ``goalScorers`` and ``corrections``
                  entries are merged into the snapshot's auxiliary maps
            custom_timestamp: When the event actually happened (default: now)

        Raises:
            InvalidEventType: Type is not in the enumeration
            EventValidationFailed: The constructed event is malformed or
                would precede the last stored event
            PersistenceWriteFailed: The snapshot could not be written; the
                store is unchanged
        """
        parsed_type = EventType.parse(event_type)
        if parsed_type is None:
            raise InvalidEventType(event_type)

        data = copy.deepcopy(dict(data or {}))
        timestamp = self._clock() if custom_timestamp is None else custom_timestamp
        sequence = self._sequence + 1
        event = self._build_event(parsed_type, data, timestamp, sequence)

        remaining = [e for e in self._events if e.id != event.id]
        if remaining and event.timestamp < remaining[-1].timestamp:
            raise EventValidationFailed(
                [f"Timestamp {event.timestamp} precedes last event {remaining[-1].id}"]
            )
        if len(remaining) != len(self._events):
            logger.info(f"Replacing existing event {event.id}")

        goal_scorers = dict(self._goal_scorers)
        corrections = dict(self._corrections)
        if isinstance(data.get("goalScorers"), Mapping):
            goal_scorers.update(data["goalScorers"])
        if isinstance(data.get("corrections"), Mapping):
            corrections.update(data["corrections"])
        anchor = event.timestamp if parsed_type == EventType.MATCH_START else None

        if not self._commit(
            remaining + [event],
            sequence=sequence,
            match_start_time=anchor,
            goal_scorers=goal_scorers,
            corrections=corrections,
        ):
            logger.error(f"Failed to save {parsed_type.value} event to storage")
            raise PersistenceWriteFailed("append", event.id)

        self.bus.notify(EVENTS_SAVED, self._saved_payload())
        return event.model_copy(deep=True)

    def remove_by_id(self, event_id: str) -> bool:
        """Hard-delete an event. Returns False if absent or not persisted."""
        index = self._index_of(event_id)
        if index is None:
            logger.warning(f"Event not found for removal: {event_id}")
            return False

        removed = self._events[index]
        if not self._commit(self._events[:index] + self._events[index + 1:]):
            return False

        payload = self._saved_payload()
        payload["removed_event"] = removed.model_copy(deep=True)
        self.bus.notify(EVENT_REMOVED, payload)
        return True

    def _replace_at(self, index: int, event: MatchEvent) -> bool:
        events = list(self._events)
        events[index] = event
        if not self._commit(events):
            return False
        self.bus.notify(EVENTS_SAVED, self._saved_payload())
        return True

    def mark_undone(self, event_id: str, reason: str = DEFAULT_UNDO_REASON) -> bool:
        """Retract an event without deleting it. Returns False if absent or not persisted."""
        index = self._index_of(event_id)
        if index is None:
            logger.warning(f"Event not found for undo marking: {event_id}")
            return False

        event = self._events[index].model_copy(
            update={"undone": True, "undo_timestamp": self._clock(), "undo_reason": reason}
        )
        return self._replace_at(index, event)

    def patch_data(self, event_id: str, partial: Mapping[str, Any]) -> bool:
        """Shallow-merge ``partial`` into an event's data; nothing else changes."""
        index = self._index_of(event_id)
        if index is None:
            logger.warning(f"Event not found for data update: {event_id}")
            return False

        current = self._events[index]
        event = current.model_copy(update={"data": {**current.data, **copy.deepcopy(dict(partial))}})
        return self._replace_at(index, event)

    def clear(self) -> bool:
        """Remove every event and the persisted snapshot."""
        if not self.persistence.clear():
            return False
        self._reset()
        self.bus.notify(EVENTS_CLEARED, {"events": []})
        return True

    def restore(self, snapshot: StoreSnapshot) -> bool:
        """Replace the whole store with a snapshot (used by crash recovery)."""
        if not self.persistence.write_snapshot(snapshot):
            return False
        self._rehydrate(snapshot)
        self.bus.notify(EVENTS_SAVED, self._saved_payload())
        return True

    # --- Loading ---

    def _rehydrate(self, snapshot: StoreSnapshot) -> None:
        self._reset()
        self._events = list(snapshot.events)
        self._sequence = max(
            [snapshot.metadata.last_sequence] + [e.sequence for e in snapshot.events]
        )
        if snapshot.match_id:
            self._match_id = snapshot.match_id
        self._created = snapshot.created
        self._goal_scorers = dict(snapshot.goal_scorers)
        self._corrections = dict(snapshot.corrections)

        starts = [e for e in self._events if e.type == EventType.MATCH_START]
        if starts:
            self._match_start_time = starts[-1].timestamp

    def load(self) -> StoreSnapshot | None:
        """Rehydrate from persistence.

        Returns None when nothing is stored. A corrupted snapshot comes back
        empty and leaves the store empty; the damaged blob stays in storage
        until the next write so it can still be recovered.
        """
        snapshot = self.persistence.load()
        if snapshot is None:
            return None
        self._rehydrate(snapshot)
        logger.info(f"Loaded {len(self._events)} events for match {self._match_id}")
        return snapshot

    # --- Queries ---

    def query(
        self,
        include_undone: bool = False,
        event_types: Iterable[EventType | str] | None = None,
        start_time: int | None = None,
        end_time: int | None = None,
    ) -> list[MatchEvent]:
        """Filter the in-memory list. Undone events are excluded by default."""
        types = {EventType.parse(t) for t in event_types} if event_types is not None else None
        result = []
        for event in self._events:
            if event.undone and not include_undone:
                continue
            if types is not None and event.type not in types:
                continue
            if start_time is not None and event.timestamp < start_time:
                continue
            if end_time is not None and event.timestamp > end_time:
                continue
            result.append(event)
        return self._copies(result)

    def get_by_id(self, event_id: str) -> MatchEvent | None:
        index = self._index_of(event_id)
        return None if index is None else self._events[index].model_copy(deep=True)

    def get_all(self, include_undone: bool = True) -> list[MatchEvent]:
        """Full list including undone events, for recovery and debugging."""
        return self.query(include_undone=include_undone)

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        return self.bus.subscribe(callback)
