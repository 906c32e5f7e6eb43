"""Event validation and crash recovery.

Validation functions accept either MatchEvent objects or the raw dicts
found in a persisted snapshot, so the same checks run before and after
parsing. Recovery is a separate, explicit operation: normal loading
refuses damaged data outright, recovery tries to salvage what it can.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import ValidationError

from .checksum import snapshot_checksum, verify_checksum
from .constants import MATCH_ID_PREFIX, SNAPSHOT_VERSION, TIME_CONSISTENCY_TOLERANCE_MS
from .models import EventType, MatchEvent, SnapshotMetadata, StoreSnapshot, generate_id, now_ms
from .stats import player_time_totals, validate_player_time_consistency
from .timing import effective_playing_time

logger = logging.getLogger(__name__)

EventLike = MatchEvent | Mapping[str, Any]


class IssueKind(Enum):
    CHRONOLOGY = "chronology_error"
    TIME_INCONSISTENCY = "time_inconsistency"
    PLAYER_TIME_MISMATCH = "player_time_mismatch"
    SEQUENCE_GAP = "sequence_gap"
    SEQUENCE_ORDER = "sequence_order"
    DUPLICATE_EVENT = "duplicate_event"
    MISSING_DATA = "missing_data"
    CORRUPTED_EVENT = "corrupted_event"


@dataclass
class ValidationIssue:
    """A single problem found in an event list."""

    kind: IssueKind
    message: str
    severity: str  # critical | high | medium
    data: list[Any] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "type": self.kind.value,
            "message": self.message,
            "severity": self.severity,
        }


def _get(event: EventLike, name: str) -> Any:
    if isinstance(event, Mapping):
        return event.get(name)
    return getattr(event, name, None)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_event(event: EventLike) -> list[str]:
    """Structural check of one event. Returns a list of problems (empty if valid).

    Only id, type, timestamp and sequence are checked; the ``data`` payload
    is type-specific and left alone here.
    """
    problems = []
    if not _get(event, "id"):
        problems.append("Event missing id")
    if EventType.parse(_get(event, "type")) is None:
        problems.append("Invalid event type")
    timestamp = _get(event, "timestamp")
    if not timestamp or not _is_number(timestamp):
        problems.append("Invalid timestamp")
    if not _is_number(_get(event, "sequence")):
        problems.append("Invalid sequence number")
    return problems


def validate_sequence(events: Sequence[EventLike]) -> bool:
    """True if timestamps never decrease and sequence numbers strictly increase."""
    for prev, curr in zip(events, events[1:]):
        try:
            if _get(curr, "timestamp") < _get(prev, "timestamp"):
                logger.warning(
                    f"Events not in chronological order: {_get(prev, 'id')}, {_get(curr, 'id')}"
                )
                return False
            if _get(curr, "sequence") <= _get(prev, "sequence"):
                logger.warning(
                    f"Event sequence numbers not increasing: "
                    f"{_get(prev, 'sequence')}, {_get(curr, 'sequence')}"
                )
                return False
        except TypeError:
            logger.warning(f"Event {_get(curr, 'id')} has non-numeric timestamp or sequence")
            return False
    return True


def events_are_chronological(events: Sequence[EventLike]) -> bool:
    """True if timestamps never decrease in stored order."""
    timestamps = [_get(e, "timestamp") for e in events]
    if not all(_is_number(t) for t in timestamps):
        return False
    return all(b >= a for a, b in zip(timestamps, timestamps[1:]))


def sequence_is_increasing(events: Sequence[EventLike]) -> bool:
    """True if sequence numbers strictly increase in stored order."""
    sequences = [_get(e, "sequence") for e in events]
    if not all(_is_number(s) for s in sequences):
        return False
    return all(b > a for a, b in zip(sequences, sequences[1:]))


def has_sequence_gaps(events: Iterable[EventLike]) -> bool:
    """True if the sorted sequence numbers skip any value."""
    sequences = sorted(s for s in (_get(e, "sequence") for e in events) if _is_number(s))
    return any(b - a > 1 for a, b in zip(sequences, sequences[1:]))


def find_duplicate_events(events: Iterable[EventLike]) -> list[EventLike]:
    """Every event whose id was already seen earlier in the list."""
    seen: set = set()
    duplicates = []
    for event in events:
        event_id = _get(event, "id")
        if event_id in seen:
            duplicates.append(event)
        else:
            seen.add(event_id)
    return duplicates


def validate_match_data(
    events: Any,
    expected_effective_time: int | None = None,
    players: Iterable[Mapping[str, Any]] | None = None,
    now: int | None = None,
) -> list[ValidationIssue]:
    """Run every integrity check over an event list.

    Args:
        events: Event list (MatchEvent objects or raw dicts)
        expected_effective_time: Effective playing time the UI recorded, in ms
        players: Player records with recorded stats, for time consistency checks
        now: Reference time for an ongoing match

    Returns:
        All issues found; an empty list means the data is sound.
    """
    if not isinstance(events, Sequence) or isinstance(events, (str, bytes)):
        return [ValidationIssue(IssueKind.CORRUPTED_EVENT, "Events is not a list", "critical")]

    issues: list[ValidationIssue] = []

    if not events_are_chronological(events):
        issues.append(ValidationIssue(IssueKind.CHRONOLOGY, "Events not in chronological order", "high"))

    if has_sequence_gaps(events):
        issues.append(
            ValidationIssue(IssueKind.SEQUENCE_GAP, "Gaps found in event sequence numbers", "medium")
        )

    if not sequence_is_increasing(events):
        issues.append(
            ValidationIssue(IssueKind.SEQUENCE_ORDER, "Event sequence numbers repeat or go backwards", "high")
        )

    duplicates = find_duplicate_events(events)
    if duplicates:
        issues.append(
            ValidationIssue(
                IssueKind.DUPLICATE_EVENT,
                f"Found {len(duplicates)} duplicate events",
                "high",
                data=list(duplicates),
            )
        )

    for index, event in enumerate(events):
        if not isinstance(event, (MatchEvent, Mapping)):
            issues.append(
                ValidationIssue(IssueKind.CORRUPTED_EVENT, f"Event at index {index} is not an object", "critical")
            )
            continue
        if not _get(event, "id"):
            issues.append(ValidationIssue(IssueKind.MISSING_DATA, f"Event at index {index} missing id", "high"))
        if EventType.parse(_get(event, "type")) is None:
            issues.append(
                ValidationIssue(
                    IssueKind.CORRUPTED_EVENT,
                    f"Event at index {index} has invalid type: {_get(event, 'type')}",
                    "high",
                )
            )
        timestamp = _get(event, "timestamp")
        if not timestamp or not _is_number(timestamp):
            issues.append(
                ValidationIssue(
                    IssueKind.CORRUPTED_EVENT, f"Event at index {index} has invalid timestamp", "critical"
                )
            )

    # Derived-time checks need parsed events
    if expected_effective_time is not None or players is not None:
        parsed = [e for e in events if isinstance(e, MatchEvent)]
        if len(parsed) == len(events):
            if expected_effective_time:
                calculated = effective_playing_time(parsed, now=now)
                if abs(calculated - expected_effective_time) > TIME_CONSISTENCY_TOLERANCE_MS:
                    issues.append(
                        ValidationIssue(
                            IssueKind.TIME_INCONSISTENCY,
                            f"Playing time calculation inconsistent: calculated {calculated}ms, "
                            f"expected {expected_effective_time}ms",
                            "medium",
                        )
                    )
            if players is not None and not validate_player_time_consistency(
                player_time_totals(parsed), players
            ):
                issues.append(
                    ValidationIssue(
                        IssueKind.PLAYER_TIME_MISMATCH,
                        "Player time statistics inconsistent with events",
                        "medium",
                    )
                )

    return issues


# ─────────────────────────────────────────────────────────────────────────────
# Recovery
# ─────────────────────────────────────────────────────────────────────────────


def _is_well_formed(event: Any) -> bool:
    if not isinstance(event, Mapping):
        return False
    timestamp = event.get("timestamp")
    return (
        bool(event.get("id"))
        and EventType.parse(event.get("type")) is not None
        and bool(timestamp)
        and _is_number(timestamp)
    )


def recover_corrupted_events(raw_events: Any) -> list[MatchEvent]:
    """Best-effort reconstruction of a damaged event list.

    Keeps individually well-formed events, sorts them by timestamp, drops
    repeated ids (first occurrence wins) and renumbers sequences 1..N.
    """
    if not isinstance(raw_events, Sequence) or isinstance(raw_events, (str, bytes)):
        logger.error("Cannot recover: events is not a list")
        return []

    candidates = [
        e.to_dict() if isinstance(e, MatchEvent) else e
        for e in raw_events
        if isinstance(e, MatchEvent) or _is_well_formed(e)
    ]
    candidates.sort(key=lambda e: e["timestamp"])

    seen: set[str] = set()
    parsed: list[MatchEvent] = []
    for raw in candidates:
        if raw["id"] in seen:
            continue
        try:
            event = MatchEvent.model_validate({**raw, "sequence": 0})
        except ValidationError as e:
            logger.warning(f"Dropping unrecoverable event {raw['id']}: {e}")
            continue
        seen.add(raw["id"])
        parsed.append(event)

    recovered = [event.model_copy(update={"sequence": n}) for n, event in enumerate(parsed, start=1)]
    dropped = len(raw_events) - len(recovered)
    if dropped:
        logger.warning(f"Recovered {len(recovered)} events, dropped {dropped}")
    return recovered


def recover_snapshot(
    raw: str | None, clock: Callable[[], int] = now_ms
) -> StoreSnapshot | None:
    """Try to repair a persisted snapshot blob.

    Sound data (valid checksum, no validation issues) is returned unchanged.
    Otherwise the events are rebuilt with recover_corrupted_events() and a
    fresh snapshot is returned with ``recovered=True``. Returns None when
    nothing can be salvaged.
    """
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.error(f"Crash recovery failed, snapshot is not JSON: {e}")
        return None
    if not isinstance(data, dict):
        logger.error("Crash recovery failed, snapshot is not an object")
        return None

    raw_events = data.get("events")
    if verify_checksum(data) and not validate_match_data(raw_events):
        try:
            return StoreSnapshot.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Snapshot passed integrity checks but failed to parse: {e}")

    events = recover_corrupted_events(raw_events)
    if not events:
        logger.warning("No recoverable events found in stored snapshot")
        return None

    now = clock()
    match_id = data.get("matchId")
    created = data.get("created")
    goal_scorers = data.get("goalScorers")
    corrections = data.get("corrections")
    snapshot = StoreSnapshot(
        match_id=match_id if isinstance(match_id, str) and match_id else generate_id(MATCH_ID_PREFIX),
        version=SNAPSHOT_VERSION,
        created=int(created) if _is_number(created) else now,
        last_updated=now,
        events=events,
        goal_scorers=goal_scorers if isinstance(goal_scorers, dict) else {},
        corrections=corrections if isinstance(corrections, dict) else {},
        metadata=SnapshotMetadata(event_count=len(events), last_sequence=len(events)),
        recovered=True,
        recovery_timestamp=now,
    )
    return snapshot.model_copy(update={"checksum": snapshot_checksum(snapshot.to_dict())})
