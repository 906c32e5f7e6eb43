"""Per-player statistics derived from the event stream.

Provides:
- normalize_role(): map any role spelling onto PlayerRole
- player_time_totals(): time on field and time in each role per player
- validate_player_time_consistency(): compare derived totals with recorded stats
- score_timeline(): running score recomputed from active goal events
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from pydantic import ValidationError

from .constants import MS_PER_SECOND, TIME_CONSISTENCY_TOLERANCE_MS
from .models import (
    SCORING_TYPES,
    EventType,
    GoalieSwitchPayload,
    MatchEvent,
    MatchStartPayload,
    SubstitutionPayload,
)

logger = logging.getLogger(__name__)


class PlayerRole(Enum):
    GOALIE = "GOALIE"
    DEFENDER = "DEFENDER"
    ATTACKER = "ATTACKER"
    MIDFIELDER = "MIDFIELDER"
    SUBSTITUTE = "SUBSTITUTE"
    FIELD_PLAYER = "FIELD_PLAYER"
    UNKNOWN = "UNKNOWN"


_ROLE_ALIASES = {
    "goalie": PlayerRole.GOALIE,
    "goalkeeper": PlayerRole.GOALIE,
    "defender": PlayerRole.DEFENDER,
    "attacker": PlayerRole.ATTACKER,
    "midfielder": PlayerRole.MIDFIELDER,
    "substitute": PlayerRole.SUBSTITUTE,
    "field": PlayerRole.FIELD_PLAYER,
    "field_player": PlayerRole.FIELD_PLAYER,
    "unknown": PlayerRole.UNKNOWN,
}


def normalize_role(value: object) -> PlayerRole:
    """Normalize a role in any case or format to a PlayerRole."""
    if isinstance(value, PlayerRole):
        return value
    if not value:
        return PlayerRole.UNKNOWN

    text = str(value).strip()
    role = _ROLE_ALIASES.get(text.lower().replace(" ", "_"))
    if role is None:
        logger.warning(f"Could not normalize role {value!r}, defaulting to UNKNOWN")
        return PlayerRole.UNKNOWN
    return role


@dataclass
class PlayerTimes:
    """Accumulated milliseconds for one player."""

    time_on_field: int = 0
    time_as_goalie: int = 0
    time_as_defender: int = 0
    time_as_attacker: int = 0
    time_as_sub: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


_ROLE_BUCKETS = {
    PlayerRole.GOALIE: "time_as_goalie",
    PlayerRole.DEFENDER: "time_as_defender",
    PlayerRole.ATTACKER: "time_as_attacker",
    PlayerRole.SUBSTITUTE: "time_as_sub",
}


@dataclass
class _Stint:
    start_time: int
    role: PlayerRole
    on_field: bool = True


def _formation_player_ids(formation: Mapping[str, Any]) -> list[str]:
    """Flatten a formation (positions, possibly grouped in pairs) to player ids."""
    ids: list[str] = []
    for value in formation.values():
        if isinstance(value, Mapping):
            ids.extend(_formation_player_ids(value))
        elif isinstance(value, str) and value:
            ids.append(value)
    return ids


class _StintTracker:
    def __init__(self) -> None:
        self.totals: dict[str, PlayerTimes] = {}
        self.stints: dict[str, _Stint] = {}

    def start(self, player_id: str, at: int, role: object) -> None:
        self.totals.setdefault(player_id, PlayerTimes())
        # A player already on the pitch changing role closes the old stint first
        self.end(player_id, at)
        self.stints[player_id] = _Stint(start_time=at, role=normalize_role(role))

    def end(self, player_id: str, at: int) -> None:
        stint = self.stints.pop(player_id, None)
        if stint is None:
            return
        duration = max(0, at - stint.start_time)
        times = self.totals[player_id]
        if stint.on_field:
            times.time_on_field += duration
        bucket = _ROLE_BUCKETS.get(stint.role)
        if bucket:
            setattr(times, bucket, getattr(times, bucket) + duration)

    def end_all(self, at: int) -> None:
        for player_id in list(self.stints):
            self.end(player_id, at)


def player_time_totals(events: Iterable[MatchEvent]) -> dict[str, PlayerTimes]:
    """Replay stints from match start, substitutions and goalie switches.

    Stints close on substitution off, goalie switch and match end. Stints
    still open (match in progress) are not counted. Undone events are
    ignored.
    """
    tracker = _StintTracker()
    ordered = sorted((e for e in events if not e.undone), key=lambda e: (e.timestamp, e.sequence))

    for event in ordered:
        try:
            payload = event.payload()
        except ValidationError as e:
            logger.warning(f"Skipping event {event.id} with malformed {event.type.value} data: {e}")
            continue

        if isinstance(payload, MatchStartPayload):
            for player_id in _formation_player_ids(payload.starting_formation):
                tracker.start(player_id, event.timestamp, payload.player_roles.get(player_id))

        elif event.type == EventType.SUBSTITUTION and isinstance(payload, SubstitutionPayload):
            for player_id in payload.players_off:
                tracker.end(player_id, event.timestamp)
            for player_id in payload.players_on:
                tracker.start(player_id, event.timestamp, payload.new_roles.get(player_id))

        elif isinstance(payload, GoalieSwitchPayload):
            if payload.old_goalie:
                tracker.end(payload.old_goalie, event.timestamp)
            if payload.new_goalie:
                tracker.start(payload.new_goalie, event.timestamp, PlayerRole.GOALIE)

        elif event.type == EventType.MATCH_END:
            tracker.end_all(event.timestamp)

    return tracker.totals


_STAT_FIELDS = {
    "time_on_field": "timeOnFieldSeconds",
    "time_as_goalie": "timeAsGoalieSeconds",
    "time_as_defender": "timeAsDefenderSeconds",
    "time_as_attacker": "timeAsAttackerSeconds",
    "time_as_sub": "timeAsSubSeconds",
}


def validate_player_time_consistency(
    totals: Mapping[str, PlayerTimes],
    players: Iterable[Mapping[str, Any]],
    tolerance_ms: int = TIME_CONSISTENCY_TOLERANCE_MS,
) -> bool:
    """Check derived totals against the stats recorded on each player.

    Args:
        totals: Output of player_time_totals()
        players: Player records shaped like ``{"id": ..., "stats": {"timeOnFieldSeconds": ...}}``
        tolerance_ms: Allowed difference per figure

    Returns:
        False on the first figure outside the tolerance.
    """
    tolerance_seconds = tolerance_ms / MS_PER_SECOND
    for player in players:
        player_id = player.get("id")
        calculated = totals.get(player_id)
        recorded = player.get("stats")
        if calculated is None or not recorded:
            continue

        for field, stat_name in _STAT_FIELDS.items():
            derived = getattr(calculated, field) / MS_PER_SECOND
            actual = recorded.get(stat_name) or 0
            if abs(derived - actual) > tolerance_seconds:
                logger.warning(
                    f"{field} mismatch for player {player_id}: calculated {derived}s, recorded {actual}s"
                )
                return False

    return True


def score_timeline(events: Iterable[MatchEvent]) -> list[tuple[str, int, int]]:
    """Running (event_id, own, opponent) score after each active goal."""
    own = opponent = 0
    timeline = []
    for event in sorted(events, key=lambda e: e.sequence):
        if event.undone or event.type not in SCORING_TYPES:
            continue
        if event.type == EventType.GOAL_SCORED:
            own += 1
        else:
            opponent += 1
        timeline.append((event.id, own, opponent))
    return timeline
