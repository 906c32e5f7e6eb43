"""Core data models for the match event log.

Uses Pydantic v2 for validation, ULID for sortable unique IDs. Field names
are snake_case in Python and camelCase on the wire, so persisted snapshots
keep the shape the coaching app has always written.
"""

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from ulid import ULID

from .constants import EVENT_ID_PREFIX, SNAPSHOT_VERSION, ZERO_MATCH_TIME


def generate_id(prefix: str = EVENT_ID_PREFIX) -> str:
    """Generate a prefixed ULID (sortable, unique identifier)."""
    return f"{prefix}{ULID()}"


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return time.time_ns() // 1_000_000


class EventType(str, Enum):
    """Closed set of things that can happen during a match."""

    # Match lifecycle
    MATCH_START = "match_start"
    MATCH_END = "match_end"
    MATCH_ABANDONED = "match_abandoned"
    MATCH_SUSPENDED = "match_suspended"

    # Periods
    PERIOD_START = "period_start"
    PERIOD_END = "period_end"
    PERIOD_PAUSED = "period_paused"
    PERIOD_RESUMED = "period_resumed"
    INTERMISSION = "intermission"

    # Players and roster
    SUBSTITUTION = "substitution"
    SUBSTITUTION_UNDONE = "substitution_undone"
    GOALIE_SWITCH = "goalie_switch"
    GOALIE_ASSIGNMENT = "goalie_assignment"
    POSITION_CHANGE = "position_change"
    FAIR_PLAY_AWARD = "fair_play_award"
    PLAYER_INACTIVATED = "player_inactivated"
    PLAYER_ACTIVATED = "player_activated"

    # Scoring
    GOAL_SCORED = "goal_scored"
    GOAL_CONCEDED = "goal_conceded"
    GOAL_CORRECTED = "goal_corrected"
    GOAL_UNDONE = "goal_undone"

    # Timer
    TIMER_PAUSED = "timer_paused"
    TIMER_RESUMED = "timer_resumed"
    TECHNICAL_TIMEOUT = "technical_timeout"

    @classmethod
    def parse(cls, value: object) -> "EventType | None":
        """Return the matching member, or None for anything outside the enumeration."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


PAUSE_TYPES = frozenset({EventType.TIMER_PAUSED, EventType.PERIOD_PAUSED})
RESUME_TYPES = frozenset({EventType.TIMER_RESUMED, EventType.PERIOD_RESUMED})
# Goals that move the running score
SCORING_TYPES = frozenset({EventType.GOAL_SCORED, EventType.GOAL_CONCEDED})


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ─────────────────────────────────────────────────────────────────────────────
# Typed payloads
# ─────────────────────────────────────────────────────────────────────────────


class EventPayload(_CamelModel):
    """Base for typed views over an event's ``data`` dict.

    Extra keys are kept so a payload never hides data the UI stored.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class GoalPayload(EventPayload):
    own_score: int | None = None
    opponent_score: int | None = None
    scorer_id: str | None = None


class SubstitutionPayload(EventPayload):
    players_off: list[str] = Field(default_factory=list)
    players_on: list[str] = Field(default_factory=list)
    new_roles: dict[str, str] = Field(default_factory=dict)


class GoalieSwitchPayload(EventPayload):
    old_goalie: str | None = None
    new_goalie: str | None = None


class MatchStartPayload(EventPayload):
    # position -> player id, or position group -> {position: player id}
    starting_formation: dict[str, Any] = Field(default_factory=dict)
    player_roles: dict[str, str] = Field(default_factory=dict)


class PeriodPayload(EventPayload):
    period_number: int | None = None


PAYLOAD_MODELS: dict[EventType, type[EventPayload]] = {
    EventType.MATCH_START: MatchStartPayload,
    EventType.PERIOD_START: PeriodPayload,
    EventType.PERIOD_END: PeriodPayload,
    EventType.SUBSTITUTION: SubstitutionPayload,
    EventType.SUBSTITUTION_UNDONE: SubstitutionPayload,
    EventType.GOALIE_SWITCH: GoalieSwitchPayload,
    EventType.GOAL_SCORED: GoalPayload,
    EventType.GOAL_CONCEDED: GoalPayload,
    EventType.GOAL_CORRECTED: GoalPayload,
}


def payload_model_for(event_type: EventType) -> type[EventPayload] | None:
    """Typed payload model for an event type, if one is defined."""
    return PAYLOAD_MODELS.get(event_type)


# ─────────────────────────────────────────────────────────────────────────────
# Events and snapshots
# ─────────────────────────────────────────────────────────────────────────────


class MatchEvent(_CamelModel):
    """An immutable, sequenced record in the match event log."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    type: EventType
    timestamp: int  # ms since epoch
    match_time: str = ZERO_MATCH_TIME  # frozen at append time
    period_number: int | None = None
    sequence: int
    data: dict[str, Any] = Field(default_factory=dict)
    undone: bool = False
    undo_timestamp: int | None = None
    undo_reason: str | None = None
    related_event_id: str | None = None

    def payload(self) -> EventPayload | None:
        """Parse ``data`` into the typed payload for this event type."""
        model = payload_model_for(self.type)
        if model is None:
            return None
        return model.model_validate(self.data)

    def to_dict(self) -> dict:
        """Serialize for JSON storage. Undo fields only appear on undone events."""
        exclude = None if self.undone else {"undo_timestamp", "undo_reason"}
        return self.model_dump(mode="json", by_alias=True, exclude=exclude)


class SnapshotMetadata(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    event_count: int = 0
    last_sequence: int = 0


class StoreSnapshot(_CamelModel):
    """The persisted envelope around a match's full event list."""

    match_id: str | None = None
    version: str = SNAPSHOT_VERSION
    created: int | None = None
    last_updated: int | None = None
    checksum: str = ""
    events: list[MatchEvent] = Field(default_factory=list)
    goal_scorers: dict[str, Any] = Field(default_factory=dict)
    corrections: dict[str, Any] = Field(default_factory=dict)
    metadata: SnapshotMetadata = Field(default_factory=SnapshotMetadata)

    # Set only on snapshots rebuilt by recovery
    recovered: bool = False
    recovery_timestamp: int | None = None

    @property
    def is_empty(self) -> bool:
        return not self.events

    def to_dict(self) -> dict:
        """Serialize for JSON storage (the dict the checksum is computed over)."""
        exclude = {"events"}
        if not self.recovered:
            exclude |= {"recovered", "recovery_timestamp"}
        data = self.model_dump(mode="json", by_alias=True, exclude=exclude)
        data["events"] = [event.to_dict() for event in self.events]
        return data
