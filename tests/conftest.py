"""Shared test fixtures and helpers for matchlog tests."""

import tempfile
from pathlib import Path

import pytest

from matchlog.engine import MatchLogger
from matchlog.events import EventStore
from matchlog.models import EventType, MatchEvent
from matchlog.persistence import SnapshotPersistence
from matchlog.storage import MemoryStorage

# Kick-off used throughout the tests (2024-06-10 06:13:20 UTC)
KICKOFF = 1_718_000_000_000


class FakeClock:
    """Settable epoch-ms clock."""

    def __init__(self, now: int = KICKOFF):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


# --- Fixtures ---


@pytest.fixture
def temp_store_dir():
    """Provide a temporary directory for match log storage.

    Yields a Path to a temporary directory that's cleaned up after the test.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock():
    """Provide a fake clock starting at KICKOFF."""
    return FakeClock()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def persistence(storage, clock):
    return SnapshotPersistence(storage, clock=clock)


@pytest.fixture
def store(persistence, clock):
    """Provide an empty EventStore over in-memory storage."""
    return EventStore(persistence, clock=clock)


@pytest.fixture
def match(storage, clock):
    """Provide a fresh MatchLogger over in-memory storage."""
    return MatchLogger(storage, clock=clock)


# --- Helper Functions (not fixtures) ---


def make_event(
    event_type: EventType,
    offset_ms: int,
    sequence: int,
    data: dict | None = None,
    undone: bool = False,
    id: str | None = None,
) -> MatchEvent:
    """Helper to create test events.

    Args:
        event_type: Type of the event
        offset_ms: Milliseconds after KICKOFF
        sequence: Sequence number
        data: Event data payload
        undone: Whether the event is retracted
        id: Event ID (default: derived from the sequence)

    Returns:
        A MatchEvent instance for testing.
    """
    return MatchEvent(
        id=id or f"evt_{sequence}",
        type=event_type,
        timestamp=KICKOFF + offset_ms,
        sequence=sequence,
        data=data or {},
        undone=undone,
    )
