"""Tests for event validation and crash recovery."""

import json

from matchlog.checksum import verify_checksum
from matchlog.models import EventType
from matchlog.persistence import SnapshotPersistence
from matchlog.storage import MemoryStorage
from matchlog.validation import (
    IssueKind,
    events_are_chronological,
    find_duplicate_events,
    has_sequence_gaps,
    recover_corrupted_events,
    recover_snapshot,
    sequence_is_increasing,
    validate_event,
    validate_match_data,
    validate_sequence,
)

from conftest import KICKOFF, FakeClock, make_event


def _raw(id, type="goal_scored", offset=0, sequence=1, **extra):
    return {"id": id, "type": type, "timestamp": KICKOFF + offset, "sequence": sequence, **extra}


def _kinds(issues):
    return {issue.kind for issue in issues}


class TestValidateEvent:
    def test_valid_event(self):
        assert validate_event(make_event(EventType.MATCH_START, 0, 1)) == []
        assert validate_event(_raw("e1")) == []

    def test_missing_id(self):
        assert validate_event(_raw("")) == ["Event missing id"]

    def test_invalid_type(self):
        assert validate_event(_raw("e1", type="NOT_A_REAL_TYPE")) == ["Invalid event type"]

    def test_invalid_timestamp(self):
        assert validate_event({**_raw("e1"), "timestamp": 0}) == ["Invalid timestamp"]
        assert validate_event({**_raw("e1"), "timestamp": "yesterday"}) == ["Invalid timestamp"]

    def test_invalid_sequence(self):
        assert validate_event({**_raw("e1"), "sequence": "1"}) == ["Invalid sequence number"]

    def test_reports_every_problem(self):
        assert len(validate_event({})) == 4


class TestValidateSequence:
    def test_ordered(self):
        events = [make_event(EventType.MATCH_START, 0, 1), make_event(EventType.GOAL_SCORED, 0, 2)]
        assert validate_sequence(events)

    def test_empty_and_single(self):
        assert validate_sequence([])
        assert validate_sequence([make_event(EventType.MATCH_START, 0, 1)])

    def test_out_of_order_timestamp(self):
        events = [make_event(EventType.MATCH_START, 10, 1), make_event(EventType.GOAL_SCORED, 5, 2)]
        assert not validate_sequence(events)

    def test_duplicated_sequence(self):
        events = [make_event(EventType.MATCH_START, 0, 1), make_event(EventType.GOAL_SCORED, 5, 1, id="e2")]
        assert not validate_sequence(events)

    def test_raw_dicts(self):
        assert validate_sequence([_raw("a", sequence=1), _raw("b", offset=5, sequence=2)])
        assert not validate_sequence([_raw("a", sequence=1), {"id": "b", "timestamp": None, "sequence": 2}])


def test_chronology_gap_and_duplicate_helpers():
    events = [_raw("a", sequence=1), _raw("b", offset=10, sequence=2), _raw("a", offset=5, sequence=4)]

    assert not events_are_chronological(events)
    assert has_sequence_gaps(events)
    assert find_duplicate_events(events) == [events[2]]

    assert events_are_chronological(events[:2])
    assert not has_sequence_gaps(events[:2])
    assert find_duplicate_events(events[:2]) == []


class TestValidateMatchData:
    def test_clean_data(self):
        events = [make_event(EventType.MATCH_START, 0, 1), make_event(EventType.MATCH_END, 60_000, 2)]
        assert validate_match_data(events) == []

    def test_not_a_list(self):
        issues = validate_match_data({"events": []})
        assert len(issues) == 1
        assert issues[0].kind == IssueKind.CORRUPTED_EVENT
        assert issues[0].severity == "critical"

    def test_each_problem_kind(self):
        events = [
            _raw("a", sequence=1),
            _raw("b", offset=-5, sequence=3),
            _raw("a", offset=10, sequence=4),
            _raw("", offset=20, sequence=5),
            _raw("c", type="bogus", offset=30, sequence=6),
            {**_raw("d", sequence=7), "timestamp": "soon"},
        ]
        kinds = _kinds(validate_match_data(events))
        assert kinds == {
            IssueKind.CHRONOLOGY,
            IssueKind.SEQUENCE_GAP,
            IssueKind.DUPLICATE_EVENT,
            IssueKind.MISSING_DATA,
            IssueKind.CORRUPTED_EVENT,
        }

    def test_repeated_or_reversed_sequence(self):
        repeated = [_raw("a", sequence=1), _raw("b", offset=10, sequence=1)]
        reversed_ = [_raw("a", sequence=2), _raw("b", offset=10, sequence=1)]

        # Sorted, neither list has a gap
        assert not has_sequence_gaps(repeated)
        assert not has_sequence_gaps(reversed_)
        assert _kinds(validate_match_data(repeated)) == {IssueKind.SEQUENCE_ORDER}
        assert _kinds(validate_match_data(reversed_)) == {IssueKind.SEQUENCE_ORDER}
        assert sequence_is_increasing([_raw("a", sequence=1), _raw("b", offset=10, sequence=3)])

    def test_duplicates_listed(self):
        events = [_raw("a", sequence=1), _raw("a", offset=1, sequence=2)]
        issue = next(i for i in validate_match_data(events) if i.kind == IssueKind.DUPLICATE_EVENT)
        assert issue.data == [events[1]]
        assert issue.to_dict() == {"type": "duplicate_event", "message": "Found 1 duplicate events", "severity": "high"}

    def test_non_object_entry(self):
        issues = validate_match_data([_raw("a"), "garbage"])
        assert any("not an object" in i.message for i in issues)

    def test_effective_time_tolerance(self):
        events = [make_event(EventType.MATCH_START, 0, 1), make_event(EventType.MATCH_END, 150_000, 2)]

        assert validate_match_data(events, expected_effective_time=148_000) == []
        issues = validate_match_data(events, expected_effective_time=100_000)
        assert _kinds(issues) == {IssueKind.TIME_INCONSISTENCY}

    def test_player_time_consistency(self):
        events = [
            make_event(
                EventType.MATCH_START,
                0,
                1,
                data={"startingFormation": {"goalie": "p1"}, "playerRoles": {"p1": "GOALIE"}},
            ),
            make_event(EventType.MATCH_END, 60_000, 2),
        ]
        consistent = [{"id": "p1", "stats": {"timeOnFieldSeconds": 60, "timeAsGoalieSeconds": 58}}]
        inconsistent = [{"id": "p1", "stats": {"timeOnFieldSeconds": 30, "timeAsGoalieSeconds": 60}}]

        assert validate_match_data(events, players=consistent) == []
        assert _kinds(validate_match_data(events, players=inconsistent)) == {IssueKind.PLAYER_TIME_MISMATCH}


class TestRecoverCorruptedEvents:
    def test_sorts_dedupes_and_resequences(self):
        raw = [
            _raw("a", offset=1000, sequence=7, data={"v": 1}),
            _raw("b", offset=3000, sequence=2),
            _raw("a", offset=2000, sequence=9, data={"v": 2}),
            _raw("c", offset=500, sequence=1),
        ]
        recovered = recover_corrupted_events(raw)

        assert [e.id for e in recovered] == ["c", "a", "b"]
        assert [e.sequence for e in recovered] == [1, 2, 3]
        assert recovered[1].data == {"v": 1}
        assert validate_sequence(recovered)

    def test_drops_malformed_entries(self):
        raw = [
            _raw("a", sequence=1),
            "not an event",
            {"type": "goal_scored", "timestamp": KICKOFF},
            _raw("b", type="bogus"),
            {**_raw("c"), "timestamp": None},
            _raw("d", offset=10, sequence=2),
        ]
        assert [e.id for e in recover_corrupted_events(raw)] == ["a", "d"]

    def test_not_a_list(self):
        assert recover_corrupted_events(None) == []
        assert recover_corrupted_events("events") == []


class TestRecoverSnapshot:
    def _stored(self, events):
        storage = MemoryStorage()
        persistence = SnapshotPersistence(storage, clock=FakeClock())
        persistence.save(events, match_id="match_1")
        return persistence.read_raw()

    def test_nothing_to_recover(self):
        assert recover_snapshot(None) is None
        assert recover_snapshot("") is None
        assert recover_snapshot("{broken") is None
        assert recover_snapshot("[]") is None

    def test_sound_snapshot_returned_unchanged(self):
        raw = self._stored([make_event(EventType.MATCH_START, 0, 1), make_event(EventType.MATCH_END, 10, 2)])
        snapshot = recover_snapshot(raw)

        assert not snapshot.recovered
        assert snapshot.to_dict() == json.loads(raw)

    def test_damaged_snapshot_rebuilt(self):
        data = json.loads(
            self._stored([make_event(EventType.MATCH_START, 0, 1), make_event(EventType.GOAL_SCORED, 10, 2)])
        )
        data["events"].append(data["events"][1])
        data["events"].append({"id": "broken"})

        clock = FakeClock(KICKOFF + 99_000)
        snapshot = recover_snapshot(json.dumps(data), clock=clock)

        assert snapshot.recovered
        assert snapshot.recovery_timestamp == KICKOFF + 99_000
        assert snapshot.match_id == "match_1"
        assert [e.sequence for e in snapshot.events] == [1, 2]
        assert snapshot.metadata.last_sequence == 2
        assert verify_checksum(snapshot.to_dict())

    def test_nothing_salvageable(self):
        raw = json.dumps({"events": [{"id": "x"}, "junk"], "checksum": "bad"})
        assert recover_snapshot(raw) is None
