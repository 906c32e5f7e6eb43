"""Tests for CLI commands."""

import json
import tempfile
from pathlib import Path

from click.testing import CliRunner

from matchlog.checksum import snapshot_checksum
from matchlog.cli import cli
from matchlog.constants import DEFAULT_STORAGE_KEY
from matchlog.engine import MatchLogger
from matchlog.models import EventType

from conftest import KICKOFF, FakeClock


runner = CliRunner()


def _seed(store_dir: Path, backend: str = "file") -> list:
    """Write a short match into the store and return its events."""
    clock = FakeClock()
    match = MatchLogger.open(store_dir, backend=backend, clock=clock)
    match.log_event(
        EventType.MATCH_START,
        {"startingFormation": {"goalie": "p1", "attack": "p2"}, "playerRoles": {"p1": "goalie", "p2": "attacker"}},
    )
    clock.advance(60_000)
    match.log_event(EventType.GOAL_SCORED, {"ownScore": 1, "opponentScore": 0, "scorerId": "p2"})
    clock.advance(60_000)
    match.log_event(EventType.GOAL_SCORED, {"ownScore": 2, "opponentScore": 0, "scorerId": "p2"})
    clock.advance(60_000)
    match.log_event(EventType.MATCH_END)
    events = match.get_all_events()
    match.close()
    return events


def _tamper(store_dir: Path) -> None:
    path = store_dir / f"{DEFAULT_STORAGE_KEY}.json"
    data = json.loads(path.read_text())
    data["checksum"] = "deadbeefdeadbeef"
    path.write_text(json.dumps(data))


def _invoke(store_dir, *args, **kwargs):
    return runner.invoke(cli, ["--store", str(store_dir), *args], **kwargs)


def test_events_empty():
    """Test events command with an empty store."""
    with tempfile.TemporaryDirectory() as tmpdir:
        result = _invoke(tmpdir, "events")
        assert result.exit_code == 0
        assert "No events found" in result.output


def test_events_json():
    """Test events command JSON output."""
    with tempfile.TemporaryDirectory() as tmpdir:
        seeded = _seed(Path(tmpdir))

        result = _invoke(tmpdir, "events", "--json")
        assert result.exit_code == 0
        listed = json.loads(result.stdout)
        assert [e["id"] for e in listed] == [e.id for e in seeded]
        assert listed[1]["matchTime"] == "01:00"


def test_events_table():
    """Test events command table output."""
    with tempfile.TemporaryDirectory() as tmpdir:
        _seed(Path(tmpdir))
        result = _invoke(tmpdir, "events")
        assert result.exit_code == 0
        assert "Match events (4)" in result.output


def test_events_filters():
    """Test filtering by type and time."""
    with tempfile.TemporaryDirectory() as tmpdir:
        _seed(Path(tmpdir))

        result = _invoke(tmpdir, "events", "--type", "goal_scored", "--json")
        assert [e["type"] for e in json.loads(result.stdout)] == ["goal_scored", "goal_scored"]

        result = _invoke(tmpdir, "events", "--since", str(KICKOFF + 100_000), "--json")
        assert [e["type"] for e in json.loads(result.stdout)] == ["goal_scored", "match_end"]


def test_events_bad_time_reference():
    with tempfile.TemporaryDirectory() as tmpdir:
        result = _invoke(tmpdir, "events", "--since", "definitely not a time")
        assert result.exit_code == 2


def test_log_event():
    """Test recording an event from the command line."""
    with tempfile.TemporaryDirectory() as tmpdir:
        result = _invoke(tmpdir, "log", "match_start")
        assert result.exit_code == 0
        assert "match_start" in result.output

        result = _invoke(tmpdir, "log", "goal_scored", "--data", '{"scorerId": "p7"}')
        assert result.exit_code == 0

        match = MatchLogger.open(Path(tmpdir))
        events = match.get_all_events()
        assert [e.sequence for e in events] == [1, 2]
        assert events[1].data == {"scorerId": "p7"}


def test_log_event_at_time():
    with tempfile.TemporaryDirectory() as tmpdir:
        result = _invoke(tmpdir, "log", "match_start", "--at", str(KICKOFF))
        assert result.exit_code == 0
        assert MatchLogger.open(Path(tmpdir)).get_match_start_time() == KICKOFF


def test_log_invalid_type():
    """Test that unknown event types fail without writing anything."""
    with tempfile.TemporaryDirectory() as tmpdir:
        result = _invoke(tmpdir, "log", "NOT_A_REAL_TYPE")
        assert result.exit_code == 1
        assert "Invalid event type" in result.output
        assert MatchLogger.open(Path(tmpdir)).get_all_events() == []


def test_log_invalid_data():
    with tempfile.TemporaryDirectory() as tmpdir:
        assert _invoke(tmpdir, "log", "goal_scored", "--data", "[1, 2]").exit_code == 2
        assert _invoke(tmpdir, "log", "goal_scored", "--data", "{oops").exit_code == 2


def test_undo_goal():
    """Test undoing a goal rewrites later scores."""
    with tempfile.TemporaryDirectory() as tmpdir:
        events = _seed(Path(tmpdir))

        result = _invoke(tmpdir, "undo", events[1].id)
        assert result.exit_code == 0

        match = MatchLogger.open(Path(tmpdir))
        assert match.get_event_by_id(events[1].id).undone
        assert match.get_event_by_id(events[2].id).data["ownScore"] == 1


def test_undo_with_reason():
    with tempfile.TemporaryDirectory() as tmpdir:
        events = _seed(Path(tmpdir))
        result = _invoke(tmpdir, "undo", events[3].id, "--reason", "ended too early")
        assert result.exit_code == 0
        assert MatchLogger.open(Path(tmpdir)).get_event_by_id(events[3].id).undo_reason == "ended too early"


def test_undo_and_remove_unknown():
    with tempfile.TemporaryDirectory() as tmpdir:
        assert _invoke(tmpdir, "undo", "evt_missing").exit_code == 1
        assert _invoke(tmpdir, "remove", "evt_missing").exit_code == 1


def test_remove():
    with tempfile.TemporaryDirectory() as tmpdir:
        events = _seed(Path(tmpdir))
        result = _invoke(tmpdir, "remove", events[2].id)
        assert result.exit_code == 0
        assert MatchLogger.open(Path(tmpdir)).get_event_by_id(events[2].id) is None


def test_clock():
    with tempfile.TemporaryDirectory() as tmpdir:
        result = _invoke(tmpdir, "clock")
        assert result.exit_code == 0
        assert "Match not started" in result.output

        _seed(Path(tmpdir))
        result = _invoke(tmpdir, "clock")
        assert result.exit_code == 0
        assert "03:00" in result.output


def test_stats():
    with tempfile.TemporaryDirectory() as tmpdir:
        _seed(Path(tmpdir))
        result = _invoke(tmpdir, "stats")
        assert result.exit_code == 0
        assert "Score: 2 - 0" in result.output
        assert "p1" in result.output


def test_verify():
    """Test verify on empty, sound and tampered stores."""
    with tempfile.TemporaryDirectory() as tmpdir:
        result = _invoke(tmpdir, "verify")
        assert result.exit_code == 0
        assert "Nothing stored" in result.output

        _seed(Path(tmpdir))
        result = _invoke(tmpdir, "verify")
        assert result.exit_code == 0
        assert "Checksum matches" in result.output

        _tamper(Path(tmpdir))
        result = _invoke(tmpdir, "verify")
        assert result.exit_code == 1
        assert "Checksum mismatch" in result.output


def test_verify_and_recover_swapped_sequence():
    """Test a correctly signed snapshot with swapped sequence numbers."""
    with tempfile.TemporaryDirectory() as tmpdir:
        _seed(Path(tmpdir))
        path = Path(tmpdir) / f"{DEFAULT_STORAGE_KEY}.json"
        data = json.loads(path.read_text())
        data["events"][1]["sequence"], data["events"][2]["sequence"] = 3, 2
        data["checksum"] = snapshot_checksum(data)
        path.write_text(json.dumps(data))

        result = _invoke(tmpdir, "verify")
        assert result.exit_code == 1
        assert "Checksum matches" in result.output
        assert "Validation issues (1)" in result.output

        result = _invoke(tmpdir, "recover", "--apply")
        assert result.exit_code == 0
        assert "Recovered 4 events" in result.output
        assert [e.sequence for e in MatchLogger.open(Path(tmpdir)).get_all_events()] == [1, 2, 3, 4]


def test_recover():
    """Test dry-run and applied recovery."""
    with tempfile.TemporaryDirectory() as tmpdir:
        seeded = _seed(Path(tmpdir))
        _tamper(Path(tmpdir))

        result = _invoke(tmpdir, "recover")
        assert result.exit_code == 0
        assert "Recovered 4 events" in result.output
        assert MatchLogger.open(Path(tmpdir)).get_all_events() == []

        result = _invoke(tmpdir, "recover", "--apply")
        assert result.exit_code == 0
        assert [e.id for e in MatchLogger.open(Path(tmpdir)).get_all_events()] == [e.id for e in seeded]

        assert _invoke(tmpdir, "verify").exit_code == 0


def test_recover_nothing():
    with tempfile.TemporaryDirectory() as tmpdir:
        assert _invoke(tmpdir, "recover").exit_code == 1


def test_clear():
    with tempfile.TemporaryDirectory() as tmpdir:
        _seed(Path(tmpdir))

        result = _invoke(tmpdir, "clear", input="n\n")
        assert result.exit_code == 1
        assert len(MatchLogger.open(Path(tmpdir)).get_all_events()) == 4

        result = _invoke(tmpdir, "clear", "--yes")
        assert result.exit_code == 0
        assert MatchLogger.open(Path(tmpdir)).get_all_events() == []


def test_sqlite_backend():
    with tempfile.TemporaryDirectory() as tmpdir:
        _seed(Path(tmpdir), backend="sqlite")

        result = _invoke(tmpdir, "--backend", "sqlite", "events", "--json")
        assert result.exit_code == 0
        assert len(json.loads(result.stdout)) == 4

        # The file backend sees nothing in the same directory
        result = _invoke(tmpdir, "events", "--json")
        assert json.loads(result.stdout) == []


def test_store_from_environment():
    with tempfile.TemporaryDirectory() as tmpdir:
        _seed(Path(tmpdir))
        result = runner.invoke(cli, ["events", "--json"], env={"MATCHLOG_PATH": tmpdir})
        assert result.exit_code == 0
        assert len(json.loads(result.stdout)) == 4


def test_custom_key():
    with tempfile.TemporaryDirectory() as tmpdir:
        result = _invoke(tmpdir, "--key", "cup-final", "log", "match_start")
        assert result.exit_code == 0
        assert (Path(tmpdir) / "cup-final.json").exists()
