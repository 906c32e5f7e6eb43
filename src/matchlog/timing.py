"""Match clock calculations derived purely from the event stream.

All functions are stateless. "now" can be passed explicitly so results are
reproducible; it defaults to the wall clock.
"""

from __future__ import annotations

from collections.abc import Iterable

from .constants import MS_PER_MINUTE, MS_PER_SECOND, ZERO_MATCH_TIME
from .models import PAUSE_TYPES, RESUME_TYPES, EventType, MatchEvent, now_ms


def format_clock(elapsed_ms: int | float) -> str:
    """Format a duration as ``MM:SS``. Minutes keep counting past 59."""
    minutes, remainder = divmod(max(0, int(elapsed_ms)), MS_PER_MINUTE)
    return f"{minutes:02d}:{remainder // MS_PER_SECOND:02d}"


def match_time_of(timestamp: int | None, match_start_time: int | None) -> str:
    """Match clock reading for a timestamp.

    Returns "00:00" when either value is missing. Timestamps before the
    start (clock skew, backdated entries) clamp to zero.

    Examples:
        >>> match_time_of(t0 + 185_000, t0)
        '03:05'
    """
    if not timestamp or not match_start_time:
        return ZERO_MATCH_TIME
    return format_clock(timestamp - match_start_time)


def _active_in_order(events: Iterable[MatchEvent]) -> list[MatchEvent]:
    return sorted((e for e in events if not e.undone), key=lambda e: (e.timestamp, e.sequence))


def _first_of(events: list[MatchEvent], event_type: EventType) -> MatchEvent | None:
    return next((e for e in events if e.type == event_type), None)


def pause_intervals(events: Iterable[MatchEvent], end_time: int) -> list[tuple[int, int]]:
    """Pair pause and resume events into (begin, end) intervals.

    The n-th pause closes at the first resume that is later than both the
    pause and the (n-1)-th resume. A pause with no such resume stays open
    until ``end_time``. Pairing is by position, so malformed streams can
    overlap intervals (two pauses before one resume) or leave resumes
    unused; callers get the overlap as-is.
    """
    active = _active_in_order(events)
    pauses = [e.timestamp for e in active if e.type in PAUSE_TYPES]
    resumes = [e.timestamp for e in active if e.type in RESUME_TYPES]

    intervals: list[tuple[int, int]] = []
    for index, paused_at in enumerate(pauses):
        floor = resumes[index - 1] if 0 < index <= len(resumes) else None
        resumed_at = next(
            (r for r in resumes if r > paused_at and (floor is None or r > floor)),
            None,
        )
        if resumed_at is not None:
            intervals.append((paused_at, resumed_at))
        elif paused_at < end_time:
            intervals.append((paused_at, end_time))

    return intervals


def _match_window(events: list[MatchEvent], now: int | None) -> tuple[int, int] | None:
    start = _first_of(events, EventType.MATCH_START)
    if start is None:
        return None
    end = _first_of(events, EventType.MATCH_END)
    end_time = end.timestamp if end else (now if now is not None else now_ms())
    return start.timestamp, end_time


def total_elapsed_time(events: Iterable[MatchEvent], now: int | None = None) -> int:
    """Wall-clock ms from match start to match end (or now), pauses included."""
    window = _match_window(_active_in_order(events), now)
    if window is None:
        return 0
    start_time, end_time = window
    return max(0, end_time - start_time)


def effective_playing_time(events: Iterable[MatchEvent], now: int | None = None) -> int:
    """Playing time in ms: elapsed match time minus every paused interval.

    Undone events are ignored. A match that never started has no playing
    time. Pause intervals are clipped to the match window before they are
    subtracted.

    Args:
        events: Event list in any order
        now: Reference time for an ongoing match or open pause (default: wall clock)
    """
    active = _active_in_order(events)
    window = _match_window(active, now)
    if window is None:
        return 0

    start_time, end_time = window
    paused = 0
    for begin, end in pause_intervals(active, end_time):
        begin, end = max(begin, start_time), min(end, end_time)
        if end > begin:
            paused += end - begin

    return max(0, end_time - start_time - paused)
