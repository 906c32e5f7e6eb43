"""Time references for the command line, in epoch milliseconds.

Supports:
- Epoch milliseconds: "1718000000000"
- Named: "now", "today"
- Relative: "90 seconds ago", "5 minutes ago", "-5m", "+30s"
- ISO and other dateutil formats: "2025-06-14T10:30:00"
"""

import re
from datetime import datetime, timedelta, timezone

from dateutil import parser as dateparser

_UNITS = {
    "s": "seconds", "second": "seconds",
    "m": "minutes", "minute": "minutes",
    "h": "hours", "hour": "hours",
    "d": "days", "day": "days",
}

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_AGO_PATTERN = re.compile(r"^(\d+)\s*(second|minute|hour|day)s?\s+ago$")
_OFFSET_PATTERN = re.compile(r"^([+-])(\d+)\s*([smhd])$")


def to_epoch_ms(dt: datetime) -> int:
    """Convert a datetime to epoch milliseconds (naive values are treated as UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return (dt - _EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(ms: int) -> datetime:
    """Timezone-aware UTC datetime for an epoch-ms value."""
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def parse_time_reference(ref: str, now: datetime | None = None) -> int:
    """Parse a human-friendly time reference into epoch milliseconds.

    Args:
        ref: Time reference string
        now: Reference point for relative times (default: utcnow)

    Raises:
        ValueError: If the reference cannot be parsed

    Examples:
        >>> parse_time_reference("1718000000000")
        1718000000000
        >>> parse_time_reference("-5m", now=kickoff)  # five minutes before kickoff
        ...
    """
    if now is None:
        now = datetime.now(timezone.utc)

    original = ref.strip()
    ref = original.lower()

    if ref.isdigit():
        return int(ref)
    if ref == "now":
        return to_epoch_ms(now)
    if ref == "today":
        return to_epoch_ms(now.replace(hour=0, minute=0, second=0, microsecond=0))

    if ago_match := _AGO_PATTERN.match(ref):
        amount, unit = int(ago_match.group(1)), _UNITS[ago_match.group(2)]
        return to_epoch_ms(now - timedelta(**{unit: amount}))

    if offset_match := _OFFSET_PATTERN.match(ref):
        sign, amount, unit = offset_match.groups()
        delta = timedelta(**{_UNITS[unit]: int(amount)})
        return to_epoch_ms(now + delta if sign == "+" else now - delta)

    try:
        parsed = dateparser.parse(original)
    except (ValueError, OverflowError, dateparser.ParserError) as e:
        raise ValueError(f"Cannot parse time reference: {ref}") from e
    if parsed is None:
        raise ValueError(f"Cannot parse time reference: {ref}")
    return to_epoch_ms(parsed)


def format_timestamp(ms: int | None) -> str:
    """Format epoch ms as an ISO-like UTC string, or "-" when missing."""
    if ms is None:
        return "-"
    return from_epoch_ms(ms).strftime("%Y-%m-%d %H:%M:%S")
