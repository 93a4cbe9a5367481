import re
from datetime import datetime, timedelta, timezone

_DURATION_PART = re.compile(r"(\d+)\s*([wdhms])", re.IGNORECASE)
_UNIT_SECONDS = {"w": 604800, "d": 86400, "h": 3600, "m": 60, "s": 1}

PERMANENT_WORDS = {"", "0", "perm", "permanent", "forever", "none"}


def parse_duration(value: str | None) -> timedelta | None:
    """Parse a compact duration such as ``"2h"``, ``"1d12h"`` or ``"90m"``.

    Returns ``None`` for the permanent spellings ("permanent", "0", empty).

    Raises:
        ValueError: If the text is neither a duration nor a permanent spelling.
    """
    text = (value or "").strip().lower()
    if text in PERMANENT_WORDS:
        return None

    position = 0
    total = 0
    for match in _DURATION_PART.finditer(text):
        if text[position:match.start()].strip():
            raise ValueError(f"Invalid duration: {value!r}")
        total += int(match.group(1)) * _UNIT_SECONDS[match.group(2).lower()]
        position = match.end()

    if position == 0 or text[position:].strip():
        raise ValueError(f"Invalid duration: {value!r}")
    if total <= 0:
        return None
    return timedelta(seconds=total)


def format_duration(duration: timedelta | None) -> str:
    """Render a duration the way notifications show it, e.g. ``2h 30m``."""
    if duration is None:
        return "permanent"

    remaining = int(duration.total_seconds())
    if remaining <= 0:
        return "0s"

    parts = []
    for unit in ("d", "h", "m", "s"):
        amount, remaining = divmod(remaining, _UNIT_SECONDS[unit])
        if amount:
            parts.append(f"{amount}{unit}")
    return " ".join(parts)


def humanize_timestamp(value: datetime) -> str:
    """Return a human-readable timestamp (YYYY-MM-DD HH:MM:SS) in UTC.

    Naive datetimes are assumed to already be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def from_unix(value: float | None) -> datetime | None:
    """Convert stored unix seconds back into an aware UTC datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def to_unix(value: datetime | None) -> float | None:
    """Convert an aware datetime into unix seconds for storage."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()
