"""Small numeric and time helpers shared by the aggregation engines."""

from __future__ import annotations

import math
from datetime import date, datetime, timedelta, timezone

SUCCESS = "success"
FAILURE = "failure"
CANCELLED = "cancelled"
SKIPPED = "skipped"

# Conclusions outside the four dashboard buckets are folded in so the
# bucket counts always add up to the number of completed runs.
_FAILURE_LIKE = {"failure", "timed_out", "startup_failure"}
_CANCELLED_LIKE = {"cancelled"}
_SUCCESS_LIKE = {"success"}

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a GitHub ISO-8601 timestamp; ``None`` for missing or malformed input."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_epoch_ms(value: str | None) -> int | None:
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    return (parsed - _EPOCH) // timedelta(milliseconds=1)


def compute_duration_ms(started_at: str | None, ended_at: str | None) -> int | None:
    """Milliseconds between two timestamps.

    Returns ``None`` when either side is missing or unparseable, or when the
    end precedes the start.  Callers exclude ``None`` from statistics rather
    than counting it as zero.
    """
    start = to_epoch_ms(started_at)
    end = to_epoch_ms(ended_at)
    if start is None or end is None or end < start:
        return None
    return end - start


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up.

    Python's ``round`` uses banker's rounding, which would turn 12.5 into 12.
    """
    return int(math.floor(value + 0.5))


def percent_one_decimal(numerator: int, denominator: int) -> float:
    if denominator <= 0:
        return 0.0
    return round_half_up(numerator / denominator * 1000) / 10


def percentile(sorted_values: list[int] | list[float], p: float) -> int | float:
    """Nearest-rank percentile over an ascending list.

    ``index = ceil(p/100 * n) - 1`` clamped at zero; no interpolation between
    neighbours.  An empty list yields 0.
    """
    if not sorted_values:
        return 0
    index = math.ceil((p / 100) * len(sorted_values)) - 1
    return sorted_values[max(0, index)]


def mean(values: list[int] | list[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def conclusion_bucket(conclusion: str | None) -> str:
    """Map a run conclusion onto success / failure / cancelled / skipped."""
    if conclusion in _SUCCESS_LIKE:
        return SUCCESS
    if conclusion in _FAILURE_LIKE:
        return FAILURE
    if conclusion in _CANCELLED_LIKE:
        return CANCELLED
    return SKIPPED


def date_key(value: str | None) -> str:
    """The ``YYYY-MM-DD`` part of a timestamp string."""
    if not value:
        return ""
    return value[:10]


def day_keys(days: int, now: datetime | None = None) -> list[str]:
    """ISO dates for ``[now - days + 1, now]`` in ascending order (UTC)."""
    today: date = (now or utcnow()).astimezone(timezone.utc).date()
    return [(today - timedelta(days=i)).isoformat() for i in range(days - 1, -1, -1)]


def window_start(days: int, now: datetime | None = None) -> str:
    """ISO date ``days`` before ``now``; the lower bound of a fetch window."""
    return ((now or utcnow()).astimezone(timezone.utc) - timedelta(days=days)).date().isoformat()


def format_duration(ms: int | float | None) -> str:
    if ms is None or ms < 0:
        return "-"
    if ms < 1000:
        return f"{int(ms)}ms"
    seconds = int(ms // 1000)
    if seconds < 60:
        return f"{seconds}s"
    minutes, rem_seconds = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m {rem_seconds}s" if rem_seconds else f"{minutes}m"
    hours, rem_minutes = divmod(minutes, 60)
    return f"{hours}h {rem_minutes}m" if rem_minutes else f"{hours}h"
