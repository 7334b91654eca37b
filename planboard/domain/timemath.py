from __future__ import annotations

import math
import re
from datetime import date, datetime, time, timedelta

MINUTES_PER_HOUR = 60
MINUTES_PER_DAY = 24 * MINUTES_PER_HOUR

_HHMM_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


def parse_hhmm(value: str) -> tuple[int, int]:
    match = _HHMM_RE.match(value.strip())
    if not match:
        raise ValueError(f"Invalid HH:MM: {value!r}")
    hours = int(match.group(1))
    minutes = int(match.group(2))
    # 24:00 is accepted as the end of the day.
    if hours == 24 and minutes == 0:
        return hours, minutes
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError(f"Invalid HH:MM: {value!r}")
    return hours, minutes


def hhmm_to_minutes(value: str) -> int:
    hours, minutes = parse_hhmm(value)
    return hours * MINUTES_PER_HOUR + minutes


def to_local_naive(moment: datetime) -> datetime:
    """Wall-clock time in the local zone; board times are local and naive."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone().replace(tzinfo=None)


def minutes_of_day(moment: datetime) -> int:
    return moment.hour * MINUTES_PER_HOUR + moment.minute


def at_minutes(day: date, minutes: int, tzinfo=None) -> datetime:
    return datetime.combine(day, time(0, 0), tzinfo=tzinfo) + timedelta(minutes=minutes)


def intervals_overlap(start1: float, end1: float, start2: float, end2: float) -> bool:
    """Half-open overlap: touching intervals do not overlap."""
    return start1 < end2 and end1 > start2


def snap_minutes(total: int, snap: int) -> int:
    """Snap the minute-within-hour to the grid, carrying into the hour.

    Halves round up, so 10:15 on a 30-minute grid becomes 10:30.
    """
    if snap <= 0:
        raise ValueError("snap must be positive")
    hours, within = divmod(int(total), MINUTES_PER_HOUR)
    snapped = int(math.floor(within / snap + 0.5)) * snap
    carry, snapped = divmod(snapped, MINUTES_PER_HOUR)
    return (hours + carry) * MINUTES_PER_HOUR + snapped


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def week_start(day: date) -> date:
    return day - timedelta(days=day.weekday())


def minutes_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60


def format_elapsed(seconds: float) -> str:
    total = max(int(seconds), 0)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
