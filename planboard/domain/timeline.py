from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from .conflicts import task_duration_minutes
from .entities import Task, TimelineConfig
from .enums import TimelineMode
from .timemath import at_minutes, clamp, hhmm_to_minutes, minutes_of_day, snap_minutes, week_start

DAYS_PER_WEEK = 7


@dataclass(frozen=True)
class BusyBlock:
    id: str
    start: datetime
    end: datetime
    duration_minutes: int
    offset: float
    extent: float
    day_offset: int
    task: Task


@dataclass(frozen=True)
class FreeBlock:
    id: str
    start: datetime
    end: datetime
    duration_minutes: int
    offset: float
    extent: float
    day_offset: int


@dataclass(frozen=True)
class NowLine:
    time: datetime
    position: float
    day_offset: Optional[int]


@dataclass(frozen=True)
class TimelineModel:
    mode: TimelineMode
    days: tuple[date, ...]
    range_start_minutes: int
    range_end_minutes: int
    track_extent: float
    busy_blocks: tuple[BusyBlock, ...]
    free_blocks: tuple[FreeBlock, ...]
    now_line: NowLine

    @property
    def total_range_minutes(self) -> int:
        return self.range_end_minutes - self.range_start_minutes

    def busy_for_day(self, day_offset: int) -> list[BusyBlock]:
        return [block for block in self.busy_blocks if block.day_offset == day_offset]

    def free_for_day(self, day_offset: int) -> list[FreeBlock]:
        return [block for block in self.free_blocks if block.day_offset == day_offset]


def visible_days(reference_date: date, mode: TimelineMode) -> tuple[date, ...]:
    if mode == TimelineMode.WEEK:
        first = week_start(reference_date)
        return tuple(first + timedelta(days=offset) for offset in range(DAYS_PER_WEEK))
    return (reference_date,)


def build_timeline_model(
    tasks: Iterable[Task],
    config: TimelineConfig,
    reference_date: date,
    mode: TimelineMode = TimelineMode.DAY,
    track_extent: float = 100.0,
    now: datetime | None = None,
) -> TimelineModel:
    range_start = hhmm_to_minutes(config.day_start)
    range_end = hhmm_to_minutes(config.day_end)
    total = range_end - range_start
    days = visible_days(reference_date, TimelineMode(mode))
    day_index = {day: offset for offset, day in enumerate(days)}

    def scale(minutes: float) -> float:
        return minutes / total * track_extent

    busy: list[BusyBlock] = []
    for task in tasks:
        if task.scheduled_start is None:
            continue
        day_offset = day_index.get(task.scheduled_start.date())
        if day_offset is None:
            continue
        start = minutes_of_day(task.scheduled_start)
        # A task starting exactly at day_end has no visible extent.
        if start < range_start or start >= range_end:
            continue
        end = min(start + task_duration_minutes(task), range_end)
        duration = end - start
        shown = min(max(duration, config.min_slot_minutes), range_end - start)
        block_start = task.scheduled_start.replace(second=0, microsecond=0)
        busy.append(
            BusyBlock(
                id=f"busy-{task.id}",
                start=block_start,
                end=block_start + timedelta(minutes=duration),
                duration_minutes=duration,
                offset=scale(start - range_start),
                extent=scale(shown),
                day_offset=day_offset,
                task=task,
            )
        )
    busy.sort(key=lambda block: (block.day_offset, minutes_of_day(block.start), block.task.order_index))

    free: list[FreeBlock] = []
    for day_offset, day in enumerate(days):
        cursor = range_start
        for block in (b for b in busy if b.day_offset == day_offset):
            block_start = minutes_of_day(block.start)
            if block_start > cursor:
                free.append(_free_block(day, day_offset, cursor, block_start, range_start, scale))
            cursor = max(cursor, block_start + block.duration_minutes)
        if cursor < range_end:
            free.append(_free_block(day, day_offset, cursor, range_end, range_start, scale))

    return TimelineModel(
        mode=TimelineMode(mode),
        days=days,
        range_start_minutes=range_start,
        range_end_minutes=range_end,
        track_extent=track_extent,
        busy_blocks=tuple(busy),
        free_blocks=tuple(free),
        now_line=_now_line(now or datetime.now(), day_index, range_start, total, track_extent),
    )


def _free_block(day: date, day_offset: int, start: int, end: int, range_start: int, scale) -> FreeBlock:
    return FreeBlock(
        id=f"free-{day.isoformat()}-{start}-{end}",
        start=at_minutes(day, start),
        end=at_minutes(day, end),
        duration_minutes=end - start,
        offset=scale(start - range_start),
        extent=scale(end - start),
        day_offset=day_offset,
    )


def _now_line(
    now: datetime, day_index: dict[date, int], range_start: int, total: int, track_extent: float
) -> NowLine:
    position = (minutes_of_day(now) - range_start) / total * track_extent
    return NowLine(
        time=now,
        position=clamp(position, 0.0, track_extent),
        day_offset=day_index.get(now.date()),
    )


def week_column_index(x: float, track_width: float) -> int:
    if track_width <= 0:
        return 0
    return int(clamp(x / track_width * DAYS_PER_WEEK, 0, DAYS_PER_WEEK - 1))


def pointer_to_time(
    config: TimelineConfig,
    reference_date: date,
    fraction: float,
    mode: TimelineMode = TimelineMode.DAY,
    column_index: int = 0,
) -> datetime:
    """Map a pointer position along the time axis to a snapped start time.

    `fraction` is the pointer's position along the time axis (0 at day_start,
    1 at day_end). In week mode the day comes from `column_index`.
    """
    range_start = hhmm_to_minutes(config.day_start)
    range_end = hhmm_to_minutes(config.day_end)
    raw = range_start + int(clamp(fraction, 0.0, 1.0) * (range_end - range_start))

    days = visible_days(reference_date, TimelineMode(mode))
    day = days[int(clamp(column_index, 0, len(days) - 1))]
    return snap_into_range(config, day, raw)


def snap_into_range(config: TimelineConfig, day: date, minutes: int) -> datetime:
    """Snap `minutes` to the grid and keep one snap slot inside the visible range."""
    range_start = hhmm_to_minutes(config.day_start)
    range_end = hhmm_to_minutes(config.day_end)
    snapped = snap_minutes(minutes, config.snap_minutes)
    latest = max(range_end - config.snap_minutes, range_start)
    return at_minutes(day, int(clamp(snapped, range_start, latest)))
