from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from .enums import BOARD_COLUMNS, RecurrenceEndRule, RecurrenceStrategy, TaskPriority, TaskStatus
from .timemath import parse_hhmm


@dataclass(frozen=True)
class Subtask:
    id: str
    title: str
    completed: bool = False


@dataclass(frozen=True)
class Periodicity:
    strategy: RecurrenceStrategy
    interval: int
    start_date: date
    end_rule: RecurrenceEndRule = RecurrenceEndRule.NEVER
    end_date: Optional[date] = None
    end_count: Optional[int] = None


@dataclass(frozen=True)
class Task:
    id: str
    title: str
    status: TaskStatus = TaskStatus.TODO
    description: str | None = None
    priority: TaskPriority | None = None
    tags: tuple[str, ...] = ()
    subtasks: tuple[Subtask, ...] = ()
    due_date: Optional[date] = None
    estimate_min: int | None = None
    scheduled_start: Optional[datetime] = None
    scheduled_end: Optional[datetime] = None
    order_index: int = 0
    periodicity: Periodicity | None = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class Timer:
    task_id: str
    start_at: datetime
    id: str | None = None


@dataclass(frozen=True)
class TodayDTO:
    today: date
    kanban: dict[TaskStatus, list[Task]] = field(
        default_factory=lambda: {status: [] for status in BOARD_COLUMNS}
    )
    timeline: list[Task] = field(default_factory=list)
    current_doing: Task | None = None
    current_timer: Timer | None = None
    server_now: Optional[datetime] = None

    def column(self, status: TaskStatus) -> list[Task]:
        return self.kanban.get(status, [])


@dataclass(frozen=True)
class ReorderItem:
    id: str
    order_index: int
    status: TaskStatus | None = None


@dataclass(frozen=True)
class TimelineConfig:
    day_start: str
    day_end: str
    min_slot_minutes: int = 15
    snap_minutes: int = 15

    def __post_init__(self) -> None:
        start_h, start_m = parse_hhmm(self.day_start)
        end_h, end_m = parse_hhmm(self.day_end)
        if end_h * 60 + end_m <= start_h * 60 + start_m:
            raise ValueError(f"day_end {self.day_end!r} must be after day_start {self.day_start!r}")
        if self.min_slot_minutes <= 0:
            raise ValueError("min_slot_minutes must be positive")
        if self.snap_minutes <= 0:
            raise ValueError("snap_minutes must be positive")
