from __future__ import annotations

from datetime import datetime
from typing import Iterable

from .entities import Task
from .timemath import intervals_overlap, minutes_between, minutes_of_day

DEFAULT_DURATION_MINUTES = 30


def task_duration_minutes(task: Task) -> int:
    if task.scheduled_start and task.scheduled_end:
        return max(int(round(minutes_between(task.scheduled_start, task.scheduled_end))), 0)
    if task.estimate_min:
        return task.estimate_min
    return DEFAULT_DURATION_MINUTES


def find_conflicts(
    existing: Iterable[Task],
    proposed_start: datetime,
    duration_minutes: int,
    ignore_id: str | None = None,
) -> list[Task]:
    start = minutes_of_day(proposed_start)
    end = start + duration_minutes
    conflicts = []
    for task in existing:
        if task.id == ignore_id or task.scheduled_start is None:
            continue
        if task.scheduled_start.date() != proposed_start.date():
            continue
        task_start = minutes_of_day(task.scheduled_start)
        task_end = task_start + task_duration_minutes(task)
        if intervals_overlap(start, end, task_start, task_end):
            conflicts.append(task)
    return conflicts


def is_available(
    existing: Iterable[Task],
    proposed_start: datetime,
    duration_minutes: int,
    ignore_id: str | None = None,
) -> bool:
    return not find_conflicts(existing, proposed_start, duration_minutes, ignore_id)


is_time_slot_available = is_available
