from __future__ import annotations

from enum import StrEnum


class TaskStatus(StrEnum):
    TODO = "todo"
    DOING = "doing"
    VERIFY = "verify"
    DONE = "done"

    @classmethod
    def parse(cls, value: str | TaskStatus) -> TaskStatus:
        if isinstance(value, TaskStatus):
            return value
        normalized = str(value).strip().lower()
        if normalized == LEGACY_BACKLOG:
            return cls.TODO
        return cls(normalized)


# Older boards stored a fourth "backlog" lane; it folds into todo.
LEGACY_BACKLOG = "backlog"

BOARD_COLUMNS: tuple[TaskStatus, ...] = (
    TaskStatus.TODO,
    TaskStatus.DOING,
    TaskStatus.VERIFY,
    TaskStatus.DONE,
)


class TaskPriority(StrEnum):
    P0 = "p0"
    P1 = "p1"
    P2 = "p2"
    P3 = "p3"


class RecurrenceStrategy(StrEnum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class RecurrenceEndRule(StrEnum):
    NEVER = "never"
    DATE = "date"
    COUNT = "count"


class TimelineMode(StrEnum):
    DAY = "day"
    WEEK = "week"


class TargetKind(StrEnum):
    COLUMN = "column"
    TASK = "task"
    TIMELINE = "timeline"


class ErrorCode(StrEnum):
    NOT_FOUND = "NotFound"
    INVALID_STATE_TRANSITION = "InvalidStateTransition"
    CONFLICT = "Conflict"
    STALE_STATE = "StaleState"
    UNKNOWN = "UnknownError"
    DUE_DATE_REQUIRED = "DUE_DATE_REQUIRED"
