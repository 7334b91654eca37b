from __future__ import annotations

from dataclasses import fields
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable, Mapping

from planboard.domain.entities import Periodicity, ReorderItem, Subtask, Task, Timer, TodayDTO
from planboard.domain.enums import (
    BOARD_COLUMNS,
    LEGACY_BACKLOG,
    RecurrenceEndRule,
    RecurrenceStrategy,
    TaskPriority,
    TaskStatus,
)
from planboard.domain.timemath import to_local_naive

_PRIORITY_ALIASES = {
    "urgent": TaskPriority.P0,
    "high": TaskPriority.P1,
    "medium": TaskPriority.P2,
    "low": TaskPriority.P3,
}

TASK_FIELDS = frozenset(f.name for f in fields(Task))


def parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_local_naive(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return to_local_naive(datetime.fromisoformat(text))


def parse_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip()[:10])


def parse_priority(value: Any) -> TaskPriority | None:
    if value is None or value == "":
        return None
    if isinstance(value, TaskPriority):
        return value
    text = str(value).strip().lower()
    return _PRIORITY_ALIASES.get(text) or TaskPriority(text)


def normalize_tags(values: Iterable[str] | None) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for value in values or ():
        tag = str(value).strip()
        if tag:
            seen.setdefault(tag, None)
    return tuple(seen)


def subtask_from_dict(data: Mapping[str, Any]) -> Subtask:
    return Subtask(
        id=str(data["id"]),
        title=str(data.get("title", "")),
        completed=bool(data.get("completed", False)),
    )


def periodicity_from_dict(data: Mapping[str, Any]) -> Periodicity:
    end_count = data.get("end_count")
    return Periodicity(
        strategy=RecurrenceStrategy(data["strategy"]),
        interval=max(int(data.get("interval") or 1), 1),
        start_date=parse_date(data["start_date"]),
        end_rule=RecurrenceEndRule(data.get("end_rule") or RecurrenceEndRule.NEVER.value),
        end_date=parse_date(data.get("end_date")),
        end_count=int(end_count) if end_count is not None else None,
    )


def _estimate(value: Any) -> int | None:
    if value is None or value == "":
        return None
    minutes = int(value)
    return minutes if minutes > 0 else None


def task_from_dict(data: Mapping[str, Any]) -> Task:
    periodicity = data.get("periodicity")
    return Task(
        id=str(data["id"]),
        title=str(data.get("title", "")),
        status=TaskStatus.parse(data.get("status") or TaskStatus.TODO.value),
        description=data.get("description"),
        priority=parse_priority(data.get("priority")),
        tags=normalize_tags(data.get("tags") or data.get("labels")),
        subtasks=tuple(subtask_from_dict(item) for item in data.get("subtasks") or ()),
        due_date=parse_date(data.get("due_date")),
        estimate_min=_estimate(data.get("estimate_min")),
        scheduled_start=parse_datetime(data.get("scheduled_start")),
        scheduled_end=parse_datetime(data.get("scheduled_end")),
        order_index=int(data.get("order_index") or 0),
        periodicity=periodicity_from_dict(periodicity) if periodicity else None,
        created_at=parse_datetime(data.get("created_at")),
        updated_at=parse_datetime(data.get("updated_at")),
        completed_at=parse_datetime(data.get("completed_at")),
    )


def timer_from_dict(data: Mapping[str, Any]) -> Timer:
    timer_id = data.get("id")
    return Timer(
        task_id=str(data["task_id"]),
        start_at=parse_datetime(data["start_at"]),
        id=str(timer_id) if timer_id is not None else None,
    )


def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def today_from_dict(data: Mapping[str, Any]) -> TodayDTO:
    raw_kanban = data.get("kanban") or {}
    kanban: dict[TaskStatus, list[Task]] = {status: [] for status in BOARD_COLUMNS}
    for key, tasks in raw_kanban.items():
        status = TaskStatus.parse(key)
        kanban[status].extend(task_from_dict(item) for item in tasks or ())
    if raw_kanban.get(LEGACY_BACKLOG):
        kanban[TaskStatus.TODO].sort(key=lambda task: task.order_index)

    current_doing = _pick(data, "currentDoing", "current_doing")
    current_timer = _pick(data, "currentTimer", "current_timer")
    return TodayDTO(
        today=parse_date(data["today"]),
        kanban=kanban,
        timeline=[task_from_dict(item) for item in data.get("timeline") or ()],
        current_doing=task_from_dict(current_doing) if current_doing else None,
        current_timer=timer_from_dict(current_timer) if current_timer else None,
        server_now=parse_datetime(_pick(data, "serverNow", "server_now")),
    )


def encode_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (Subtask, Periodicity)):
        return {f.name: encode_value(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Mapping):
        return {str(key): encode_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(item) for item in value]
    return value


def encode_fields(data: Mapping[str, Any]) -> dict[str, Any]:
    return {str(key): encode_value(value) for key, value in data.items()}


def reorder_item_to_dict(item: ReorderItem) -> dict[str, Any]:
    payload: dict[str, Any] = {"id": item.id, "order_index": item.order_index}
    if item.status is not None:
        payload["status"] = item.status.value
    return payload


_FIELD_PARSERS = {
    "status": TaskStatus.parse,
    "priority": parse_priority,
    "tags": normalize_tags,
    "subtasks": lambda items: tuple(
        item if isinstance(item, Subtask) else subtask_from_dict(item) for item in items or ()
    ),
    "due_date": parse_date,
    "estimate_min": _estimate,
    "scheduled_start": parse_datetime,
    "scheduled_end": parse_datetime,
    "order_index": int,
    "periodicity": lambda value: (
        value if isinstance(value, Periodicity) or value is None else periodicity_from_dict(value)
    ),
    "completed_at": parse_datetime,
}


def coerce_changes(changes: Mapping[str, Any]) -> dict[str, Any]:
    """Typed values for the Task fields in `changes`; other keys are dropped."""
    coerced = {}
    for key, value in changes.items():
        if key not in TASK_FIELDS or key == "id":
            continue
        parser = _FIELD_PARSERS.get(key)
        coerced[key] = parser(value) if parser is not None else value
    return coerced
