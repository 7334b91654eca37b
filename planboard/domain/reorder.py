"""Drag-and-drop resolution and ordering for the kanban board and timeline.

A drop is handled in three steps: resolve which target id the gesture ended
on (an ordered chain of resolvers, most precise first), classify that id as a
column, a sibling task or a timeline slot, then plan the resulting moves. The
planners are pure; the store applies their output.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, Optional, Sequence

from .board import find_task, locate, renumber
from .conflicts import find_conflicts
from .entities import ReorderItem, Task, TimelineConfig, TodayDTO
from .enums import TargetKind, TaskStatus, TimelineMode
from .errors import DragRejectedError
from .timeline import pointer_to_time, snap_into_range, week_column_index
from .timemath import minutes_of_day, to_local_naive

DOING_LOCKED_MESSAGE = "The doing column cannot be changed by dragging, use Start/Stop instead"
ESTIMATE_REQUIRED_MESSAGE = "Set an estimate (minutes) on the task before placing it on the timeline"


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    def center(self) -> Point:
        return Point(self.x + self.width / 2, self.y + self.height / 2)


@dataclass(frozen=True)
class DragGesture:
    dragged_task_id: str
    source_column_id: str
    drop_target: str | None = None
    last_over_target: str | None = None
    last_pointer: Point | None = None
    last_rect: Rect | None = None


@dataclass(frozen=True)
class ResolvedTarget:
    target_id: str
    resolver: str
    point: Point | None = None


HitTest = Callable[[float, float], Optional[str]]
TargetResolver = Callable[[DragGesture], Optional[ResolvedTarget]]


def from_drop_target(gesture: DragGesture) -> ResolvedTarget | None:
    if not gesture.drop_target:
        return None
    return ResolvedTarget(gesture.drop_target, "drop_target", gesture.last_pointer)


def from_last_over(gesture: DragGesture) -> ResolvedTarget | None:
    if not gesture.last_over_target:
        return None
    return ResolvedTarget(gesture.last_over_target, "last_over", gesture.last_pointer)


def pointer_hit_test(hit_test: HitTest) -> TargetResolver:
    def resolve(gesture: DragGesture) -> ResolvedTarget | None:
        point = gesture.last_pointer
        if point is None:
            return None
        target_id = hit_test(point.x, point.y)
        return ResolvedTarget(target_id, "pointer", point) if target_id else None

    return resolve


def rect_center_hit_test(hit_test: HitTest) -> TargetResolver:
    def resolve(gesture: DragGesture) -> ResolvedTarget | None:
        if gesture.last_rect is None:
            return None
        point = gesture.last_rect.center()
        target_id = hit_test(point.x, point.y)
        return ResolvedTarget(target_id, "rect_center", point) if target_id else None

    return resolve


def default_resolvers(hit_test: HitTest | None = None) -> list[TargetResolver]:
    resolvers: list[TargetResolver] = [from_drop_target, from_last_over]
    if hit_test is not None:
        resolvers.extend([pointer_hit_test(hit_test), rect_center_hit_test(hit_test)])
    return resolvers


def resolve_target(gesture: DragGesture, resolvers: Sequence[TargetResolver]) -> ResolvedTarget | None:
    for resolver in resolvers:
        resolved = resolver(gesture)
        if resolved is not None:
            return resolved
    return None


@dataclass(frozen=True)
class DropTarget:
    kind: TargetKind
    column: TaskStatus | None = None
    task_id: str | None = None
    slot_start: datetime | None = None


def _parse_status(value: str) -> TaskStatus | None:
    try:
        return TaskStatus.parse(value)
    except ValueError:
        return None


def classify_target(target_id: str, data: TodayDTO) -> DropTarget | None:
    """Turn a `kind:value` target id (or a bare task id) into a DropTarget."""
    kind, sep, value = target_id.partition(":")
    if sep and kind == TargetKind.COLUMN:
        status = _parse_status(value)
        return DropTarget(TargetKind.COLUMN, column=status) if status else None
    if sep and kind == TargetKind.TIMELINE:
        slot_start = None
        if value and not value.startswith("day"):
            try:
                slot_start = to_local_naive(datetime.fromisoformat(value))
            except ValueError:
                return None
        return DropTarget(TargetKind.TIMELINE, slot_start=slot_start)
    task_id = value if sep and kind == TargetKind.TASK else target_id
    position = locate(data, task_id)
    if position is None:
        return None
    return DropTarget(TargetKind.TASK, column=position[0], task_id=task_id)


@dataclass(frozen=True)
class MovePlan:
    task_id: str
    source: TaskStatus
    target: TaskStatus
    index: int
    columns: dict[TaskStatus, list[Task]]
    items: tuple[ReorderItem, ...]


def _check_doing_lock(*statuses: TaskStatus | None) -> None:
    if TaskStatus.DOING in statuses:
        raise DragRejectedError(DOING_LOCKED_MESSAGE)


def plan_move(data: TodayDTO, gesture: DragGesture, target: DropTarget) -> MovePlan | None:
    """Plan a kanban move; None when the drop changes nothing."""
    source = _parse_status(gesture.source_column_id)
    if source is None:
        raise DragRejectedError(f"Unknown source column {gesture.source_column_id!r}")
    _check_doing_lock(source, target.column)
    if target.kind == TargetKind.TIMELINE or target.column is None:
        raise DragRejectedError("Timeline drops are planned with plan_timeline_drop")

    source_tasks = list(data.column(source))
    from_index = next((i for i, t in enumerate(source_tasks) if t.id == gesture.dragged_task_id), None)
    if from_index is None:
        raise DragRejectedError(f"Task {gesture.dragged_task_id} is not in column {source.value}")
    if target.kind == TargetKind.TASK and target.task_id == gesture.dragged_task_id:
        return None

    destination = target.column
    target_tasks = source_tasks if destination == source else list(data.column(destination))
    if target.kind == TargetKind.COLUMN:
        to_index = len(target_tasks)
    else:
        to_index = next(i for i, t in enumerate(target_tasks) if t.id == target.task_id)

    dragged = source_tasks.pop(from_index)
    if destination == source:
        source_tasks.insert(min(to_index, len(source_tasks)), dragged)
        columns = {source: renumber(source_tasks)}
    else:
        target_tasks.insert(to_index, replace(dragged, status=destination))
        columns = {source: renumber(source_tasks), destination: renumber(target_tasks)}

    if all(columns[status] == data.column(status) for status in columns):
        return None

    items = tuple(
        ReorderItem(task.id, task.order_index, status if status != source else None)
        for status, tasks in columns.items()
        for task in tasks
    )
    return MovePlan(
        task_id=gesture.dragged_task_id,
        source=source,
        target=destination,
        index=next(i for i, t in enumerate(columns[destination]) if t.id == gesture.dragged_task_id),
        columns=columns,
        items=items,
    )


@dataclass(frozen=True)
class TimelineGeometry:
    """Screen placement of the timeline track used to map a drop point to a time."""

    config: TimelineConfig
    reference_date: date
    mode: TimelineMode = TimelineMode.DAY
    left: float = 0.0
    top: float = 0.0
    width: float = 1.0
    height: float = 1.0

    def time_at(self, point: Point) -> datetime:
        fraction = (point.y - self.top) / self.height if self.height else 0.0
        column = week_column_index(point.x - self.left, self.width) if self.mode == TimelineMode.WEEK else 0
        return pointer_to_time(self.config, self.reference_date, fraction, self.mode, column)


@dataclass(frozen=True)
class TimelineDropPlan:
    task: Task
    start: datetime
    end: datetime
    conflicts: tuple[Task, ...]

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    def changes(self) -> dict:
        return {
            "id": self.task.id,
            "status": TaskStatus.TODO,
            "scheduled_start": self.start,
            "scheduled_end": self.end,
        }


def timeline_drop_start(
    target: DropTarget,
    point: Point | None,
    geometry: TimelineGeometry | None,
    config: TimelineConfig,
) -> datetime:
    slot = target.slot_start
    if slot is not None:
        return snap_into_range(config, slot.date(), minutes_of_day(slot))
    if point is not None and geometry is not None:
        return geometry.time_at(point)
    raise DragRejectedError("Could not work out a time for this timeline drop")


def plan_timeline_drop(
    data: TodayDTO,
    gesture: DragGesture,
    start: datetime,
    existing: Iterable[Task] | None = None,
) -> TimelineDropPlan:
    source = _parse_status(gesture.source_column_id)
    _check_doing_lock(source)
    task = find_task(data, gesture.dragged_task_id)
    if task is None:
        raise DragRejectedError(f"Task {gesture.dragged_task_id} is not on the board")
    _check_doing_lock(task.status)
    if not task.estimate_min:
        raise DragRejectedError(ESTIMATE_REQUIRED_MESSAGE)
    end = start + timedelta(minutes=task.estimate_min)
    others = data.timeline if existing is None else existing
    conflicts = find_conflicts(others, start, task.estimate_min, ignore_id=task.id)
    return TimelineDropPlan(task=task, start=start, end=end, conflicts=tuple(conflicts))
