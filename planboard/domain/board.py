from __future__ import annotations

from dataclasses import replace
from typing import Iterable, Optional

from .entities import ReorderItem, Task, TodayDTO
from .enums import BOARD_COLUMNS, TaskStatus

ORDER_STEP = 1000


def all_tasks(data: TodayDTO) -> list[Task]:
    return [task for status in BOARD_COLUMNS for task in data.column(status)]


def find_task(data: TodayDTO, task_id: str) -> Optional[Task]:
    for task in all_tasks(data):
        if task.id == task_id:
            return task
    return next((task for task in data.timeline if task.id == task_id), None)


def locate(data: TodayDTO, task_id: str) -> tuple[TaskStatus, int] | None:
    for status in BOARD_COLUMNS:
        for index, task in enumerate(data.column(status)):
            if task.id == task_id:
                return status, index
    return None


def next_order_index(tasks: Iterable[Task]) -> int:
    last = max((task.order_index for task in tasks), default=0)
    return last + ORDER_STEP


def renumber(tasks: Iterable[Task]) -> list[Task]:
    return [
        task if task.order_index == (position + 1) * ORDER_STEP
        else replace(task, order_index=(position + 1) * ORDER_STEP)
        for position, task in enumerate(tasks)
    ]


def _copy_kanban(data: TodayDTO) -> dict[TaskStatus, list[Task]]:
    kanban = {status: list(data.column(status)) for status in BOARD_COLUMNS}
    for status, tasks in data.kanban.items():
        kanban.setdefault(status, list(tasks))
    return kanban


def _on_day(task: Task, data: TodayDTO) -> bool:
    return task.scheduled_start is not None and task.scheduled_start.date() == data.today


def insert_task(data: TodayDTO, task: Task) -> TodayDTO:
    if find_task(data, task.id) is not None:
        return replace_task(data, task)
    kanban = _copy_kanban(data)
    column = kanban[task.status]
    if column and task.order_index <= column[-1].order_index:
        task = replace(task, order_index=next_order_index(column))
    column.append(task)
    timeline = list(data.timeline)
    if _on_day(task, data):
        timeline.append(task)
    return replace(data, kanban=kanban, timeline=timeline)


def replace_task(data: TodayDTO, task: Task) -> TodayDTO:
    """Swap in a new version of `task`, moving it between columns on a status change."""
    kanban = _copy_kanban(data)
    position = locate(data, task.id)
    if position is not None:
        old_status, index = position
        if old_status == task.status:
            kanban[old_status][index] = task
        else:
            del kanban[old_status][index]
            target = kanban[task.status]
            target.append(replace(task, order_index=next_order_index(target)))
            task = target[-1]

    timeline = [t for t in data.timeline if t.id != task.id]
    if _on_day(task, data):
        old_index = next((i for i, t in enumerate(data.timeline) if t.id == task.id), len(timeline))
        timeline.insert(old_index, task)

    current_doing = data.current_doing
    if current_doing is not None and current_doing.id == task.id:
        current_doing = task if task.status == TaskStatus.DOING else None
    return replace(data, kanban=kanban, timeline=timeline, current_doing=current_doing)


def remove_task(data: TodayDTO, task_id: str) -> TodayDTO:
    kanban = {
        status: [task for task in tasks if task.id != task_id]
        for status, tasks in _copy_kanban(data).items()
    }
    timeline = [task for task in data.timeline if task.id != task_id]
    current_doing = data.current_doing
    if current_doing is not None and current_doing.id == task_id:
        current_doing = None
    current_timer = data.current_timer
    if current_timer is not None and current_timer.task_id == task_id:
        current_timer = None
    return replace(
        data,
        kanban=kanban,
        timeline=timeline,
        current_doing=current_doing,
        current_timer=current_timer,
    )


def replace_columns(data: TodayDTO, columns: dict[TaskStatus, list[Task]]) -> TodayDTO:
    kanban = _copy_kanban(data)
    kanban.update({status: list(tasks) for status, tasks in columns.items()})
    moved = {task.id: task for tasks in columns.values() for task in tasks}
    timeline = [moved.get(task.id, task) for task in data.timeline]
    return replace(data, kanban=kanban, timeline=timeline)


def apply_reorder(data: TodayDTO, items: Iterable[ReorderItem]) -> TodayDTO:
    updates = {item.id: item for item in items}
    if not updates:
        return data
    kanban = _copy_kanban(data)
    affected: set[TaskStatus] = set()
    moved: list[Task] = []
    for status in BOARD_COLUMNS:
        kept = []
        for task in kanban[status]:
            item = updates.get(task.id)
            if item is None:
                kept.append(task)
                continue
            new_status = item.status or task.status
            updated = replace(task, status=new_status, order_index=item.order_index)
            affected.update({status, new_status})
            if new_status == status:
                kept.append(updated)
            else:
                moved.append(updated)
        kanban[status] = kept
    for task in moved:
        kanban[task.status].append(task)
    for status in affected:
        kanban[status].sort(key=lambda task: task.order_index)
    return replace_columns(data, {status: kanban[status] for status in affected})
