from __future__ import annotations

from datetime import date
from typing import Any, Mapping, Protocol, Sequence

from planboard.domain.entities import ReorderItem, Task, TodayDTO


class TaskService(Protocol):
    """Remote side of the board: owns persistence and the authoritative state.

    Every method raises a `TaskServiceError` subclass on failure.
    """

    async def list_today(self, day: date) -> TodayDTO: ...

    async def create_task(self, data: Mapping[str, Any]) -> Task: ...

    async def update_task(self, partial: Mapping[str, Any]) -> None: ...

    async def reorder_tasks(self, items: Sequence[ReorderItem]) -> None: ...

    async def mark_done(self, task_id: str) -> None: ...

    async def reopen_task(self, task_id: str) -> None: ...

    async def start_task(self, task_id: str) -> None: ...

    async def stop_task(self, task_id: str) -> None: ...

    async def delete_task(self, task_id: str) -> None: ...

    async def get_ui_state(self, vault_id: str) -> str | None: ...

    async def set_ui_state(self, vault_id: str, partial: Mapping[str, Any]) -> None: ...
