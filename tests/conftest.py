from __future__ import annotations

import asyncio
import itertools
from datetime import date, datetime
from typing import Any, Callable

import pytest

from planboard.config import Settings
from planboard.domain.entities import Task, Timer, TodayDTO
from planboard.domain.enums import TaskPriority, TaskStatus
from planboard.services.planning_store import PlanningStore

DAY = date(2026, 3, 2)


class ManualHandle:
    def __init__(self, fn: Callable[[], None], due: int) -> None:
        self.fn = fn
        self.due = due
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def active(self) -> bool:
        return not self.cancelled and not self.fired


class ManualScheduler:
    def __init__(self) -> None:
        self.now = 0
        self.handles: list[ManualHandle] = []

    def schedule(self, fn: Callable[[], None], delay_ms: int) -> ManualHandle:
        handle = ManualHandle(fn, self.now + delay_ms)
        self.handles.append(handle)
        return handle

    def pending(self) -> list[ManualHandle]:
        return [handle for handle in self.handles if handle.active]

    def advance(self, ms: int) -> None:
        self.now += ms
        for handle in sorted(self.pending(), key=lambda h: h.due):
            if handle.active and handle.due <= self.now:
                handle.fired = True
                handle.fn()


class FakeService:
    def __init__(self, data: TodayDTO | None = None) -> None:
        self.data = data
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.fail: dict[str, Exception] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.hold_loads = False
        self.loads: list[asyncio.Future] = []
        self.ui_state_json: str | None = None
        self._ids = itertools.count(100)

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]

    async def _call(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()
        error = self.fail.get(name)
        if error is not None:
            raise error

    async def list_today(self, day: date) -> TodayDTO:
        if self.hold_loads:
            self.calls.append(("list_today", (day,)))
            future = asyncio.get_running_loop().create_future()
            self.loads.append(future)
            return await future
        await self._call("list_today", day)
        return self.data

    async def create_task(self, data):
        await self._call("create_task", dict(data))
        return Task(
            id=f"t{next(self._ids)}",
            title=data["title"],
            status=TaskStatus.parse(data.get("status") or "todo"),
            estimate_min=data.get("estimate_min"),
        )

    async def update_task(self, partial) -> None:
        await self._call("update_task", dict(partial))

    async def reorder_tasks(self, items) -> None:
        await self._call("reorder_tasks", list(items))

    async def mark_done(self, task_id: str) -> None:
        await self._call("mark_done", task_id)

    async def reopen_task(self, task_id: str) -> None:
        await self._call("reopen_task", task_id)

    async def start_task(self, task_id: str) -> None:
        await self._call("start_task", task_id)

    async def stop_task(self, task_id: str) -> None:
        await self._call("stop_task", task_id)

    async def delete_task(self, task_id: str) -> None:
        await self._call("delete_task", task_id)

    async def get_ui_state(self, vault_id: str) -> str | None:
        await self._call("get_ui_state", vault_id)
        return self.ui_state_json

    async def set_ui_state(self, vault_id: str, partial) -> None:
        await self._call("set_ui_state", vault_id, partial)


def make_board() -> TodayDTO:
    a = Task(
        id="A",
        title="Write report",
        status=TaskStatus.TODO,
        priority=TaskPriority.P1,
        tags=("work",),
        due_date=DAY,
        estimate_min=30,
        order_index=1000,
    )
    c = Task(
        id="C",
        title="Standup",
        status=TaskStatus.TODO,
        tags=("work", "meeting"),
        estimate_min=60,
        scheduled_start=datetime(2026, 3, 2, 9, 0),
        scheduled_end=datetime(2026, 3, 2, 10, 0),
        order_index=2000,
    )
    b = Task(id="B", title="Fix bug", status=TaskStatus.DOING, due_date=DAY, order_index=2000)
    d = Task(id="D", title="Review PR", status=TaskStatus.VERIFY, tags=("code",), order_index=1000)
    e = Task(id="E", title="Pay rent", status=TaskStatus.DONE, order_index=1000)
    return TodayDTO(
        today=DAY,
        kanban={
            TaskStatus.TODO: [a, c],
            TaskStatus.DOING: [b],
            TaskStatus.VERIFY: [d],
            TaskStatus.DONE: [e],
        },
        timeline=[c],
        current_doing=b,
        current_timer=Timer(task_id="B", start_at=datetime(2026, 3, 2, 8, 0)),
    )


@pytest.fixture
def board_data() -> TodayDTO:
    return make_board()


@pytest.fixture
def service(board_data: TodayDTO) -> FakeService:
    return FakeService(board_data)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def settings() -> Settings:
    return Settings(vault_id="vault-1")


@pytest.fixture
def store(service: FakeService, scheduler: ManualScheduler, settings: Settings) -> PlanningStore:
    return PlanningStore(
        service,
        scheduler=scheduler,
        settings=settings,
        clock=lambda: datetime(2026, 3, 2, 11, 0),
    )
