from __future__ import annotations

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Iterable, Mapping, Sequence

from planboard.config import SETTINGS, Settings
from planboard.domain import board
from planboard.domain.entities import ReorderItem, Task, TimelineConfig, Timer, TodayDTO
from planboard.domain.enums import BOARD_COLUMNS, TaskStatus, TimelineMode
from planboard.domain.errors import (
    RETRYABLE_CODES,
    BusyError,
    DueDateRequiredError,
    InvalidStateTransitionError,
    NotFoundError,
    PlanningError,
    UnknownServiceError,
    ValidationError,
)
from planboard.domain.filters import TaskFilters, default_ui_state, merge_ui_state
from planboard.domain.timeline import TimelineModel, build_timeline_model
from planboard.domain.timemath import format_elapsed, to_local_naive
from planboard.infra.codec import coerce_changes, parse_date, parse_datetime
from planboard.infra.timers import AsyncioScheduler, Debouncer, Scheduler, TimerHandle
from planboard.services.task_service import TaskService

logger = logging.getLogger(__name__)

MAX_ESTIMATE_MINUTES = 24 * 60

Listener = Callable[["PlanningStore"], None]
ErrorListener = Callable[[str, PlanningError], None]
Apply = Callable[[TodayDTO], TodayDTO]


@dataclass
class _Mutation:
    token: int
    task_ids: tuple[str, ...]
    apply: Apply
    settled: bool = False


def _service_error(exc: Exception) -> PlanningError:
    if isinstance(exc, PlanningError):
        return exc
    return UnknownServiceError(str(exc) or type(exc).__name__)


def _with_task(task_id: str, change: Callable[[Task], Task]) -> Apply:
    def apply(data: TodayDTO) -> TodayDTO:
        task = board.find_task(data, task_id)
        if task is None:
            return data
        return board.replace_task(data, change(task))

    return apply


def _validate_changes(task: Task | None, partial: Mapping[str, Any]) -> None:
    field_errors: dict[str, str] = {}
    estimate = partial.get("estimate_min")
    if estimate not in (None, ""):
        try:
            minutes = int(estimate)
        except (TypeError, ValueError):
            minutes = 0
        if not 1 <= minutes <= MAX_ESTIMATE_MINUTES:
            field_errors["estimate_min"] = f"must be between 1 and {MAX_ESTIMATE_MINUTES} minutes"

    try:
        start = parse_datetime(partial["scheduled_start"]) if "scheduled_start" in partial else (
            task.scheduled_start if task else None
        )
        end = parse_datetime(partial["scheduled_end"]) if "scheduled_end" in partial else (
            task.scheduled_end if task else None
        )
    except (TypeError, ValueError):
        field_errors["scheduled_start"] = "must be an ISO date-time"
        start = end = None
    if start is not None and end is not None and to_local_naive(end) < to_local_naive(start):
        field_errors["scheduled_end"] = "must not be before scheduled_start"

    if field_errors:
        raise ValidationError(field_errors)


class PlanningStore:
    """Optimistic client-side state for the board and timeline.

    Visible state is the last server snapshot with every pending (or settled
    but not yet reloaded) mutation replayed on top of it, in start order.
    A failed mutation leaves the journal and the state is recomputed.
    """

    def __init__(
        self,
        service: TaskService,
        scheduler: Scheduler | None = None,
        settings: Settings = SETTINGS,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._service = service
        self._scheduler = scheduler or AsyncioScheduler()
        self._settings = settings
        self._clock = clock

        self.today_data: TodayDTO | None = None
        self.ui_state: dict[str, Any] = default_ui_state()
        self.in_flight: dict[str, bool] = {}
        self.error: str | None = None
        self.last_error: PlanningError | None = None
        self.is_loading = False
        self.is_dragging = False
        self.vault_id = settings.vault_id
        self.modal_open = False

        self._base: TodayDTO | None = None
        self._journal: list[_Mutation] = []
        self._tokens = itertools.count(1)
        self._active_day: date | None = None
        self._request_ids: dict[str, int] = {}
        self._latest_key: str | None = None
        self._retry_counts: dict[str, int] = {}
        self._pre_doing: dict[str, TaskStatus] = {}
        self._reload_handle: TimerHandle | None = None
        self._pending_ui_state: dict[str, Any] = {}
        self._ui_state_saver = Debouncer(self._scheduler, settings.ui_state_debounce_ms, self._save_ui_state)
        self._listeners: list[Listener] = []
        self._error_listeners: list[ErrorListener] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self._background: set[asyncio.Task] = set()

    # subscriptions

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def on_error(self, listener: ErrorListener) -> Callable[[], None]:
        self._error_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._error_listeners:
                self._error_listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    def report(self, action: str, error: PlanningError) -> None:
        """Record, log and broadcast `error` as the store's current error message."""
        message = f"{action} failed: {error}"
        self.error = message
        self.last_error = error
        if isinstance(error, (BusyError, ValidationError, InvalidStateTransitionError)):
            logger.warning(message)
        else:
            logger.error("%s (%r)", message, error)
        for listener in list(self._error_listeners):
            listener(message, error)
        self._notify()

    def clear_error(self) -> None:
        self.error = None
        self.last_error = None
        self._notify()

    # loading

    async def load_today_data(self, day: date | None = None) -> TodayDTO | None:
        """Fetch `day` from the service; returns None when a newer request superseded this one."""
        self._loop = asyncio.get_running_loop()
        day = day or self._clock().date()
        key = day.isoformat()
        request_id = self._request_ids.get(key, 0) + 1
        self._request_ids[key] = request_id
        self._latest_key = key
        self._active_day = day
        self.is_loading = True
        self._notify()

        try:
            data = await self._service.list_today(day)
        except Exception as exc:
            error = _service_error(exc)
            if not self._is_current(key, request_id):
                logger.debug("Discarding failed stale load for %s (request %s)", key, request_id)
                return None
            self.is_loading = False
            self._schedule_load_retry(key, error)
            self.report("Load", error)
            if error is exc:
                raise
            raise error from exc

        if not self._is_current(key, request_id):
            logger.debug("Discarding stale load for %s (request %s)", key, request_id)
            return None
        self.is_loading = False
        self._retry_counts.pop(key, None)
        self._base = data
        self._journal = [mutation for mutation in self._journal if not mutation.settled]
        self._recompute()
        return self.today_data

    async def reload(self) -> TodayDTO | None:
        return await self.load_today_data(self._active_day)

    def _is_current(self, key: str, request_id: int) -> bool:
        return self._latest_key == key and self._request_ids.get(key) == request_id

    def _schedule_load_retry(self, key: str, error: PlanningError) -> None:
        code = getattr(error, "code", None)
        if code not in RETRYABLE_CODES and not isinstance(error, NotFoundError):
            return
        attempts = self._retry_counts.get(key, 0) + 1
        if attempts > self._settings.reload_retry_limit:
            logger.warning("Giving up reloading %s after %s attempts", key, attempts - 1)
            self._retry_counts.pop(key, None)
            return
        self._retry_counts[key] = attempts
        self._schedule_reload(self._settings.retry_delay_ms)

    def _schedule_reload(self, delay_ms: int) -> None:
        if self._reload_handle is not None:
            self._reload_handle.cancel()
        self._reload_handle = self._scheduler.schedule(self._fire_reload, delay_ms)

    def _fire_reload(self) -> None:
        self._reload_handle = None
        self._spawn(self._background_reload(), "reload")

    async def _background_reload(self) -> None:
        try:
            await self.reload()
        except PlanningError:
            # Already reported.
            return

    def _spawn(self, coro: Awaitable[Any], name: str) -> None:
        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background %s failed", task.get_name(), exc_info=exc)

    async def wait_idle(self) -> None:
        """Wait for background reloads and UI-state writes started so far."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def cancel_pending(self) -> None:
        if self._reload_handle is not None:
            self._reload_handle.cancel()
            self._reload_handle = None
        self._ui_state_saver.cancel()

    def _recompute(self) -> None:
        if self._base is None:
            return
        data = self._base
        for mutation in self._journal:
            data = mutation.apply(data)
        self.today_data = data
        self._notify()

    # mutation protocol

    def _begin(self, action: str, task_ids: Iterable[str]) -> tuple[str, ...]:
        self._loop = asyncio.get_running_loop()
        ids = tuple(dict.fromkeys(task_ids))
        busy = next((task_id for task_id in ids if self.in_flight.get(task_id)), None)
        if busy is not None:
            self._fail(action, BusyError(busy))
        for task_id in ids:
            self.in_flight[task_id] = True
        return ids

    def _finish(self, task_ids: Iterable[str]) -> None:
        for task_id in task_ids:
            self.in_flight.pop(task_id, None)
        self._notify()

    def _fail(self, action: str, error: PlanningError) -> None:
        self.report(action, error)
        raise error

    async def _run(
        self,
        action: str,
        task_ids: Sequence[str],
        apply: Apply,
        remote: Callable[[], Awaitable[Any]],
        reload_on_failure: bool = False,
    ) -> Any:
        ids = self._begin(action, task_ids)
        mutation = _Mutation(next(self._tokens), ids, apply)
        self._journal.append(mutation)
        self._recompute()

        try:
            result = await remote()
        except Exception as exc:
            error = _service_error(exc)
            self._journal.remove(mutation)
            self._recompute()
            self._after_failure(mutation, error, reload_on_failure)
            self._finish(ids)
            self.report(action, error)
            if error is exc:
                raise
            raise error from exc

        mutation.settled = True
        self._finish(ids)
        self._schedule_reload(self._settings.reload_delay_ms)
        return result

    def _after_failure(self, mutation: _Mutation, error: PlanningError, reload_on_failure: bool) -> None:
        if isinstance(error, NotFoundError):
            if self._base is not None:
                for task_id in mutation.task_ids:
                    self._base = board.remove_task(self._base, task_id)
                    self._pre_doing.pop(task_id, None)
                self._recompute()
            if not self.modal_open:
                self._schedule_reload(self._settings.retry_delay_ms)
        elif getattr(error, "code", None) in RETRYABLE_CODES:
            self._schedule_reload(self._settings.retry_delay_ms)
        elif reload_on_failure:
            self._schedule_reload(self._settings.reload_delay_ms)

    def _require_task(self, action: str, task_id: str) -> Task:
        task = self.get_task(task_id)
        if task is None:
            self._fail(action, NotFoundError(f"Task {task_id} is not loaded"))
        return task

    # mutations

    async def create_task(self, data: Mapping[str, Any]) -> Task:
        self._loop = asyncio.get_running_loop()
        action = "Create task"
        if TaskStatus.parse(data.get("status") or TaskStatus.TODO) == TaskStatus.DOING:
            self._fail(action, InvalidStateTransitionError("New tasks cannot start in doing"))
        try:
            _validate_changes(None, data)
        except ValidationError as exc:
            self._fail(action, exc)

        try:
            task = await self._service.create_task(data)
        except Exception as exc:
            error = _service_error(exc)
            self.report(action, error)
            if error is exc:
                raise
            raise error from exc

        if self._base is not None:
            self._journal.append(
                _Mutation(next(self._tokens), (task.id,), lambda snapshot: board.insert_task(snapshot, task), True)
            )
            self._recompute()
        self._schedule_reload(self._settings.reload_delay_ms)
        return task

    async def update_task(self, partial: Mapping[str, Any]) -> None:
        action = "Update task"
        if not partial.get("id"):
            self._fail(action, ValidationError({"id": "is required"}))
        task_id = str(partial["id"])
        task = self._require_task(action, task_id)
        try:
            _validate_changes(task, partial)
            changes = coerce_changes(partial)
        except ValidationError as exc:
            self._fail(action, exc)
        except (TypeError, ValueError) as exc:
            self._fail(action, ValidationError({"partial": str(exc)}))

        status = changes.get("status")
        if status is not None and status != task.status and TaskStatus.DOING in (status, task.status):
            self._fail(
                action,
                InvalidStateTransitionError("Moving a task into or out of doing goes through start/stop"),
            )

        payload = {"id": task_id, **{key: value for key, value in partial.items() if key != "id"}}
        await self._run(
            action,
            [task_id],
            _with_task(task_id, lambda current: replace(current, **changes)),
            lambda: self._service.update_task(payload),
        )

    async def _set_status(self, action: str, task_id: str, status: TaskStatus, remote) -> None:
        task = self._require_task(action, task_id)
        if task.status == TaskStatus.DOING:
            self._fail(action, InvalidStateTransitionError("Stop the timer before changing this task"))
        await self._run(
            action,
            [task_id],
            _with_task(task_id, lambda current: replace(current, status=status)),
            lambda: remote(task_id),
        )

    async def mark_done(self, task_id: str) -> None:
        await self._set_status("Mark done", task_id, TaskStatus.DONE, self._service.mark_done)

    async def reopen_task(self, task_id: str) -> None:
        await self._set_status("Reopen task", task_id, TaskStatus.TODO, self._service.reopen_task)

    async def start_task(self, task_id: str, due_date: date | str | None = None) -> None:
        action = "Start task"
        task = self._require_task(action, task_id)
        if self.in_flight.get(task_id):
            self._fail(action, BusyError(task_id))
        due = parse_date(due_date)
        if due is None and task.due_date is None:
            # The caller prompts for a date and calls again.
            raise DueDateRequiredError("A due date is required before starting this task")
        if due is not None and due != task.due_date:
            await self.update_task({"id": task_id, "due_date": due})

        task = self._require_task(action, task_id)
        previous = self.today_data.current_doing if self.today_data else None
        stopped_id, stopped_status = None, TaskStatus.TODO
        if previous is not None and previous.id != task_id:
            stopped_id = previous.id
            stopped_status = self._pre_doing.get(previous.id, TaskStatus.TODO)
        remembered = task.status != TaskStatus.DOING
        if remembered:
            self._pre_doing[task_id] = task.status
        started_at = self._clock()

        def apply(data: TodayDTO) -> TodayDTO:
            if stopped_id is not None:
                data = _with_task(stopped_id, lambda other: replace(other, status=stopped_status))(data)
            current = board.find_task(data, task_id)
            if current is None:
                return data
            data = board.replace_task(data, replace(current, status=TaskStatus.DOING))
            return replace(
                data,
                current_doing=board.find_task(data, task_id),
                current_timer=Timer(task_id=task_id, start_at=started_at),
            )

        try:
            await self._run(action, [task_id], apply, lambda: self._service.start_task(task_id))
        except PlanningError:
            if remembered:
                self._pre_doing.pop(task_id, None)
            raise
        if stopped_id is not None:
            self._pre_doing.pop(stopped_id, None)

    async def stop_task(self, task_id: str) -> None:
        action = "Stop task"
        self._require_task(action, task_id)
        restore = self._pre_doing.get(task_id, TaskStatus.TODO)

        def apply(data: TodayDTO) -> TodayDTO:
            current = board.find_task(data, task_id)
            if current is not None:
                data = board.replace_task(data, replace(current, status=restore))
            timer = data.current_timer
            return replace(
                data,
                current_doing=None if data.current_doing and data.current_doing.id == task_id else data.current_doing,
                current_timer=None if timer and timer.task_id == task_id else timer,
            )

        stopped = False

        async def remote() -> None:
            nonlocal stopped
            await self._service.stop_task(task_id)
            stopped = True
            # The service parks a stopped task in todo.
            if restore != TaskStatus.TODO:
                await self._service.update_task({"id": task_id, "status": restore.value})

        try:
            # The status write can fail after the server has already stopped the task.
            await self._run(action, [task_id], apply, remote, reload_on_failure=True)
        except PlanningError:
            if stopped:
                self._pre_doing.pop(task_id, None)
            raise
        self._pre_doing.pop(task_id, None)

    async def reorder_tasks(self, items: Sequence[ReorderItem]) -> None:
        if not items:
            return
        batch = list(items)
        await self._run(
            "Reorder",
            [item.id for item in batch],
            lambda data: board.apply_reorder(data, batch),
            lambda: self._service.reorder_tasks(batch),
            reload_on_failure=True,
        )

    async def delete_task(self, task_id: str) -> None:
        await self._run(
            "Delete task",
            [task_id],
            lambda data: board.remove_task(data, task_id),
            lambda: self._service.delete_task(task_id),
        )
        self._pre_doing.pop(task_id, None)

    # ui state

    async def load_ui_state(self, vault_id: str | None = None) -> dict[str, Any]:
        self._loop = asyncio.get_running_loop()
        vault_id = vault_id or self.vault_id
        if not vault_id:
            logger.warning("No vault selected, using default UI state")
            self.ui_state = default_ui_state()
            self._notify()
            return self.ui_state
        self.vault_id = vault_id

        try:
            raw = await self._service.get_ui_state(vault_id)
        except Exception as exc:
            logger.warning("Could not load UI state for vault %s, using defaults: %s", vault_id, _service_error(exc))
            raw = None

        state = default_ui_state()
        if raw:
            try:
                saved = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Ignoring unreadable UI state for vault %s", vault_id)
                saved = None
            if isinstance(saved, dict):
                state = merge_ui_state(state, saved)
            elif saved is not None:
                logger.warning("Ignoring UI state for vault %s: not a JSON object", vault_id)
        self.ui_state = state
        self._notify()
        return state

    def update_ui_state(self, partial: Mapping[str, Any]) -> None:
        self.ui_state = merge_ui_state(self.ui_state, partial)
        self._pending_ui_state = merge_ui_state(self._pending_ui_state, partial)
        self._notify()
        if self.vault_id:
            self._ui_state_saver.trigger()

    def _save_ui_state(self) -> None:
        partial, self._pending_ui_state = self._pending_ui_state, {}
        if partial and self.vault_id:
            self._spawn(self._persist_ui_state(self.vault_id, partial), "save-ui-state")

    async def flush_ui_state(self) -> None:
        self._ui_state_saver.cancel()
        partial, self._pending_ui_state = self._pending_ui_state, {}
        if partial and self.vault_id:
            await self._persist_ui_state(self.vault_id, partial)

    async def _persist_ui_state(self, vault_id: str, partial: dict[str, Any]) -> None:
        try:
            await self._service.set_ui_state(vault_id, partial)
        except Exception as exc:
            # Background write: the error is surfaced through listeners.
            self.report("Save UI state", _service_error(exc))

    # flags

    def set_dragging(self, dragging: bool) -> None:
        if self.is_dragging != dragging:
            self.is_dragging = dragging
            self._notify()

    def set_modal_open(self, is_open: bool) -> None:
        self.modal_open = is_open

    # queries

    def get_task(self, task_id: str) -> Task | None:
        if self.today_data is None:
            return None
        return board.find_task(self.today_data, task_id)

    def all_tasks(self) -> list[Task]:
        if self.today_data is None:
            return []
        return board.all_tasks(self.today_data)

    def is_in_flight(self, task_id: str) -> bool:
        return bool(self.in_flight.get(task_id))

    @property
    def filters(self) -> TaskFilters:
        return TaskFilters.from_ui_state(self.ui_state)

    def filtered_kanban(self) -> dict[TaskStatus, list[Task]]:
        filters = self.filters
        if self.today_data is None:
            return {status: [] for status in BOARD_COLUMNS}
        if not filters.active:
            return {status: list(self.today_data.column(status)) for status in BOARD_COLUMNS}
        return {status: filters.apply(self.today_data.column(status)) for status in BOARD_COLUMNS}

    def unique_tags(self) -> list[str]:
        return sorted({tag for task in self.all_tasks() for tag in task.tags})

    def scheduled_tasks(self) -> list[Task]:
        if self.today_data is None:
            return []
        seen: dict[str, Task] = {task.id: task for task in self.today_data.timeline}
        for task in self.all_tasks():
            if task.scheduled_start is not None:
                seen.setdefault(task.id, task)
        return list(seen.values())

    def timeline_model(
        self,
        config: TimelineConfig | None = None,
        reference_date: date | None = None,
        mode: TimelineMode = TimelineMode.DAY,
        track_extent: float = 100.0,
    ) -> TimelineModel:
        reference = reference_date or (self.today_data.today if self.today_data else self._clock().date())
        return build_timeline_model(
            self.scheduled_tasks(),
            config or self._settings.timeline_config(),
            reference,
            mode,
            track_extent,
            now=self._clock(),
        )

    def total_estimate_minutes(self) -> int:
        if self.today_data is None:
            return 0
        return sum(task.estimate_min or 0 for task in self.today_data.timeline)

    def timer_elapsed_seconds(self) -> float:
        timer = self.today_data.current_timer if self.today_data else None
        if timer is None:
            return 0.0
        elapsed = to_local_naive(self._clock()) - to_local_naive(timer.start_at)
        return max(elapsed.total_seconds(), 0.0)

    def timer_elapsed_text(self) -> str:
        return format_elapsed(self.timer_elapsed_seconds())
