from __future__ import annotations

import asyncio
import json
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone

import pytest

from planboard.domain.entities import ReorderItem, Timer
from planboard.domain.enums import TaskStatus
from planboard.domain.errors import (
    BusyError,
    ConflictError,
    DueDateRequiredError,
    InvalidStateTransitionError,
    NotFoundError,
    UnknownServiceError,
    ValidationError,
)


def test_load_applies_snapshot_and_notifies(store, service, board_data) -> None:
    seen: list[bool] = []
    store.subscribe(lambda s: seen.append(s.is_loading))

    async def _run() -> None:
        result = await store.load_today_data(board_data.today)
        assert result == board_data

    asyncio.run(_run())

    assert store.today_data == board_data
    assert seen[0] is True
    assert seen[-1] is False
    assert service.names() == ["list_today"]


def test_failed_update_rolls_back_exactly(store, service, scheduler, board_data) -> None:
    errors: list[str] = []
    store.on_error(lambda message, _error: errors.append(message))

    async def _run() -> None:
        await store.load_today_data(board_data.today)
        before = store.today_data
        service.fail["update_task"] = ConflictError("version mismatch")

        with pytest.raises(ConflictError):
            await store.update_task({"id": "A", "title": "Renamed", "tags": ["home"]})

        assert store.today_data == before
        assert not store.is_in_flight("A")

    asyncio.run(_run())

    assert errors == ["Update task failed: version mismatch"]
    assert store.error == "Update task failed: version mismatch"
    assert [handle.due for handle in scheduler.pending()] == [500]


def test_second_mutation_on_same_task_is_refused_locally(store, service, board_data) -> None:
    async def _run() -> None:
        await store.load_today_data(board_data.today)
        gate = asyncio.Event()
        service.gates["update_task"] = gate

        first = asyncio.create_task(store.update_task({"id": "A", "title": "First"}))
        await asyncio.sleep(0)
        assert store.is_in_flight("A")
        assert store.get_task("A").title == "First"

        with pytest.raises(BusyError):
            await store.update_task({"id": "A", "title": "Second"})
        with pytest.raises(BusyError):
            await store.mark_done("A")

        gate.set()
        await first

    asyncio.run(_run())

    assert service.names().count("update_task") == 1
    assert "mark_done" not in service.names()
    assert store.get_task("A").title == "First"


def test_failure_keeps_concurrent_mutation(store, service, board_data) -> None:
    async def _run() -> None:
        await store.load_today_data(board_data.today)
        gate = asyncio.Event()
        service.gates["update_task"] = gate
        service.fail["reopen_task"] = UnknownServiceError("disk full")

        pending = asyncio.create_task(store.update_task({"id": "A", "title": "Kept"}))
        await asyncio.sleep(0)

        with pytest.raises(UnknownServiceError):
            await store.reopen_task("E")

        assert store.get_task("E").status == TaskStatus.DONE
        assert store.get_task("A").title == "Kept"
        gate.set()
        await pending

    asyncio.run(_run())


def test_stale_load_response_is_discarded(store, service, board_data) -> None:
    newer = replace(board_data, timeline=[])

    async def _run() -> None:
        service.hold_loads = True
        first = asyncio.create_task(store.load_today_data(board_data.today))
        await asyncio.sleep(0)
        second = asyncio.create_task(store.load_today_data(board_data.today))
        await asyncio.sleep(0)

        service.loads[1].set_result(newer)
        assert await second == newer
        service.loads[0].set_result(board_data)
        assert await first is None

    asyncio.run(_run())

    assert store.today_data == newer


def test_load_for_another_day_supersedes_previous_day(store, service, board_data) -> None:
    async def _run() -> None:
        service.hold_loads = True
        first = asyncio.create_task(store.load_today_data(date(2026, 3, 1)))
        await asyncio.sleep(0)
        second = asyncio.create_task(store.load_today_data(board_data.today))
        await asyncio.sleep(0)

        service.loads[1].set_result(board_data)
        await second
        service.loads[0].set_result(replace(board_data, today=date(2026, 3, 1)))
        assert await first is None

    asyncio.run(_run())

    assert store.today_data.today == board_data.today


def test_success_schedules_reload_that_reconciles(store, service, scheduler, board_data) -> None:
    async def _run() -> None:
        await store.load_today_data(board_data.today)
        await store.mark_done("D")
        assert store.get_task("D").status == TaskStatus.DONE
        assert [handle.due for handle in scheduler.pending()] == [100]

        scheduler.advance(100)
        await store.wait_idle()

    asyncio.run(_run())

    # The fake server never applied the change, so the reload restores its view.
    assert service.names() == ["list_today", "mark_done", "list_today"]
    assert store.get_task("D").status == TaskStatus.VERIFY


def test_load_conflict_retries_with_a_bound(store, service, scheduler, settings, board_data) -> None:
    async def _run() -> None:
        service.fail["list_today"] = ConflictError("busy")
        with pytest.raises(ConflictError):
            await store.load_today_data(board_data.today)

        for _ in range(5):
            scheduler.advance(500)
            await store.wait_idle()

    asyncio.run(_run())

    assert service.names().count("list_today") == 1 + settings.reload_retry_limit
    assert store.today_data is None
    assert store.error == "Load failed: busy"


def test_not_found_removes_task_and_reloads(store, service, scheduler, board_data) -> None:
    async def _run() -> None:
        await store.load_today_data(board_data.today)
        service.fail["mark_done"] = NotFoundError("Task A not found")

        with pytest.raises(NotFoundError):
            await store.mark_done("A")

    asyncio.run(_run())

    assert store.get_task("A") is None
    assert all(task.id != "A" for task in store.today_data.timeline)
    assert [handle.due for handle in scheduler.pending()] == [500]


def test_not_found_skips_reload_while_modal_open(store, service, scheduler, board_data) -> None:
    async def _run() -> None:
        await store.load_today_data(board_data.today)
        store.set_modal_open(True)
        service.fail["delete_task"] = NotFoundError("gone")

        with pytest.raises(NotFoundError):
            await store.delete_task("C")

    asyncio.run(_run())

    assert store.get_task("C") is None
    assert store.today_data.timeline == []
    assert scheduler.pending() == []


def test_update_refuses_doing_transitions(store, service, board_data) -> None:
    async def _run() -> None:
        await store.load_today_data(board_data.today)
        with pytest.raises(InvalidStateTransitionError):
            await store.update_task({"id": "A", "status": "doing"})
        with pytest.raises(InvalidStateTransitionError):
            await store.update_task({"id": "B", "status": "done"})
        with pytest.raises(InvalidStateTransitionError):
            await store.mark_done("B")

    asyncio.run(_run())

    assert service.names() == ["list_today"]


def test_update_validates_schedule_fields(store, service, board_data) -> None:
    async def _run() -> None:
        await store.load_today_data(board_data.today)
        with pytest.raises(ValidationError) as excinfo:
            await store.update_task({"id": "A", "estimate_min": 0})
        assert "estimate_min" in excinfo.value.field_errors

        with pytest.raises(ValidationError) as excinfo:
            await store.update_task({"id": "C", "scheduled_end": "2026-03-02T08:00:00"})
        assert "scheduled_end" in excinfo.value.field_errors

    asyncio.run(_run())

    assert service.names() == ["list_today"]


def test_schedule_check_compares_utc_and_local_times(store, service, board_data) -> None:
    utc_start = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
    local_start = utc_start.astimezone().replace(tzinfo=None)
    standup = replace(board_data.kanban[TaskStatus.TODO][1], scheduled_start=utc_start, scheduled_end=None)
    service.data = replace(
        board_data,
        kanban={**board_data.kanban, TaskStatus.TODO: [board_data.kanban[TaskStatus.TODO][0], standup]},
        timeline=[standup],
    )

    async def _run() -> None:
        await store.load_today_data(board_data.today)
        end = local_start + timedelta(minutes=90)
        await store.update_task({"id": "C", "scheduled_end": end.isoformat()})
        assert store.get_task("C").scheduled_end == end

        with pytest.raises(ValidationError) as excinfo:
            await store.update_task({"id": "C", "scheduled_end": (local_start - timedelta(minutes=30)).isoformat()})
        assert "scheduled_end" in excinfo.value.field_errors

    asyncio.run(_run())

    assert service.names() == ["list_today", "update_task"]


def test_status_change_moves_task_to_end_of_new_column(store, board_data) -> None:
    async def _run() -> None:
        await store.load_today_data(board_data.today)
        await store.update_task({"id": "A", "status": "verify"})

    asyncio.run(_run())

    verify = store.today_data.column(TaskStatus.VERIFY)
    assert [task.id for task in verify] == ["D", "A"]
    assert verify[-1].order_index == 2000


def test_create_task_appends_to_its_column(store, service, board_data) -> None:
    async def _run():
        await store.load_today_data(board_data.today)
        return await store.create_task({"title": "New", "estimate_min": 15})

    task = asyncio.run(_run())

    todo = store.today_data.column(TaskStatus.TODO)
    assert todo[-1].id == task.id
    assert todo[-1].order_index == 3000
    assert service.calls[-1] == ("create_task", ({"title": "New", "estimate_min": 15},))


def test_create_task_cannot_start_in_doing(store, service) -> None:
    async def _run() -> None:
        with pytest.raises(InvalidStateTransitionError):
            await store.create_task({"title": "Nope", "status": "doing"})

    asyncio.run(_run())

    assert service.calls == []


def test_reorder_failure_rolls_back_and_reloads(store, service, scheduler, board_data) -> None:
    async def _run() -> None:
        await store.load_today_data(board_data.today)
        before = store.today_data
        service.fail["reorder_tasks"] = UnknownServiceError("boom")
        items = [ReorderItem("C", 1000), ReorderItem("A", 2000)]

        with pytest.raises(UnknownServiceError):
            await store.reorder_tasks(items)
        assert store.today_data == before

    asyncio.run(_run())

    assert [handle.due for handle in scheduler.pending()] == [100]


def test_reorder_applies_positions(store, board_data) -> None:
    async def _run() -> None:
        await store.load_today_data(board_data.today)
        await store.reorder_tasks([ReorderItem("C", 1000), ReorderItem("A", 2000)])

    asyncio.run(_run())

    assert [task.id for task in store.today_data.column(TaskStatus.TODO)] == ["C", "A"]


def test_start_requires_due_date(store, service, board_data) -> None:
    async def _run() -> None:
        await store.load_today_data(board_data.today)
        with pytest.raises(DueDateRequiredError):
            await store.start_task("D")

    asyncio.run(_run())

    assert service.names() == ["list_today"]
    assert store.error is None


def test_start_then_stop_restores_previous_status(store, service, board_data) -> None:
    async def _run() -> None:
        await store.load_today_data(board_data.today)
        await store.start_task("D", due_date=board_data.today)

        data = store.today_data
        assert data.current_doing.id == "D"
        assert data.current_timer.task_id == "D"
        assert data.current_timer.start_at == datetime(2026, 3, 2, 11, 0)
        assert [task.id for task in data.column(TaskStatus.DOING)] == ["D"]
        # The previously running task is stopped locally.
        assert store.get_task("B").status == TaskStatus.TODO

        await store.stop_task("D")

    asyncio.run(_run())

    assert store.get_task("D").status == TaskStatus.VERIFY
    assert store.today_data.current_doing is None
    assert store.today_data.current_timer is None
    assert service.calls[1] == ("update_task", ({"id": "D", "due_date": board_data.today},))
    assert service.names()[2:] == ["start_task", "stop_task", "update_task"]
    assert service.calls[-1] == ("update_task", ({"id": "D", "status": "verify"},))


def test_stop_of_todo_task_needs_no_status_write(store, service, board_data) -> None:
    async def _run() -> None:
        await store.load_today_data(board_data.today)
        await store.start_task("A")
        await store.stop_task("A")

    asyncio.run(_run())

    assert service.names() == ["list_today", "start_task", "stop_task"]
    assert store.get_task("A").status == TaskStatus.TODO


def test_failed_status_restore_after_stop_reloads(store, service, scheduler, board_data) -> None:
    a, c = board_data.kanban[TaskStatus.TODO]
    b = replace(board_data.current_doing, status=TaskStatus.TODO, order_index=3000)
    d = board_data.kanban[TaskStatus.VERIFY][0]
    done = board_data.kanban[TaskStatus.DONE]
    running = replace(d, status=TaskStatus.DOING, due_date=board_data.today)
    started_view = replace(
        board_data,
        kanban={TaskStatus.TODO: [a, c, b], TaskStatus.DOING: [running], TaskStatus.VERIFY: [], TaskStatus.DONE: done},
        current_doing=running,
        current_timer=Timer(task_id="D", start_at=datetime(2026, 3, 2, 11, 0)),
    )
    parked = replace(running, status=TaskStatus.TODO, order_index=4000)
    stopped_view = replace(
        started_view,
        kanban={TaskStatus.TODO: [a, c, b, parked], TaskStatus.DOING: [], TaskStatus.VERIFY: [], TaskStatus.DONE: done},
        current_doing=None,
        current_timer=None,
    )

    async def _run() -> None:
        await store.load_today_data(board_data.today)
        await store.start_task("D", due_date=board_data.today)
        service.data = started_view
        scheduler.advance(100)
        await store.wait_idle()
        assert not scheduler.pending()

        service.fail["update_task"] = UnknownServiceError("disk full")
        with pytest.raises(UnknownServiceError):
            await store.stop_task("D")
        assert store.get_task("D").status == TaskStatus.DOING
        assert len(scheduler.pending()) == 1

        service.data = stopped_view
        scheduler.advance(100)
        await store.wait_idle()

    asyncio.run(_run())

    assert service.names()[-3:] == ["stop_task", "update_task", "list_today"]
    assert store.get_task("D").status == TaskStatus.TODO
    assert store.today_data.current_timer is None
    assert store.error == "Stop task failed: disk full"


def test_ui_state_updates_are_debounced(store, service, scheduler) -> None:
    async def _run() -> None:
        store.update_ui_state({"filters": {"tags": ["work"]}})
        scheduler.advance(100)
        store.update_ui_state({"filters": {"priority": "p1"}})
        scheduler.advance(100)
        store.update_ui_state({"layout": {"timeline_collapsed": True}})
        assert "set_ui_state" not in service.names()

        scheduler.advance(300)
        await store.wait_idle()

    asyncio.run(_run())

    writes = [args for name, args in service.calls if name == "set_ui_state"]
    assert writes == [
        (
            "vault-1",
            {"filters": {"tags": ["work"], "priority": "p1"}, "layout": {"timeline_collapsed": True}},
        )
    ]
    assert store.ui_state["filters"] == {"tags": ["work"], "priority": "p1"}


def test_load_ui_state_merges_over_defaults(store, service) -> None:
    service.ui_state_json = json.dumps({"filters": {"tags": ["work"]}, "extra": 1})

    state = asyncio.run(store.load_ui_state())

    assert state["filters"] == {"tags": ["work"], "priority": None}
    assert state["layout"] == {"timeline_collapsed": False}
    assert state["extra"] == 1


@pytest.mark.parametrize("raw", ["{not json", "[1, 2]", None])
def test_load_ui_state_falls_back_to_defaults(store, service, raw) -> None:
    service.ui_state_json = raw

    state = asyncio.run(store.load_ui_state())

    assert state == {"filters": {"tags": [], "priority": None}, "layout": {"timeline_collapsed": False}}


def test_load_ui_state_survives_service_errors(store, service) -> None:
    service.fail["get_ui_state"] = UnknownServiceError("vault locked")

    state = asyncio.run(store.load_ui_state())

    assert state == {"filters": {"tags": [], "priority": None}, "layout": {"timeline_collapsed": False}}
    assert store.error is None


def test_queries_follow_filters(store, board_data) -> None:
    asyncio.run(store.load_today_data(board_data.today))

    assert store.unique_tags() == ["code", "meeting", "work"]
    store.update_ui_state({"filters": {"tags": ["work", "meeting"]}})
    assert [task.id for task in store.filtered_kanban()[TaskStatus.TODO]] == ["C"]
    store.update_ui_state({"filters": {"tags": [], "priority": "p1"}})
    assert [task.id for task in store.filtered_kanban()[TaskStatus.TODO]] == ["A"]

    assert store.total_estimate_minutes() == 60
    assert store.timer_elapsed_seconds() == 3 * 3600
    assert store.timer_elapsed_text() == "03:00:00"
    model = store.timeline_model()
    assert [block.id for block in model.busy_blocks] == ["busy-C"]


def test_unsubscribe_stops_notifications(store, board_data) -> None:
    calls: list[int] = []
    unsubscribe = store.subscribe(lambda _store: calls.append(1))
    unsubscribe()

    asyncio.run(store.load_today_data(board_data.today))

    assert calls == []


def test_clear_error_resets_message(store) -> None:
    store.report("Load", ConflictError("busy"))
    assert store.error == "Load failed: busy"

    store.clear_error()

    assert store.error is None
    assert store.last_error is None
