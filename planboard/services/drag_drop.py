from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Awaitable, Callable, Union

from planboard.domain.entities import TimelineConfig
from planboard.domain.enums import TargetKind
from planboard.domain.errors import DragRejectedError
from planboard.domain.reorder import (
    DragGesture,
    HitTest,
    MovePlan,
    ResolvedTarget,
    TimelineDropPlan,
    TimelineGeometry,
    classify_target,
    default_resolvers,
    plan_move,
    plan_timeline_drop,
    resolve_target,
    timeline_drop_start,
)
from planboard.services.planning_store import PlanningStore

logger = logging.getLogger(__name__)

ConfirmConflicts = Callable[[TimelineDropPlan], Union[bool, Awaitable[bool]]]


class DropResult(StrEnum):
    IGNORED = "ignored"
    NOOP = "noop"
    CANCELLED = "cancelled"
    MOVED = "moved"
    SCHEDULED = "scheduled"


@dataclass(frozen=True)
class DropOutcome:
    result: DropResult
    target: ResolvedTarget | None = None
    move: MovePlan | None = None
    timeline: TimelineDropPlan | None = None


class DragDropService:
    """Turns a finished drag gesture into store mutations."""

    def __init__(self, store: PlanningStore, config: TimelineConfig) -> None:
        self._store = store
        self._config = config

    def begin(self, gesture: DragGesture) -> None:
        logger.debug("Drag started for task %s from %s", gesture.dragged_task_id, gesture.source_column_id)
        self._store.set_dragging(True)

    def cancel(self) -> None:
        self._store.set_dragging(False)

    async def drop(
        self,
        gesture: DragGesture,
        hit_test: HitTest | None = None,
        geometry: TimelineGeometry | None = None,
        confirm: ConfirmConflicts | None = None,
    ) -> DropOutcome:
        self._store.set_dragging(False)
        data = self._store.today_data
        if data is None:
            return DropOutcome(DropResult.IGNORED)

        resolved = resolve_target(gesture, default_resolvers(hit_test))
        if resolved is None:
            logger.debug("Drop of %s landed outside any target", gesture.dragged_task_id)
            return DropOutcome(DropResult.IGNORED)
        target = classify_target(resolved.target_id, data)
        if target is None:
            logger.debug("Unrecognised drop target %r", resolved.target_id)
            return DropOutcome(DropResult.IGNORED, resolved)

        if target.kind == TargetKind.TIMELINE:
            return await self._drop_on_timeline(gesture, resolved, target, geometry, confirm)

        try:
            plan = plan_move(data, gesture, target)
        except DragRejectedError as exc:
            self._store.report("Move task", exc)
            raise
        if plan is None:
            return DropOutcome(DropResult.NOOP, resolved)

        logger.info(
            "Moving task %s from %s to %s at %s", plan.task_id, plan.source.value, plan.target.value, plan.index
        )
        await self._store.reorder_tasks(plan.items)
        return DropOutcome(DropResult.MOVED, resolved, move=plan)

    async def _drop_on_timeline(self, gesture, resolved, target, geometry, confirm) -> DropOutcome:
        data = self._store.today_data
        try:
            start = timeline_drop_start(target, resolved.point, geometry, self._config)
            plan = plan_timeline_drop(data, gesture, start, self._store.scheduled_tasks())
        except DragRejectedError as exc:
            self._store.report("Schedule task", exc)
            raise

        if plan.has_conflicts:
            accepted = False
            if confirm is not None:
                accepted = confirm(plan)
                if inspect.isawaitable(accepted):
                    accepted = await accepted
            if not accepted:
                logger.info(
                    "Scheduling %s at %s cancelled, overlaps %s",
                    plan.task.id,
                    plan.start.isoformat(),
                    ", ".join(task.id for task in plan.conflicts),
                )
                return DropOutcome(DropResult.CANCELLED, resolved, timeline=plan)

        logger.info("Scheduling task %s at %s", plan.task.id, plan.start.isoformat())
        await self._store.update_task(plan.changes())
        return DropOutcome(DropResult.SCHEDULED, resolved, timeline=plan)
