from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from planboard.config import SETTINGS, Settings
from planboard.domain.entities import TimelineConfig, TodayDTO
from planboard.infra.logging import setup_logging
from planboard.infra.remote import RemoteTaskService, Transport
from planboard.infra.timers import Scheduler
from planboard.services.drag_drop import DragDropService
from planboard.services.planning_store import PlanningStore

logger = logging.getLogger(__name__)


@dataclass
class PlanningApp:
    store: PlanningStore
    drag_drop: DragDropService
    service: RemoteTaskService
    config: TimelineConfig

    async def start(self, day: date | None = None) -> TodayDTO | None:
        if self.store.vault_id:
            await self.store.load_ui_state()
        return await self.store.load_today_data(day)

    async def close(self) -> None:
        self.store.cancel_pending()
        await self.store.flush_ui_state()
        await self.store.wait_idle()


def create_app(
    transport: Transport,
    *,
    scheduler: Scheduler | None = None,
    settings: Settings = SETTINGS,
    configure_logging: bool = True,
) -> PlanningApp:
    if configure_logging:
        setup_logging(settings)
    config = settings.timeline_config()
    service = RemoteTaskService(transport)
    store = PlanningStore(service, scheduler=scheduler, settings=settings)
    logger.info("Planning board ready (day %s-%s, snap %s min)", config.day_start, config.day_end, config.snap_minutes)
    return PlanningApp(
        store=store,
        drag_drop=DragDropService(store, config),
        service=service,
        config=config,
    )
