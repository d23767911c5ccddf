"""Periodic sweep that settles auctions whose window has closed."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import Settings, settings as default_settings
from app.db import session_scope
from app.models import utcnow

from .notifications import NotificationSink
from .settlement_service import SettlementService

JOB_ID = "settle-expired-auctions"


@dataclass
class SchedulerState:
    running: bool = False
    last_run_at: datetime | None = None
    runs: int = 0
    last_settled: list[str] = field(default_factory=list)


class ExpiryScheduler:
    """Run :meth:`SettlementService.settle_expired` on a fixed interval.

    The sweep itself is synchronous and runs in a worker thread so request
    handling on the event loop is never blocked by it. ``max_instances=1``
    keeps sweeps from overlapping; the settlement claim keeps them from
    double-settling against manual calls.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        state: SchedulerState | None = None,
        *,
        settings: Settings | None = None,
        notifier: NotificationSink | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self.state = state or SchedulerState()
        self._settings = settings or default_settings
        self._notifier = notifier
        self._clock = clock
        self._scheduler: AsyncIOScheduler | None = None

    def run_once(self) -> list[str]:
        with session_scope(self._session_factory) as session:
            service = SettlementService(
                session,
                settings=self._settings,
                notifier=self._notifier,
                clock=self._clock,
            )
            settled = service.settle_expired(self._clock())

        self.state.last_run_at = self._clock()
        self.state.runs += 1
        self.state.last_settled = settled
        return settled

    async def tick(self) -> list[str]:
        try:
            return await asyncio.to_thread(self.run_once)
        except Exception:
            logger.exception("Expiry sweep failed")
            return []

    def start(self) -> bool:
        """Schedule the sweep on the running loop. Returns False if already running."""

        if self.state.running:
            logger.debug("Expiry scheduler already running")
            return False

        interval = max(1, int(self._settings.settle_interval_seconds))
        scheduler = AsyncIOScheduler(timezone="UTC")
        scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=interval),
            id=JOB_ID,
            name="Settle expired auctions",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=interval,
            next_run_time=utcnow(),
            replace_existing=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        self.state.running = True
        logger.info("Expiry scheduler started (every {}s)", interval)
        return True

    def stop(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        if self.state.running:
            logger.info("Expiry scheduler stopped")
        self.state.running = False
