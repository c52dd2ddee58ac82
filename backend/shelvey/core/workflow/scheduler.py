"""
Timeout Scheduler - periodic escalation sweep.

Optional in-process trigger for EscalationEngine.check_timeouts. Each tick
sweeps every project with open escalations, then drains the outbox. An
external cron calling the check_timeouts action is equivalent.
"""

import asyncio
from contextlib import AbstractAsyncContextManager
from typing import Callable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from shelvey.core.clock import Clock, utcnow
from shelvey.core.config import Settings, settings as default_settings
from shelvey.core.database import get_db_session
from shelvey.core.repositories import EscalationRepository
from shelvey.core.workflow.effects import EffectDispatcher
from shelvey.core.workflow.escalation import EscalationEngine

logger = structlog.get_logger()

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class TimeoutScheduler:
    """Runs the escalation timeout sweep every TIMEOUT_SWEEP_INTERVAL_SECONDS."""

    def __init__(
        self,
        session_factory: SessionFactory = get_db_session,
        config: Optional[Settings] = None,
        clock: Clock = utcnow,
    ):
        self.session_factory = session_factory
        self.config = config or default_settings
        self.clock = clock

        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start the sweep loop."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "Timeout scheduler started",
            interval_seconds=self.config.TIMEOUT_SWEEP_INTERVAL_SECONDS,
        )

    async def stop(self):
        """Stop the sweep loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Timeout scheduler stopped")

    async def tick(self) -> dict[str, int]:
        """Run one sweep over all projects with open escalations."""
        checked = escalated = 0

        async with self.session_factory() as db:
            engine = EscalationEngine(db, clock=self.clock, config=self.config)
            project_ids = await EscalationRepository(db).project_ids_with_status(
                EscalationEngine.SWEEPABLE
            )

            for project_id in project_ids:
                result = await engine.check_timeouts(project_id)
                checked += result["checked"]
                escalated += result["escalated"]

            drained = await EffectDispatcher(db, config=self.config, clock=self.clock).drain()

        if escalated or drained.attempted:
            logger.info(
                "Timeout sweep completed",
                projects=len(project_ids),
                checked=checked,
                escalated=escalated,
                effects_delivered=drained.delivered,
            )

        return {"projects": len(project_ids), "checked": checked, "escalated": escalated}

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Timeout sweep error", error=str(e))

            await asyncio.sleep(self.config.TIMEOUT_SWEEP_INTERVAL_SECONDS)
