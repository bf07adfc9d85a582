import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.v1.metrics import LEADER_STATUS
from app.scheduler.dispatcher import Dispatcher
from app.scheduler.ticker import run_leader_tasks, run_metrics_tasks
from app.utils.locking import try_advisory_lock

logger = logging.getLogger(__name__)


class SchedulerService:
    """
    In-process periodic trigger. Only the instance holding the advisory
    leader lock dispatches; every instance refreshes its gauges.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: Dispatcher,
        interval: float = 10.0,
        max_jobs_per_tick: int = 5,
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.interval = interval
        self.max_jobs_per_tick = max_jobs_per_tick
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._is_leader = False

    @property
    def is_leader(self) -> bool:
        return self._is_leader

    async def start(self):
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Scheduler service started (interval={self.interval}s).")

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Scheduler service stopped.")

    async def tick(self, session: AsyncSession) -> int:
        # Leadership lasts for this transaction; run_metrics_tasks commits and releases it
        is_leader = await try_advisory_lock(session)
        processed = 0

        if is_leader:
            if not self._is_leader:
                logger.info("Acquired leadership. Starting dispatch.")
                self._is_leader = True
            LEADER_STATUS.set(1)
            processed = await run_leader_tasks(self.dispatcher, self.max_jobs_per_tick)
        else:
            if self._is_leader:
                logger.info("Lost leadership. Stopping dispatch.")
                self._is_leader = False
            LEADER_STATUS.set(0)

        await run_metrics_tasks(session)
        return processed

    async def _loop(self):
        while self._running:
            try:
                async with self.session_factory() as session:
                    await self.tick(session)
            except Exception as e:
                logger.error(f"Error in scheduler ticker: {e}", exc_info=True)
                self._is_leader = False
                LEADER_STATUS.set(0)

            await asyncio.sleep(self.interval)
