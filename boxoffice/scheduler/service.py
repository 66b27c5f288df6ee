import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncSession

from boxoffice.db.session import engine as default_engine
from boxoffice.utils.locking import try_advisory_lock
from boxoffice.scheduler.ticker import CronSchedule, default_schedules, run_leader_tasks, run_metrics_tasks
from boxoffice.api.v1.metrics import LEADER_STATUS
from boxoffice.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

class SchedulerService:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        engine: Optional[AsyncEngine] = None,
        schedules: Optional[list[CronSchedule]] = None,
    ):
        self.settings = settings or default_settings
        self.engine = engine or default_engine
        self.interval = self.settings.SCHEDULER_INTERVAL_SECONDS
        self.schedules = schedules if schedules is not None else default_schedules(self.settings)
        self._running = False
        self._task = None
        self._is_leader = False
        self._connection: Optional[AsyncConnection] = None
        self._session: Optional[AsyncSession] = None

    async def start(self):
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Scheduler service started.")

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Scheduler service stopped.")

    async def tick(self):
        """One scheduler iteration: leader tasks if we hold the lock, then metrics."""
        try:
            session = await self._get_session()
            is_leader = await try_advisory_lock(session)
            await session.commit()

            if is_leader:
                if not self._is_leader:
                    logger.info("Acquired leadership. Starting scheduler.")
                    self._is_leader = True
                    LEADER_STATUS.set(1)
                await run_leader_tasks(session, self.settings, self.schedules)
            else:
                if self._is_leader:
                    logger.info("Lost leadership. Stopping scheduler.")
                    self._is_leader = False
                    LEADER_STATUS.set(0)

            await run_metrics_tasks(session)
        except Exception as e:
            logger.error(f"Error in scheduler ticker: {e}", exc_info=True)
            self._is_leader = False
            LEADER_STATUS.set(0)

            # If DB error, close session and retry to reconnect
            await self.close()

    async def _get_session(self) -> AsyncSession:
        # The advisory lock belongs to a connection, so the scheduler keeps
        # one for itself instead of going through the pool on every commit
        if self._session is None:
            self._connection = await self.engine.connect()
            self._session = AsyncSession(bind=self._connection, expire_on_commit=False)
        return self._session

    async def close(self):
        if self._session is not None:
            await self._session.close()
            self._session = None
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    async def _loop(self):
        try:
            while self._running:
                await self.tick()
                await asyncio.sleep(self.interval)
        finally:
            await self.close()
