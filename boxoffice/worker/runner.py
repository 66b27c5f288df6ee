import asyncio
import logging
import signal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from boxoffice.payments.gateway import PaymentGateway
from boxoffice.settings import Settings
from boxoffice.worker.dispatcher import Dispatcher, default_worker_id

logger = logging.getLogger(__name__)

# Pause after an unexpected loop error (database down, etc.)
ERROR_BACKOFF_SECONDS = 5.0

class WorkerRunner:
    """Runs ``concurrency`` independent dispatcher loops until stopped."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        payments: Optional[PaymentGateway] = None,
        concurrency: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.payments = payments or PaymentGateway(settings)
        self.concurrency = concurrency or settings.WORKER_CONCURRENCY
        self.poll_interval = settings.WORKER_POLL_INTERVAL_SECONDS
        self.running = False
        self._shutdown_event = asyncio.Event()

    async def run(self, install_signal_handlers: bool = True):
        self.running = True
        self._shutdown_event.clear()

        if install_signal_handlers:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, self.stop)
                except NotImplementedError:
                    # Windows support
                    pass

        dispatchers = [
            Dispatcher(self.session_factory, self.settings, self.payments, worker_id=default_worker_id(i))
            for i in range(self.concurrency)
        ]
        logger.info("Worker runner started with %s dispatcher(s)", len(dispatchers))

        try:
            await asyncio.gather(*(self._loop(d) for d in dispatchers))
        finally:
            await self.payments.aclose()
            logger.info("Worker runner stopped")

    def stop(self):
        logger.info("Shutdown signal received")
        self.running = False
        self._shutdown_event.set()

    async def _loop(self, dispatcher: Dispatcher):
        logger.info("Dispatcher %s started", dispatcher.worker_id)
        while self.running:
            try:
                processed = await dispatcher.run_once()
                if not processed:
                    await self._sleep(self.poll_interval)
            except Exception as e:
                logger.exception("Error in dispatcher loop for worker %s: %s", dispatcher.worker_id, e)
                await self._sleep(ERROR_BACKOFF_SECONDS)
        logger.info("Dispatcher %s stopped", dispatcher.worker_id)

    async def _sleep(self, seconds: float):
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
