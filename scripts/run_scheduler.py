#!/usr/bin/env python3
"""Standalone scheduler, for deployments that set RUN_SCHEDULER_IN_API=false."""
import asyncio
import signal

from boxoffice.db.session import engine
from boxoffice.scheduler.service import SchedulerService
from boxoffice.services.outbox import OutboxProcessor
from boxoffice.settings import settings
from boxoffice.utils.logging import configure_logging

async def main():
    configure_logging(settings.LOG_LEVEL)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows support
            pass

    scheduler = SchedulerService(settings)
    await scheduler.start()

    outbox = None
    if not settings.RUN_OUTBOX_IN_API:
        outbox = OutboxProcessor()
        await outbox.start()

    await stop.wait()

    await scheduler.stop()
    if outbox:
        await outbox.stop()
    await engine.dispose()

if __name__ == '__main__':
    asyncio.run(main())
