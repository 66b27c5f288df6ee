#!/usr/bin/env python3
import asyncio

from boxoffice.db.session import AsyncSessionLocal, engine
from boxoffice.settings import settings
from boxoffice.utils.logging import configure_logging
from boxoffice.worker.runner import WorkerRunner


async def main():
    configure_logging(settings.LOG_LEVEL)
    runner = WorkerRunner(AsyncSessionLocal, settings)
    try:
        await runner.run()
    finally:
        await engine.dispose()

if __name__ == '__main__':
    asyncio.run(main())
