#!/usr/bin/env python3
"""Creates all tables on SQLALCHEMY_DATABASE_URI."""
import asyncio
import logging

from boxoffice.db.session import Base, engine
from boxoffice.db import models  # noqa: F401  (registers the tables)
from boxoffice.settings import settings
from boxoffice.utils.logging import configure_logging

logger = logging.getLogger("boxoffice.init_db")

async def main():
    configure_logging(settings.LOG_LEVEL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Created tables: %s", ", ".join(sorted(Base.metadata.tables)))
    await engine.dispose()

if __name__ == '__main__':
    asyncio.run(main())
