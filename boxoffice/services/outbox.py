import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from boxoffice.db.session import AsyncSessionLocal
from boxoffice.db.models import OutboxEvent

logger = logging.getLogger(__name__)

class OutboxProcessor:
    """
    Hands order outcomes and dead jobs to the notification side
    (confirmation mail, ticket generation, operator alerts).
    Events are written in the same transaction as the change they announce.
    """

    def __init__(self, interval: float = 1.0, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self.interval = interval
        self.session_factory = session_factory or AsyncSessionLocal
        self.running = False
        self._task = None

    async def start(self):
        self.running = True
        self._task = asyncio.create_task(self.run_loop())
        logger.info("OutboxProcessor started.")

    async def stop(self):
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("OutboxProcessor stopped.")

    async def run_loop(self):
        while self.running:
            try:
                processed_count = await self.process_batch()
                if processed_count == 0:
                    await asyncio.sleep(self.interval)
            except Exception as e:
                logger.error(f"Error in OutboxProcessor: {e}", exc_info=True)
                await asyncio.sleep(self.interval)

    async def process_batch(self, batch_size: int = 50) -> int:
        async with self.session_factory() as session:
            async with session.begin():
                stmt = (
                    select(OutboxEvent)
                    .where(OutboxEvent.status == "PENDING")
                    .order_by(OutboxEvent.created_at.asc(), OutboxEvent.id.asc())
                    .with_for_update(skip_locked=True)
                    .limit(batch_size)
                )
                events = (await session.execute(stmt)).scalars().all()

                if not events:
                    return 0

                published = 0
                for event in events:
                    try:
                        await self._publish(event)
                    except Exception:
                        # Stays PENDING and is picked up by the next batch
                        logger.exception("Failed to publish outbox event %s", event.id)
                        continue
                    event.status = "PUBLISHED"
                    event.published_at = datetime.now(timezone.utc)
                    published += 1

                return published

    async def _publish(self, event: OutboxEvent):
        """
        Broadcasts the event to the configured message bus.
        Currently logs the event; mail and ticket generation subscribe downstream.
        """
        if event.event_type == "job.dead":
            logger.error(f"OUTBOX PUBLISH: ID={event.id}, Type={event.event_type}, Payload={event.payload}")
        else:
            logger.info(f"OUTBOX PUBLISH: ID={event.id}, Type={event.event_type}, Payload={event.payload}")
