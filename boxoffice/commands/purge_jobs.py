import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.db.models import Job, JobEventLog
from boxoffice.domain.states import TERMINAL_JOB_STATUSES

logger = logging.getLogger(__name__)

async def purge_old_jobs(session: AsyncSession, days: int) -> int:
    """Deletes SUCCEEDED and DEAD jobs last touched more than ``days`` ago."""
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)

    expired_ids = (
        select(Job.id)
        .where(
            Job.status.in_(TERMINAL_JOB_STATUSES),
            Job.updated_at < cutoff,
        )
    )

    # Explicit so engines without enforced FK cascades do not keep orphans
    await session.execute(
        delete(JobEventLog)
        .where(JobEventLog.job_id.in_(expired_ids))
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(
        delete(Job)
        .where(Job.id.in_(expired_ids))
        .execution_options(synchronize_session=False)
    )
    deleted = result.rowcount or 0

    logger.info("Purged %s finished jobs older than %s days", deleted, days)
    return deleted
