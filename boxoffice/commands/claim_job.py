import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.db.models import Job, JobEventLog
from boxoffice.domain.states import JobStatus, JobEvent
from boxoffice.api.v1.metrics import JOB_START_DELAY

logger = logging.getLogger(__name__)

async def claim_next_job(session: AsyncSession, worker_id: str) -> Optional[Job]:
    """
    Atomically claims the next runnable job for ``worker_id``.

    Two steps, both inside the caller's transaction:
        1. SELECT the best PENDING candidate FOR UPDATE SKIP LOCKED, so
           concurrent dispatchers skip rows another one is looking at.
        2. UPDATE ... WHERE status='pending' RETURNING, so even without row
           locks (SQLite) only one claimer can flip the row.
    """
    now = datetime.now(timezone.utc)

    candidate_q = (
        select(Job.id)
        .where(
            Job.status == JobStatus.PENDING,
            Job.next_run_at <= now,
        )
        .order_by(
            Job.priority.desc(),
            Job.next_run_at.asc(),
            Job.created_at.asc(),
        )
        .with_for_update(skip_locked=True)
        .limit(1)
    )
    candidate_id = (await session.execute(candidate_q)).scalar_one_or_none()
    if candidate_id is None:
        return None

    stmt = (
        update(Job)
        .where(
            Job.id == candidate_id,
            Job.status == JobStatus.PENDING,
        )
        .values(
            status=JobStatus.PROCESSING,
            started_at=now,
            locked_by=worker_id,
            updated_at=now,
        )
        .returning(Job)
        .execution_options(populate_existing=True)
    )
    job = (await session.execute(stmt)).scalar_one_or_none()
    if job is None:
        # Lost the race to another dispatcher
        logger.debug("Job %s was claimed by someone else", candidate_id)
        return None

    next_run_at = job.next_run_at
    if next_run_at is not None:
        if next_run_at.tzinfo is None:
            next_run_at = next_run_at.replace(tzinfo=timezone.utc)
        delay = (now - next_run_at).total_seconds()
        if delay >= 0:
            JOB_START_DELAY.observe(delay)

    session.add(JobEventLog(
        job_id=job.id,
        event_type=JobEvent.CLAIMED,
        timestamp=now,
        meta={"worker_id": worker_id, "attempt": job.attempts + 1}
    ))
    await session.flush()
    return job
