import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.db.models import Job, JobEventLog, OutboxEvent
from boxoffice.domain.states import JobStatus, JobEvent
from boxoffice.api.v1.metrics import JOB_FAILURES, JOB_DEAD

logger = logging.getLogger(__name__)

async def fail_job(
    session: AsyncSession,
    job_id: UUID,
    error: str,
    next_run_at: datetime,
) -> Optional[Job]:
    """
    Records a failed attempt and puts the job back in the queue.

    The attempt counter goes up by one; the job becomes claimable again at
    ``next_run_at``. Only a PROCESSING job is touched.
    """
    now = datetime.now(timezone.utc)

    stmt = (
        update(Job)
        .where(Job.id == job_id, Job.status == JobStatus.PROCESSING)
        .values(
            status=JobStatus.PENDING,
            attempts=Job.attempts + 1,
            next_run_at=next_run_at,
            last_error=error,
            started_at=None,
            locked_by=None,
            updated_at=now,
        )
        .returning(Job)
        .execution_options(populate_existing=True)
    )
    job = (await session.execute(stmt)).scalar_one_or_none()
    if job is None:
        logger.warning("Job %s is no longer processing; failure not recorded", job_id)
        return None

    JOB_FAILURES.labels(job_type=job.type, type="retryable").inc()

    session.add(JobEventLog(
        job_id=job.id,
        event_type=JobEvent.FAILED,
        timestamp=now,
        meta={
            "error": error,
            "attempts": job.attempts,
            "max": job.max_attempts,
            "next_run_at": next_run_at.isoformat(),
        }
    ))
    await session.flush()
    return job

async def dead_letter_job(
    session: AsyncSession,
    job_id: UUID,
    error: str,
    reason: str = "failed",
) -> Optional[Job]:
    """
    Moves a PROCESSING job to DEAD. Dead jobs are never picked up again
    until an operator retries them.
    """
    now = datetime.now(timezone.utc)

    stmt = (
        update(Job)
        .where(Job.id == job_id, Job.status == JobStatus.PROCESSING)
        .values(
            status=JobStatus.DEAD,
            attempts=Job.attempts + 1,
            last_error=error,
            locked_by=None,
            updated_at=now,
        )
        .returning(Job)
        .execution_options(populate_existing=True)
    )
    job = (await session.execute(stmt)).scalar_one_or_none()
    if job is None:
        logger.warning("Job %s is no longer processing; dead-letter not recorded", job_id)
        return None

    _record_dead(session, job, error, reason, now)
    await session.flush()
    return job

def _record_dead(session: AsyncSession, job: Job, error: str, reason: str, now: datetime) -> None:
    JOB_FAILURES.labels(job_type=job.type, type="final").inc()
    JOB_DEAD.labels(job_type=job.type).inc()

    session.add(JobEventLog(
        job_id=job.id,
        event_type=JobEvent.DEAD,
        timestamp=now,
        meta={"error": error, "attempts": job.attempts, "max": job.max_attempts, "reason": reason}
    ))

    # Operators get told about dead jobs through the outbox
    session.add(OutboxEvent(
        event_type="job.dead",
        payload={
            "job_id": str(job.id),
            "job_type": job.type,
            "attempts": job.attempts,
            "error": error,
            "reason": reason,
        }
    ))
