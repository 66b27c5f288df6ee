import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.db.models import Job, JobEventLog
from boxoffice.domain.states import JobStatus, JobEvent
from boxoffice.commands.fail_job import _record_dead
from boxoffice.api.v1.metrics import RECLAIMED_JOBS

logger = logging.getLogger(__name__)

async def requeue_stuck_jobs(session: AsyncSession, timeout_seconds: int, limit: int = 100) -> int:
    """
    Finds jobs stuck in PROCESSING longer than the visibility timeout
    (crashed worker, lost connection) and puts them back in the queue.

    A reclaim counts as a failed attempt, so a job that keeps killing its
    worker ends up DEAD instead of looping forever.
    Returns number of jobs recovered.
    """
    now = datetime.now(timezone.utc)
    cutoff = now - timedelta(seconds=timeout_seconds)

    stmt = (
        select(Job)
        .where(
            Job.status == JobStatus.PROCESSING,
            Job.started_at < cutoff,
        )
        .order_by(Job.started_at.asc())
        .limit(limit)
        .with_for_update(skip_locked=True)
    )
    stuck = (await session.execute(stmt)).scalars().all()

    if not stuck:
        return 0

    count = 0
    for job in stuck:
        count += 1
        worker_id = job.locked_by
        error = f"Visibility timeout exceeded ({timeout_seconds}s) on worker {worker_id}"

        job.attempts += 1
        job.last_error = error
        job.locked_by = None
        job.updated_at = now

        if job.attempts >= job.max_attempts:
            job.status = JobStatus.DEAD
            _record_dead(session, job, error, "visibility_timeout", now)
            logger.error(
                "Reclaimed job %s (%s) is out of attempts (%s/%s), moved to dead letter",
                job.id, job.type, job.attempts, job.max_attempts,
            )
        else:
            job.status = JobStatus.PENDING
            job.started_at = None
            job.next_run_at = now
            session.add(JobEventLog(
                job_id=job.id,
                event_type=JobEvent.RECLAIMED,
                timestamp=now,
                meta={"reason": "visibility_timeout", "worker_id": worker_id, "attempts": job.attempts}
            ))
            logger.warning(
                "Reclaimed job %s (%s) from worker %s, attempt %s/%s",
                job.id, job.type, worker_id, job.attempts, job.max_attempts,
            )

    RECLAIMED_JOBS.inc(count)

    await session.flush()
    return count
