from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.db.models import Job, JobEventLog
from boxoffice.domain.states import JobStatus, JobEvent
from boxoffice.domain.errors import JobNotFoundError, InvalidJobStateError

async def retry_dead_job(session: AsyncSession, job_id: UUID) -> Job:
    """
    Operator action: gives a DEAD job a fresh attempt budget and makes it
    claimable right away.
    """
    now = datetime.now(timezone.utc)

    job = await session.get(Job, job_id, with_for_update=True)
    if not job:
        raise JobNotFoundError(job_id)

    if job.status != JobStatus.DEAD:
        raise InvalidJobStateError(job.status, JobStatus.PENDING)

    previous_error = job.last_error
    job.status = JobStatus.PENDING
    job.attempts = 0
    job.next_run_at = now
    job.started_at = None
    job.locked_by = None
    job.updated_at = now

    session.add(JobEventLog(
        job_id=job.id,
        event_type=JobEvent.RETRIED,
        timestamp=now,
        meta={"previous_error": previous_error, "reason": "operator"}
    ))
    await session.flush()
    return job
