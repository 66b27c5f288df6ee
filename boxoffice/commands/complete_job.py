import logging
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.db.models import Job, JobEventLog
from boxoffice.domain.states import JobStatus, JobEvent
from boxoffice.api.v1.metrics import JOB_DURATION, JOB_COMPLETE_TOTAL

logger = logging.getLogger(__name__)

async def complete_job(
    session: AsyncSession,
    job_id: UUID,
    result_data: Optional[dict[str, Any]] = None,
) -> Optional[Job]:
    """
    Marks a PROCESSING job as SUCCEEDED and stores its result.

    Returns None when the job is no longer PROCESSING (for instance the
    reclaim sweep took it back from a slow worker); the newer state wins.
    """
    now = datetime.now(timezone.utc)

    stmt = (
        update(Job)
        .where(Job.id == job_id, Job.status == JobStatus.PROCESSING)
        .values(
            status=JobStatus.SUCCEEDED,
            result=result_data,
            last_error=None,
            updated_at=now,
        )
        .returning(Job)
        .execution_options(populate_existing=True)
    )
    job = (await session.execute(stmt)).scalar_one_or_none()
    if job is None:
        logger.warning("Job %s is no longer processing; completion ignored", job_id)
        return None

    if job.started_at:
        started_at = job.started_at
        if started_at.tzinfo is None:
            started_at = started_at.replace(tzinfo=timezone.utc)
        duration = (now - started_at).total_seconds()
        if duration > 0:
            JOB_DURATION.observe(duration)

    JOB_COMPLETE_TOTAL.labels(job_type=job.type).inc()

    session.add(JobEventLog(
        job_id=job.id,
        event_type=JobEvent.SUCCEEDED,
        timestamp=now,
        meta={"worker_id": job.locked_by, "attempt": job.attempts + 1}
    ))
    await session.flush()
    return job
