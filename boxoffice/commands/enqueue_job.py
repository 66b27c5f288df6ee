import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.db.models import Job, JobEventLog
from boxoffice.domain.states import JobStatus, JobEvent, JobType
from boxoffice.api.v1.metrics import JOB_ENQUEUED
from boxoffice.settings import settings

logger = logging.getLogger(__name__)

async def enqueue_job(
    session: AsyncSession,
    job_type: JobType,
    payload: Union[BaseModel, dict[str, Any]],
    delay_seconds: float = 0,
    max_attempts: Optional[int] = None,
    priority: int = 0,
) -> UUID:
    """
    Persists a new PENDING job and returns its id.

    The caller owns the transaction: the job becomes visible to dispatchers
    only when the surrounding business write commits.
    """
    if isinstance(payload, BaseModel):
        data = payload.model_dump(mode="json")
    else:
        data = dict(payload)

    now = datetime.now(timezone.utc)
    job = Job(
        type=job_type,
        payload=data,
        status=JobStatus.PENDING,
        priority=priority,
        attempts=0,
        max_attempts=max_attempts if max_attempts is not None else settings.JOB_MAX_ATTEMPTS,
        next_run_at=now + timedelta(seconds=delay_seconds),
        created_at=now,
        updated_at=now,
    )
    session.add(job)
    await session.flush()

    session.add(JobEventLog(
        job_id=job.id,
        event_type=JobEvent.CREATED,
        timestamp=now,
        meta={"type": str(job_type), "delay_seconds": delay_seconds}
    ))
    await session.flush()

    JOB_ENQUEUED.labels(job_type=str(job_type)).inc()
    logger.info("Enqueued %s job %s", job_type, job.id)
    return job.id
