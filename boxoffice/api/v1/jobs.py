from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select

from boxoffice.api.deps import DbSession
from boxoffice.auth.security import require_scope
from boxoffice.commands.retry_job import retry_dead_job
from boxoffice.db.models import Job
from boxoffice.domain.errors import InvalidJobStateError, JobNotFoundError
from boxoffice.domain.states import JobStatus, JobType

router = APIRouter()

class JobResponse(BaseModel):
    id: UUID
    type: str
    status: JobStatus
    payload: dict[str, Any]
    result: Optional[dict[str, Any]] = None
    priority: int
    attempts: int
    max_attempts: int
    last_error: Optional[str] = None
    next_run_at: datetime
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime] = None
    locked_by: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)

@router.get("", response_model=list[JobResponse], dependencies=[Depends(require_scope("jobs:read"))])
async def list_jobs(
    session: DbSession,
    status: Optional[JobStatus] = None,
    type: Optional[JobType] = None,
    limit: int = Query(50, ge=1, le=500),
):
    stmt = select(Job).order_by(Job.created_at.desc()).limit(limit)
    if status is not None:
        stmt = stmt.where(Job.status == status)
    if type is not None:
        stmt = stmt.where(Job.type == type)
    return (await session.execute(stmt)).scalars().all()

@router.get("/{job_id}", response_model=JobResponse, dependencies=[Depends(require_scope("jobs:read"))])
async def get_job(job_id: UUID, session: DbSession):
    job = await session.get(Job, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job

@router.post("/{job_id}/retry", response_model=JobResponse, dependencies=[Depends(require_scope("jobs:write"))])
async def retry_job(job_id: UUID, session: DbSession):
    try:
        job = await retry_dead_job(session, job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    except InvalidJobStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    await session.commit()
    return job
