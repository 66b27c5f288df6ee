import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from croniter import croniter
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.db.models import Job
from boxoffice.domain.states import JobStatus, JobType
from boxoffice.commands.enqueue_job import enqueue_job
from boxoffice.commands.requeue_stuck import requeue_stuck_jobs
from boxoffice.api.v1.metrics import QUEUE_DEPTH, JOBS_INFLIGHT
from boxoffice.settings import Settings

logger = logging.getLogger(__name__)

@dataclass
class CronSchedule:
    """A recurring job. ``next_run_at`` is kept in memory by the leader."""
    name: str
    cron: str
    job_type: JobType
    payload: dict[str, Any] = field(default_factory=dict)
    next_run_at: Optional[datetime] = None

    def is_due(self, now: datetime) -> bool:
        if self.next_run_at is None:
            self.next_run_at = croniter(self.cron, now).get_next(datetime)
            logger.info("Schedule %s first run at %s", self.name, self.next_run_at.isoformat())
            return False
        return now >= self.next_run_at

    def advance(self, now: datetime) -> None:
        self.next_run_at = croniter(self.cron, now).get_next(datetime)

def default_schedules(settings: Settings) -> list[CronSchedule]:
    return [
        CronSchedule(
            name="orphaned-order-cleanup",
            cron=settings.ORPHANED_ORDER_CLEANUP_CRON,
            job_type=JobType.ORPHANED_ORDER_CLEANUP,
            payload={"older_than_hours": settings.ORPHANED_ORDER_HOURS},
        ),
        CronSchedule(
            name="cleanup-old-jobs",
            cron=settings.CLEANUP_OLD_JOBS_CRON,
            job_type=JobType.CLEANUP_OLD_JOBS,
            payload={"older_than_days": settings.JOB_RETENTION_DAYS},
        ),
    ]

async def run_leader_tasks(
    session: AsyncSession,
    settings: Settings,
    schedules: list[CronSchedule],
    now: Optional[datetime] = None,
):
    """
    Periodic maintenance, run by the leader only:
    1. Reclaim jobs stuck in PROCESSING past the visibility timeout
    2. Enqueue every cron schedule that is due

    Each step commits or rolls back on its own; a failing step is logged
    and never stops the others.
    """
    now = now or datetime.now(timezone.utc)

    try:
        reclaimed = await requeue_stuck_jobs(session, settings.VISIBILITY_TIMEOUT_SECONDS)
        await session.commit()
        if reclaimed:
            logger.info("Reclaimed %s stuck job(s)", reclaimed)
    except Exception:
        await session.rollback()
        logger.exception("Reclaim sweep failed")

    for schedule in schedules:
        try:
            if not schedule.is_due(now):
                continue
            job_id = await enqueue_job(
                session, schedule.job_type, schedule.payload, max_attempts=settings.JOB_MAX_ATTEMPTS,
            )
            await session.commit()
            schedule.advance(now)
            logger.info("Schedule %s enqueued job %s, next run at %s", schedule.name, job_id, schedule.next_run_at)
        except Exception:
            await session.rollback()
            logger.exception("Schedule %s failed", schedule.name)

async def run_metrics_tasks(session: AsyncSession):
    """Refreshes queue gauges. Runs on every instance so /metrics is current."""
    rows = (await session.execute(
        select(Job.status, Job.type, func.count(Job.id))
        .group_by(Job.status, Job.type)
    )).all()

    # Unseen combinations drop to zero instead of keeping a stale value
    for status in JobStatus:
        for job_type in JobType:
            QUEUE_DEPTH.labels(status=str(status), job_type=str(job_type)).set(0)

    inflight = 0
    for status, job_type, count in rows:
        QUEUE_DEPTH.labels(status=status, job_type=job_type).set(count)
        if status == JobStatus.PROCESSING:
            inflight += count
    JOBS_INFLIGHT.set(inflight)

    await session.commit()
