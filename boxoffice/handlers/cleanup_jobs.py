import logging

from boxoffice.domain.models import CleanupOldJobsPayload
from boxoffice.commands.purge_jobs import purge_old_jobs
from boxoffice.handlers.registry import JobContext

logger = logging.getLogger(__name__)

async def handle_cleanup_old_jobs(ctx: JobContext, payload: CleanupOldJobsPayload) -> dict:
    deleted = await purge_old_jobs(ctx.session, payload.older_than_days)
    return {"deleted": deleted, "older_than_days": payload.older_than_days}
