import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from boxoffice.settings import settings
from boxoffice.api.v1.jobs import router as jobs_router
from boxoffice.api.v1.admin import router as admin_router
from boxoffice.api.v1.webhooks import router as webhooks_router
from boxoffice.api.v1.metrics import router as metrics_router
from boxoffice.utils.logging import configure_logging

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    from boxoffice.scheduler.service import SchedulerService
    from boxoffice.services.outbox import OutboxProcessor

    configure_logging(settings.LOG_LEVEL)

    scheduler = None
    if settings.RUN_SCHEDULER_IN_API:
        scheduler = SchedulerService(settings)
        await scheduler.start()

    outbox = None
    if settings.RUN_OUTBOX_IN_API:
        outbox = OutboxProcessor()
        await outbox.start()

    logger.info("%s started (scheduler=%s, outbox=%s, mock payments=%s)",
                settings.PROJECT_NAME, bool(scheduler), bool(outbox), settings.USE_MOCK_PAYMENT)

    yield

    # Shutdown
    if scheduler:
        await scheduler.stop()
    if outbox:
        await outbox.stop()

app = FastAPI(
    title=settings.PROJECT_NAME,
    lifespan=lifespan
)

app.include_router(webhooks_router, prefix="/webhooks", tags=["webhooks"])
app.include_router(jobs_router, prefix="/api/v1/jobs", tags=["jobs"])
app.include_router(admin_router, prefix="/api/v1/admin", tags=["admin"])
app.include_router(metrics_router, tags=["metrics"])

@app.get("/health")
async def health():
    return {"status": "ok"}
