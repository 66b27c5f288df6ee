import logging
import socket
import os
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from boxoffice.domain.errors import error_kind, ErrorKind
from boxoffice.domain.retry import calculate_next_run
from boxoffice.domain.states import JobType
from boxoffice.commands.claim_job import claim_next_job
from boxoffice.commands.complete_job import complete_job
from boxoffice.commands.fail_job import fail_job, dead_letter_job
from boxoffice.handlers.registry import JobContext, Handler, default_handlers, resolve
from boxoffice.payments.gateway import PaymentGateway
from boxoffice.settings import Settings

logger = logging.getLogger(__name__)

def default_worker_id(index: int = 0) -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{index}"

class Dispatcher:
    """
    Claims one job at a time and drives it to its next state.

    Transactions per job:
        1. claim, committed on its own so other dispatchers see PROCESSING;
        2. handler writes + ``complete_job``, committed together;
        3. on failure, (2) is rolled back and the failure is recorded in a
           fresh transaction.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        payments: PaymentGateway,
        worker_id: Optional[str] = None,
        handlers: Optional[dict[JobType, Handler]] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.payments = payments
        self.worker_id = worker_id or default_worker_id()
        self.handlers = handlers if handlers is not None else default_handlers()

    async def run_once(self) -> bool:
        """Processes at most one job. Returns False when the queue was empty."""
        async with self.session_factory() as session:
            job = await claim_next_job(session, self.worker_id)
            if job is None:
                await session.commit()
                return False

            job_id, job_type, attempts, max_attempts = job.id, job.type, job.attempts, job.max_attempts
            payload = dict(job.payload or {})
            await session.commit()

            logger.info(
                "Worker %s claimed job %s (%s), attempt %s/%s",
                self.worker_id, job_id, job_type, attempts + 1, max_attempts,
            )

            try:
                result = await self._execute(session, job_id, job_type, attempts, payload)
                await complete_job(session, job_id, result)
                await session.commit()
            except Exception as exc:
                await session.rollback()
                await self._record_failure(session, job_id, job_type, attempts, max_attempts, exc)
                return True

            logger.info("Job %s (%s) succeeded", job_id, job_type)
            return True

    async def _execute(self, session: AsyncSession, job_id: UUID, job_type: str, attempts: int, payload: dict) -> dict:
        handler, parsed = resolve(job_type, payload, self.handlers)
        ctx = JobContext(
            session=session,
            job_id=job_id,
            attempt=attempts + 1,
            settings=self.settings,
            payments=self.payments,
        )
        return await handler(ctx, parsed) or {}

    async def _record_failure(
        self,
        session: AsyncSession,
        job_id: UUID,
        job_type: str,
        attempts: int,
        max_attempts: int,
        exc: Exception,
    ) -> None:
        error = f"{type(exc).__name__}: {exc}"
        kind = error_kind(exc)
        retry = kind is ErrorKind.TRANSIENT and attempts + 1 < max_attempts

        if retry:
            next_run = calculate_next_run(
                attempts,
                base_delay_seconds=self.settings.RETRY_BASE_DELAY_SECONDS,
                max_delay_seconds=self.settings.RETRY_MAX_DELAY_SECONDS,
            )
            logger.warning(
                "Job %s (%s) failed on attempt %s/%s (%s), retrying at %s: %s",
                job_id, job_type, attempts + 1, max_attempts, kind, next_run.isoformat(), error,
            )
            await fail_job(session, job_id, error, next_run)
        else:
            logger.error(
                "Job %s (%s) failed on attempt %s/%s (%s), moving to dead letter: %s",
                job_id, job_type, attempts + 1, max_attempts, kind, error,
                exc_info=exc,
            )
            reason = "permanent_error" if kind is ErrorKind.PERMANENT else "max_attempts"
            await dead_letter_job(session, job_id, error, reason=reason)

        await session.commit()
