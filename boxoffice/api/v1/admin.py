import logging

from fastapi import APIRouter, Depends

from boxoffice.api.deps import DbSession, AppSettings
from boxoffice.auth.security import require_scope, require_payment_sync
from boxoffice.commands.enqueue_job import enqueue_job
from boxoffice.commands.payments import list_active_payments, set_mock_payment_status
from boxoffice.domain.models import PaymentWebhookPayload, OrphanedOrderCleanupPayload
from boxoffice.domain.states import JobType, PaymentProviderName, PaymentStatus

logger = logging.getLogger(__name__)

router = APIRouter()

@router.post("/sync-payments")
async def sync_payments(session: DbSession, config: AppSettings, claims: dict = Depends(require_payment_sync)):
    """
    Re-checks every open payment with its provider by queueing a webhook job
    for it. Recovers webhooks the provider never delivered.
    """
    payments = await list_active_payments(session)

    auto_completed = 0
    queued = 0
    for payment in payments:
        if (
            config.MOCK_PAYMENT_AUTO_COMPLETE
            and payment.provider == PaymentProviderName.MOCK
            and payment.status == PaymentStatus.PENDING
        ):
            set_mock_payment_status(payment, "paid")
            auto_completed += 1

        await enqueue_job(
            session,
            JobType.PAYMENT_WEBHOOK,
            PaymentWebhookPayload(payment_id=payment.provider_transaction_id),
            max_attempts=config.JOB_MAX_ATTEMPTS,
        )
        queued += 1

    await session.commit()
    logger.info("Payment sync by %s: %s job(s) queued, %s mock payment(s) auto-completed",
                claims.get("sub"), queued, auto_completed)
    return {"checked": len(payments), "queued": queued, "auto_completed": auto_completed}

@router.post("/sync-orders")
async def sync_orders(session: DbSession, config: AppSettings, claims: dict = Depends(require_scope("sync:orders"))):
    job_id = await enqueue_job(
        session,
        JobType.ORPHANED_ORDER_CLEANUP,
        OrphanedOrderCleanupPayload(older_than_hours=config.ORPHANED_ORDER_HOURS),
        max_attempts=config.JOB_MAX_ATTEMPTS,
    )
    await session.commit()
    logger.info("Orphaned order cleanup requested by %s, job %s", claims.get("sub"), job_id)
    return {"job_id": str(job_id)}
