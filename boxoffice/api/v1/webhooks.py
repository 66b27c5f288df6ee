import json
import logging
from typing import Optional
from urllib.parse import parse_qs

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from boxoffice.api.deps import DbSession, AppSettings
from boxoffice.api.v1.metrics import WEBHOOKS_RECEIVED
from boxoffice.commands.enqueue_job import enqueue_job
from boxoffice.commands.payments import get_payment_by_transaction_id, set_mock_payment_status
from boxoffice.domain.models import PaymentWebhookPayload
from boxoffice.domain.states import JobType, PaymentProviderName
from boxoffice.payments.provider import PROVIDER_STATUSES

logger = logging.getLogger(__name__)

router = APIRouter()

async def _read_payment_id(request: Request) -> Optional[str]:
    """Mollie posts ``id=tr_xxx`` form-encoded; JSON is accepted too."""
    body = await request.body()
    if not body:
        return None

    content_type = request.headers.get("content-type", "")
    # Some senders post JSON without the matching content type
    if "application/json" in content_type or body.lstrip().startswith(b"{"):
        try:
            data = json.loads(body)
        except ValueError:
            return None
        value = data.get("id") if isinstance(data, dict) else None
        return str(value) if value else None

    values = parse_qs(body.decode("utf-8", errors="replace")).get("id")
    return values[0] if values else None

@router.post("/payment")
async def payment_webhook(request: Request, session: DbSession, config: AppSettings):
    """
    Acknowledges the provider quickly and leaves the real work to a
    ``payment_webhook`` job.
    """
    payment_id = await _read_payment_id(request)
    if not payment_id:
        WEBHOOKS_RECEIVED.labels(outcome="missing_id").inc()
        return JSONResponse(status_code=400, content={"error": "Missing payment ID"})

    try:
        job_id = await enqueue_job(
            session,
            JobType.PAYMENT_WEBHOOK,
            PaymentWebhookPayload(payment_id=payment_id),
            max_attempts=config.JOB_MAX_ATTEMPTS,
        )
        await session.commit()
    except Exception:
        await session.rollback()
        WEBHOOKS_RECEIVED.labels(outcome="enqueue_failed").inc()
        logger.exception("Could not enqueue webhook job for payment %s", payment_id)
        if config.WEBHOOK_ACK_ON_ENQUEUE_FAILURE:
            # Provider stops retrying; the sync-payments endpoint recovers it
            return {"received": True}
        return JSONResponse(status_code=503, content={"error": "Webhook could not be queued"})

    WEBHOOKS_RECEIVED.labels(outcome="enqueued").inc()
    logger.info("Webhook for payment %s queued as job %s", payment_id, job_id)
    return {"received": True}

@router.post("/payment/mock")
async def mock_payment_webhook(
    request: Request,
    session: DbSession,
    config: AppSettings,
    status: str = Query(...),
):
    """Simulates the provider: stores the outcome, then behaves like a webhook."""
    if not config.USE_MOCK_PAYMENT:
        raise HTTPException(status_code=404, detail="Not found")

    if status not in PROVIDER_STATUSES:
        raise HTTPException(status_code=400, detail=f"Invalid status {status!r}")

    payment_id = await _read_payment_id(request)
    if not payment_id:
        raise HTTPException(status_code=400, detail="Missing payment ID")

    payment = await get_payment_by_transaction_id(session, payment_id)
    if payment is None:
        raise HTTPException(status_code=404, detail="Payment not found")
    if payment.provider != PaymentProviderName.MOCK:
        raise HTTPException(status_code=400, detail="Not a mock payment")

    set_mock_payment_status(payment, status)
    job_id = await enqueue_job(
        session,
        JobType.PAYMENT_WEBHOOK,
        PaymentWebhookPayload(payment_id=payment_id),
        max_attempts=config.JOB_MAX_ATTEMPTS,
    )
    await session.commit()

    logger.info("Mock payment %s set to %r, webhook job %s", payment_id, status, job_id)
    return {"received": True, "status": status, "job_id": str(job_id)}
