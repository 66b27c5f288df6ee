import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, exists, and_

from boxoffice.db.models import Order, Payment
from boxoffice.domain.states import JobType, OrderStatus, ACTIVE_PAYMENT_STATUSES
from boxoffice.domain.models import OrphanedOrderCleanupPayload, PaymentWebhookPayload
from boxoffice.commands.enqueue_job import enqueue_job
from boxoffice.commands.orders import close_order
from boxoffice.commands.payments import cancel_open_payments
from boxoffice.handlers.registry import JobContext

logger = logging.getLogger(__name__)

# Orders whose payment is still open get this many thresholds before they are cancelled
ACTIVE_PAYMENT_GRACE_FACTOR = 2

async def handle_orphaned_order_cleanup(ctx: JobContext, payload: OrphanedOrderCleanupPayload) -> dict:
    """
    Safety net for webhooks that never arrived.

    PENDING orders older than the threshold with no open payment are
    cancelled and their seats returned. Orders whose payment is still
    pending/processing first get a ``payment_webhook`` job so the provider's
    answer can settle them; once they are older than twice the threshold
    they are cancelled together with their open payments.
    """
    session = ctx.session
    now = datetime.now(timezone.utc)
    cutoff = now - timedelta(hours=payload.older_than_hours)
    hard_cutoff = now - timedelta(hours=payload.older_than_hours * ACTIVE_PAYMENT_GRACE_FACTOR)
    logger.info("Looking for orphaned orders older than %sh", payload.older_than_hours)

    stale = (await session.execute(
        select(
            Order.id,
            Order.created_at,
            exists().where(and_(
                Payment.order_id == Order.id,
                Payment.status.in_(ACTIVE_PAYMENT_STATUSES),
            )).label("has_active_payment"),
        )
        .where(Order.status == OrderStatus.PENDING, Order.created_at < cutoff)
        .order_by(Order.created_at.asc())
    )).all()

    counts = {"orders_found": len(stale), "orders_cancelled": 0, "orders_reconciling": 0, "orders_failed": 0}
    if not stale:
        logger.info("No orphaned orders found")
        return counts

    for order_id, created_at, has_active_payment in stale:
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)

        try:
            async with session.begin_nested():
                if has_active_payment and created_at >= hard_cutoff:
                    queued = await _requeue_reconciliation(ctx, order_id)
                    logger.info("Order %s has an open payment, queued %s webhook job(s)", order_id, queued)
                    counts["orders_reconciling"] += 1
                    continue

                if await close_order(session, order_id, OrderStatus.CANCELLED):
                    cancelled_payments = await cancel_open_payments(session, order_id)
                    if cancelled_payments:
                        logger.warning(
                            "Order %s never settled; cancelled it with %s open payment(s)",
                            order_id, cancelled_payments,
                        )
                    counts["orders_cancelled"] += 1
        except Exception:
            # One bad order must not block the rest of the sweep
            logger.exception("Failed to clean up orphaned order %s", order_id)
            counts["orders_failed"] += 1

    logger.info(
        "Orphaned order cleanup done: %(orders_found)s found, %(orders_cancelled)s cancelled, "
        "%(orders_reconciling)s reconciling, %(orders_failed)s failed",
        counts,
    )
    return counts

async def _requeue_reconciliation(ctx: JobContext, order_id) -> int:
    transaction_ids = (await ctx.session.execute(
        select(Payment.provider_transaction_id)
        .where(Payment.order_id == order_id, Payment.status.in_(ACTIVE_PAYMENT_STATUSES))
    )).scalars().all()

    for transaction_id in transaction_ids:
        await enqueue_job(
            ctx.session,
            JobType.PAYMENT_WEBHOOK,
            PaymentWebhookPayload(payment_id=transaction_id),
            max_attempts=ctx.settings.JOB_MAX_ATTEMPTS,
        )
    return len(transaction_ids)
