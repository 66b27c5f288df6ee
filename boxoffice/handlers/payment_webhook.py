import logging

from sqlalchemy import select

from boxoffice.db.models import Order
from boxoffice.domain.states import OrderStatus, PaymentStatus, TERMINAL_PAYMENT_STATUSES
from boxoffice.domain.models import PaymentWebhookPayload
from boxoffice.domain.errors import PaymentNotFoundError, PaymentConflictError, ReconciliationRaceError
from boxoffice.commands.payments import get_payment_by_transaction_id, update_payment_status
from boxoffice.commands.orders import close_order
from boxoffice.handlers.registry import JobContext
from boxoffice.payments.provider import map_provider_status

logger = logging.getLogger(__name__)

async def handle_payment_webhook(ctx: JobContext, payload: PaymentWebhookPayload) -> dict:
    """
    Reconciles our Payment and Order with the provider's authoritative status.

    Idempotent: a redelivered webhook finds the stored status already equal
    to the provider's and writes nothing. Seats are only released through
    ``close_order``, which flips the order at most once.
    """
    session = ctx.session
    transaction_id = payload.payment_id

    payment = await get_payment_by_transaction_id(session, transaction_id)
    if payment is None:
        raise PaymentNotFoundError(transaction_id)

    order_id = payment.order_id
    provider = ctx.payments.for_payment(payment.provider, session)
    remote = await provider.get_payment_status(transaction_id)
    logger.info("Payment %s (order %s) reported %r by %s", transaction_id, order_id, remote.status, payment.provider)

    mapping = map_provider_status(remote.status)
    if mapping is None:
        logger.warning("Unknown provider status %r for payment %s, ignoring", remote.status, transaction_id)
        return {"order_id": str(order_id), "status": "unknown", "provider_status": remote.status}

    current = PaymentStatus(payment.status)
    if current == mapping.payment:
        logger.info("Payment %s already %s, nothing to do", transaction_id, current)
        return {"order_id": str(order_id), "status": str(current), "changed": False}

    if current in TERMINAL_PAYMENT_STATUSES:
        raise PaymentConflictError(
            f"Payment {transaction_id} is already {current} but provider reports {remote.status!r}"
        )

    order_status = await session.scalar(select(Order.status).where(Order.id == order_id))
    closed = order_status is not None and order_status != OrderStatus.PENDING
    if closed and mapping.order != OrderStatus.PENDING and order_status != mapping.order:
        # failed vs. cancelled just settles the payment; only a paid side needs an operator
        if OrderStatus.PAID in (order_status, mapping.order):
            raise PaymentConflictError(
                f"Order {order_id} is {order_status} but provider reports {remote.status!r} "
                f"for payment {transaction_id}"
            )

    updated = await update_payment_status(
        session,
        payment.id,
        expected_status=current,
        new_status=mapping.payment,
        payment_method=remote.method,
    )
    if not updated:
        raise ReconciliationRaceError(
            f"Payment {transaction_id} changed while reconciling; will retry"
        )

    order_changed = False
    if mapping.order != OrderStatus.PENDING:
        order_changed = await close_order(session, order_id, mapping.order)

    logger.info(
        "Payment %s: %s -> %s, order %s %s",
        transaction_id, current, mapping.payment, order_id,
        f"-> {mapping.order}" if order_changed else "unchanged",
    )
    return {
        "order_id": str(order_id),
        "status": str(mapping.payment),
        "changed": True,
        "order_status": str(mapping.order if order_changed else order_status),
    }
