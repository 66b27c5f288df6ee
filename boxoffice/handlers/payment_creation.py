import logging

from sqlalchemy import select

from boxoffice.db.models import Order
from boxoffice.domain.states import OrderStatus
from boxoffice.domain.models import PaymentCreationPayload
from boxoffice.domain.errors import OrderNotFoundError
from boxoffice.commands.payments import find_active_payment, record_payment
from boxoffice.handlers.registry import JobContext
from boxoffice.payments.provider import CreatePaymentRequest

logger = logging.getLogger(__name__)

async def handle_payment_creation(ctx: JobContext, payload: PaymentCreationPayload) -> dict:
    """
    Creates the provider payment for a pending order and records it.

    Safe to run again after a crash: an order that already has a live
    payment gets that payment back instead of a second provider call.
    """
    session = ctx.session
    logger.info(
        "Creating payment for order %s, amount: %s %s (attempt %s)",
        payload.order_id, payload.amount, payload.currency, ctx.attempt,
    )

    order_status = await session.scalar(select(Order.status).where(Order.id == payload.order_id))
    if order_status is None:
        raise OrderNotFoundError(payload.order_id)

    if order_status != OrderStatus.PENDING:
        logger.info("Order %s is %s, no payment needed", payload.order_id, order_status)
        return {"skipped": True, "order_status": str(order_status)}

    existing = await find_active_payment(session, payload.order_id)
    if existing is not None:
        logger.info(
            "Order %s already has payment %s (%s), reusing it",
            payload.order_id, existing.provider_transaction_id, existing.status,
        )
        return {
            "payment_id": existing.provider_transaction_id,
            "payment_url": existing.provider_payment_url,
            "reused": True,
        }

    provider = ctx.payments.for_creation(session)
    request = CreatePaymentRequest(
        order_id=str(payload.order_id),
        amount=payload.amount,
        currency=payload.currency,
        description=payload.description or f"Order {payload.order_id}",
        redirect_url=payload.redirect_url,
        webhook_url=payload.webhook_url,
        metadata={"customerEmail": payload.customer_email, "customerName": payload.customer_name},
    )
    provider_payment = await provider.create_payment(request)

    payment = await record_payment(
        session,
        order_id=payload.order_id,
        amount=payload.amount,
        currency=payload.currency,
        provider=provider.name,
        provider_payment=provider_payment,
        meta={"customer_email": payload.customer_email, "customer_name": payload.customer_name},
    )

    logger.info(
        "Payment %s recorded for order %s via %s",
        payment.provider_transaction_id, payload.order_id, provider.name,
    )
    return {
        "payment_id": provider_payment.transaction_id,
        "payment_url": provider_payment.checkout_url,
        "reused": False,
    }
