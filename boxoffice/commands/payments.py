import logging
from datetime import datetime, timezone
from typing import Any, Optional, Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.db.models import Payment
from boxoffice.domain.states import PaymentStatus, PaymentProviderName, ACTIVE_PAYMENT_STATUSES, TERMINAL_PAYMENT_STATUSES
from boxoffice.payments.provider import ProviderPayment

logger = logging.getLogger(__name__)

async def get_payment_by_transaction_id(session: AsyncSession, transaction_id: str) -> Optional[Payment]:
    return await session.scalar(
        select(Payment).where(Payment.provider_transaction_id == transaction_id)
    )

async def find_active_payment(session: AsyncSession, order_id: UUID) -> Optional[Payment]:
    """The order's PENDING / PROCESSING payment, if any (there is at most one)."""
    return await session.scalar(
        select(Payment)
        .where(Payment.order_id == order_id, Payment.status.in_(ACTIVE_PAYMENT_STATUSES))
        .order_by(Payment.created_at.desc())
        .limit(1)
    )

async def list_active_payments(session: AsyncSession, limit: int = 500) -> Sequence[Payment]:
    result = await session.execute(
        select(Payment)
        .where(Payment.status.in_(ACTIVE_PAYMENT_STATUSES))
        .order_by(Payment.created_at.asc())
        .limit(limit)
    )
    return result.scalars().all()

async def record_payment(
    session: AsyncSession,
    order_id: UUID,
    amount,
    currency: str,
    provider: PaymentProviderName,
    provider_payment: ProviderPayment,
    meta: Optional[dict[str, Any]] = None,
) -> Payment:
    now = datetime.now(timezone.utc)
    payment = Payment(
        order_id=order_id,
        amount=amount,
        currency=currency,
        status=PaymentStatus.PENDING,
        payment_method="mock" if provider == PaymentProviderName.MOCK else None,
        provider=provider,
        provider_transaction_id=provider_payment.transaction_id,
        provider_payment_url=provider_payment.checkout_url,
        meta=meta or {},
        created_at=now,
        updated_at=now,
    )
    session.add(payment)
    await session.flush()
    return payment

async def update_payment_status(
    session: AsyncSession,
    payment_id: UUID,
    expected_status: PaymentStatus,
    new_status: PaymentStatus,
    payment_method: Optional[str] = None,
) -> bool:
    """
    Compare-and-set on the payment status. Returns False when somebody else
    changed the payment since ``expected_status`` was read.
    """
    now = datetime.now(timezone.utc)
    values: dict[str, Any] = {"status": new_status, "updated_at": now}
    if payment_method:
        values["payment_method"] = payment_method
    if new_status in TERMINAL_PAYMENT_STATUSES:
        values["completed_at"] = now

    stmt = (
        update(Payment)
        .where(Payment.id == payment_id, Payment.status == expected_status)
        .values(**values)
        .returning(Payment.id)
        .execution_options(synchronize_session=False)
    )
    return (await session.execute(stmt)).scalar_one_or_none() is not None

async def cancel_open_payments(session: AsyncSession, order_id: UUID) -> int:
    """Marks every non-terminal payment of an order CANCELLED."""
    now = datetime.now(timezone.utc)
    result = await session.execute(
        update(Payment)
        .where(Payment.order_id == order_id, Payment.status.not_in(TERMINAL_PAYMENT_STATUSES))
        .values(status=PaymentStatus.CANCELLED, updated_at=now, completed_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0

def set_mock_payment_status(payment: Payment, status: str) -> None:
    # Reassign so the JSON column is flagged dirty
    payment.meta = {**(payment.meta or {}), "mock_status": status}
    payment.updated_at = datetime.now(timezone.utc)
