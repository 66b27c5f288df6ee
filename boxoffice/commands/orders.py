import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.db.models import Order, LineItem, Performance, OutboxEvent
from boxoffice.domain.states import OrderStatus, PerformanceStatus, JobType
from boxoffice.domain.models import PaymentCreationPayload
from boxoffice.domain.errors import InvalidOrderError
from boxoffice.commands.seats import reserve_seats, release_order_seats
from boxoffice.commands.enqueue_job import enqueue_job
from boxoffice.settings import Settings, settings

logger = logging.getLogger(__name__)

# Orders can only be closed into one of these
CLOSING_STATUSES = (OrderStatus.PAID, OrderStatus.FAILED, OrderStatus.CANCELLED)

BOOKABLE_PERFORMANCE_STATUSES = (PerformanceStatus.PUBLISHED, PerformanceStatus.SOLD_OUT)

@dataclass(frozen=True)
class OrderItem:
    performance_id: UUID
    quantity: int

@dataclass(frozen=True)
class PlacedOrder:
    order: Order
    payment_job_id: UUID

async def place_order(
    session: AsyncSession,
    customer_name: str,
    customer_email: str,
    items: Sequence[OrderItem],
    user_id: Optional[UUID] = None,
    currency: str = "EUR",
    redirect_url: Optional[str] = None,
    webhook_url: Optional[str] = None,
    config: Optional[Settings] = None,
) -> PlacedOrder:
    """
    Creates an order, reserves its seats and queues the payment creation job.

    Everything happens in the caller's transaction: if any reservation raises
    ``InsufficientSeatsError`` the caller rolls back and neither the order nor
    the job exist.
    """
    config = config or settings
    if not items:
        raise InvalidOrderError("An order needs at least one item")
    for item in items:
        if item.quantity <= 0:
            raise InvalidOrderError(f"Quantity must be positive, got {item.quantity}")

    performance_ids = {item.performance_id for item in items}
    rows = await session.execute(
        select(Performance.id, Performance.price, Performance.status)
        .where(Performance.id.in_(performance_ids))
    )
    performances = {row.id: row for row in rows}

    order_id = uuid4()
    total = Decimal("0")
    line_items = []
    for item in items:
        perf = performances.get(item.performance_id)
        if perf is None:
            raise InvalidOrderError(f"Performance {item.performance_id} does not exist")
        if perf.status not in BOOKABLE_PERFORMANCE_STATUSES:
            raise InvalidOrderError(f"Performance {item.performance_id} is not on sale ({perf.status})")
        if perf.price is None:
            raise InvalidOrderError(f"Performance {item.performance_id} has no price")

        price = Decimal(perf.price)
        total += price * item.quantity
        line_items.append(LineItem(
            order_id=order_id,
            performance_id=item.performance_id,
            quantity=item.quantity,
            price_per_ticket=price,
        ))

    if total <= 0:
        raise InvalidOrderError("Order total must be positive")

    now = datetime.now(timezone.utc)
    order = Order(
        id=order_id,
        user_id=user_id,
        customer_name=customer_name,
        customer_email=customer_email,
        total_amount=total,
        status=OrderStatus.PENDING,
        created_at=now,
        updated_at=now,
    )
    session.add(order)
    session.add_all(line_items)
    await session.flush()

    for item in items:
        await reserve_seats(session, item.performance_id, item.quantity)

    ticket_count = sum(item.quantity for item in items)
    payload = PaymentCreationPayload(
        order_id=order_id,
        amount=total,
        currency=currency,
        customer_email=customer_email,
        customer_name=customer_name,
        description=f"Order {str(order_id)[:8]} - {ticket_count} ticket(s)",
        redirect_url=redirect_url or f"{config.PUBLIC_BASE_URL}/checkout/success?orderId={order_id}",
        webhook_url=webhook_url or f"{config.PUBLIC_BASE_URL}/webhooks/payment",
    )
    job_id = await enqueue_job(
        session, JobType.PAYMENT_CREATION, payload, max_attempts=config.JOB_MAX_ATTEMPTS,
    )

    logger.info("Placed order %s for %s ticket(s), total %s %s", order_id, ticket_count, total, currency)
    return PlacedOrder(order=order, payment_job_id=job_id)

async def close_order(session: AsyncSession, order_id: UUID, status: OrderStatus) -> bool:
    """
    Moves a PENDING order to a terminal status.

    The transition is a conditional UPDATE; only the caller that actually
    flips the row releases seats (for FAILED / CANCELLED) and announces the
    outcome. Returns False when the order was already closed.
    """
    if status not in CLOSING_STATUSES:
        raise ValueError(f"Cannot close order into {status}")

    stmt = (
        update(Order)
        .where(Order.id == order_id, Order.status == OrderStatus.PENDING)
        .values(status=status, updated_at=datetime.now(timezone.utc))
        .returning(Order.id)
        .execution_options(synchronize_session=False)
    )
    flipped = (await session.execute(stmt)).scalar_one_or_none()
    if flipped is None:
        logger.info("Order %s is no longer pending; not moving it to %s", order_id, status)
        return False

    payload = {"order_id": str(order_id), "status": str(status)}
    if status != OrderStatus.PAID:
        payload["seats_released"] = await release_order_seats(session, order_id, reason=str(status))

    session.add(OutboxEvent(event_type=f"order.{status}", payload=payload))
    await session.flush()

    logger.info("Order %s is now %s", order_id, status)
    return True
