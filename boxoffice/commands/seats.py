import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select, update, func, case, and_
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.db.models import Performance, LineItem
from boxoffice.domain.states import PerformanceStatus
from boxoffice.domain.errors import InsufficientSeatsError, InvalidOrderError
from boxoffice.api.v1.metrics import SEAT_RELEASES

logger = logging.getLogger(__name__)

async def reserve_seats(session: AsyncSession, performance_id: UUID, quantity: int) -> int:
    """
    Takes ``quantity`` seats off a performance in one guarded UPDATE.

    The ``available_seats >= quantity`` condition is evaluated by the database
    against the current row, so concurrent reservations can never push the
    count below zero. Returns the seats left.
    """
    if quantity <= 0:
        raise InvalidOrderError(f"Quantity must be positive, got {quantity}")

    remaining = Performance.available_seats - quantity
    stmt = (
        update(Performance)
        .where(
            Performance.id == performance_id,
            Performance.available_seats >= quantity,
        )
        .values(
            available_seats=remaining,
            status=case(
                (and_(Performance.status == PerformanceStatus.PUBLISHED, remaining == 0), PerformanceStatus.SOLD_OUT),
                else_=Performance.status,
            ),
            updated_at=datetime.now(timezone.utc),
        )
        .returning(Performance.available_seats)
        .execution_options(synchronize_session=False)
    )
    left = (await session.execute(stmt)).scalar_one_or_none()
    if left is None:
        raise InsufficientSeatsError(performance_id, quantity)

    logger.debug("Reserved %s seat(s) on performance %s, %s left", quantity, performance_id, left)
    return left

async def release_seats(session: AsyncSession, performance_id: UUID, quantity: int, reason: str = "release") -> int:
    """Gives seats back, never beyond ``total_seats``. Returns the seats left."""
    if quantity <= 0:
        return 0

    restored = Performance.available_seats + quantity
    stmt = (
        update(Performance)
        .where(Performance.id == performance_id)
        .values(
            available_seats=case(
                (restored > Performance.total_seats, Performance.total_seats),
                else_=restored,
            ),
            status=case(
                (Performance.status == PerformanceStatus.SOLD_OUT, PerformanceStatus.PUBLISHED),
                else_=Performance.status,
            ),
            updated_at=datetime.now(timezone.utc),
        )
        .returning(Performance.available_seats)
        .execution_options(synchronize_session=False)
    )
    left = (await session.execute(stmt)).scalar_one_or_none()
    if left is None:
        logger.warning("Cannot release %s seat(s): performance %s not found", quantity, performance_id)
        return 0

    SEAT_RELEASES.labels(reason=reason).inc(quantity)
    return left

async def release_order_seats(session: AsyncSession, order_id: UUID, reason: str = "release") -> int:
    """
    Returns every seat held by an order's line items.

    Must only be called together with the order's own transition out of
    PENDING (see ``close_order``), otherwise seats can be released twice.
    """
    stmt = (
        select(LineItem.performance_id, func.sum(LineItem.quantity))
        .where(LineItem.order_id == order_id)
        .group_by(LineItem.performance_id)
    )
    rows = (await session.execute(stmt)).all()

    released = 0
    for performance_id, quantity in rows:
        await release_seats(session, performance_id, int(quantity), reason=reason)
        released += int(quantity)

    logger.info("Released %s seat(s) for order %s (%s)", released, order_id, reason)
    return released
