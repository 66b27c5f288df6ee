import pytest
from sqlalchemy import select, func

from boxoffice.commands.orders import OrderItem, place_order, close_order
from boxoffice.commands.seats import reserve_seats, release_seats, release_order_seats
from boxoffice.db.models import Job, Order, Performance, OutboxEvent
from boxoffice.domain.errors import InsufficientSeatsError, InvalidOrderError
from boxoffice.domain.states import JobType, OrderStatus, PerformanceStatus


async def _performance(session_factory, performance_id):
    async with session_factory() as session:
        return await session.get(Performance, performance_id)


async def test_reserve_decrements_available_seats(session_factory, make_performance):
    perf_id = await make_performance(total_seats=10)

    async with session_factory() as session:
        left = await reserve_seats(session, perf_id, 3)
        await session.commit()

    assert left == 7
    assert (await _performance(session_factory, perf_id)).available_seats == 7


async def test_reserve_rejects_overbooking(session_factory, make_performance):
    perf_id = await make_performance(total_seats=10, available_seats=2)

    async with session_factory() as session:
        with pytest.raises(InsufficientSeatsError):
            await reserve_seats(session, perf_id, 3)

    assert (await _performance(session_factory, perf_id)).available_seats == 2


async def test_reserve_rejects_non_positive_quantity(session_factory, make_performance):
    perf_id = await make_performance()

    async with session_factory() as session:
        with pytest.raises(InvalidOrderError):
            await reserve_seats(session, perf_id, 0)


async def test_last_seat_goes_to_exactly_one_order(session_factory, make_performance):
    perf_id = await make_performance(total_seats=10, available_seats=1)

    outcomes = []
    for _ in range(2):
        async with session_factory() as session:
            try:
                await reserve_seats(session, perf_id, 1)
                await session.commit()
                outcomes.append("reserved")
            except InsufficientSeatsError:
                await session.rollback()
                outcomes.append("insufficient")

    assert sorted(outcomes) == ["insufficient", "reserved"]
    perf = await _performance(session_factory, perf_id)
    assert perf.available_seats == 0
    assert perf.status == PerformanceStatus.SOLD_OUT


async def test_release_reopens_sold_out_and_clamps(session_factory, make_performance):
    perf_id = await make_performance(total_seats=10, available_seats=0, status=PerformanceStatus.SOLD_OUT)

    async with session_factory() as session:
        await release_seats(session, perf_id, 4)
        await session.commit()

    perf = await _performance(session_factory, perf_id)
    assert perf.available_seats == 4
    assert perf.status == PerformanceStatus.PUBLISHED

    async with session_factory() as session:
        await release_seats(session, perf_id, 50)
        await session.commit()

    assert (await _performance(session_factory, perf_id)).available_seats == 10


async def test_place_order_reserves_and_enqueues_payment(session_factory, make_performance):
    perf_id = await make_performance(total_seats=10, price="12.50")

    async with session_factory() as session:
        placed = await place_order(
            session, "Ada", "ada@example.com",
            [OrderItem(perf_id, 3), OrderItem(perf_id, 3)],
        )
        await session.commit()

    assert placed.order.total_amount == 75
    assert (await _performance(session_factory, perf_id)).available_seats == 4

    async with session_factory() as session:
        job = await session.get(Job, placed.payment_job_id)
    assert job.type == JobType.PAYMENT_CREATION
    assert job.payload["order_id"] == str(placed.order.id)
    assert job.payload["amount"] == "75.00"
    assert job.payload["customer_email"] == "ada@example.com"


async def test_place_order_is_all_or_nothing(session_factory, make_performance):
    roomy = await make_performance(total_seats=10)
    full = await make_performance(total_seats=10, available_seats=1)

    async with session_factory() as session:
        with pytest.raises(InsufficientSeatsError):
            await place_order(session, "Ada", "ada@example.com", [OrderItem(roomy, 2), OrderItem(full, 2)])
        await session.rollback()

    assert (await _performance(session_factory, roomy)).available_seats == 10
    async with session_factory() as session:
        assert await session.scalar(select(func.count()).select_from(Order)) == 0
        assert await session.scalar(select(func.count()).select_from(Job)) == 0


async def test_place_order_rejects_unsellable_performance(session_factory, make_performance):
    draft = await make_performance(status=PerformanceStatus.DRAFT)

    async with session_factory() as session:
        with pytest.raises(InvalidOrderError):
            await place_order(session, "Ada", "ada@example.com", [OrderItem(draft, 1)])


async def test_close_order_releases_seats_once(session_factory, make_performance):
    perf_id = await make_performance(total_seats=10)
    async with session_factory() as session:
        placed = await place_order(session, "Ada", "ada@example.com", [OrderItem(perf_id, 4)])
        await session.commit()

    for _ in range(3):
        async with session_factory() as session:
            await close_order(session, placed.order.id, OrderStatus.CANCELLED)
            await session.commit()

    assert (await _performance(session_factory, perf_id)).available_seats == 10
    async with session_factory() as session:
        order = await session.get(Order, placed.order.id)
        events = (await session.execute(select(OutboxEvent.event_type))).scalars().all()
    assert order.status == OrderStatus.CANCELLED
    assert events == ["order.cancelled"]


async def test_paid_order_is_never_reopened(session_factory, make_performance):
    perf_id = await make_performance(total_seats=10)
    async with session_factory() as session:
        placed = await place_order(session, "Ada", "ada@example.com", [OrderItem(perf_id, 2)])
        await session.commit()

    async with session_factory() as session:
        assert await close_order(session, placed.order.id, OrderStatus.PAID) is True
        assert await close_order(session, placed.order.id, OrderStatus.FAILED) is False
        await session.commit()

    assert (await _performance(session_factory, perf_id)).available_seats == 8


async def test_release_order_seats_sums_line_items(session_factory, make_performance):
    a = await make_performance(total_seats=10)
    b = await make_performance(total_seats=10)
    async with session_factory() as session:
        placed = await place_order(
            session, "Ada", "ada@example.com",
            [OrderItem(a, 2), OrderItem(a, 1), OrderItem(b, 5)],
        )
        await session.commit()

    async with session_factory() as session:
        assert await release_order_seats(session, placed.order.id) == 8
        await session.commit()

    assert (await _performance(session_factory, a)).available_seats == 10
    assert (await _performance(session_factory, b)).available_seats == 10


async def test_place_order_uses_given_settings(session_factory, make_performance, test_settings):
    perf_id = await make_performance()
    settings = test_settings.model_copy(update={"JOB_MAX_ATTEMPTS": 3})

    async with session_factory() as session:
        placed = await place_order(session, "Ada", "ada@example.com", [OrderItem(perf_id, 1)], config=settings)
        await session.commit()

    async with session_factory() as session:
        job = await session.get(Job, placed.payment_job_id)
    assert job.max_attempts == 3
    assert job.payload["webhook_url"] == "http://tickets.test/webhooks/payment"
    assert job.payload["redirect_url"].startswith("http://tickets.test/checkout/success?orderId=")
