import os

# Must happen before boxoffice.settings is imported anywhere
os.environ.setdefault("SQLALCHEMY_DATABASE_URI", "sqlite+aiosqlite://")

from decimal import Decimal

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from boxoffice.db.session import Base
from boxoffice.db.models import Performance
from boxoffice.domain.states import PerformanceStatus
from boxoffice.payments.gateway import PaymentGateway
from boxoffice.settings import Settings


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite/aiosqlite manage transactions themselves and break SAVEPOINT;
    # hand control back to SQLAlchemy.
    @event.listens_for(engine.sync_engine, "connect")
    def _no_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _explicit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture(params=["sqlite", "postgresql"])
async def concurrent_engine(request, tmp_path):
    """
    An engine with a real connection pool, so every session gets its own
    connection. Postgres runs only when BOXOFFICE_TEST_POSTGRES_URL is set.
    """
    if request.param == "postgresql":
        url = os.environ.get("BOXOFFICE_TEST_POSTGRES_URL")
        if not url:
            pytest.skip("BOXOFFICE_TEST_POSTGRES_URL not set")
        engine = create_async_engine(url, pool_size=20)
    else:
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'boxoffice.db'}",
            connect_args={"timeout": 30},
        )

        @event.listens_for(engine.sync_engine, "connect")
        def _no_driver_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        # SQLite allows one writer: overlapping transactions wait for the
        # lock here instead of failing on upgrade
        @event.listens_for(engine.sync_engine, "begin")
        def _immediate_begin(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def concurrent_session_factory(concurrent_engine):
    return async_sessionmaker(bind=concurrent_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
def session_factory(engine):
    # Tests share one in-memory connection: keep sessions short-lived and
    # never hold one open while a dispatcher runs.
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
def test_settings():
    return Settings(
        USE_MOCK_PAYMENT=True,
        JOB_MAX_ATTEMPTS=5,
        RETRY_BASE_DELAY_SECONDS=0,
        RETRY_MAX_DELAY_SECONDS=0,
        PUBLIC_BASE_URL="http://tickets.test",
        JWT_SECRET="test-secret-0123456789abcdef0123456789",
        APP_ID="boxoffice",
    )


@pytest.fixture
async def gateway(test_settings):
    gateway = PaymentGateway(test_settings)
    yield gateway
    await gateway.aclose()


@pytest.fixture
def make_performance(session_factory):
    async def factory(total_seats=10, available_seats=None, price="25.00", status=PerformanceStatus.PUBLISHED):
        async with session_factory() as session:
            perf = Performance(
                total_seats=total_seats,
                available_seats=total_seats if available_seats is None else available_seats,
                price=Decimal(price),
                status=status,
            )
            session.add(perf)
            await session.commit()
            return perf.id
    return factory

