from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Any
from uuid import UUID, uuid4

from sqlalchemy import String, Integer, DateTime, ForeignKey, Index, Numeric, Uuid, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import JSONB

from boxoffice.db.session import Base
from boxoffice.domain.states import (
    JobStatus, JobEvent, OrderStatus, PaymentStatus, PerformanceStatus,
)

# JSONB on Postgres, plain JSON elsewhere (tests run on SQLite)
JsonDict = JSON().with_variant(JSONB(), "postgresql")

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class Job(Base):
    __tablename__ = "jobs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Core orchestration fields
    status: Mapped[JobStatus] = mapped_column(String(16), default=JobStatus.PENDING, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Scheduling fields
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    next_run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    locked_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Retry logic
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    # Payload
    payload: Mapped[dict[str, Any]] = mapped_column(JsonDict, default=dict)
    result: Mapped[Optional[dict[str, Any]]] = mapped_column(JsonDict, nullable=True)

    events: Mapped[list["JobEventLog"]] = relationship(
        "JobEventLog", back_populates="job", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        # Claim query: status='pending' AND next_run_at <= now
        Index("ix_jobs_claim", "status", "next_run_at"),
    )

class JobEventLog(Base):
    __tablename__ = "job_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("jobs.id", ondelete="CASCADE"), index=True)

    event_type: Mapped[JobEvent] = mapped_column(String(16), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    # Context (e.g. worker_id, error message, attempt number)
    meta: Mapped[dict[str, Any]] = mapped_column(JsonDict, default=dict)

    job: Mapped["Job"] = relationship("Job", back_populates="events")

class Performance(Base):
    __tablename__ = "performances"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    total_seats: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    available_seats: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    status: Mapped[PerformanceStatus] = mapped_column(String(16), default=PerformanceStatus.DRAFT, nullable=False)
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 2), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

class Order(Base):
    __tablename__ = "orders"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True, index=True)
    customer_name: Mapped[str] = mapped_column(String(100), nullable=False)
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[OrderStatus] = mapped_column(String(16), default=OrderStatus.PENDING, nullable=False, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    line_items: Mapped[list["LineItem"]] = relationship("LineItem", back_populates="order", cascade="all, delete-orphan")
    payments: Mapped[list["Payment"]] = relationship("Payment", back_populates="order")

class LineItem(Base):
    __tablename__ = "line_items"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    order_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    performance_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("performances.id"), index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price_per_ticket: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="line_items")

class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    order_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("orders.id"), index=True, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="EUR", nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(String(16), default=PaymentStatus.PENDING, nullable=False, index=True)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    provider: Mapped[str] = mapped_column(String(16), nullable=False)
    provider_transaction_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    provider_payment_url: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    # Customer details; for mock payments also the simulated provider status
    meta: Mapped[dict[str, Any]] = mapped_column(JsonDict, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="payments")

class OutboxEvent(Base):
    __tablename__ = "outbox_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JsonDict, default=dict)
    status: Mapped[str] = mapped_column(String(16), default="PENDING", nullable=False, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
