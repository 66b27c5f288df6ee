from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, ClassVar, Optional

from boxoffice.domain.states import PaymentStatus, OrderStatus

@dataclass(frozen=True)
class CreatePaymentRequest:
    order_id: str
    amount: Decimal
    currency: str
    description: str
    redirect_url: str
    webhook_url: str
    metadata: dict[str, Any] = field(default_factory=dict)

@dataclass(frozen=True)
class ProviderPayment:
    transaction_id: str
    checkout_url: Optional[str]

@dataclass(frozen=True)
class ProviderPaymentStatus:
    # Raw provider vocabulary: open, pending, paid, failed, expired, canceled
    status: str
    method: Optional[str] = None

@dataclass(frozen=True)
class StatusMapping:
    payment: PaymentStatus
    order: OrderStatus

# Provider status -> (payment status, order status)
STATUS_MAP: dict[str, StatusMapping] = {
    "paid": StatusMapping(PaymentStatus.SUCCEEDED, OrderStatus.PAID),
    "failed": StatusMapping(PaymentStatus.FAILED, OrderStatus.FAILED),
    "expired": StatusMapping(PaymentStatus.FAILED, OrderStatus.FAILED),
    "canceled": StatusMapping(PaymentStatus.CANCELLED, OrderStatus.CANCELLED),
    "pending": StatusMapping(PaymentStatus.PROCESSING, OrderStatus.PENDING),
    "open": StatusMapping(PaymentStatus.PROCESSING, OrderStatus.PENDING),
}

PROVIDER_STATUSES = tuple(STATUS_MAP)

def map_provider_status(status: str) -> Optional[StatusMapping]:
    return STATUS_MAP.get(status)

class PaymentProvider(ABC):
    """Port to an external payment service provider."""

    name: ClassVar[str] = ""

    @abstractmethod
    async def create_payment(self, request: CreatePaymentRequest) -> ProviderPayment:
        raise NotImplementedError

    @abstractmethod
    async def get_payment_status(self, transaction_id: str) -> ProviderPaymentStatus:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None
