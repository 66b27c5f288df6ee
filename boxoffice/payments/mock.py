import logging
import uuid
from urllib.parse import urlencode

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.db.models import Payment
from boxoffice.domain.states import PaymentProviderName
from boxoffice.domain.errors import PaymentNotFoundError
from boxoffice.payments.provider import (
    PaymentProvider, CreatePaymentRequest, ProviderPayment, ProviderPaymentStatus,
)

logger = logging.getLogger(__name__)

# Status a mock payment reports until someone simulates an outcome
DEFAULT_MOCK_STATUS = "open"

class MockPaymentProvider(PaymentProvider):
    """
    Stand-in provider for development and tests.

    There is no remote side: the simulated status lives in the payment's
    ``meta["mock_status"]`` and is set through the mock webhook endpoint.
    """

    name = PaymentProviderName.MOCK

    def __init__(self, session: AsyncSession, public_base_url: str):
        self.session = session
        self.public_base_url = public_base_url.rstrip("/")

    async def create_payment(self, request: CreatePaymentRequest) -> ProviderPayment:
        transaction_id = f"mock_{uuid.uuid4().hex}"
        query = urlencode({
            "id": transaction_id,
            "orderId": request.order_id,
            "amount": str(request.amount),
        })
        checkout_url = f"{self.public_base_url}/checkout/mock-payment?{query}"
        logger.info("Created mock payment %s for order %s", transaction_id, request.order_id)
        return ProviderPayment(transaction_id=transaction_id, checkout_url=checkout_url)

    async def get_payment_status(self, transaction_id: str) -> ProviderPaymentStatus:
        meta = await self.session.scalar(
            select(Payment.meta).where(Payment.provider_transaction_id == transaction_id)
        )
        if meta is None:
            raise PaymentNotFoundError(transaction_id)
        return ProviderPaymentStatus(status=meta.get("mock_status", DEFAULT_MOCK_STATUS), method="mock")
