from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.domain.states import PaymentProviderName
from boxoffice.domain.errors import ConfigurationError
from boxoffice.payments.provider import PaymentProvider
from boxoffice.payments.mollie import MolliePaymentProvider
from boxoffice.payments.mock import MockPaymentProvider
from boxoffice.settings import Settings

class PaymentGateway:
    """
    Picks the provider adapter for a job. One Mollie client (and its
    connection pool) is shared by every dispatcher in the process.
    """

    def __init__(self, settings: Settings, mollie_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.mollie = MolliePaymentProvider(
            api_key=settings.MOLLIE_API_KEY,
            base_url=settings.MOLLIE_API_URL,
            timeout=settings.MOLLIE_TIMEOUT_SECONDS,
            client=mollie_client,
        )

    def for_creation(self, session: AsyncSession) -> PaymentProvider:
        if self.settings.USE_MOCK_PAYMENT:
            return self.mock(session)
        return self.mollie

    def for_payment(self, provider: str, session: AsyncSession) -> PaymentProvider:
        if provider == PaymentProviderName.MOCK:
            return self.mock(session)
        if provider == PaymentProviderName.MOLLIE:
            return self.mollie
        raise ConfigurationError(f"Unknown payment provider {provider!r}")

    def mock(self, session: AsyncSession) -> MockPaymentProvider:
        return MockPaymentProvider(session, self.settings.PUBLIC_BASE_URL)

    async def aclose(self) -> None:
        await self.mollie.aclose()
