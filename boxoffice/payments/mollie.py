import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional

import httpx

from boxoffice.domain.states import PaymentProviderName
from boxoffice.domain.errors import (
    ProviderAuthError,
    ProviderNotConfiguredError,
    ProviderRejectedError,
    ProviderUnavailableError,
)
from boxoffice.payments.provider import (
    PaymentProvider, CreatePaymentRequest, ProviderPayment, ProviderPaymentStatus,
)

logger = logging.getLogger(__name__)

def format_amount(amount: Decimal) -> str:
    """Mollie wants a string with exactly two decimals."""
    return str(Decimal(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))

class MolliePaymentProvider(PaymentProvider):
    name = PaymentProviderName.MOLLIE

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.mollie.com/v2",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if not self.api_key:
            raise ProviderNotConfiguredError("MOLLIE_API_KEY not configured")
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def create_payment(self, request: CreatePaymentRequest) -> ProviderPayment:
        body = {
            "amount": {"currency": request.currency, "value": format_amount(request.amount)},
            "description": request.description or f"Order {request.order_id}",
            "redirectUrl": request.redirect_url,
            "webhookUrl": request.webhook_url,
            "metadata": {"orderId": request.order_id, **request.metadata},
        }
        data = await self._request("POST", "/payments", json=body)

        transaction_id = data.get("id")
        if not transaction_id:
            raise ProviderRejectedError("Mollie response did not contain a payment id")

        checkout = (data.get("_links") or {}).get("checkout") or {}
        logger.info("Mollie payment %s created for order %s", transaction_id, request.order_id)
        return ProviderPayment(transaction_id=transaction_id, checkout_url=checkout.get("href"))

    async def get_payment_status(self, transaction_id: str) -> ProviderPaymentStatus:
        data = await self._request("GET", f"/payments/{transaction_id}")
        return ProviderPaymentStatus(status=data.get("status", ""), method=data.get("method"))

    async def _request(self, method: str, path: str, json: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        client = self._get_client()
        headers = {"Authorization": f"Bearer {self.api_key}"}
        url = f"{self.base_url}{path}"

        try:
            response = await client.request(method, url, json=json, headers=headers, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise ProviderUnavailableError(f"Mollie API timeout: {e}") from e
        except httpx.TransportError as e:
            raise ProviderUnavailableError(f"Unable to reach Mollie: {e}") from e

        status = response.status_code
        if status in (401, 403):
            raise ProviderAuthError(f"Mollie rejected credentials ({status})", status_code=status)
        if status == 429 or status >= 500:
            raise ProviderUnavailableError(f"Mollie unavailable ({status})", status_code=status)
        if status >= 400:
            raise ProviderRejectedError(
                f"Mollie rejected {method} {path} ({status}): {_error_detail(response)}",
                status_code=status,
            )

        return response.json()

def _error_detail(response: httpx.Response) -> str:
    try:
        return response.json().get("detail") or response.text
    except ValueError:
        return response.text
