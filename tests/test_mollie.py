import json
from decimal import Decimal

import httpx
import pytest

from boxoffice.domain.errors import (
    ErrorKind,
    ProviderAuthError,
    ProviderNotConfiguredError,
    ProviderRejectedError,
    ProviderUnavailableError,
)
from boxoffice.payments.mollie import MolliePaymentProvider, format_amount
from boxoffice.payments.provider import CreatePaymentRequest, map_provider_status
from boxoffice.domain.states import OrderStatus, PaymentStatus


def _provider(handler, api_key="test_dHar4XY7LxsDOtmnkVtjNVWXLSlXsM"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return MolliePaymentProvider(api_key, base_url="https://api.mollie.test/v2", client=client), client


def _request(amount="10"):
    return CreatePaymentRequest(
        order_id="8c7c2f0e-0000-4000-8000-000000000001",
        amount=Decimal(amount),
        currency="EUR",
        description="Order 8c7c2f0e - 2 ticket(s)",
        redirect_url="http://tickets.test/checkout/success?orderId=8c7c2f0e",
        webhook_url="http://tickets.test/webhooks/payment",
        metadata={"customerEmail": "ada@example.com"},
    )


def test_format_amount():
    assert format_amount(Decimal("10")) == "10.00"
    assert format_amount(Decimal("12.345")) == "12.35"


def test_status_mapping():
    assert map_provider_status("paid").payment == PaymentStatus.SUCCEEDED
    assert map_provider_status("expired").order == OrderStatus.FAILED
    assert map_provider_status("canceled").order == OrderStatus.CANCELLED
    assert map_provider_status("open").payment == PaymentStatus.PROCESSING
    assert map_provider_status("authorized") is None


async def test_create_payment_sends_expected_request():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={
            "id": "tr_WDqYK6vllg",
            "status": "open",
            "_links": {"checkout": {"href": "https://www.mollie.com/checkout/select-method/WDqYK6vllg"}},
        })

    provider, client = _provider(handler)
    payment = await provider.create_payment(_request())
    await client.aclose()

    assert payment.transaction_id == "tr_WDqYK6vllg"
    assert payment.checkout_url.endswith("/WDqYK6vllg")
    assert seen["method"] == "POST"
    assert seen["url"] == "https://api.mollie.test/v2/payments"
    assert seen["auth"] == "Bearer test_dHar4XY7LxsDOtmnkVtjNVWXLSlXsM"
    assert seen["body"]["amount"] == {"currency": "EUR", "value": "10.00"}
    assert seen["body"]["webhookUrl"] == "http://tickets.test/webhooks/payment"
    assert seen["body"]["metadata"]["orderId"] == "8c7c2f0e-0000-4000-8000-000000000001"
    assert seen["body"]["metadata"]["customerEmail"] == "ada@example.com"


async def test_get_payment_status():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v2/payments/tr_WDqYK6vllg"
        return httpx.Response(200, json={"id": "tr_WDqYK6vllg", "status": "paid", "method": "ideal"})

    provider, client = _provider(handler)
    status = await provider.get_payment_status("tr_WDqYK6vllg")
    await client.aclose()

    assert status.status == "paid"
    assert status.method == "ideal"


@pytest.mark.parametrize("status_code, error, kind", [
    (401, ProviderAuthError, ErrorKind.PERMANENT),
    (422, ProviderRejectedError, ErrorKind.PERMANENT),
    (429, ProviderUnavailableError, ErrorKind.TRANSIENT),
    (503, ProviderUnavailableError, ErrorKind.TRANSIENT),
])
async def test_http_errors_are_classified(status_code, error, kind):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json={"status": status_code, "detail": "The amount is invalid"})

    provider, client = _provider(handler)
    with pytest.raises(error) as excinfo:
        await provider.create_payment(_request())
    await client.aclose()

    assert excinfo.value.kind is kind
    assert excinfo.value.status_code == status_code


async def test_timeout_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    provider, client = _provider(handler)
    with pytest.raises(ProviderUnavailableError) as excinfo:
        await provider.get_payment_status("tr_1")
    await client.aclose()

    assert excinfo.value.retryable


async def test_missing_api_key_fails_before_any_request():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    provider, client = _provider(handler, api_key=None)
    with pytest.raises(ProviderNotConfiguredError) as excinfo:
        await provider.create_payment(_request())
    await client.aclose()

    assert not excinfo.value.retryable
    assert calls == []
