"""PayPal adapter: token caching, order/capture and webhook verification."""

import json

import httpx
import pytest

from conftest import RecordingTransport
from payrail.common.errors import (
    ConfigurationError,
    ProviderRejected,
    ProviderTransientError,
    WebhookSignatureInvalid,
)
from payrail.gateways.base import FinalizeRequest
from payrail.gateways.paypal_gateway import PayPalGateway

BASE_URL = "https://api-m.sandbox.paypal.com"

TRANSMISSION = {
    "paypal-transmission-id": "tx-1",
    "paypal-transmission-time": "2026-10-17T10:00:00Z",
    "paypal-transmission-sig": "sig",
    "paypal-cert-url": "https://api.paypal.com/cert.pem",
    "paypal-auth-algo": "SHA256withRSA",
}


def completed_order(order_id: str = "5O190127TN364715T") -> dict:
    return {
        "id": order_id,
        "status": "COMPLETED",
        "purchase_units": [
            {
                "amount": {"currency_code": "USD", "value": "499.99"},
                "payments": {"captures": [{"id": "CAP-1", "status": "COMPLETED"}]},
            }
        ],
    }


class PayPalSandbox:
    """Minimal PayPal API double."""

    def __init__(self):
        self.capture_response = httpx.Response(201, json=completed_order())
        self.verification_status = "SUCCESS"
        self.verification_response: httpx.Response | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/v1/oauth2/token":
            form = request.content.decode()
            if "response_type=client_token" in form:
                return httpx.Response(200, json={"access_token": "client-token", "expires_in": 3600})
            return httpx.Response(200, json={"access_token": "access-token", "expires_in": 32400})
        if request.headers.get("authorization") != "Bearer access-token":
            return httpx.Response(401, json={"name": "AUTHENTICATION_FAILURE", "message": "bad token"})
        if path == "/v2/checkout/orders" and request.method == "POST":
            return httpx.Response(201, json={"id": "5O190127TN364715T", "status": "CREATED"})
        if path.endswith("/capture"):
            return self.capture_response
        if path.startswith("/v2/checkout/orders/"):
            return httpx.Response(200, json=completed_order(path.rsplit("/", 1)[-1]))
        if path == "/v1/notifications/verify-webhook-signature":
            if self.verification_response is not None:
                return self.verification_response
            return httpx.Response(200, json={"verification_status": self.verification_status})
        return httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND", "message": "not found"})


@pytest.fixture
def sandbox():
    return PayPalSandbox()


@pytest.fixture
def transport(sandbox):
    return RecordingTransport(sandbox)


@pytest.fixture
def paypal(transport):
    return PayPalGateway(transport.client(BASE_URL), "client-id", "client-secret", webhook_id="WH-1")


def token_calls(transport: RecordingTransport) -> int:
    return sum(1 for request in transport.requests if request.url.path == "/v1/oauth2/token")


async def test_create_order_formats_major_units(paypal, transport):
    created = await paypal.create_order("499.99", "usd", {"reference": "cart-9"})

    assert created.external_id == "5O190127TN364715T"
    assert created.client_artifact == "5O190127TN364715T"
    assert created.amount_minor == 49999
    body = json.loads(transport.requests[-1].content)
    assert body["intent"] == "CAPTURE"
    assert body["purchase_units"][0]["amount"] == {"currency_code": "USD", "value": "499.99"}
    assert body["purchase_units"][0]["custom_id"] == "cart-9"


async def test_token_is_exchanged_once_and_reused(paypal, transport):
    await paypal.create_order("10.00", "USD")
    await paypal.finalize(FinalizeRequest("5O190127TN364715T"))
    await paypal.get_details("5O190127TN364715T")

    assert token_calls(transport) == 1


async def test_capture_maps_completed_capture(paypal):
    outcome = await paypal.finalize(FinalizeRequest("5O190127TN364715T"))

    assert outcome.status == "captured"
    assert outcome.provider_reference == "CAP-1"


async def test_already_captured_order_is_read_back(paypal, sandbox, transport):
    sandbox.capture_response = httpx.Response(
        422,
        json={
            "name": "UNPROCESSABLE_ENTITY",
            "message": "The requested action could not be performed.",
            "details": [{"issue": "ORDER_ALREADY_CAPTURED"}],
        },
    )

    outcome = await paypal.finalize(FinalizeRequest("5O190127TN364715T"))

    assert outcome.status == "captured"
    assert transport.requests[-1].method == "GET"


async def test_other_rejections_propagate(paypal, sandbox):
    sandbox.capture_response = httpx.Response(
        422,
        json={"name": "UNPROCESSABLE_ENTITY", "message": "declined", "details": [{"issue": "INSTRUMENT_DECLINED"}]},
    )

    with pytest.raises(ProviderRejected) as excinfo:
        await paypal.finalize(FinalizeRequest("5O190127TN364715T"))
    assert excinfo.value.reason == "INSTRUMENT_DECLINED"


async def test_server_error_is_transient(paypal, sandbox):
    sandbox.capture_response = httpx.Response(503, json={"name": "SERVICE_UNAVAILABLE"})

    with pytest.raises(ProviderTransientError):
        await paypal.finalize(FinalizeRequest("5O190127TN364715T"))


async def test_get_details_maps_order(paypal):
    details = await paypal.get_details("ORDER-2")

    assert details.id == "ORDER-2"
    assert details.status == "captured"
    assert str(details.amount) == "499.99"
    assert details.currency == "USD"


async def test_client_token_is_not_cached_as_access_token(paypal, transport):
    assert await paypal.client_token() == "client-token"
    await paypal.get_details("ORDER-2")

    assert token_calls(transport) == 2


def capture_event() -> bytes:
    return json.dumps(
        {
            "id": "WH-EVT-1",
            "event_type": "PAYMENT.CAPTURE.COMPLETED",
            "resource": {
                "id": "CAP-1",
                "status": "COMPLETED",
                "supplementary_data": {"related_ids": {"order_id": "5O190127TN364715T"}},
            },
        }
    ).encode()


async def test_webhook_verified_by_paypal(paypal, transport):
    notice = await paypal.verify_webhook(capture_event(), TRANSMISSION)

    assert notice.event_id == "WH-EVT-1"
    assert notice.external_id == "5O190127TN364715T"
    assert notice.transition == "captured"
    assert notice.provider_reference == "CAP-1"
    sent = json.loads(transport.requests[-1].content)
    assert sent["webhook_id"] == "WH-1"
    assert sent["transmission_id"] == "tx-1"


async def test_webhook_failing_verification_rejected(paypal, sandbox):
    sandbox.verification_status = "FAILURE"

    with pytest.raises(WebhookSignatureInvalid):
        await paypal.verify_webhook(capture_event(), TRANSMISSION)


async def test_webhook_missing_transmission_headers_rejected(paypal, transport):
    headers = dict(TRANSMISSION)
    headers.pop("paypal-transmission-sig")

    with pytest.raises(WebhookSignatureInvalid):
        await paypal.verify_webhook(capture_event(), headers)
    assert transport.requests == []


async def test_webhook_without_webhook_id_not_configured(transport):
    gateway = PayPalGateway(transport.client(BASE_URL), "client-id", "client-secret")

    with pytest.raises(ConfigurationError):
        await gateway.verify_webhook(capture_event(), TRANSMISSION)


async def test_webhook_verification_request_rejected_by_paypal(paypal, sandbox):
    sandbox.verification_response = httpx.Response(
        400,
        json={"name": "VALIDATION_ERROR", "message": "Invalid request", "details": [{"issue": "INVALID_CERT_URL"}]},
    )

    with pytest.raises(WebhookSignatureInvalid):
        await paypal.verify_webhook(capture_event(), TRANSMISSION)
