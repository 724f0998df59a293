"""Shared fixtures: an in-memory payment store and scriptable gateways."""

import asyncio
import json
from decimal import Decimal
from typing import Dict, Mapping, Optional

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from payrail.common.db import Base
from payrail.common.errors import WebhookSignatureInvalid
from payrail.common.state_machine import CREATED
from payrail.gateways.base import (
    CanonicalOutcome,
    FinalizeRequest,
    OrderCreated,
    PaymentDetails,
    PaymentGateway,
    Provider,
    WebhookNotice,
    to_minor_units,
    validate_amount,
    validate_currency,
)
from payrail.gateways.razorpay_gateway import RazorpayGateway
from payrail.gateways.registry import GatewayRegistry
from payrail.services.payments import models  # noqa: F401  registers tables
from payrail.services.payments.service import PaymentOrchestrator
from payrail.services.payments.store import PaymentStore

RAZORPAY_KEY_ID = "rzp_test_key"
RAZORPAY_SECRET = "rzp_test_secret"
RAZORPAY_WEBHOOK_SECRET = "rzp_webhook_secret"


class FakeStripeGateway(PaymentGateway):
    """Intent-style gateway whose finalize outcome is set by the test."""

    provider = Provider.STRIPE

    def __init__(self, outcome: CanonicalOutcome | None = None):
        super().__init__(public_identifier="pk_test_fake")
        self.outcome = outcome or CanonicalOutcome(status="captured", provider_reference="ch_1")
        self.created = 0
        self.finalized = 0

    async def create_order(self, amount: Decimal, currency: str, metadata: Optional[Dict[str, str]] = None):
        amount = validate_amount(amount)
        currency = validate_currency(currency)
        self.created += 1
        return OrderCreated(
            external_id=f"pi_{self.created}",
            client_artifact=f"pi_{self.created}_secret",
            amount_minor=to_minor_units(amount),
            currency=currency,
        )

    async def finalize(self, identifiers: FinalizeRequest) -> CanonicalOutcome:
        self.finalized += 1
        # Yield so concurrent finalizers interleave at the provider call.
        await asyncio.sleep(0)
        return self.outcome

    async def get_details(self, payment_id: str) -> PaymentDetails:
        return PaymentDetails(id=payment_id, status=CREATED, amount=None, currency=None)

    async def verify_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookNotice:
        if headers.get("stripe-signature") != "valid":
            raise WebhookSignatureInvalid("Invalid webhook signature", provider=self.name)
        event = json.loads(raw_body)
        return WebhookNotice(
            event_id=event["id"],
            event_type=event["type"],
            external_id=event["intent"],
            transition=event.get("transition"),
            provider_reference=event.get("charge"),
        )


class RecordingTransport:
    """Routes requests to a handler and remembers every request it saw."""

    def __init__(self, handler):
        self.handler = handler
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def client(self, base_url: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=base_url, transport=httpx.MockTransport(self))


def razorpay_handler(request: httpx.Request) -> httpx.Response:
    if request.method == "POST" and request.url.path == "/v1/orders":
        body = json.loads(request.content)
        return httpx.Response(
            200,
            json={"id": "order_abc", "amount": body["amount"], "currency": body["currency"], "status": "created"},
        )
    if request.method == "GET" and request.url.path == "/v1/payments/pay_123":
        return httpx.Response(
            200,
            json={"id": "pay_123", "status": "captured", "amount": 49999, "currency": "INR"},
        )
    return httpx.Response(404, json={"error": {"code": "BAD_REQUEST_ERROR", "description": "not found"}})


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return PaymentStore(session_factory)


@pytest.fixture
def razorpay_transport():
    return RecordingTransport(razorpay_handler)


@pytest.fixture
def razorpay(razorpay_transport):
    return RazorpayGateway(
        razorpay_transport.client("https://api.razorpay.com"),
        RAZORPAY_KEY_ID,
        RAZORPAY_SECRET,
        webhook_secret=RAZORPAY_WEBHOOK_SECRET,
    )


@pytest.fixture
def stripe_fake():
    return FakeStripeGateway()


@pytest.fixture
def orchestrator(store, razorpay, stripe_fake):
    registry = GatewayRegistry(
        {Provider.RAZORPAY: razorpay, Provider.STRIPE: stripe_fake},
        {Provider.PAYPAL: "paypal-client-id"},
    )
    return PaymentOrchestrator(registry, store)
