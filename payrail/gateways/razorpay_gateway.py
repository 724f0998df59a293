"""
Razorpay adapter (order + HMAC verification flow).

Orders are created with the secret-keyed client. Checkout returns
`(order_id, payment_id, signature)`; finalize recomputes the HMAC locally, so
verification costs no provider round-trip.
"""

import json
from decimal import Decimal
from typing import Dict, Mapping, Optional
from uuid import uuid4

import httpx

from payrail.common.errors import (
    ConfigurationError,
    ValidationError,
    VerificationFailed,
    WebhookSignatureInvalid,
)
from payrail.common.observability import observe_provider_call
from payrail.common.state_machine import AUTHORIZED, CAPTURED, CREATED, FAILED, VERIFIED

from .base import (
    CanonicalOutcome,
    FinalizeRequest,
    OrderCreated,
    PaymentDetails,
    PaymentGateway,
    Provider,
    WebhookNotice,
    from_minor_units,
    header_value,
    to_minor_units,
    validate_amount,
    validate_currency,
    validate_metadata,
)
from .http import send
from .signatures import hmac_sha256_hex, order_signature, payload_hash, signatures_match

API_BASE_URL = "https://api.razorpay.com"

# Razorpay caps notes at 15 pairs and receipts at 40 characters.
MAX_NOTES = 15
MAX_RECEIPT_LENGTH = 40

PAYMENT_STATUS_MAP = {
    "authorized": AUTHORIZED,
    "captured": CAPTURED,
    "failed": FAILED,
}

WEBHOOK_TRANSITIONS = {
    "payment.authorized": AUTHORIZED,
    "payment.captured": CAPTURED,
    "order.paid": CAPTURED,
    "payment.failed": FAILED,
}


class RazorpayGateway(PaymentGateway):
    """Razorpay payment gateway adapter."""

    provider = Provider.RAZORPAY
    verifies_signatures = True

    def __init__(
        self,
        http: httpx.AsyncClient,
        key_id: str,
        key_secret: str,
        webhook_secret: Optional[str] = None,
    ):
        super().__init__(public_identifier=key_id)
        self.http = http
        self._key_secret = key_secret
        self.webhook_secret = webhook_secret

    @classmethod
    def from_credentials(
        cls,
        key_id: str,
        key_secret: str,
        webhook_secret: Optional[str] = None,
        timeout: float = 15.0,
    ) -> "RazorpayGateway":
        http = httpx.AsyncClient(base_url=API_BASE_URL, auth=(key_id, key_secret), timeout=timeout)
        return cls(http, key_id, key_secret, webhook_secret=webhook_secret)

    async def create_order(
        self,
        amount: Decimal,
        currency: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> OrderCreated:
        amount = validate_amount(amount)
        currency = validate_currency(currency)
        notes = validate_metadata(metadata)
        receipt = notes.pop("receipt", None) or f"rcpt_{uuid4().hex[:16]}"
        amount_minor = to_minor_units(amount)

        async with observe_provider_call(self.name, "create_order"):
            response = await send(
                self.http,
                self.name,
                "POST",
                "/v1/orders",
                json={
                    "amount": amount_minor,
                    "currency": currency,
                    "receipt": receipt[:MAX_RECEIPT_LENGTH],
                    "notes": dict(list(notes.items())[:MAX_NOTES]),
                },
            )
        order = response.json()
        return OrderCreated(
            external_id=order["id"],
            client_artifact=order["id"],
            amount_minor=amount_minor,
            currency=currency,
        )

    def authenticate(self, identifiers: FinalizeRequest) -> None:
        if not identifiers.payment_id or not identifiers.signature:
            raise ValidationError("Missing required payment data", provider=self.name)
        expected = order_signature(self._key_secret, identifiers.order_id, identifiers.payment_id)
        if not signatures_match(expected, identifiers.signature):
            raise VerificationFailed("Invalid payment signature", provider=self.name)

    async def finalize(self, identifiers: FinalizeRequest) -> CanonicalOutcome:
        self.authenticate(identifiers)
        return CanonicalOutcome(status=VERIFIED, provider_reference=identifiers.payment_id)

    async def get_details(self, payment_id: str) -> PaymentDetails:
        async with observe_provider_call(self.name, "get_details"):
            response = await send(self.http, self.name, "GET", f"/v1/payments/{payment_id}")
        payment = response.json()
        return PaymentDetails(
            id=payment["id"],
            status=PAYMENT_STATUS_MAP.get(payment.get("status", ""), CREATED),
            amount=from_minor_units(payment["amount"]) if payment.get("amount") is not None else None,
            currency=payment.get("currency"),
        )

    async def verify_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookNotice:
        if not self.webhook_secret:
            raise ConfigurationError("Razorpay webhook secret not configured", provider=self.name)
        expected = hmac_sha256_hex(self.webhook_secret, raw_body)
        if not signatures_match(expected, header_value(headers, "x-razorpay-signature")):
            raise WebhookSignatureInvalid("Invalid webhook signature", provider=self.name)

        try:
            event = json.loads(raw_body)
        except ValueError as exc:
            raise ValidationError("Malformed webhook payload", provider=self.name) from exc

        event_type = event.get("event", "")
        payload = event.get("payload") or {}
        payment = (payload.get("payment") or {}).get("entity") or {}
        order = (payload.get("order") or {}).get("entity") or {}
        # Razorpay sends a delivery-stable id header; fall back to the body digest.
        event_id = header_value(headers, "x-razorpay-event-id") or f"sha256:{payload_hash(raw_body)}"
        return WebhookNotice(
            event_id=event_id,
            event_type=event_type,
            external_id=payment.get("order_id") or order.get("id"),
            transition=WEBHOOK_TRANSITIONS.get(event_type),
            provider_reference=payment.get("id"),
        )

    async def aclose(self) -> None:
        await self.http.aclose()
