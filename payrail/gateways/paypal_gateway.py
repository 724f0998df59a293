"""
PayPal adapter (token-exchanged order/capture flow).

Client credentials are exchanged for a short-lived bearer token that is cached
in process memory until shortly before it expires. Orders are created with
intent CAPTURE; capture is a separate call made after buyer approval.
"""

import asyncio
import json
import time
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

import httpx

from payrail.common.errors import (
    ConfigurationError,
    ProviderRejected,
    WebhookSignatureInvalid,
)
from payrail.common.logging import logger
from payrail.common.observability import observe_provider_call
from payrail.common.state_machine import CAPTURED, CREATED, FAILED

from .base import (
    CanonicalOutcome,
    FinalizeRequest,
    OrderCreated,
    PaymentDetails,
    PaymentGateway,
    Provider,
    WebhookNotice,
    header_value,
    to_minor_units,
    validate_amount,
    validate_currency,
    validate_metadata,
)
from .http import send

ENVIRONMENTS = {
    "sandbox": "https://api-m.sandbox.paypal.com",
    "live": "https://api-m.paypal.com",
}

# Seconds shaved off `expires_in` so a cached token is never used at the edge.
TOKEN_EXPIRY_MARGIN = 60

CAPTURE_STATUS_MAP = {
    "COMPLETED": CAPTURED,
    "DECLINED": FAILED,
    "FAILED": FAILED,
}

ORDER_STATUS_MAP = {
    "COMPLETED": CAPTURED,
    "VOIDED": FAILED,
}

WEBHOOK_TRANSITIONS = {
    "PAYMENT.CAPTURE.COMPLETED": CAPTURED,
    "PAYMENT.CAPTURE.DENIED": FAILED,
    "CHECKOUT.ORDER.COMPLETED": CAPTURED,
    "CHECKOUT.ORDER.VOIDED": FAILED,
}

TRANSMISSION_HEADERS = {
    "transmission_id": "paypal-transmission-id",
    "transmission_time": "paypal-transmission-time",
    "transmission_sig": "paypal-transmission-sig",
    "cert_url": "paypal-cert-url",
    "auth_algo": "paypal-auth-algo",
}


def _first_capture(order: Dict[str, Any]) -> Dict[str, Any]:
    for unit in order.get("purchase_units") or []:
        captures = (unit.get("payments") or {}).get("captures") or []
        if captures:
            return captures[0]
    return {}


class PayPalGateway(PaymentGateway):
    """PayPal payment gateway adapter."""

    provider = Provider.PAYPAL

    def __init__(
        self,
        http: httpx.AsyncClient,
        client_id: str,
        client_secret: str,
        webhook_id: Optional[str] = None,
    ):
        super().__init__(public_identifier=client_id)
        self.http = http
        self._client_id = client_id
        self._client_secret = client_secret
        self.webhook_id = webhook_id
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    @classmethod
    def from_credentials(
        cls,
        client_id: str,
        client_secret: str,
        webhook_id: Optional[str] = None,
        environment: str = "sandbox",
        timeout: float = 15.0,
    ) -> "PayPalGateway":
        base_url = ENVIRONMENTS.get(environment, ENVIRONMENTS["sandbox"])
        http = httpx.AsyncClient(base_url=base_url, timeout=timeout)
        return cls(http, client_id, client_secret, webhook_id=webhook_id)

    async def _access_token(self) -> str:
        """Return the cached bearer token, exchanging credentials when it is stale."""

        async with self._token_lock:
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token
            async with observe_provider_call(self.name, "token_exchange"):
                response = await send(
                    self.http,
                    self.name,
                    "POST",
                    "/v1/oauth2/token",
                    auth=(self._client_id, self._client_secret),
                    data={"grant_type": "client_credentials"},
                )
            body = response.json()
            self._token = body["access_token"]
            expires_in = int(body.get("expires_in", 0))
            self._token_expires_at = time.monotonic() + max(0, expires_in - TOKEN_EXPIRY_MARGIN)
            return self._token

    async def _authorized(self, method: str, url: str, operation: str, **kwargs) -> Dict[str, Any]:
        token = await self._access_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }
        async with observe_provider_call(self.name, operation):
            response = await send(self.http, self.name, method, url, headers=headers, **kwargs)
        return response.json()

    async def create_order(
        self,
        amount: Decimal,
        currency: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> OrderCreated:
        amount = validate_amount(amount)
        currency = validate_currency(currency)
        metadata = validate_metadata(metadata)
        purchase_unit: Dict[str, Any] = {
            "amount": {"currency_code": currency, "value": f"{amount:.2f}"},
        }
        if "reference" in metadata:
            purchase_unit["custom_id"] = metadata["reference"][:127]
        if "description" in metadata:
            purchase_unit["description"] = metadata["description"][:127]

        order = await self._authorized(
            "POST",
            "/v2/checkout/orders",
            "create_order",
            json={"intent": "CAPTURE", "purchase_units": [purchase_unit]},
        )
        return OrderCreated(
            external_id=order["id"],
            client_artifact=order["id"],
            amount_minor=to_minor_units(amount),
            currency=currency,
        )

    async def finalize(self, identifiers: FinalizeRequest) -> CanonicalOutcome:
        order_id = identifiers.order_id
        try:
            order = await self._authorized(
                "POST",
                f"/v2/checkout/orders/{order_id}/capture",
                "capture",
                json={},
            )
        except ProviderRejected as exc:
            if exc.reason != "ORDER_ALREADY_CAPTURED":
                raise
            logger.info("paypal order already captured order_id=%s; reading it back", order_id)
            order = await self._authorized("GET", f"/v2/checkout/orders/{order_id}", "get_order")

        capture = _first_capture(order)
        status = CAPTURE_STATUS_MAP.get(capture.get("status", ""), CREATED)
        return CanonicalOutcome(status=status, provider_reference=capture.get("id"))

    async def get_details(self, payment_id: str) -> PaymentDetails:
        order = await self._authorized("GET", f"/v2/checkout/orders/{payment_id}", "get_details")
        units = order.get("purchase_units") or [{}]
        amount = units[0].get("amount") or {}
        return PaymentDetails(
            id=order["id"],
            status=ORDER_STATUS_MAP.get(order.get("status", ""), CREATED),
            amount=Decimal(amount["value"]) if "value" in amount else None,
            currency=amount.get("currency_code"),
        )

    async def verify_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookNotice:
        if not self.webhook_id:
            raise ConfigurationError("PayPal webhook id not configured", provider=self.name)

        transmission = {field: header_value(headers, name) for field, name in TRANSMISSION_HEADERS.items()}
        if not all(transmission.values()):
            raise WebhookSignatureInvalid("Missing PayPal transmission headers", provider=self.name)
        try:
            # Parsed only to build the verification request; untrusted until it succeeds.
            unverified = json.loads(raw_body)
        except ValueError as exc:
            raise WebhookSignatureInvalid("Unreadable webhook payload", provider=self.name) from exc

        try:
            result = await self._authorized(
                "POST",
                "/v1/notifications/verify-webhook-signature",
                "verify_webhook",
                json={**transmission, "webhook_id": self.webhook_id, "webhook_event": unverified},
            )
        except ProviderRejected as exc:
            # PayPal answers 4xx for malformed transmission data; treat as unverified.
            raise WebhookSignatureInvalid("Invalid webhook signature", provider=self.name) from exc
        if result.get("verification_status") != "SUCCESS":
            raise WebhookSignatureInvalid("Invalid webhook signature", provider=self.name)

        event = unverified
        event_type = event.get("event_type", "")
        resource = event.get("resource") or {}
        if event_type.startswith("PAYMENT.CAPTURE."):
            related = (resource.get("supplementary_data") or {}).get("related_ids") or {}
            external_id = related.get("order_id")
            reference = resource.get("id")
        else:
            external_id = resource.get("id")
            reference = _first_capture(resource).get("id")
        return WebhookNotice(
            event_id=event["id"],
            event_type=event_type,
            external_id=external_id,
            transition=WEBHOOK_TRANSITIONS.get(event_type),
            provider_reference=reference,
        )

    async def client_token(self) -> str:
        """Exchange credentials for a token scoped to JS SDK initialisation.

        The token is handed to the caller and not cached: it must never be
        reused for capture.
        """

        async with observe_provider_call(self.name, "client_token"):
            response = await send(
                self.http,
                self.name,
                "POST",
                "/v1/oauth2/token",
                auth=(self._client_id, self._client_secret),
                data={
                    "grant_type": "client_credentials",
                    "response_type": "client_token",
                    "intent": "sdk_init",
                },
            )
        return response.json()["access_token"]

    async def aclose(self) -> None:
        await self.http.aclose()
