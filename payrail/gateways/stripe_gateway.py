"""
Stripe adapter (intent/capture flow).

`create_order` opens a PaymentIntent and hands its client secret to the
browser; the client SDK confirms the payment and the result is reconciled by
webhook or by an explicit finalize that reads the intent back.
"""

from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

import stripe
from stripe import StripeClient, StripeError

from payrail.common.errors import (
    ConfigurationError,
    PaymentError,
    ProviderRejected,
    ProviderTransientError,
    ValidationError,
    WebhookSignatureInvalid,
)
from payrail.common.logging import logger
from payrail.common.observability import observe_provider_call
from payrail.common.state_machine import AUTHORIZED, CAPTURED, CREATED, FAILED

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

INTENT_STATUS_MAP = {
    "succeeded": CAPTURED,
    "requires_capture": AUTHORIZED,
    "canceled": FAILED,
}

WEBHOOK_TRANSITIONS = {
    "payment_intent.succeeded": CAPTURED,
    "payment_intent.amount_capturable_updated": AUTHORIZED,
    "payment_intent.payment_failed": FAILED,
    "payment_intent.canceled": FAILED,
}


class StripeGateway(PaymentGateway):
    """Stripe payment gateway adapter."""

    provider = Provider.STRIPE

    def __init__(
        self,
        client: StripeClient,
        webhook_secret: Optional[str] = None,
        public_identifier: Optional[str] = None,
        description: str = "PayRail payment",
    ):
        super().__init__(public_identifier=public_identifier)
        self.client = client
        self.webhook_secret = webhook_secret
        self.description = description

    @classmethod
    def from_credentials(
        cls,
        secret_key: str,
        webhook_secret: Optional[str] = None,
        public_key: Optional[str] = None,
        timeout: float = 15.0,
    ) -> "StripeGateway":
        # Retries are the caller's decision, so the SDK's own are switched off.
        client = StripeClient(
            secret_key,
            http_client=stripe.HTTPXClient(timeout=timeout),
            max_network_retries=0,
        )
        return cls(client, webhook_secret=webhook_secret, public_identifier=public_key)

    async def create_order(
        self,
        amount: Decimal,
        currency: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> OrderCreated:
        amount = validate_amount(amount)
        currency = validate_currency(currency)
        amount_minor = to_minor_units(amount)
        params: Dict[str, Any] = {
            "amount": amount_minor,
            "currency": currency.lower(),
            "description": self.description,
            "metadata": validate_metadata(metadata),
            "automatic_payment_methods": {"enabled": True},
        }

        async with observe_provider_call(self.name, "create_order"):
            try:
                intent = await self.client.v1.payment_intents.create_async(params=params)
            except StripeError as exc:
                raise self._map_error(exc) from exc

        return OrderCreated(
            external_id=intent.id,
            client_artifact=intent.client_secret,
            amount_minor=amount_minor,
            currency=currency,
        )

    async def finalize(self, identifiers: FinalizeRequest) -> CanonicalOutcome:
        intent = await self._retrieve_intent(identifiers.order_id, "finalize")
        status = INTENT_STATUS_MAP.get(intent.status, CREATED)
        return CanonicalOutcome(status=status, provider_reference=getattr(intent, "latest_charge", None) or intent.id)

    async def get_details(self, payment_id: str) -> PaymentDetails:
        intent = await self._retrieve_intent(payment_id, "get_details")
        return PaymentDetails(
            id=intent.id,
            status=INTENT_STATUS_MAP.get(intent.status, CREATED),
            amount=from_minor_units(intent.amount) if intent.amount is not None else None,
            currency=intent.currency.upper() if intent.currency else None,
        )

    async def verify_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookNotice:
        if not self.webhook_secret:
            raise ConfigurationError("Stripe webhook secret not configured", provider=self.name)
        signature = header_value(headers, "stripe-signature")
        if not signature:
            raise WebhookSignatureInvalid("Missing stripe-signature header", provider=self.name)

        try:
            event = stripe.Webhook.construct_event(raw_body, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as exc:
            raise WebhookSignatureInvalid("Invalid webhook signature", provider=self.name) from exc
        except ValueError as exc:
            raise ValidationError("Malformed webhook payload", provider=self.name) from exc

        event_type = event.type
        intent = event.data.object
        transition = WEBHOOK_TRANSITIONS.get(event_type)
        if transition is None:
            logger.info("stripe webhook ignored event_type=%s", event_type)
        return WebhookNotice(
            event_id=event.id,
            event_type=event_type,
            external_id=getattr(intent, "id", None),
            transition=transition,
            provider_reference=getattr(intent, "latest_charge", None) or getattr(intent, "id", None),
        )

    async def _retrieve_intent(self, intent_id: str, operation: str):
        async with observe_provider_call(self.name, operation):
            try:
                return await self.client.v1.payment_intents.retrieve_async(intent_id)
            except StripeError as exc:
                raise self._map_error(exc) from exc

    def _map_error(self, exc: StripeError) -> PaymentError:
        if isinstance(exc, (stripe.APIConnectionError, stripe.RateLimitError)):
            return ProviderTransientError("Stripe is unreachable", provider=self.name)
        status = exc.http_status
        if status is None or status >= 500:
            return ProviderTransientError(f"Stripe returned HTTP {status}", provider=self.name)
        return ProviderRejected(
            f"stripe rejected request: {exc.user_message or exc.code or 'request rejected'}",
            provider=self.name,
            reason=exc.code,
            status_code=status,
        )
