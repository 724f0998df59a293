"""Payment orchestration facade.

Single entry point for initiate / finalize / webhook handling. Dispatches to
the provider adapter through the registry, persists order state through the
store, and routes every terminal transition through the idempotency guard.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping

from payrail.common.config import settings
from payrail.common.errors import OrderAlreadyFinal, OrderNotFound, ValidationError, VerificationFailed
from payrail.common.logging import bind_payment, logger
from payrail.common.metrics import verification_failures_total, webhook_events_total
from payrail.common.state_machine import CREATED, VERIFIED, is_terminal
from payrail.gateways.base import (
    CanonicalOutcome,
    FinalizeRequest,
    PaymentDetails,
    WebhookNotice,
    validate_amount,
    validate_currency,
    validate_metadata,
)
from payrail.gateways.registry import GatewayRegistry, parse_provider
from payrail.gateways.signatures import payload_hash
from payrail.services.payments.guard import IdempotencyGuard
from payrail.services.payments.models import PaymentOrder
from payrail.services.payments.store import PaymentStore, new_order


@dataclass(frozen=True)
class PaymentRequest:
    amount: Any
    currency: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class InitiateResult:
    external_id: str
    client_artifact: str
    status: str
    amount_minor: int
    currency: str


@dataclass(frozen=True)
class FinalizeResult:
    status: str
    provider_reference: str | None
    replayed: bool


@dataclass(frozen=True)
class WebhookResult:
    received: bool
    duplicate: bool
    applied: bool
    outcome: str


class PaymentOrchestrator:
    """Owns payment order progression across the three providers."""

    def __init__(
        self,
        registry: GatewayRegistry,
        store: PaymentStore,
        guard: IdempotencyGuard | None = None,
    ) -> None:
        self.registry = registry
        self.store = store
        self.guard = guard or IdempotencyGuard(store)

    def gateway_status(self) -> dict[str, dict[str, object]]:
        return self.registry.status()

    async def initiate(self, provider: str, request: PaymentRequest) -> InitiateResult:
        """Validate, create the provider order, and persist it as `created`."""

        name = parse_provider(provider).value
        bind_payment(name)
        gateway = self.registry.get(name)
        amount: Decimal = validate_amount(request.amount)
        currency = validate_currency(request.currency or settings.default_currency)
        metadata = validate_metadata(request.metadata)

        created = await gateway.create_order(amount, currency, metadata)
        bind_payment(name, created.external_id)
        self.store.put(new_order(name, created.external_id, created.amount_minor, created.currency, metadata))
        logger.info(
            "order_created provider=%s external_id=%s amount_minor=%s currency=%s",
            name,
            created.external_id,
            created.amount_minor,
            created.currency,
        )
        return InitiateResult(
            external_id=created.external_id,
            client_artifact=created.client_artifact,
            status=CREATED,
            amount_minor=created.amount_minor,
            currency=created.currency,
        )

    async def finalize(self, provider: str, identifiers: FinalizeRequest) -> FinalizeResult:
        """Drive an order to its terminal state, or replay the stored outcome.

        A repeat call after a terminal state never reaches the provider, but
        client-supplied signatures are still checked before anything is replayed.
        """

        name = parse_provider(provider).value
        bind_payment(name, identifiers.order_id)
        gateway = self.registry.get(name)

        async with self.guard.hold(name, identifiers.order_id):
            with self._tampering_guard(name, identifiers.order_id):
                gateway.authenticate(identifiers)
            cached = self.guard.cached_outcome(name, identifiers.order_id)
            if cached is not None:
                logger.info("finalize replayed provider=%s external_id=%s", name, identifiers.order_id)
                replay = self.guard.replay(name, cached, "finalize")
                return FinalizeResult(replay.status, replay.provider_reference, replayed=True)

            order = self._require_order(name, identifiers.order_id)
            with self._tampering_guard(name, identifiers.order_id):
                outcome = await gateway.finalize(identifiers)

            if not is_terminal(outcome.status):
                logger.info(
                    "finalize pending provider=%s external_id=%s provider_status=%s",
                    name,
                    identifiers.order_id,
                    outcome.status,
                )
                return FinalizeResult(order.status, None, replayed=False)

            result = self.guard.transition(order, outcome, reason="finalize", source="finalize")
            return FinalizeResult(result.status, result.provider_reference, result.replayed)

    async def verify(self, provider: str, identifiers: FinalizeRequest) -> FinalizeResult:
        """Signature-verified finalize; succeeds only when the order ends `verified`."""

        name = parse_provider(provider).value
        if not self.registry.get(name).verifies_signatures:
            raise ValidationError(f"{name} payments are finalized by capture, not signature verification", provider=name)
        result = await self.finalize(name, identifiers)
        if result.status != VERIFIED:
            raise OrderAlreadyFinal(
                f"order {identifiers.order_id} is already {result.status}",
                provider=name,
                status=result.status,
            )
        return result

    @contextmanager
    def _tampering_guard(self, name: str, external_id: str):
        try:
            yield
        except VerificationFailed:
            verification_failures_total.labels(provider=name, path="order").inc()
            logger.warning(
                "possible_tampering provider=%s external_id=%s path=order_verification",
                name,
                external_id,
            )
            raise

    async def handle_webhook(self, provider: str, raw_body: bytes, headers: Mapping[str, str]) -> WebhookResult:
        """Verify first, then apply the mapped transition at most once per event id."""

        name = parse_provider(provider).value
        bind_payment(name)
        gateway = self.registry.get(name)

        try:
            notice = await gateway.verify_webhook(raw_body, headers)
        except VerificationFailed:
            verification_failures_total.labels(provider=name, path="webhook").inc()
            webhook_events_total.labels(provider=name, outcome="rejected").inc()
            logger.warning("possible_tampering provider=%s path=webhook", name)
            raise

        bind_payment(name, notice.external_id)
        claimed = self.store.claim_webhook_event(
            name,
            notice.event_id,
            notice.event_type,
            notice.external_id,
            payload_hash(raw_body),
        )
        if not claimed:
            logger.info("duplicate webhook skipped provider=%s event_id=%s", name, notice.event_id)
            webhook_events_total.labels(provider=name, outcome="duplicate").inc()
            return WebhookResult(received=True, duplicate=True, applied=False, outcome="duplicate")

        try:
            outcome = await self._apply_webhook(name, notice)
        except Exception:
            # Unclaim so the provider's redelivery can be applied.
            self.store.release_webhook_event(name, notice.event_id)
            raise

        if outcome == "unknown_order":
            # The order may not be persisted yet; leave the event id free for redelivery.
            self.store.release_webhook_event(name, notice.event_id)
        else:
            self.store.finish_webhook_event(name, notice.event_id, outcome)
        webhook_events_total.labels(provider=name, outcome=outcome).inc()
        return WebhookResult(received=True, duplicate=False, applied=outcome == "applied", outcome=outcome)

    async def _apply_webhook(self, name: str, notice: WebhookNotice) -> str:
        if notice.transition is None or not notice.external_id:
            return "ignored"

        async with self.guard.hold(name, notice.external_id):
            order = self.store.get(name, notice.external_id)
            if order is None:
                logger.warning(
                    "webhook for unknown order provider=%s external_id=%s event_type=%s",
                    name,
                    notice.external_id,
                    notice.event_type,
                )
                return "unknown_order"
            if is_terminal(order.status):
                self.guard.replay(name, CanonicalOutcome(order.status, order.provider_reference), "webhook")
                return "replayed"
            result = self.guard.transition(
                order,
                CanonicalOutcome(status=notice.transition, provider_reference=notice.provider_reference),
                reason=f"webhook:{notice.event_type}",
                source="webhook",
                event_id=notice.event_id,
            )
            return "replayed" if result.replayed else "applied"

    def get_order(self, provider: str, external_id: str) -> PaymentOrder:
        return self._require_order(parse_provider(provider).value, external_id)

    async def get_details(self, provider: str, payment_id: str) -> PaymentDetails:
        name = parse_provider(provider).value
        bind_payment(name)
        return await self.registry.get(name).get_details(payment_id)

    async def client_token(self, provider: str) -> str:
        name = parse_provider(provider).value
        bind_payment(name)
        return await self.registry.get(name).client_token()

    def _require_order(self, name: str, external_id: str) -> PaymentOrder:
        order = self.store.get(name, external_id)
        if order is None:
            raise OrderNotFound(f"order {external_id} not found", provider=name)
        return order
