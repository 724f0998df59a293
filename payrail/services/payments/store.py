"""SQLAlchemy-backed store for orders, terminal outcomes and webhook deliveries."""

from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from payrail.common.db import Base
from payrail.common.errors import IdempotencyConflict
from payrail.common.logging import logger
from payrail.common.state_machine import CREATED, is_terminal, validate_transition
from payrail.services.payments.models import (
    IdempotencyRecord,
    PaymentOrder,
    PaymentTimeline,
    WebhookEvent,
)


class PaymentStore:
    """`get` / `put` / `compare_and_set` by (provider, external_id)."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def ensure_schema(self, engine) -> None:
        """Create missing tables; migrations own the schema in deployed databases."""

        Base.metadata.create_all(engine)

    def get(self, provider: str, external_id: str) -> PaymentOrder | None:
        with self.session_factory() as db:
            return db.execute(
                select(PaymentOrder).where(
                    PaymentOrder.provider == provider,
                    PaymentOrder.external_id == external_id,
                )
            ).scalar_one_or_none()

    def put(self, order: PaymentOrder) -> PaymentOrder:
        """Insert a new order in `created` together with its first timeline row."""

        with self.session_factory() as db:
            db.add(order)
            db.add(
                PaymentTimeline(
                    provider=order.provider,
                    external_id=order.external_id,
                    from_state=None,
                    to_state=order.status,
                    reason="order_created",
                    event_id=None,
                )
            )
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise IdempotencyConflict(
                    f"order {order.external_id} already exists",
                    provider=order.provider,
                ) from exc
            return order

    def compare_and_set(
        self,
        order: PaymentOrder,
        new_status: str,
        provider_reference: str | None,
        reason: str,
        source: str,
        event_id: str | None = None,
    ) -> bool:
        """Apply one validated transition with optimistic concurrency.

        The write is guarded by `(provider, external_id, status, state_version)`
        and commits the timeline row and the idempotency record in the same
        transaction. Returns False when another writer moved the order first.
        """

        validate_transition(order.status, new_status)
        from_status = order.status
        current_version = order.state_version

        with self.session_factory() as db:
            result = db.execute(
                update(PaymentOrder)
                .where(
                    PaymentOrder.provider == order.provider,
                    PaymentOrder.external_id == order.external_id,
                    PaymentOrder.status == from_status,
                    PaymentOrder.state_version == current_version,
                )
                .values(
                    status=new_status,
                    provider_reference=provider_reference,
                    state_version=current_version + 1,
                    updated_at=datetime.now(timezone.utc),
                )
            )
            if result.rowcount != 1:
                db.rollback()
                logger.warning(
                    "compare_and_set lost provider=%s external_id=%s expected=%s/v%s",
                    order.provider,
                    order.external_id,
                    from_status,
                    current_version,
                )
                return False

            db.add(
                PaymentTimeline(
                    provider=order.provider,
                    external_id=order.external_id,
                    from_state=from_status,
                    to_state=new_status,
                    reason=reason,
                    event_id=event_id,
                )
            )
            if is_terminal(new_status):
                db.add(
                    IdempotencyRecord(
                        provider=order.provider,
                        external_id=order.external_id,
                        status=new_status,
                        provider_reference=provider_reference,
                        source=source,
                    )
                )
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                return False

        order.status = new_status
        order.provider_reference = provider_reference
        order.state_version = current_version + 1
        return True

    def get_idempotency_record(self, provider: str, external_id: str) -> IdempotencyRecord | None:
        with self.session_factory() as db:
            return db.get(IdempotencyRecord, (provider, external_id))

    def claim_webhook_event(
        self,
        provider: str,
        event_id: str,
        event_type: str,
        external_id: str | None,
        payload_hash: str,
    ) -> bool:
        """Record a verified delivery; False when (provider, event_id) was seen before."""

        with self.session_factory() as db:
            db.add(
                WebhookEvent(
                    provider=provider,
                    event_id=event_id,
                    event_type=event_type,
                    external_id=external_id,
                    payload_hash=payload_hash,
                    verified=True,
                    outcome="received",
                )
            )
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                return False
            return True

    def finish_webhook_event(self, provider: str, event_id: str, outcome: str) -> None:
        with self.session_factory() as db:
            db.execute(
                update(WebhookEvent)
                .where(WebhookEvent.provider == provider, WebhookEvent.event_id == event_id)
                .values(outcome=outcome)
            )
            db.commit()

    def release_webhook_event(self, provider: str, event_id: str) -> None:
        """Forget a claimed delivery whose processing failed, so a redelivery can apply it."""

        with self.session_factory() as db:
            event = db.execute(
                select(WebhookEvent).where(WebhookEvent.provider == provider, WebhookEvent.event_id == event_id)
            ).scalar_one_or_none()
            if event is not None:
                db.delete(event)
                db.commit()

    def webhook_event(self, provider: str, event_id: str) -> WebhookEvent | None:
        with self.session_factory() as db:
            return db.execute(
                select(WebhookEvent).where(WebhookEvent.provider == provider, WebhookEvent.event_id == event_id)
            ).scalar_one_or_none()

    def timeline(self, provider: str, external_id: str) -> list[PaymentTimeline]:
        with self.session_factory() as db:
            return list(
                db.execute(
                    select(PaymentTimeline)
                    .where(PaymentTimeline.provider == provider, PaymentTimeline.external_id == external_id)
                    .order_by(PaymentTimeline.created_at, PaymentTimeline.timeline_id)
                ).scalars()
            )


def new_order(provider: str, external_id: str, amount_minor: int, currency: str, metadata: dict) -> PaymentOrder:
    return PaymentOrder(
        provider=provider,
        external_id=external_id,
        status=CREATED,
        amount_minor=amount_minor,
        currency=currency,
        metadata_=metadata,
        state_version=0,
    )
