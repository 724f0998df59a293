"""Serialization point for terminal transitions.

Finalize and webhook-driven transitions for one (provider, external_id) run
under a per-key lock in-process, and the store's compare-and-set makes the
write safe across processes. Whoever loses the race gets the stored outcome.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass

from payrail.common.errors import IdempotencyConflict
from payrail.common.logging import logger
from payrail.common.metrics import idempotent_replays_total, payment_transitions_total
from payrail.common.state_machine import is_terminal
from payrail.gateways.base import CanonicalOutcome
from payrail.services.payments.models import PaymentOrder
from payrail.services.payments.store import PaymentStore


@dataclass(frozen=True)
class TransitionResult:
    status: str
    provider_reference: str | None
    replayed: bool


class IdempotencyGuard:
    """Per-key mutex + compare-and-set over the payment store."""

    def __init__(self, store: PaymentStore) -> None:
        self.store = store
        self._locks: dict[tuple[str, str], list] = {}

    @asynccontextmanager
    async def hold(self, provider: str, external_id: str):
        """Serialize all transitions for one external id."""

        key = (provider, external_id)
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                self._locks.pop(key, None)

    def cached_outcome(self, provider: str, external_id: str) -> CanonicalOutcome | None:
        """Stored terminal outcome, if this external id already reached one."""

        record = self.store.get_idempotency_record(provider, external_id)
        if record is not None:
            return CanonicalOutcome(status=record.status, provider_reference=record.provider_reference)
        order = self.store.get(provider, external_id)
        if order is not None and is_terminal(order.status):
            return CanonicalOutcome(status=order.status, provider_reference=order.provider_reference)
        return None

    def replay(self, provider: str, outcome: CanonicalOutcome, source: str) -> TransitionResult:
        idempotent_replays_total.labels(provider=provider, source=source).inc()
        return TransitionResult(outcome.status, outcome.provider_reference, replayed=True)

    def transition(
        self,
        order: PaymentOrder,
        outcome: CanonicalOutcome,
        reason: str,
        source: str,
        event_id: str | None = None,
    ) -> TransitionResult:
        """Move `order` to `outcome.status` exactly once.

        A lost compare-and-set resolves to the winner's stored outcome; only a
        loss with nothing stored surfaces as `IdempotencyConflict`.
        """

        applied = self.store.compare_and_set(
            order,
            outcome.status,
            outcome.provider_reference,
            reason=reason,
            source=source,
            event_id=event_id,
        )
        if applied:
            payment_transitions_total.labels(provider=order.provider, to_state=outcome.status).inc()
            logger.info(
                "order_transition provider=%s external_id=%s to=%s source=%s",
                order.provider,
                order.external_id,
                outcome.status,
                source,
            )
            return TransitionResult(outcome.status, outcome.provider_reference, replayed=False)

        cached = self.cached_outcome(order.provider, order.external_id)
        if cached is None:
            raise IdempotencyConflict(
                f"order {order.external_id} changed concurrently",
                provider=order.provider,
            )
        return self.replay(order.provider, cached, source)
