"""Structured provider-call events: one span, one log line and metrics per call."""

import time
from contextlib import asynccontextmanager

from opentelemetry.trace import Status, StatusCode

from payrail.common.errors import PaymentError
from payrail.common.logging import logger
from payrail.common.metrics import provider_call_latency_seconds, provider_calls_total
from payrail.common.tracing import provider_span


@asynccontextmanager
async def observe_provider_call(provider: str, operation: str):
    """Time one outbound provider call and emit `provider_call` with its outcome.

    The outcome is `ok` or the taxonomy code of the error raised inside the
    block. No request or response material is logged.
    """

    start = time.perf_counter()
    outcome = "ok"
    with provider_span(provider, operation) as span:
        try:
            yield
        except PaymentError as exc:
            outcome = exc.code
            span.set_status(Status(StatusCode.ERROR, exc.code))
            raise
        except Exception:
            outcome = "unexpected_error"
            span.set_status(Status(StatusCode.ERROR, outcome))
            raise
        finally:
            elapsed = max(0.0, time.perf_counter() - start)
            span.set_attribute("payment.outcome", outcome)
            provider_call_latency_seconds.labels(provider=provider, operation=operation).observe(elapsed)
            provider_calls_total.labels(provider=provider, operation=operation, outcome=outcome).inc()
            logger.info(
                "provider_call provider=%s operation=%s outcome=%s latency_ms=%s",
                provider,
                operation,
                outcome,
                int(elapsed * 1000),
            )
