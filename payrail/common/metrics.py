"""Prometheus metric definitions for the payment core."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


provider_calls_total = Counter(
    "provider_calls_total",
    "Outbound provider calls by outcome",
    ["provider", "operation", "outcome"],
)
provider_call_latency_seconds = Histogram(
    "provider_call_latency_seconds",
    "Outbound provider call latency seconds",
    ["provider", "operation"],
)
payment_transitions_total = Counter(
    "payment_transitions_total",
    "Payment order transitions into a terminal state",
    ["provider", "to_state"],
)
idempotent_replays_total = Counter(
    "idempotent_replays_total",
    "Finalize/webhook calls answered from a stored terminal outcome",
    ["provider", "source"],
)
webhook_events_total = Counter(
    "webhook_events_total",
    "Inbound webhook deliveries by outcome",
    ["provider", "outcome"],
)
verification_failures_total = Counter(
    "verification_failures_total",
    "Signature or HMAC mismatches (possible tampering)",
    ["provider", "path"],
)
gateway_init_total = Counter(
    "gateway_init_total",
    "Gateway initialisation results",
    ["provider", "available"],
)
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
