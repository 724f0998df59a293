"""HTTP surface for payment orders, provider webhooks and gateway status."""

from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from payrail.common.config import settings
from payrail.common.db import SessionLocal, engine
from payrail.common.errors import PaymentError
from payrail.common.logging import configure_logging, logger, trace_id_ctx
from payrail.common.metrics import http_request_duration_seconds, http_requests_total, metrics_response
from payrail.common.startup import log_startup_config
from payrail.common.state_machine import VERIFIED
from payrail.common.tracing import instrument_app, setup_tracing
from payrail.gateways.base import FinalizeRequest
from payrail.gateways.registry import GatewayRegistry
from payrail.services.payments.schemas import (
    ClientTokenResponse,
    FinalizeResponse,
    GatewayStatus,
    OrderCreatedResponse,
    OrderCreateRequest,
    OrderResponse,
    PaymentDetailsResponse,
    VerifyRequest,
    VerifyResponse,
    WebhookAck,
)
from payrail.services.payments.service import PaymentOrchestrator, PaymentRequest
from payrail.services.payments.store import PaymentStore

router = APIRouter(prefix="/payments")


def get_orchestrator(request: Request) -> PaymentOrchestrator:
    return request.app.state.orchestrator


@router.get("/status", response_model=dict[str, GatewayStatus])
def gateway_status(service: PaymentOrchestrator = Depends(get_orchestrator)):
    """Per-provider availability; never exposes secrets."""

    return service.gateway_status()


@router.post("/{provider}/orders", status_code=201, response_model=OrderCreatedResponse)
async def create_order(
    provider: str,
    req: OrderCreateRequest,
    service: PaymentOrchestrator = Depends(get_orchestrator),
):
    """Create a provider order/intent and persist it as `created`."""

    result = await service.initiate(
        provider,
        PaymentRequest(amount=req.amount, currency=req.currency, metadata=req.metadata),
    )
    return OrderCreatedResponse(
        external_id=result.external_id,
        client_artifact=result.client_artifact,
        status=result.status,
        amount_minor=result.amount_minor,
        currency=result.currency,
    )


@router.get("/{provider}/orders/{external_id}", response_model=OrderResponse)
def get_order(provider: str, external_id: str, service: PaymentOrchestrator = Depends(get_orchestrator)):
    order = service.get_order(provider, external_id)
    return OrderResponse(
        provider=order.provider,
        external_id=order.external_id,
        status=order.status,
        amount_minor=order.amount_minor,
        currency=order.currency,
        provider_reference=order.provider_reference,
    )


@router.post("/{provider}/orders/{external_id}/capture", response_model=FinalizeResponse)
async def capture_order(provider: str, external_id: str, service: PaymentOrchestrator = Depends(get_orchestrator)):
    """Finalize an approved order; repeat calls replay the stored outcome."""

    result = await service.finalize(provider, FinalizeRequest(order_id=external_id))
    return FinalizeResponse(
        status=result.status,
        provider_reference=result.provider_reference,
        replayed=result.replayed,
    )


@router.post("/{provider}/orders/{external_id}/verify", response_model=VerifyResponse)
async def verify_order(
    provider: str,
    external_id: str,
    req: VerifyRequest,
    service: PaymentOrchestrator = Depends(get_orchestrator),
):
    """Check the checkout signature and mark the order `verified`.

    Answers 409 when the order already ended in another state.
    """

    result = await service.verify(
        provider,
        FinalizeRequest(order_id=external_id, payment_id=req.payment_id, signature=req.signature),
    )
    return VerifyResponse(
        verified=result.status == VERIFIED,
        status=result.status,
        provider_reference=result.provider_reference,
        replayed=result.replayed,
    )


@router.post("/{provider}/webhook", response_model=WebhookAck)
async def provider_webhook(provider: str, request: Request, service: PaymentOrchestrator = Depends(get_orchestrator)):
    """Pass the raw, unparsed body and headers to signature verification."""

    raw_body = await request.body()
    result = await service.handle_webhook(provider, raw_body, request.headers)
    return WebhookAck(received=result.received, duplicate=result.duplicate)


@router.get("/{provider}/payments/{payment_id}", response_model=PaymentDetailsResponse)
async def payment_details(provider: str, payment_id: str, service: PaymentOrchestrator = Depends(get_orchestrator)):
    details = await service.get_details(provider, payment_id)
    return PaymentDetailsResponse(
        id=details.id,
        status=details.status,
        amount=f"{details.amount:.2f}" if details.amount is not None else None,
        currency=details.currency,
    )


@router.get("/{provider}/setup", response_model=ClientTokenResponse)
async def client_setup(provider: str, service: PaymentOrchestrator = Depends(get_orchestrator)):
    """Issue a token scoped to client SDK initialisation."""

    return ClientTokenResponse(client_token=await service.client_token(provider), configured=True)


async def payment_error_handler(_: Request, exc: PaymentError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.warning("payment request failed code=%s detail=%s", exc.code, exc.message)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


async def request_validation_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [".".join(str(part) for part in error["loc"][1:]) for error in exc.errors()]
    return JSONResponse(
        status_code=400,
        content={"error": "invalid_request", "detail": f"Invalid fields: {', '.join(fields)}"},
    )


def create_app(service: PaymentOrchestrator, store: PaymentStore | None = None) -> FastAPI:
    """Build the API around an injected orchestrator."""

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        """Ensure tables exist and close provider clients on shutdown."""

        if store is not None:
            store.ensure_schema(engine)
        yield
        await service.registry.aclose()

    app = FastAPI(title="PayRail Payments", lifespan=lifespan)
    app.state.orchestrator = service
    app.include_router(router)
    app.add_exception_handler(PaymentError, payment_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Record request count and latency; bind a trace id for log lines."""

        trace_id_ctx.set(request.headers.get("x-correlation-id") or str(uuid4()))
        start = perf_counter()
        route = request.url.path
        method = request.method
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            route_obj = request.scope.get("route")
            if route_obj is not None and getattr(route_obj, "path", None):
                route = route_obj.path
            return response
        finally:
            elapsed = max(0.0, perf_counter() - start)
            http_request_duration_seconds.labels(
                service=settings.service_name,
                route=route,
                method=method,
            ).observe(elapsed)
            http_requests_total.labels(
                service=settings.service_name,
                route=route,
                method=method,
                status_code=str(status_code),
            ).inc()

    @app.get("/metrics")
    def metrics():
        """Prometheus scrape endpoint."""

        return metrics_response()

    @app.get("/health")
    def health():
        """Container health probe endpoint."""

        return {"ok": True}

    return app


def build_default_app() -> FastAPI:
    configure_logging()
    tracing_enabled = setup_tracing(settings.service_name)
    log_startup_config(settings)
    store = PaymentStore(SessionLocal)
    registry = GatewayRegistry.init(settings)
    app = create_app(PaymentOrchestrator(registry, store), store=store)
    if tracing_enabled:
        instrument_app(app)
    return app


app = build_default_app()
