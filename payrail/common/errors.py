"""Error taxonomy shared by adapters, the orchestrator and the HTTP layer.

Adapters map provider/network failures into these types at their boundary, so
callers never see raw SDK exceptions or provider response bodies.
"""


class PaymentError(Exception):
    """Base class for every error surfaced by the payment core."""

    code = "payment_error"
    http_status = 500
    retryable = False

    def __init__(self, message: str, provider: str | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.provider = provider
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        body = {"error": self.code, "detail": self.message}
        if self.provider:
            body["provider"] = self.provider
        return body


class ConfigurationError(PaymentError):
    """Provider credentials (or a webhook secret) are absent."""

    code = "not_configured"
    http_status = 503

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["configured"] = False
        return body


class ValidationError(PaymentError):
    """Request rejected before any network call."""

    code = "invalid_request"
    http_status = 400


class ProviderRejected(PaymentError):
    """Provider answered with a 4xx; not retried by the adapter."""

    code = "provider_rejected"
    http_status = 422

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        reason: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, provider=provider)
        self.reason = reason
        self.status_code = status_code


class ProviderTransientError(PaymentError):
    """Timeout, connection failure or 5xx; the caller may retry."""

    code = "provider_unavailable"
    http_status = 502
    retryable = True


class VerificationFailed(PaymentError):
    """Signature/HMAC mismatch; always rejected."""

    code = "verification_failed"
    http_status = 400

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["verified"] = False
        return body


class WebhookSignatureInvalid(VerificationFailed):
    code = "webhook_signature_invalid"


class IdempotencyConflict(PaymentError):
    """A concurrent writer moved the order first."""

    code = "idempotency_conflict"
    http_status = 409


class OrderNotFound(PaymentError):
    code = "order_not_found"
    http_status = 404


class OrderAlreadyFinal(IdempotencyConflict):
    """The order reached a different terminal state than the one requested."""

    code = "order_already_final"

    def __init__(self, message: str, provider: str | None = None, status: str | None = None) -> None:
        super().__init__(message, provider=provider)
        self.status = status

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["status"] = self.status
        body["verified"] = False
        return body
