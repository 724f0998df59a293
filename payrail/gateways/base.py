"""
Payment gateway contract.

Every provider adapter translates the canonical request into its own order or
intent API and maps the provider's answer back to a canonical outcome. Adapters
hold client handles only; payment state is owned by the orchestrator.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from payrail.common.errors import ValidationError


class Provider(str, Enum):
    """Supported payment providers."""
    STRIPE = "stripe"
    PAYPAL = "paypal"
    RAZORPAY = "razorpay"


@dataclass(frozen=True)
class OrderCreated:
    """Result of `create_order`."""
    external_id: str
    client_artifact: str
    amount_minor: int
    currency: str


@dataclass(frozen=True)
class FinalizeRequest:
    """Identifiers a caller supplies to finalize an order.

    Stripe and PayPal need only `order_id`; Razorpay also needs the
    `payment_id` and `signature` returned by its checkout.
    """
    order_id: str
    payment_id: Optional[str] = None
    signature: Optional[str] = None


@dataclass(frozen=True)
class CanonicalOutcome:
    """Provider-agnostic terminal result."""
    status: str
    provider_reference: Optional[str] = None


@dataclass(frozen=True)
class PaymentDetails:
    id: str
    status: str
    amount: Optional[Decimal]
    currency: Optional[str]


@dataclass(frozen=True)
class WebhookNotice:
    """A verified webhook, reduced to what the orchestrator needs.

    `transition` is the canonical target status, or None when the event type
    does not move a payment.
    """
    event_id: str
    event_type: str
    external_id: Optional[str] = None
    transition: Optional[str] = None
    provider_reference: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


def validate_amount(amount: Any) -> Decimal:
    """Coerce to Decimal and enforce a positive amount with at most two decimals."""
    if isinstance(amount, bool) or amount is None:
        raise ValidationError("Invalid amount. Amount must be a positive number.")
    try:
        value = Decimal(str(amount)) if isinstance(amount, float) else Decimal(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("Invalid amount. Amount must be a positive number.") from None
    if not value.is_finite() or value <= 0:
        raise ValidationError("Invalid amount. Amount must be a positive number.")
    scaled = value * 100
    if scaled != scaled.to_integral_value():
        raise ValidationError("Invalid amount. At most two decimal places are supported.")
    return value


def validate_currency(currency: Any) -> str:
    if not isinstance(currency, str) or len(currency) != 3 or not currency.isalpha():
        raise ValidationError("Invalid currency. Expected a 3-letter ISO code.")
    return currency.upper()


def validate_metadata(metadata: Any) -> Dict[str, str]:
    if metadata is None:
        return {}
    if not isinstance(metadata, Mapping):
        raise ValidationError("Invalid metadata. Expected an object of string values.")
    return {str(key): str(value) for key, value in metadata.items()}


def header_value(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup over any mapping."""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


def to_minor_units(amount: Decimal) -> int:
    """`round(amount * 100)`; exact for validated amounts."""
    return int((amount * 100).to_integral_value())


def from_minor_units(amount_minor: int) -> Decimal:
    return Decimal(amount_minor) / 100


class PaymentGateway(ABC):
    """Abstract base class for payment gateway adapters."""

    provider: Provider
    # True when finalize is proven by a client-supplied signature, not a provider call.
    verifies_signatures = False

    def __init__(self, public_identifier: Optional[str] = None):
        self.public_identifier = public_identifier

    @property
    def name(self) -> str:
        return self.provider.value

    def status(self) -> Dict[str, Any]:
        """Availability snapshot; never includes secret material."""
        return {"available": True, "public_identifier": self.public_identifier}

    @abstractmethod
    async def create_order(
        self,
        amount: Decimal,
        currency: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> OrderCreated:
        """
        Create the provider-side order or intent.

        Raises:
            ValidationError: bad amount, before any network call
            ProviderRejected / ProviderTransientError: provider failures
        """

    @abstractmethod
    async def finalize(self, identifiers: FinalizeRequest) -> CanonicalOutcome:
        """
        Drive the order to a terminal canonical status.

        Raises:
            VerificationFailed: signature mismatch
            ProviderRejected / ProviderTransientError: provider failures
        """

    @abstractmethod
    async def get_details(self, payment_id: str) -> PaymentDetails:
        """Fetch the provider's native record mapped to `PaymentDetails`."""

    @abstractmethod
    async def verify_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookNotice:
        """
        Prove a webhook genuine before its payload is trusted.

        Raises:
            WebhookSignatureInvalid: signature mismatch; payload discarded
            ConfigurationError: webhook secret not configured
        """

    def authenticate(self, identifiers: FinalizeRequest) -> None:
        """Check client-supplied proof of payment locally. Nothing to check by default."""

    async def client_token(self) -> str:
        raise ValidationError(f"{self.name} does not issue client tokens", provider=self.name)

    async def aclose(self) -> None:
        """Release network resources held by the adapter."""
