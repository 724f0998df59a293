"""Gateway registry: probe credentials once at startup and hold the adapters.

A provider whose credential set is incomplete is marked unavailable and logged;
initialisation never raises, so one missing secret degrades only that provider.
"""

from typing import Callable, Dict, Iterable, Optional

from payrail.common.config import Settings
from payrail.common.errors import ConfigurationError, ValidationError
from payrail.common.logging import logger
from payrail.common.metrics import gateway_init_total

from .base import PaymentGateway, Provider
from .paypal_gateway import PayPalGateway
from .razorpay_gateway import RazorpayGateway
from .stripe_gateway import StripeGateway

REQUIRED_CREDENTIALS: Dict[Provider, tuple[str, ...]] = {
    Provider.STRIPE: ("stripe_secret_key",),
    Provider.PAYPAL: ("paypal_client_id", "paypal_client_secret"),
    Provider.RAZORPAY: ("razorpay_key_id", "razorpay_key_secret"),
}

PUBLIC_IDENTIFIERS: Dict[Provider, str] = {
    Provider.STRIPE: "stripe_public_key",
    Provider.PAYPAL: "paypal_client_id",
    Provider.RAZORPAY: "razorpay_key_id",
}


def _build_stripe(cfg: Settings) -> PaymentGateway:
    return StripeGateway.from_credentials(
        cfg.stripe_secret_key,
        webhook_secret=cfg.stripe_webhook_secret,
        public_key=cfg.stripe_public_key,
        timeout=cfg.provider_timeout_seconds,
    )


def _build_paypal(cfg: Settings) -> PaymentGateway:
    return PayPalGateway.from_credentials(
        cfg.paypal_client_id,
        cfg.paypal_client_secret,
        webhook_id=cfg.paypal_webhook_id,
        environment=cfg.paypal_environment,
        timeout=cfg.provider_timeout_seconds,
    )


def _build_razorpay(cfg: Settings) -> PaymentGateway:
    return RazorpayGateway.from_credentials(
        cfg.razorpay_key_id,
        cfg.razorpay_key_secret,
        webhook_secret=cfg.razorpay_webhook_secret,
        timeout=cfg.provider_timeout_seconds,
    )


BUILDERS: Dict[Provider, Callable[[Settings], PaymentGateway]] = {
    Provider.STRIPE: _build_stripe,
    Provider.PAYPAL: _build_paypal,
    Provider.RAZORPAY: _build_razorpay,
}


def parse_provider(provider: "str | Provider") -> Provider:
    try:
        return Provider(provider)
    except ValueError:
        raise ValidationError(f"Unsupported payment provider: {provider}") from None


class GatewayRegistry:
    """Immutable-after-init map of provider -> adapter."""

    def __init__(
        self,
        gateways: Optional[Dict[Provider, PaymentGateway]] = None,
        public_identifiers: Optional[Dict[Provider, Optional[str]]] = None,
    ) -> None:
        self._gateways: Dict[Provider, PaymentGateway] = dict(gateways or {})
        self._public_identifiers: Dict[Provider, Optional[str]] = dict(public_identifiers or {})

    @classmethod
    def init(cls, cfg: Settings, providers: Iterable[Provider] = tuple(Provider)) -> "GatewayRegistry":
        """Construct every provider whose credential set is complete."""

        gateways: Dict[Provider, PaymentGateway] = {}
        public_identifiers: Dict[Provider, Optional[str]] = {}
        for provider in providers:
            public_identifiers[provider] = getattr(cfg, PUBLIC_IDENTIFIERS[provider]) or None
            missing = [name.upper() for name in REQUIRED_CREDENTIALS[provider] if not getattr(cfg, name)]
            if missing:
                logger.warning("gateway_unavailable provider=%s missing=%s", provider.value, ",".join(missing))
                gateway_init_total.labels(provider=provider.value, available="false").inc()
                continue
            try:
                gateways[provider] = BUILDERS[provider](cfg)
            except Exception as exc:
                # Only the exception type: messages may echo credential material.
                logger.warning("gateway_unavailable provider=%s error=%s", provider.value, type(exc).__name__)
                gateway_init_total.labels(provider=provider.value, available="false").inc()
                continue
            gateway_init_total.labels(provider=provider.value, available="true").inc()
            logger.info("gateway_initialized provider=%s", provider.value)
        return cls(gateways, public_identifiers)

    def get(self, provider: "str | Provider") -> PaymentGateway:
        key = parse_provider(provider)
        gateway = self._gateways.get(key)
        if gateway is None:
            raise ConfigurationError(f"{key.value} payment gateway not available", provider=key.value)
        return gateway

    def available(self, provider: "str | Provider") -> bool:
        return parse_provider(provider) in self._gateways

    def status(self) -> Dict[str, Dict[str, object]]:
        """Per-provider `{available, public_identifier}`; never secrets."""

        report: Dict[str, Dict[str, object]] = {}
        for provider in Provider:
            gateway = self._gateways.get(provider)
            if gateway is not None:
                report[provider.value] = gateway.status()
            else:
                report[provider.value] = {
                    "available": False,
                    "public_identifier": self._public_identifiers.get(provider),
                }
        return report

    async def aclose(self) -> None:
        for gateway in self._gateways.values():
            await gateway.aclose()
