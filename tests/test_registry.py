"""Gateway registry: one missing credential degrades only its own provider."""

import json

import pytest

from payrail.common.config import Settings
from payrail.common.errors import ConfigurationError, ValidationError
from payrail.gateways.base import Provider
from payrail.gateways.paypal_gateway import PayPalGateway
from payrail.gateways.razorpay_gateway import RazorpayGateway
from payrail.gateways.registry import GatewayRegistry, parse_provider
from payrail.gateways.stripe_gateway import StripeGateway

SECRETS = ("sk_test_secret", "paypal-secret", "rzp_secret", "whsec_abc")


def make_settings(**overrides) -> Settings:
    values = {
        "stripe_secret_key": "sk_test_secret",
        "stripe_public_key": "pk_test_public",
        "stripe_webhook_secret": "whsec_abc",
        "paypal_client_id": "paypal-client",
        "paypal_client_secret": "paypal-secret",
        "razorpay_key_id": "rzp_test_key",
        "razorpay_key_secret": "rzp_secret",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


async def test_all_providers_initialized_with_full_credentials():
    registry = GatewayRegistry.init(make_settings())
    try:
        assert isinstance(registry.get("stripe"), StripeGateway)
        assert isinstance(registry.get("paypal"), PayPalGateway)
        assert isinstance(registry.get(Provider.RAZORPAY), RazorpayGateway)
    finally:
        await registry.aclose()


async def test_missing_secret_disables_only_that_provider():
    registry = GatewayRegistry.init(make_settings(paypal_client_secret=None))
    try:
        assert registry.available("stripe")
        assert registry.available("razorpay")
        assert not registry.available("paypal")
        with pytest.raises(ConfigurationError) as excinfo:
            registry.get("paypal")
        assert excinfo.value.http_status == 503
        assert excinfo.value.to_dict()["configured"] is False
    finally:
        await registry.aclose()


async def test_status_reports_public_identifiers_only():
    registry = GatewayRegistry.init(make_settings(razorpay_key_secret=""))
    try:
        status = registry.status()
    finally:
        await registry.aclose()

    assert set(status) == {"stripe", "paypal", "razorpay"}
    assert status["stripe"] == {"available": True, "public_identifier": "pk_test_public"}
    assert status["paypal"] == {"available": True, "public_identifier": "paypal-client"}
    assert status["razorpay"] == {"available": False, "public_identifier": "rzp_test_key"}
    rendered = json.dumps(status)
    for secret in SECRETS:
        assert secret not in rendered


def test_empty_registry_never_raises_on_init():
    registry = GatewayRegistry.init(Settings(_env_file=None))
    assert not any(entry["available"] for entry in registry.status().values())


def test_unknown_provider_is_a_validation_error():
    with pytest.raises(ValidationError, match="Unsupported payment provider"):
        parse_provider("upi")
    with pytest.raises(ValidationError):
        GatewayRegistry().get("bitcoin")
