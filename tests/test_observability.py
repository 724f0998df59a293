import pytest

from payrail.common.config import Settings
from payrail.common.errors import ProviderTransientError
from payrail.common.metrics import provider_calls_total
from payrail.common.observability import observe_provider_call
from payrail.common.startup import log_startup_config


def test_startup_config_reports_presence_not_values():
    cfg = Settings(
        _env_file=None,
        database_url="postgresql+psycopg://payrail:hunter2@db/payrail",
        stripe_secret_key="sk_live_real",
    )

    config = log_startup_config(cfg)

    assert config["database"] == "postgresql"
    assert config["stripe"] == {"stripe_secret_key": "set", "stripe_webhook_secret": "<unset>"}
    assert config["razorpay"]["razorpay_key_id"] == "<unset>"
    assert "sk_live_real" not in str(config)
    assert "hunter2" not in str(config)


async def test_provider_call_outcome_counted_by_error_code():
    counter = provider_calls_total.labels(provider="razorpay", operation="fetch_order", outcome="provider_unavailable")
    before = counter._value.get()

    with pytest.raises(ProviderTransientError):
        async with observe_provider_call("razorpay", "fetch_order"):
            raise ProviderTransientError("timed out", provider="razorpay")

    assert counter._value.get() == before + 1
