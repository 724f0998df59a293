"""Startup-time summary of configuration, safe to ship to log aggregation."""

from payrail.common.config import Settings
from payrail.common.logging import logger

PROVIDER_CREDENTIALS = {
    "stripe": ("stripe_secret_key", "stripe_webhook_secret"),
    "paypal": ("paypal_client_id", "paypal_client_secret", "paypal_webhook_id"),
    "razorpay": ("razorpay_key_id", "razorpay_key_secret", "razorpay_webhook_secret"),
}


def _database_kind(url: str) -> str:
    """Dialect name only; the URL may embed a password."""

    return url.split(":", 1)[0].split("+", 1)[0] or "<unset>"


def log_startup_config(cfg: Settings) -> dict[str, object]:
    """Log which providers have credentials, never the credentials themselves."""

    config: dict[str, object] = {
        "service": cfg.service_name,
        "database": _database_kind(cfg.database_url),
        "provider_timeout_seconds": cfg.provider_timeout_seconds,
        "paypal_environment": cfg.paypal_environment,
        "tracing": bool(cfg.otel_exporter_otlp_endpoint),
    }
    for provider, fields in PROVIDER_CREDENTIALS.items():
        config[provider] = {field: "set" if getattr(cfg, field) else "<unset>" for field in fields}
    logger.info("startup_config=%s", config)
    return config
