"""Central environment-driven settings for the payment core.

The process loads this once at startup. Provider credentials are optional: a
missing pair only disables that provider (see `.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "payrail"
    log_level: str = "INFO"
    database_url: str = "sqlite:///./payrail.db"
    otel_exporter_otlp_endpoint: str | None = None
    provider_timeout_seconds: float = 15.0
    default_currency: str = "INR"

    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None
    stripe_public_key: str | None = None

    paypal_client_id: str | None = None
    paypal_client_secret: str | None = None
    paypal_webhook_id: str | None = None
    paypal_environment: str = "sandbox"

    razorpay_key_id: str | None = None
    razorpay_key_secret: str | None = None
    razorpay_webhook_secret: str | None = None

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
