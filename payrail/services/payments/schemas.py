"""API request/response schemas for the payments endpoints."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    """Accepts snake_case or camelCase on input; responses use the camelCase aliases."""

    model_config = ConfigDict(populate_by_name=True)


class OrderCreateRequest(_CamelModel):
    """Order creation payload. `amount` is validated by the core, not here."""

    amount: Any = None
    currency: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class OrderCreatedResponse(_CamelModel):
    external_id: str = Field(alias="externalId")
    client_artifact: str = Field(alias="clientArtifact")
    status: str
    amount_minor: int = Field(alias="amountMinor")
    currency: str


class VerifyRequest(_CamelModel):
    payment_id: str = Field(alias="paymentId", min_length=1)
    signature: str = Field(min_length=1)


class FinalizeResponse(_CamelModel):
    status: str
    provider_reference: str | None = Field(default=None, alias="providerReference")
    replayed: bool = False


class VerifyResponse(FinalizeResponse):
    verified: bool


class WebhookAck(_CamelModel):
    received: bool
    duplicate: bool = False


class OrderResponse(_CamelModel):
    provider: str
    external_id: str = Field(alias="externalId")
    status: str
    amount_minor: int = Field(alias="amountMinor")
    currency: str
    provider_reference: str | None = Field(default=None, alias="providerReference")


class PaymentDetailsResponse(_CamelModel):
    id: str
    status: str
    amount: str | None = None
    currency: str | None = None


class GatewayStatus(_CamelModel):
    available: bool
    public_identifier: str | None = Field(default=None, alias="publicIdentifier")


class ClientTokenResponse(_CamelModel):
    client_token: str = Field(alias="clientToken")
    configured: bool = True
