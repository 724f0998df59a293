"""httpx call wrapper mapping transport and status failures to the taxonomy."""

import httpx

from payrail.common.errors import ProviderRejected, ProviderTransientError


def _reason(response: httpx.Response) -> tuple[str | None, str]:
    """Pull the provider's error code/description out of a JSON error body."""

    try:
        body = response.json()
    except ValueError:
        return None, response.reason_phrase or "request rejected"
    if not isinstance(body, dict):
        return None, "request rejected"
    # Razorpay: {"error": {"code": ..., "description": ...}}
    error = body.get("error")
    if isinstance(error, dict):
        return error.get("code"), error.get("description") or "request rejected"
    # PayPal: {"name": ..., "message": ..., "details": [{"issue": ...}]}
    details = body.get("details") or []
    issue = details[0].get("issue") if details and isinstance(details[0], dict) else None
    return issue or body.get("name"), body.get("message") or body.get("error_description") or "request rejected"


async def send(client: httpx.AsyncClient, provider: str, method: str, url: str, **kwargs) -> httpx.Response:
    """Issue one request; never retries."""

    try:
        response = await client.request(method, url, **kwargs)
    except httpx.TimeoutException as exc:
        raise ProviderTransientError(f"{provider} request timed out", provider=provider) from exc
    except httpx.TransportError as exc:
        raise ProviderTransientError(f"{provider} is unreachable", provider=provider) from exc

    if response.status_code == 429 or response.status_code >= 500:
        raise ProviderTransientError(
            f"{provider} returned HTTP {response.status_code}",
            provider=provider,
        )
    if response.status_code >= 400:
        reason, description = _reason(response)
        raise ProviderRejected(
            f"{provider} rejected request: {description}",
            provider=provider,
            reason=reason,
            status_code=response.status_code,
        )
    return response
