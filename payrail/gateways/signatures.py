"""HMAC helpers shared by the order-verification and webhook paths."""

import hashlib
import hmac


def hmac_sha256_hex(secret: str, message: str | bytes) -> str:
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def order_signature(secret: str, order_id: str, payment_id: str) -> str:
    """Digest a checkout signs: `HMAC-SHA256(secret, "<order_id>|<payment_id>")`."""

    return hmac_sha256_hex(secret, f"{order_id}|{payment_id}")


def signatures_match(expected: str, supplied: str | None) -> bool:
    """Constant-time comparison; a missing signature never matches."""

    if not supplied:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), supplied.strip().encode("utf-8"))


def payload_hash(raw_body: bytes) -> str:
    return hashlib.sha256(raw_body).hexdigest()
