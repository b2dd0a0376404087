"""Webhook signature verification."""

import hashlib
import hmac


SIGNATURE_HEADER = "x-razorpay-signature"


def compute_signature(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_webhook_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """Check the signature header against the raw body (constant time)."""
    if not signature:
        return False
    return hmac.compare_digest(compute_signature(body, secret), signature)
