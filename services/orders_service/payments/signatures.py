"""Webhook signature verification for Stripe and Shopify.

Both are HMAC-SHA256 over the raw request body and must be checked before
the payload is parsed.
"""

import base64
import hashlib
import hmac
import time
from typing import Optional

from libs.common.logging import get_logger

logger = get_logger(__name__)


def _parse_stripe_header(header: str) -> tuple[Optional[int], list[str]]:
    timestamp: Optional[int] = None
    signatures: list[str] = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                return None, []
        elif key == "v1" and value:
            signatures.append(value)
    return timestamp, signatures


def verify_stripe_signature(
    payload: bytes,
    header: str,
    secret: str,
    tolerance: int = 300,
    now: Optional[int] = None,
) -> bool:
    """Check a ``Stripe-Signature: t=<ts>,v1=<hex>`` header.

    The signed string is ``"<ts>.<raw body>"``; timestamps older or newer than
    ``tolerance`` seconds are rejected to block replays.
    """
    if not header or not secret:
        return False

    timestamp, signatures = _parse_stripe_header(header)
    if timestamp is None or not signatures:
        return False

    current = int(time.time()) if now is None else now
    if abs(current - timestamp) > tolerance:
        logger.warning("Stripe webhook timestamp outside tolerance (t=%s)", timestamp)
        return False

    signed_payload = f"{timestamp}.".encode("utf-8") + payload
    expected = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
    return any(hmac.compare_digest(expected, candidate) for candidate in signatures)


def verify_shopify_hmac(payload: bytes, header: str, secret: str) -> bool:
    """Check ``X-Shopify-Hmac-SHA256`` (base64 HMAC-SHA256 of the raw body)."""
    if not header or not secret:
        return False
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("utf-8")
    return hmac.compare_digest(expected, header.strip())
