"""
Webhook signature verification for the card processor.

The ``Stripe-Signature`` header carries a timestamp and one or more ``v1``
signatures: ``t=1700000000,v1=<hex>,v1=<hex>``. Each signature is an
HMAC-SHA256 of ``"{t}.{raw body}"`` keyed with the endpoint secret.
"""

import hashlib
import hmac
import logging
import time
from typing import Optional

logger = logging.getLogger(__name__)

SIGNATURE_SCHEME = "v1"


class WebhookSignatureError(Exception):
    """Raised when webhook signature verification fails"""


def compute_signature(secret: str, timestamp: str, payload: bytes) -> str:
    signed_payload = timestamp.encode("utf-8") + b"." + payload
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def parse_signature_header(header: str) -> tuple[Optional[str], list[str]]:
    timestamp = None
    signatures: list[str] = []
    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == SIGNATURE_SCHEME and value:
            signatures.append(value)
    return timestamp, signatures


def verify_signature(
    payload: bytes,
    header: Optional[str],
    secret: str,
    tolerance: int,
    now: Optional[float] = None,
) -> None:
    if not secret:
        raise WebhookSignatureError("Webhook secret is not configured")
    if not header:
        raise WebhookSignatureError("Missing signature header")

    timestamp, signatures = parse_signature_header(header)
    if not timestamp or not signatures:
        raise WebhookSignatureError("Malformed signature header")

    try:
        age = abs((now if now is not None else time.time()) - int(timestamp))
    except ValueError as exc:
        raise WebhookSignatureError("Invalid signature timestamp") from exc

    if age > tolerance:
        logger.warning(f"Webhook timestamp too old: {age:.0f}s (max: {tolerance}s)")
        raise WebhookSignatureError("Signature timestamp outside tolerance")

    expected = compute_signature(secret, timestamp, payload)
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise WebhookSignatureError("No matching signature")
