"""Webhook security utilities.

Secret generation, canonical body serialisation, and HMAC-SHA256
signatures in the ``sha256=<hex>`` header format.
"""

import hmac
import hashlib
import json
import secrets
from typing import Any

SECRET_PREFIX = "whsec_"
SIGNATURE_PREFIX = "sha256="


def generate_secret() -> str:
    """Generate a webhook signing secret (32 random bytes, hex encoded)."""
    return f"{SECRET_PREFIX}{secrets.token_hex(32)}"


def canonical_json(payload: Any) -> bytes:
    """Serialise a payload to the exact bytes that are sent and signed."""
    return json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    ).encode("utf-8")


def generate_signature(body: bytes, secret: str) -> str:
    """Generate the signature header value for a request body.

    Args:
        body: The exact request body bytes.
        secret: The shared secret key.

    Returns:
        ``sha256=`` followed by the hex HMAC digest.
    """
    digest = hmac.new(
        secret.encode("utf-8"),
        body,
        hashlib.sha256,
    ).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(body: bytes, signature: str, secret: str) -> bool:
    """Verify a received ``X-Webhook-Signature`` header.

    Subscribers recompute the HMAC over the raw body they received.

    Args:
        body: The raw request body bytes.
        signature: The header value.
        secret: The shared secret key.

    Returns:
        True if the signature matches.
    """
    if not signature or not signature.startswith(SIGNATURE_PREFIX):
        return False

    expected = generate_signature(body, secret)

    # Constant-time comparison to prevent timing attacks
    return hmac.compare_digest(signature, expected)


def generate_webhook_headers(
    body: bytes,
    secret: str,
    webhook_id: str,
    delivery_id: str,
    event_type: str,
    user_agent: str,
) -> dict:
    """Generate headers for an outbound webhook request."""
    return {
        "Content-Type": "application/json",
        "User-Agent": user_agent,
        "X-Webhook-Id": webhook_id,
        "X-Webhook-Signature": generate_signature(body, secret),
        "X-Delivery-Id": delivery_id,
        "X-Event-Type": event_type,
    }
