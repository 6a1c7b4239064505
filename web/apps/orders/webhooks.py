"""Signature check for MercadoPago webhook notifications.

MercadoPago signs each notification with the application's webhook secret.
The ``x-signature`` header carries ``ts=<timestamp>,v1=<hex digest>`` and
the digest is the HMAC-SHA256 of ``"<ts>.<x-request-id>.<raw body>"``.
"""

import hashlib
import hmac
from typing import Optional, Tuple

from .errors import ForbiddenError, ValidationError


def parse_signature(header: str) -> Tuple[Optional[str], Optional[str]]:
    """Split an ``x-signature`` header into its ``ts`` and ``v1`` parts."""
    parts = {}
    for chunk in header.split(","):
        key, sep, value = chunk.partition("=")
        if sep:
            parts[key.strip()] = value.strip()
    return parts.get("ts"), parts.get("v1")


def sign(secret: str, ts: str, request_id: str, body: bytes) -> str:
    payload = f"{ts}.{request_id}.".encode() + body
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_signature(header: Optional[str], request_id: Optional[str], body: bytes, secret: str) -> None:
    """Check a notification against the webhook secret.

    Args:
        header: Raw ``x-signature`` header, None when absent.
        request_id: ``x-request-id`` header; an absent one signs as "".
        body: Raw request body, exactly as received.
        secret: Webhook secret configured for the application.

    Raises:
        ValidationError: The signature header is missing.
        ForbiddenError: The header is malformed or the digest does not match.
    """
    if not header:
        raise ValidationError("Missing signature")
    ts, v1 = parse_signature(header)
    if not ts or not v1:
        raise ForbiddenError("Invalid signature format")
    expected = sign(secret, ts, request_id or "", body)
    if not hmac.compare_digest(expected, v1.lower()):
        raise ForbiddenError("Invalid signature")
