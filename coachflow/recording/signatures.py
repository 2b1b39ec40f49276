"""Webhook signature verification (HMAC-SHA256, hex)."""

from __future__ import annotations

import hashlib
import hmac
import time

from coachflow.config.constants import ORCH
from coachflow.exceptions import WebhookSignatureError


def compute_signature(secret: str, payload: bytes) -> str:
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_signature(secret: str | None, body: bytes, signature: str | None) -> None:
    """Check ``signature`` against an HMAC of the raw body.

    Accepts an optional ``sha256=`` prefix.

    Raises:
        WebhookSignatureError: Secret unset, header missing, or mismatch
    """
    if not secret:
        raise WebhookSignatureError("webhook secret not configured")
    if not signature:
        raise WebhookSignatureError("missing signature")

    provided = signature.strip().removeprefix(ORCH.SIGNATURE_PREFIX)
    expected = compute_signature(secret, body)
    if not hmac.compare_digest(expected.encode(), provided.encode()):
        raise WebhookSignatureError("signature mismatch")


def verify_timestamped_signature(
    secret: str | None,
    body: bytes,
    signature: str | None,
    timestamp: str | None,
    tolerance_s: int = 300,
    now: float | None = None,
) -> None:
    """Check an HMAC over ``timestamp + body`` within a clock-skew window.

    Raises:
        WebhookSignatureError: On missing headers, stale timestamp or mismatch
    """
    if not timestamp:
        raise WebhookSignatureError("missing timestamp")
    try:
        sent_at = int(timestamp)
    except ValueError:
        raise WebhookSignatureError("malformed timestamp")

    current = time.time() if now is None else now
    if abs(current - sent_at) > tolerance_s:
        raise WebhookSignatureError("timestamp outside tolerance")

    verify_signature(secret, timestamp.encode() + body, signature)
