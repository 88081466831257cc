# =============================================================================
# lib/webhooks.py - Webhook Signature Validation
# =============================================================================
# Verifies signed callbacks from external services:
# - Replicate: HMAC-SHA256 over "{timestamp}.{payload}" in `webhook-signature`
# - Stripe: delegated to stripe.Webhook.construct_event
# - QStash: HS256 JWT in `Upstash-Signature` whose `body` claim is the
#   base64url SHA-256 of the raw request body
#
# Validators return a WebhookValidation instead of raising, so route handlers
# decide the HTTP status.
# =============================================================================

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Any

import stripe
from jose import jwt, JWTError

logger = logging.getLogger(__name__)

# Replay window for timestamped signatures
SIGNATURE_TOLERANCE_SECONDS = 5 * 60

QSTASH_ISSUER = "Upstash"


@dataclass
class WebhookValidation:
    """Outcome of a signature check."""

    valid: bool
    error: str | None = None
    event: Any = None


# =============================================================================
# Replicate
# =============================================================================

def validate_replicate_webhook(
    payload: str,
    signature: str | None,
    secret: str | None,
    now: float | None = None,
) -> WebhookValidation:
    """
    Validate a Replicate webhook signature.

    Args:
        payload: Raw request body as text
        signature: Value of the `webhook-signature` header, "t=<unix>,v1=<hex>"
        secret: REPLICATE_WEBHOOK_SECRET; when empty, validation is skipped
        now: Current Unix time (for tests)

    Returns:
        WebhookValidation with valid=False and an error message on failure
    """
    if not secret:
        logger.warning("No REPLICATE_WEBHOOK_SECRET configured, skipping validation")
        return WebhookValidation(valid=True)

    if not signature:
        return WebhookValidation(valid=False, error="Missing webhook-signature header")

    parts = [part.strip() for part in signature.split(",")]
    timestamp = next((p[2:] for p in parts if p.startswith("t=")), None)
    expected = next((p[3:] for p in parts if p.startswith("v1=")), None)

    if not timestamp or not expected:
        return WebhookValidation(valid=False, error="Invalid signature format")

    try:
        timestamp_seconds = int(timestamp)
    except ValueError:
        return WebhookValidation(valid=False, error="Invalid signature format")

    current = time.time() if now is None else now
    if abs(current - timestamp_seconds) > SIGNATURE_TOLERANCE_SECONDS:
        return WebhookValidation(valid=False, error="Webhook timestamp too old")

    computed = hmac.new(
        secret.encode("utf-8"),
        f"{timestamp}.{payload}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()

    if not hmac.compare_digest(expected.encode("utf-8"), computed.encode("utf-8")):
        return WebhookValidation(valid=False, error="Invalid signature")

    return WebhookValidation(valid=True)


# =============================================================================
# Stripe
# =============================================================================

def validate_stripe_webhook(
    payload: bytes | str,
    signature: str | None,
    secret: str | None,
) -> WebhookValidation:
    """
    Validate a Stripe webhook and parse its event.

    Unlike Replicate, a missing secret is a failure: billing events must
    never be accepted unsigned.
    """
    if not secret:
        return WebhookValidation(valid=False, error="STRIPE_WEBHOOK_SECRET is not configured")

    if not signature:
        return WebhookValidation(valid=False, error="Missing stripe-signature header")

    try:
        event = stripe.Webhook.construct_event(payload, signature, secret)
    except (ValueError, stripe.error.SignatureVerificationError) as e:
        return WebhookValidation(valid=False, error=str(e))

    return WebhookValidation(valid=True, event=event)


# =============================================================================
# QStash
# =============================================================================

def _body_hash(body: bytes) -> str:
    """base64url SHA-256 of the body without padding."""
    digest = hashlib.sha256(body).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def _verify_with_key(token: str, key: str, body: bytes, url: str | None) -> None:
    claims = jwt.decode(
        token,
        key,
        algorithms=["HS256"],
        issuer=QSTASH_ISSUER,
        options={"verify_aud": False},
    )

    if url and claims.get("sub") != url:
        raise JWTError(f"Subject mismatch: expected {url}")

    if claims.get("body", "").rstrip("=") != _body_hash(body):
        raise JWTError("Body hash mismatch")


def verify_qstash_signature(
    token: str | None,
    body: bytes,
    current_key: str,
    next_key: str,
    url: str | None = None,
) -> WebhookValidation:
    """
    Verify an `Upstash-Signature` JWT.

    Tries the current signing key first, then the next key so deliveries
    keep working while keys are rotated.

    Args:
        token: Header value
        body: Raw request body
        current_key: QSTASH_CURRENT_SIGNING_KEY
        next_key: QSTASH_NEXT_SIGNING_KEY
        url: Endpoint URL the message was published to (checked against `sub`)
    """
    if not token:
        return WebhookValidation(valid=False, error="Missing signature")

    keys = [key for key in (current_key, next_key) if key]
    if not keys:
        return WebhookValidation(valid=False, error="No QStash signing keys configured")

    last_error = "Invalid signature"
    for key in keys:
        try:
            _verify_with_key(token, key, body, url)
            return WebhookValidation(valid=True)
        except JWTError as e:
            last_error = str(e)

    logger.warning(f"QStash signature verification failed: {last_error}")
    return WebhookValidation(valid=False, error=last_error)
