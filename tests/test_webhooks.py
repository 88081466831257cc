# =============================================================================
# tests/test_webhooks.py - Webhook Signature Tests
# =============================================================================
# Tests for lib/webhooks.py:
# - Replicate: "t=<unix>,v1=<hex>" HMAC with a 5 minute window
# - Stripe: delegated to stripe.Webhook.construct_event
# - QStash: Upstash-Signature JWT with body hash, current then next key
#
# Run with: pytest tests/test_webhooks.py -v
# =============================================================================

import base64
import hashlib
import hmac
import time

from jose import jwt

from lib.webhooks import validate_replicate_webhook, validate_stripe_webhook, verify_qstash_signature

SECRET = "whsec_test"
PAYLOAD = '{"id": "pred-1", "status": "succeeded"}'


def replicate_signature(payload: str, timestamp: int, secret: str = SECRET) -> str:
    digest = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def qstash_token(body: bytes, key: str, url: str = "https://app.test/api/v1/jobs/process", **claims) -> str:
    body_hash = base64.urlsafe_b64encode(hashlib.sha256(body).digest()).decode().rstrip("=")
    now = int(time.time())
    return jwt.encode(
        {"iss": "Upstash", "sub": url, "body": body_hash, "iat": now, "nbf": now, "exp": now + 300, **claims},
        key,
        algorithm="HS256",
    )


class TestReplicateWebhook:

    def test_valid_signature(self):
        now = 1_700_000_000
        signature = replicate_signature(PAYLOAD, now)

        assert validate_replicate_webhook(PAYLOAD, signature, SECRET, now=now + 10).valid is True

    def test_no_secret_skips_validation(self):
        assert validate_replicate_webhook(PAYLOAD, None, "").valid is True

    def test_missing_signature(self):
        result = validate_replicate_webhook(PAYLOAD, None, SECRET)

        assert result.valid is False
        assert "Missing" in result.error

    def test_malformed_signature(self):
        assert validate_replicate_webhook(PAYLOAD, "garbage", SECRET).valid is False
        assert validate_replicate_webhook(PAYLOAD, "t=abc,v1=00", SECRET).valid is False

    def test_stale_timestamp_rejected(self):
        now = 1_700_000_000
        signature = replicate_signature(PAYLOAD, now - 301)

        result = validate_replicate_webhook(PAYLOAD, signature, SECRET, now=now)

        assert result.valid is False
        assert "too old" in result.error

    def test_tampered_payload_rejected(self):
        now = 1_700_000_000
        signature = replicate_signature(PAYLOAD, now)

        assert validate_replicate_webhook(PAYLOAD.replace("succeeded", "failed"), signature, SECRET, now=now).valid is False

    def test_wrong_secret_rejected(self):
        now = 1_700_000_000
        signature = replicate_signature(PAYLOAD, now, secret="other")

        assert validate_replicate_webhook(PAYLOAD, signature, SECRET, now=now).valid is False

    def test_non_ascii_signature_rejected(self):
        now = 1_700_000_000

        result = validate_replicate_webhook(PAYLOAD, f"t={now},v1=\u00e9\u00e9", SECRET, now=now)

        assert result.valid is False
        assert result.error == "Invalid signature"


class TestStripeWebhook:

    def test_requires_secret(self):
        result = validate_stripe_webhook(b"{}", "sig", "")

        assert result.valid is False
        assert "STRIPE_WEBHOOK_SECRET" in result.error

    def test_requires_signature(self):
        assert validate_stripe_webhook(b"{}", None, SECRET).valid is False

    def test_valid_signature_returns_event(self):
        payload = '{"id": "evt_1", "object": "event", "type": "invoice.paid", "data": {"object": {}}}'
        timestamp = int(time.time())
        digest = hmac.new(SECRET.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()

        result = validate_stripe_webhook(payload, f"t={timestamp},v1={digest}", SECRET)

        assert result.valid is True
        assert result.event["type"] == "invoice.paid"

    def test_bad_signature(self):
        result = validate_stripe_webhook('{"id": "evt_1"}', f"t={int(time.time())},v1=deadbeef", SECRET)

        assert result.valid is False


class TestQStashSignature:

    def test_current_key(self):
        body = b'{"type": "cleanup.old_jobs"}'
        token = qstash_token(body, "current-key")

        result = verify_qstash_signature(token, body, "current-key", "next-key", url="https://app.test/api/v1/jobs/process")

        assert result.valid is True

    def test_falls_back_to_next_key(self):
        body = b"{}"
        token = qstash_token(body, "next-key")

        assert verify_qstash_signature(token, body, "current-key", "next-key").valid is True

    def test_body_mismatch(self):
        token = qstash_token(b'{"a": 1}', "current-key")

        assert verify_qstash_signature(token, b'{"a": 2}', "current-key", "").valid is False

    def test_url_mismatch(self):
        body = b"{}"
        token = qstash_token(body, "current-key", url="https://elsewhere.test/hook")

        result = verify_qstash_signature(token, body, "current-key", "", url="https://app.test/api/v1/jobs/process")

        assert result.valid is False

    def test_wrong_issuer(self):
        body = b"{}"
        token = qstash_token(body, "current-key", iss="Someone")

        assert verify_qstash_signature(token, body, "current-key", "").valid is False

    def test_missing_token_or_keys(self):
        assert verify_qstash_signature(None, b"{}", "current-key", "").valid is False
        assert verify_qstash_signature("token", b"{}", "", "").valid is False
