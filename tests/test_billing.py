# =============================================================================
# tests/test_billing.py - Billing Tests
# =============================================================================
# Tests for core/services/billing_service.py. Stripe is replaced with a
# MagicMock; the database is the in-memory Supabase from conftest.
#
# Run with: pytest tests/test_billing.py -v
# =============================================================================

from unittest.mock import MagicMock, patch

import pytest

from app.exceptions import BillingAccountNotFoundError, BillingNotConfiguredError
from core.services.billing_service import BillingService, get_stripe, subscription_period


def stripe_subscription(price_id: str = "price_standard", user_id: str | None = None) -> dict:
    return {
        "id": "sub_123",
        "status": "active",
        "cancel_at_period_end": False,
        "metadata": {"user_id": user_id} if user_id else {},
        "items": {"data": [{
            "price": {"id": price_id},
            "current_period_start": 1700000000,
            "current_period_end": 1702592000,
        }]},
    }


@pytest.fixture
def fake_stripe():
    client = MagicMock()
    with patch("core.services.billing_service.get_stripe", return_value=client):
        yield client


@pytest.fixture
def plans(db):
    return {
        row["slug"]: row
        for row in db.seed("plans",
                           {"slug": "free", "credits_per_month": 5},
                           {"slug": "standard", "credits_per_month": 60},
                           {"slug": "enterprise", "credits_per_month": 500})
    }


def event(event_type: str, obj: dict) -> dict:
    return {"type": event_type, "data": {"object": obj}}


class TestStripeHelpers:

    def test_missing_key_means_not_configured(self):
        with patch("core.services.billing_service.settings.STRIPE_SECRET_KEY", ""):
            with pytest.raises(BillingNotConfiguredError):
                get_stripe()

    def test_period_read_from_subscription_item(self):
        start, end = subscription_period(stripe_subscription())

        assert start.startswith("2023-11-14")
        assert end.startswith("2023-12-14")


class TestCheckout:

    def test_checkout_carries_plan_metadata(self, db, user_id, fake_stripe):
        fake_stripe.checkout.Session.create.return_value = MagicMock(url="https://checkout.stripe.test/s")

        url = BillingService.create_checkout_session(user_id, "agent@example.com", "standard")

        assert url == "https://checkout.stripe.test/s"
        params = fake_stripe.checkout.Session.create.call_args.kwargs
        assert params["mode"] == "subscription"
        assert params["line_items"] == [{"price": "price_standard", "quantity": 1}]
        assert params["metadata"] == {"user_id": user_id, "plan_slug": "standard"}
        assert params["customer_email"] == "agent@example.com"

    def test_existing_customer_is_reused(self, db, user_id, fake_stripe):
        db.seed("profiles", {"id": user_id, "stripe_customer_id": "cus_1"})

        BillingService.create_topup_session(user_id, "agent@example.com", "topup_10")

        params = fake_stripe.checkout.Session.create.call_args.kwargs
        assert params["customer"] == "cus_1"
        assert params["metadata"]["credits"] == "10"

    def test_portal_requires_customer(self, db, user_id, fake_stripe):
        with pytest.raises(BillingAccountNotFoundError):
            BillingService.create_portal_session(user_id)

    def test_cancel_is_audited(self, db, user_id, fake_stripe):
        db.seed("subscriptions", {"user_id": user_id, "stripe_subscription_id": "sub_123", "cancel_at_period_end": False})

        BillingService.update_subscription(user_id, "cancel")

        fake_stripe.Subscription.modify.assert_called_once_with("sub_123", cancel_at_period_end=True)
        entry = db.row("audit_logs", event_type="billing.subscription.canceled")
        assert entry["previous_values"] == {"cancel_at_period_end": False}
        assert entry["new_values"] == {"cancel_at_period_end": True}


class TestWebhookEvents:

    def test_unhandled_event_is_ignored(self, db):
        assert BillingService.handle_event(event("customer.created", {})) is False

    def test_subscription_checkout(self, db, user_id, plans, fake_stripe):
        db.seed("profiles", {"id": user_id, "credits_remaining": 2})
        fake_stripe.Subscription.retrieve.return_value = stripe_subscription()

        handled = BillingService.handle_event(event("checkout.session.completed", {
            "mode": "subscription",
            "customer": "cus_1",
            "subscription": "sub_123",
            "metadata": {"user_id": user_id, "plan_slug": "standard"},
        }))

        assert handled is True
        profile = db.row("profiles", id=user_id)
        assert profile["stripe_customer_id"] == "cus_1"
        assert profile["credits_remaining"] == 60
        assert profile["plan_id"] == plans["standard"]["id"]
        subscription = db.row("subscriptions", user_id=user_id)
        assert subscription["status"] == "active"
        assert db.row("credit_transactions")["transaction_type"] == "subscription_renewal"

    def test_enterprise_checkout_creates_organization(self, db, user_id, plans, fake_stripe):
        db.seed("profiles", {"id": user_id, "company_name": "Acme Realty"})
        fake_stripe.Subscription.retrieve.return_value = stripe_subscription("price_enterprise")

        BillingService.handle_event(event("checkout.session.completed", {
            "mode": "subscription",
            "customer": "cus_1",
            "subscription": "sub_123",
            "metadata": {"user_id": user_id, "plan_slug": "enterprise"},
        }))

        org = db.row("organizations", owner_id=user_id)
        assert org["name"] == "Acme Realty"
        assert org["unallocated_credits"] == 500

    def test_topup_checkout_adds_credits(self, db, user_id):
        db.seed("profiles", {"id": user_id, "credits_remaining": 3})

        BillingService.handle_event(event("checkout.session.completed", {
            "id": "cs_1",
            "mode": "payment",
            "amount_total": 500,
            "metadata": {"user_id": user_id, "package_id": "topup_10", "credits": "10"},
        }))

        assert db.row("profiles", id=user_id)["credits_remaining"] == 13
        topup = db.row("credit_topups", user_id=user_id)
        assert topup["credits_purchased"] == 10
        assert topup["stripe_checkout_session_id"] == "cs_1"

    def test_owner_topup_goes_to_pool(self, db, user_id):
        org = db.seed("organizations", {"owner_id": user_id, "total_credits": 100, "unallocated_credits": 20})[0]

        BillingService.handle_event(event("checkout.session.completed", {
            "id": "cs_2",
            "mode": "payment",
            "metadata": {"user_id": user_id, "package_id": "topup_10", "credits": "10"},
        }))

        stored = db.row("organizations", id=org["id"])
        assert stored["total_credits"] == 110
        assert stored["unallocated_credits"] == 30

    def test_resent_topup_event_credits_once(self, db, user_id):
        db.seed("profiles", {"id": user_id, "credits_remaining": 3})
        topup = {**event("checkout.session.completed", {
            "id": "cs_3",
            "mode": "payment",
            "amount_total": 500,
            "metadata": {"user_id": user_id, "package_id": "topup_10", "credits": "10"},
        }), "id": "evt_topup"}

        assert BillingService.handle_event(topup) is True
        assert BillingService.handle_event(topup) is True

        assert db.row("profiles", id=user_id)["credits_remaining"] == 13
        assert len(db.rows("credit_topups", stripe_checkout_session_id="cs_3")) == 1
        assert len(db.rows("credit_transactions", reference_id="cs_3")) == 1
        assert db.row("stripe_webhook_events", stripe_event_id="evt_topup")["event_type"] == "checkout.session.completed"
        assert len(db.rows("audit_logs", event_type="billing.credits.purchased")) == 1

    def test_failed_event_can_be_retried(self, db, user_id):
        db.seed("subscriptions", {"user_id": user_id, "stripe_subscription_id": "sub_123", "status": "active"})
        failed = {**event("invoice.payment_failed", {"subscription": "sub_123"}), "id": "evt_retry"}

        with patch.object(BillingService, "_on_payment_failed", side_effect=RuntimeError("db down")):
            with pytest.raises(RuntimeError):
                BillingService.handle_event(failed)

        assert db.rows("stripe_webhook_events") == []

        BillingService.handle_event(failed)
        assert db.row("subscriptions", user_id=user_id)["status"] == "past_due"

    def test_first_invoice_is_skipped(self, db, fake_stripe):
        BillingService.handle_event(event("invoice.paid", {
            "billing_reason": "subscription_create",
            "subscription": "sub_123",
        }))

        fake_stripe.Subscription.retrieve.assert_not_called()

    def test_renewal_resets_credits(self, db, user_id, fake_stripe):
        db.seed("profiles", {"id": user_id, "credits_remaining": 1})
        db.seed("subscriptions", {"user_id": user_id, "stripe_subscription_id": "sub_123", "status": "past_due"})
        fake_stripe.Subscription.retrieve.return_value = stripe_subscription(user_id=user_id)

        BillingService.handle_event(event("invoice.paid", {
            "billing_reason": "subscription_cycle",
            "subscription": "sub_123",
        }))

        assert db.row("profiles", id=user_id)["credits_remaining"] == 60
        assert db.row("subscriptions", user_id=user_id)["status"] == "active"

    def test_payment_failed_marks_past_due(self, db, user_id):
        db.seed("subscriptions", {"user_id": user_id, "stripe_subscription_id": "sub_123", "status": "active"})

        BillingService.handle_event(event("invoice.payment_failed", {"subscription": "sub_123"}))

        assert db.row("subscriptions", user_id=user_id)["status"] == "past_due"

    def test_subscription_deleted_downgrades(self, db, user_id, plans):
        db.seed("profiles", {"id": user_id, "credits_remaining": 40})
        db.seed("subscriptions", {"user_id": user_id, "stripe_subscription_id": "sub_123", "status": "active"})
        org = db.seed("organizations", {"owner_id": user_id, "total_credits": 500, "unallocated_credits": 200})[0]

        BillingService.handle_event(event("customer.subscription.deleted", {
            "id": "sub_123",
            "metadata": {"user_id": user_id},
        }))

        profile = db.row("profiles", id=user_id)
        assert profile["plan_id"] == plans["free"]["id"]
        assert profile["credits_remaining"] == 5
        assert db.row("subscriptions", user_id=user_id)["status"] == "canceled"
        assert db.row("organizations", id=org["id"])["unallocated_credits"] == 0
