# =============================================================================
# core/services/billing_service.py - Stripe Billing
# =============================================================================
# Checkout, top-ups, the customer portal and subscription changes go to
# Stripe; Stripe reports back through webhooks handled in handle_event().
#
# Plans exist twice: Stripe prices (core.constants.PLANS) and rows in the
# `plans` table that subscriptions and profiles point at by plan_id.
# =============================================================================

import logging
from typing import Any, Callable
from uuid import UUID

import stripe

from lib.supabase_client import SupabaseClient
from lib.utils import from_unix, normalize_uuid, utc_now_iso
from app.config import settings
from app.exceptions import (
    BadRequestError,
    BillingAccountNotFoundError,
    BillingNotConfiguredError,
    PaymentProviderError,
    SubscriptionNotFoundError,
)
from core.constants import PLANS, TOPUP_PACKAGES, PlanConfig, plan_for_price
from core.models.billing import CreditTransactionType
from core.services.audit_service import AuditAction, AuditEventType, AuditResourceType, AuditService
from core.services.credit_service import CreditService

logger = logging.getLogger(__name__)


def get_stripe() -> Any:
    """
    Return the stripe module with the API key set.

    Raises:
        BillingNotConfiguredError: If STRIPE_SECRET_KEY is missing
    """
    if not settings.STRIPE_SECRET_KEY:
        raise BillingNotConfiguredError()
    stripe.api_key = settings.STRIPE_SECRET_KEY
    return stripe


def _field(obj: Any, key: str, default: Any = None) -> Any:
    """Read a key from a Stripe object or plain dict."""
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError):
        return default
    return default if value is None else value


def subscription_period(subscription: Any) -> tuple[str, str | None]:
    """
    (current_period_start, current_period_end) as ISO strings.

    Newer API versions report the period on the subscription item.
    """
    items = _field(_field(subscription, "items"), "data", [])
    first_item = items[0] if items else None

    start = _field(first_item, "current_period_start") or _field(subscription, "current_period_start")
    end = _field(first_item, "current_period_end") or _field(subscription, "current_period_end")
    return from_unix(start) or utc_now_iso(), from_unix(end)


def subscription_price_id(subscription: Any) -> str | None:
    items = _field(_field(subscription, "items"), "data", [])
    if not items:
        return None
    return _field(_field(items[0], "price"), "id")


def invoice_subscription_id(invoice: dict[str, Any]) -> str | None:
    parent = _field(_field(invoice, "parent"), "subscription_details")
    return _field(parent, "subscription") or _field(invoice, "subscription")


class BillingService:
    """Service for plans, subscriptions and Stripe."""

    # -------------------------------------------------------------------------
    # Plans & subscriptions
    # -------------------------------------------------------------------------

    @staticmethod
    def get_plan_row(slug: str) -> dict[str, Any] | None:
        return SupabaseClient._fetch_single("plans", {"slug": slug}, error_code="FETCH_PLAN_FAILED")

    @staticmethod
    def get_user_subscription(user_id: UUID | str) -> dict[str, Any] | None:
        """The user's subscription row with its plan embedded."""
        return SupabaseClient._fetch_single(
            "subscriptions",
            {"user_id": user_id},
            columns="*, plan:plans(*)",
            error_code="FETCH_SUBSCRIPTION_FAILED",
        )

    @staticmethod
    def get_user_plan(user_id: UUID | str) -> PlanConfig:
        """The plan of an active subscription, else the free plan."""
        subscription = BillingService.get_user_subscription(user_id)
        if subscription and subscription.get("status") == "active":
            slug = (subscription.get("plan") or {}).get("slug")
            if slug in PLANS:
                return PLANS[slug]
        return PLANS["free"]

    @staticmethod
    def get_subscription_summary(user_id: UUID | str) -> dict[str, Any]:
        """Subscription, plan and spendable credits for the billing page."""
        plan = BillingService.get_user_plan(user_id)
        return {
            "subscription": BillingService.get_user_subscription(user_id),
            "plan": {
                "slug": plan.slug,
                "name": plan.name,
                "creditsPerMonth": plan.credits_per_month,
                "maxTeamMembers": plan.max_team_members,
            },
            "credits": CreditService.get_user_credits(user_id).to_dict(),
        }

    # -------------------------------------------------------------------------
    # Checkout & portal
    # -------------------------------------------------------------------------

    @staticmethod
    def create_checkout_session(user_id: UUID | str, user_email: str | None, plan_slug: str) -> str:
        """
        Start a subscription checkout.

        Returns:
            The Stripe-hosted checkout URL
        """
        client = get_stripe()
        user_id_str = normalize_uuid(user_id)

        plan = PLANS[plan_slug]
        if not plan.stripe_price_id:
            raise BadRequestError(
                f"Plan '{plan_slug}' has no Stripe price configured",
                code="PLAN_NOT_PURCHASABLE",
            )

        metadata = {"user_id": user_id_str, "plan_slug": plan_slug}
        params: dict[str, Any] = {
            "mode": "subscription",
            "payment_method_types": ["card"],
            "line_items": [{"price": plan.stripe_price_id, "quantity": 1}],
            "success_url": f"{settings.app_url}/billing?success=true&plan={plan_slug}",
            "cancel_url": f"{settings.app_url}/billing?canceled=true",
            "metadata": metadata,
            "subscription_data": {"metadata": metadata},
        }
        params.update(BillingService._customer_params(user_id_str, user_email))

        try:
            session = client.checkout.Session.create(**params)
        except stripe.error.StripeError as e:
            logger.error(f"Checkout session failed for {user_id_str}: {e}")
            raise PaymentProviderError(str(e))

        return session.url

    @staticmethod
    def create_topup_session(user_id: UUID | str, user_email: str | None, package_id: str) -> str:
        """
        Start a one-time credit purchase.

        Returns:
            The Stripe-hosted checkout URL
        """
        client = get_stripe()
        user_id_str = normalize_uuid(user_id)

        package = TOPUP_PACKAGES[package_id]
        if not package.stripe_price_id:
            raise BadRequestError(
                f"Package '{package_id}' has no Stripe price configured",
                code="PACKAGE_NOT_PURCHASABLE",
            )

        profile = SupabaseClient.fetch_profile(user_id_str) or {}
        params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [{"price": package.stripe_price_id, "quantity": 1}],
            "success_url": f"{settings.app_url}/billing?topup=success&credits={package.credits}",
            "cancel_url": f"{settings.app_url}/billing?topup=canceled",
            "metadata": {
                "user_id": user_id_str,
                "package_id": package.id,
                "credits": str(package.credits),
                "organization_id": profile.get("organization_id") or "",
            },
        }
        params.update(BillingService._customer_params(user_id_str, user_email, profile))

        try:
            session = client.checkout.Session.create(**params)
        except stripe.error.StripeError as e:
            logger.error(f"Top-up session failed for {user_id_str}: {e}")
            raise PaymentProviderError(str(e))

        return session.url

    @staticmethod
    def _customer_params(
        user_id: str,
        user_email: str | None,
        profile: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if profile is None:
            profile = SupabaseClient.fetch_profile(user_id) or {}
        if profile.get("stripe_customer_id"):
            return {"customer": profile["stripe_customer_id"]}
        if user_email:
            return {"customer_email": user_email}
        return {}

    @staticmethod
    def create_portal_session(user_id: UUID | str) -> str:
        """
        Open the Stripe customer portal.

        Raises:
            BillingAccountNotFoundError: If the user never checked out
        """
        client = get_stripe()
        profile = SupabaseClient.fetch_profile(user_id) or {}
        if not profile.get("stripe_customer_id"):
            raise BillingAccountNotFoundError()

        try:
            session = client.billing_portal.Session.create(
                customer=profile["stripe_customer_id"],
                return_url=f"{settings.app_url}/billing",
            )
        except stripe.error.StripeError as e:
            raise PaymentProviderError(str(e))

        return session.url

    # -------------------------------------------------------------------------
    # Subscription changes
    # -------------------------------------------------------------------------

    @staticmethod
    def update_subscription(user_id: UUID | str, action: str) -> dict[str, Any]:
        """
        Cancel at period end, or resume a pending cancellation.

        Raises:
            SubscriptionNotFoundError: If the user has no Stripe subscription
        """
        client = get_stripe()
        user_id_str = normalize_uuid(user_id)

        subscription = BillingService.get_user_subscription(user_id_str)
        if not subscription or not subscription.get("stripe_subscription_id"):
            raise SubscriptionNotFoundError()

        cancel = action == "cancel"
        try:
            client.Subscription.modify(
                subscription["stripe_subscription_id"],
                cancel_at_period_end=cancel,
            )
        except stripe.error.StripeError as e:
            raise PaymentProviderError(str(e))

        SupabaseClient.get_client().table("subscriptions").update({
            "cancel_at_period_end": cancel,
            "canceled_at": utc_now_iso() if cancel else None,
        }).eq("user_id", user_id_str).execute()

        AuditService.log_event(
            AuditEventType.BILLING_SUBSCRIPTION_CANCELED if cancel else AuditEventType.BILLING_SUBSCRIPTION_RESUMED,
            AuditResourceType.SUBSCRIPTION,
            AuditAction.UPDATED,
            user_id=user_id_str,
            resource_id=subscription["stripe_subscription_id"],
            previous_values={"cancel_at_period_end": bool(subscription.get("cancel_at_period_end"))},
            new_values={"cancel_at_period_end": cancel},
        )

        logger.info(f"Subscription for {user_id_str}: {action}")
        return {
            "success": True,
            "message": "Subscription will cancel at period end" if cancel else "Subscription resumed",
        }

    @staticmethod
    def sync_subscription(user_id: str, stripe_customer_id: str) -> None:
        """Pull the customer's latest subscription from Stripe into our row."""
        client = get_stripe()

        subscriptions = client.Subscription.list(customer=stripe_customer_id, status="all", limit=1)
        data = _field(subscriptions, "data", [])
        if not data:
            logger.info(f"No Stripe subscription for customer {stripe_customer_id}")
            return

        subscription = data[0]
        period_start, period_end = subscription_period(subscription)
        updates: dict[str, Any] = {
            "stripe_subscription_id": _field(subscription, "id"),
            "stripe_customer_id": stripe_customer_id,
            "status": _field(subscription, "status"),
            "cancel_at_period_end": bool(_field(subscription, "cancel_at_period_end", False)),
            "current_period_start": period_start,
            "current_period_end": period_end,
        }

        plan = plan_for_price(subscription_price_id(subscription))
        plan_row = BillingService.get_plan_row(plan.slug) if plan else None
        if plan_row:
            updates["plan_id"] = plan_row["id"]

        SupabaseClient.get_client().table("subscriptions").update(updates).eq(
            "user_id", normalize_uuid(user_id)
        ).execute()
        logger.info(f"Synced subscription for user {user_id}: {updates['status']}")

    # -------------------------------------------------------------------------
    # Webhook events
    # -------------------------------------------------------------------------

    @staticmethod
    def handle_event(event: dict[str, Any]) -> bool:
        """
        Apply a verified Stripe event.

        Each event id is applied once: Stripe resends and concurrent
        deliveries of an already-claimed event are acknowledged and skipped.
        A handler failure releases the claim so Stripe's retry can apply it.

        Returns:
            True if the event type is handled, False if it was ignored.
            Handler errors propagate.
        """
        handlers: dict[str, Callable[[dict[str, Any]], None]] = {
            "checkout.session.completed": BillingService._on_checkout_completed,
            "invoice.paid": BillingService._on_invoice_paid,
            "invoice.payment_failed": BillingService._on_payment_failed,
            "customer.subscription.updated": BillingService._on_subscription_updated,
            "customer.subscription.deleted": BillingService._on_subscription_deleted,
        }

        event_type = event.get("type", "")
        handler = handlers.get(event_type)
        if handler is None:
            logger.info(f"Unhandled Stripe event type: {event_type}")
            return False

        event_id = event.get("id")
        if event_id and not BillingService._claim_event(event_id, event_type):
            logger.info(f"Stripe event {event_id} already processed")
            return True

        try:
            handler(event["data"]["object"])
        except Exception:
            if event_id:
                BillingService._release_event(event_id)
            raise
        return True

    @staticmethod
    def _claim_event(event_id: str, event_type: str) -> bool:
        response = (
            SupabaseClient.get_client()
            .table("stripe_webhook_events")
            .upsert(
                {"stripe_event_id": event_id, "event_type": event_type, "processed_at": utc_now_iso()},
                on_conflict="stripe_event_id",
                ignore_duplicates=True,
            )
            .execute()
        )
        return bool(response.data)

    @staticmethod
    def _release_event(event_id: str) -> None:
        SupabaseClient.get_client().table("stripe_webhook_events").delete().eq(
            "stripe_event_id", event_id
        ).execute()

    @staticmethod
    def _on_checkout_completed(session: dict[str, Any]) -> None:
        metadata = session.get("metadata") or {}
        user_id = metadata.get("user_id")
        if not user_id:
            logger.error("No user_id in checkout session metadata")
            return

        client = SupabaseClient.get_client()
        customer_id = session.get("customer")
        if customer_id:
            client.table("profiles").update({"stripe_customer_id": customer_id}).eq("id", user_id).execute()

        if session.get("mode") == "subscription" and session.get("subscription"):
            BillingService._start_subscription(user_id, customer_id, session["subscription"], metadata)
        elif session.get("mode") == "payment":
            BillingService._complete_topup(user_id, session, metadata)

    @staticmethod
    def _start_subscription(
        user_id: str,
        customer_id: str | None,
        stripe_subscription_id: str,
        metadata: dict[str, Any],
    ) -> None:
        plan_slug = metadata.get("plan_slug")
        plan = PLANS.get(plan_slug or "")
        if not plan:
            logger.error(f"Unknown plan_slug in checkout session: {plan_slug}")
            return

        plan_row = BillingService.get_plan_row(plan.slug)
        if not plan_row:
            logger.error(f"Plan not found: {plan.slug}")
            return

        subscription = get_stripe().Subscription.retrieve(stripe_subscription_id)
        period_start, period_end = subscription_period(subscription)

        client = SupabaseClient.get_client()
        response = client.table("subscriptions").upsert(
            {
                "user_id": user_id,
                "plan_id": plan_row["id"],
                "stripe_subscription_id": stripe_subscription_id,
                "stripe_customer_id": customer_id,
                "status": "active",
                "current_period_start": period_start,
                "current_period_end": period_end,
                "cancel_at_period_end": False,
            },
            on_conflict="user_id",
        ).execute()
        subscription_row = (response.data or [{}])[0]

        client.table("profiles").update({
            "plan_id": plan_row["id"],
            "credits_remaining": plan.credits_per_month,
            "credits_reset_at": utc_now_iso(),
        }).eq("id", user_id).execute()

        CreditService.log_credit_transaction(
            CreditTransactionType.SUBSCRIPTION_RENEWAL,
            amount=plan.credits_per_month,
            balance_after=plan.credits_per_month,
            user_id=user_id,
            description=f"{plan.name} plan subscription started",
        )

        if plan.slug == "enterprise":
            from core.services.team_service import TeamService

            TeamService.ensure_enterprise_organization(
                user_id, plan.credits_per_month, subscription_row.get("id")
            )

        logger.info(f"Subscription created for user {user_id}, plan {plan.slug}")

    @staticmethod
    def _complete_topup(user_id: str, session: dict[str, Any], metadata: dict[str, Any]) -> None:
        package_id = metadata.get("package_id")
        try:
            credits = int(metadata.get("credits") or 0)
        except ValueError:
            credits = 0
        if not package_id or not credits:
            logger.error("Missing top-up metadata")
            return

        organization_id = None
        org = SupabaseClient.fetch_owned_organization(user_id)
        if org:
            organization_id = org["id"]
            new_balance = CreditService.add_organization_credits(org["id"], credits)
        else:
            new_balance = CreditService.add_credits(user_id, credits)
        if new_balance is None:
            logger.error(f"Could not add top-up credits for user {user_id}")
            return

        SupabaseClient.get_client().table("credit_topups").insert({
            "user_id": user_id,
            "organization_id": organization_id,
            "stripe_checkout_session_id": session.get("id"),
            "credits_purchased": credits,
            "amount_cents": session.get("amount_total") or 0,
            "status": "completed",
            "completed_at": utc_now_iso(),
        }).execute()

        CreditService.log_credit_transaction(
            CreditTransactionType.TOPUP_PURCHASE,
            amount=credits,
            balance_after=new_balance,
            user_id=user_id,
            organization_id=organization_id,
            reference_id=session.get("id"),
            description=f"Purchased {credits} credits",
        )
        AuditService.log_event(
            AuditEventType.BILLING_CREDITS_PURCHASED,
            AuditResourceType.CREDITS,
            AuditAction.CREATED,
            user_id=user_id,
            organization_id=organization_id,
            resource_id=session.get("id"),
            new_values={"balance": new_balance, "amount": credits},
            metadata={"package_id": package_id},
        )
        logger.info(f"Top-up completed for user {user_id}, {credits} credits")

    @staticmethod
    def _on_invoice_paid(invoice: dict[str, Any]) -> None:
        # The first invoice is covered by checkout.session.completed
        if invoice.get("billing_reason") == "subscription_create":
            return

        subscription_id = invoice_subscription_id(invoice)
        if not subscription_id:
            return

        subscription = get_stripe().Subscription.retrieve(subscription_id)
        user_id = _field(_field(subscription, "metadata"), "user_id")
        if not user_id:
            logger.error("No user_id in subscription metadata")
            return

        plan = plan_for_price(subscription_price_id(subscription))
        if not plan:
            logger.error(f"Could not determine plan for subscription {subscription_id}")
            return

        period_start, period_end = subscription_period(subscription)
        SupabaseClient.get_client().table("subscriptions").update({
            "status": "active",
            "current_period_start": period_start,
            "current_period_end": period_end,
        }).eq("stripe_subscription_id", subscription_id).execute()

        CreditService.reset_credits_for_renewal(user_id, plan.credits_per_month)

        org = SupabaseClient.fetch_owned_organization(user_id)
        CreditService.log_credit_transaction(
            CreditTransactionType.SUBSCRIPTION_RENEWAL,
            amount=plan.credits_per_month,
            balance_after=plan.credits_per_month,
            user_id=user_id,
            organization_id=org["id"] if org else None,
            description=f"Monthly credit reset - {plan.slug} plan",
        )

    @staticmethod
    def _on_payment_failed(invoice: dict[str, Any]) -> None:
        subscription_id = invoice_subscription_id(invoice)
        if not subscription_id:
            return

        SupabaseClient.get_client().table("subscriptions").update(
            {"status": "past_due"}
        ).eq("stripe_subscription_id", subscription_id).execute()
        logger.warning(f"Subscription {subscription_id} marked as past_due")

    @staticmethod
    def _on_subscription_updated(subscription: dict[str, Any]) -> None:
        user_id = (subscription.get("metadata") or {}).get("user_id")
        if not user_id:
            return

        plan = plan_for_price(subscription_price_id(subscription))
        plan_row = BillingService.get_plan_row(plan.slug) if plan else None
        period_start, period_end = subscription_period(subscription)
        cancel_at_period_end = bool(subscription.get("cancel_at_period_end"))

        updates: dict[str, Any] = {
            "status": "canceled" if cancel_at_period_end else "active",
            "cancel_at_period_end": cancel_at_period_end,
            "canceled_at": from_unix(subscription.get("canceled_at")),
            "current_period_start": period_start,
            "current_period_end": period_end,
        }
        if plan_row:
            updates["plan_id"] = plan_row["id"]

        client = SupabaseClient.get_client()
        client.table("subscriptions").update(updates).eq(
            "stripe_subscription_id", subscription["id"]
        ).execute()

        if plan_row:
            client.table("profiles").update({"plan_id": plan_row["id"]}).eq("id", user_id).execute()

        logger.info(f"Subscription {subscription['id']} updated")

    @staticmethod
    def _on_subscription_deleted(subscription: dict[str, Any]) -> None:
        user_id = (subscription.get("metadata") or {}).get("user_id")
        if not user_id:
            return

        client = SupabaseClient.get_client()
        client.table("subscriptions").update({"status": "canceled"}).eq(
            "stripe_subscription_id", subscription["id"]
        ).execute()

        free_plan = BillingService.get_plan_row("free")
        if free_plan:
            client.table("profiles").update({
                "plan_id": free_plan["id"],
                "credits_remaining": free_plan.get("credits_per_month", PLANS["free"].credits_per_month),
            }).eq("id", user_id).execute()

        # The organization is kept; only its credits go
        org = SupabaseClient.fetch_owned_organization(user_id)
        if org:
            client.table("organizations").update(
                {"total_credits": 0, "unallocated_credits": 0}
            ).eq("id", org["id"]).execute()

        logger.info(f"Subscription {subscription['id']} deleted, user {user_id} downgraded to free")
