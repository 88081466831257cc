# =============================================================================
# app/routers/billing.py - Billing Endpoints
# =============================================================================
# Stripe Checkout, the customer portal, and subscription management.
# Checkout and portal endpoints return a Stripe-hosted URL to redirect to.
# =============================================================================

from fastapi import APIRouter

from app.dependencies import CurrentUser
from core.models.billing import CheckoutRequest, SubscriptionActionRequest, TopupRequest
from core.services.billing_service import BillingService

router = APIRouter()


@router.post("/checkout")
async def create_checkout(request: CheckoutRequest, user: CurrentUser):
    """Start a subscription checkout for a paid plan."""
    url = BillingService.create_checkout_session(user.id, user.email, request.plan_slug)
    return {"url": url}


@router.post("/topup")
async def create_topup(request: TopupRequest, user: CurrentUser):
    """Start a one-time credit pack purchase."""
    url = BillingService.create_topup_session(user.id, user.email, request.package_id)
    return {"url": url}


@router.post("/portal")
async def create_portal(user: CurrentUser):
    """Open the Stripe customer portal. Requires an existing Stripe customer."""
    return {"url": BillingService.create_portal_session(user.id)}


@router.get("/subscription")
async def get_subscription(user: CurrentUser):
    """Current subscription, plan and credits."""
    return BillingService.get_subscription_summary(user.id)


@router.patch("/subscription")
async def update_subscription(request: SubscriptionActionRequest, user: CurrentUser):
    """`cancel` at period end, or `resume` a pending cancellation."""
    return BillingService.update_subscription(user.id, request.action)
