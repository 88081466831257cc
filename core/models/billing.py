# =============================================================================
# core/models/billing.py - Billing Schemas
# =============================================================================
# Request schemas for Stripe checkout, top-ups and subscription changes,
# plus the credit transaction types written to credit_transactions.
# =============================================================================

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class CreditTransactionType(str, Enum):
    """Values of credit_transactions.transaction_type."""
    SUBSCRIPTION_RENEWAL = "subscription_renewal"
    TOPUP_PURCHASE = "topup_purchase"
    STAGING_DEDUCTION = "staging_deduction"
    ALLOCATION_TO_MEMBER = "allocation_to_member"
    ALLOCATION_FROM_OWNER = "allocation_from_owner"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"


class CheckoutRequest(BaseModel):
    """Start a subscription checkout for a paid plan."""

    plan_slug: Literal["standard", "professional", "enterprise"] = Field(
        ...,
        alias="planSlug",
    )

    model_config = {"populate_by_name": True}


class TopupRequest(BaseModel):
    """Buy a one-time credit package."""

    package_id: Literal["topup_10", "topup_25", "topup_50"] = Field(
        ...,
        alias="packageId",
    )

    model_config = {"populate_by_name": True}


class SubscriptionActionRequest(BaseModel):
    """Cancel at period end, or undo a pending cancellation."""

    action: Literal["cancel", "resume"]
