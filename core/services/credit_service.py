# =============================================================================
# core/services/credit_service.py - Credit Accounting
# =============================================================================
# Reads and moves credit balances. A user spends credits from one of three
# places:
# - their profile balance (solo users)
# - their member allocation (team members)
# - the organization's unallocated pool (team owners)
#
# Every balance change that matters for billing is also written to
# credit_transactions via log_credit_transaction().
# =============================================================================

import logging
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from lib.supabase_client import SupabaseClient
from lib.utils import normalize_uuid, utc_now_iso
from core.models.billing import CreditTransactionType
from core.models.team import MemberRole

logger = logging.getLogger(__name__)


@dataclass
class CreditCheck:
    available: int
    sufficient: bool


@dataclass
class UserCredits:
    available: int
    allocated: int
    used: int
    is_team_member: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "available": self.available,
            "allocated": self.allocated,
            "used": self.used,
            "isTeamMember": self.is_team_member,
        }


@dataclass
class DeductCreditsResult:
    success: bool
    previous_balance: int
    new_balance: int
    deducted: int
    error: str | None = None


class CreditService:
    """
    Service for credit balances.

    Balances are read-modify-write against PostgREST, the same way the rest
    of the app talks to the database.
    """

    @staticmethod
    def get_user_credits(user_id: UUID | str) -> UserCredits:
        """
        Get the credits a user can spend right now.

        Team members see their allocation minus what they've used this
        period (never below zero). Owners see the organization's
        unallocated pool. Everyone else sees their profile balance.
        """
        membership = SupabaseClient.fetch_membership(user_id)

        if membership and membership.get("role") == MemberRole.OWNER.value:
            org = SupabaseClient.fetch_organization(membership["organization_id"])
            pool = (org or {}).get("unallocated_credits", 0) or 0
            return UserCredits(
                available=pool,
                allocated=(org or {}).get("total_credits", 0) or 0,
                used=0,
                is_team_member=True,
            )

        if membership:
            allocated = membership.get("allocated_credits", 0) or 0
            used = membership.get("credits_used_this_period", 0) or 0
            return UserCredits(
                available=max(0, allocated - used),
                allocated=allocated,
                used=used,
                is_team_member=True,
            )

        profile = SupabaseClient.fetch_profile(user_id)
        return UserCredits(
            available=(profile or {}).get("credits_remaining", 0) or 0,
            allocated=0,
            used=0,
            is_team_member=False,
        )

    @staticmethod
    def check_credits(user_id: UUID | str, required: int) -> CreditCheck:
        """Check whether the user can afford `required` credits."""
        available = CreditService.get_user_credits(user_id).available
        return CreditCheck(available=available, sufficient=available >= required)

    @staticmethod
    def deduct_credits(
        user_id: UUID | str,
        amount: int,
        allow_zero: bool = True,
        skip_pre_check: bool = False,
    ) -> DeductCreditsResult:
        """
        Deduct credits from wherever the user spends them.

        Args:
            user_id: The user being charged
            amount: Credits to deduct
            allow_zero: Clamp the new balance at zero instead of going negative
            skip_pre_check: Deduct even if the balance is short (used when the
                work has already been done and must be paid for)

        Returns:
            DeductCreditsResult; `deducted` can be less than `amount` when the
            balance was clamped at zero
        """
        client = SupabaseClient.get_client()
        user_id_str = normalize_uuid(user_id)

        membership = SupabaseClient.fetch_membership(user_id_str)

        if membership and membership.get("role") == MemberRole.OWNER.value:
            org = SupabaseClient.fetch_organization(membership["organization_id"])
            if not org:
                return DeductCreditsResult(False, 0, 0, 0, "Organization not found")
            previous = org.get("unallocated_credits", 0) or 0
            table, row_id, column = "organizations", org["id"], "unallocated_credits"
            stored_previous = previous
        elif membership:
            allocated = membership.get("allocated_credits", 0) or 0
            used = membership.get("credits_used_this_period", 0) or 0
            previous = max(0, allocated - used)
            table, row_id, column = "organization_members", membership["id"], "credits_used_this_period"
            stored_previous = used
        else:
            profile = SupabaseClient.fetch_profile(user_id_str)
            if not profile:
                return DeductCreditsResult(False, 0, 0, 0, "Failed to fetch user profile")
            previous = profile.get("credits_remaining", 0) or 0
            table, row_id, column = "profiles", user_id_str, "credits_remaining"
            stored_previous = previous

        if not skip_pre_check and previous < amount:
            return DeductCreditsResult(
                success=False,
                previous_balance=previous,
                new_balance=previous,
                deducted=0,
                error=f"Insufficient credits: need {amount}, have {previous}",
            )

        new_balance = max(0, previous - amount) if allow_zero else previous - amount
        deducted = previous - new_balance

        # Member rows track usage rather than a balance
        if table == "organization_members":
            stored_value = stored_previous + deducted
        else:
            stored_value = new_balance

        try:
            client.table(table).update({column: stored_value}).eq("id", row_id).execute()
        except Exception as e:
            logger.error(f"Failed to deduct {amount} credits for user {user_id_str}: {e}")
            return DeductCreditsResult(
                success=False,
                previous_balance=previous,
                new_balance=previous,
                deducted=0,
                error="Failed to update credit balance",
            )

        logger.info(f"Deducted {deducted} credits for user {user_id_str}: {previous} -> {new_balance}")
        return DeductCreditsResult(
            success=True,
            previous_balance=previous,
            new_balance=new_balance,
            deducted=deducted,
        )

    @staticmethod
    def add_credits(user_id: UUID | str, amount: int) -> int | None:
        """
        Add credits to a user's profile balance.

        Returns:
            The new balance, or None if the profile doesn't exist
        """
        profile = SupabaseClient.fetch_profile(user_id)
        if not profile:
            logger.warning(f"Cannot add credits, profile not found: {user_id}")
            return None

        new_balance = (profile.get("credits_remaining", 0) or 0) + amount
        client = SupabaseClient.get_client()
        client.table("profiles").update(
            {"credits_remaining": new_balance}
        ).eq("id", normalize_uuid(user_id)).execute()

        logger.info(f"Added {amount} credits for user {user_id}, balance {new_balance}")
        return new_balance

    @staticmethod
    def add_organization_credits(organization_id: UUID | str, amount: int) -> int | None:
        """
        Add credits to an organization's pool (total and unallocated).

        Returns:
            The new unallocated balance, or None if the organization is gone
        """
        org = SupabaseClient.fetch_organization(organization_id)
        if not org:
            return None

        unallocated = (org.get("unallocated_credits", 0) or 0) + amount
        SupabaseClient.get_client().table("organizations").update({
            "total_credits": (org.get("total_credits", 0) or 0) + amount,
            "unallocated_credits": unallocated,
        }).eq("id", org["id"]).execute()
        return unallocated

    @staticmethod
    def reset_credits_for_renewal(user_id: UUID | str, credits_per_month: int) -> None:
        """
        Reset monthly credits at the start of a billing period.

        Organization owners get the pool refilled and every member's usage
        zeroed; everyone else gets their profile balance set.
        """
        client = SupabaseClient.get_client()
        user_id_str = normalize_uuid(user_id)

        org = SupabaseClient.fetch_owned_organization(user_id_str)
        if org:
            client.table("organizations").update({
                "total_credits": credits_per_month,
                "unallocated_credits": credits_per_month,
            }).eq("id", org["id"]).execute()

            client.table("organization_members").update(
                {"credits_used_this_period": 0}
            ).eq("organization_id", org["id"]).execute()

            logger.info(f"Reset organization {org['id']} pool to {credits_per_month} credits")
            return

        client.table("profiles").update({
            "credits_remaining": credits_per_month,
            "credits_reset_at": utc_now_iso(),
        }).eq("id", user_id_str).execute()

        logger.info(f"Reset user {user_id_str} credits to {credits_per_month}")

    @staticmethod
    def log_credit_transaction(
        transaction_type: CreditTransactionType,
        amount: int,
        balance_after: int,
        user_id: UUID | str | None = None,
        organization_id: UUID | str | None = None,
        reference_id: str | None = None,
        description: str | None = None,
    ) -> None:
        """
        Record a credit movement.

        Failures are logged, not raised.
        """
        data = {
            "user_id": normalize_uuid(user_id) if user_id else None,
            "organization_id": normalize_uuid(organization_id) if organization_id else None,
            "transaction_type": transaction_type.value,
            "amount": amount,
            "balance_after": balance_after,
            "reference_id": reference_id,
            "description": description,
        }

        try:
            SupabaseClient.get_client().table("credit_transactions").insert(data).execute()
        except Exception as e:
            logger.error(f"Failed to log credit transaction {transaction_type.value}: {e}")
