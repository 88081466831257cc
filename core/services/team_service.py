# =============================================================================
# core/services/team_service.py - Organizations & Members
# =============================================================================
# An organization is owned by one Enterprise user. Its credit pool is split
# into per-member allocations; whatever isn't allocated stays in
# `unallocated_credits` for the owner to spend or hand out.
#
# Invitations live in invitation_service.py.
# =============================================================================

import logging
from typing import Any
from uuid import UUID

from lib.supabase_client import SupabaseClient
from lib.utils import normalize_uuid, utc_now_iso
from app.exceptions import (
    BadRequestError,
    CreditAllocationError,
    EnterprisePlanRequiredError,
    MemberNotFoundError,
    NotOrganizationOwnerError,
)
from core.constants import DEFAULT_ORGANIZATION_CREDITS
from core.models.billing import CreditTransactionType
from core.models.team import MemberRole
from core.services.audit_service import AuditAction, AuditEventType, AuditResourceType, AuditService
from core.services.billing_service import BillingService
from core.services.credit_service import CreditService

logger = logging.getLogger(__name__)

MEMBER_COLUMNS = "*, profile:profiles(id, full_name, company_name)"


class TeamService:
    """Service for organizations and their members."""

    # -------------------------------------------------------------------------
    # Organization
    # -------------------------------------------------------------------------

    @staticmethod
    def list_members(organization_id: str) -> list[dict[str, Any]]:
        response = (
            SupabaseClient.get_client()
            .table("organization_members")
            .select(MEMBER_COLUMNS)
            .eq("organization_id", organization_id)
            .execute()
        )
        return response.data or []

    @staticmethod
    def get_user_organization(user_id: UUID | str) -> dict[str, Any] | None:
        """
        Get the organization a user owns or belongs to.

        Returns:
            {"organization": {..., "members": [...]}, "role": ...} or None
        """
        owned = SupabaseClient.fetch_owned_organization(user_id)
        if owned:
            return {
                "organization": {**owned, "members": TeamService.list_members(owned["id"])},
                "role": MemberRole.OWNER.value,
            }

        membership = SupabaseClient.fetch_membership(user_id)
        if membership:
            org = SupabaseClient.fetch_organization(membership["organization_id"])
            if org:
                return {
                    "organization": {**org, "members": TeamService.list_members(org["id"])},
                    "role": membership.get("role"),
                }

        return None

    @staticmethod
    def require_owned_organization(
        user_id: UUID | str,
        message: str = "Only organization owners can perform this action",
    ) -> dict[str, Any]:
        """
        Get the caller's owned organization.

        Raises:
            NotOrganizationOwnerError: If the caller doesn't own one
        """
        org = SupabaseClient.fetch_owned_organization(user_id)
        if not org:
            raise NotOrganizationOwnerError(message)
        return org

    @staticmethod
    def create_organization(
        user_id: UUID | str,
        name: str,
        subscription_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Create an organization for an Enterprise user.

        The pool starts at the plan's monthly credits and the owner is added
        as the first member.

        Raises:
            EnterprisePlanRequiredError: If the user isn't on Enterprise
            BadRequestError: If the user already has an organization
        """
        user_id_str = normalize_uuid(user_id)

        plan = BillingService.get_user_plan(user_id_str)
        if plan.slug != "enterprise":
            raise EnterprisePlanRequiredError()

        if TeamService.get_user_organization(user_id_str):
            raise BadRequestError("Organization already exists", code="ORGANIZATION_EXISTS")

        if subscription_id is None:
            subscription = BillingService.get_user_subscription(user_id_str)
            subscription_id = (subscription or {}).get("id")

        return TeamService._insert_organization(
            user_id_str, name, plan.credits_per_month or DEFAULT_ORGANIZATION_CREDITS, subscription_id
        )

    @staticmethod
    def _insert_organization(
        owner_id: str,
        name: str,
        credits: int,
        subscription_id: str | None,
    ) -> dict[str, Any]:
        client = SupabaseClient.get_client()

        response = client.table("organizations").insert({
            "name": name,
            "owner_id": owner_id,
            "subscription_id": subscription_id,
            "total_credits": credits,
            "unallocated_credits": credits,
        }).execute()
        org = response.data[0]

        client.table("organization_members").insert({
            "organization_id": org["id"],
            "user_id": owner_id,
            "role": MemberRole.OWNER.value,
            "allocated_credits": credits,
            "joined_at": utc_now_iso(),
        }).execute()

        client.table("profiles").update({"organization_id": org["id"]}).eq("id", owner_id).execute()

        logger.info(f"Created organization {org['id']} for owner {owner_id} with {credits} credits")
        return org

    @staticmethod
    def ensure_enterprise_organization(
        owner_id: str,
        credits: int,
        subscription_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Get or create the organization for a new Enterprise subscriber.

        Called from the Stripe webhook; names the organization after the
        owner's company.
        """
        org = SupabaseClient.fetch_owned_organization(owner_id)
        if org:
            return org

        profile = SupabaseClient.fetch_profile(owner_id) or {}
        name = profile.get("company_name") or f"{profile.get('full_name') or 'My'} Team"
        return TeamService._insert_organization(owner_id, name, credits, subscription_id)

    @staticmethod
    def rename_organization(user_id: UUID | str, name: str) -> dict[str, Any]:
        org = TeamService.require_owned_organization(
            user_id, "Organization not found or you are not the owner"
        )
        response = (
            SupabaseClient.get_client()
            .table("organizations")
            .update({"name": name})
            .eq("id", org["id"])
            .execute()
        )
        return response.data[0] if response.data else {**org, "name": name}

    # -------------------------------------------------------------------------
    # Members
    # -------------------------------------------------------------------------

    @staticmethod
    def _fetch_member(organization_id: str, member_id: UUID | str) -> dict[str, Any]:
        member = SupabaseClient._fetch_single(
            "organization_members",
            {"id": member_id, "organization_id": organization_id},
            error_code="FETCH_MEMBER_FAILED",
        )
        if not member:
            raise MemberNotFoundError(str(member_id))
        return member

    @staticmethod
    def update_member_credits(
        user_id: UUID | str,
        member_id: UUID | str,
        credits: int,
    ) -> dict[str, Any]:
        """
        Set a member's allocation.

        Increases come out of the unallocated pool; decreases go back to it.

        Raises:
            NotOrganizationOwnerError: If the caller doesn't own an organization
            MemberNotFoundError: If the member isn't in it
            CreditAllocationError: If the pool is too small, or the new
                allocation is below what the member already used
        """
        org = TeamService.require_owned_organization(
            user_id, "You must be an organization owner to allocate credits"
        )
        member = TeamService._fetch_member(org["id"], member_id)

        current = member.get("allocated_credits", 0) or 0
        used = member.get("credits_used_this_period", 0) or 0
        unallocated = org.get("unallocated_credits", 0) or 0
        difference = credits - current

        if difference > 0 and difference > unallocated:
            raise CreditAllocationError(
                f"Not enough unallocated credits. Available: {unallocated}",
                details={"available": unallocated, "requested": difference},
            )

        if credits < used:
            raise CreditAllocationError(
                f"Cannot allocate less than already used ({used} credits used)",
                details={"used": used},
            )

        client = SupabaseClient.get_client()
        response = (
            client.table("organization_members")
            .update({"allocated_credits": credits})
            .eq("id", member["id"])
            .execute()
        )
        client.table("organizations").update(
            {"unallocated_credits": unallocated - difference}
        ).eq("id", org["id"]).execute()

        if difference:
            CreditService.log_credit_transaction(
                CreditTransactionType.ALLOCATION_FROM_OWNER if difference > 0
                else CreditTransactionType.ALLOCATION_TO_MEMBER,
                amount=abs(difference),
                balance_after=credits - used,
                user_id=member["user_id"],
                organization_id=org["id"],
                description=(
                    f"Allocated {difference} credits" if difference > 0
                    else f"Returned {abs(difference)} credits to pool"
                ),
            )

        AuditService.log_event(
            AuditEventType.TEAM_CREDITS_ALLOCATED,
            AuditResourceType.TEAM_MEMBER,
            AuditAction.UPDATED,
            user_id=user_id,
            organization_id=org["id"],
            resource_id=member["id"],
            previous_values={"allocated_credits": current},
            new_values={"allocated_credits": credits},
            metadata={"member_user_id": member["user_id"]},
        )

        logger.info(f"Member {member['id']} allocation {current} -> {credits}")
        return response.data[0] if response.data else {**member, "allocated_credits": credits}

    @staticmethod
    def remove_member(user_id: UUID | str, member_id: UUID | str) -> None:
        """
        Remove a member and return their unused allocation to the pool.

        Raises:
            NotOrganizationOwnerError: If the caller doesn't own an organization
            MemberNotFoundError: If the member isn't in it
            BadRequestError: If the member is the owner
        """
        org = TeamService.require_owned_organization(
            user_id, "You must be an organization owner to remove members"
        )
        member = TeamService._fetch_member(org["id"], member_id)

        if member.get("role") == MemberRole.OWNER.value:
            raise BadRequestError("Cannot remove organization owner", code="CANNOT_REMOVE_OWNER")

        unused = (member.get("allocated_credits", 0) or 0) - (member.get("credits_used_this_period", 0) or 0)

        client = SupabaseClient.get_client()
        client.table("organization_members").delete().eq("id", member["id"]).execute()

        if unused > 0:
            client.table("organizations").update({
                "unallocated_credits": (org.get("unallocated_credits", 0) or 0) + unused,
            }).eq("id", org["id"]).execute()

        client.table("profiles").update({"organization_id": None}).eq("id", member["user_id"]).execute()

        AuditService.log_event(
            AuditEventType.TEAM_MEMBER_REMOVED,
            AuditResourceType.TEAM_MEMBER,
            AuditAction.DELETED,
            user_id=user_id,
            organization_id=org["id"],
            resource_id=member["id"],
            previous_values={
                "member_user_id": member["user_id"],
                "allocated_credits": member.get("allocated_credits", 0) or 0,
            },
            metadata={"credits_returned": max(0, unused)},
        )

        logger.info(f"Removed member {member['id']} from organization {org['id']}, returned {max(0, unused)} credits")
