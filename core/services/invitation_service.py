# =============================================================================
# core/services/invitation_service.py - Team Invitations
# =============================================================================
# Owners invite people by email. The invitee gets a link with a random
# token; accepting it (while logged in with the invited address) adds them
# to the organization with the invitation's initial credits.
#
#   pending -> accepted   invitee accepted
#   pending -> expired    past expires_at (nightly cleanup, or on first look)
#   pending -> revoked    owner cancelled it
#   expired -> pending    owner resent it
# =============================================================================

import logging
import secrets
from datetime import timedelta
from typing import Any
from uuid import UUID

from lib.supabase_client import SupabaseClient
from lib.utils import normalize_uuid, parse_timestamp, utc_now, utc_now_iso
from app.exceptions import (
    BadRequestError,
    CreditAllocationError,
    InvitationEmailMismatchError,
    InvitationInvalidError,
    InvitationNotFoundError,
    OrganizationNotFoundError,
    QueueUnavailableError,
    TeamFullError,
)
from core.constants import DEFAULT_MAX_TEAM_MEMBERS, INVITATION_EXPIRY_DAYS
from core.models.team import InvitationStatus, MemberRole
from core.services.audit_service import AuditAction, AuditEventType, AuditResourceType, AuditService
from core.services.billing_service import BillingService
from core.services.team_service import TeamService
from workers import queue
from workers.queue import QueuePublishError

logger = logging.getLogger(__name__)

DEFAULT_INVITER_NAME = "A team admin"


def generate_invitation_token() -> str:
    return secrets.token_urlsafe(32)


def invitation_expiry() -> str:
    return utc_now_iso(timedelta(days=INVITATION_EXPIRY_DAYS))


def is_expired(invitation: dict[str, Any]) -> bool:
    expires_at = parse_timestamp(invitation.get("expires_at"))
    return expires_at is not None and expires_at < utc_now()


class InvitationService:
    """Service for team invitations."""

    @staticmethod
    def _fetch_by_token(token: str) -> dict[str, Any] | None:
        return SupabaseClient._fetch_single(
            "team_invitations",
            {"invitation_token": token},
            columns="*, organization:organizations(id, name, unallocated_credits)",
            error_code="FETCH_INVITATION_FAILED",
        )

    @staticmethod
    def _fetch_for_org(organization_id: str, invitation_id: UUID | str) -> dict[str, Any]:
        invitation = SupabaseClient._fetch_single(
            "team_invitations",
            {"id": invitation_id, "organization_id": organization_id},
            error_code="FETCH_INVITATION_FAILED",
        )
        if not invitation:
            raise InvitationNotFoundError()
        return invitation

    @staticmethod
    def _set_status(invitation_id: str, status: InvitationStatus, **extra: Any) -> None:
        SupabaseClient.get_client().table("team_invitations").update(
            {"status": status.value, **extra}
        ).eq("id", invitation_id).execute()

    @staticmethod
    def _inviter_name(user_id: str) -> str:
        profile = SupabaseClient.fetch_profile(user_id) or {}
        return profile.get("full_name") or DEFAULT_INVITER_NAME

    @staticmethod
    def _send_email(to: str, organization_name: str, inviter_name: str, token: str, initial_credits: int) -> None:
        try:
            queue.queue_invitation_email(
                to=to,
                organization_name=organization_name,
                inviter_name=inviter_name,
                invitation_token=token,
                initial_credits=initial_credits,
            )
        except QueuePublishError as e:
            raise QueueUnavailableError(str(e))

    @staticmethod
    def _organization_of(invitation: dict[str, Any]) -> dict[str, Any] | None:
        # Embedded resources come back as an object or a one-item list
        org = invitation.get("organization")
        if isinstance(org, list):
            org = org[0] if org else None
        return org

    # -------------------------------------------------------------------------
    # Owner actions
    # -------------------------------------------------------------------------

    @staticmethod
    def invite_member(user_id: UUID | str, email: str, initial_credits: int = 0) -> dict[str, Any]:
        """
        Invite someone to the caller's organization.

        Raises:
            NotOrganizationOwnerError: If the caller doesn't own an organization
            TeamFullError: If members plus pending invitations reach the plan limit
            CreditAllocationError: If initial_credits exceeds the unallocated pool
            BadRequestError: If the email already has a pending invitation
        """
        user_id_str = normalize_uuid(user_id)
        org = TeamService.require_owned_organization(
            user_id_str, "You must be an organization owner to invite members"
        )
        client = SupabaseClient.get_client()

        max_members = BillingService.get_user_plan(user_id_str).max_team_members
        if max_members <= 1:
            max_members = DEFAULT_MAX_TEAM_MEMBERS

        members = (
            client.table("organization_members")
            .select("id", count="exact")
            .eq("organization_id", org["id"])
            .execute()
        )
        pending = (
            client.table("team_invitations")
            .select("id", count="exact")
            .eq("organization_id", org["id"])
            .eq("status", InvitationStatus.PENDING.value)
            .execute()
        )
        if (members.count or 0) + (pending.count or 0) >= max_members:
            raise TeamFullError(max_members)

        unallocated = org.get("unallocated_credits", 0) or 0
        if initial_credits > unallocated:
            raise CreditAllocationError(
                f"Not enough unallocated credits. Available: {unallocated}",
                details={"available": unallocated, "requested": initial_credits},
            )

        existing = (
            client.table("team_invitations")
            .select("id")
            .eq("organization_id", org["id"])
            .eq("email", email)
            .eq("status", InvitationStatus.PENDING.value)
            .execute()
        )
        if existing.data:
            raise BadRequestError(
                "An invitation has already been sent to this email",
                code="INVITATION_EXISTS",
                suggestion="Resend the existing invitation instead",
            )

        token = generate_invitation_token()
        response = client.table("team_invitations").insert({
            "organization_id": org["id"],
            "email": email,
            "invitation_token": token,
            "initial_credits": initial_credits,
            "invited_by": user_id_str,
            "status": InvitationStatus.PENDING.value,
            "expires_at": invitation_expiry(),
        }).execute()
        invitation = response.data[0]

        InvitationService._send_email(
            email,
            org["name"],
            InvitationService._inviter_name(user_id_str),
            token,
            initial_credits,
        )

        AuditService.log_event(
            AuditEventType.TEAM_INVITATION_CREATED,
            AuditResourceType.TEAM_INVITATION,
            AuditAction.CREATED,
            user_id=user_id_str,
            organization_id=org["id"],
            resource_id=invitation["id"],
            new_values={"email": email, "initial_credits": initial_credits},
        )

        logger.info(f"Invited {email} to organization {org['id']}")
        return {
            "message": "Invitation sent successfully",
            "invitation": {
                "id": invitation["id"],
                "email": invitation["email"],
                "initialCredits": invitation["initial_credits"],
                "expiresAt": invitation["expires_at"],
            },
        }

    @staticmethod
    def list_invitations(user_id: UUID | str) -> list[dict[str, Any]]:
        """All of the owned organization's invitations, newest first."""
        org = TeamService.require_owned_organization(
            user_id, "You must be an organization owner to view invitations"
        )

        response = (
            SupabaseClient.get_client()
            .table("team_invitations")
            .select(
                "id, email, initial_credits, status, created_at, expires_at, "
                "accepted_at, invited_by, inviter:profiles!invited_by(full_name)"
            )
            .eq("organization_id", org["id"])
            .order("created_at", desc=True)
            .execute()
        )

        invitations = []
        for invitation in response.data or []:
            if invitation.get("status") == InvitationStatus.PENDING.value and is_expired(invitation):
                invitation = {**invitation, "status": InvitationStatus.EXPIRED.value}
            invitations.append(invitation)
        return invitations

    @staticmethod
    def revoke_invitation(user_id: UUID | str, invitation_id: UUID | str) -> None:
        """
        Revoke a pending invitation.

        Raises:
            InvitationNotFoundError: If it isn't in the caller's organization
            InvitationInvalidError: If it isn't pending
        """
        org = TeamService.require_owned_organization(
            user_id, "You must be an organization owner to revoke invitations"
        )
        invitation = InvitationService._fetch_for_org(org["id"], invitation_id)

        if invitation.get("status") != InvitationStatus.PENDING.value:
            raise InvitationInvalidError(
                "Only pending invitations can be revoked", status=invitation.get("status")
            )

        InvitationService._set_status(invitation["id"], InvitationStatus.REVOKED)
        AuditService.log_event(
            AuditEventType.TEAM_INVITATION_REVOKED,
            AuditResourceType.TEAM_INVITATION,
            AuditAction.UPDATED,
            user_id=user_id,
            organization_id=org["id"],
            resource_id=invitation["id"],
            previous_values={"status": invitation.get("status")},
            new_values={"status": InvitationStatus.REVOKED.value},
        )
        logger.info(f"Revoked invitation {invitation['id']}")

    @staticmethod
    def resend_invitation(user_id: UUID | str, invitation_id: UUID | str) -> dict[str, Any]:
        """
        Issue a fresh token and expiry for a pending or expired invitation.

        The old link stops working.
        """
        user_id_str = normalize_uuid(user_id)
        org = TeamService.require_owned_organization(
            user_id_str, "You must be an organization owner to resend invitations"
        )
        invitation = InvitationService._fetch_for_org(org["id"], invitation_id)

        if invitation.get("status") not in (InvitationStatus.PENDING.value, InvitationStatus.EXPIRED.value):
            raise InvitationInvalidError(
                "Only pending or expired invitations can be resent", status=invitation.get("status")
            )

        token = generate_invitation_token()
        expires_at = invitation_expiry()
        InvitationService._set_status(
            invitation["id"],
            InvitationStatus.PENDING,
            invitation_token=token,
            expires_at=expires_at,
        )

        InvitationService._send_email(
            invitation["email"],
            org["name"],
            InvitationService._inviter_name(user_id_str),
            token,
            invitation.get("initial_credits", 0) or 0,
        )
        AuditService.log_event(
            AuditEventType.TEAM_INVITATION_RESENT,
            AuditResourceType.TEAM_INVITATION,
            AuditAction.UPDATED,
            user_id=user_id_str,
            organization_id=org["id"],
            resource_id=invitation["id"],
            previous_values={"status": invitation.get("status")},
            new_values={"status": InvitationStatus.PENDING.value, "expires_at": expires_at},
        )

        return {
            "message": "Invitation resent successfully",
            "invitation": {
                "id": invitation["id"],
                "email": invitation["email"],
                "expires_at": expires_at,
            },
        }

    # -------------------------------------------------------------------------
    # Invitee actions
    # -------------------------------------------------------------------------

    @staticmethod
    def validate_token(token: str) -> dict[str, Any]:
        """
        Check an invitation link for the accept page.

        Returns:
            {"valid": True, "invitation": {...}} or {"valid": False, "error": ...}

        Raises:
            InvitationNotFoundError: If no invitation has this token
        """
        invitation = InvitationService._fetch_by_token(token)
        if not invitation:
            raise InvitationNotFoundError()

        status = invitation.get("status")
        if status == InvitationStatus.REVOKED.value:
            return {"valid": False, "error": "This invitation has been revoked."}
        if status == InvitationStatus.ACCEPTED.value:
            return {"valid": False, "error": "This invitation has already been accepted."}

        if is_expired(invitation) or status == InvitationStatus.EXPIRED.value:
            if status != InvitationStatus.EXPIRED.value:
                InvitationService._set_status(invitation["id"], InvitationStatus.EXPIRED)
            return {"valid": False, "error": "This invitation has expired. Please ask for a new one."}

        org = InvitationService._organization_of(invitation) or {}
        return {
            "valid": True,
            "invitation": {
                "id": invitation["id"],
                "email": invitation["email"],
                "initialCredits": invitation.get("initial_credits", 0),
                "organizationName": org.get("name") or "Team",
                "expiresAt": invitation.get("expires_at"),
            },
        }

    @staticmethod
    def accept_invitation(
        token: str,
        user_id: str | None = None,
        user_email: str | None = None,
    ) -> dict[str, Any]:
        """
        Accept an invitation.

        Anonymous callers get `requiresAuth` plus a summary so the client
        can send them through signup or login first.

        Raises:
            InvitationNotFoundError: If no invitation has this token
            InvitationInvalidError: If it is expired, revoked or already used
            InvitationEmailMismatchError: If the caller's email differs
            OrganizationNotFoundError: If the organization is gone
        """
        invitation = InvitationService._fetch_by_token(token)
        if not invitation:
            raise InvitationNotFoundError()

        status = invitation.get("status")
        if status == InvitationStatus.REVOKED.value:
            raise InvitationInvalidError("This invitation has been revoked.", status=status)
        if status == InvitationStatus.ACCEPTED.value:
            raise InvitationInvalidError("This invitation has already been accepted.", status=status)
        if status == InvitationStatus.EXPIRED.value:
            raise InvitationInvalidError(
                "This invitation has expired. Please ask for a new one.",
                status=status,
            )
        if status != InvitationStatus.PENDING.value:
            raise InvitationInvalidError("This invitation is no longer valid.", status=status)

        # Only a pending invitation can lapse into expired
        if is_expired(invitation):
            InvitationService._set_status(invitation["id"], InvitationStatus.EXPIRED)
            raise InvitationInvalidError(
                "This invitation has expired. Please ask for a new one.",
                status=InvitationStatus.EXPIRED.value,
            )

        org = InvitationService._organization_of(invitation)
        initial_credits = invitation.get("initial_credits", 0) or 0

        if not user_id:
            return {
                "requiresAuth": True,
                "invitation": {
                    "id": invitation["id"],
                    "email": invitation["email"],
                    "organizationName": (org or {}).get("name") or "Team",
                    "initialCredits": initial_credits,
                },
            }

        if (user_email or "").lower() != invitation["email"].lower():
            raise InvitationEmailMismatchError()

        if not org:
            raise OrganizationNotFoundError()

        client = SupabaseClient.get_client()
        user_id_str = normalize_uuid(user_id)

        existing = (
            client.table("organization_members")
            .select("id")
            .eq("organization_id", org["id"])
            .eq("user_id", user_id_str)
            .execute()
        )
        if existing.data:
            InvitationService._set_status(
                invitation["id"], InvitationStatus.ACCEPTED, accepted_at=utc_now_iso()
            )
            return {
                "message": "You are already a member of this organization",
                "alreadyMember": True,
                "organizationId": org["id"],
            }

        client.table("organization_members").insert({
            "organization_id": org["id"],
            "user_id": user_id_str,
            "role": MemberRole.MEMBER.value,
            "allocated_credits": initial_credits,
            "joined_at": utc_now_iso(),
        }).execute()

        client.table("organizations").update({
            "unallocated_credits": max(0, (org.get("unallocated_credits", 0) or 0) - initial_credits),
        }).eq("id", org["id"]).execute()

        client.table("profiles").update({"organization_id": org["id"]}).eq("id", user_id_str).execute()

        InvitationService._set_status(
            invitation["id"], InvitationStatus.ACCEPTED, accepted_at=utc_now_iso()
        )

        try:
            queue.queue_email(
                invitation["email"],
                "team-welcome",
                {"userId": user_id_str, "organizationName": org["name"], "credits": initial_credits},
            )
        except QueuePublishError as e:
            logger.warning(f"Could not queue welcome email for {user_id_str}: {e}")

        AuditService.log_event(
            AuditEventType.TEAM_INVITATION_ACCEPTED,
            AuditResourceType.TEAM_INVITATION,
            AuditAction.UPDATED,
            user_id=user_id_str,
            organization_id=org["id"],
            resource_id=invitation["id"],
            new_values={"status": InvitationStatus.ACCEPTED.value, "allocated_credits": initial_credits},
        )

        logger.info(f"User {user_id_str} joined organization {org['id']}")
        return {
            "message": "Successfully joined the organization!",
            "organizationId": org["id"],
            "organizationName": org["name"],
            "allocatedCredits": initial_credits,
        }

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    @staticmethod
    def expire_stale_invitations() -> int:
        """Mark pending invitations past expires_at as expired. Returns the count."""
        response = (
            SupabaseClient.get_client()
            .table("team_invitations")
            .update({"status": InvitationStatus.EXPIRED.value})
            .eq("status", InvitationStatus.PENDING.value)
            .lt("expires_at", utc_now_iso())
            .execute()
        )
        count = len(response.data or [])
        logger.info(f"Expired {count} invitations")
        return count
