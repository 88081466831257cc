# =============================================================================
# app/routers/team.py - Organization & Team Endpoints
# =============================================================================
# Organizations, members, credit allocation, invitations and the audit log.
# Mutations are restricted to the organization owner by the services.
# =============================================================================

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status as http_status

from app.dependencies import CurrentUser, OptionalUser
from core.models.team import (
    AcceptInvitationRequest,
    MemberCreditsRequest,
    OrganizationNameRequest,
    TeamInviteRequest,
)
from core.services.audit_service import AuditEventType, AuditService
from core.services.invitation_service import InvitationService
from core.services.team_service import TeamService

logger = logging.getLogger(__name__)

router = APIRouter()

MemberId = Annotated[UUID, Path(description="organization_members row ID")]
InvitationId = Annotated[UUID, Path(description="Invitation UUID")]


# =============================================================================
# Organization
# =============================================================================

@router.get("")
async def get_team(user: CurrentUser):
    """
    Get the caller's organization and role.

    Returns `{"organization": null, "role": null}` for users outside any team.
    """
    return TeamService.get_user_organization(user.id) or {"organization": None, "role": None}


@router.post("", status_code=http_status.HTTP_201_CREATED)
async def create_team(request: OrganizationNameRequest, user: CurrentUser):
    """Create an organization. Enterprise plan only."""
    organization = TeamService.create_organization(user.id, request.name)
    return {"organization": organization}


@router.patch("")
async def rename_team(request: OrganizationNameRequest, user: CurrentUser):
    """Rename the caller's organization."""
    organization = TeamService.rename_organization(user.id, request.name)
    return {"organization": organization}


# =============================================================================
# Invitations
# =============================================================================

@router.post("/invite", status_code=http_status.HTTP_201_CREATED)
async def invite_member(request: TeamInviteRequest, user: CurrentUser):
    """
    Invite someone by email.

    `initialCredits` are reserved from the unallocated pool when the
    invitation is accepted.
    """
    return InvitationService.invite_member(user.id, request.email, request.initial_credits)


@router.get("/invite/accept")
async def validate_invitation(token: Annotated[str, Query(min_length=1)]):
    """Check an invitation link before showing the accept page."""
    return InvitationService.validate_token(token)


@router.post("/invite/accept")
async def accept_invitation(request: AcceptInvitationRequest, user: OptionalUser):
    """
    Accept an invitation.

    Anonymous callers get `requiresAuth: true` and should sign in with the
    invited email, then retry.
    """
    if user is None:
        return InvitationService.accept_invitation(request.token)
    return InvitationService.accept_invitation(request.token, str(user.id), user.email)


@router.get("/invitations")
async def list_invitations(user: CurrentUser):
    """All invitations for the caller's organization, newest first."""
    return {"invitations": InvitationService.list_invitations(user.id)}


@router.delete("/invitations/{invitation_id}")
async def revoke_invitation(invitation_id: InvitationId, user: CurrentUser):
    """Revoke a pending invitation."""
    InvitationService.revoke_invitation(user.id, invitation_id)
    return {"success": True, "message": "Invitation revoked"}


@router.post("/invitations/{invitation_id}/resend")
async def resend_invitation(invitation_id: InvitationId, user: CurrentUser):
    """Issue a fresh token and expiry and email the invitation again."""
    return InvitationService.resend_invitation(user.id, invitation_id)


# =============================================================================
# Members
# =============================================================================

@router.patch("/members/{member_id}/credits")
async def update_member_credits(member_id: MemberId, request: MemberCreditsRequest, user: CurrentUser):
    """Set a member's credit allocation."""
    member = TeamService.update_member_credits(user.id, member_id, request.credits)
    return {"member": member}


@router.delete("/members/{member_id}")
async def remove_member(member_id: MemberId, user: CurrentUser):
    """Remove a member; their unused credits return to the pool."""
    TeamService.remove_member(user.id, member_id)
    return {"success": True, "message": "Member removed"}


# =============================================================================
# Audit Log
# =============================================================================

@router.get("/audit-log")
async def list_audit_log(
    user: CurrentUser,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
    event_type: Annotated[AuditEventType | None, Query(alias="eventType")] = None,
):
    """The organization's audited actions, newest first. Owners only."""
    org = TeamService.require_owned_organization(
        user.id, "You must be an organization owner to view the audit log"
    )
    return AuditService.list_organization_events(org["id"], limit=limit, offset=offset, event_type=event_type)
