# =============================================================================
# core/models/team.py - Organization & Invitation Schemas
# =============================================================================
# Request schemas for team management. An organization owns a pool of
# credits; members receive allocations from it.
# =============================================================================

import re
from enum import Enum

from pydantic import BaseModel, Field, field_validator

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class MemberRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class InvitationStatus(str, Enum):
    """
    Lifecycle of a team invitation.

    Flow: pending -> accepted | expired | revoked
    Expired invitations can be resent, which makes them pending again.
    """
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"
    REVOKED = "revoked"


class TeamInviteRequest(BaseModel):
    """
    Schema for inviting someone to the caller's organization.

    Example:
        {"email": "agent@brokerage.com", "initialCredits": 20}
    """

    email: str = Field(..., max_length=320)

    initial_credits: int = Field(
        default=0,
        ge=0,
        alias="initialCredits",
        description="Credits allocated to the member when they accept"
    )

    model_config = {"populate_by_name": True}

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        value = value.strip().lower()
        if not _EMAIL_PATTERN.match(value):
            raise ValueError("Invalid email address")
        return value


class OrganizationNameRequest(BaseModel):
    """Schema for creating or renaming an organization."""

    name: str = Field(..., max_length=100)

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 2:
            raise ValueError("Organization name must be at least 2 characters")
        return value


class MemberCreditsRequest(BaseModel):
    """Schema for changing a member's credit allocation."""

    credits: int = Field(..., ge=0)


class AcceptInvitationRequest(BaseModel):
    """Schema for accepting an invitation."""

    token: str = Field(..., min_length=1)
