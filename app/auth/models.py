# =============================================================================
# app/auth/models.py - Authentication Models
# =============================================================================

from pydantic import BaseModel, ConfigDict, Field
from uuid import UUID
from datetime import datetime
from typing import Optional


class AuthUser(BaseModel):
    """
    Caller identity taken from a verified Supabase access token.

    Only what the token carries; profile data needs a database read.
    """
    model_config = ConfigDict(frozen=True)

    id: UUID
    email: Optional[str] = None


class CreditsSummary(BaseModel):
    """Spendable credits, as computed by CreditService.get_user_credits()."""
    model_config = ConfigDict(populate_by_name=True)

    available: int = 0
    allocated: int = 0
    used: int = 0
    is_team_member: bool = Field(False, alias="isTeamMember")


class ProfileResponse(BaseModel):
    """Response for GET /auth/me: the profile row plus spendable credits."""
    id: UUID
    email: Optional[str] = None
    full_name: Optional[str] = None
    company_name: Optional[str] = None
    organization_id: Optional[UUID] = None
    credits_remaining: int = 0
    credits: CreditsSummary
    created_at: Optional[datetime] = None
