# =============================================================================
# app/auth/routes.py - Authentication Routes
# =============================================================================
# Sign-up and sign-in happen client-side against Supabase Auth. These
# routes only report on an already-issued token.
# =============================================================================

import logging

from fastapi import APIRouter

from app.auth.models import CreditsSummary, ProfileResponse
from app.dependencies import CurrentUser
from core.services.credit_service import CreditService
from lib.supabase_client import SupabaseClient

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/me", response_model=ProfileResponse)
async def get_me(user: CurrentUser) -> ProfileResponse:
    """
    Get the caller's profile and spendable credits.

    A brand-new user may not have a profile row yet (it is created by a
    database trigger), so token data is returned in that case.
    """
    profile = SupabaseClient.fetch_profile(user.id)
    credits = CreditService.get_user_credits(user.id)

    if not profile:
        logger.info(f"No profile row yet for user {user.id}")
        profile = {"id": user.id}

    return ProfileResponse(
        **{**profile, "email": profile.get("email") or user.email},
        credits=CreditsSummary(**credits.to_dict()),
    )


@router.get("/verify")
async def verify_token(user: CurrentUser) -> dict:
    """Confirm the bearer token is still valid."""
    return {
        "valid": True,
        "user_id": str(user.id),
        "email": user.email,
    }
