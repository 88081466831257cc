# =============================================================================
# app/auth/__init__.py - Authentication Module
# =============================================================================
# JWT bearer authentication against Supabase Auth.
#
# Usage:
#   from app.dependencies import CurrentUser
#
#   @router.get("/protected")
#   async def protected(user: CurrentUser):
#       return {"user_id": user.id}
# =============================================================================

from app.auth.dependencies import decode_access_token, get_current_user, get_current_user_optional
from app.auth.models import AuthUser, ProfileResponse

__all__ = [
    "decode_access_token",
    "get_current_user",
    "get_current_user_optional",
    "AuthUser",
    "ProfileResponse",
]
