# =============================================================================
# app/dependencies.py - Shared Dependencies
# =============================================================================
# Annotated aliases injected into route handlers.
# =============================================================================

from typing import Annotated, Optional

from fastapi import Depends

from app.auth.dependencies import get_current_user, get_current_user_optional
from app.auth.models import AuthUser

# Authenticated caller (401 otherwise)
CurrentUser = Annotated[AuthUser, Depends(get_current_user)]

# Caller if a valid token was sent, else None
OptionalUser = Annotated[Optional[AuthUser], Depends(get_current_user_optional)]
