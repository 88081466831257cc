# =============================================================================
# app/auth/dependencies.py - FastAPI Auth Dependencies
# =============================================================================
# Verifies Supabase access tokens sent as `Authorization: Bearer <jwt>`.
#
# Two signing schemes are accepted:
# - HS256 with the project's legacy JWT secret
# - ES256 (and other asymmetric algs) through the project's JWKS endpoint
# =============================================================================

import logging
import time
from typing import Any, Optional
from uuid import UUID

import httpx
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError, ExpiredSignatureError

from app.config import settings
from app.auth.models import AuthUser

logger = logging.getLogger(__name__)

security = HTTPBearer()
security_optional = HTTPBearer(auto_error=False)

JWKS_CACHE_TTL = 3600  # seconds

_jwks: dict[str, Any] = {"keys": [], "fetched_at": 0.0}


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _jwks_keys() -> list[dict[str, Any]]:
    """
    Signing keys from `{SUPABASE_URL}/auth/v1/.well-known/jwks.json`.

    Cached for an hour. A failed refresh keeps serving the stale keys.
    """
    now = time.time()
    if _jwks["keys"] and now - _jwks["fetched_at"] < JWKS_CACHE_TTL:
        return _jwks["keys"]

    url = f"{settings.SUPABASE_URL.rstrip('/')}/auth/v1/.well-known/jwks.json"
    try:
        response = httpx.get(url, timeout=10)
        response.raise_for_status()
        _jwks["keys"] = response.json().get("keys", [])
        _jwks["fetched_at"] = now
        logger.debug(f"Fetched {len(_jwks['keys'])} signing keys from {url}")
    except httpx.HTTPError as e:
        logger.warning(f"Failed to fetch JWKS: {e}")

    return _jwks["keys"]


def _signing_key(token: str) -> tuple[Any, str]:
    """Pick the (key, algorithm) pair for a token from its unverified header."""
    try:
        header = jwt.get_unverified_header(token)
    except JWTError:
        return settings.SUPABASE_JWT_SECRET, "HS256"

    alg = header.get("alg", "HS256")
    kid = header.get("kid")

    if alg != "HS256" and kid:
        for key in _jwks_keys():
            if key.get("kid") == kid:
                return key, alg
        logger.warning(f"No JWKS key for alg={alg}, kid={kid}; trying HS256")

    return settings.SUPABASE_JWT_SECRET, "HS256"


def decode_access_token(token: str) -> AuthUser:
    """
    Verify a Supabase access token.

    Raises:
        HTTPException: 401 for an expired, forged or malformed token
    """
    key, algorithm = _signing_key(token)

    try:
        claims = jwt.decode(token, key, algorithms=[algorithm], audience="authenticated")
    except ExpiredSignatureError:
        logger.warning("Rejected expired access token")
        raise _unauthorized("Token has expired")
    except JWTError as e:
        logger.warning(f"Rejected access token: {e}")
        raise _unauthorized(f"Invalid token: {e}")

    subject = claims.get("sub")
    if not subject:
        raise _unauthorized("Invalid token: missing user ID")

    try:
        user_id = UUID(subject)
    except ValueError:
        raise _unauthorized("Invalid token: malformed user ID")

    return AuthUser(id=user_id, email=claims.get("email"))


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> AuthUser:
    """
    Require an authenticated caller.

    Usage:
        @router.get("/protected")
        async def protected(user: AuthUser = Depends(get_current_user)):
            return {"user_id": user.id}
    """
    return decode_access_token(credentials.credentials)


async def get_current_user_optional(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_optional)
) -> Optional[AuthUser]:
    """
    The caller if a valid token was sent, else None.

    Used by invitation acceptance, which answers anonymous callers with
    `requiresAuth` instead of a 401.
    """
    if credentials is None:
        return None

    try:
        return decode_access_token(credentials.credentials)
    except HTTPException:
        return None
