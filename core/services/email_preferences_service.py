# =============================================================================
# core/services/email_preferences_service.py - Email Preferences
# =============================================================================
# One email_preferences row per user, created with everything enabled the
# first time it is read. EmailService asks is_opted_in() before sending.
#
# Emails carry a signed one-click unsubscribe link (HS256 JWT with its own
# audience, so it can never pass as a session token). A global
# unsubscribe turns off the marketing categories only; staging and team
# emails keep their own switches.
# =============================================================================

import logging
from datetime import timedelta
from typing import Any
from uuid import UUID

from jose import jwt, ExpiredSignatureError, JWTError

from lib.supabase_client import SupabaseClient
from lib.utils import normalize_uuid, utc_now, utc_now_iso
from app.config import settings
from app.exceptions import InvalidUnsubscribeTokenError
from core.models.email import EmailCategory, EmailPreferencesUpdate

logger = logging.getLogger(__name__)

UNSUBSCRIBE_TOKEN_AUDIENCE = "email-unsubscribe"
UNSUBSCRIBE_TOKEN_TTL = timedelta(days=30)

DEFAULT_PREFERENCES: dict[str, Any] = {
    **{category.value: True for category in EmailCategory},
    "unsubscribed_at": None,
}

_MARKETING_CATEGORIES = [category for category in EmailCategory if not category.is_transactional]


def serialize_preferences(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "marketingEmails": bool(row.get(EmailCategory.MARKETING.value, True)),
        "productUpdates": bool(row.get(EmailCategory.PRODUCT_UPDATES.value, True)),
        "weeklyDigest": bool(row.get(EmailCategory.WEEKLY_DIGEST.value, True)),
        "stagingNotifications": bool(row.get(EmailCategory.STAGING.value, True)),
        "teamNotifications": bool(row.get(EmailCategory.TEAM.value, True)),
        "unsubscribedAt": row.get("unsubscribed_at"),
    }


class EmailPreferencesService:
    """Service for per-user email opt-outs."""

    @staticmethod
    def _fetch(user_id: str) -> dict[str, Any] | None:
        return SupabaseClient._fetch_single(
            "email_preferences",
            {"user_id": user_id},
            error_code="FETCH_EMAIL_PREFERENCES_FAILED",
        )

    @staticmethod
    def get_preferences(user_id: UUID | str) -> dict[str, Any]:
        """The user's preference row, created with defaults if missing."""
        user_id_str = normalize_uuid(user_id)
        row = EmailPreferencesService._fetch(user_id_str)
        if row:
            return row

        response = (
            SupabaseClient.get_client()
            .table("email_preferences")
            .upsert({"user_id": user_id_str, **DEFAULT_PREFERENCES}, on_conflict="user_id")
            .execute()
        )
        logger.info(f"Created default email preferences for {user_id_str}")
        return response.data[0] if response.data else {"user_id": user_id_str, **DEFAULT_PREFERENCES}

    @staticmethod
    def update_preferences(user_id: UUID | str, update: EmailPreferencesUpdate) -> dict[str, Any]:
        """
        Apply a partial update.

        Turning a marketing category back on clears a previous global
        unsubscribe.
        """
        user_id_str = normalize_uuid(user_id)
        row = EmailPreferencesService.get_preferences(user_id_str)

        changes: dict[str, Any] = update.changes()
        if not changes:
            return row

        if any(changes.get(category.value) for category in _MARKETING_CATEGORIES):
            changes["unsubscribed_at"] = None
        changes["updated_at"] = utc_now_iso()

        response = (
            SupabaseClient.get_client()
            .table("email_preferences")
            .update(changes)
            .eq("user_id", user_id_str)
            .execute()
        )
        return response.data[0] if response.data else {**row, **changes}

    @staticmethod
    def unsubscribe(user_id: UUID | str, category: EmailCategory | None = None) -> dict[str, Any]:
        """
        Turn off one category, or every marketing category when none is given.

        Returns:
            The updated preference row
        """
        user_id_str = normalize_uuid(user_id)
        row = EmailPreferencesService.get_preferences(user_id_str)

        if category:
            changes: dict[str, Any] = {category.value: False}
        else:
            changes = {c.value: False for c in _MARKETING_CATEGORIES}
            changes["unsubscribed_at"] = utc_now_iso()
        changes["updated_at"] = utc_now_iso()

        response = (
            SupabaseClient.get_client()
            .table("email_preferences")
            .update(changes)
            .eq("user_id", user_id_str)
            .execute()
        )
        logger.info(f"User {user_id_str} unsubscribed from {category.value if category else 'marketing email'}")
        return response.data[0] if response.data else {**row, **changes}

    @staticmethod
    def is_opted_in(user_id: UUID | str, category: EmailCategory) -> bool:
        """
        Whether email of this category may be sent to the user.

        Users without a preference row have never opted out.
        """
        row = EmailPreferencesService._fetch(normalize_uuid(user_id))
        if not row:
            return True
        if row.get("unsubscribed_at") and not category.is_transactional:
            return False
        return bool(row.get(category.value, True))

    # -------------------------------------------------------------------------
    # Unsubscribe links
    # -------------------------------------------------------------------------

    @staticmethod
    def create_unsubscribe_token(user_id: UUID | str, category: EmailCategory | None = None) -> str:
        claims = {
            "sub": normalize_uuid(user_id),
            "aud": UNSUBSCRIBE_TOKEN_AUDIENCE,
            "category": category.value if category else None,
            "exp": int((utc_now() + UNSUBSCRIBE_TOKEN_TTL).timestamp()),
        }
        return jwt.encode(claims, settings.unsubscribe_signing_key, algorithm="HS256")

    @staticmethod
    def unsubscribe_url(user_id: UUID | str, category: EmailCategory | None = None) -> str:
        token = EmailPreferencesService.create_unsubscribe_token(user_id, category)
        return f"{settings.unsubscribe_url}?token={token}"

    @staticmethod
    def read_unsubscribe_token(token: str) -> tuple[str, EmailCategory | None]:
        """
        Verify an unsubscribe token.

        Returns:
            (user_id, category); category is None for a global unsubscribe

        Raises:
            InvalidUnsubscribeTokenError: If the token doesn't verify or has expired
        """
        try:
            claims = jwt.decode(
                token,
                settings.unsubscribe_signing_key,
                algorithms=["HS256"],
                audience=UNSUBSCRIBE_TOKEN_AUDIENCE,
            )
        except ExpiredSignatureError:
            raise InvalidUnsubscribeTokenError("This unsubscribe link has expired")
        except JWTError as e:
            logger.warning(f"Rejected unsubscribe token: {e}")
            raise InvalidUnsubscribeTokenError()

        if not claims.get("sub"):
            raise InvalidUnsubscribeTokenError()

        try:
            category = EmailCategory(claims["category"]) if claims.get("category") else None
        except ValueError:
            raise InvalidUnsubscribeTokenError()

        return claims["sub"], category
