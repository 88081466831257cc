# =============================================================================
# core/models/email.py - Email Preference Schemas
# =============================================================================
# Users opt in or out of email by category. Staging and team emails are
# transactional and keep their own switch even after a global unsubscribe.
# =============================================================================

from enum import Enum

from pydantic import BaseModel, Field


class EmailCategory(str, Enum):
    MARKETING = "marketing_emails"
    PRODUCT_UPDATES = "product_updates"
    WEEKLY_DIGEST = "weekly_digest"
    STAGING = "staging_notifications"
    TEAM = "team_notifications"

    @property
    def is_transactional(self) -> bool:
        return self in (EmailCategory.STAGING, EmailCategory.TEAM)


class EmailPreferencesUpdate(BaseModel):
    """
    Schema for PATCH /email/preferences. Omitted categories are unchanged.

    Example:
        {"weeklyDigest": false, "stagingNotifications": true}
    """

    marketing_emails: bool | None = Field(default=None, alias="marketingEmails")
    product_updates: bool | None = Field(default=None, alias="productUpdates")
    weekly_digest: bool | None = Field(default=None, alias="weeklyDigest")
    staging_notifications: bool | None = Field(default=None, alias="stagingNotifications")
    team_notifications: bool | None = Field(default=None, alias="teamNotifications")

    model_config = {"populate_by_name": True}

    def changes(self) -> dict[str, bool]:
        return self.model_dump(exclude_none=True)
