# =============================================================================
# core/services/notification_service.py - In-App Notifications
# =============================================================================
# Rows in the notifications table shown in the dashboard bell menu.
# =============================================================================

import logging
from typing import Any
from uuid import UUID

from lib.supabase_client import SupabaseClient
from lib.utils import normalize_uuid

logger = logging.getLogger(__name__)

# Values of notifications.type
STAGING_COMPLETE = "staging_complete"
STAGING_FAILED = "staging_failed"
LOW_CREDITS = "low_credits"
TEAM_INVITE = "team_invite"
SYSTEM = "system"


class NotificationService:
    """Service for in-app notifications."""

    @staticmethod
    def create_notification(
        user_id: UUID | str,
        notification_type: str,
        title: str,
        message: str,
        link: str | None = None,
    ) -> bool:
        """
        Create a notification for a user.

        Returns:
            True if the row was inserted
        """
        data = {
            "user_id": normalize_uuid(user_id),
            "type": notification_type,
            "title": title,
            "message": message,
            "link": link,
        }

        try:
            SupabaseClient.get_client().table("notifications").insert(data).execute()
            return True
        except Exception as e:
            logger.error(f"Failed to create {notification_type} notification for {user_id}: {e}")
            return False

    @staticmethod
    def create_notification_once(
        user_id: UUID | str,
        notification_type: str,
        title: str,
        message: str,
        link: str,
    ) -> bool:
        """
        Create a notification unless the user already has one of this type
        for the same link. Used by retried background jobs.

        Returns:
            True if a row was inserted
        """
        existing = (
            SupabaseClient.get_client()
            .table("notifications")
            .select("id")
            .eq("user_id", normalize_uuid(user_id))
            .eq("type", notification_type)
            .eq("link", link)
            .limit(1)
            .execute()
        )
        if existing.data:
            logger.info(f"Skipping duplicate {notification_type} notification for {user_id}")
            return False
        return NotificationService.create_notification(user_id, notification_type, title, message, link)

    @staticmethod
    def list_notifications(
        user_id: UUID | str,
        limit: int = 20,
        unread_only: bool = False,
    ) -> list[dict[str, Any]]:
        """Most recent notifications first."""
        query = (
            SupabaseClient.get_client()
            .table("notifications")
            .select("*")
            .eq("user_id", normalize_uuid(user_id))
        )
        if unread_only:
            query = query.eq("is_read", False)

        response = query.order("created_at", desc=True).limit(limit).execute()
        return response.data or []

    @staticmethod
    def get_unread_count(user_id: UUID | str) -> int:
        response = (
            SupabaseClient.get_client()
            .table("notifications")
            .select("id", count="exact")
            .eq("user_id", normalize_uuid(user_id))
            .eq("is_read", False)
            .execute()
        )
        return response.count or 0

    @staticmethod
    def mark_as_read(user_id: UUID | str, notification_id: UUID | str) -> None:
        (
            SupabaseClient.get_client()
            .table("notifications")
            .update({"is_read": True})
            .eq("id", normalize_uuid(notification_id))
            .eq("user_id", normalize_uuid(user_id))
            .execute()
        )

    @staticmethod
    def mark_all_as_read(user_id: UUID | str) -> None:
        (
            SupabaseClient.get_client()
            .table("notifications")
            .update({"is_read": True})
            .eq("user_id", normalize_uuid(user_id))
            .eq("is_read", False)
            .execute()
        )

    @staticmethod
    def delete_notification(user_id: UUID | str, notification_id: UUID | str) -> None:
        (
            SupabaseClient.get_client()
            .table("notifications")
            .delete()
            .eq("id", normalize_uuid(notification_id))
            .eq("user_id", normalize_uuid(user_id))
            .execute()
        )
