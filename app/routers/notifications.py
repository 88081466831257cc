# =============================================================================
# app/routers/notifications.py - In-App Notifications
# =============================================================================

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query

from app.dependencies import CurrentUser
from core.services.notification_service import NotificationService

router = APIRouter()

NotificationId = Annotated[UUID, Path(description="Notification UUID")]


@router.get("")
async def list_notifications(
    user: CurrentUser,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    unread_only: Annotated[bool, Query(alias="unreadOnly")] = False,
):
    """Most recent notifications first, with the unread count."""
    return {
        "notifications": NotificationService.list_notifications(user.id, limit=limit, unread_only=unread_only),
        "unreadCount": NotificationService.get_unread_count(user.id),
    }


@router.get("/unread-count")
async def unread_count(user: CurrentUser):
    return {"count": NotificationService.get_unread_count(user.id)}


@router.post("/read-all")
async def mark_all_read(user: CurrentUser):
    NotificationService.mark_all_as_read(user.id)
    return {"success": True}


@router.post("/{notification_id}/read")
async def mark_read(notification_id: NotificationId, user: CurrentUser):
    NotificationService.mark_as_read(user.id, notification_id)
    return {"success": True}


@router.delete("/{notification_id}")
async def delete_notification(notification_id: NotificationId, user: CurrentUser):
    NotificationService.delete_notification(user.id, notification_id)
    return {"success": True}
