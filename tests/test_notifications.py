# =============================================================================
# tests/test_notifications.py - Notification Service Tests
# =============================================================================
# Run with: pytest tests/test_notifications.py -v
# =============================================================================

from uuid import uuid4

from core.services.notification_service import NotificationService


def seed_notifications(db, user_id):
    return db.seed("notifications",
                   {"user_id": user_id, "type": "staging_complete", "is_read": False,
                    "created_at": "2026-01-01T00:00:00+00:00"},
                   {"user_id": user_id, "type": "low_credits", "is_read": True,
                    "created_at": "2026-01-02T00:00:00+00:00"},
                   {"user_id": user_id, "type": "staging_failed", "is_read": False,
                    "created_at": "2026-01-03T00:00:00+00:00"})


class TestNotificationService:

    def test_create(self, db, user_id):
        assert NotificationService.create_notification(user_id, "staging_complete", "Done", "Ready", "/history")

        assert db.row("notifications", user_id=user_id)["link"] == "/history"

    def test_list_newest_first(self, db, user_id):
        seed_notifications(db, user_id)

        types = [n["type"] for n in NotificationService.list_notifications(user_id)]

        assert types == ["staging_failed", "low_credits", "staging_complete"]

    def test_unread_only(self, db, user_id):
        seed_notifications(db, user_id)

        unread = NotificationService.list_notifications(user_id, unread_only=True)

        assert {n["type"] for n in unread} == {"staging_complete", "staging_failed"}
        assert NotificationService.get_unread_count(user_id) == 2

    def test_mark_all_read_is_scoped_to_user(self, db, user_id):
        seed_notifications(db, user_id)
        other = db.seed("notifications", {"user_id": str(uuid4()), "is_read": False})[0]

        NotificationService.mark_all_as_read(user_id)

        assert NotificationService.get_unread_count(user_id) == 0
        assert db.row("notifications", id=other["id"])["is_read"] is False

    def test_mark_one_read(self, db, user_id):
        first = seed_notifications(db, user_id)[0]

        NotificationService.mark_as_read(user_id, first["id"])

        assert db.row("notifications", id=first["id"])["is_read"] is True
