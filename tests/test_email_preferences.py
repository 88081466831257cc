# =============================================================================
# tests/test_email_preferences.py - Email Preference & Unsubscribe Tests
# =============================================================================
# Tests for core/services/email_preferences_service.py and the preference
# gate in EmailService.send_email().
#
# Run with: pytest tests/test_email_preferences.py -v
# =============================================================================

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from jose import jwt

from app.config import settings
from app.exceptions import InvalidUnsubscribeTokenError
from core.models.email import EmailCategory, EmailPreferencesUpdate
from core.services.email_preferences_service import (
    EmailPreferencesService,
    UNSUBSCRIBE_TOKEN_AUDIENCE,
    serialize_preferences,
)
from core.services.email_service import EmailService
from lib.utils import utc_now


class TestPreferences:

    def test_defaults_created_on_first_read(self, db, user_id):
        row = EmailPreferencesService.get_preferences(user_id)

        assert all(row[category.value] for category in EmailCategory)
        assert row["unsubscribed_at"] is None
        assert len(db.rows("email_preferences", user_id=user_id)) == 1

        EmailPreferencesService.get_preferences(user_id)
        assert len(db.rows("email_preferences", user_id=user_id)) == 1

    def test_partial_update(self, db, user_id):
        row = EmailPreferencesService.update_preferences(
            user_id, EmailPreferencesUpdate(weeklyDigest=False)
        )

        body = serialize_preferences(row)
        assert body["weeklyDigest"] is False
        assert body["marketingEmails"] is True

    def test_users_without_a_row_are_opted_in(self, db, user_id):
        assert EmailPreferencesService.is_opted_in(user_id, EmailCategory.STAGING) is True
        assert db.rows("email_preferences") == []

    def test_global_unsubscribe_keeps_transactional_email(self, db, user_id):
        EmailPreferencesService.unsubscribe(user_id)

        assert EmailPreferencesService.is_opted_in(user_id, EmailCategory.MARKETING) is False
        assert EmailPreferencesService.is_opted_in(user_id, EmailCategory.WEEKLY_DIGEST) is False
        assert EmailPreferencesService.is_opted_in(user_id, EmailCategory.STAGING) is True
        assert EmailPreferencesService.is_opted_in(user_id, EmailCategory.TEAM) is True

    def test_category_unsubscribe(self, db, user_id):
        EmailPreferencesService.unsubscribe(user_id, EmailCategory.STAGING)

        assert EmailPreferencesService.is_opted_in(user_id, EmailCategory.STAGING) is False
        assert EmailPreferencesService.is_opted_in(user_id, EmailCategory.MARKETING) is True

    def test_opting_back_in_clears_global_unsubscribe(self, db, user_id):
        EmailPreferencesService.unsubscribe(user_id)

        EmailPreferencesService.update_preferences(user_id, EmailPreferencesUpdate(productUpdates=True))

        row = db.row("email_preferences", user_id=user_id)
        assert row["unsubscribed_at"] is None
        assert EmailPreferencesService.is_opted_in(user_id, EmailCategory.PRODUCT_UPDATES) is True


class TestUnsubscribeTokens:

    def test_token_names_user_and_category(self, user_id):
        token = EmailPreferencesService.create_unsubscribe_token(user_id, EmailCategory.STAGING)

        assert EmailPreferencesService.read_unsubscribe_token(token) == (user_id, EmailCategory.STAGING)

    def test_global_token_has_no_category(self, user_id):
        token = EmailPreferencesService.create_unsubscribe_token(user_id)

        assert EmailPreferencesService.read_unsubscribe_token(token) == (user_id, None)

    def test_wrong_key_rejected(self, user_id):
        token = jwt.encode(
            {"sub": user_id, "aud": UNSUBSCRIBE_TOKEN_AUDIENCE},
            "not-the-key",
            algorithm="HS256",
        )

        with pytest.raises(InvalidUnsubscribeTokenError):
            EmailPreferencesService.read_unsubscribe_token(token)

    def test_expired_rejected(self, user_id):
        token = jwt.encode(
            {
                "sub": user_id,
                "aud": UNSUBSCRIBE_TOKEN_AUDIENCE,
                "exp": int((utc_now() - timedelta(days=1)).timestamp()),
            },
            settings.unsubscribe_signing_key,
            algorithm="HS256",
        )

        with pytest.raises(InvalidUnsubscribeTokenError) as exc_info:
            EmailPreferencesService.read_unsubscribe_token(token)
        assert "expired" in exc_info.value.message

    def test_session_token_is_not_an_unsubscribe_token(self, user_id):
        token = jwt.encode(
            {"sub": user_id, "aud": "authenticated"},
            settings.unsubscribe_signing_key,
            algorithm="HS256",
        )

        with pytest.raises(InvalidUnsubscribeTokenError):
            EmailPreferencesService.read_unsubscribe_token(token)


class TestSendGate:

    @pytest.fixture
    def resend(self):
        response = MagicMock()
        response.json.return_value = {"id": "em_1"}
        with patch.object(settings, "RESEND_API_KEY", "re_test"), patch(
            "core.services.email_service.httpx.post", return_value=response
        ) as post:
            yield post

    def test_opted_out_user_is_skipped(self, db, user_id, resend):
        db.seed("email_preferences", {
            "user_id": user_id,
            "staging_notifications": False,
            "unsubscribed_at": None,
        })

        result = EmailService.send_staging_complete(
            "agent@example.com", user_id, "job-1", "Living Room", "Modern", "https://cdn.test/s.png"
        )

        assert result.success is False
        assert result.skipped is True
        resend.assert_not_called()

    def test_sent_email_carries_unsubscribe_link(self, db, user_id, resend):
        result = EmailService.send_low_credits("agent@example.com", user_id, 2)

        assert result.success is True
        payload = resend.call_args.kwargs["json"]
        assert settings.unsubscribe_url in payload["text"]
        assert payload["headers"]["List-Unsubscribe-Post"] == "List-Unsubscribe=One-Click"

        token = payload["headers"]["List-Unsubscribe"].split("token=")[1].rstrip(">")
        assert EmailPreferencesService.read_unsubscribe_token(token) == (user_id, EmailCategory.STAGING)

    def test_invitations_ignore_preferences(self, db, resend):
        result = EmailService.send_team_invitation("new@example.com", "Owner", "Acme", 10, "tok-1")

        assert result.success is True
        assert "headers" not in resend.call_args.kwargs["json"]

