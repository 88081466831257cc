# =============================================================================
# core/services/email_service.py - Transactional Email
# =============================================================================
# Sends email through the Resend REST API and records each send in the
# email_sends table. Templates are small HTML/text pairs built here.
#
# Without RESEND_API_KEY, emails are logged and skipped so local
# development works without an email account.
#
# Emails sent to a known user in an EmailCategory honor that user's
# preferences and carry a one-click unsubscribe link.
# =============================================================================

import html
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from app.config import settings
from lib.supabase_client import SupabaseClient
from core.constants import INVITATION_EXPIRY_DAYS
from core.models.email import EmailCategory
from core.services.email_preferences_service import EmailPreferencesService

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


@dataclass
class EmailResult:
    success: bool
    resend_id: str | None = None
    error: str | None = None
    # Not sent on purpose (recipient opted out); never retried
    skipped: bool = False


def _render(heading: str, paragraphs: list[str], cta_label: str | None = None, cta_url: str | None = None) -> tuple[str, str]:
    """Build (html, text) bodies from a heading, paragraphs and an optional button."""
    html_parts = [f"<h1>{html.escape(heading)}</h1>"]
    html_parts += [f"<p>{html.escape(p)}</p>" for p in paragraphs]
    text_parts = [heading, ""] + paragraphs

    if cta_label and cta_url:
        html_parts.append(f'<p><a href="{html.escape(cta_url)}">{html.escape(cta_label)}</a></p>')
        text_parts += ["", f"{cta_label}: {cta_url}"]

    return "\n".join(html_parts), "\n".join(text_parts)


class EmailService:
    """Service for sending transactional email."""

    @staticmethod
    def send_email(
        to: str,
        subject: str,
        html_body: str,
        text_body: str,
        template_id: str,
        user_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        category: EmailCategory | None = None,
    ) -> EmailResult:
        """
        Send one email via Resend.

        Args:
            to: Recipient address
            subject: Subject line
            html_body: HTML body
            text_body: Plain text body
            template_id: Template name, stored as a Resend tag and in email_sends
            user_id: Recipient user (when known) for the email_sends record
            metadata: Extra context stored with the send record
            category: Preference category; with user_id, opted-out users
                are skipped and the email gets an unsubscribe link

        Returns:
            EmailResult. Delivery errors are returned, not raised.
        """
        headers: dict[str, str] = {}
        if user_id and category:
            if not EmailPreferencesService.is_opted_in(user_id, category):
                logger.info(f"User {user_id} opted out of {category.value}, skipping '{template_id}' email")
                return EmailResult(success=False, skipped=True, error=f"Recipient opted out of {category.value}")

            unsubscribe_url = EmailPreferencesService.unsubscribe_url(user_id, category)
            html_body += (
                f'\n<p style="font-size:12px"><a href="{html.escape(unsubscribe_url)}">'
                "Unsubscribe from these emails</a></p>"
            )
            text_body += f"\n\nUnsubscribe: {unsubscribe_url}"
            headers = {
                "List-Unsubscribe": f"<{unsubscribe_url}>",
                "List-Unsubscribe-Post": "List-Unsubscribe=One-Click",
            }

        if not settings.RESEND_API_KEY:
            logger.info(f"RESEND_API_KEY not set, skipping '{template_id}' email to {to}")
            return EmailResult(success=False, error="Email is not configured")

        try:
            response = httpx.post(
                RESEND_API_URL,
                headers={"Authorization": f"Bearer {settings.RESEND_API_KEY}"},
                json={
                    "from": settings.EMAIL_FROM,
                    "to": [to],
                    "subject": subject,
                    "html": html_body,
                    "text": text_body,
                    "tags": [{"name": "template", "value": template_id}],
                    **({"headers": headers} if headers else {}),
                },
                timeout=15,
            )
            response.raise_for_status()
            result = EmailResult(success=True, resend_id=response.json().get("id"))
        except httpx.HTTPError as e:
            logger.error(f"Failed to send '{template_id}' email to {to}: {e}")
            result = EmailResult(success=False, error=str(e))

        EmailService._record_send(to, subject, template_id, user_id, metadata, result)
        return result

    @staticmethod
    def _record_send(
        to: str,
        subject: str,
        template_id: str,
        user_id: str | None,
        metadata: dict[str, Any] | None,
        result: EmailResult,
    ) -> None:
        try:
            SupabaseClient.get_client().table("email_sends").insert({
                "user_id": user_id,
                "template_id": template_id,
                "subject": subject,
                "to_email": to,
                "status": "sent" if result.success else "failed",
                "resend_id": result.resend_id,
                "error_message": result.error,
                "metadata": metadata or {},
            }).execute()
        except Exception as e:
            logger.warning(f"Could not record email send: {e}")

    # -------------------------------------------------------------------------
    # Templates
    # -------------------------------------------------------------------------

    @staticmethod
    def send_staging_complete(
        to: str,
        user_id: str,
        job_id: str,
        room_type: str,
        style: str,
        staged_image_url: str,
    ) -> EmailResult:
        view_url = f"{settings.app_url}/history?job={job_id}"
        html_body, text_body = _render(
            f"Your staged {room_type.lower()} is ready!",
            [
                f"We finished staging your {room_type.lower()} in the {style} style.",
                f"Preview: {staged_image_url}",
            ],
            "View your staged photo",
            view_url,
        )
        return EmailService.send_email(
            to,
            f"Your staged {room_type.lower()} is ready!",
            html_body,
            text_body,
            template_id="staging-complete",
            user_id=user_id,
            metadata={"job_id": job_id, "room_type": room_type, "style": style},
            category=EmailCategory.STAGING,
        )

    @staticmethod
    def send_staging_failed(
        to: str,
        user_id: str,
        job_id: str,
        room_type: str,
        error: str,
    ) -> EmailResult:
        html_body, text_body = _render(
            "We hit a snag with your staging",
            [
                f"Staging your {room_type.lower()} didn't finish: {error}",
                "No credits were charged. You can try again from your dashboard.",
            ],
            "Try again",
            f"{settings.app_url}/stage",
        )
        return EmailService.send_email(
            to,
            "We hit a snag with your staging",
            html_body,
            text_body,
            template_id="staging-failed",
            user_id=user_id,
            metadata={"job_id": job_id, "error": error},
            category=EmailCategory.STAGING,
        )

    @staticmethod
    def send_low_credits(to: str, user_id: str, credits_remaining: int) -> EmailResult:
        subject = f"You have {credits_remaining} staging credits remaining"
        html_body, text_body = _render(
            subject,
            ["Top up or upgrade your plan to keep staging without interruption."],
            "Get more credits",
            f"{settings.app_url}/billing",
        )
        return EmailService.send_email(
            to, subject, html_body, text_body,
            template_id="credit-low",
            user_id=user_id,
            metadata={"credits_remaining": credits_remaining},
            category=EmailCategory.STAGING,
        )

    @staticmethod
    def send_team_invitation(
        to: str,
        inviter_name: str,
        organization_name: str,
        initial_credits: int,
        invitation_token: str,
        expires_in_days: int = INVITATION_EXPIRY_DAYS,
    ) -> EmailResult:
        accept_url = f"{settings.app_url}/invite/accept?token={invitation_token}"
        subject = f"You've been invited to join {organization_name} on Stager"
        paragraphs = [f"{inviter_name} invited you to join {organization_name}."]
        if initial_credits:
            paragraphs.append(f"You'll start with {initial_credits} staging credits.")
        paragraphs.append(f"This invitation expires in {expires_in_days} days.")

        html_body, text_body = _render(subject, paragraphs, "Accept invitation", accept_url)
        return EmailService.send_email(
            to, subject, html_body, text_body,
            template_id="team-invitation",
            metadata={"organization_name": organization_name, "initial_credits": initial_credits},
        )

    @staticmethod
    def send_team_welcome(
        to: str,
        user_id: str,
        organization_name: str,
        credits: int,
    ) -> EmailResult:
        subject = f"Welcome to {organization_name} on Stager!"
        html_body, text_body = _render(
            subject,
            [f"You now have {credits} credits to stage listings for {organization_name}."],
            "Stage your first photo",
            f"{settings.app_url}/stage",
        )
        return EmailService.send_email(
            to, subject, html_body, text_body,
            template_id="team-welcome",
            user_id=user_id,
            metadata={"organization_name": organization_name},
            category=EmailCategory.TEAM,
        )
