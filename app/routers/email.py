# =============================================================================
# app/routers/email.py - Email Preferences & Unsubscribe
# =============================================================================
# - GET/PATCH /email/preferences: the caller's opt-in switches
# - GET/POST /email/unsubscribe?token=...: one-click link from an email,
#   no login needed. POST is what mail clients send for List-Unsubscribe.
# =============================================================================

import html
import logging
from typing import Annotated

from fastapi import APIRouter, Header, Query
from fastapi.responses import HTMLResponse

from app.config import settings
from app.dependencies import CurrentUser
from core.models.email import EmailPreferencesUpdate
from core.services.email_preferences_service import EmailPreferencesService, serialize_preferences

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/preferences")
async def get_preferences(user: CurrentUser):
    """The caller's email preferences. Created with everything on if missing."""
    return {"preferences": serialize_preferences(EmailPreferencesService.get_preferences(user.id))}


@router.patch("/preferences")
async def update_preferences(request: EmailPreferencesUpdate, user: CurrentUser):
    """Change any subset of the email categories."""
    row = EmailPreferencesService.update_preferences(user.id, request)
    return {"preferences": serialize_preferences(row)}


def _unsubscribed_page(message: str) -> HTMLResponse:
    settings_url = html.escape(f"{settings.app_url}/settings?tab=notifications")
    return HTMLResponse(
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\"><title>Unsubscribed - Stager</title></head>"
        f"<body><h1>You've been unsubscribed</h1><p>{html.escape(message)}</p>"
        f"<p><a href=\"{settings_url}\">Manage email preferences</a></p></body></html>"
    )


@router.api_route("/unsubscribe", methods=["GET", "POST"])
async def unsubscribe(
    token: Annotated[str, Query(min_length=1)],
    accept: Annotated[str | None, Header()] = None,
):
    """
    Unsubscribe using the signed token from an email link.

    Tokens name a category, or none for every marketing email. Browsers
    (Accept: text/html) get a confirmation page; other callers get JSON.
    """
    user_id, category = EmailPreferencesService.read_unsubscribe_token(token)
    row = EmailPreferencesService.unsubscribe(user_id, category)

    if category:
        message = f"You will no longer receive {category.value.replace('_', ' ')} emails."
    else:
        message = "You will no longer receive marketing emails from Stager."

    if accept and "text/html" in accept:
        return _unsubscribed_page(message)
    return {"message": message, "preferences": serialize_preferences(row)}
