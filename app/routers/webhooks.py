# =============================================================================
# app/routers/webhooks.py - Inbound Webhooks
# =============================================================================
# Callbacks from third parties. No user auth: every request is checked
# against the sender's signature instead.
# - POST /webhooks/stripe: subscription and payment events
# - POST /webhooks/replicate: prediction results
# =============================================================================

import json
import logging
from typing import Annotated

from fastapi import APIRouter, Header, HTTPException, Request

from app.config import settings
from app.exceptions import InvalidWebhookSignatureError
from core.services.billing_service import BillingService
from core.services.staging_service import StagingService
from lib.supabase_client import SupabaseClient
from lib.webhooks import validate_replicate_webhook, validate_stripe_webhook

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: Annotated[str | None, Header(alias="stripe-signature")] = None,
):
    """
    Receive a Stripe event.

    Returns 400 for a missing or forged signature, 500 if handling fails so
    Stripe redelivers.
    """
    payload = await request.body()

    validation = validate_stripe_webhook(payload, stripe_signature, settings.STRIPE_WEBHOOK_SECRET)
    if not validation.valid:
        logger.warning(f"Rejected Stripe webhook: {validation.error}")
        raise HTTPException(status_code=400, detail=validation.error or "Invalid signature")

    event = json.loads(payload)
    logger.info(f"Received Stripe event {event.get('type')} ({event.get('id')})")

    try:
        handled = BillingService.handle_event(event)
    except Exception as e:
        logger.exception(f"Error handling Stripe event {event.get('type')}: {e}")
        raise HTTPException(status_code=500, detail="Webhook handler failed")

    return {"received": True, "handled": handled}


@router.post("/replicate")
async def replicate_webhook(
    request: Request,
    webhook_signature: Annotated[str | None, Header(alias="webhook-signature")] = None,
):
    """
    Receive a Replicate prediction update.

    Completes or fails the matching staging job. Intermediate statuses and
    unknown predictions are acknowledged and ignored.
    """
    payload = (await request.body()).decode("utf-8")

    validation = validate_replicate_webhook(payload, webhook_signature, settings.REPLICATE_WEBHOOK_SECRET)
    if not validation.valid:
        logger.warning(f"Rejected Replicate webhook: {validation.error}")
        raise InvalidWebhookSignatureError(validation.error or "signature mismatch")

    try:
        prediction = json.loads(payload)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    prediction_id = prediction.get("id")
    prediction_status = prediction.get("status")

    job = SupabaseClient.fetch_job_by_prediction(prediction_id) if prediction_id else None
    if not job:
        logger.info(f"Ignoring Replicate webhook for unknown prediction {prediction_id}")
        return {"received": True, "status": "ignored"}

    job = StagingService.apply_prediction(job, prediction)
    logger.info(f"Replicate webhook: prediction {prediction_id} {prediction_status}, job {job['id']} {job.get('status')}")

    return {"received": True, "status": job.get("status")}
