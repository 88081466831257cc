# =============================================================================
# app/routers/jobs.py - Queue Delivery Endpoint
# =============================================================================
# QStash delivers published jobs here (QUEUE_BACKEND=qstash). With Celery,
# workers call the processor directly and this endpoint sits idle.
# =============================================================================

import json
import logging
from typing import Annotated

from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from app.config import settings
from app.exceptions import InvalidWebhookSignatureError
from lib.webhooks import verify_qstash_signature
from workers.processor import process_job

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/process")
async def process_queued_job(
    request: Request,
    upstash_signature: Annotated[str | None, Header(alias="Upstash-Signature")] = None,
):
    """
    Run one queued job.

    Outside development the `Upstash-Signature` JWT must verify against the
    raw body. A failed job answers 500 so QStash retries it.
    """
    body = await request.body()

    if settings.is_development:
        logger.debug("Development mode: skipping QStash signature verification")
    else:
        validation = verify_qstash_signature(
            upstash_signature,
            body,
            settings.QSTASH_CURRENT_SIGNING_KEY,
            settings.QSTASH_NEXT_SIGNING_KEY,
            url=settings.queue_webhook_url,
        )
        if not validation.valid:
            logger.warning(f"Rejected queued job delivery: {validation.error}")
            raise InvalidWebhookSignatureError(validation.error or "signature mismatch")

    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    result = process_job(payload)

    if not result.success:
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": result.error, "duration": result.duration},
        )

    return {"success": True, "duration": result.duration}
