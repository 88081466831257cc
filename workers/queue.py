# =============================================================================
# workers/queue.py - Background Job Publishing
# =============================================================================
# Publishes jobs to one of two backends, chosen by QUEUE_BACKEND:
# - celery (default): sends workers.tasks.process_job through the Redis broker
# - qstash: POSTs the job to Upstash QStash, which delivers it to
#   POST /api/v1/jobs/process with a signed Upstash-Signature header
#
# Both backends end in workers.processor.process_job(payload).
#
# Usage:
#   from workers import queue
#   queue.queue_staging_job(job_id, user_id)
# =============================================================================

import logging
import time
from typing import Any

import httpx

from app.config import settings
from core.models.jobs import JobOptions, JobPayload, JobType, JobMetadata
from lib.redis_client import claim_dedup_key
from lib.utils import ApplicationError

logger = logging.getLogger(__name__)

PROCESS_TASK_NAME = "workers.tasks.process_job"


class QueuePublishError(ApplicationError):
    """Raised when a job can't be handed to the queue backend."""

    def __init__(self, job_type: str, error: str):
        super().__init__(
            f"Failed to publish job {job_type}: {error}",
            code="QUEUE_PUBLISH_FAILED",
            suggestion="Check REDIS_URL (celery) or QSTASH_TOKEN (qstash)",
            details={"job_type": job_type},
        )


def is_queue_configured() -> bool:
    """True when the selected backend has what it needs to publish."""
    if settings.QUEUE_BACKEND == "qstash":
        return bool(settings.QSTASH_TOKEN)
    return bool(settings.REDIS_URL)


# =============================================================================
# Backends
# =============================================================================

def _publish_celery(payload: JobPayload, options: JobOptions) -> str | None:
    from workers.celery_app import celery_app

    if options.deduplication_id and not claim_dedup_key(options.deduplication_id):
        logger.info(f"Skipping duplicate job {payload.type} ({options.deduplication_id})")
        return None

    result = celery_app.send_task(
        PROCESS_TASK_NAME,
        args=[payload.to_message()],
        kwargs={"max_retries": options.retries},
        countdown=options.delay,
    )
    return result.id


def _qstash_headers(options: JobOptions) -> dict[str, str]:
    headers = {
        "Authorization": f"Bearer {settings.QSTASH_TOKEN}",
        "Content-Type": "application/json",
        "Upstash-Retries": str(options.retries),
    }
    if options.delay:
        headers["Upstash-Delay"] = f"{options.delay}s"
    if options.deduplication_id:
        headers["Upstash-Deduplication-Id"] = options.deduplication_id
    return headers


def _publish_qstash(payload: JobPayload, options: JobOptions) -> str | None:
    if not settings.QSTASH_TOKEN:
        logger.warning(f"QStash not configured, dropping job {payload.type}. Set QSTASH_TOKEN.")
        return None

    response = httpx.post(
        f"{settings.QSTASH_URL.rstrip('/')}/v2/publish/{settings.queue_webhook_url}",
        headers=_qstash_headers(options),
        json=payload.to_message(),
        timeout=15,
    )
    response.raise_for_status()
    return response.json().get("messageId")


# =============================================================================
# Publishing
# =============================================================================

def publish_job(
    job_type: JobType,
    data: dict[str, Any],
    options: JobOptions | None = None,
) -> str | None:
    """
    Publish a job.

    Args:
        job_type: What the processor should do
        data: Job-specific data (camelCase keys)
        options: Delay, retries and deduplication

    Returns:
        Message/task ID, or None when the job was dropped (QStash not
        configured, or a duplicate deduplication ID)

    Raises:
        QueuePublishError: If the backend rejects the job
    """
    options = options or JobOptions()
    payload = JobPayload(type=job_type.value, data=data)

    try:
        if settings.QUEUE_BACKEND == "qstash":
            message_id = _publish_qstash(payload, options)
        else:
            message_id = _publish_celery(payload, options)
    except Exception as e:
        logger.error(f"Failed to publish job {job_type.value}: {e}")
        raise QueuePublishError(job_type.value, str(e))

    logger.info(
        f"Published job {job_type.value} [{message_id}] "
        f"correlation={payload.metadata.correlation_id}"
    )
    return message_id


def schedule_job(
    job_type: JobType,
    data: dict[str, Any],
    cron: str,
    schedule_id: str,
) -> str | None:
    """
    Create (or replace) a recurring QStash schedule.

    With the celery backend schedules live in CeleryConfig.beat_schedule,
    so this returns None.
    """
    if settings.QUEUE_BACKEND != "qstash":
        logger.info(f"Schedule {schedule_id} is managed by Celery beat")
        return None

    if not settings.QSTASH_TOKEN:
        logger.warning(f"Cannot schedule {schedule_id} - QStash not configured")
        return None

    payload = JobPayload(
        type=job_type.value,
        data=data,
        metadata=JobMetadata(correlation_id=schedule_id),
    )
    headers = _qstash_headers(JobOptions(cron=cron))
    headers["Upstash-Cron"] = cron
    headers["Upstash-Schedule-Id"] = schedule_id

    try:
        response = httpx.post(
            f"{settings.QSTASH_URL.rstrip('/')}/v2/schedules/{settings.queue_webhook_url}",
            headers=headers,
            json=payload.to_message(),
            timeout=15,
        )
        response.raise_for_status()
    except httpx.HTTPError as e:
        raise QueuePublishError(job_type.value, str(e))

    logger.info(f"Scheduled {job_type.value} as {schedule_id} ({cron})")
    return schedule_id


def delete_schedule(schedule_id: str) -> None:
    """Remove a QStash schedule. No-op for the celery backend."""
    if settings.QUEUE_BACKEND != "qstash" or not settings.QSTASH_TOKEN:
        return

    try:
        response = httpx.delete(
            f"{settings.QSTASH_URL.rstrip('/')}/v2/schedules/{schedule_id}",
            headers={"Authorization": f"Bearer {settings.QSTASH_TOKEN}"},
            timeout=15,
        )
        response.raise_for_status()
    except httpx.HTTPError as e:
        raise QueuePublishError("schedule.delete", str(e))


def initialize_scheduled_jobs() -> None:
    """Register the cleanup schedules with QStash."""
    from workers.config import CLEANUP_SCHEDULES

    for schedule in CLEANUP_SCHEDULES:
        schedule_job(
            schedule["type"],
            schedule["data"],
            schedule["cron"],
            schedule["id"],
        )


# =============================================================================
# Job-specific helpers
# =============================================================================

def queue_staging_job(job_id: str, user_id: str) -> str | None:
    return publish_job(
        JobType.STAGING_PROCESS,
        {"jobId": job_id, "userId": user_id},
        JobOptions(retries=3),
    )


def queue_staging_complete(job_id: str, user_id: str, staged_image_url: str) -> str | None:
    return publish_job(
        JobType.STAGING_COMPLETE,
        {"jobId": job_id, "userId": user_id, "stagedImageUrl": staged_image_url},
    )


def queue_staging_failed(job_id: str, user_id: str, error: str) -> str | None:
    return publish_job(
        JobType.STAGING_FAILED,
        {"jobId": job_id, "userId": user_id, "error": error},
    )


def queue_email(to: str, template: str, data: dict[str, Any]) -> str | None:
    return publish_job(
        JobType.EMAIL_SEND,
        {"to": to, "template": template, "data": data},
        JobOptions(retries=3),
    )


def queue_invitation_email(
    to: str,
    organization_name: str,
    inviter_name: str,
    invitation_token: str,
    initial_credits: int,
) -> str | None:
    return publish_job(
        JobType.EMAIL_INVITATION,
        {
            "to": to,
            "organizationName": organization_name,
            "inviterName": inviter_name,
            "invitationToken": invitation_token,
            "initialCredits": initial_credits,
        },
        JobOptions(retries=3, deduplication_id=f"invitation:{invitation_token}"),
    )


def queue_billing_sync(user_id: str, stripe_customer_id: str) -> str | None:
    return publish_job(
        JobType.BILLING_SYNC,
        {"userId": user_id, "stripeCustomerId": stripe_customer_id},
        JobOptions(
            retries=5,
            deduplication_id=f"billing:{user_id}:{int(time.time() * 1000)}",
        ),
    )
