# =============================================================================
# workers/processor.py - Background Job Processor
# =============================================================================
# Runs one job from the queue. Both delivery paths end here:
# - Celery: workers.tasks.process_job
# - QStash: POST /api/v1/jobs/process
#
# process_job() never raises. A failed ProcessResult tells the caller to
# let the queue retry.
# =============================================================================

import logging
import time
from datetime import timedelta
from typing import Any, Callable

from pydantic import ValidationError

from app.config import settings
from core.constants import OLD_JOB_RETENTION_DAYS, room_label, style_label
from core.models.jobs import JobPayload, JobType, ProcessResult
from core.models.staging import StagingJobStatus
from core.services import notification_service
from core.services.billing_service import BillingService
from core.services.email_service import EmailResult, EmailService
from core.services.invitation_service import InvitationService
from core.services.notification_service import NotificationService
from core.services.staging_service import StagingService
from lib.supabase_client import SupabaseClient
from lib.utils import utc_now_iso

logger = logging.getLogger(__name__)


def _require_sent(result: EmailResult) -> None:
    # Unconfigured email and opted-out recipients are skipped; a configured send that failed is retried
    if not result.success and not result.skipped and settings.RESEND_API_KEY:
        raise RuntimeError(result.error or "Email delivery failed")


def _recipient(user_id: str) -> str | None:
    profile = SupabaseClient.fetch_profile(user_id) or {}
    return profile.get("email")


# =============================================================================
# Handlers
# =============================================================================

def handle_staging_process(data: dict[str, Any]) -> None:
    StagingService.start_processing(data["jobId"], data["userId"])


def handle_staging_complete(data: dict[str, Any]) -> None:
    job_id, user_id = data["jobId"], data["userId"]

    NotificationService.create_notification_once(
        user_id,
        notification_service.STAGING_COMPLETE,
        "Staging Complete",
        "Your virtual staging is ready to view.",
        f"/history?job={job_id}",
    )

    email = _recipient(user_id)
    job = SupabaseClient.fetch_staging_job(job_id)
    if email and job:
        _require_sent(EmailService.send_staging_complete(
            email,
            user_id,
            job_id,
            room_label(job.get("room_type", "")),
            style_label(job.get("style", "")),
            data.get("stagedImageUrl") or job.get("staged_image_url") or "",
        ))

    logger.info(f"Notified user {user_id} of staging completion for job {job_id}")


def handle_staging_failed(data: dict[str, Any]) -> None:
    job_id, user_id = data["jobId"], data["userId"]
    error = data.get("error") or "Unknown error"

    NotificationService.create_notification_once(
        user_id,
        notification_service.STAGING_FAILED,
        "Staging Failed",
        f"Your staging job encountered an error: {error}",
        f"/history?job={job_id}",
    )

    email = _recipient(user_id)
    job = SupabaseClient.fetch_staging_job(job_id)
    if email and job:
        _require_sent(EmailService.send_staging_failed(
            email,
            user_id,
            job_id,
            room_label(job.get("room_type", "")),
            error,
        ))

    logger.info(f"Notified user {user_id} of staging failure for job {job_id}")


def handle_email_send(data: dict[str, Any]) -> None:
    to = data["to"]
    template = data["template"]
    values = data.get("data") or {}

    if template == "credit-low":
        result = EmailService.send_low_credits(to, values.get("userId"), values.get("creditsRemaining", 0))
    elif template == "team-welcome":
        result = EmailService.send_team_welcome(
            to, values.get("userId"), values.get("organizationName", ""), values.get("credits", 0)
        )
    elif template == "team-invitation":
        result = EmailService.send_team_invitation(
            to,
            values.get("inviterName", ""),
            values.get("organizationName", ""),
            values.get("initialCredits", 0),
            values["invitationToken"],
        )
    else:
        raise ValueError(f"Unknown email template: {template}")

    _require_sent(result)
    logger.info(f"Sent email to {to} using template {template}")


def handle_email_invitation(data: dict[str, Any]) -> None:
    _require_sent(EmailService.send_team_invitation(
        data["to"],
        data.get("inviterName", ""),
        data.get("organizationName", ""),
        data.get("initialCredits", 0),
        data["invitationToken"],
    ))
    logger.info(f"Sent invitation email to {data['to']} for {data.get('organizationName')}")


def handle_billing_sync(data: dict[str, Any]) -> None:
    BillingService.sync_subscription(data["userId"], data["stripeCustomerId"])


def handle_cleanup_expired_invitations(data: dict[str, Any]) -> None:
    InvitationService.expire_stale_invitations()


def handle_cleanup_old_jobs(data: dict[str, Any]) -> None:
    days_old = int(data.get("daysOld") or OLD_JOB_RETENTION_DAYS)
    cutoff = utc_now_iso(-timedelta(days=days_old))

    response = (
        SupabaseClient.get_client()
        .table("staging_jobs")
        .delete()
        .eq("status", StagingJobStatus.COMPLETED.value)
        .lt("created_at", cutoff)
        .execute()
    )
    logger.info(f"Cleaned up {len(response.data or [])} staging jobs older than {days_old} days")


JOB_HANDLERS: dict[str, Callable[[dict[str, Any]], None]] = {
    JobType.STAGING_PROCESS.value: handle_staging_process,
    JobType.STAGING_COMPLETE.value: handle_staging_complete,
    JobType.STAGING_FAILED.value: handle_staging_failed,
    JobType.EMAIL_SEND.value: handle_email_send,
    JobType.EMAIL_INVITATION.value: handle_email_invitation,
    JobType.BILLING_SYNC.value: handle_billing_sync,
    JobType.CLEANUP_EXPIRED_INVITATIONS.value: handle_cleanup_expired_invitations,
    JobType.CLEANUP_OLD_JOBS.value: handle_cleanup_old_jobs,
}


# =============================================================================
# Entry Point
# =============================================================================

def process_job(payload: JobPayload | dict[str, Any]) -> ProcessResult:
    """
    Run the handler for a job.

    Args:
        payload: A JobPayload, or its JSON form as delivered by the queue

    Returns:
        ProcessResult with duration in milliseconds
    """
    start = time.monotonic()

    def elapsed() -> int:
        return int((time.monotonic() - start) * 1000)

    if not isinstance(payload, JobPayload):
        try:
            payload = JobPayload.model_validate(payload)
        except ValidationError as e:
            logger.error(f"Malformed job payload: {e}")
            return ProcessResult(success=False, error="Malformed job payload", duration=elapsed())

    correlation_id = payload.metadata.correlation_id
    logger.info(
        f"Processing job {payload.type} correlation={correlation_id} "
        f"attempt={payload.metadata.attempt}"
    )

    handler = JOB_HANDLERS.get(payload.type)
    if handler is None:
        logger.error(f"Unknown job type: {payload.type}")
        return ProcessResult(success=False, error=f"Unknown job type: {payload.type}", duration=elapsed())

    try:
        handler(payload.data)
    except Exception as e:
        logger.exception(f"Job {payload.type} failed correlation={correlation_id}: {e}")
        return ProcessResult(success=False, error=str(e), duration=elapsed())

    duration = elapsed()
    logger.info(f"Completed job {payload.type} in {duration}ms")
    return ProcessResult(success=True, duration=duration)
