# =============================================================================
# core/services/staging_service.py - Staging Job Business Logic
# =============================================================================
# Handles the lifecycle of a staging job:
#
#   create_job()       queued      original uploaded, job published
#   start_processing() processing  Replicate prediction started
#   complete_job()     uploading -> completed, credits charged
#   fail_job()         failed
#
# Completion arrives through the Replicate webhook, or through
# refresh_from_provider() when a client polls a processing job.
# =============================================================================

import logging
import time
from typing import Any
from uuid import UUID, uuid4

from lib.supabase_client import SupabaseClient
from lib.utils import normalize_uuid, parse_timestamp, utc_now, utc_now_iso
from app.config import settings
from app.exceptions import (
    InsufficientCreditsError,
    JobNotFoundError,
    ProviderError,
    QueueUnavailableError,
)
from core.constants import (
    CREDITS_PER_STAGING,
    DEFAULT_PROVIDER,
    DEFAULT_TIME_ESTIMATE,
    LOW_CREDITS_THRESHOLD,
    PROVIDER_TIME_ESTIMATES,
    STAGING_TOTAL_STEPS,
)
from core.models.billing import CreditTransactionType
from core.models.staging import ProgressInfo, StagingJobStatus, StagingRequest
from core.services.credit_service import CreditService
from core.services import notification_service
from core.services.notification_service import NotificationService
from core.services.replicate_service import (
    ReplicateService,
    TERMINAL_FAILURES,
    TERMINAL_SUCCESS,
    extract_output_url,
)
from core.services.storage_service import StorageService
from workers import queue
from workers.queue import QueuePublishError

logger = logging.getLogger(__name__)

# Statuses a finished prediction may move out of into uploading
CLAIMABLE_STATUSES = [
    StagingJobStatus.PENDING.value,
    StagingJobStatus.QUEUED.value,
    StagingJobStatus.PREPROCESSING.value,
    StagingJobStatus.PROCESSING.value,
]


# =============================================================================
# Progress Reporting
# =============================================================================

_PROGRESS_STEPS: dict[str, tuple[str, int, str]] = {
    "pending": ("queued", 1, "Job queued, waiting to start..."),
    "queued": ("queued", 1, "Job queued, waiting to start..."),
    "preprocessing": ("preprocessing", 2, "Analyzing room..."),
    "processing": ("generating", 3, "Generating staged image with AI..."),
    "uploading": ("uploading", 4, "Uploading final image..."),
    "completed": ("completed", 4, "Staging complete!"),
    "failed": ("failed", 0, "Staging failed"),
}

# Fraction of the work done when a job enters each state
_STEP_PROGRESS: dict[str, float] = {
    "pending": 0.0,
    "queued": 0.0,
    "preprocessing": 0.2,
    "processing": 0.5,
    "uploading": 0.9,
}


def get_progress_info(status: str) -> ProgressInfo:
    """Map a job status to the step shown in the UI."""
    step, number, message = _PROGRESS_STEPS.get(status, ("unknown", 0, "Unknown status"))
    return ProgressInfo(
        step=step,
        step_number=number,
        total_steps=STAGING_TOTAL_STEPS,
        message=message,
    )


def estimate_time_remaining(
    status: str,
    provider: str | None,
    created_at: str | None,
    now: float | None = None,
) -> int | None:
    """
    Estimate seconds until a job finishes.

    Returns None for completed and failed jobs.
    """
    if status in (StagingJobStatus.COMPLETED.value, StagingJobStatus.FAILED.value):
        return None

    total = PROVIDER_TIME_ESTIMATES.get(provider or "", DEFAULT_TIME_ESTIMATE)
    progress = _STEP_PROGRESS.get(status, 0.0)

    created = parse_timestamp(created_at)
    current = time.time() if now is None else now
    elapsed = current - created.timestamp() if created else 0.0

    remaining = max(0.0, total * (1 - progress) - elapsed * progress)
    return round(remaining)


def serialize_job(job: dict[str, Any]) -> dict[str, Any]:
    """Job row -> camelCase status response."""
    status = job.get("status", "pending")
    provider = job.get("provider") or DEFAULT_PROVIDER
    return {
        "jobId": job["id"],
        "status": status,
        "progress": get_progress_info(status).model_dump(by_alias=True),
        "provider": provider,
        "estimatedTimeRemaining": estimate_time_remaining(status, provider, job.get("created_at")),
        "stagedImageUrl": job.get("staged_image_url"),
        "originalImageUrl": job.get("original_image_url"),
        "error": job.get("error_message"),
        "roomType": job.get("room_type"),
        "style": job.get("style"),
        "propertyId": job.get("property_id"),
        "createdAt": job.get("created_at"),
        "completedAt": job.get("completed_at"),
        "processingTimeMs": job.get("processing_time_ms"),
        "versionGroupId": job.get("version_group_id"),
        "isPrimaryVersion": job.get("is_primary_version", False),
        "parentJobId": job.get("parent_job_id"),
    }


class StagingService:
    """
    Service for staging job operations.

    Provides a clean interface between API routes, workers and the database.
    """

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    @staticmethod
    def get_job(job_id: UUID | str, user_id: UUID | str | None = None) -> dict[str, Any]:
        """
        Get a staging job.

        Raises:
            JobNotFoundError: If the job doesn't exist or the user doesn't own it
        """
        job = SupabaseClient.fetch_staging_job(job_id, user_id=user_id)
        if not job:
            raise JobNotFoundError(str(job_id))
        return job

    @staticmethod
    def list_jobs(
        user_id: UUID | str,
        page: int = 1,
        page_size: int = 20,
        status: StagingJobStatus | None = None,
        property_id: UUID | str | None = None,
    ) -> tuple[list[dict[str, Any]], int]:
        """
        List a user's staging jobs, newest first.

        Returns:
            (jobs, total)
        """
        client = SupabaseClient.get_client()
        offset = (page - 1) * page_size

        query = (
            client.table("staging_jobs")
            .select("*", count="exact")
            .eq("user_id", normalize_uuid(user_id))
        )
        if status:
            query = query.eq("status", status.value)
        if property_id:
            query = query.eq("property_id", normalize_uuid(property_id))

        response = (
            query.order("created_at", desc=True)
            .range(offset, offset + page_size - 1)
            .execute()
        )
        return response.data or [], response.count or 0

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    @staticmethod
    def create_job(user_id: UUID | str, request: StagingRequest) -> dict[str, Any]:
        """
        Create a staging job and queue it for processing.

        Steps:
        1. Check the user can afford CREDITS_PER_STAGING
        2. Decode and upload the original image
        3. Insert the job as `queued`
        4. Publish staging.process

        Credits are charged when the job completes, not here.

        Raises:
            InsufficientCreditsError: If the user can't pay
            InvalidImageError: If the image is unusable
            StorageUploadError: If the original can't be stored
            QueueUnavailableError: If the job can't be queued
        """
        user_id_str = normalize_uuid(user_id)

        credits = CreditService.check_credits(user_id_str, CREDITS_PER_STAGING)
        if not credits.sufficient:
            raise InsufficientCreditsError(CREDITS_PER_STAGING, credits.available)

        content = StorageService.decode_image(request.image, request.mime_type)

        job_id = str(uuid4())
        original_url = StorageService.upload_original(
            user_id_str, job_id, content, request.mime_type
        )

        job = StagingService.insert_job({
            "id": job_id,
            "user_id": user_id_str,
            "property_id": str(request.property_id) if request.property_id else None,
            "original_image_url": original_url,
            "room_type": request.room_type,
            "style": request.style,
            "status": StagingJobStatus.QUEUED.value,
            "provider": DEFAULT_PROVIDER,
            "credits_used": CREDITS_PER_STAGING,
        })

        StagingService.enqueue(job)

        return {
            "jobId": job["id"],
            "status": job["status"],
            "async": True,
            "provider": DEFAULT_PROVIDER,
            "pollUrl": f"/api/v1/staging/{job['id']}",
            "estimatedTimeSeconds": PROVIDER_TIME_ESTIMATES.get(DEFAULT_PROVIDER, DEFAULT_TIME_ESTIMATE),
        }

    @staticmethod
    def insert_job(data: dict[str, Any]) -> dict[str, Any]:
        """Insert a staging_jobs row and return it."""
        client = SupabaseClient.get_client()

        response = client.table("staging_jobs").insert(data).execute()
        if not response.data:
            raise Exception("Insert returned no data")

        job = response.data[0]
        logger.info(f"Created staging job {job['id']} for user {job['user_id']}")
        return job

    @staticmethod
    def enqueue(job: dict[str, Any]) -> None:
        """
        Publish staging.process for a job.

        A job that can't be queued is marked failed so it doesn't sit in
        `queued` forever.
        """
        try:
            queue.queue_staging_job(job["id"], job["user_id"])
        except QueuePublishError as e:
            StagingService.update_job(job["id"], {
                "status": StagingJobStatus.FAILED.value,
                "error_message": "Failed to queue staging job",
            })
            raise QueueUnavailableError(str(e))

    # -------------------------------------------------------------------------
    # Updates
    # -------------------------------------------------------------------------

    @staticmethod
    def update_job(job_id: UUID | str, data: dict[str, Any]) -> None:
        SupabaseClient.get_client().table("staging_jobs").update(data).eq(
            "id", normalize_uuid(job_id)
        ).execute()

    @staticmethod
    def claim_for_upload(job_id: UUID | str) -> bool:
        """
        Move a job into uploading if nothing else has.

        The status filter makes this a compare-and-set, so when a webhook and
        a status poll see the same finished prediction only one of them wins.
        """
        response = (
            SupabaseClient.get_client()
            .table("staging_jobs")
            .update({"status": StagingJobStatus.UPLOADING.value})
            .eq("id", normalize_uuid(job_id))
            .in_("status", CLAIMABLE_STATUSES)
            .execute()
        )
        return bool(response.data)

    @staticmethod
    def delete_job(job_id: UUID | str, user_id: UUID | str) -> None:
        """
        Delete a user's staging job.

        Raises:
            JobNotFoundError: If the job doesn't exist or the user doesn't own it
        """
        job = StagingService.get_job(job_id, user_id=user_id)
        (
            SupabaseClient.get_client()
            .table("staging_jobs")
            .delete()
            .eq("id", job["id"])
            .eq("user_id", normalize_uuid(user_id))
            .execute()
        )
        logger.info(f"Deleted staging job {job['id']}")

    # -------------------------------------------------------------------------
    # Processing (called from the job processor)
    # -------------------------------------------------------------------------

    @staticmethod
    def start_processing(job_id: str, user_id: str) -> None:
        """
        Start the provider run for a queued job.

        Jobs that already completed or failed are left alone, so redelivered
        jobs are harmless.

        Raises:
            JobNotFoundError: If the job is gone
            ProviderError: If the prediction can't be started (the job is
                marked failed first)
        """
        job = StagingService.get_job(job_id, user_id=user_id)

        if job.get("status") in (StagingJobStatus.COMPLETED.value, StagingJobStatus.FAILED.value):
            logger.info(f"Job {job_id} already processed with status: {job['status']}")
            return

        if job.get("replicate_prediction_id"):
            logger.info(f"Job {job_id} already has prediction {job['replicate_prediction_id']}")
            return

        StagingService.update_job(job_id, {"status": StagingJobStatus.PROCESSING.value})

        try:
            prediction = ReplicateService.create_prediction(
                image_url=job["original_image_url"],
                room_type=job["room_type"],
                style=job["style"],
                job_id=job_id,
                webhook_url=settings.replicate_webhook_url,
            )
        except ProviderError as e:
            StagingService.fail_job(job, e.message)
            raise

        StagingService.update_job(job_id, {"replicate_prediction_id": prediction["id"]})

    @staticmethod
    def complete_job(job: dict[str, Any], output_url: str) -> dict[str, Any]:
        """
        Store the provider output and mark the job completed.

        Downloads the output, uploads it to our bucket (falling back to the
        provider URL if that fails), charges the job's credits, logs the
        transaction and queues staging.complete.

        Returns:
            The updated job fields, or the job unchanged when another caller
            is already completing it
        """
        job_id = job["id"]
        user_id = job["user_id"]

        if not StagingService.claim_for_upload(job_id):
            logger.info(f"Job {job_id} is already being completed elsewhere")
            return job

        try:
            content, content_type = StorageService.download_url(output_url)
            staged_url = StorageService.upload_staged(user_id, job_id, content, content_type)
        except Exception as e:
            logger.error(f"Could not store output for job {job_id}, using provider URL: {e}")
            staged_url = output_url

        created = parse_timestamp(job.get("created_at"))
        processing_ms = int((utc_now() - created).total_seconds() * 1000) if created else None

        updates = {
            "status": StagingJobStatus.COMPLETED.value,
            "staged_image_url": staged_url,
            "completed_at": utc_now_iso(),
            "processing_time_ms": processing_ms,
        }
        StagingService.update_job(job_id, updates)

        StagingService._charge_for_job(job)

        try:
            queue.queue_staging_complete(job_id, user_id, staged_url)
        except QueuePublishError as e:
            logger.error(f"Could not queue completion notice for job {job_id}: {e}")

        logger.info(f"Job {job_id} completed in {processing_ms}ms")
        return {**job, **updates}

    @staticmethod
    def _charge_for_job(job: dict[str, Any]) -> None:
        amount = job.get("credits_used")
        if amount is None:
            amount = CREDITS_PER_STAGING
        if amount <= 0:
            return

        result = CreditService.deduct_credits(job["user_id"], amount, skip_pre_check=True)
        if not result.success:
            logger.error(f"Failed to charge job {job['id']}: {result.error}")
            return

        CreditService.log_credit_transaction(
            CreditTransactionType.STAGING_DEDUCTION,
            amount=-result.deducted,
            balance_after=result.new_balance,
            user_id=job["user_id"],
            reference_id=job["id"],
            description="Virtual staging",
        )

        if result.new_balance <= LOW_CREDITS_THRESHOLD < result.previous_balance:
            StagingService._warn_low_credits(job["user_id"], result.new_balance)

    @staticmethod
    def _warn_low_credits(user_id: str, credits_remaining: int) -> None:
        NotificationService.create_notification(
            user_id,
            notification_service.LOW_CREDITS,
            "Running Low on Credits",
            f"You have {credits_remaining} staging credits remaining.",
            "/billing",
        )

        profile = SupabaseClient.fetch_profile(user_id)
        if not profile or not profile.get("email"):
            return
        try:
            queue.queue_email(
                profile["email"],
                "credit-low",
                {"userId": user_id, "creditsRemaining": credits_remaining},
            )
        except QueuePublishError as e:
            logger.warning(f"Could not queue low credit email for {user_id}: {e}")

    @staticmethod
    def fail_job(job: dict[str, Any], error_message: str) -> None:
        """Mark a job failed and queue staging.failed."""
        job_id = job["id"]

        StagingService.update_job(job_id, {
            "status": StagingJobStatus.FAILED.value,
            "error_message": error_message,
            "completed_at": utc_now_iso(),
        })

        try:
            queue.queue_staging_failed(job_id, job["user_id"], error_message)
        except QueuePublishError as e:
            logger.error(f"Could not queue failure notice for job {job_id}: {e}")

        logger.warning(f"Job {job_id} failed: {error_message}")

    @staticmethod
    def apply_prediction(job: dict[str, Any], prediction: dict[str, Any]) -> dict[str, Any]:
        """
        Apply a Replicate prediction state to its job.

        Returns:
            The job with any changes applied; unfinished predictions and
            jobs that already finished are left untouched
        """
        if StagingJobStatus(job.get("status", "pending")).is_terminal:
            return job

        status = prediction.get("status")

        if status == TERMINAL_SUCCESS:
            output_url = extract_output_url(prediction.get("output"))
            if output_url:
                return StagingService.complete_job(job, output_url)
            message = "Provider returned no output"
        elif status in TERMINAL_FAILURES:
            message = prediction.get("error") or f"Replicate prediction {status}"
        else:
            return job

        StagingService.fail_job(job, message)
        return {**job, "status": StagingJobStatus.FAILED.value, "error_message": message}

    @staticmethod
    def refresh_from_provider(job: dict[str, Any]) -> dict[str, Any]:
        """
        Poll the provider for a processing job.

        Provider errors are logged and the stored job returned unchanged.
        """
        if job.get("status") != StagingJobStatus.PROCESSING.value:
            return job
        if not job.get("replicate_prediction_id"):
            return job

        try:
            prediction = ReplicateService.get_prediction(job["replicate_prediction_id"])
        except ProviderError as e:
            logger.warning(f"Could not poll prediction for job {job['id']}: {e}")
            return job

        return StagingService.apply_prediction(job, prediction)

    @staticmethod
    def get_job_status(job_id: UUID | str, user_id: UUID | str) -> dict[str, Any]:
        """Owner-scoped status with progress, polling the provider if needed."""
        job = StagingService.get_job(job_id, user_id=user_id)
        job = StagingService.refresh_from_provider(job)
        return serialize_job(job)
