# =============================================================================
# tests/test_staging_service.py - Staging Job Lifecycle Tests
# =============================================================================
# Tests for StagingService and its helpers:
# - progress steps and time estimates
# - job creation (credit check, image validation, queueing)
# - completion charging, low credit warnings, failure handling
# - prediction updates arriving more than once
#
# Run with: pytest tests/test_staging_service.py -v
# =============================================================================

import base64
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from app.exceptions import (
    InsufficientCreditsError,
    InvalidImageError,
    JobNotFoundError,
    ProviderError,
    QueueUnavailableError,
)
from core.models.staging import StagingRequest
from core.services.staging_service import (
    StagingService,
    estimate_time_remaining,
    get_progress_info,
    serialize_job,
)
from workers.queue import QueuePublishError

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def staging_request(**overrides) -> StagingRequest:
    return StagingRequest(**{
        "image": base64.b64encode(PNG_BYTES).decode(),
        "mimeType": "image/png",
        "roomType": "living-room",
        "style": "modern",
        **overrides,
    })


@pytest.fixture
def stored_images():
    """Skip Supabase Storage; return predictable URLs."""
    with patch(
        "core.services.staging_service.StorageService.upload_original",
        side_effect=lambda user_id, job_id, content, mime: f"https://cdn.test/{job_id}.png",
    ) as upload_original, patch(
        "core.services.staging_service.StorageService.download_url",
        return_value=(PNG_BYTES, "image/png"),
    ), patch(
        "core.services.staging_service.StorageService.upload_staged",
        side_effect=lambda user_id, job_id, content, mime: f"https://cdn.test/{job_id}-staged.png",
    ):
        yield upload_original


# =============================================================================
# Progress
# =============================================================================

class TestProgress:

    @pytest.mark.parametrize("status,step,number", [
        ("queued", "queued", 1),
        ("processing", "generating", 3),
        ("uploading", "uploading", 4),
        ("completed", "completed", 4),
        ("failed", "failed", 0),
    ])
    def test_progress_steps(self, status, step, number):
        info = get_progress_info(status)

        assert info.step == step
        assert info.step_number == number
        assert info.total_steps == 4

    def test_progress_serializes_camel_case(self):
        dumped = get_progress_info("processing").model_dump(by_alias=True)

        assert set(dumped) == {"step", "stepNumber", "totalSteps", "message"}

    def test_no_estimate_for_terminal_jobs(self):
        assert estimate_time_remaining("completed", "stable-diffusion", None) is None
        assert estimate_time_remaining("failed", "stable-diffusion", None) is None

    def test_queued_estimate_is_full_run(self):
        assert estimate_time_remaining("queued", "stable-diffusion", None) == 30

    def test_estimate_shrinks_with_elapsed_time(self):
        created = datetime(2024, 1, 15, 10, 0, 0, tzinfo=timezone.utc)
        now = created.timestamp() + 10

        remaining = estimate_time_remaining("processing", "stable-diffusion", created.isoformat(), now=now)

        # 30 * 0.5 - 10 * 0.5
        assert remaining == 10

    def test_estimate_never_negative(self):
        created = datetime(2024, 1, 15, 10, 0, 0, tzinfo=timezone.utc)

        assert estimate_time_remaining("uploading", None, created.isoformat(), now=created.timestamp() + 3600) == 0

    def test_serialize_job(self, completed_job):
        body = serialize_job(completed_job)

        assert body["jobId"] == completed_job["id"]
        assert body["estimatedTimeRemaining"] is None
        assert body["progress"]["stepNumber"] == 4
        assert body["stagedImageUrl"] == completed_job["staged_image_url"]


# =============================================================================
# Create
# =============================================================================

class TestCreateJob:

    def test_creates_queued_job(self, db, user_id, queued_jobs, stored_images):
        db.seed("profiles", {"id": user_id, "credits_remaining": 3})

        result = StagingService.create_job(user_id, staging_request())

        job = db.row("staging_jobs", id=result["jobId"])
        assert job["status"] == "queued"
        assert job["credits_used"] == 1
        assert job["original_image_url"] == f"https://cdn.test/{job['id']}.png"
        assert result["async"] is True
        assert result["pollUrl"] == f"/api/v1/staging/{job['id']}"
        assert queued_jobs == [("staging.process", {"jobId": job["id"], "userId": user_id})]

        # Charged on completion, not on creation
        assert db.row("profiles", id=user_id)["credits_remaining"] == 3

    def test_insufficient_credits(self, db, user_id, queued_jobs, stored_images):
        db.seed("profiles", {"id": user_id, "credits_remaining": 0})

        with pytest.raises(InsufficientCreditsError) as exc_info:
            StagingService.create_job(user_id, staging_request())

        assert exc_info.value.status_code == 402
        stored_images.assert_not_called()
        assert db.rows("staging_jobs") == []

    def test_rejects_invalid_base64(self, db, user_id, stored_images):
        db.seed("profiles", {"id": user_id, "credits_remaining": 3})

        with pytest.raises(InvalidImageError):
            StagingService.create_job(user_id, staging_request(image="not base64!!"))

    def test_rejects_oversized_image(self, db, user_id, stored_images):
        db.seed("profiles", {"id": user_id, "credits_remaining": 3})
        huge = base64.b64encode(b"\x00" * (10 * 1024 * 1024 + 1)).decode()

        with pytest.raises(InvalidImageError):
            StagingService.create_job(user_id, staging_request(image=huge))

    def test_queue_failure_marks_job_failed(self, db, user_id, stored_images):
        db.seed("profiles", {"id": user_id, "credits_remaining": 3})

        with patch("workers.queue.publish_job", side_effect=QueuePublishError("staging.process", "broker down")):
            with pytest.raises(QueueUnavailableError):
                StagingService.create_job(user_id, staging_request())

        job = db.rows("staging_jobs")[0]
        assert job["status"] == "failed"


# =============================================================================
# Processing
# =============================================================================

class TestStartProcessing:

    def test_starts_prediction(self, db, user_id, completed_job):
        db.row("staging_jobs", id=completed_job["id"])["status"] = "queued"

        with patch(
            "core.services.staging_service.ReplicateService.create_prediction",
            return_value={"id": "pred-1", "status": "starting"},
        ) as create_prediction:
            StagingService.start_processing(completed_job["id"], user_id)

        job = db.row("staging_jobs", id=completed_job["id"])
        assert job["status"] == "processing"
        assert job["replicate_prediction_id"] == "pred-1"
        assert create_prediction.call_args.kwargs["webhook_url"] == "https://app.test/api/v1/webhooks/replicate"

    def test_skips_finished_jobs(self, db, user_id, completed_job):
        with patch("core.services.staging_service.ReplicateService.create_prediction") as create_prediction:
            StagingService.start_processing(completed_job["id"], user_id)

        create_prediction.assert_not_called()

    def test_provider_error_fails_job(self, db, user_id, completed_job, queued_jobs):
        db.row("staging_jobs", id=completed_job["id"])["status"] = "queued"

        with patch(
            "core.services.staging_service.ReplicateService.create_prediction",
            side_effect=ProviderError("model unavailable"),
        ):
            with pytest.raises(ProviderError):
                StagingService.start_processing(completed_job["id"], user_id)

        assert db.row("staging_jobs", id=completed_job["id"])["status"] == "failed"
        assert queued_jobs[0][0] == "staging.failed"

    def test_missing_job(self, db, user_id):
        with pytest.raises(JobNotFoundError):
            StagingService.start_processing("00000000-0000-0000-0000-000000000000", user_id)


class TestCompletion:

    @pytest.fixture
    def processing_job(self, db, completed_job):
        job = db.row("staging_jobs", id=completed_job["id"])
        job.update({"status": "processing", "staged_image_url": None, "replicate_prediction_id": "pred-1"})
        return dict(job)

    def test_complete_stores_output_and_charges(self, db, user_id, processing_job, queued_jobs, stored_images):
        db.seed("profiles", {"id": user_id, "credits_remaining": 10})

        StagingService.apply_prediction(processing_job, {"status": "succeeded", "output": ["https://replicate.test/out.png"]})

        job = db.row("staging_jobs", id=processing_job["id"])
        assert job["status"] == "completed"
        assert job["staged_image_url"] == f"https://cdn.test/{job['id']}-staged.png"
        assert job["completed_at"] is not None
        assert db.row("profiles", id=user_id)["credits_remaining"] == 9

        transaction = db.row("credit_transactions", reference_id=job["id"])
        assert transaction["transaction_type"] == "staging_deduction"
        assert transaction["amount"] == -1
        assert transaction["balance_after"] == 9

        assert [job_type for job_type, _ in queued_jobs] == ["staging.complete"]

    def test_free_remix_is_not_charged(self, db, user_id, processing_job, queued_jobs, stored_images):
        db.seed("profiles", {"id": user_id, "credits_remaining": 10})
        processing_job["credits_used"] = 0

        StagingService.complete_job(processing_job, "https://replicate.test/out.png")

        assert db.row("profiles", id=user_id)["credits_remaining"] == 10
        assert db.rows("credit_transactions") == []

    def test_low_credit_warning_when_crossing_threshold(self, db, user_id, processing_job, queued_jobs, stored_images):
        db.seed("profiles", {"id": user_id, "credits_remaining": 4, "email": "agent@example.com"})

        StagingService.complete_job(processing_job, "https://replicate.test/out.png")

        notification = db.row("notifications", user_id=user_id)
        assert notification["type"] == "low_credits"
        assert ("email.send", {
            "to": "agent@example.com",
            "template": "credit-low",
            "data": {"userId": user_id, "creditsRemaining": 3},
        }) in queued_jobs

    def test_no_warning_when_already_low(self, db, user_id, processing_job, queued_jobs, stored_images):
        db.seed("profiles", {"id": user_id, "credits_remaining": 2, "email": "agent@example.com"})

        StagingService.complete_job(processing_job, "https://replicate.test/out.png")

        assert db.rows("notifications") == []

    def test_storage_failure_falls_back_to_provider_url(self, db, user_id, processing_job, queued_jobs):
        db.seed("profiles", {"id": user_id, "credits_remaining": 10})

        with patch(
            "core.services.staging_service.StorageService.download_url",
            side_effect=Exception("timeout"),
        ):
            StagingService.complete_job(processing_job, "https://replicate.test/out.png")

        assert db.row("staging_jobs", id=processing_job["id"])["staged_image_url"] == "https://replicate.test/out.png"

    def test_failed_prediction_fails_job(self, db, processing_job, queued_jobs):
        result = StagingService.apply_prediction(processing_job, {"status": "failed", "error": "NSFW content detected"})

        assert result["status"] == "failed"
        assert db.row("staging_jobs", id=processing_job["id"])["error_message"] == "NSFW content detected"
        assert queued_jobs[0] == ("staging.failed", {
            "jobId": processing_job["id"],
            "userId": processing_job["user_id"],
            "error": "NSFW content detected",
        })

    def test_intermediate_status_ignored(self, db, processing_job, queued_jobs):
        result = StagingService.apply_prediction(processing_job, {"status": "processing"})

        assert result["status"] == "processing"
        assert queued_jobs == []

    def test_redelivered_success_does_not_charge_twice(self, db, user_id, processing_job, queued_jobs, stored_images):
        db.seed("profiles", {"id": user_id, "credits_remaining": 10})
        prediction = {"status": "succeeded", "output": "https://replicate.test/out.png"}

        StagingService.apply_prediction(processing_job, prediction)
        StagingService.apply_prediction(db.row("staging_jobs", id=processing_job["id"]), prediction)

        assert db.row("profiles", id=user_id)["credits_remaining"] == 9

    def test_concurrent_completions_from_one_snapshot_charge_once(self, db, user_id, processing_job, queued_jobs, stored_images):
        db.seed("profiles", {"id": user_id, "credits_remaining": 5})
        prediction = {"status": "succeeded", "output": "https://replicate.test/out.png"}
        webhook_view = dict(processing_job)
        poll_view = dict(processing_job)

        first = StagingService.apply_prediction(webhook_view, prediction)
        second = StagingService.apply_prediction(poll_view, prediction)

        assert first["status"] == "completed"
        assert second["status"] == "processing"
        assert db.row("profiles", id=user_id)["credits_remaining"] == 4
        assert len(db.rows("credit_transactions", reference_id=processing_job["id"])) == 1
        assert [job_type for job_type, _ in queued_jobs] == ["staging.complete"]

    def test_job_already_uploading_is_not_claimed_again(self, db, user_id, processing_job, queued_jobs, stored_images):
        db.seed("profiles", {"id": user_id, "credits_remaining": 5})
        db.row("staging_jobs", id=processing_job["id"])["status"] = "uploading"

        StagingService.complete_job(processing_job, "https://replicate.test/out.png")

        assert db.row("staging_jobs", id=processing_job["id"])["status"] == "uploading"
        assert db.row("profiles", id=user_id)["credits_remaining"] == 5
        assert queued_jobs == []

    def test_status_poll_refreshes_from_provider(self, db, user_id, processing_job, queued_jobs, stored_images):
        db.seed("profiles", {"id": user_id, "credits_remaining": 10})

        with patch(
            "core.services.staging_service.ReplicateService.get_prediction",
            return_value={"id": "pred-1", "status": "succeeded", "output": ["https://replicate.test/out.png"]},
        ):
            body = StagingService.get_job_status(processing_job["id"], user_id)

        assert body["status"] == "completed"
        assert body["estimatedTimeRemaining"] is None


class TestListAndDelete:

    def test_list_jobs_paginates_newest_first(self, db, user_id):
        for index in range(3):
            db.seed("staging_jobs", {"user_id": user_id, "status": "completed", "created_at": f"2024-01-0{index + 1}T00:00:00+00:00"})
        db.seed("staging_jobs", {"user_id": "someone-else", "status": "completed"})

        jobs, total = StagingService.list_jobs(user_id, page=1, page_size=2)

        assert total == 3
        assert [job["created_at"][:10] for job in jobs] == ["2024-01-03", "2024-01-02"]

    def test_delete_is_owner_scoped(self, db, user_id, completed_job):
        with pytest.raises(JobNotFoundError):
            StagingService.delete_job(completed_job["id"], "someone-else")

        StagingService.delete_job(completed_job["id"], user_id)
        assert db.rows("staging_jobs") == []
