# =============================================================================
# workers/tasks.py - Celery Task Definitions
# =============================================================================
# Celery is one of the two queue backends (see workers/queue.py). Every
# published job arrives here as a JobPayload dict and is handed to
# workers.processor.process_job().
#
# Tasks:
# - process_job: Run one background job, retrying through Celery on failure
# - run_scheduled_job: Entry point for the beat schedule (cleanup jobs)
# - healthcheck: Verify a worker is consuming
# =============================================================================

import logging
from typing import Any

from celery import shared_task

logger = logging.getLogger(__name__)

# Seconds before the first retry; doubles on each attempt
RETRY_BASE_DELAY = 30


class JobFailedError(Exception):
    """Raised when a job exhausts its retries."""


# =============================================================================
# Job Processing Task
# =============================================================================

@shared_task(bind=True, name="workers.tasks.process_job")
def process_job(self, payload: dict[str, Any], max_retries: int = 3) -> dict[str, Any]:
    """
    Process a background job.

    Args:
        payload: JobPayload as published ({"type", "data", "metadata"})
        max_retries: Retries allowed for this job

    Returns:
        ProcessResult dict: success, error, duration

    Raises:
        JobFailedError: If the job still fails after max_retries
    """
    from workers.processor import process_job as run_job

    attempt = self.request.retries + 1
    payload = {**payload, "metadata": {**(payload.get("metadata") or {}), "attempt": attempt}}

    result = run_job(payload)
    if result.success:
        return result.model_dump()

    if self.request.retries < max_retries:
        countdown = RETRY_BASE_DELAY * (2 ** self.request.retries)
        logger.warning(
            f"Job {payload.get('type')} failed (attempt {attempt}), "
            f"retrying in {countdown}s: {result.error}"
        )
        raise self.retry(countdown=countdown, max_retries=max_retries)

    raise JobFailedError(f"Job {payload.get('type')} failed after {attempt} attempts: {result.error}")


# =============================================================================
# Scheduled Jobs
# =============================================================================

@shared_task(bind=True, name="workers.tasks.run_scheduled_job")
def run_scheduled_job(self, job_type: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
    """
    Run a job from the beat schedule.

    Args:
        job_type: A JobType value (e.g. "cleanup.old_jobs")
        data: Job data
    """
    from workers.processor import process_job as run_job

    result = run_job({"type": job_type, "data": data or {}})
    if not result.success:
        logger.error(f"Scheduled job {job_type} failed: {result.error}")
    return result.model_dump()


# =============================================================================
# Health Check Task
# =============================================================================

@shared_task(bind=True, name="workers.healthcheck")
def healthcheck(self) -> str:
    """
    Simple healthcheck task to verify worker is running.

    Usage:
        from workers.tasks import healthcheck
        result = healthcheck.delay()
        print(result.get(timeout=5))  # Should return "OK"
    """
    return "OK"
