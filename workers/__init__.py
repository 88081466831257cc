# =============================================================================
# workers/ - Background Jobs
# =============================================================================
# This package contains everything that runs outside the request cycle.
#
# Components:
# - queue.py: Publishes jobs (Celery or QStash backend)
# - processor.py: Runs one job, whichever backend delivered it
# - celery_app.py: Celery application configuration
# - tasks.py: Celery task definitions
# - config.py: Worker settings and cleanup schedules
#
# Usage:
#   # Start worker (with beat for the cleanup schedules)
#   celery -A workers.celery_app worker --beat --loglevel=info
#
#   # Publish a job (from the API)
#   from workers import queue
#   queue.queue_staging_job(job_id, user_id)
# =============================================================================

from .celery_app import celery_app
from . import tasks

__all__ = [
    "celery_app",
    "tasks",
]
