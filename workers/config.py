# =============================================================================
# workers/config.py - Celery Worker Configuration
# =============================================================================
# Settings specific to Celery workers, plus the cleanup schedules shared by
# both queue backends.
# =============================================================================

from typing import Any

from celery.schedules import crontab

from app.config import settings
from core.constants import OLD_JOB_RETENTION_DAYS
from core.models.jobs import JobType


# -----------------------------------------------------------------------------
# Cleanup schedules (UTC)
# -----------------------------------------------------------------------------
# QStash registers these as cron schedules (queue.initialize_scheduled_jobs);
# Celery runs them through beat_schedule below.

CLEANUP_SCHEDULES: list[dict[str, Any]] = [
    {
        "id": "cleanup-expired-invitations",
        "type": JobType.CLEANUP_EXPIRED_INVITATIONS,
        "data": {},
        "cron": "0 2 * * *",
        "crontab": crontab(minute=0, hour=2),
    },
    {
        "id": "cleanup-old-jobs",
        "type": JobType.CLEANUP_OLD_JOBS,
        "data": {"daysOld": OLD_JOB_RETENTION_DAYS},
        "cron": "0 3 * * 0",
        "crontab": crontab(minute=0, hour=3, day_of_week=0),
    },
]


class CeleryConfig:
    """
    Celery configuration settings.

    These are applied to the Celery app via app.config_from_object().
    """

    # -------------------------------------------------------------------------
    # Broker Settings (Redis)
    # -------------------------------------------------------------------------

    broker_url = settings.REDIS_URL

    result_backend = settings.REDIS_URL

    # -------------------------------------------------------------------------
    # Task Settings
    # -------------------------------------------------------------------------

    # Acknowledge tasks after they complete (not before)
    task_acks_late = True

    # Only prefetch one task at a time
    worker_prefetch_multiplier = 1

    # Task results expire after 1 hour
    result_expires = 3600

    # Staging waits on Replicate's API, so allow a few minutes
    task_time_limit = 300

    task_soft_time_limit = 240

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    task_serializer = "json"
    result_serializer = "json"
    accept_content = ["json"]

    # -------------------------------------------------------------------------
    # Task Routing
    # -------------------------------------------------------------------------

    task_queues = {
        "default": {
            "exchange": "default",
            "routing_key": "default",
        },
        "staging": {
            "exchange": "staging",
            "routing_key": "staging",
        },
    }

    task_routes = {
        "workers.tasks.process_job": {"queue": "staging"},
    }

    task_default_queue = "default"

    # -------------------------------------------------------------------------
    # Scheduled Jobs (celery beat)
    # -------------------------------------------------------------------------

    beat_schedule = {
        schedule["id"]: {
            "task": "workers.tasks.run_scheduled_job",
            "schedule": schedule["crontab"],
            "args": (schedule["type"].value, schedule["data"]),
        }
        for schedule in CLEANUP_SCHEDULES
    }

    # -------------------------------------------------------------------------
    # Monitoring
    # -------------------------------------------------------------------------

    worker_send_task_events = True
    task_send_sent_event = True

    # -------------------------------------------------------------------------
    # Timezone
    # -------------------------------------------------------------------------

    timezone = "UTC"
    enable_utc = True
