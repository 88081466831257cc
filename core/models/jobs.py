# =============================================================================
# core/models/jobs.py - Background Job Schemas
# =============================================================================
# The envelope every background job travels in, whichever queue backend
# delivers it:
#
#   {
#       "type": "staging.process",
#       "data": {"jobId": "...", "userId": "..."},
#       "metadata": {"correlationId": "...", "attempt": 1, "createdAt": "..."}
#   }
# =============================================================================

from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from lib.utils import utc_now_iso


class JobType(str, Enum):
    """Every job the processor knows how to handle."""
    STAGING_PROCESS = "staging.process"
    STAGING_COMPLETE = "staging.complete"
    STAGING_FAILED = "staging.failed"
    EMAIL_SEND = "email.send"
    EMAIL_INVITATION = "email.invitation"
    BILLING_SYNC = "billing.sync"
    CLEANUP_EXPIRED_INVITATIONS = "cleanup.expired_invitations"
    CLEANUP_OLD_JOBS = "cleanup.old_jobs"


class JobMetadata(BaseModel):
    """Tracing info attached to each job."""

    correlation_id: str = Field(
        default_factory=lambda: str(uuid4()),
        alias="correlationId",
    )
    attempt: int = Field(default=1, ge=1)
    created_at: str = Field(default_factory=utc_now_iso, alias="createdAt")

    model_config = {"populate_by_name": True}


class JobPayload(BaseModel):
    """
    A job as published to the queue.

    `type` stays a plain string so unknown types from a newer publisher
    reach the processor and fail there, instead of failing validation.
    """

    type: str
    data: dict[str, Any] = Field(default_factory=dict)
    metadata: JobMetadata = Field(default_factory=JobMetadata)

    def to_message(self) -> dict[str, Any]:
        """JSON-ready dict with camelCase metadata keys."""
        return self.model_dump(by_alias=True)


class JobOptions(BaseModel):
    """Publish options."""

    # Seconds before the job becomes visible to workers
    delay: int | None = Field(default=None, ge=0)

    retries: int = Field(default=3, ge=0, le=10)

    # Cron expression, only for schedules
    cron: str | None = None

    # Jobs sharing this ID are only delivered once
    deduplication_id: str | None = None


class ProcessResult(BaseModel):
    """Outcome of processing one job."""

    success: bool
    error: str | None = None
    duration: int = Field(default=0, description="Processing time in milliseconds")
