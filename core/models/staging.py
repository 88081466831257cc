# =============================================================================
# core/models/staging.py - Staging Job Schemas
# =============================================================================
# These models define the API contract for staging operations:
# - StagingJobStatus: Lifecycle states of a staging job
# - StagingRequest: Input for staging a new image
# - RemixRequest: Input for re-staging a completed job with new settings
# - StagingJobUpdate: Actions on an existing job (set-primary, delete)
# - ProgressInfo: Step-by-step progress reported while a job runs
# - StagingJobStatusResponse: Poll response for a single job
# - VersionListResponse: Every version of one source image
#
# The public API uses camelCase keys, so fields carry aliases and accept
# either spelling on input.
# =============================================================================

from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from core.constants import ROOM_TYPES, FURNITURE_STYLES, ACCEPTED_IMAGE_TYPES


class StagingJobStatus(str, Enum):
    """
    Possible states for a staging job.

    Flow: queued -> processing -> uploading -> completed
    Any non-terminal state can move to failed.
    `pending` and `preprocessing` are kept for rows created by older clients.
    """
    PENDING = "pending"
    QUEUED = "queued"
    PREPROCESSING = "preprocessing"
    PROCESSING = "processing"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (StagingJobStatus.COMPLETED, StagingJobStatus.FAILED)


def _check_room_type(value: str) -> str:
    if value not in ROOM_TYPES:
        raise ValueError(f"Unknown room type: {value}")
    return value


def _check_style(value: str) -> str:
    if value not in FURNITURE_STYLES:
        raise ValueError(f"Unknown furniture style: {value}")
    return value


class StagingRequest(BaseModel):
    """
    Schema for staging a new image.

    Example:
        {
            "image": "<base64>",
            "mimeType": "image/jpeg",
            "roomType": "living-room",
            "style": "modern",
            "propertyId": "550e8400-e29b-41d4-a716-446655440000"
        }
    """

    # Base64-encoded image bytes (no data: prefix)
    image: str = Field(..., min_length=1, description="Base64-encoded source image")

    mime_type: str = Field(..., alias="mimeType", description="Image MIME type")

    room_type: str = Field(..., alias="roomType", description="Room type ID")

    style: str = Field(..., description="Furniture style ID")

    property_id: UUID | None = Field(
        default=None,
        alias="propertyId",
        description="Property to attach the staged image to"
    )

    model_config = {"populate_by_name": True}

    @field_validator("mime_type")
    @classmethod
    def validate_mime_type(cls, value: str) -> str:
        value = value.lower()
        if value not in ACCEPTED_IMAGE_TYPES:
            raise ValueError(f"Unsupported image type: {value}")
        return value

    @field_validator("room_type")
    @classmethod
    def validate_room_type(cls, value: str) -> str:
        return _check_room_type(value)

    @field_validator("style")
    @classmethod
    def validate_style(cls, value: str) -> str:
        return _check_style(value)


class RemixRequest(BaseModel):
    """Schema for remixing a completed staging job."""

    room_type: str = Field(..., alias="roomType", description="Room type ID")
    style: str = Field(..., description="Furniture style ID")
    property_id: UUID | None = Field(default=None, alias="propertyId")

    model_config = {"populate_by_name": True}

    @field_validator("room_type")
    @classmethod
    def validate_room_type(cls, value: str) -> str:
        return _check_room_type(value)

    @field_validator("style")
    @classmethod
    def validate_style(cls, value: str) -> str:
        return _check_style(value)


class StagingJobAction(str, Enum):
    """Actions accepted by PATCH /staging/{job_id}."""
    SET_PRIMARY = "set-primary"
    DELETE = "delete"


class StagingJobUpdate(BaseModel):
    """Schema for PATCH /staging/{job_id}."""
    action: StagingJobAction


class ProgressInfo(BaseModel):
    """
    Progress of a running staging job.

    Serialized with camelCase keys:
        {"step": "generating", "stepNumber": 3, "totalSteps": 4, "message": "..."}
    """
    step: str
    step_number: int = Field(..., ge=0, serialization_alias="stepNumber")
    total_steps: int = Field(..., ge=1, serialization_alias="totalSteps")
    message: str


class StagingJobStatusResponse(BaseModel):
    """Response for GET /staging/{job_id}. Built by serialize_job()."""
    job_id: str = Field(..., alias="jobId")
    status: StagingJobStatus
    progress: dict[str, Any]
    provider: str
    estimated_time_remaining: int | None = Field(default=None, alias="estimatedTimeRemaining")
    staged_image_url: str | None = Field(default=None, alias="stagedImageUrl")
    original_image_url: str | None = Field(default=None, alias="originalImageUrl")
    error: str | None = None
    room_type: str | None = Field(default=None, alias="roomType")
    style: str | None = None
    property_id: str | None = Field(default=None, alias="propertyId")
    created_at: str | None = Field(default=None, alias="createdAt")
    completed_at: str | None = Field(default=None, alias="completedAt")
    processing_time_ms: int | None = Field(default=None, alias="processingTimeMs")
    version_group_id: str | None = Field(default=None, alias="versionGroupId")
    is_primary_version: bool = Field(default=False, alias="isPrimaryVersion")
    parent_job_id: str | None = Field(default=None, alias="parentJobId")

    model_config = {"populate_by_name": True}


class VersionGroupSummary(BaseModel):
    id: str
    original_image_url: str | None = Field(default=None, alias="originalImageUrl")
    free_remixes_used: int = Field(default=0, alias="freeRemixesUsed")
    created_at: str | None = Field(default=None, alias="createdAt")

    model_config = {"populate_by_name": True}


class VersionListResponse(BaseModel):
    """Response for GET /staging/versions. Versions are raw job rows, oldest first."""
    versions: list[dict[str, Any]]
    version_group: VersionGroupSummary | None = Field(default=None, alias="versionGroup")
    free_remixes_remaining: int = Field(..., ge=0, alias="freeRemixesRemaining")
    total_versions: int = Field(..., ge=0, alias="totalVersions")

    model_config = {"populate_by_name": True}
