# =============================================================================
# app/routers/staging.py - Staging Job Endpoints
# =============================================================================
# Create, poll, list, remix and manage staging jobs and their versions.
# All endpoints require authentication and are scoped to the caller's jobs.
# =============================================================================

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status as http_status
from pydantic import BaseModel, Field

from app.dependencies import CurrentUser
from core.models.staging import (
    RemixRequest,
    StagingJobAction,
    StagingJobStatus,
    StagingJobStatusResponse,
    StagingJobUpdate,
    StagingRequest,
    VersionListResponse,
)
from core.services.staging_service import StagingService, serialize_job
from core.services.version_service import VersionService

router = APIRouter()

JobId = Annotated[UUID, Path(description="Staging job UUID")]


# =============================================================================
# Response Models
# =============================================================================

class StagingCreateResponse(BaseModel):
    """Response when a staging job is accepted."""
    job_id: str = Field(..., alias="jobId")
    status: str
    is_async: bool = Field(True, alias="async")
    provider: str
    poll_url: str = Field(..., alias="pollUrl")
    estimated_time_seconds: int = Field(..., alias="estimatedTimeSeconds")

    model_config = {
        "populate_by_name": True,
        "json_schema_extra": {
            "example": {
                "jobId": "550e8400-e29b-41d4-a716-446655440000",
                "status": "queued",
                "async": True,
                "provider": "replicate",
                "pollUrl": "/api/v1/staging/550e8400-e29b-41d4-a716-446655440000",
                "estimatedTimeSeconds": 30,
            }
        },
    }


# =============================================================================
# Endpoints
# =============================================================================

@router.post(
    "",
    response_model=StagingCreateResponse,
    status_code=http_status.HTTP_202_ACCEPTED,
)
async def create_staging_job(request: StagingRequest, user: CurrentUser):
    """
    Stage a new image.

    The image is stored and the job queued; poll `pollUrl` for progress.
    Costs one credit, charged when the job completes.
    """
    return StagingService.create_job(user.id, request)


@router.get("")
async def list_staging_jobs(
    user: CurrentUser,
    page: Annotated[int, Query(ge=1, description="Page number")] = 1,
    page_size: Annotated[int, Query(ge=1, le=100, alias="pageSize", description="Items per page")] = 20,
    status: Annotated[StagingJobStatus | None, Query(description="Filter by status")] = None,
    property_id: Annotated[UUID | None, Query(alias="propertyId")] = None,
):
    """Staging history, newest first."""
    jobs, total = StagingService.list_jobs(
        user.id,
        page=page,
        page_size=page_size,
        status=status,
        property_id=property_id,
    )

    return {
        "jobs": [serialize_job(job) for job in jobs],
        "total": total,
        "page": page,
        "pageSize": page_size,
    }


# Declared before /{job_id} so "versions" isn't parsed as a job ID
@router.get("/versions", response_model=VersionListResponse)
async def list_versions(
    user: CurrentUser,
    group_id: Annotated[UUID | None, Query(alias="groupId")] = None,
    job_id: Annotated[UUID | None, Query(alias="jobId")] = None,
):
    """
    List every version of a source image.

    Pass either `groupId` or the ID of any job in the group.
    """
    return VersionService.list_versions(user.id, group_id=group_id, job_id=job_id)


@router.get("/{job_id}", response_model=StagingJobStatusResponse)
async def get_staging_job(job_id: JobId, user: CurrentUser):
    """
    Get a job with its progress.

    While the job is processing, the provider is polled so the result shows
    up even if its webhook was missed.
    """
    return StagingService.get_job_status(job_id, user.id)


@router.get("/{job_id}/status", response_model=StagingJobStatusResponse)
async def get_staging_job_status(job_id: JobId, user: CurrentUser):
    """Alias of GET /staging/{job_id} kept for polling clients."""
    return StagingService.get_job_status(job_id, user.id)


@router.patch("/{job_id}")
async def update_staging_job(job_id: JobId, request: StagingJobUpdate, user: CurrentUser):
    """Apply an action to a job: `set-primary` or `delete`."""
    if request.action == StagingJobAction.SET_PRIMARY:
        return VersionService.set_primary_version(user.id, job_id)

    StagingService.delete_job(job_id, user.id)
    return {"success": True, "jobId": str(job_id), "message": "Job deleted"}


@router.delete("/{job_id}")
async def delete_staging_job(job_id: JobId, user: CurrentUser):
    """Delete a job."""
    StagingService.delete_job(job_id, user.id)
    return {"success": True, "jobId": str(job_id)}


@router.post("/{job_id}/remix", status_code=http_status.HTTP_202_ACCEPTED)
async def remix_staging_job(job_id: JobId, request: RemixRequest, user: CurrentUser):
    """
    Re-stage a completed job's source image with a new room type or style.

    The first remixes of each image are free; later ones cost a credit.
    """
    return VersionService.create_remix(user.id, job_id, request)


@router.put("/{job_id}/primary")
async def set_primary_version(job_id: JobId, user: CurrentUser):
    """Mark a job as the primary version of its image."""
    return VersionService.set_primary_version(user.id, job_id)
