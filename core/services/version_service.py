# =============================================================================
# core/services/version_service.py - Remixes & Version Groups
# =============================================================================
# Every staging of the same original photo belongs to one version group.
# The group tracks how many free remixes have been used and which job is
# the primary (shown-by-default) version.
#
# Writes that must not interleave (group creation, primary switch and
# free-remix reservation) run under lib.redis_client.version_group_lock().
# =============================================================================

import logging
from typing import Any
from uuid import UUID, uuid4

from redis.exceptions import LockError

from lib.redis_client import version_group_lock
from lib.supabase_client import SupabaseClient
from lib.utils import md5_hex, normalize_uuid
from app.exceptions import (
    BadRequestError,
    InsufficientCreditsError,
    JobNotFoundError,
    JobNotRemixableError,
    VersionGroupBusyError,
    VersionGroupNotFoundError,
)
from core.constants import (
    CREDITS_PER_REMIX,
    DEFAULT_PROVIDER,
    FREE_REMIXES_PER_IMAGE,
    VERSION_WARNING_THRESHOLD,
)
from core.models.staging import RemixRequest, StagingJobStatus
from core.services.credit_service import CreditService
from core.services.staging_service import StagingService

logger = logging.getLogger(__name__)


def compute_image_hash(image_url: str) -> str:
    """Version groups are keyed by the md5 of the original image URL."""
    return md5_hex(image_url)


def free_remixes_remaining(group: dict[str, Any] | None) -> int:
    used = (group or {}).get("free_remixes_used", 0) or 0
    return max(0, FREE_REMIXES_PER_IMAGE - used)


class VersionService:
    """Service for remixes and version groups."""

    @staticmethod
    def get_or_create_version_group(user_id: UUID | str, parent_job: dict[str, Any]) -> dict[str, Any]:
        """
        Find the user's group for the parent's original image, or create it.

        A new group adopts the parent job as its primary version when the
        parent isn't in a group yet.
        """
        client = SupabaseClient.get_client()
        user_id_str = normalize_uuid(user_id)
        image_hash = compute_image_hash(parent_job["original_image_url"])

        lock_key = f"{user_id_str}:{image_hash}"
        try:
            # Lookup and insert share one lock so concurrent first remixes find one group
            with version_group_lock(lock_key):
                response = (
                    client.table("version_groups")
                    .select("*")
                    .eq("user_id", user_id_str)
                    .eq("original_image_hash", image_hash)
                    .limit(1)
                    .execute()
                )
                if response.data:
                    return response.data[0]

                response = client.table("version_groups").insert({
                    "user_id": user_id_str,
                    "original_image_hash": image_hash,
                    "original_image_url": parent_job["original_image_url"],
                    "free_remixes_used": 0,
                }).execute()
                group = response.data[0]
        except LockError:
            raise VersionGroupBusyError(lock_key)
        logger.info(f"Created version group {group['id']} for user {user_id_str}")

        if not parent_job.get("version_group_id"):
            StagingService.update_job(parent_job["id"], {
                "version_group_id": group["id"],
                "is_primary_version": True,
            })

        return group

    @staticmethod
    def count_versions(group_id: str) -> int:
        response = (
            SupabaseClient.get_client()
            .table("staging_jobs")
            .select("id", count="exact")
            .eq("version_group_id", group_id)
            .execute()
        )
        return response.count or 0

    # -------------------------------------------------------------------------
    # Remix
    # -------------------------------------------------------------------------

    @staticmethod
    def create_remix(
        user_id: UUID | str,
        parent_job_id: UUID | str,
        request: RemixRequest,
    ) -> dict[str, Any]:
        """
        Re-stage a completed job's original image with new settings.

        The first FREE_REMIXES_PER_IMAGE remixes of an image cost nothing;
        later ones cost CREDITS_PER_REMIX, charged when the remix completes.

        Raises:
            JobNotFoundError: If the parent doesn't exist or isn't owned
            JobNotRemixableError: If the parent hasn't completed
            InsufficientCreditsError: If a paid remix can't be afforded
            QueueUnavailableError: If the job can't be queued
        """
        user_id_str = normalize_uuid(user_id)

        parent = SupabaseClient.fetch_staging_job(parent_job_id, user_id=user_id_str)
        if not parent:
            raise JobNotFoundError(str(parent_job_id))
        if parent.get("status") != StagingJobStatus.COMPLETED.value:
            raise JobNotRemixableError(str(parent_job_id), parent.get("status", "unknown"))

        group = VersionService.get_or_create_version_group(user_id_str, parent)

        try:
            with version_group_lock(group["id"]):
                # Re-read inside the lock so two requests can't both take the last free remix
                group = SupabaseClient.fetch_version_group(group["id"]) or group
                used = group.get("free_remixes_used", 0) or 0
                is_free = used < FREE_REMIXES_PER_IMAGE

                if not is_free:
                    credits = CreditService.check_credits(user_id_str, CREDITS_PER_REMIX)
                    if not credits.sufficient:
                        raise InsufficientCreditsError(CREDITS_PER_REMIX, credits.available)

                property_id = request.property_id or parent.get("property_id")
                job = StagingService.insert_job({
                    "id": str(uuid4()),
                    "user_id": user_id_str,
                    "property_id": str(property_id) if property_id else None,
                    "original_image_url": parent["original_image_url"],
                    "room_type": request.room_type,
                    "style": request.style,
                    "status": StagingJobStatus.QUEUED.value,
                    "provider": DEFAULT_PROVIDER,
                    "credits_used": 0 if is_free else CREDITS_PER_REMIX,
                    "version_group_id": group["id"],
                    "parent_job_id": parent["id"],
                    "is_primary_version": False,
                })

                if is_free:
                    used += 1
                    SupabaseClient.get_client().table("version_groups").update(
                        {"free_remixes_used": used}
                    ).eq("id", group["id"]).execute()
        except LockError:
            raise VersionGroupBusyError(group["id"])

        StagingService.enqueue(job)

        total_versions = VersionService.count_versions(group["id"])
        version_warning = None
        if total_versions >= VERSION_WARNING_THRESHOLD:
            version_warning = (
                f"This image has {total_versions} versions. "
                "Consider deleting versions you no longer need."
            )

        logger.info(
            f"Created {'free' if is_free else 'paid'} remix {job['id']} "
            f"of {parent['id']} in group {group['id']}"
        )

        return {
            "jobId": job["id"],
            "status": job["status"],
            "async": True,
            "pollUrl": f"/api/v1/staging/{job['id']}",
            "versionGroupId": group["id"],
            "parentJobId": parent["id"],
            "isFreeRemix": is_free,
            "freeRemixesRemaining": max(0, FREE_REMIXES_PER_IMAGE - used),
            "creditsCharged": 0 if is_free else CREDITS_PER_REMIX,
            "totalVersions": total_versions,
            "versionWarning": version_warning,
        }

    # -------------------------------------------------------------------------
    # Primary version
    # -------------------------------------------------------------------------

    @staticmethod
    def set_primary_version(user_id: UUID | str, job_id: UUID | str) -> dict[str, Any]:
        """
        Make a job the primary version of its group.

        Raises:
            JobNotFoundError: If the job doesn't exist or isn't owned
        """
        user_id_str = normalize_uuid(user_id)
        job = StagingService.get_job(job_id, user_id=user_id_str)
        client = SupabaseClient.get_client()

        group_id = job.get("version_group_id")
        if not group_id:
            StagingService.update_job(job["id"], {"is_primary_version": True})
        else:
            try:
                with version_group_lock(group_id):
                    (
                        client.table("staging_jobs")
                        .update({"is_primary_version": False})
                        .eq("version_group_id", group_id)
                        .eq("user_id", user_id_str)
                        .execute()
                    )
                    StagingService.update_job(job["id"], {"is_primary_version": True})
            except LockError:
                raise VersionGroupBusyError(group_id)

        logger.info(f"Set job {job['id']} as primary version")
        return {"success": True, "jobId": job["id"], "message": "Set as primary version"}

    # -------------------------------------------------------------------------
    # Listing
    # -------------------------------------------------------------------------

    @staticmethod
    def list_versions(
        user_id: UUID | str,
        group_id: UUID | str | None = None,
        job_id: UUID | str | None = None,
    ) -> dict[str, Any]:
        """
        List every version of an image, oldest first.

        Looks up by group ID, or by any job in the group.

        Raises:
            BadRequestError: If neither groupId nor jobId is given
            JobNotFoundError / VersionGroupNotFoundError: If the lookup misses
        """
        if not group_id and not job_id:
            raise BadRequestError(
                "Either groupId or jobId is required",
                code="MISSING_PARAMETER",
            )

        user_id_str = normalize_uuid(user_id)

        if not group_id:
            job = StagingService.get_job(job_id, user_id=user_id_str)
            group_id = job.get("version_group_id")
            if not group_id:
                return {
                    "versions": [job],
                    "versionGroup": None,
                    "freeRemixesRemaining": FREE_REMIXES_PER_IMAGE,
                    "totalVersions": 1,
                }

        group = SupabaseClient.fetch_version_group(group_id, user_id=user_id_str)
        if not group:
            raise VersionGroupNotFoundError(str(group_id))

        response = (
            SupabaseClient.get_client()
            .table("staging_jobs")
            .select("*")
            .eq("version_group_id", group["id"])
            .eq("user_id", user_id_str)
            .order("created_at", desc=False)
            .execute()
        )
        versions = response.data or []

        return {
            "versions": versions,
            "versionGroup": {
                "id": group["id"],
                "originalImageUrl": group.get("original_image_url"),
                "freeRemixesUsed": group.get("free_remixes_used", 0) or 0,
                "createdAt": group.get("created_at"),
            },
            "freeRemixesRemaining": free_remixes_remaining(group),
            "totalVersions": len(versions),
        }
