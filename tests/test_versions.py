# =============================================================================
# tests/test_versions.py - Remix & Version Group Tests
# =============================================================================
# Tests for VersionService:
# - free remix quota per source image, then paid remixes
# - at most one primary version per group
# - version listing by group or by job
#
# Run with: pytest tests/test_versions.py -v
# =============================================================================

from contextlib import contextmanager
from unittest.mock import patch

import pytest
from redis.exceptions import LockError

from app.exceptions import (
    BadRequestError,
    InsufficientCreditsError,
    JobNotFoundError,
    JobNotRemixableError,
    VersionGroupBusyError,
)
from core.constants import FREE_REMIXES_PER_IMAGE
from core.models.staging import RemixRequest
from core.services.version_service import VersionService, compute_image_hash, free_remixes_remaining


def remix_request(**overrides) -> RemixRequest:
    return RemixRequest(**{"roomType": "bedroom-master", "style": "scandinavian", **overrides})


class TestHelpers:

    def test_image_hash_is_md5_of_url(self):
        assert compute_image_hash("https://x/y.jpg") == compute_image_hash("https://x/y.jpg")
        assert len(compute_image_hash("https://x/y.jpg")) == 32
        assert compute_image_hash("https://x/a.jpg") != compute_image_hash("https://x/b.jpg")

    def test_free_remixes_remaining(self):
        assert free_remixes_remaining(None) == FREE_REMIXES_PER_IMAGE
        assert free_remixes_remaining({"free_remixes_used": 1}) == FREE_REMIXES_PER_IMAGE - 1
        assert free_remixes_remaining({"free_remixes_used": 99}) == 0


class TestVersionGroups:

    def test_creates_group_and_adopts_parent_as_primary(self, db, user_id, completed_job, no_lock):
        group = VersionService.get_or_create_version_group(user_id, completed_job)

        assert group["free_remixes_used"] == 0
        assert group["original_image_hash"] == compute_image_hash(completed_job["original_image_url"])

        parent = db.row("staging_jobs", id=completed_job["id"])
        assert parent["version_group_id"] == group["id"]
        assert parent["is_primary_version"] is True

    def test_reuses_existing_group(self, db, user_id, completed_job, no_lock):
        first = VersionService.get_or_create_version_group(user_id, completed_job)
        second = VersionService.get_or_create_version_group(user_id, completed_job)

        assert first["id"] == second["id"]
        assert len(db.rows("version_groups")) == 1

    def test_group_lookup_and_insert_run_under_one_lock(self, db, user_id, completed_job):
        held = []

        @contextmanager
        def recording_lock(key):
            held.append(key)
            yield
            assert len(db.rows("version_groups")) == 1

        image_hash = compute_image_hash(completed_job["original_image_url"])
        with patch("core.services.version_service.version_group_lock", recording_lock):
            first = VersionService.get_or_create_version_group(user_id, completed_job)
            second = VersionService.get_or_create_version_group(user_id, completed_job)

        assert held == [f"{user_id}:{image_hash}", f"{user_id}:{image_hash}"]
        assert first["id"] == second["id"]
        assert len(db.rows("version_groups")) == 1

    def test_busy_group_creation_maps_to_conflict(self, db, user_id, completed_job):
        @contextmanager
        def busy_lock(key):
            raise LockError("busy")
            yield

        with patch("core.services.version_service.version_group_lock", busy_lock):
            with pytest.raises(VersionGroupBusyError):
                VersionService.get_or_create_version_group(user_id, completed_job)

        assert db.rows("version_groups") == []


class TestCreateRemix:

    def test_first_remixes_are_free(self, db, user_id, completed_job, queued_jobs, no_lock):
        result = VersionService.create_remix(user_id, completed_job["id"], remix_request())

        assert result["isFreeRemix"] is True
        assert result["creditsCharged"] == 0
        assert result["freeRemixesRemaining"] == FREE_REMIXES_PER_IMAGE - 1
        assert result["parentJobId"] == completed_job["id"]

        remix = db.row("staging_jobs", id=result["jobId"])
        assert remix["status"] == "queued"
        assert remix["credits_used"] == 0
        assert remix["is_primary_version"] is False
        assert remix["version_group_id"] == result["versionGroupId"]
        assert remix["original_image_url"] == completed_job["original_image_url"]

        assert db.row("version_groups", id=result["versionGroupId"])["free_remixes_used"] == 1
        assert queued_jobs == [("staging.process", {"jobId": remix["id"], "userId": user_id})]

    def test_remix_after_quota_costs_a_credit(self, db, user_id, completed_job, queued_jobs, no_lock):
        db.seed("profiles", {"id": user_id, "credits_remaining": 5})

        for _ in range(FREE_REMIXES_PER_IMAGE):
            VersionService.create_remix(user_id, completed_job["id"], remix_request())
        result = VersionService.create_remix(user_id, completed_job["id"], remix_request())

        assert result["isFreeRemix"] is False
        assert result["creditsCharged"] == 1
        assert result["freeRemixesRemaining"] == 0
        assert db.row("staging_jobs", id=result["jobId"])["credits_used"] == 1

    def test_paid_remix_requires_credits(self, db, user_id, completed_job, queued_jobs, no_lock):
        db.seed("profiles", {"id": user_id, "credits_remaining": 0})
        group = VersionService.get_or_create_version_group(user_id, completed_job)
        db.row("version_groups", id=group["id"])["free_remixes_used"] = FREE_REMIXES_PER_IMAGE

        with pytest.raises(InsufficientCreditsError):
            VersionService.create_remix(user_id, completed_job["id"], remix_request())

        assert queued_jobs == []

    def test_parent_must_be_completed(self, db, user_id, completed_job, no_lock):
        db.row("staging_jobs", id=completed_job["id"])["status"] = "processing"

        with pytest.raises(JobNotRemixableError):
            VersionService.create_remix(user_id, completed_job["id"], remix_request())

    def test_parent_must_be_owned(self, db, completed_job, no_lock):
        with pytest.raises(JobNotFoundError):
            VersionService.create_remix("another-user", completed_job["id"], remix_request())

    def test_inherits_parent_property(self, db, user_id, completed_job, queued_jobs, no_lock):
        db.row("staging_jobs", id=completed_job["id"])["property_id"] = "prop-1"

        result = VersionService.create_remix(user_id, completed_job["id"], remix_request())

        assert db.row("staging_jobs", id=result["jobId"])["property_id"] == "prop-1"

    def test_version_warning_at_threshold(self, db, user_id, completed_job, queued_jobs, no_lock):
        db.seed("profiles", {"id": user_id, "credits_remaining": 10})

        results = [
            VersionService.create_remix(user_id, completed_job["id"], remix_request())
            for _ in range(4)
        ]

        assert results[2]["versionWarning"] is None
        assert results[3]["totalVersions"] == 5
        assert "5 versions" in results[3]["versionWarning"]

    def test_busy_lock_maps_to_conflict(self, db, user_id, completed_job):
        @contextmanager
        def busy_lock(group_id):
            raise LockError("busy")
            yield

        with patch("core.services.version_service.version_group_lock", busy_lock):
            with pytest.raises(VersionGroupBusyError) as exc_info:
                VersionService.create_remix(user_id, completed_job["id"], remix_request())

        assert exc_info.value.status_code == 409


class TestSetPrimary:

    def test_only_one_primary_per_group(self, db, user_id, completed_job, queued_jobs, no_lock):
        first = VersionService.create_remix(user_id, completed_job["id"], remix_request())
        second = VersionService.create_remix(user_id, completed_job["id"], remix_request())

        VersionService.set_primary_version(user_id, first["jobId"])
        VersionService.set_primary_version(user_id, second["jobId"])

        group_id = first["versionGroupId"]
        primaries = [job["id"] for job in db.rows("staging_jobs", version_group_id=group_id) if job["is_primary_version"]]
        assert primaries == [second["jobId"]]

    def test_job_without_group_is_flagged(self, db, user_id, completed_job, no_lock):
        result = VersionService.set_primary_version(user_id, completed_job["id"])

        assert result["success"] is True
        assert db.row("staging_jobs", id=completed_job["id"])["is_primary_version"] is True


class TestListVersions:

    def test_requires_group_or_job(self, db, user_id):
        with pytest.raises(BadRequestError):
            VersionService.list_versions(user_id)

    def test_job_without_group_lists_itself(self, db, user_id, completed_job):
        result = VersionService.list_versions(user_id, job_id=completed_job["id"])

        assert [job["id"] for job in result["versions"]] == [completed_job["id"]]
        assert result["versionGroup"] is None
        assert result["freeRemixesRemaining"] == FREE_REMIXES_PER_IMAGE
        assert result["totalVersions"] == 1

    def test_group_listing_oldest_first(self, db, user_id, completed_job, queued_jobs, no_lock):
        remix = VersionService.create_remix(user_id, completed_job["id"], remix_request())

        by_job = VersionService.list_versions(user_id, job_id=remix["jobId"])
        by_group = VersionService.list_versions(user_id, group_id=remix["versionGroupId"])

        assert by_job == by_group
        assert by_group["totalVersions"] == 2
        assert by_group["versions"][0]["id"] == completed_job["id"]
        assert by_group["freeRemixesRemaining"] == FREE_REMIXES_PER_IMAGE - 1
