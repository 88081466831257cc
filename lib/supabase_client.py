# =============================================================================
# lib/supabase_client.py - Supabase Client Wrapper
# =============================================================================
# This module provides a typed wrapper for Supabase database operations.
# It implements the singleton pattern to reuse a single client connection
# and provides fetch helpers for the rows most services need:
# - Profiles (credits, plan, organization link)
# - Staging jobs and version groups
# - Organizations and memberships
#
# Usage:
#   from lib.supabase_client import SupabaseClient
#   profile = SupabaseClient.fetch_profile(user_id)
# =============================================================================

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from supabase import create_client, Client

from app.config import settings

# Set up logging for this module
logger = logging.getLogger(__name__)

# PostgREST error code returned by .single() when no row matches
NOT_FOUND_CODE = "PGRST116"


class SupabaseClientError(Exception):
    """
    Error during Supabase operations.

    Carries a code and an actionable suggestion alongside the message.
    """

    def __init__(
        self,
        message: str,
        code: str = "SUPABASE_ERROR",
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.details = details or {}

    def __str__(self) -> str:
        result = f"[{self.code}] {self.message}"
        if self.suggestion:
            result += f" Suggestion: {self.suggestion}"
        return result


def is_not_found(error: Exception) -> bool:
    """True when a PostgREST error means "no rows" rather than a failure."""
    return NOT_FOUND_CODE in str(error)


class SupabaseClient:
    """
    Typed wrapper for Supabase database operations.

    Implements singleton pattern - one client instance is shared across
    the application. All methods are class methods for easy access without
    instantiation.

    Example:
        profile = SupabaseClient.fetch_profile(user_id)
        credits = profile["credits_remaining"] if profile else 0
    """

    _instance: Client | None = None

    @classmethod
    def get_client(cls) -> Client:
        """
        Get or create the singleton Supabase client.

        Uses service_role key which bypasses Row Level Security (RLS),
        so every query must scope rows to the caller explicitly.

        Returns:
            Client: Supabase client instance

        Raises:
            SupabaseClientError: If client creation fails
        """
        if cls._instance is None:
            try:
                cls._instance = create_client(
                    settings.SUPABASE_URL,
                    settings.SUPABASE_SERVICE_KEY
                )
                logger.info("Supabase client initialized successfully")
            except Exception as e:
                raise SupabaseClientError(
                    message=f"Failed to create Supabase client: {e}",
                    code="CLIENT_INIT_FAILED",
                    suggestion="Check SUPABASE_URL and SUPABASE_SERVICE_KEY in your .env file"
                )
        return cls._instance

    @classmethod
    def _normalize_uuid(cls, uuid_value: str | UUID) -> str:
        """Convert UUID to string for queries."""
        return str(uuid_value) if isinstance(uuid_value, UUID) else uuid_value

    @classmethod
    def _fetch_single(
        cls,
        table: str,
        filters: dict[str, Any],
        columns: str = "*",
        error_code: str = "FETCH_FAILED",
    ) -> dict[str, Any] | None:
        """
        Fetch exactly one row matching all equality filters.

        Returns None when no row matches.

        Raises:
            SupabaseClientError: If the query fails for any other reason
        """
        client = cls.get_client()

        try:
            query = client.table(table).select(columns)
            for column, value in filters.items():
                query = query.eq(column, cls._normalize_uuid(value))
            response = query.single().execute()
            return response.data

        except Exception as e:
            if is_not_found(e):
                return None
            raise SupabaseClientError(
                message=f"Failed to fetch from {table}: {e}",
                code=error_code,
                details={"table": table, **{k: str(v) for k, v in filters.items()}}
            )

    # -------------------------------------------------------------------------
    # Profiles
    # -------------------------------------------------------------------------

    @classmethod
    def fetch_profile(cls, user_id: str | UUID) -> dict[str, Any] | None:
        """
        Fetch a user's profile row.

        Returns:
            Profile dict (credits_remaining, plan_id, stripe_customer_id,
            organization_id, ...) or None if the profile doesn't exist yet
        """
        return cls._fetch_single(
            "profiles", {"id": user_id}, error_code="FETCH_PROFILE_FAILED"
        )

    # -------------------------------------------------------------------------
    # Staging Jobs
    # -------------------------------------------------------------------------

    @classmethod
    def fetch_staging_job(
        cls,
        job_id: str | UUID,
        user_id: str | UUID | None = None,
    ) -> dict[str, Any] | None:
        """
        Fetch a staging job by ID.

        Args:
            job_id: The job UUID
            user_id: If provided, only return the job when this user owns it

        Returns:
            Job dict or None if not found
        """
        filters: dict[str, Any] = {"id": job_id}
        if user_id:
            filters["user_id"] = user_id
        return cls._fetch_single(
            "staging_jobs", filters, error_code="FETCH_JOB_FAILED"
        )

    @classmethod
    def fetch_job_by_prediction(cls, prediction_id: str) -> dict[str, Any] | None:
        """Fetch the staging job waiting on a Replicate prediction."""
        return cls._fetch_single(
            "staging_jobs",
            {"replicate_prediction_id": prediction_id},
            error_code="FETCH_JOB_FAILED",
        )

    @classmethod
    def fetch_version_group(
        cls,
        group_id: str | UUID,
        user_id: str | UUID | None = None,
    ) -> dict[str, Any] | None:
        """Fetch a version group, optionally scoped to its owner."""
        filters: dict[str, Any] = {"id": group_id}
        if user_id:
            filters["user_id"] = user_id
        return cls._fetch_single(
            "version_groups", filters, error_code="FETCH_VERSION_GROUP_FAILED"
        )

    # -------------------------------------------------------------------------
    # Organizations
    # -------------------------------------------------------------------------

    @classmethod
    def fetch_owned_organization(cls, owner_id: str | UUID) -> dict[str, Any] | None:
        """Fetch the organization owned by a user, if any."""
        return cls._fetch_single(
            "organizations", {"owner_id": owner_id}, error_code="FETCH_ORGANIZATION_FAILED"
        )

    @classmethod
    def fetch_organization(cls, organization_id: str | UUID) -> dict[str, Any] | None:
        """Fetch an organization by ID."""
        return cls._fetch_single(
            "organizations", {"id": organization_id}, error_code="FETCH_ORGANIZATION_FAILED"
        )

    @classmethod
    def fetch_membership(cls, user_id: str | UUID) -> dict[str, Any] | None:
        """
        Fetch a user's organization membership row.

        Returns:
            Member dict (organization_id, role, allocated_credits,
            credits_used_this_period) or None if the user isn't on a team
        """
        return cls._fetch_single(
            "organization_members", {"user_id": user_id}, error_code="FETCH_MEMBERSHIP_FAILED"
        )
