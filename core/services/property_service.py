# =============================================================================
# core/services/property_service.py - Property Business Logic
# =============================================================================
# Properties group the staged photos of one listing. All queries are
# scoped to the owning user.
# =============================================================================

import logging
from typing import Any
from uuid import UUID

from lib.supabase_client import SupabaseClient
from lib.utils import normalize_uuid, utc_now_iso
from app.exceptions import PropertyNotFoundError
from core.models.property import PropertyCreate, PropertyUpdate
from core.models.staging import StagingJobStatus

logger = logging.getLogger(__name__)


class PropertyService:
    """Service for property CRUD."""

    @staticmethod
    def _count_staged(property_id: str) -> int:
        response = (
            SupabaseClient.get_client()
            .table("staging_jobs")
            .select("id", count="exact")
            .eq("property_id", property_id)
            .eq("status", StagingJobStatus.COMPLETED.value)
            .execute()
        )
        return response.count or 0

    @staticmethod
    def list_properties(user_id: UUID | str) -> list[dict[str, Any]]:
        """Newest first, each with `staged_count` (completed jobs)."""
        response = (
            SupabaseClient.get_client()
            .table("properties")
            .select("*")
            .eq("user_id", normalize_uuid(user_id))
            .order("created_at", desc=True)
            .execute()
        )
        return [
            {**prop, "staged_count": PropertyService._count_staged(prop["id"])}
            for prop in response.data or []
        ]

    @staticmethod
    def get_property(user_id: UUID | str, property_id: UUID | str) -> dict[str, Any]:
        """
        Get a property.

        Raises:
            PropertyNotFoundError: If it doesn't exist or isn't owned
        """
        prop = SupabaseClient._fetch_single(
            "properties",
            {"id": property_id, "user_id": user_id},
            error_code="FETCH_PROPERTY_FAILED",
        )
        if not prop:
            raise PropertyNotFoundError(str(property_id))
        return prop

    @staticmethod
    def get_property_with_jobs(user_id: UUID | str, property_id: UUID | str) -> dict[str, Any]:
        prop = PropertyService.get_property(user_id, property_id)
        response = (
            SupabaseClient.get_client()
            .table("staging_jobs")
            .select("*")
            .eq("property_id", prop["id"])
            .eq("user_id", normalize_uuid(user_id))
            .order("created_at", desc=True)
            .execute()
        )
        return {**prop, "staging_jobs": response.data or []}

    @staticmethod
    def create_property(user_id: UUID | str, data: PropertyCreate) -> dict[str, Any]:
        response = (
            SupabaseClient.get_client()
            .table("properties")
            .insert({"user_id": normalize_uuid(user_id), **data.model_dump()})
            .execute()
        )
        if not response.data:
            raise Exception("Insert returned no data")

        prop = response.data[0]
        logger.info(f"Created property {prop['id']} for user {user_id}")
        return prop

    @staticmethod
    def update_property(
        user_id: UUID | str,
        property_id: UUID | str,
        data: PropertyUpdate,
    ) -> dict[str, Any]:
        prop = PropertyService.get_property(user_id, property_id)

        updates = data.model_dump(exclude_unset=True)
        if not updates:
            return prop

        updates["updated_at"] = utc_now_iso()
        response = (
            SupabaseClient.get_client()
            .table("properties")
            .update(updates)
            .eq("id", prop["id"])
            .execute()
        )
        return response.data[0] if response.data else {**prop, **updates}

    @staticmethod
    def delete_property(user_id: UUID | str, property_id: UUID | str) -> None:
        """Delete a property. Its staging jobs keep existing, unlinked."""
        prop = PropertyService.get_property(user_id, property_id)
        client = SupabaseClient.get_client()

        client.table("staging_jobs").update({"property_id": None}).eq("property_id", prop["id"]).execute()
        client.table("properties").delete().eq("id", prop["id"]).execute()

        logger.info(f"Deleted property {prop['id']}")
