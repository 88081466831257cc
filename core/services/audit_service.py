# =============================================================================
# core/services/audit_service.py - Audit Log
# =============================================================================
# Records sensitive team and billing actions in the audit_logs table so an
# organization owner can see who changed what.
#
# Writing an entry never fails the action being audited: insert errors are
# logged, not raised.
# =============================================================================

import logging
from enum import Enum
from typing import Any
from uuid import UUID

from lib.supabase_client import SupabaseClient
from lib.utils import normalize_uuid

logger = logging.getLogger(__name__)


class AuditEventType(str, Enum):
    TEAM_INVITATION_CREATED = "team.invitation.created"
    TEAM_INVITATION_ACCEPTED = "team.invitation.accepted"
    TEAM_INVITATION_REVOKED = "team.invitation.revoked"
    TEAM_INVITATION_RESENT = "team.invitation.resent"
    TEAM_MEMBER_REMOVED = "team.member.removed"
    TEAM_CREDITS_ALLOCATED = "team.credits.allocated"
    BILLING_SUBSCRIPTION_CANCELED = "billing.subscription.canceled"
    BILLING_SUBSCRIPTION_RESUMED = "billing.subscription.resumed"
    BILLING_CREDITS_PURCHASED = "billing.credits.purchased"


class AuditResourceType(str, Enum):
    TEAM_INVITATION = "team_invitation"
    TEAM_MEMBER = "team_member"
    SUBSCRIPTION = "subscription"
    CREDITS = "credits"


class AuditAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class AuditService:
    """Service for writing and reading audit log entries."""

    @staticmethod
    def log_event(
        event_type: AuditEventType,
        resource_type: AuditResourceType,
        action: AuditAction,
        user_id: UUID | str | None = None,
        organization_id: UUID | str | None = None,
        resource_id: str | None = None,
        previous_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """
        Record one audited action.

        Args:
            event_type: What happened, e.g. team.credits.allocated
            resource_type: Kind of row the action touched
            action: created, updated or deleted
            user_id: Who did it
            organization_id: Organization the action belongs to
            resource_id: ID of the touched row
            previous_values: Relevant fields before the change
            new_values: Relevant fields after the change
            metadata: Anything else worth keeping

        Returns:
            True if the entry was written
        """
        data = {
            "user_id": normalize_uuid(user_id) if user_id else None,
            "organization_id": normalize_uuid(organization_id) if organization_id else None,
            "event_type": event_type.value,
            "resource_type": resource_type.value,
            "resource_id": str(resource_id) if resource_id else None,
            "action": action.value,
            "previous_values": previous_values,
            "new_values": new_values,
            "metadata": metadata or {},
        }

        try:
            SupabaseClient.get_client().table("audit_logs").insert(data).execute()
            return True
        except Exception as e:
            logger.error(f"Failed to write audit log {event_type.value}: {e}")
            return False

    @staticmethod
    def list_organization_events(
        organization_id: str,
        limit: int = 50,
        offset: int = 0,
        event_type: AuditEventType | None = None,
    ) -> dict[str, Any]:
        """An organization's audit entries, newest first, with the total count."""
        query = (
            SupabaseClient.get_client()
            .table("audit_logs")
            .select("*", count="exact")
            .eq("organization_id", organization_id)
        )
        if event_type:
            query = query.eq("event_type", event_type.value)

        response = query.order("created_at", desc=True).range(offset, offset + limit - 1).execute()
        return {
            "events": response.data or [],
            "total": response.count or 0,
            "limit": limit,
            "offset": offset,
        }
