# =============================================================================
# core/services/__init__.py - Service Layer Exports
# =============================================================================

from .credit_service import CreditService
from .storage_service import StorageService
from .notification_service import NotificationService
from .email_service import EmailService
from .staging_service import StagingService
from .version_service import VersionService
from .billing_service import BillingService
from .team_service import TeamService
from .invitation_service import InvitationService
from .property_service import PropertyService

__all__ = [
    "CreditService",
    "StorageService",
    "NotificationService",
    "EmailService",
    "StagingService",
    "VersionService",
    "BillingService",
    "TeamService",
    "InvitationService",
    "PropertyService",
]
