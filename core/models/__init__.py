# =============================================================================
# core/models/ - Pydantic Data Models
# =============================================================================
# This package contains Pydantic schemas for data validation:
# - staging.py: Staging job requests, statuses and progress
# - team.py: Organization, member and invitation requests
# - billing.py: Checkout, top-up and subscription requests
# - jobs.py: Background job envelope and results
# - property.py: Property CRUD schemas
# - email.py: Email categories and preference updates
#
# These models define the "contract" between API and clients.
# =============================================================================

# -----------------------------------------------------------------------------
# Staging Models
# -----------------------------------------------------------------------------
from .staging import (
    ProgressInfo,
    RemixRequest,
    StagingJobAction,
    StagingJobStatus,
    StagingJobStatusResponse,
    StagingJobUpdate,
    StagingRequest,
    VersionListResponse,
)

# -----------------------------------------------------------------------------
# Team Models
# -----------------------------------------------------------------------------
from .team import (
    AcceptInvitationRequest,
    InvitationStatus,
    MemberCreditsRequest,
    MemberRole,
    OrganizationNameRequest,
    TeamInviteRequest,
)

# -----------------------------------------------------------------------------
# Billing Models
# -----------------------------------------------------------------------------
from .billing import (
    CheckoutRequest,
    CreditTransactionType,
    SubscriptionActionRequest,
    TopupRequest,
)

# -----------------------------------------------------------------------------
# Job Models
# -----------------------------------------------------------------------------
from .jobs import (
    JobMetadata,
    JobOptions,
    JobPayload,
    JobType,
    ProcessResult,
)

# -----------------------------------------------------------------------------
# Property Models
# -----------------------------------------------------------------------------
from .property import (
    PropertyCreate,
    PropertyUpdate,
)

# -----------------------------------------------------------------------------
# Email Models
# -----------------------------------------------------------------------------
from .email import (
    EmailCategory,
    EmailPreferencesUpdate,
)

__all__ = [
    # Staging
    "ProgressInfo",
    "RemixRequest",
    "StagingJobAction",
    "StagingJobStatus",
    "StagingJobStatusResponse",
    "StagingJobUpdate",
    "StagingRequest",
    "VersionListResponse",
    # Team
    "AcceptInvitationRequest",
    "InvitationStatus",
    "MemberCreditsRequest",
    "MemberRole",
    "OrganizationNameRequest",
    "TeamInviteRequest",
    # Billing
    "CheckoutRequest",
    "CreditTransactionType",
    "SubscriptionActionRequest",
    "TopupRequest",
    # Jobs
    "JobMetadata",
    "JobOptions",
    "JobPayload",
    "JobType",
    "ProcessResult",
    # Property
    "PropertyCreate",
    "PropertyUpdate",
    # Email
    "EmailCategory",
    "EmailPreferencesUpdate",
]
