# =============================================================================
# app/exceptions.py - Custom Exception Handlers
# =============================================================================
# Centralized exception handling for the API.
# Every error carries a machine-readable code and, where possible, a
# suggestion telling the client how to fix the problem.
# =============================================================================

from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class StagingAPIException(Exception):
    """
    Base exception for the Virtual Staging API.

    All custom exceptions inherit from this class.
    Provides structured error responses with actionable suggestions.
    """

    def __init__(
        self,
        message: str,
        code: str = "STAGING_API_ERROR",
        status_code: int = 500,
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.suggestion = suggestion
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response dict."""
        result = {
            "detail": self.message,
            "code": self.code,
        }
        if self.suggestion:
            result["suggestion"] = self.suggestion
        if self.details:
            result["details"] = self.details
        return result


class BadRequestError(StagingAPIException):
    """Generic 400 for request-level validation the schemas can't express."""

    def __init__(self, message: str, code: str = "BAD_REQUEST", suggestion: str | None = None):
        super().__init__(
            message=message,
            code=code,
            status_code=400,
            suggestion=suggestion,
        )


# =============================================================================
# Staging Job Exceptions
# =============================================================================

class JobNotFoundError(StagingAPIException):
    """Raised when a staging job doesn't exist or belongs to another user."""

    def __init__(self, job_id: str):
        super().__init__(
            message=f"Staging job not found: {job_id}",
            code="JOB_NOT_FOUND",
            status_code=404,
            suggestion="Check that the job ID is correct and belongs to your account",
            details={"job_id": job_id}
        )


class JobNotRemixableError(StagingAPIException):
    """Raised when remixing a job that hasn't completed."""

    def __init__(self, job_id: str, status: str):
        super().__init__(
            message="Can only remix completed staging jobs",
            code="JOB_NOT_REMIXABLE",
            status_code=400,
            suggestion="Wait for the job to finish before creating a remix",
            details={"job_id": job_id, "status": status}
        )


class VersionGroupNotFoundError(StagingAPIException):
    """Raised when a version group doesn't exist."""

    def __init__(self, group_id: str):
        super().__init__(
            message=f"Version group not found: {group_id}",
            code="VERSION_GROUP_NOT_FOUND",
            status_code=404,
            details={"group_id": group_id}
        )


class VersionGroupBusyError(StagingAPIException):
    """Raised when another request holds the version group lock."""

    def __init__(self, group_id: str):
        super().__init__(
            message="Another change to this image's versions is in progress",
            code="VERSION_GROUP_BUSY",
            status_code=409,
            suggestion="Retry the request",
            details={"group_id": group_id}
        )


class InsufficientCreditsError(StagingAPIException):
    """Raised when the user can't pay for an operation."""

    def __init__(self, required: int, available: int):
        super().__init__(
            message="Insufficient credits. Please upgrade your plan.",
            code="INSUFFICIENT_CREDITS",
            status_code=402,
            suggestion="Purchase a credit top-up or upgrade your subscription",
            details={"required": required, "available": available}
        )


class InvalidImageError(StagingAPIException):
    """Raised when an uploaded image is malformed, too large, or an unsupported type."""

    def __init__(self, reason: str, allowed: list[str] | None = None):
        details: dict[str, Any] = {"reason": reason}
        if allowed:
            details["allowed_types"] = allowed
        super().__init__(
            message=f"Invalid image: {reason}",
            code="INVALID_IMAGE",
            status_code=400,
            suggestion="Upload a JPEG, PNG or WebP image under the size limit",
            details=details
        )


class ProviderError(StagingAPIException):
    """Raised when the AI staging provider rejects or fails a request."""

    def __init__(self, error: str):
        super().__init__(
            message=f"Staging provider error: {error}",
            code="PROVIDER_ERROR",
            status_code=502,
            suggestion="Try again in a few minutes",
            details={"error": error}
        )


# =============================================================================
# Storage Exceptions
# =============================================================================

class StorageUploadError(StagingAPIException):
    """Raised when file upload to storage fails."""

    def __init__(self, error: str):
        super().__init__(
            message=f"Failed to upload file to storage: {error}",
            code="STORAGE_UPLOAD_ERROR",
            status_code=500,
            suggestion="Try again later or contact support if the issue persists",
            details={"error": error}
        )


# =============================================================================
# Team Exceptions
# =============================================================================

class OrganizationNotFoundError(StagingAPIException):
    """Raised when the caller has no organization."""

    def __init__(self):
        super().__init__(
            message="Organization not found",
            code="ORGANIZATION_NOT_FOUND",
            status_code=404,
            suggestion="Create an organization first (requires the Enterprise plan)",
        )


class NotOrganizationOwnerError(StagingAPIException):
    """Raised when a non-owner attempts an owner-only team action."""

    def __init__(self, message: str = "Only organization owners can perform this action"):
        super().__init__(
            message=message,
            code="NOT_ORGANIZATION_OWNER",
            status_code=403,
        )


class EnterprisePlanRequiredError(StagingAPIException):
    """Raised when a team feature is used without the Enterprise plan."""

    def __init__(self):
        super().__init__(
            message="Team features require an Enterprise subscription",
            code="ENTERPRISE_PLAN_REQUIRED",
            status_code=403,
            suggestion="Upgrade to the Enterprise plan to create a team",
        )


class MemberNotFoundError(StagingAPIException):
    """Raised when a team member doesn't exist in the caller's organization."""

    def __init__(self, member_id: str):
        super().__init__(
            message=f"Member not found: {member_id}",
            code="MEMBER_NOT_FOUND",
            status_code=404,
            details={"member_id": member_id}
        )


class TeamFullError(StagingAPIException):
    """Raised when members plus pending invitations reach the plan's limit."""

    def __init__(self, max_members: int):
        super().__init__(
            message=f"Team is full (max {max_members} members)",
            code="TEAM_FULL",
            status_code=400,
            suggestion="Remove a member or revoke a pending invitation",
            details={"max_members": max_members}
        )


class CreditAllocationError(StagingAPIException):
    """Raised when a credit allocation exceeds the pool or undercuts usage."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            code="CREDIT_ALLOCATION_ERROR",
            status_code=400,
            details=details
        )


class InvitationNotFoundError(StagingAPIException):
    """Raised when an invitation ID or token doesn't match anything."""

    def __init__(self):
        super().__init__(
            message="Invitation not found",
            code="INVITATION_NOT_FOUND",
            status_code=404,
            suggestion="Ask the team owner to send a new invitation",
        )


class InvitationInvalidError(StagingAPIException):
    """Raised when an invitation is expired, revoked or already used."""

    def __init__(self, message: str, status: str | None = None):
        super().__init__(
            message=message,
            code="INVITATION_INVALID",
            status_code=400,
            suggestion="Ask the team owner to send a new invitation",
            details={"status": status} if status else None
        )


class InvitationEmailMismatchError(StagingAPIException):
    """Raised when the signed-in user's email differs from the invited one."""

    def __init__(self):
        super().__init__(
            message="This invitation was sent to a different email address",
            code="INVITATION_EMAIL_MISMATCH",
            status_code=403,
            suggestion="Sign in with the invited email address",
        )


# =============================================================================
# Billing Exceptions
# =============================================================================

class BillingAccountNotFoundError(StagingAPIException):
    """Raised when the user has no Stripe customer yet."""

    def __init__(self):
        super().__init__(
            message="No billing account found",
            code="BILLING_ACCOUNT_NOT_FOUND",
            status_code=400,
            suggestion="Subscribe to a plan first",
        )


class SubscriptionNotFoundError(StagingAPIException):
    """Raised when there is no active subscription to modify."""

    def __init__(self):
        super().__init__(
            message="No active subscription found",
            code="SUBSCRIPTION_NOT_FOUND",
            status_code=400,
        )


class BillingNotConfiguredError(StagingAPIException):
    """Raised when Stripe keys are missing."""

    def __init__(self):
        super().__init__(
            message="Billing is not configured",
            code="BILLING_NOT_CONFIGURED",
            status_code=503,
            suggestion="Set STRIPE_SECRET_KEY in the environment",
        )


class QueueUnavailableError(StagingAPIException):
    """Raised when a job can't be handed to the background queue."""

    def __init__(self, error: str):
        super().__init__(
            message="Failed to queue job",
            code="QUEUE_UNAVAILABLE",
            status_code=503,
            suggestion="Try again in a few moments",
            details={"error": error}
        )


class PaymentProviderError(StagingAPIException):
    """Raised when a Stripe API call fails."""

    def __init__(self, error: str):
        super().__init__(
            message=f"Payment provider error: {error}",
            code="PAYMENT_PROVIDER_ERROR",
            status_code=502,
            suggestion="Try again in a few minutes",
            details={"error": error}
        )


# =============================================================================
# Webhook / Email / Property Exceptions
# =============================================================================

class InvalidWebhookSignatureError(StagingAPIException):
    """Raised when a signed callback fails verification."""

    def __init__(self, reason: str):
        super().__init__(
            message=f"Invalid webhook signature: {reason}",
            code="INVALID_SIGNATURE",
            status_code=401,
            details={"reason": reason}
        )


class InvalidUnsubscribeTokenError(StagingAPIException):
    """Raised when an unsubscribe link does not verify or has expired."""

    def __init__(self, reason: str = "Invalid unsubscribe link"):
        super().__init__(
            message=reason,
            code="INVALID_UNSUBSCRIBE_TOKEN",
            status_code=400,
            suggestion="Manage email preferences from your account settings instead"
        )


class PropertyNotFoundError(StagingAPIException):
    """Raised when a property doesn't exist or belongs to another user."""

    def __init__(self, property_id: str):
        super().__init__(
            message=f"Property not found: {property_id}",
            code="PROPERTY_NOT_FOUND",
            status_code=404,
            details={"property_id": property_id}
        )


# =============================================================================
# Exception Handlers
# =============================================================================

async def staging_api_exception_handler(
    request: Request,
    exc: StagingAPIException
) -> JSONResponse:
    """
    Convert StagingAPIException to JSON response.

    Returns structured error with:
    - detail: Human-readable message
    - code: Machine-readable error code
    - suggestion: How to fix (if available)
    - details: Additional context
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict()
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """
    Handle request body and parameter validation errors.

    Keeps the {"detail", "code"} shape of every other error response.
    """
    return JSONResponse(
        status_code=422,
        content={
            "detail": "Validation error",
            "code": "VALIDATION_ERROR",
            "errors": jsonable_encoder(exc.errors())
        }
    )
