# =============================================================================
# app/config.py - Application Settings
# =============================================================================
# This module loads configuration from environment variables using pydantic-settings.
# It provides a single Settings class with all configuration values.
#
# Usage:
#   from app.config import settings
#   print(settings.SUPABASE_URL)
#
# Environment variables are loaded from:
# 1. System environment variables
# 2. .env file in project root (if exists)
#
# Integrations (Stripe, Replicate, Resend, QStash) are optional at startup.
# Features that need them report a clear error when their keys are missing.
# =============================================================================

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses pydantic-settings to:
    - Automatically load from .env file
    - Validate types and constraints
    - Provide sensible defaults for development

    All settings are accessed via the global `settings` instance.
    """

    # -------------------------------------------------------------------------
    # Supabase Configuration
    # -------------------------------------------------------------------------
    # These are required - app won't start without them

    SUPABASE_URL: str = Field(
        ...,
        description="Supabase project URL (e.g., https://xxx.supabase.co)"
    )

    SUPABASE_ANON_KEY: str = Field(
        ...,
        description="Supabase anon/public API key"
    )

    SUPABASE_SERVICE_KEY: str = Field(
        ...,
        description="Supabase service_role key (bypasses RLS)"
    )

    SUPABASE_JWT_SECRET: str = Field(
        default="",
        description="Legacy HS256 JWT secret used to verify Supabase access tokens"
    )

    STORAGE_BUCKET: str = Field(
        default="staging-images",
        description="Storage bucket for original and staged images"
    )

    # -------------------------------------------------------------------------
    # Redis Configuration (Celery broker, locks, dedup keys)
    # -------------------------------------------------------------------------

    REDIS_URL: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL for Celery broker and locks"
    )

    # -------------------------------------------------------------------------
    # Job Queue
    # -------------------------------------------------------------------------

    QUEUE_BACKEND: Literal["celery", "qstash"] = Field(
        default="celery",
        description="Where background jobs are published"
    )

    QSTASH_URL: str = Field(
        default="https://qstash.upstash.io",
        description="QStash REST API base URL"
    )

    QSTASH_TOKEN: str = Field(
        default="",
        description="QStash publish token"
    )

    QSTASH_CURRENT_SIGNING_KEY: str = Field(
        default="",
        description="Current key used to verify Upstash-Signature headers"
    )

    QSTASH_NEXT_SIGNING_KEY: str = Field(
        default="",
        description="Next key used to verify Upstash-Signature headers (key rotation)"
    )

    # -------------------------------------------------------------------------
    # Replicate (AI staging provider)
    # -------------------------------------------------------------------------

    REPLICATE_API_TOKEN: str = Field(
        default="",
        description="Replicate API token"
    )

    REPLICATE_MODEL_VERSION: str = Field(
        default="lucataco/sdxl-controlnet:latest",
        description="Replicate model version used for staging"
    )

    REPLICATE_WEBHOOK_SECRET: str = Field(
        default="",
        description="Secret for validating Replicate webhook signatures"
    )

    # -------------------------------------------------------------------------
    # Stripe (billing)
    # -------------------------------------------------------------------------

    STRIPE_SECRET_KEY: str = Field(
        default="",
        description="Stripe secret API key"
    )

    STRIPE_WEBHOOK_SECRET: str = Field(
        default="",
        description="Stripe webhook signing secret (whsec_...)"
    )

    STRIPE_PRICE_STANDARD: str = Field(default="", description="Price ID for the standard plan")
    STRIPE_PRICE_PROFESSIONAL: str = Field(default="", description="Price ID for the professional plan")
    STRIPE_PRICE_ENTERPRISE: str = Field(default="", description="Price ID for the enterprise plan")
    STRIPE_PRICE_TOPUP_10: str = Field(default="", description="Price ID for the 10 credit top-up")
    STRIPE_PRICE_TOPUP_25: str = Field(default="", description="Price ID for the 25 credit top-up")
    STRIPE_PRICE_TOPUP_50: str = Field(default="", description="Price ID for the 50 credit top-up")

    # -------------------------------------------------------------------------
    # Email (Resend)
    # -------------------------------------------------------------------------

    RESEND_API_KEY: str = Field(
        default="",
        description="Resend API key for transactional email"
    )

    EMAIL_FROM: str = Field(
        default="Stager <noreply@example.com>",
        description="Sender address for outgoing email"
    )

    EMAIL_UNSUBSCRIBE_SECRET: str = Field(
        default="",
        description="Key for signing unsubscribe links (defaults to SUPABASE_JWT_SECRET)"
    )

    # -------------------------------------------------------------------------
    # Application Settings
    # -------------------------------------------------------------------------

    ENVIRONMENT: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Current environment"
    )

    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode (verbose logging, auto-reload)"
    )

    APP_URL: str = Field(
        default="http://localhost:8000",
        description="Public base URL, used for webhooks and email links"
    )

    API_HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the API server to"
    )

    API_PORT: int = Field(
        default=8000,
        ge=1,
        le=65535,
        description="Port for the API server"
    )

    # CORS origins (comma-separated string that gets parsed)
    CORS_ORIGINS: str = Field(
        default="http://localhost:3000",
        description="Allowed CORS origins (comma-separated)"
    )

    # -------------------------------------------------------------------------
    # Image Upload Settings
    # -------------------------------------------------------------------------

    MAX_IMAGE_SIZE_MB: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum image size in MB"
    )

    # -------------------------------------------------------------------------
    # Pydantic Settings Configuration
    # -------------------------------------------------------------------------

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=True,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Computed Properties
    # -------------------------------------------------------------------------

    @property
    def cors_origins_list(self) -> list[str]:
        """
        Parse CORS_ORIGINS string into a list.

        Example: "http://localhost:3000, https://myapp.com" -> ["http://localhost:3000", "https://myapp.com"]
        """
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    @property
    def max_image_size_bytes(self) -> int:
        """Convert MB to bytes for image size validation."""
        return self.MAX_IMAGE_SIZE_MB * 1024 * 1024

    @property
    def app_url(self) -> str:
        """APP_URL without a trailing slash."""
        return self.APP_URL.rstrip("/")

    @property
    def queue_webhook_url(self) -> str:
        """Endpoint the hosted queue delivers jobs to."""
        return f"{self.app_url}/api/v1/jobs/process"

    @property
    def replicate_webhook_url(self) -> str:
        """Endpoint Replicate calls when a prediction finishes."""
        return f"{self.app_url}/api/v1/webhooks/replicate"

    @property
    def unsubscribe_signing_key(self) -> str:
        return self.EMAIL_UNSUBSCRIBE_SECRET or self.SUPABASE_JWT_SECRET

    @property
    def unsubscribe_url(self) -> str:
        """One-click unsubscribe endpoint linked from emails."""
        return f"{self.app_url}/api/v1/email/unsubscribe"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached Settings instance.

    Using lru_cache ensures we only parse .env and validate once,
    not on every access.

    Returns:
        Settings: The application settings instance
    """
    return Settings()


# Global settings instance for easy importing
# Usage: from app.config import settings
settings = get_settings()
