# =============================================================================
# core/models/property.py - Property Schemas
# =============================================================================
# A property (listing) groups the staged images of one real estate listing.
# =============================================================================

from pydantic import BaseModel, Field


class PropertyCreate(BaseModel):
    """
    Schema for creating a property.

    Example:
        {"name": "12 Harbor View", "address": "12 Harbor View, Portland ME"}
    """

    name: str = Field(..., min_length=1, max_length=200)
    address: str | None = Field(default=None, max_length=500)
    description: str | None = Field(default=None, max_length=2000)


class PropertyUpdate(BaseModel):
    """Partial update; omitted fields are left unchanged."""

    name: str | None = Field(default=None, min_length=1, max_length=200)
    address: str | None = Field(default=None, max_length=500)
    description: str | None = Field(default=None, max_length=2000)
