# =============================================================================
# app/routers/properties.py - Property Endpoints
# =============================================================================
# A property groups the staged photos of one listing.
# =============================================================================

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, status as http_status

from app.dependencies import CurrentUser
from core.models.property import PropertyCreate, PropertyUpdate
from core.services.property_service import PropertyService

router = APIRouter()

PropertyId = Annotated[UUID, Path(description="Property UUID")]


@router.get("")
async def list_properties(user: CurrentUser):
    """The caller's properties, newest first, with staged image counts."""
    return {"properties": PropertyService.list_properties(user.id)}


@router.post("", status_code=http_status.HTTP_201_CREATED)
async def create_property(request: PropertyCreate, user: CurrentUser):
    return {"property": PropertyService.create_property(user.id, request)}


@router.get("/{property_id}")
async def get_property(property_id: PropertyId, user: CurrentUser):
    """A property with its staging jobs."""
    return {"property": PropertyService.get_property_with_jobs(user.id, property_id)}


@router.patch("/{property_id}")
async def update_property(property_id: PropertyId, request: PropertyUpdate, user: CurrentUser):
    return {"property": PropertyService.update_property(user.id, property_id, request)}


@router.delete("/{property_id}")
async def delete_property(property_id: PropertyId, user: CurrentUser):
    """Delete a property. Its staged images are kept."""
    PropertyService.delete_property(user.id, property_id)
    return {"success": True}
