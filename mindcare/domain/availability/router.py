"""Availability router - FastAPI endpoints for the provider calendar"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import Identity, get_current_identity
from ...database import get_db
from .schemas import WindowResponse, WindowSet
from .service import AvailabilityService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Availability"])


def get_availability_service(db: Session = Depends(get_db)) -> AvailabilityService:
    """Dependency injection for AvailabilityService"""
    return AvailabilityService(db)


@router.get("/providers/{provider_id}/availability", response_model=list[WindowResponse])
async def list_windows(
    provider_id: int,
    service: AvailabilityService = Depends(get_availability_service),
):
    """Weekly windows ordered by day then start time"""
    return list(service.list_windows(provider_id))


@router.put("/providers/{provider_id}/availability", response_model=WindowResponse)
def set_window(
    provider_id: int,
    data: WindowSet,
    identity: Identity = Depends(get_current_identity),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Create or replace a window (keyed by day and start time)"""
    return service.set_window(
        provider_id,
        data.day_of_week,
        data.start_time,
        data.end_time,
        data.is_enabled,
        actor=identity,
    )


@router.delete("/availability/{window_id}")
def remove_window(
    window_id: int,
    identity: Identity = Depends(get_current_identity),
    service: AvailabilityService = Depends(get_availability_service),
):
    service.remove_window(window_id, actor=identity)
    return {"message": "Availability window deleted"}


@router.post("/availability/{window_id}/toggle", response_model=WindowResponse)
def toggle_window(
    window_id: int,
    identity: Identity = Depends(get_current_identity),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Enable or disable a window without deleting it"""
    return service.toggle_enabled(window_id, actor=identity)
