"""Booking router - FastAPI endpoints for appointments"""

import logging
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import Identity, get_current_identity
from ...config import DEFAULT_APPOINTMENT_MINUTES
from ...database import get_db
from ...rate_limiter import create_rate_limiter
from ...utils.sanitization import sanitize_string
from .schemas import AppointmentResponse, BookingRequest, OpenSlotsResponse
from .service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Appointments"])

booking_rate_limit = create_rate_limiter(limit=30, window_seconds=3600, key_prefix="booking")


def get_booking_service(db: Session = Depends(get_db)) -> BookingService:
    """Dependency injection for BookingService"""
    return BookingService(db)


# ============================================================================
# Client endpoints
# ============================================================================


@router.post("/appointments", response_model=AppointmentResponse, status_code=201)
def book_appointment(
    data: BookingRequest,
    identity: Identity = Depends(get_current_identity),
    _: None = Depends(booking_rate_limit),
    service: BookingService = Depends(get_booking_service),
):
    """Book a session with a provider for the calling client"""
    return service.book(
        data.provider_id,
        identity.uid,
        data.start,
        data.duration_minutes,
        price=data.price,
        notes=sanitize_string(data.notes),
    )


@router.get("/appointments/mine", response_model=list[AppointmentResponse])
async def list_my_appointments(
    identity: Identity = Depends(get_current_identity),
    service: BookingService = Depends(get_booking_service),
):
    return service.list_for_client(identity.uid)


@router.get("/appointments/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: int,
    identity: Identity = Depends(get_current_identity),
    service: BookingService = Depends(get_booking_service),
):
    return service.get_appointment(appointment_id, identity)


@router.post("/appointments/{appointment_id}/cancel", response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    identity: Identity = Depends(get_current_identity),
    service: BookingService = Depends(get_booking_service),
):
    """Cancel a scheduled appointment (client, provider or admin)"""
    return service.cancel(appointment_id, identity)


@router.post("/appointments/{appointment_id}/complete", response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    identity: Identity = Depends(get_current_identity),
    service: BookingService = Depends(get_booking_service),
):
    """Mark a started session completed; records the provider's earning"""
    return service.complete(appointment_id, actor=identity)


# ============================================================================
# Provider calendar
# ============================================================================


@router.get("/providers/{provider_id}/appointments", response_model=list[AppointmentResponse])
async def list_provider_appointments(
    provider_id: int,
    start_from: Optional[datetime] = Query(None),
    start_to: Optional[datetime] = Query(None),
    status: Optional[str] = Query(None),
    identity: Identity = Depends(get_current_identity),
    service: BookingService = Depends(get_booking_service),
):
    return service.list_for_provider(provider_id, identity, start_from, start_to, status)


@router.get("/providers/{provider_id}/open-slots", response_model=OpenSlotsResponse)
async def list_open_slots(
    provider_id: int,
    on_date: date = Query(..., alias="date"),
    duration_minutes: int = Query(DEFAULT_APPOINTMENT_MINUTES),
    service: BookingService = Depends(get_booking_service),
):
    """Bookable start times on a date, in the provider's timezone"""
    return service.open_slots(provider_id, on_date, duration_minutes)
