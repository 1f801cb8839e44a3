"""Booking domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, field_validator

from ...config import DEFAULT_APPOINTMENT_MINUTES
from ...shared.validators import validate_money


class BookingRequest(BaseModel):
    """Schema for booking a session.

    ``start`` must carry a UTC offset; naive datetimes are rejected by the
    scheduler. ``price`` defaults to the provider's current session price.
    """

    provider_id: int
    start: datetime
    duration_minutes: int = DEFAULT_APPOINTMENT_MINUTES
    price: Optional[Decimal] = None
    notes: Optional[str] = None

    @field_validator("price")
    @classmethod
    def validate_price(cls, v):
        if v is None:
            return v
        return validate_money(v)


class AppointmentResponse(BaseModel):
    id: int
    provider_id: int
    client_uid: str
    starts_at: datetime
    ends_at: datetime
    duration_minutes: int
    status: str
    price: Decimal
    notes: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OpenSlotsResponse(BaseModel):
    provider_id: int
    date: date
    timezone: str
    duration_minutes: int
    slots: list[datetime]
