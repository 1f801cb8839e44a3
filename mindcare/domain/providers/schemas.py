"""Provider domain schemas - Pydantic models for validation"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, field_validator

from ...shared.validators import validate_money, validate_timezone


class ProviderUpdate(BaseModel):
    """Schema for a provider (or admin) editing the public profile"""

    display_name: Optional[str] = None
    specialization: Optional[str] = None
    bio: Optional[str] = None
    languages: Optional[list[str]] = None
    session_price: Optional[Decimal] = None
    timezone: Optional[str] = None

    @field_validator("display_name", "specialization")
    @classmethod
    def validate_not_blank(cls, v):
        if v is not None and not v.strip():
            raise ValueError("Must not be blank")
        return v

    @field_validator("session_price")
    @classmethod
    def validate_price(cls, v):
        if v is not None:
            return validate_money(v)
        return v

    @field_validator("timezone")
    @classmethod
    def validate_tz(cls, v):
        if v is not None:
            return validate_timezone(v)
        return v


class ProviderResponse(BaseModel):
    """Schema for provider response"""

    id: int
    applicant_uid: str
    application_id: Optional[int] = None
    display_name: str
    specialization: str
    bio: Optional[str] = None
    languages: list[str] = []
    session_price: Decimal
    currency: str
    timezone: str
    is_verified: bool
    rating: Optional[float] = None
    review_count: int = 0
    created_at: Optional[datetime] = None
