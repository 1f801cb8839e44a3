"""Application domain schemas - Pydantic models for validation"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ...shared.validators import validate_email, validate_phone


class ReviewDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class ApplicationCreate(BaseModel):
    """Schema for a practitioner submitting an application"""

    full_name: str = Field(min_length=1, max_length=255)
    email: str
    phone: Optional[str] = None
    specialization: str = Field(min_length=1, max_length=255)
    license_number: str = Field(min_length=1, max_length=100)
    years_experience: int = Field(ge=0, le=80)
    education: str = Field(min_length=1)
    bio: Optional[str] = None
    certifications: list[str] = []
    languages: list[str] = []
    license_document_url: Optional[str] = None
    cv_document_url: Optional[str] = None
    certificate_urls: list[str] = []

    @field_validator("email")
    @classmethod
    def validate_email_field(cls, v):
        return validate_email(v)

    @field_validator("phone")
    @classmethod
    def validate_phone_field(cls, v):
        if v:
            return validate_phone(v)
        return v

    @field_validator("full_name", "specialization", "license_number", "education")
    @classmethod
    def validate_not_blank(cls, v):
        if not v.strip():
            raise ValueError("Must not be blank")
        return v.strip()


class ApplicationUpdate(BaseModel):
    """Schema for the applicant amending a pending application"""

    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    specialization: Optional[str] = None
    license_number: Optional[str] = None
    years_experience: Optional[int] = Field(default=None, ge=0, le=80)
    education: Optional[str] = None
    bio: Optional[str] = None
    certifications: Optional[list[str]] = None
    languages: Optional[list[str]] = None
    license_document_url: Optional[str] = None
    cv_document_url: Optional[str] = None
    certificate_urls: Optional[list[str]] = None

    @field_validator("email")
    @classmethod
    def validate_email_field(cls, v):
        if v is not None:
            return validate_email(v)
        return v

    @field_validator("phone")
    @classmethod
    def validate_phone_field(cls, v):
        if v:
            return validate_phone(v)
        return v


class ReviewRequest(BaseModel):
    """Schema for an admin decision on a pending application"""

    decision: ReviewDecision
    note: Optional[str] = Field(default=None, max_length=2000)


class ApplicationResponse(BaseModel):
    """Schema for application response"""

    id: int
    applicant_uid: str
    full_name: str
    email: str
    phone: Optional[str]
    specialization: str
    license_number: str
    years_experience: int
    education: str
    bio: Optional[str]
    certifications: list[str]
    languages: list[str]
    license_document_url: Optional[str]
    cv_document_url: Optional[str]
    certificate_urls: list[str]
    status: str
    admin_notes: Optional[str]
    applied_at: datetime
    reviewed_at: Optional[datetime]
    reviewed_by: Optional[str]
    provider_id: Optional[int]

    class Config:
        from_attributes = True


class ApplicationStats(BaseModel):
    pending: int
    approved: int
    rejected: int
