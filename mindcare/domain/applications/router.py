"""Application router - FastAPI endpoints for practitioner applications"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import Identity, get_current_identity, require_admin
from ...database import get_db
from ...rate_limiter import create_rate_limiter
from .schemas import (
    ApplicationCreate,
    ApplicationResponse,
    ApplicationStats,
    ApplicationUpdate,
    ReviewRequest,
)
from .service import ApplicationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/applications", tags=["Applications"])

submit_rate_limit = create_rate_limiter(limit=5, window_seconds=3600, key_prefix="application_submit")


def get_application_service(db: Session = Depends(get_db)) -> ApplicationService:
    """Dependency injection for ApplicationService"""
    return ApplicationService(db)


# ============================================================================
# APPLICANT OPERATIONS
# ============================================================================


@router.post("", response_model=ApplicationResponse, status_code=201)
def submit_application(
    data: ApplicationCreate,
    identity: Identity = Depends(get_current_identity),
    service: ApplicationService = Depends(get_application_service),
    _: None = Depends(submit_rate_limit),
):
    """Submit a practitioner application for review"""
    return service.submit(identity.uid, data)


@router.get("/me", response_model=ApplicationResponse)
async def get_my_application(
    identity: Identity = Depends(get_current_identity),
    service: ApplicationService = Depends(get_application_service),
):
    """Get the caller's current application"""
    return service.get_current_for_applicant(identity.uid)


@router.patch("/{application_id}", response_model=ApplicationResponse)
def amend_application(
    application_id: int,
    data: ApplicationUpdate,
    identity: Identity = Depends(get_current_identity),
    service: ApplicationService = Depends(get_application_service),
):
    """Edit an application that is still pending"""
    return service.amend(application_id, identity.uid, data)


# ============================================================================
# ADMIN REVIEW
# ============================================================================


@router.get("", response_model=list[ApplicationResponse])
async def list_applications(
    status: Optional[str] = Query("pending", description="pending, approved, rejected or all"),
    _admin: Identity = Depends(require_admin),
    service: ApplicationService = Depends(get_application_service),
):
    """List applications for the admin review screen"""
    return service.list_applications(status)


@router.get("/stats", response_model=ApplicationStats)
async def get_application_stats(
    _admin: Identity = Depends(require_admin),
    service: ApplicationService = Depends(get_application_service),
):
    """Counts of current applications per status"""
    return ApplicationStats(**service.stats())


@router.get("/{application_id}", response_model=ApplicationResponse)
async def get_application(
    application_id: int,
    identity: Identity = Depends(get_current_identity),
    service: ApplicationService = Depends(get_application_service),
):
    """Get one application (its applicant or an admin)"""
    return service.get_application(application_id, identity)


@router.post("/{application_id}/review", response_model=ApplicationResponse)
def review_application(
    application_id: int,
    data: ReviewRequest,
    admin: Identity = Depends(require_admin),
    service: ApplicationService = Depends(get_application_service),
):
    """Approve or reject a pending application"""
    return service.review(application_id, admin.uid, data.decision, data.note)
