"""Provider router - FastAPI endpoints for provider profiles and the directory"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import Identity, get_current_identity, require_admin
from ...database import get_db
from .schemas import ProviderResponse, ProviderUpdate
from .service import ProviderService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/providers", tags=["Providers"])


def get_provider_service(db: Session = Depends(get_db)) -> ProviderService:
    """Dependency injection for ProviderService"""
    return ProviderService(db)


@router.get("", response_model=list[ProviderResponse])
async def list_providers(
    specialization: Optional[str] = Query(None),
    language: Optional[str] = Query(None),
    service: ProviderService = Depends(get_provider_service),
):
    """Public therapist directory (verified providers only)"""
    return service.list_directory(specialization, language)


@router.get("/me", response_model=ProviderResponse)
async def get_my_provider(
    identity: Identity = Depends(get_current_identity),
    service: ProviderService = Depends(get_provider_service),
):
    """The caller's own provider profile"""
    return service.to_response(service.get_for_applicant(identity.uid))


@router.get("/{provider_id}", response_model=ProviderResponse)
async def get_provider(
    provider_id: int,
    service: ProviderService = Depends(get_provider_service),
):
    return service.to_response(service.get_provider(provider_id))


@router.patch("/{provider_id}", response_model=ProviderResponse)
def update_provider(
    provider_id: int,
    data: ProviderUpdate,
    identity: Identity = Depends(get_current_identity),
    service: ProviderService = Depends(get_provider_service),
):
    """Edit profile, price or timezone (owner or admin)"""
    provider = service.update_provider(provider_id, data, identity)
    return service.to_response(provider)


@router.delete("/{provider_id}")
def delete_provider(
    provider_id: int,
    _admin: Identity = Depends(require_admin),
    service: ProviderService = Depends(get_provider_service),
):
    """Delist a provider with no upcoming appointments"""
    service.remove_provider(provider_id)
    return {"message": "Provider removed from the directory"}
