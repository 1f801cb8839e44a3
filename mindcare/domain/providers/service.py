"""Provider service - Business logic for provider profiles and the directory"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ...auth import Identity
from ...cache import cache, directory_cache_key, invalidate_directory
from ...config import CURRENCY, DIRECTORY_CACHE_TTL
from ...errors import NotFound, PermissionDenied, ProviderInUse
from ...models import Provider, utcnow
from ...utils.retry import retry_on_transient
from ...utils.sanitization import sanitize_list, sanitize_string
from ..availability.repository import AvailabilityRepository
from .repository import ProviderRepository
from .schemas import ProviderResponse, ProviderUpdate

logger = logging.getLogger(__name__)


def ensure_can_manage(provider: Provider, actor: Identity) -> None:
    """Only the provider's own account or an admin may change provider data"""
    if actor.is_admin or provider.applicant_uid == actor.uid:
        return
    raise PermissionDenied("You can only manage your own provider profile")


class ProviderService:
    """Service layer for provider business logic"""

    def __init__(self, db: Session, clock=utcnow):
        self.db = db
        self.clock = clock
        self.repo = ProviderRepository()

    def get_provider(self, provider_id: int) -> Provider:
        """Listed providers only; delisted ones read as missing"""
        provider = self.repo.get_by_id(self.db, provider_id)
        if not provider or not provider.is_verified:
            raise NotFound("Provider not found")
        return provider

    def get_for_applicant(self, applicant_uid: str) -> Provider:
        provider = self.repo.get_by_applicant(self.db, applicant_uid)
        if not provider:
            raise NotFound("No provider profile for this account")
        return provider

    def to_response(self, provider: Provider) -> ProviderResponse:
        rating, review_count = self.repo.rating_summaries(self.db, [provider.id])[provider.id]
        return self._build_response(provider, rating, review_count)

    @staticmethod
    def _build_response(provider: Provider, rating: Optional[float], review_count: int) -> ProviderResponse:
        return ProviderResponse(
            id=provider.id,
            applicant_uid=provider.applicant_uid,
            application_id=provider.application_id,
            display_name=provider.display_name,
            specialization=provider.specialization,
            bio=provider.bio,
            languages=provider.languages or [],
            session_price=provider.session_price,
            currency=CURRENCY,
            timezone=provider.timezone,
            is_verified=provider.is_verified,
            rating=rating,
            review_count=review_count,
            created_at=provider.created_at,
        )

    def list_directory(
        self, specialization: Optional[str] = None, language: Optional[str] = None
    ) -> list[ProviderResponse]:
        """Verified providers for the public directory, cached when Redis is configured"""
        key = directory_cache_key(specialization, language)
        cached = cache.get(key)
        if cached is not None:
            return [ProviderResponse(**item) for item in cached]

        providers = self.repo.list_verified(self.db, specialization)
        if language:
            wanted = language.lower()
            providers = [p for p in providers if wanted in (lang.lower() for lang in p.languages or [])]

        summaries = self.repo.rating_summaries(self.db, [p.id for p in providers])
        result = [self._build_response(p, *summaries[p.id]) for p in providers]

        cache.set(key, [r.model_dump(mode="json") for r in result], ttl=DIRECTORY_CACHE_TTL)
        return result

    @retry_on_transient
    def update_provider(self, provider_id: int, data: ProviderUpdate, actor: Identity) -> Provider:
        provider = self.get_provider(provider_id)
        ensure_can_manage(provider, actor)

        if data.display_name is not None:
            provider.display_name = sanitize_string(data.display_name)
        if data.specialization is not None:
            provider.specialization = sanitize_string(data.specialization)
        if data.bio is not None:
            provider.bio = sanitize_string(data.bio)
        if data.languages is not None:
            provider.languages = sanitize_list(data.languages)
        if data.session_price is not None:
            provider.session_price = data.session_price
        if data.timezone is not None:
            provider.timezone = data.timezone

        self.db.commit()
        self.db.refresh(provider)
        invalidate_directory()
        logger.info(f"✏️ Provider {provider.id} updated by {actor.uid}")
        return provider

    @retry_on_transient
    def remove_provider(self, provider_id: int) -> Provider:
        """Delist a provider: drop its windows and stop accepting bookings.

        The row is kept so the approving application still points at a
        Provider and appointment and ledger history stay attached.
        """
        provider = self.repo.get_by_id(self.db, provider_id, for_update=True)
        if not provider or not provider.is_verified:
            raise NotFound("Provider not found")

        if self.repo.has_future_appointments(self.db, provider_id, self.clock()):
            raise ProviderInUse("Provider still has upcoming appointments")

        removed = AvailabilityRepository.delete_for_provider(self.db, provider_id)
        provider.is_verified = False
        self.db.commit()
        self.db.refresh(provider)
        invalidate_directory()
        logger.info(f"🗑️ Provider {provider_id} delisted ({removed} windows dropped)")
        return provider
