"""Provider repository - Database operations for providers"""

from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models import Appointment, Provider, ProviderReview


class ProviderRepository:
    """Repository for provider database operations"""

    @staticmethod
    def get_by_id(db: Session, provider_id: int, for_update: bool = False) -> Optional[Provider]:
        """Get a provider by ID, optionally row-locking it for the transaction"""
        query = db.query(Provider).filter(Provider.id == provider_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def get_by_applicant(db: Session, applicant_uid: str) -> Optional[Provider]:
        return db.query(Provider).filter(Provider.applicant_uid == applicant_uid).first()

    @staticmethod
    def create(db: Session, **provider_data) -> Provider:
        """Stage a new provider; the caller commits"""
        provider = Provider(**provider_data)
        db.add(provider)
        db.flush()
        return provider

    @staticmethod
    def list_verified(db: Session, specialization: Optional[str] = None) -> list[Provider]:
        query = db.query(Provider).filter(Provider.is_verified.is_(True))
        if specialization:
            query = query.filter(func.lower(Provider.specialization) == specialization.lower())
        return query.order_by(Provider.display_name, Provider.id).all()

    @staticmethod
    def rating_summaries(db: Session, provider_ids: list[int]) -> dict[int, tuple[Optional[float], int]]:
        """Average rating and review count per provider, derived from provider_reviews"""
        if not provider_ids:
            return {}
        rows = (
            db.query(
                ProviderReview.provider_id,
                func.avg(ProviderReview.rating),
                func.count(ProviderReview.id),
            )
            .filter(ProviderReview.provider_id.in_(provider_ids))
            .group_by(ProviderReview.provider_id)
            .all()
        )
        summaries = {provider_id: (None, 0) for provider_id in provider_ids}
        for provider_id, average, count in rows:
            summaries[provider_id] = (round(float(average), 2), count)
        return summaries

    @staticmethod
    def has_future_appointments(db: Session, provider_id: int, now: datetime) -> bool:
        return (
            db.query(Appointment.id)
            .filter(
                Appointment.provider_id == provider_id,
                Appointment.status == "scheduled",
                Appointment.starts_at > now,
            )
            .first()
            is not None
        )

