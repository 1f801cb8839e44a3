"""Availability repository - Database operations for weekly windows"""

from datetime import time
from typing import Optional

from sqlalchemy.orm import Query, Session

from ...models import AvailabilityWindow


class AvailabilityRepository:
    """Repository for availability window database operations"""

    @staticmethod
    def get_window(db: Session, window_id: int) -> Optional[AvailabilityWindow]:
        return db.query(AvailabilityWindow).filter(AvailabilityWindow.id == window_id).first()

    @staticmethod
    def get_by_natural_key(
        db: Session, provider_id: int, day_of_week: int, start_time: time
    ) -> Optional[AvailabilityWindow]:
        return (
            db.query(AvailabilityWindow)
            .filter(
                AvailabilityWindow.provider_id == provider_id,
                AvailabilityWindow.day_of_week == day_of_week,
                AvailabilityWindow.start_time == start_time,
            )
            .first()
        )

    @staticmethod
    def windows_query(db: Session, provider_id: int) -> Query:
        """Unexecuted query over a provider's windows, by day then start time"""
        return (
            db.query(AvailabilityWindow)
            .filter(AvailabilityWindow.provider_id == provider_id)
            .order_by(AvailabilityWindow.day_of_week, AvailabilityWindow.start_time)
        )

    @staticmethod
    def enabled_windows_for_day(db: Session, provider_id: int, day_of_week: int) -> list[AvailabilityWindow]:
        return (
            db.query(AvailabilityWindow)
            .filter(
                AvailabilityWindow.provider_id == provider_id,
                AvailabilityWindow.day_of_week == day_of_week,
                AvailabilityWindow.is_enabled.is_(True),
            )
            .order_by(AvailabilityWindow.start_time)
            .all()
        )

    @staticmethod
    def create(db: Session, provider_id: int, **window_data) -> AvailabilityWindow:
        window = AvailabilityWindow(provider_id=provider_id, **window_data)
        db.add(window)
        db.flush()
        return window

    @staticmethod
    def delete(db: Session, window: AvailabilityWindow) -> None:
        db.delete(window)
        db.flush()

    @staticmethod
    def delete_for_provider(db: Session, provider_id: int) -> int:
        removed = (
            db.query(AvailabilityWindow)
            .filter(AvailabilityWindow.provider_id == provider_id)
            .delete(synchronize_session=False)
        )
        db.flush()
        return removed
