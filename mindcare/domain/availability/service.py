"""Availability service - Recurring weekly availability windows"""

import logging
from datetime import time
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from ...auth import Identity
from ...errors import InvalidRange, NotFound
from ...locks import provider_lock
from ...models import AvailabilityWindow, Provider
from ...utils.retry import retry_on_transient
from ..providers.repository import ProviderRepository
from ..providers.service import ensure_can_manage
from .repository import AvailabilityRepository

logger = logging.getLogger(__name__)


class AvailabilityService:
    """Service layer for availability windows.

    Windows only gate new bookings; changing or removing one never touches
    appointments that were already accepted.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = AvailabilityRepository()
        self.providers = ProviderRepository()

    def _get_provider(self, provider_id: int) -> Provider:
        provider = self.providers.get_by_id(self.db, provider_id)
        if not provider:
            raise NotFound("Provider not found")
        return provider

    def _get_window(self, window_id: int, actor: Optional[Identity]) -> AvailabilityWindow:
        window = self.repo.get_window(self.db, window_id)
        if not window:
            raise NotFound("Availability window not found")
        if actor is not None:
            ensure_can_manage(window.provider, actor)
        return window

    @retry_on_transient
    def set_window(
        self,
        provider_id: int,
        day_of_week: int,
        start_time: time,
        end_time: time,
        is_enabled: bool = True,
        actor: Optional[Identity] = None,
    ) -> AvailabilityWindow:
        """Create or replace the window keyed by (provider, day, start)"""
        if not 0 <= day_of_week <= 6:
            raise InvalidRange("day_of_week must be between 0 (Sunday) and 6 (Saturday)")
        if start_time >= end_time:
            raise InvalidRange("Window start time must be before its end time")

        provider = self._get_provider(provider_id)
        if actor is not None:
            ensure_can_manage(provider, actor)

        with provider_lock(provider_id):
            window = self.repo.get_by_natural_key(self.db, provider_id, day_of_week, start_time)
            if window:
                window.end_time = end_time
                window.is_enabled = is_enabled
            else:
                window = self.repo.create(
                    self.db,
                    provider_id,
                    day_of_week=day_of_week,
                    start_time=start_time,
                    end_time=end_time,
                    is_enabled=is_enabled,
                )
            try:
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                raise InvalidRange(f"Window rejected by storage constraints: {e.orig}") from e

        self.db.refresh(window)
        logger.info(
            f"🗓️ Window {window.id} set for provider {provider_id}: day {day_of_week} "
            f"{start_time:%H:%M}-{end_time:%H:%M} enabled={is_enabled}"
        )
        return window

    @retry_on_transient
    def remove_window(self, window_id: int, actor: Optional[Identity] = None) -> None:
        window = self._get_window(window_id, actor)
        self.repo.delete(self.db, window)
        self.db.commit()
        logger.info(f"🗑️ Window {window_id} removed")

    @retry_on_transient
    def toggle_enabled(self, window_id: int, actor: Optional[Identity] = None) -> AvailabilityWindow:
        window = self._get_window(window_id, actor)
        window.is_enabled = not window.is_enabled
        self.db.commit()
        self.db.refresh(window)
        return window

    def list_windows(self, provider_id: int) -> Query:
        """Lazy, restartable listing: every iteration re-reads the windows"""
        self._get_provider(provider_id)
        return self.repo.windows_query(self.db, provider_id)
