"""Booking service - Conflict-free appointment scheduling"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...auth import Identity
from ...config import DEFAULT_APPOINTMENT_MINUTES, SLOT_STEP_MINUTES
from ...errors import (
    InvalidRange,
    InvalidTransition,
    NotDue,
    NotFound,
    OutsideAvailability,
    PermissionDenied,
    SlotConflict,
)
from ...locks import provider_lock
from ...models import APPOINTMENT_STATUSES, OVERLAP_CONSTRAINT_NAME, Appointment, Provider, utcnow
from ...utils.retry import retry_on_transient
from ..availability.repository import AvailabilityRepository
from ..ledger.service import LedgerService
from ..providers.repository import ProviderRepository
from ..providers.service import ensure_can_manage
from .repository import AppointmentRepository
from .schemas import OpenSlotsResponse

logger = logging.getLogger(__name__)

# Checked before any datetime arithmetic; a longer session never fits in one local day
MAX_DURATION_MINUTES = 24 * 60


def check_duration(duration_minutes: Optional[int]) -> None:
    if duration_minutes is None or duration_minutes <= 0:
        raise InvalidRange("Duration must be a positive number of minutes")
    if duration_minutes > MAX_DURATION_MINUTES:
        raise InvalidRange("A session cannot be longer than a day")


def is_aware(value: datetime) -> bool:
    return value.tzinfo is not None and value.utcoffset() is not None


def local_day_of_week(local_day) -> int:
    """0 = Sunday ... 6 = Saturday"""
    return local_day.isoweekday() % 7


def bookable_spans(windows) -> list[tuple[time, time]]:
    """Merge windows into disjoint (start, end) spans; touching windows join"""
    spans: list[tuple[time, time]] = []
    for window in sorted(windows, key=lambda w: (w.start_time, w.end_time)):
        if spans and window.start_time <= spans[-1][1]:
            spans[-1] = (spans[-1][0], max(spans[-1][1], window.end_time))
        else:
            spans.append((window.start_time, window.end_time))
    return spans


def fits_span(spans, local_start: datetime, local_end: datetime) -> bool:
    """True when [local_start, local_end) lies inside one merged span"""
    start_time = local_start.time()
    end_time = local_end.time()
    return any(start <= start_time and end_time <= end for start, end in spans)


def overlaps(appointments, starts_at: datetime, ends_at: datetime) -> bool:
    return any(a.starts_at < ends_at and starts_at < a.ends_at for a in appointments)


class BookingService:
    """Service layer for appointment booking and lifecycle.

    Book runs its availability check, conflict check and insert while holding
    the provider's lock, so two overlapping requests can never both commit.
    """

    def __init__(self, db: Session, clock=utcnow):
        self.db = db
        self.clock = clock
        self.repo = AppointmentRepository()
        self.providers = ProviderRepository()
        self.windows = AvailabilityRepository()

    def _get_provider(self, provider_id: int, for_update: bool = False, bookable: bool = False) -> Provider:
        provider = self.providers.get_by_id(self.db, provider_id, for_update=for_update)
        # Delisted providers keep their history but take no new bookings
        if not provider or (bookable and not provider.is_verified):
            raise NotFound("Provider not found")
        return provider

    def _get_appointment(self, appointment_id: int, for_update: bool = False) -> Appointment:
        appointment = self.repo.get_by_id(self.db, appointment_id, for_update=for_update)
        if not appointment:
            raise NotFound("Appointment not found")
        return appointment

    @staticmethod
    def _is_participant(appointment: Appointment, actor: Identity) -> bool:
        return (
            actor.is_admin
            or appointment.client_uid == actor.uid
            or appointment.provider.applicant_uid == actor.uid
        )

    # ========================================================================
    # Booking
    # ========================================================================

    @retry_on_transient
    def book(
        self,
        provider_id: int,
        client_uid: str,
        start: datetime,
        duration_minutes: int = DEFAULT_APPOINTMENT_MINUTES,
        price: Optional[Decimal] = None,
        notes: Optional[str] = None,
    ) -> Appointment:
        check_duration(duration_minutes)
        if not is_aware(start):
            raise InvalidRange("Start time must include a timezone offset")
        if start < self.clock():
            raise InvalidRange("Cannot book an appointment in the past")
        if price is not None and price < 0:
            raise InvalidRange("Price cannot be negative")

        starts_at = start.astimezone(timezone.utc)
        ends_at = starts_at + timedelta(minutes=duration_minutes)

        with provider_lock(provider_id):
            provider = self._get_provider(provider_id, for_update=True, bookable=True)

            tz = ZoneInfo(provider.timezone)
            local_start = starts_at.astimezone(tz)
            local_end = ends_at.astimezone(tz)
            # An interval ending exactly at midnight also leaves the local day
            if local_end.date() != local_start.date():
                raise InvalidRange("Appointments cannot cross midnight in the provider's timezone")

            day = local_day_of_week(local_start)
            spans = bookable_spans(self.windows.enabled_windows_for_day(self.db, provider_id, day))
            if not fits_span(spans, local_start, local_end):
                raise OutsideAvailability(
                    f"{local_start:%A %H:%M}-{local_end:%H:%M} ({provider.timezone}) "
                    "is outside the provider's availability"
                )

            conflict = self.repo.find_conflict(self.db, provider_id, starts_at, ends_at)
            if conflict:
                raise SlotConflict(f"Slot overlaps appointment {conflict.id}")

            try:
                appointment = self.repo.create(
                    self.db,
                    provider_id=provider_id,
                    client_uid=client_uid,
                    starts_at=starts_at,
                    ends_at=ends_at,
                    duration_minutes=duration_minutes,
                    status="scheduled",
                    price=price if price is not None else provider.session_price,
                    notes=notes,
                )
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                if OVERLAP_CONSTRAINT_NAME in str(e.orig):
                    raise SlotConflict("Slot was just taken by another booking") from e
                raise

        self.db.refresh(appointment)
        logger.info(
            f"📅 Appointment {appointment.id} booked: provider {provider_id}, client {client_uid}, "
            f"{starts_at.isoformat()} for {duration_minutes} min"
        )
        return appointment

    # ========================================================================
    # Lifecycle transitions
    # ========================================================================

    @retry_on_transient
    def cancel(self, appointment_id: int, actor: Identity) -> Appointment:
        appointment = self._get_appointment(appointment_id, for_update=True)
        if not self._is_participant(appointment, actor):
            raise PermissionDenied("Only the client, the provider or an admin can cancel")
        if appointment.status != "scheduled":
            raise InvalidTransition(f"Appointment is already {appointment.status}")

        appointment.status = "cancelled"
        appointment.cancelled_at = self.clock()
        appointment.cancelled_by = actor.uid
        self.db.commit()
        self.db.refresh(appointment)
        logger.info(f"🚫 Appointment {appointment_id} cancelled by {actor.uid}")
        return appointment

    @retry_on_transient
    def complete(self, appointment_id: int, actor: Optional[Identity] = None) -> Appointment:
        """Mark a started session completed and stage its earning in the same commit"""
        appointment = self._get_appointment(appointment_id, for_update=True)
        if actor is not None:
            ensure_can_manage(appointment.provider, actor)
        if appointment.status != "scheduled":
            raise InvalidTransition(f"Appointment is already {appointment.status}")

        now = self.clock()
        if appointment.starts_at > now:
            raise NotDue("Appointment has not started yet")

        appointment.status = "completed"
        appointment.completed_at = now
        LedgerService(self.db, clock=self.clock).record_earning(
            appointment.provider_id, appointment.id, appointment.price
        )
        self.db.commit()
        self.db.refresh(appointment)
        logger.info(f"✅ Appointment {appointment_id} completed")
        return appointment

    # ========================================================================
    # Reads
    # ========================================================================

    def open_slots(
        self, provider_id: int, on_date: date, duration_minutes: int = DEFAULT_APPOINTMENT_MINUTES
    ) -> OpenSlotsResponse:
        """Start times on a local date where a booking would currently be accepted"""
        check_duration(duration_minutes)

        provider = self._get_provider(provider_id, bookable=True)
        tz = ZoneInfo(provider.timezone)
        windows = self.windows.enabled_windows_for_day(
            self.db, provider_id, local_day_of_week(on_date)
        )

        day_start = datetime.combine(on_date, datetime.min.time(), tzinfo=tz).astimezone(timezone.utc)
        day_end = datetime.combine(on_date + timedelta(days=1), datetime.min.time(), tzinfo=tz).astimezone(
            timezone.utc
        )
        booked = self.repo.blocking_between(self.db, provider_id, day_start, day_end)

        now = self.clock()
        step = timedelta(minutes=SLOT_STEP_MINUTES)
        duration = timedelta(minutes=duration_minutes)
        found = set()
        spans = bookable_spans(windows)
        # Candidates step from every window start; acceptance uses the merged spans
        for window in windows:
            cursor = datetime.combine(on_date, window.start_time)
            window_end = datetime.combine(on_date, window.end_time)
            while cursor < window_end:
                starts_at = cursor.replace(tzinfo=tz).astimezone(timezone.utc)
                ends_at = starts_at + duration
                local_start = starts_at.astimezone(tz)
                local_end = ends_at.astimezone(tz)
                if (
                    starts_at >= now
                    and local_end.date() == on_date
                    and fits_span(spans, local_start, local_end)
                    and not overlaps(booked, starts_at, ends_at)
                ):
                    found.add(starts_at)
                cursor += step

        return OpenSlotsResponse(
            provider_id=provider_id,
            date=on_date,
            timezone=provider.timezone,
            duration_minutes=duration_minutes,
            slots=[s.astimezone(tz) for s in sorted(found)],
        )

    def get_appointment(self, appointment_id: int, actor: Identity) -> Appointment:
        appointment = self._get_appointment(appointment_id)
        if not self._is_participant(appointment, actor):
            raise PermissionDenied("You are not a participant of this appointment")
        return appointment

    def list_for_provider(
        self,
        provider_id: int,
        actor: Optional[Identity] = None,
        start_from: Optional[datetime] = None,
        start_to: Optional[datetime] = None,
        status: Optional[str] = None,
    ) -> list[Appointment]:
        provider = self._get_provider(provider_id)
        if actor is not None:
            ensure_can_manage(provider, actor)
        for bound in (start_from, start_to):
            if bound is not None and not is_aware(bound):
                raise InvalidRange("Range bounds must include a timezone offset")
        if status and status not in APPOINTMENT_STATUSES:
            raise InvalidRange(f"Unknown appointment status: {status}")
        return self.repo.list_for_provider(self.db, provider_id, start_from, start_to, status)

    def list_for_client(self, client_uid: str) -> list[Appointment]:
        return self.repo.list_for_client(self.db, client_uid)
