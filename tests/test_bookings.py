"""Tests for booking acceptance, lifecycle transitions and open slots."""

import threading
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from mindcare.auth import Identity
from mindcare.database import Base
from mindcare.domain.bookings.service import BookingService
from mindcare.domain.providers.service import ProviderService
from mindcare.errors import (
    InvalidRange,
    InvalidTransition,
    NotDue,
    NotFound,
    OutsideAvailability,
    PermissionDenied,
    SlotConflict,
)
from mindcare.models import Appointment, LedgerEntry
from tests.conftest import ADMIN, NEXT_MONDAY, add_window, local, make_provider


class TestBook:
    @pytest.fixture(autouse=True)
    def setup(self, db, clock):
        self.db = db
        self.clock = clock
        self.provider = make_provider(db, clock)
        add_window(db, self.provider.id, day_of_week=1, start=time(9, 0), end=time(12, 0))
        self.service = BookingService(db, clock=clock)

    def book(self, hour, minute=0, duration=30, client="client-1", **kwargs):
        return self.service.book(
            self.provider.id, client, local(NEXT_MONDAY, hour, minute), duration, **kwargs
        )

    def test_monday_scenario(self):
        existing = self.book(10, 0, 30)
        assert existing.status == "scheduled"

        with pytest.raises(SlotConflict):
            self.book(10, 15, 30, client="client-2")

        abutting = self.book(10, 30, 30, client="client-2")
        assert abutting.starts_at == existing.ends_at

        with pytest.raises(OutsideAvailability):
            self.book(8, 0, 30, client="client-3")

        assert self.db.query(Appointment).count() == 2

    def test_stores_utc_interval_and_default_price(self):
        appointment = self.book(9, 0, 50)

        # 09:00 in Bucharest (EET) is 07:00 UTC
        assert appointment.starts_at == datetime(2026, 11, 2, 7, 0, tzinfo=timezone.utc)
        assert appointment.ends_at == datetime(2026, 11, 2, 7, 50, tzinfo=timezone.utc)
        assert appointment.duration_minutes == 50
        assert appointment.price == Decimal("100.00")
        assert appointment.client_uid == "client-1"

    def test_explicit_price(self):
        appointment = self.book(9, 0, 60, price=Decimal("150.00"))
        assert appointment.price == Decimal("150.00")

    def test_utc_input_is_interpreted_in_provider_timezone(self):
        start = datetime(2026, 11, 2, 9, 0, tzinfo=timezone.utc)  # 11:00 local
        appointment = self.service.book(self.provider.id, "client-1", start, 60)
        assert appointment.starts_at == start

        with pytest.raises(OutsideAvailability):
            # 12:00 local, after the window closes
            self.service.book(self.provider.id, "client-2", start + timedelta(hours=1), 30)

    def test_interval_must_fit_inside_window(self):
        with pytest.raises(OutsideAvailability):
            self.book(11, 30, 60)

    def test_touching_windows_form_one_span(self):
        add_window(self.db, self.provider.id, day_of_week=1, start=time(12, 0), end=time(14, 0))
        assert self.book(11, 30, 60).status == "scheduled"

    def test_overlapping_windows_are_bookable_as_their_union(self):
        tuesday = NEXT_MONDAY + timedelta(days=1)
        add_window(self.db, self.provider.id, day_of_week=2, start=time(9, 0), end=time(11, 0))
        add_window(self.db, self.provider.id, day_of_week=2, start=time(10, 0), end=time(12, 0))

        appointment = self.service.book(self.provider.id, "client-1", local(tuesday, 9, 30), 120)
        assert appointment.status == "scheduled"

    def test_gap_between_windows_is_not_bookable(self):
        wednesday = NEXT_MONDAY + timedelta(days=2)
        add_window(self.db, self.provider.id, day_of_week=3, start=time(9, 0), end=time(10, 0))
        add_window(self.db, self.provider.id, day_of_week=3, start=time(10, 30), end=time(12, 0))

        with pytest.raises(OutsideAvailability):
            self.service.book(self.provider.id, "client-1", local(wednesday, 9, 30), 60)

    def test_disabled_window_does_not_accept_bookings(self):
        add_window(self.db, self.provider.id, day_of_week=1, start=time(9, 0), end=time(12, 0), is_enabled=False)
        with pytest.raises(OutsideAvailability):
            self.book(9, 0, 30)

    def test_other_weekday_is_outside_availability(self):
        tuesday = NEXT_MONDAY + timedelta(days=1)
        with pytest.raises(OutsideAvailability):
            self.service.book(self.provider.id, "client-1", local(tuesday, 10), 30)

    def test_cancelled_appointment_frees_the_slot(self):
        first = self.book(10, 0, 60)
        self.service.cancel(first.id, Identity(uid="client-1"))

        second = self.book(10, 0, 60, client="client-2")
        assert second.status == "scheduled"

    @pytest.mark.parametrize("duration", [0, -30])
    def test_non_positive_duration(self, duration):
        with pytest.raises(InvalidRange):
            self.book(10, 0, duration)

    @pytest.mark.parametrize("duration", [24 * 60 + 1, 10**10])
    def test_duration_longer_than_a_day(self, duration):
        with pytest.raises(InvalidRange):
            self.book(9, 0, duration)

    def test_naive_start_rejected(self):
        with pytest.raises(InvalidRange):
            self.service.book(self.provider.id, "client-1", datetime(2026, 11, 2, 10, 0), 30)

    def test_past_start_rejected(self):
        with pytest.raises(InvalidRange):
            self.service.book(self.provider.id, "client-1", self.clock.now - timedelta(hours=1), 30)

    def test_crossing_midnight_rejected(self):
        add_window(self.db, self.provider.id, day_of_week=1, start=time(20, 0), end=time(23, 59))
        with pytest.raises(InvalidRange):
            self.book(23, 30, 60)

    def test_unknown_provider(self):
        with pytest.raises(NotFound):
            self.service.book(9999, "client-1", local(NEXT_MONDAY, 10), 30)

    def test_delisted_provider_takes_no_bookings(self):
        ProviderService(self.db, clock=self.clock).remove_provider(self.provider.id)
        with pytest.raises(NotFound):
            self.book(10, 0, 30)
        with pytest.raises(NotFound):
            self.service.open_slots(self.provider.id, NEXT_MONDAY, 30)


class TestLifecycle:
    @pytest.fixture(autouse=True)
    def setup(self, db, clock):
        self.db = db
        self.clock = clock
        self.provider = make_provider(db, clock)
        add_window(db, self.provider.id)
        self.service = BookingService(db, clock=clock)
        self.appointment = self.service.book(
            self.provider.id, "client-1", local(NEXT_MONDAY, 10), 60, price=Decimal("150.00")
        )
        self.owner = Identity(uid=self.provider.applicant_uid)

    def test_client_can_cancel(self):
        cancelled = self.service.cancel(self.appointment.id, Identity(uid="client-1"))
        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_by == "client-1"
        assert cancelled.cancelled_at == self.clock.now
        assert self.db.query(LedgerEntry).count() == 0

    def test_provider_and_admin_can_cancel(self):
        assert self.service.cancel(self.appointment.id, self.owner).status == "cancelled"

        other = self.service.book(self.provider.id, "client-2", local(NEXT_MONDAY, 11), 60)
        assert self.service.cancel(other.id, ADMIN).cancelled_by == ADMIN.uid

    def test_stranger_cannot_cancel(self):
        with pytest.raises(PermissionDenied):
            self.service.cancel(self.appointment.id, Identity(uid="client-2"))

    def test_cancel_twice_fails(self):
        self.service.cancel(self.appointment.id, Identity(uid="client-1"))
        with pytest.raises(InvalidTransition):
            self.service.cancel(self.appointment.id, Identity(uid="client-1"))

    def test_complete_before_start_is_not_due(self):
        with pytest.raises(NotDue):
            self.service.complete(self.appointment.id)

        self.db.refresh(self.appointment)
        assert self.appointment.status == "scheduled"
        assert self.db.query(LedgerEntry).count() == 0

    def test_complete_records_single_pending_earning(self):
        self.clock.now = self.appointment.starts_at + timedelta(minutes=5)

        completed = self.service.complete(self.appointment.id, actor=self.owner)

        assert completed.status == "completed"
        assert completed.completed_at == self.clock.now
        entries = self.db.query(LedgerEntry).all()
        assert len(entries) == 1
        assert entries[0].transaction_type == "earning"
        assert entries[0].status == "pending"
        assert entries[0].amount == Decimal("150.00")
        assert entries[0].appointment_id == self.appointment.id

        with pytest.raises(InvalidTransition):
            self.service.complete(self.appointment.id)
        assert self.db.query(LedgerEntry).count() == 1

    def test_completed_appointment_still_blocks_its_slot(self):
        self.clock.now = self.appointment.starts_at + timedelta(minutes=5)
        self.service.complete(self.appointment.id)

        with pytest.raises(SlotConflict):
            self.service.book(self.provider.id, "client-2", local(NEXT_MONDAY, 10, 30), 30)

    def test_cancelled_appointment_cannot_complete(self):
        self.service.cancel(self.appointment.id, Identity(uid="client-1"))
        self.clock.advance(days=8)
        with pytest.raises(InvalidTransition):
            self.service.complete(self.appointment.id)

    def test_client_cannot_complete(self):
        self.clock.now = self.appointment.ends_at
        with pytest.raises(PermissionDenied):
            self.service.complete(self.appointment.id, actor=Identity(uid="client-1"))

    def test_reads(self):
        assert self.service.get_appointment(self.appointment.id, Identity(uid="client-1")).id == self.appointment.id
        with pytest.raises(PermissionDenied):
            self.service.get_appointment(self.appointment.id, Identity(uid="client-2"))

        assert [a.id for a in self.service.list_for_client("client-1")] == [self.appointment.id]
        assert self.service.list_for_client("client-2") == []
        assert len(self.service.list_for_provider(self.provider.id, self.owner)) == 1
        assert self.service.list_for_provider(self.provider.id, self.owner, status="cancelled") == []

        with pytest.raises(InvalidRange):
            self.service.list_for_provider(self.provider.id, self.owner, start_from=datetime(2026, 11, 1))


class TestOpenSlots:
    @pytest.fixture(autouse=True)
    def setup(self, db, clock):
        self.db = db
        self.clock = clock
        self.provider = make_provider(db, clock)
        add_window(db, self.provider.id)
        self.service = BookingService(db, clock=clock)

    def slot_times(self, on_date: date, duration: int):
        result = self.service.open_slots(self.provider.id, on_date, duration)
        return [s.strftime("%H:%M") for s in result.slots]

    def test_slots_skip_booked_time(self):
        self.service.book(self.provider.id, "client-1", local(NEXT_MONDAY, 10), 30)
        assert self.slot_times(NEXT_MONDAY, 60) == ["09:00", "10:30", "10:45", "11:00"]

    def test_listed_slots_can_be_booked(self):
        slots = self.service.open_slots(self.provider.id, NEXT_MONDAY, 60).slots
        assert self.service.book(self.provider.id, "client-1", slots[0], 60).status == "scheduled"
        assert self.service.book(self.provider.id, "client-2", slots[-1], 60).status == "scheduled"

    def test_no_windows_means_no_slots(self):
        assert self.slot_times(NEXT_MONDAY + timedelta(days=1), 30) == []

    def test_past_slots_are_hidden(self):
        self.clock.now = local(NEXT_MONDAY, 10, 20).astimezone(timezone.utc)
        assert self.slot_times(NEXT_MONDAY, 60) == ["10:30", "10:45", "11:00"]

    def test_overlapping_windows_are_merged(self):
        tuesday = NEXT_MONDAY + timedelta(days=1)
        add_window(self.db, self.provider.id, day_of_week=2, start=time(9, 0), end=time(11, 0))
        add_window(self.db, self.provider.id, day_of_week=2, start=time(10, 0), end=time(12, 0))
        assert self.slot_times(tuesday, 120) == ["09:00", "09:15", "09:30", "09:45", "10:00"]

    @pytest.mark.parametrize("duration", [0, 24 * 60 + 1, 10**10])
    def test_invalid_duration(self, duration):
        with pytest.raises(InvalidRange):
            self.service.open_slots(self.provider.id, NEXT_MONDAY, duration)


def test_concurrent_overlapping_bookings_yield_one_success(tmp_path, clock):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 15},
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    setup_session = Session()
    provider = make_provider(setup_session, clock)
    add_window(setup_session, provider.id)
    provider_id = provider.id
    setup_session.close()

    barrier = threading.Barrier(2)
    results = []
    results_lock = threading.Lock()

    def attempt(client_uid: str, minute: int):
        session = Session()
        try:
            barrier.wait()
            BookingService(session, clock=clock).book(
                provider_id, client_uid, local(NEXT_MONDAY, 10, minute), 60
            )
            outcome = "booked"
        except SlotConflict:
            outcome = "conflict"
        finally:
            session.close()
        with results_lock:
            results.append(outcome)

    threads = [
        threading.Thread(target=attempt, args=("client-a", 0)),
        threading.Thread(target=attempt, args=("client-b", 30)),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sorted(results) == ["booked", "conflict"]

    check = Session()
    assert check.query(Appointment).filter(Appointment.status == "scheduled").count() == 1
    check.close()
    engine.dispose()
