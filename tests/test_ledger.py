"""Tests for the append-only earnings ledger and derived balances."""

import threading
from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from mindcare.auth import Identity
from mindcare.database import Base
from mindcare.domain.bookings.service import BookingService
from mindcare.domain.ledger.service import LedgerService, period_start
from mindcare.errors import (
    DuplicateEntry,
    InsufficientBalance,
    InvalidRange,
    InvalidTransition,
    NotFound,
    PermissionDenied,
)
from mindcare.models import LedgerEntry
from tests.conftest import NEXT_MONDAY, REFERENCE_NOW, add_window, local, make_provider


def complete_session(db, clock, provider, on_date: date, hour: int, price: str):
    """Book a session, move the clock into it and complete it"""
    bookings = BookingService(db, clock=clock)
    appointment = bookings.book(provider.id, "client-1", local(on_date, hour), 60, price=Decimal(price))
    clock.now = appointment.starts_at + timedelta(minutes=10)
    return bookings.complete(appointment.id)


class TestEarningScenario:
    @pytest.fixture(autouse=True)
    def setup(self, db, clock):
        self.db = db
        self.clock = clock
        self.provider = make_provider(db, clock)
        add_window(db, self.provider.id)
        self.ledger = LedgerService(db, clock=clock)

    def test_complete_settle_withdraw(self):
        appointment = complete_session(self.db, self.clock, self.provider, NEXT_MONDAY, 10, "150.00")

        entries = self.ledger.list_entries(self.provider.id)
        assert len(entries) == 1
        earning = entries[0]
        assert (earning.transaction_type, earning.status, earning.amount) == ("earning", "pending", Decimal("150.00"))
        assert earning.appointment_id == appointment.id

        balance = self.ledger.balance(self.provider.id)
        assert balance.pending_earnings == Decimal("150.00")
        assert balance.available == Decimal("0.00")

        settled = self.ledger.settle_earning(earning.id)
        assert settled.status == "completed"
        assert settled.processed_at == self.clock.now
        assert self.ledger.balance(self.provider.id).available == Decimal("150.00")

        with pytest.raises(InsufficientBalance):
            self.ledger.request_withdrawal(self.provider.id, Decimal("200.00"))

        withdrawal = self.ledger.request_withdrawal(self.provider.id, Decimal("150.00"))
        assert withdrawal.transaction_type == "withdrawal"
        assert withdrawal.status == "completed"
        assert withdrawal.processed_at == self.clock.now

        balance = self.ledger.balance(self.provider.id)
        assert balance.available == Decimal("0.00")
        assert balance.total_earnings == Decimal("150.00")
        assert balance.completed_earnings == Decimal("150.00")
        assert balance.total_withdrawals == Decimal("150.00")
        assert balance.currency

    def test_second_earning_for_appointment_is_rejected(self):
        appointment = complete_session(self.db, self.clock, self.provider, NEXT_MONDAY, 10, "150.00")

        with pytest.raises(DuplicateEntry):
            self.ledger.record_earning(self.provider.id, appointment.id, Decimal("150.00"))
        self.db.rollback()

        assert self.db.query(LedgerEntry).count() == 1

    def test_void_excludes_earning_from_totals(self):
        complete_session(self.db, self.clock, self.provider, NEXT_MONDAY, 10, "80.00")
        earning = self.ledger.list_entries(self.provider.id)[0]

        voided = self.ledger.void_earning(earning.id)
        assert voided.status == "cancelled"

        balance = self.ledger.balance(self.provider.id)
        assert balance.total_earnings == Decimal("0.00")
        assert balance.this_period_earnings == Decimal("0.00")

        with pytest.raises(InvalidTransition):
            self.ledger.settle_earning(earning.id)

    def test_settle_unknown_or_withdrawal_entry(self):
        complete_session(self.db, self.clock, self.provider, NEXT_MONDAY, 10, "50.00")
        earning = self.ledger.list_entries(self.provider.id)[0]
        self.ledger.settle_earning(earning.id)
        withdrawal = self.ledger.request_withdrawal(self.provider.id, Decimal("20.00"))

        with pytest.raises(NotFound):
            self.ledger.settle_earning(withdrawal.id)
        with pytest.raises(NotFound):
            self.ledger.void_earning(9999)

    @pytest.mark.parametrize("amount", ["0", "-10.00", "10.005", "Infinity", "NaN"])
    def test_invalid_withdrawal_amounts(self, amount):
        with pytest.raises(InvalidRange):
            self.ledger.request_withdrawal(self.provider.id, Decimal(amount))

    @pytest.mark.parametrize("amount", ["1E+40", "1E+3"])
    def test_large_amount_exceeds_balance(self, amount):
        with pytest.raises(InsufficientBalance):
            self.ledger.request_withdrawal(self.provider.id, Decimal(amount))

    def test_trailing_zeros_are_whole_cents(self):
        complete_session(self.db, self.clock, self.provider, NEXT_MONDAY, 10, "50.00")
        self.ledger.settle_earning(self.ledger.list_entries(self.provider.id)[0].id)

        withdrawal = self.ledger.request_withdrawal(self.provider.id, Decimal("20.500"))
        assert withdrawal.amount == Decimal("20.50")

    def test_withdrawal_requires_owner(self):
        with pytest.raises(PermissionDenied):
            self.ledger.request_withdrawal(self.provider.id, Decimal("1.00"), actor=Identity(uid="client-1"))

    def test_history_is_newest_first(self):
        complete_session(self.db, self.clock, self.provider, NEXT_MONDAY, 9, "60.00")
        earning = self.ledger.list_entries(self.provider.id)[0]
        self.ledger.settle_earning(earning.id)
        self.clock.advance(minutes=5)
        withdrawal = self.ledger.request_withdrawal(self.provider.id, Decimal("60.00"))

        assert [e.id for e in self.ledger.list_entries(self.provider.id)] == [withdrawal.id, earning.id]


class TestPeriodAndImmutability:
    @pytest.fixture(autouse=True)
    def setup(self, db, clock):
        self.db = db
        self.clock = clock
        self.provider = make_provider(db, clock)
        add_window(db, self.provider.id)
        self.ledger = LedgerService(db, clock=clock)

    def test_this_period_counts_current_month_only(self):
        october_day = REFERENCE_NOW.date()  # Monday 26 October
        complete_session(self.db, self.clock, self.provider, october_day, 11, "100.00")
        complete_session(self.db, self.clock, self.provider, NEXT_MONDAY, 10, "40.00")

        balance = self.ledger.balance(self.provider.id)
        assert balance.total_earnings == Decimal("140.00")
        assert balance.pending_earnings == Decimal("140.00")
        assert balance.this_period_earnings == Decimal("40.00")

    def test_period_start_uses_provider_timezone(self):
        start = period_start(local(date(2026, 11, 1), 0, 30), "Europe/Bucharest")
        assert (start.year, start.month, start.day, start.hour) == (2026, 11, 1, 0)

    def test_entries_cannot_be_rewritten(self):
        complete_session(self.db, self.clock, self.provider, NEXT_MONDAY, 10, "150.00")
        entry = self.ledger.list_entries(self.provider.id)[0]

        entry.amount = Decimal("1.00")
        with pytest.raises(InvalidTransition):
            self.db.flush()
        self.db.rollback()

        self.db.delete(entry)
        with pytest.raises(InvalidTransition):
            self.db.flush()
        self.db.rollback()

        self.db.refresh(entry)
        assert entry.amount == Decimal("150.00")

    def test_zero_priced_session_records_zero_earning(self):
        complete_session(self.db, self.clock, self.provider, NEXT_MONDAY, 10, "0.00")
        entry = self.ledger.list_entries(self.provider.id)[0]
        assert entry.amount == Decimal("0.00")


def test_concurrent_withdrawals_cannot_overdraw(tmp_path, clock):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'withdrawals.db'}",
        connect_args={"check_same_thread": False, "timeout": 15},
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    setup_session = Session()
    provider = make_provider(setup_session, clock)
    add_window(setup_session, provider.id)
    complete_session(setup_session, clock, provider, NEXT_MONDAY, 10, "150.00")
    ledger = LedgerService(setup_session, clock=clock)
    ledger.settle_earning(ledger.list_entries(provider.id)[0].id)
    provider_id = provider.id
    setup_session.close()

    barrier = threading.Barrier(2)
    results = []
    results_lock = threading.Lock()

    def attempt():
        session = Session()
        try:
            barrier.wait()
            LedgerService(session, clock=clock).request_withdrawal(provider_id, Decimal("100.00"))
            outcome = "withdrawn"
        except InsufficientBalance:
            outcome = "insufficient"
        finally:
            session.close()
        with results_lock:
            results.append(outcome)

    threads = [threading.Thread(target=attempt) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sorted(results) == ["insufficient", "withdrawn"]

    check = Session()
    assert LedgerService(check, clock=clock).balance(provider_id).available == Decimal("50.00")
    check.close()
    engine.dispose()
