"""Ledger service - Append-only earnings and withdrawals, derived balances"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...auth import Identity
from ...config import CURRENCY
from ...errors import DuplicateEntry, InsufficientBalance, InvalidRange, InvalidTransition, NotFound
from ...locks import provider_lock
from ...models import LedgerEntry, Provider, utcnow
from ...utils.retry import retry_on_transient
from ..providers.repository import ProviderRepository
from ..providers.service import ensure_can_manage
from .repository import LedgerRepository
from .schemas import BalanceResponse

logger = logging.getLogger(__name__)

LIVE_EARNING_STATUSES = ("pending", "completed")


def period_start(now: datetime, tz_name: str) -> datetime:
    """Start of the current calendar month in the given timezone"""
    local_now = now.astimezone(ZoneInfo(tz_name))
    return local_now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class LedgerService:
    """Service layer for the provider ledger.

    Balances are never stored: every read sums the entries again.
    """

    def __init__(self, db: Session, clock=utcnow):
        self.db = db
        self.clock = clock
        self.repo = LedgerRepository()
        self.providers = ProviderRepository()

    def _get_provider(self, provider_id: int, actor: Optional[Identity] = None) -> Provider:
        provider = self.providers.get_by_id(self.db, provider_id)
        if not provider:
            raise NotFound("Provider not found")
        if actor is not None:
            ensure_can_manage(provider, actor)
        return provider

    def record_earning(self, provider_id: int, appointment_id: int, amount: Decimal) -> LedgerEntry:
        """Stage a pending earning inside the caller's transaction (no commit)"""
        if amount < 0:
            raise InvalidRange("Earning amount cannot be negative")
        if self.repo.get_for_appointment(self.db, appointment_id):
            raise DuplicateEntry(f"Appointment {appointment_id} already has a ledger entry")

        try:
            entry = self.repo.create(
                self.db,
                provider_id=provider_id,
                appointment_id=appointment_id,
                amount=amount,
                transaction_type="earning",
                status="pending",
                created_at=self.clock(),
            )
        except IntegrityError as e:
            raise DuplicateEntry(f"Appointment {appointment_id} already has a ledger entry") from e

        logger.info(f"💰 Earning of {amount} {CURRENCY} staged for provider {provider_id} (appointment {appointment_id})")
        return entry

    def _transition_earning(self, entry_id: int, new_status: str) -> LedgerEntry:
        entry = self.repo.get_by_id(self.db, entry_id, for_update=True)
        if not entry or entry.transaction_type != "earning":
            raise NotFound("Earning not found")
        if entry.status != "pending":
            raise InvalidTransition(f"Earning is already {entry.status}")

        entry.status = new_status
        entry.processed_at = self.clock()
        self.db.commit()
        self.db.refresh(entry)
        logger.info(f"✅ Earning {entry_id} marked {new_status}")
        return entry

    @retry_on_transient
    def settle_earning(self, entry_id: int) -> LedgerEntry:
        return self._transition_earning(entry_id, "completed")

    @retry_on_transient
    def void_earning(self, entry_id: int) -> LedgerEntry:
        return self._transition_earning(entry_id, "cancelled")

    def _available(self, provider_id: int) -> Decimal:
        completed_earnings = self.repo.sum_amount(self.db, provider_id, "earning", ("completed",))
        withdrawn = self.repo.sum_amount(self.db, provider_id, "withdrawal", ("completed",))
        return completed_earnings - withdrawn

    @retry_on_transient
    def request_withdrawal(
        self, provider_id: int, amount: Decimal, actor: Optional[Identity] = None
    ) -> LedgerEntry:
        """Withdraw from the available balance; processed immediately"""
        if amount is None or not amount.is_finite() or amount <= 0:
            raise InvalidRange("Withdrawal amount must be positive")
        if amount.normalize().as_tuple().exponent < -2:
            raise InvalidRange("Withdrawal amount cannot have more than 2 decimal places")

        self._get_provider(provider_id, actor)

        with provider_lock(provider_id):
            self.providers.get_by_id(self.db, provider_id, for_update=True)
            available = self._available(provider_id)
            if amount > available:
                raise InsufficientBalance(
                    f"Requested {amount} {CURRENCY} but only {available} {CURRENCY} is available"
                )

            now = self.clock()
            entry = self.repo.create(
                self.db,
                provider_id=provider_id,
                amount=amount,
                transaction_type="withdrawal",
                status="completed",
                created_at=now,
                processed_at=now,
            )
            self.db.commit()

        self.db.refresh(entry)
        logger.info(f"🏦 Withdrawal {entry.id} of {amount} {CURRENCY} for provider {provider_id}")
        return entry

    def balance(self, provider_id: int, actor: Optional[Identity] = None) -> BalanceResponse:
        provider = self._get_provider(provider_id, actor)

        pending = self.repo.sum_amount(self.db, provider_id, "earning", ("pending",))
        completed = self.repo.sum_amount(self.db, provider_id, "earning", ("completed",))
        this_period = self.repo.sum_amount(
            self.db,
            provider_id,
            "earning",
            LIVE_EARNING_STATUSES,
            since=period_start(self.clock(), provider.timezone),
        )
        withdrawn = self.repo.sum_amount(self.db, provider_id, "withdrawal", ("completed",))

        return BalanceResponse(
            provider_id=provider_id,
            currency=CURRENCY,
            total_earnings=pending + completed,
            this_period_earnings=this_period,
            pending_earnings=pending,
            completed_earnings=completed,
            total_withdrawals=withdrawn,
            available=completed - withdrawn,
        )

    def list_entries(self, provider_id: int, actor: Optional[Identity] = None) -> list[LedgerEntry]:
        """Ledger history, newest first"""
        self._get_provider(provider_id, actor)
        return self.repo.list_for_provider(self.db, provider_id)
