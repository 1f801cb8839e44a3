"""Ledger repository - Database operations for ledger entries"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models import LedgerEntry

CENT = Decimal("0.01")


class LedgerRepository:
    """Repository for ledger database operations. Entries are only ever inserted."""

    @staticmethod
    def get_by_id(db: Session, entry_id: int, for_update: bool = False) -> Optional[LedgerEntry]:
        query = db.query(LedgerEntry).filter(LedgerEntry.id == entry_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def get_for_appointment(db: Session, appointment_id: int) -> Optional[LedgerEntry]:
        return db.query(LedgerEntry).filter(LedgerEntry.appointment_id == appointment_id).first()

    @staticmethod
    def create(db: Session, **entry_data) -> LedgerEntry:
        """Stage a new entry; the caller commits"""
        entry = LedgerEntry(**entry_data)
        db.add(entry)
        db.flush()
        return entry

    @staticmethod
    def sum_amount(
        db: Session,
        provider_id: int,
        transaction_type: str,
        statuses: tuple,
        since: Optional[datetime] = None,
    ) -> Decimal:
        """Sum of entry amounts for one provider, type and set of statuses"""
        query = db.query(func.sum(LedgerEntry.amount)).filter(
            LedgerEntry.provider_id == provider_id,
            LedgerEntry.transaction_type == transaction_type,
            LedgerEntry.status.in_(statuses),
        )
        if since is not None:
            query = query.filter(LedgerEntry.created_at >= since)
        total = query.scalar() or 0
        # SQLite hands back floats for SUM over NUMERIC
        return Decimal(str(total)).quantize(CENT)

    @staticmethod
    def list_for_provider(db: Session, provider_id: int) -> list[LedgerEntry]:
        return (
            db.query(LedgerEntry)
            .filter(LedgerEntry.provider_id == provider_id)
            .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
            .all()
        )
