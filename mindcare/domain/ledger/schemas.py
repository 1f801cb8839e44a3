"""Ledger domain schemas - Pydantic models for validation"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class WithdrawalRequest(BaseModel):
    # Positivity and balance are checked by the ledger itself
    amount: Decimal


class LedgerEntryResponse(BaseModel):
    id: int
    provider_id: int
    appointment_id: Optional[int] = None
    amount: Decimal
    transaction_type: str
    status: str
    created_at: datetime
    processed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BalanceResponse(BaseModel):
    provider_id: int
    currency: str
    total_earnings: Decimal
    this_period_earnings: Decimal
    pending_earnings: Decimal
    completed_earnings: Decimal
    total_withdrawals: Decimal
    available: Decimal
