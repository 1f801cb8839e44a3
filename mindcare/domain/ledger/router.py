"""Ledger router - FastAPI endpoints for earnings, withdrawals and balances"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import Identity, get_current_identity, require_admin
from ...database import get_db
from ...rate_limiter import create_rate_limiter
from .schemas import BalanceResponse, LedgerEntryResponse, WithdrawalRequest
from .service import LedgerService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Ledger"])

withdrawal_rate_limit = create_rate_limiter(limit=10, window_seconds=3600, key_prefix="withdrawal")


def get_ledger_service(db: Session = Depends(get_db)) -> LedgerService:
    """Dependency injection for LedgerService"""
    return LedgerService(db)


# ============================================================================
# Provider views
# ============================================================================


@router.get("/providers/{provider_id}/balance", response_model=BalanceResponse)
async def get_balance(
    provider_id: int,
    identity: Identity = Depends(get_current_identity),
    service: LedgerService = Depends(get_ledger_service),
):
    """Earnings and withdrawable balance, recomputed from the ledger"""
    return service.balance(provider_id, actor=identity)


@router.get("/providers/{provider_id}/ledger", response_model=list[LedgerEntryResponse])
async def list_ledger(
    provider_id: int,
    identity: Identity = Depends(get_current_identity),
    service: LedgerService = Depends(get_ledger_service),
):
    return service.list_entries(provider_id, actor=identity)


@router.post("/providers/{provider_id}/withdrawals", response_model=LedgerEntryResponse, status_code=201)
def request_withdrawal(
    provider_id: int,
    data: WithdrawalRequest,
    identity: Identity = Depends(get_current_identity),
    _: None = Depends(withdrawal_rate_limit),
    service: LedgerService = Depends(get_ledger_service),
):
    return service.request_withdrawal(provider_id, data.amount, actor=identity)


# ============================================================================
# Admin settlement
# ============================================================================


@router.post("/ledger/{entry_id}/settle", response_model=LedgerEntryResponse)
def settle_earning(
    entry_id: int,
    _admin: Identity = Depends(require_admin),
    service: LedgerService = Depends(get_ledger_service),
):
    """Settle a pending earning so it counts towards the available balance"""
    return service.settle_earning(entry_id)


@router.post("/ledger/{entry_id}/void", response_model=LedgerEntryResponse)
def void_earning(
    entry_id: int,
    _admin: Identity = Depends(require_admin),
    service: LedgerService = Depends(get_ledger_service),
):
    return service.void_earning(entry_id)
