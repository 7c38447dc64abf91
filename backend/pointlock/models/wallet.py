"""Wallet models: balances, ledger rows and allowance results."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel


# ---------- Wallet ----------

class WalletInDB(BaseModel):
    """One wallet per user. ``version`` is bumped by every balance write."""
    user_id: str
    paid_balance: int = 0
    bonus_balance: int = 0
    last_allowance_at: Optional[datetime] = None
    version: int = 0
    created_at: datetime
    updated_at: datetime


# ---------- Wallet Transactions ----------

class TransactionType(str, Enum):
    WEEKLY_ALLOWANCE = "WEEKLY_ALLOWANCE"
    SLIP_STAKE = "SLIP_STAKE"
    SLIP_PAYOUT = "SLIP_PAYOUT"
    SLIP_REFUND = "SLIP_REFUND"
    ADJUSTMENT = "ADJUSTMENT"


class TransactionStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"


class TransactionInDB(BaseModel):
    """Immutable ledger row. ``idempotency_key`` is unique across the collection."""
    wallet_id: str
    user_id: str
    type: TransactionType
    status: TransactionStatus = TransactionStatus.completed
    amount: int
    paid_amount: int = 0
    bonus_amount: int = 0
    balance_before: int
    balance_after: int
    slip_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    description: str = ""
    metadata: Dict[str, Any] = {}
    completed_at: Optional[datetime] = None
    created_at: datetime


class TransactionResponse(BaseModel):
    id: str
    type: str
    status: str
    amount: int
    paid_amount: int = 0
    bonus_amount: int = 0
    balance_before: int
    balance_after: int
    slip_id: Optional[str] = None
    description: str
    created_at: datetime


# ---------- Allowance ----------

class AllowanceEligibility(BaseModel):
    eligible: bool
    reason: str
    last_claimed_at: Optional[datetime] = None
    next_available_at: Optional[datetime] = None
    days_until_available: Optional[int] = None
    hours_until_available: Optional[int] = None


class AllowanceStatusResponse(BaseModel):
    eligibility: AllowanceEligibility
    amount: int
    current_balance: int
    time_until_next: str


class AllowanceResult(BaseModel):
    """Outcome of a credit attempt. ``already_claimed`` replays are successes, not errors."""
    credited: bool
    amount: int
    new_balance: int
    transaction_id: Optional[str] = None
    already_claimed: bool = False
    dry_run: bool = False
    next_claim_at: Optional[datetime] = None
    message: str = ""
