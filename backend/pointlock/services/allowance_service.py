"""
backend/pointlock/services/allowance_service.py

Purpose:
    Weekly allowance: eligibility checks and the idempotent, optimistically
    locked bonus-coin credit.

    Credit sequence per attempt:
        1. Idempotency key per (user, ISO week); an existing ledger row is
           returned as-is.
        2. Read wallet, check the cooldown; ineligible returns a zero-effect
           result.
        3. Dry run stops here with the would-be amount.
        4. wallet_service.record_balance_change: version-checked wallet
           update plus the ledger row in one Mongo transaction.
    Lost version races go through wallet_service.run_with_version_retry,
    the same bounded retry every wallet write uses.

Dependencies:
    - pointlock.services.wallet_service
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from pointlock.config import settings
from pointlock.errors import ConflictError
from pointlock.models.wallet import (
    AllowanceEligibility,
    AllowanceResult,
    AllowanceStatusResponse,
    TransactionType,
)
from pointlock.monitoring.ledger_metrics import METRIC_ALLOWANCE_CREDITS
from pointlock.services import wallet_service
from pointlock.utils import ensure_utc, utcnow

logger = logging.getLogger("pointlock.allowance_service")


# ---------- Eligibility ----------

def calculate_eligibility(
    last_claimed_at: Optional[datetime],
    now: Optional[datetime] = None,
) -> AllowanceEligibility:
    """Pure cooldown check. Never touches storage."""
    now = now or utcnow()
    if last_claimed_at is None:
        return AllowanceEligibility(
            eligible=True,
            reason="First-time allowance available",
            last_claimed_at=None,
            next_available_at=now,
            days_until_available=0,
            hours_until_available=0,
        )

    last_claimed_at = ensure_utc(last_claimed_at)
    next_available_at = last_claimed_at + timedelta(days=settings.ALLOWANCE_COOLDOWN_DAYS)
    remaining = (next_available_at - now).total_seconds()
    if remaining <= 0:
        return AllowanceEligibility(
            eligible=True,
            reason="Weekly allowance available",
            last_claimed_at=last_claimed_at,
            next_available_at=now,
            days_until_available=0,
            hours_until_available=0,
        )

    days = math.ceil(remaining / 86400)
    hours = math.ceil(remaining / 3600)
    return AllowanceEligibility(
        eligible=False,
        reason=f"Next allowance available in {days} day{'s' if days != 1 else ''}",
        last_claimed_at=last_claimed_at,
        next_available_at=next_available_at,
        days_until_available=days,
        hours_until_available=hours,
    )


def format_time_until_next_allowance(eligibility: AllowanceEligibility) -> str:
    if eligibility.eligible:
        return "Available now"
    days = eligibility.days_until_available or 0
    hours = eligibility.hours_until_available or 0
    if days > 1:
        return f"{days} days"
    elif hours > 1:
        return f"{hours} hours"
    return "Less than an hour"


def allowance_idempotency_key(user_id: str, now: datetime) -> str:
    iso = now.isocalendar()
    return f"allowance-{user_id}-{iso.year}-W{iso.week}"


async def check_allowance_eligibility(user_id: str) -> AllowanceStatusResponse:
    """Read-only eligibility view with the current balance."""
    wallet = await wallet_service.get_wallet_by_user(user_id)
    eligibility = calculate_eligibility(wallet.get("last_allowance_at"))
    return AllowanceStatusResponse(
        eligibility=eligibility,
        amount=settings.WEEKLY_ALLOWANCE_AMOUNT,
        current_balance=wallet_service.total_balance(wallet),
        time_until_next=format_time_until_next_allowance(eligibility),
    )


# ---------- Credit ----------

def _replayed(existing: dict) -> AllowanceResult:
    METRIC_ALLOWANCE_CREDITS.labels(outcome="replayed").inc()
    return AllowanceResult(
        credited=False,
        amount=int(existing.get("amount") or 0),
        new_balance=int(existing.get("balance_after") or 0),
        transaction_id=str(existing["_id"]),
        already_claimed=True,
        message="Allowance already claimed for this week",
    )


async def _attempt_credit(user_id: str, dry_run: bool, now: datetime) -> AllowanceResult:
    key = allowance_idempotency_key(user_id, now)
    existing = await wallet_service.find_transaction_by_key(key)
    if existing:
        logger.info("Duplicate allowance claim detected: key=%s", key)
        return _replayed(existing)

    wallet = await wallet_service.get_wallet_by_user(user_id)
    balance_before = wallet_service.total_balance(wallet)
    eligibility = calculate_eligibility(wallet.get("last_allowance_at"), now)
    if not eligibility.eligible:
        METRIC_ALLOWANCE_CREDITS.labels(outcome="ineligible").inc()
        return AllowanceResult(
            credited=False,
            amount=0,
            new_balance=balance_before,
            next_claim_at=eligibility.next_available_at,
            message=eligibility.reason,
        )

    amount = settings.WEEKLY_ALLOWANCE_AMOUNT
    next_claim_at = now + timedelta(days=settings.ALLOWANCE_COOLDOWN_DAYS)
    if dry_run:
        METRIC_ALLOWANCE_CREDITS.labels(outcome="dry_run").inc()
        return AllowanceResult(
            credited=False,
            amount=amount,
            new_balance=balance_before,
            dry_run=True,
            next_claim_at=next_claim_at,
            message="DRY RUN - Would be credited",
        )

    iso = now.isocalendar()
    balance_after = balance_before + amount
    row, replayed = await wallet_service.record_balance_change(
        wallet,
        {
            "user_id": user_id,
            "type": TransactionType.WEEKLY_ALLOWANCE.value,
            "amount": amount,
            "paid_amount": 0,
            "bonus_amount": amount,
            "balance_before": balance_before,
            "balance_after": balance_after,
            "idempotency_key": key,
            "description": f"Weekly allowance - Week {iso.week} of {iso.year}",
            "metadata": {
                "week_number": iso.week,
                "year": iso.year,
                "cooldown_days": settings.ALLOWANCE_COOLDOWN_DAYS,
            },
            "completed_at": now,
            "created_at": now,
        },
        inc={"bonus_balance": amount},
        set_fields={"last_allowance_at": now},
    )
    if replayed:
        # A concurrent request claimed the same week first.
        return _replayed(row)

    METRIC_ALLOWANCE_CREDITS.labels(outcome="credited").inc()
    logger.info(
        "Allowance credited: user=%s amount=%d balance=%d->%d week=%d-W%d",
        user_id, amount, balance_before, balance_after, iso.year, iso.week,
    )
    return AllowanceResult(
        credited=True,
        amount=amount,
        new_balance=balance_after,
        transaction_id=str(row["_id"]),
        next_claim_at=next_claim_at,
        message="Allowance claimed successfully",
    )


async def credit_allowance(
    user_id: str,
    dry_run: bool = False,
    now: Optional[datetime] = None,
) -> AllowanceResult:
    """Credit the weekly allowance, retrying lost version races with backoff."""
    try:
        return await wallet_service.run_with_version_retry(
            lambda: _attempt_credit(user_id, dry_run, now or utcnow()),
            "allowance",
            user_id,
        )
    except ConflictError:
        METRIC_ALLOWANCE_CREDITS.labels(outcome="conflict").inc()
        raise
