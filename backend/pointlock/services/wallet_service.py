"""
backend/pointlock/services/wallet_service.py

Purpose:
    Wallet ledger: every balance write is a version-checked wallet update
    plus one immutable transaction row, committed together. Callers retry a
    lost version race through ``run_with_version_retry``; a repeated
    idempotency key returns the stored row instead of writing again.

    Credits land on the paid balance unless ``use_bonus``. Debits draw from
    the bonus balance first unless ``prefer_bonus`` is False. Refunds restore
    the exact paid/bonus split of the debit they reverse.

Dependencies:
    - pointlock.database (transaction)
    - pymongo (DuplicateKeyError)
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from bson import ObjectId
from pymongo.errors import DuplicateKeyError

import pointlock.database as _db
from pointlock.config import settings
from pointlock.errors import (
    INSUFFICIENT_BALANCE,
    TRANSACTION_NOT_FOUND,
    WALLET_CONFLICT,
    WALLET_NOT_FOUND,
    BadRequestError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from pointlock.models.wallet import TransactionStatus, TransactionType
from pointlock.monitoring.ledger_metrics import METRIC_WALLET_VERSION_CONFLICTS
from pointlock.utils import utcnow

logger = logging.getLogger("pointlock.wallet_service")

T = TypeVar("T")

MAX_TRANSACTION_AMOUNT = 10_000_000
MAX_BALANCE = 1_000_000_000

CREDIT_TYPES = (TransactionType.SLIP_PAYOUT, TransactionType.ADJUSTMENT)
DEBIT_TYPES = (TransactionType.SLIP_STAKE, TransactionType.ADJUSTMENT)
# Slip money movements must name their slip and carry an idempotency key.
SLIP_TYPES = (TransactionType.SLIP_STAKE, TransactionType.SLIP_PAYOUT, TransactionType.SLIP_REFUND)


class WalletVersionConflict(Exception):
    """Raised when a conditional wallet write finds the version already moved on."""


def total_balance(wallet: dict) -> int:
    return int(wallet.get("paid_balance") or 0) + int(wallet.get("bonus_balance") or 0)


def retry_backoff_seconds(attempt: int) -> float:
    return settings.WALLET_RETRY_BACKOFF_MS * attempt / 1000


# ---------- Primitives ----------

async def get_wallet_by_user(user_id: str, session=None) -> dict:
    wallet = await _db.db.wallets.find_one({"user_id": user_id}, session=session)
    if not wallet:
        raise NotFoundError("Wallet not found.", WALLET_NOT_FOUND)
    return wallet


async def find_transaction_by_key(idempotency_key: str, session=None) -> Optional[dict]:
    return await _db.db.wallet_transactions.find_one(
        {"idempotency_key": idempotency_key}, session=session
    )


async def apply_versioned_update(
    wallet_id,
    observed_version: int,
    inc: dict,
    set_fields: dict,
    session=None,
) -> None:
    """Apply ``$inc``/``$set`` only if the wallet still carries ``observed_version``.

    Bumps ``version`` by exactly one. Zero modified rows means another writer
    won the race and raises WalletVersionConflict.
    """
    result = await _db.db.wallets.update_one(
        {"_id": wallet_id, "version": observed_version},
        {
            "$inc": {**inc, "version": 1},
            "$set": {**set_fields, "updated_at": utcnow()},
        },
        session=session,
    )
    if result.modified_count == 0:
        logger.warning(
            "Wallet version conflict: wallet=%s expected_version=%s", wallet_id, observed_version
        )
        raise WalletVersionConflict(str(wallet_id))


async def insert_transaction(doc: dict, session=None) -> str:
    """Append a ledger row. A reused idempotency key raises DuplicateKeyError."""
    row = {**doc, "created_at": doc.get("created_at") or utcnow()}
    result = await _db.db.wallet_transactions.insert_one(row, session=session)
    return str(result.inserted_id)


async def record_balance_change(
    wallet: dict,
    row: dict,
    inc: dict,
    set_fields: Optional[dict] = None,
) -> tuple[dict, bool]:
    """Commit the versioned wallet write and its ledger row in one transaction.

    Returns ``(row, replayed)``. When a concurrent request already committed
    a row with the same idempotency key, the transaction rolls back and that
    row comes back with ``replayed=True``.
    """
    now = utcnow()
    row = {
        "wallet_id": str(wallet["_id"]),
        "status": TransactionStatus.completed.value,
        "completed_at": now,
        "created_at": now,
        **row,
    }
    if row.get("idempotency_key") is None:
        # A stored null would still be indexed and collide under the unique index.
        row.pop("idempotency_key", None)
    try:
        async with _db.transaction() as session:
            await apply_versioned_update(
                wallet["_id"],
                wallet.get("version", 0),
                inc=inc,
                set_fields=set_fields or {},
                session=session,
            )
            row["_id"] = await insert_transaction(row, session=session)
    except DuplicateKeyError:
        key = row.get("idempotency_key")
        existing = await find_transaction_by_key(key) if key else None
        if existing is None:
            raise
        logger.info("Concurrent ledger write lost to existing row: key=%s", key)
        return existing, True
    return row, False


async def run_with_version_retry(
    attempt_fn: Callable[[], Awaitable[T]],
    operation: str,
    subject: str,
) -> T:
    """Re-run ``attempt_fn`` after lost version races, with a linear backoff.

    Each attempt must re-read the wallet. After WALLET_MAX_RETRY_ATTEMPTS
    losses a ConflictError (WALLET_002) reaches the caller.
    """
    max_attempts = settings.WALLET_MAX_RETRY_ATTEMPTS
    for attempt in range(1, max_attempts + 1):
        try:
            return await attempt_fn()
        except WalletVersionConflict:
            METRIC_WALLET_VERSION_CONFLICTS.labels(operation=operation).inc()
            logger.warning(
                "Wallet write conflict: op=%s subject=%s attempt=%d/%d",
                operation, subject, attempt, max_attempts,
            )
            if attempt < max_attempts:
                await asyncio.sleep(retry_backoff_seconds(attempt))

    raise ConflictError(
        "Wallet is busy; unable to apply the change after multiple attempts. Please try again.",
        WALLET_CONFLICT,
    )


# ---------- Credit / debit / refund ----------

def _validate_amount(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("Amount must be a positive integer.")
    if amount > MAX_TRANSACTION_AMOUNT:
        raise ValidationError(f"Amount exceeds maximum allowed: {MAX_TRANSACTION_AMOUNT}.")
    return amount


def _validate_request(
    tx_type: TransactionType,
    allowed: tuple,
    operation: str,
    idempotency_key: Optional[str],
    slip_id: Optional[str],
) -> TransactionType:
    try:
        tx_type = TransactionType(tx_type)
    except ValueError:
        raise ValidationError(f"Unknown transaction type '{tx_type}'.") from None
    if tx_type not in allowed:
        raise ValidationError(
            f"Invalid transaction type '{tx_type.value}' for {operation}. "
            f"Valid types: {', '.join(t.value for t in allowed)}"
        )
    if tx_type in SLIP_TYPES:
        if not idempotency_key or not idempotency_key.strip():
            raise ValidationError(f"Idempotency key is required for {tx_type.value} transactions.")
        if not slip_id:
            raise ValidationError(f"Slip ID is required for {tx_type.value} transactions.")
    return tx_type


async def credit_wallet(
    user_id: str,
    amount: int,
    tx_type: TransactionType,
    idempotency_key: Optional[str] = None,
    use_bonus: bool = False,
    slip_id: Optional[str] = None,
    description: str = "",
    metadata: Optional[dict] = None,
) -> dict:
    """Add coins to the paid balance (or the bonus balance with ``use_bonus``)."""
    amount = _validate_amount(amount)
    tx_type = _validate_request(tx_type, CREDIT_TYPES, "credit", idempotency_key, slip_id)
    field = "bonus_balance" if use_bonus else "paid_balance"

    async def attempt() -> dict:
        if idempotency_key:
            existing = await find_transaction_by_key(idempotency_key)
            if existing:
                logger.info("Idempotent credit request detected: key=%s", idempotency_key)
                return existing

        wallet = await get_wallet_by_user(user_id)
        if int(wallet.get(field) or 0) + amount > MAX_BALANCE:
            raise BadRequestError(f"Balance would exceed the maximum of {MAX_BALANCE}.")
        balance_before = total_balance(wallet)
        row, _ = await record_balance_change(
            wallet,
            {
                "user_id": user_id,
                "type": tx_type.value,
                "amount": amount,
                "paid_amount": 0 if use_bonus else amount,
                "bonus_amount": amount if use_bonus else 0,
                "balance_before": balance_before,
                "balance_after": balance_before + amount,
                "slip_id": slip_id,
                "idempotency_key": idempotency_key,
                "description": description,
                "metadata": metadata or {},
            },
            inc={field: amount},
        )
        logger.info(
            "Credit completed: user=%s +%d (%s) balance=%d->%d",
            user_id, amount, tx_type.value, balance_before, row["balance_after"],
        )
        return row

    return await run_with_version_retry(attempt, "credit", user_id)


async def debit_wallet(
    user_id: str,
    amount: int,
    tx_type: TransactionType,
    idempotency_key: Optional[str] = None,
    prefer_bonus: bool = True,
    slip_id: Optional[str] = None,
    description: str = "",
    metadata: Optional[dict] = None,
) -> dict:
    """Remove coins, bonus balance first by default. Ledger amounts are negative."""
    amount = _validate_amount(amount)
    tx_type = _validate_request(tx_type, DEBIT_TYPES, "debit", idempotency_key, slip_id)

    async def attempt() -> dict:
        if idempotency_key:
            existing = await find_transaction_by_key(idempotency_key)
            if existing:
                logger.info("Idempotent debit request detected: key=%s", idempotency_key)
                return existing

        wallet = await get_wallet_by_user(user_id)
        paid = int(wallet.get("paid_balance") or 0)
        bonus = int(wallet.get("bonus_balance") or 0)
        balance_before = paid + bonus
        if balance_before < amount:
            raise BadRequestError(
                f"Insufficient balance: have {balance_before}, need {amount}.",
                INSUFFICIENT_BALANCE,
            )

        if prefer_bonus:
            bonus_part = min(bonus, amount)
            paid_part = amount - bonus_part
        else:
            paid_part = min(paid, amount)
            bonus_part = amount - paid_part

        row, _ = await record_balance_change(
            wallet,
            {
                "user_id": user_id,
                "type": tx_type.value,
                "amount": -amount,
                "paid_amount": -paid_part,
                "bonus_amount": -bonus_part,
                "balance_before": balance_before,
                "balance_after": balance_before - amount,
                "slip_id": slip_id,
                "idempotency_key": idempotency_key,
                "description": description,
                "metadata": metadata or {},
            },
            inc={"paid_balance": -paid_part, "bonus_balance": -bonus_part},
        )
        logger.info(
            "Debit completed: user=%s -%d (%s) balance=%d->%d",
            user_id, amount, tx_type.value, balance_before, row["balance_after"],
        )
        return row

    return await run_with_version_retry(attempt, "debit", user_id)


async def refund_transaction(
    transaction_id: str,
    idempotency_key: str,
    description: Optional[str] = None,
) -> dict:
    """Reverse a debit, crediting back its exact paid/bonus split."""
    if not idempotency_key or not idempotency_key.strip():
        raise ValidationError("Idempotency key is required for refunds.")

    async def attempt() -> dict:
        existing = await find_transaction_by_key(idempotency_key)
        if existing:
            logger.info("Idempotent refund request detected: key=%s", idempotency_key)
            return existing

        original = await _db.db.wallet_transactions.find_one({"_id": ObjectId(transaction_id)})
        if not original:
            raise NotFoundError("Original transaction not found.", TRANSACTION_NOT_FOUND)
        if original["amount"] >= 0:
            raise BadRequestError("Only debit transactions can be refunded.")
        prior = await _db.db.wallet_transactions.find_one(
            {
                "type": TransactionType.SLIP_REFUND.value,
                "metadata.original_transaction_id": transaction_id,
            }
        )
        if prior:
            raise BadRequestError(f"Transaction {transaction_id} has already been refunded.")

        paid_part = -int(original.get("paid_amount") or 0)
        bonus_part = -int(original.get("bonus_amount") or 0)
        amount = paid_part + bonus_part
        wallet = await get_wallet_by_user(original["user_id"])
        balance_before = total_balance(wallet)
        row, _ = await record_balance_change(
            wallet,
            {
                "user_id": original["user_id"],
                "type": TransactionType.SLIP_REFUND.value,
                "amount": amount,
                "paid_amount": paid_part,
                "bonus_amount": bonus_part,
                "balance_before": balance_before,
                "balance_after": balance_before + amount,
                "slip_id": original.get("slip_id"),
                "idempotency_key": idempotency_key,
                "description": description or f"Refund for transaction {transaction_id}",
                "metadata": {"original_transaction_id": transaction_id},
            },
            inc={"paid_balance": paid_part, "bonus_balance": bonus_part},
        )
        logger.info(
            "Refund completed: user=%s +%d (paid=%d bonus=%d) original=%s",
            original["user_id"], amount, paid_part, bonus_part, transaction_id,
        )
        return row

    return await run_with_version_retry(attempt, "refund", transaction_id)


# ---------- History ----------

async def get_wallet_transactions(user_id: str, limit: int = 50, skip: int = 0) -> list[dict]:
    """Ledger rows for a user, newest first."""
    return await _db.db.wallet_transactions.find(
        {"user_id": user_id}
    ).sort("created_at", -1).skip(skip).limit(limit).to_list(length=limit)


def transaction_to_response(doc: dict) -> dict:
    return {
        "id": str(doc["_id"]),
        "type": doc["type"],
        "status": doc.get("status", "completed"),
        "amount": doc["amount"],
        "paid_amount": doc.get("paid_amount", 0),
        "bonus_amount": doc.get("bonus_amount", 0),
        "balance_before": doc["balance_before"],
        "balance_after": doc["balance_after"],
        "slip_id": doc.get("slip_id"),
        "description": doc.get("description", ""),
        "created_at": doc["created_at"],
    }
