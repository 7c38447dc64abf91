"""
backend/tests/test_wallet_service.py

Purpose:
    Ledger primitives shared by every balance write: credit, debit, refund,
    idempotent replay and the bounded optimistic-lock retry.
"""

from __future__ import annotations

import copy
from contextlib import asynccontextmanager
from types import SimpleNamespace

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from pointlock.errors import BadRequestError, ConflictError, NotFoundError, ValidationError
from pointlock.models.wallet import TransactionInDB, TransactionResponse, TransactionType, WalletInDB
from pointlock.routers import wallet as wallet_router
from pointlock.services import wallet_service
from pointlock.utils import utcnow


def _lookup(doc: dict, dotted: str):
    value = doc
    for part in dotted.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


class _Cursor:
    def __init__(self, docs):
        self._docs = docs

    def sort(self, field, direction):
        self._docs.sort(key=lambda d: d.get(field), reverse=direction < 0)
        return self

    def skip(self, n):
        self._docs = self._docs[n:]
        return self

    def limit(self, n):
        self._docs = self._docs[:n]
        return self

    async def to_list(self, length=None):
        return [copy.deepcopy(d) for d in self._docs[:length]]


class _FakeCollection:
    def __init__(self, docs=None, unique_key=None):
        self.docs = [copy.deepcopy(d) for d in (docs or [])]
        self.unique_key = unique_key
        self.conflicts = 0
        self.update_calls = 0

    def _matches(self, doc, query):
        return all(_lookup(doc, key) == value for key, value in query.items())

    def find(self, query):
        return _Cursor([d for d in self.docs if self._matches(d, query)])

    async def find_one(self, query, session=None):
        for doc in self.docs:
            if self._matches(doc, query):
                return copy.deepcopy(doc)
        return None

    async def insert_one(self, doc, session=None):
        key = self.unique_key
        if key and doc.get(key) is not None and any(d.get(key) == doc[key] for d in self.docs):
            raise DuplicateKeyError("E11000 duplicate key error")
        row = {**copy.deepcopy(doc), "_id": ObjectId()}
        self.docs.append(row)
        return SimpleNamespace(inserted_id=row["_id"])

    async def update_one(self, query, update, session=None):
        self.update_calls += 1
        if self.conflicts:
            self.conflicts -= 1
            return SimpleNamespace(matched_count=0, modified_count=0)
        for doc in self.docs:
            if self._matches(doc, query):
                for key, amount in update.get("$inc", {}).items():
                    doc[key] = doc.get(key, 0) + amount
                doc.update(update.get("$set", {}))
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)


def _wallet(user_id="u1", paid=500, bonus=200):
    now = utcnow()
    return {
        "_id": ObjectId(),
        "user_id": user_id,
        "paid_balance": paid,
        "bonus_balance": bonus,
        "last_allowance_at": None,
        "version": 0,
        "created_at": now,
        "updated_at": now,
    }


def _install(monkeypatch, wallets=None):
    fake_db = SimpleNamespace(
        wallets=_FakeCollection(wallets if wallets is not None else [_wallet()]),
        wallet_transactions=_FakeCollection(unique_key="idempotency_key"),
    )
    monkeypatch.setattr(wallet_service._db, "db", fake_db, raising=False)

    @asynccontextmanager
    async def _no_transaction():
        yield None

    monkeypatch.setattr(wallet_service._db, "transaction", _no_transaction)

    sleeps: list[float] = []

    async def _sleep(seconds):
        sleeps.append(seconds)

    monkeypatch.setattr(wallet_service.asyncio, "sleep", _sleep)
    return fake_db, sleeps


# ---------- Credit ----------

@pytest.mark.asyncio
async def test_credit_lands_on_paid_balance(monkeypatch):
    fake_db, _ = _install(monkeypatch)

    row = await wallet_service.credit_wallet(
        "u1", 300, TransactionType.SLIP_PAYOUT, idempotency_key="payout-s1", slip_id="s1"
    )

    wallet = fake_db.wallets.docs[0]
    assert wallet["paid_balance"] == 800
    assert wallet["bonus_balance"] == 200
    assert wallet["version"] == 1
    assert row["amount"] == 300 and row["paid_amount"] == 300 and row["bonus_amount"] == 0
    assert row["balance_before"] == 700 and row["balance_after"] == 1000
    WalletInDB.model_validate(wallet)
    TransactionInDB.model_validate(fake_db.wallet_transactions.docs[0])


@pytest.mark.asyncio
async def test_credit_to_bonus_balance(monkeypatch):
    fake_db, _ = _install(monkeypatch)
    row = await wallet_service.credit_wallet("u1", 50, TransactionType.ADJUSTMENT, use_bonus=True)
    assert fake_db.wallets.docs[0]["bonus_balance"] == 250
    assert row["bonus_amount"] == 50
    assert "idempotency_key" not in fake_db.wallet_transactions.docs[0]


@pytest.mark.asyncio
async def test_credit_same_key_applies_once(monkeypatch):
    fake_db, _ = _install(monkeypatch)

    first = await wallet_service.credit_wallet(
        "u1", 300, TransactionType.SLIP_PAYOUT, idempotency_key="payout-s1", slip_id="s1"
    )
    second = await wallet_service.credit_wallet(
        "u1", 300, TransactionType.SLIP_PAYOUT, idempotency_key="payout-s1", slip_id="s1"
    )

    assert str(second["_id"]) == str(first["_id"])
    assert fake_db.wallets.docs[0]["paid_balance"] == 800
    assert len(fake_db.wallet_transactions.docs) == 1


@pytest.mark.asyncio
async def test_unkeyed_adjustments_do_not_collide(monkeypatch):
    fake_db, _ = _install(monkeypatch)
    await wallet_service.credit_wallet("u1", 10, TransactionType.ADJUSTMENT)
    await wallet_service.credit_wallet("u1", 10, TransactionType.ADJUSTMENT)
    assert len(fake_db.wallet_transactions.docs) == 2
    assert fake_db.wallets.docs[0]["paid_balance"] == 520


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "amount,tx_type,kwargs",
    [
        (0, TransactionType.ADJUSTMENT, {}),
        (-5, TransactionType.ADJUSTMENT, {}),
        (1.5, TransactionType.ADJUSTMENT, {}),
        (wallet_service.MAX_TRANSACTION_AMOUNT + 1, TransactionType.ADJUSTMENT, {}),
        (10, TransactionType.SLIP_STAKE, {"idempotency_key": "k", "slip_id": "s1"}),
        (10, TransactionType.WEEKLY_ALLOWANCE, {}),
        (10, TransactionType.SLIP_PAYOUT, {"slip_id": "s1"}),
        (10, TransactionType.SLIP_PAYOUT, {"idempotency_key": "k"}),
    ],
)
async def test_credit_rejects_invalid_requests(monkeypatch, amount, tx_type, kwargs):
    fake_db, _ = _install(monkeypatch)
    with pytest.raises(ValidationError):
        await wallet_service.credit_wallet("u1", amount, tx_type, **kwargs)
    assert fake_db.wallets.update_calls == 0


@pytest.mark.asyncio
async def test_credit_missing_wallet(monkeypatch):
    _install(monkeypatch, wallets=[])
    with pytest.raises(NotFoundError):
        await wallet_service.credit_wallet("ghost", 10, TransactionType.ADJUSTMENT)


# ---------- Debit ----------

@pytest.mark.asyncio
async def test_debit_draws_bonus_first(monkeypatch):
    fake_db, _ = _install(monkeypatch)

    row = await wallet_service.debit_wallet(
        "u1", 250, TransactionType.SLIP_STAKE, idempotency_key="stake-s1", slip_id="s1"
    )

    wallet = fake_db.wallets.docs[0]
    assert wallet["bonus_balance"] == 0
    assert wallet["paid_balance"] == 450
    assert row["amount"] == -250
    assert row["bonus_amount"] == -200 and row["paid_amount"] == -50
    assert row["balance_after"] == 450


@pytest.mark.asyncio
async def test_debit_paid_first_when_asked(monkeypatch):
    fake_db, _ = _install(monkeypatch)
    await wallet_service.debit_wallet("u1", 100, TransactionType.ADJUSTMENT, prefer_bonus=False)
    assert fake_db.wallets.docs[0]["paid_balance"] == 400
    assert fake_db.wallets.docs[0]["bonus_balance"] == 200


@pytest.mark.asyncio
async def test_debit_insufficient_balance(monkeypatch):
    fake_db, _ = _install(monkeypatch)
    with pytest.raises(BadRequestError) as exc_info:
        await wallet_service.debit_wallet("u1", 701, TransactionType.ADJUSTMENT)
    assert exc_info.value.code == "WALLET_003"
    assert fake_db.wallets.update_calls == 0
    assert fake_db.wallet_transactions.docs == []


# ---------- Retry ----------

@pytest.mark.asyncio
async def test_debit_retries_after_lost_race(monkeypatch):
    fake_db, sleeps = _install(monkeypatch)
    fake_db.wallets.conflicts = 2

    await wallet_service.debit_wallet("u1", 100, TransactionType.ADJUSTMENT)

    assert fake_db.wallets.update_calls == 3
    assert sleeps == [0.05, 0.1]
    assert fake_db.wallets.docs[0]["version"] == 1
    assert len(fake_db.wallet_transactions.docs) == 1


@pytest.mark.asyncio
async def test_credit_conflict_after_max_attempts(monkeypatch):
    fake_db, sleeps = _install(monkeypatch)
    fake_db.wallets.conflicts = 3

    with pytest.raises(ConflictError) as exc_info:
        await wallet_service.credit_wallet("u1", 100, TransactionType.ADJUSTMENT)

    assert exc_info.value.code == "WALLET_002"
    assert sleeps == [0.05, 0.1]
    assert fake_db.wallets.docs[0]["paid_balance"] == 500
    assert fake_db.wallet_transactions.docs == []


# ---------- Refund ----------

@pytest.mark.asyncio
async def test_refund_restores_original_split_once(monkeypatch):
    fake_db, _ = _install(monkeypatch)
    debit = await wallet_service.debit_wallet(
        "u1", 250, TransactionType.SLIP_STAKE, idempotency_key="stake-s1", slip_id="s1"
    )

    refund = await wallet_service.refund_transaction(str(debit["_id"]), "refund-s1")

    wallet = fake_db.wallets.docs[0]
    assert wallet["paid_balance"] == 500 and wallet["bonus_balance"] == 200
    assert refund["type"] == "SLIP_REFUND"
    assert refund["amount"] == 250
    assert refund["paid_amount"] == 50 and refund["bonus_amount"] == 200
    assert refund["slip_id"] == "s1"

    replay = await wallet_service.refund_transaction(str(debit["_id"]), "refund-s1")
    assert str(replay["_id"]) == str(refund["_id"])

    with pytest.raises(BadRequestError):
        await wallet_service.refund_transaction(str(debit["_id"]), "refund-s1-again")
    assert wallet["paid_balance"] == 500 and wallet["bonus_balance"] == 200


@pytest.mark.asyncio
async def test_refund_rejects_credits_and_unknown_rows(monkeypatch):
    _install(monkeypatch)
    credit = await wallet_service.credit_wallet("u1", 10, TransactionType.ADJUSTMENT)
    with pytest.raises(BadRequestError):
        await wallet_service.refund_transaction(str(credit["_id"]), "refund-credit")
    with pytest.raises(NotFoundError) as exc_info:
        await wallet_service.refund_transaction(str(ObjectId()), "refund-missing")
    assert exc_info.value.code == "WALLET_004"
    with pytest.raises(ValidationError):
        await wallet_service.refund_transaction(str(credit["_id"]), "  ")


# ---------- History ----------

@pytest.mark.asyncio
async def test_transaction_history_matches_response_model(monkeypatch):
    _install(monkeypatch)
    await wallet_service.credit_wallet("u1", 10, TransactionType.ADJUSTMENT)
    await wallet_service.debit_wallet("u1", 5, TransactionType.ADJUSTMENT)

    rows = await wallet_router.get_transactions(limit=50, skip=0, user_id="u1")

    assert len(rows) == 2
    parsed = [TransactionResponse.model_validate(r) for r in rows]
    assert sorted(p.amount for p in parsed) == [-5, 10]
