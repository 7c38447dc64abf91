from __future__ import annotations

from types import SimpleNamespace

import pytest

from pointlock.errors import ConflictError
from pointlock.models.wallet import AllowanceResult
from pointlock.workers import allowance_distributor


class _Cursor:
    def __init__(self, docs):
        self.docs = docs

    def sort(self, field, direction):
        self.docs = sorted(self.docs, key=lambda d: d[field], reverse=direction < 0)
        return self

    def limit(self, n):
        self.docs = self.docs[:n]
        return self

    async def to_list(self, length=None):
        return list(self.docs)


class _FakeWallets:
    def __init__(self, user_ids):
        self.user_ids = user_ids
        self.queries = []

    def find(self, query, _projection=None):
        self.queries.append(query)
        floor = query.get("user_id", {}).get("$gt")
        docs = [{"user_id": u} for u in self.user_ids if floor is None or u > floor]
        return _Cursor(docs)


def _install(monkeypatch, user_ids, outcomes):
    wallets = _FakeWallets(user_ids)
    monkeypatch.setattr(
        allowance_distributor._db, "db", SimpleNamespace(wallets=wallets), raising=False
    )
    calls = []

    async def _credit(user_id, dry_run=False):
        calls.append((user_id, dry_run))
        outcome = outcomes.get(user_id, "credited")
        if outcome == "conflict":
            raise ConflictError("busy")
        return AllowanceResult(
            credited=outcome == "credited",
            amount=1000 if outcome != "skipped" else 0,
            new_balance=1000,
            dry_run=outcome == "dry_run",
        )

    monkeypatch.setattr(allowance_distributor, "credit_allowance", _credit)
    return wallets, calls


@pytest.mark.asyncio
async def test_distributor_pages_through_all_due_wallets(monkeypatch):
    wallets, calls = _install(monkeypatch, ["u3", "u1", "u5", "u2", "u4"], {})

    stats = await allowance_distributor.distribute_allowances(batch_size=2)

    assert [c[0] for c in calls] == ["u1", "u2", "u3", "u4", "u5"]
    assert stats == {"processed": 5, "skipped": 0, "errors": 0}
    assert len(wallets.queries) == 3
    assert "user_id" not in wallets.queries[0]
    assert wallets.queries[1]["user_id"] == {"$gt": "u2"}


@pytest.mark.asyncio
async def test_distributor_counts_skips_and_errors(monkeypatch):
    _, calls = _install(
        monkeypatch, ["a", "b", "c"], {"a": "skipped", "b": "conflict", "c": "credited"}
    )

    stats = await allowance_distributor.distribute_allowances(batch_size=10)

    assert len(calls) == 3
    assert stats == {"processed": 1, "skipped": 1, "errors": 1}


@pytest.mark.asyncio
async def test_distributor_dry_run_is_forwarded(monkeypatch):
    _, calls = _install(monkeypatch, ["a", "b"], {"a": "dry_run", "b": "dry_run"})

    stats = await allowance_distributor.distribute_allowances(dry_run=True)

    assert calls == [("a", True), ("b", True)]
    assert stats["processed"] == 2


@pytest.mark.asyncio
async def test_distributor_no_due_wallets(monkeypatch):
    wallets, calls = _install(monkeypatch, [], {})
    stats = await allowance_distributor.distribute_allowances()
    assert calls == []
    assert stats == {"processed": 0, "skipped": 0, "errors": 0}
    assert len(wallets.queries) == 1
