"""
backend/tests/test_tier_service.py

Purpose:
    Market-to-tier mapping, tier derivation from stats and the tier gate.
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest
from bson import ObjectId

from pointlock.errors import NotFoundError, TierLockedError
from pointlock.models.slip import MarketType
from pointlock.models.tier import PickTier
from pointlock.services import tier_service


def test_required_tier_table():
    assert tier_service.required_tier(MarketType.moneyline) is PickTier.FREE
    assert tier_service.required_tier(MarketType.spread) is PickTier.STANDARD
    assert tier_service.required_tier("total") is PickTier.STANDARD
    assert tier_service.required_tier(MarketType.prop) is PickTier.PREMIUM
    assert tier_service.required_tier("unknown") is PickTier.FREE


def test_is_pick_locked_uses_ordinal_compare():
    assert tier_service.is_pick_locked(PickTier.PREMIUM, PickTier.STANDARD) is True
    assert tier_service.is_pick_locked(PickTier.PREMIUM, PickTier.PREMIUM) is False
    assert tier_service.is_pick_locked(PickTier.FREE, PickTier.FREE) is False
    assert tier_service.is_pick_locked(PickTier.STANDARD, PickTier.ELITE) is False


def test_ensure_tier_access_raises_with_code():
    with pytest.raises(TierLockedError) as exc_info:
        tier_service.ensure_tier_access(PickTier.PREMIUM, PickTier.FREE, MarketType.prop)
    assert exc_info.value.status_code == 403
    assert exc_info.value.code == "SLIP_006"
    assert "PREMIUM" in exc_info.value.detail
    assert "prop" in exc_info.value.detail


@pytest.mark.parametrize(
    "coins,streak,expected",
    [
        (0, 0, PickTier.FREE),
        (2499, 4, PickTier.FREE),
        (2499, 9, PickTier.ELITE),
        (2500, 0, PickTier.STANDARD),
        (0, 4, PickTier.FREE),
        (7500, 0, PickTier.PREMIUM),
        (15000, 0, PickTier.ELITE),
        (0, 5, PickTier.ELITE),
        (0, 25, PickTier.ELITE),
    ],
)
def test_calculate_tier_from_stats(coins, streak, expected):
    assert tier_service.calculate_tier_from_stats(coins, streak) is expected


@pytest.mark.asyncio
async def test_get_user_tier_reads_fresh_stats(monkeypatch):
    user_id = ObjectId()
    state = {"doc": {"_id": user_id, "total_coins_earned": 8000, "current_streak": 0}, "reads": 0}

    class _FakeUsers:
        async def find_one(self, query, _projection=None):
            state["reads"] += 1
            return state["doc"] if query["_id"] == user_id else None

    monkeypatch.setattr(tier_service._db, "db", SimpleNamespace(users=_FakeUsers()), raising=False)

    assert await tier_service.get_user_tier(str(user_id)) is PickTier.PREMIUM
    state["doc"]["total_coins_earned"] = 100
    assert await tier_service.get_user_tier(str(user_id)) is PickTier.FREE
    assert state["reads"] == 2


@pytest.mark.asyncio
async def test_get_user_tier_missing_user(monkeypatch):
    class _FakeUsers:
        async def find_one(self, *_args, **_kwargs):
            return None

    monkeypatch.setattr(tier_service._db, "db", SimpleNamespace(users=_FakeUsers()), raising=False)
    with pytest.raises(NotFoundError):
        await tier_service.get_user_tier("ghost")
