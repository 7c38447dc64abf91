"""
backend/pointlock/services/tier_service.py

Purpose:
    Tier gate for picks. Maps a market type to the tier it requires, derives
    a user's effective tier from lifetime coins earned and win streak, and
    fails loudly (TierLockedError) when a user reaches above their tier.

Dependencies:
    - pointlock.database
    - pointlock.models.tier
"""

import logging

from bson import ObjectId
from bson.errors import InvalidId

import pointlock.database as _db
from pointlock.errors import USER_NOT_FOUND, NotFoundError, TierLockedError
from pointlock.models.slip import MarketType
from pointlock.models.tier import PickTier

logger = logging.getLogger("pointlock.tier_service")

# (lifetime coins, win streak) needed to reach each tier; either one suffices.
TIER_THRESHOLDS = {
    PickTier.STANDARD: (2500, 10),
    PickTier.PREMIUM: (7500, 20),
    PickTier.ELITE: (15000, 5),
}


def required_tier(market_type) -> PickTier:
    if market_type == MarketType.moneyline:
        return PickTier.FREE
    elif market_type in (MarketType.spread, MarketType.total):
        return PickTier.STANDARD
    elif market_type == MarketType.prop:
        return PickTier.PREMIUM
    else:
        return PickTier.FREE


def is_pick_locked(pick_tier: PickTier, user_tier: PickTier) -> bool:
    return user_tier < pick_tier


def ensure_tier_access(pick_tier: PickTier, user_tier: PickTier, market_type=None) -> None:
    if is_pick_locked(pick_tier, user_tier):
        market = market_type.value if isinstance(market_type, MarketType) else market_type
        raise TierLockedError(pick_tier.name, user_tier.name, market)


def calculate_tier_from_stats(coins_earned: int, streak: int) -> PickTier:
    """Highest tier whose coin or streak threshold is met. ELITE is checked first."""
    for tier in (PickTier.ELITE, PickTier.PREMIUM, PickTier.STANDARD):
        min_coins, min_streak = TIER_THRESHOLDS[tier]
        if coins_earned >= min_coins or streak >= min_streak:
            return tier
    return PickTier.FREE


def _user_filter(user_id: str) -> dict:
    try:
        return {"_id": ObjectId(user_id)}
    except (InvalidId, TypeError):
        return {"_id": user_id}


async def get_user_tier(user_id: str) -> PickTier:
    """Read the user's current tier. Always hits the database; tiers can drop between requests."""
    user = await _db.db.users.find_one(
        _user_filter(user_id),
        {"total_coins_earned": 1, "current_streak": 1},
    )
    if not user:
        raise NotFoundError("User not found.", USER_NOT_FOUND)
    tier = calculate_tier_from_stats(
        int(user.get("total_coins_earned") or 0),
        int(user.get("current_streak") or 0),
    )
    logger.debug("Tier resolved: user=%s tier=%s", user_id, tier.name)
    return tier
