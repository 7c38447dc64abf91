"""
backend/pointlock/services/pricing_engine.py

Purpose:
    Pure pricing curves for picks. Two engines feed different pick fields:

    * Difficulty point engine: odds-only ``point_value`` per pick and the
      capped ``point_potential`` of a slip (with parlay bonus).
    * Tier/market engine: authoritative ``coin_cost`` (tier multiplier,
      favorites cost more) and display ``points`` (market modifier plus
      underdog bonus, underdogs earn more).

    Every function is deterministic and side-effect free. Float math stays
    inside the curves; every emitted coin/point number is a rounded int.
    Invalid inputs never raise, they return a neutral default with
    ``is_valid=False``.

Dependencies:
    - pointlock.services.odds_converter
    - pointlock.models.tier
    - pointlock.models.slip
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Iterable

from pointlock.models.slip import MarketType
from pointlock.models.tier import PickTier
from pointlock.services.odds_converter import convert_american_odds

# ---------- Difficulty point engine ----------

BASE_POINTS = 10
MIN_POINTS_PER_PICK = 1
MAX_POINTS_PER_PICK = 100
MAX_POINTS_PER_SLIP = 500
STANDARD_IMPLIED_PROBABILITY = 110 / 210  # a -110 pick
MIN_DIFFICULTY_MULTIPLIER = 0.25
MAX_DIFFICULTY_MULTIPLIER = 8.0
MAX_PARLAY_BONUS = 1.5

# ---------- Tier/market engine ----------

C_MIN = 25
C_MAX = 250
ALPHA = 2.2
P_MIN = 8
P_MAX = 30
BETA = 1.3
MIN_PROBABILITY = 0.02
MAX_PROBABILITY = 0.98
MIN_POINTS = 5
MAX_POINTS = 40
MAX_COIN_COST = math.ceil(C_MAX * 1.5)  # 375

# Minimum total coin spend by pick count; 8+ picks share the last bucket.
MIN_SLIP_SPEND = {2: 80, 3: 110, 4: 140, 5: 170, 6: 200, 7: 230, 8: 260}


@dataclass(frozen=True)
class PickPointResult:
    point_value: int
    implied_probability: float
    difficulty_multiplier: float
    is_valid: bool
    error: str | None = None


@dataclass(frozen=True)
class SlipPointPotential:
    total_point_potential: int
    pick_point_values: list[int]
    combined_implied_probability: float
    parlay_bonus: float
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class CoinCostResult:
    coin_cost: int
    raw_coin_cost: float
    implied_probability: float
    tier: PickTier
    tier_multiplier: float
    is_valid: bool
    error: str | None = None


@dataclass(frozen=True)
class PointsResult:
    points: int
    raw_points: float
    implied_probability: float
    market_type: str
    market_modifier: float
    underdog_bonus: int
    is_valid: bool
    error: str | None = None


@dataclass(frozen=True)
class MinSpendValidation:
    ok: bool
    total_coin_cost: int
    min_coin_spend: int
    shortfall: int
    pick_count: int
    reason: str | None = None


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def round_half_up(value: float) -> int:
    """Round to the nearest int with .5 going up (38.5 -> 39), unlike the built-in round()."""
    return math.floor(value + 0.5)


# ---------- Difficulty point engine ----------

def calculate_difficulty_multiplier(implied_probability: float) -> float:
    """Multiplier relative to a -110 pick, compressed for longshots and floored for heavy favorites."""
    p = _clamp(implied_probability, 0.01, 0.99)
    base = STANDARD_IMPLIED_PROBABILITY / p
    if base > 2:
        base = 1 + math.sqrt(base - 1) * 1.5
    elif base < 0.5:
        base = 0.25 + base * 0.5
    return _clamp(base, MIN_DIFFICULTY_MULTIPLIER, MAX_DIFFICULTY_MULTIPLIER)


def calculate_pick_point_value(american_odds: Any) -> PickPointResult:
    conversion = convert_american_odds(american_odds)
    if not conversion.is_valid:
        return PickPointResult(
            point_value=BASE_POINTS,
            implied_probability=conversion.implied_probability,
            difficulty_multiplier=1.0,
            is_valid=False,
            error=conversion.error,
        )

    multiplier = calculate_difficulty_multiplier(conversion.implied_probability)
    raw = _clamp(BASE_POINTS * multiplier, MIN_POINTS_PER_PICK, MAX_POINTS_PER_PICK)
    return PickPointResult(
        point_value=round_half_up(raw),
        implied_probability=conversion.implied_probability,
        difficulty_multiplier=multiplier,
        is_valid=True,
    )


def calculate_parlay_bonus(pick_count: int) -> float:
    if pick_count <= 1:
        return 1.0
    return min(MAX_PARLAY_BONUS, 1 + 0.1 * math.log2(pick_count))


def calculate_slip_point_potential(odds_list: Iterable[Any]) -> SlipPointPotential:
    """Sum per-pick point values, apply the parlay bonus and cap the slip total."""
    values: list[int] = []
    errors: list[str] = []
    combined_probability = 1.0
    for odds in odds_list:
        result = calculate_pick_point_value(odds)
        values.append(result.point_value)
        combined_probability *= result.implied_probability
        if result.error:
            errors.append(result.error)

    if not values:
        return SlipPointPotential(
            total_point_potential=0,
            pick_point_values=[],
            combined_implied_probability=0.0,
            parlay_bonus=1.0,
        )

    bonus = calculate_parlay_bonus(len(values))
    total = round_half_up(min(MAX_POINTS_PER_SLIP, sum(values) * bonus))
    return SlipPointPotential(
        total_point_potential=total,
        pick_point_values=values,
        combined_implied_probability=combined_probability,
        parlay_bonus=bonus,
        errors=errors,
    )


# ---------- Tier/market engine ----------

def clamp_probability(p: float) -> float:
    return _clamp(p, MIN_PROBABILITY, MAX_PROBABILITY)


def _probability_error(p: Any) -> str | None:
    if isinstance(p, bool) or not isinstance(p, (int, float)) or not math.isfinite(p):
        return "Probability must be a finite number"
    if p < 0 or p > 1:
        return "Probability must be between 0 and 1"
    return None


def get_tier_multiplier(tier: Any) -> float:
    if tier == PickTier.FREE:
        return 1.0
    elif tier == PickTier.STANDARD:
        return 1.15
    elif tier == PickTier.PREMIUM:
        return 1.3
    elif tier == PickTier.ELITE:
        return 1.5
    else:
        return 1.0


def get_market_modifier(market_type: Any) -> float:
    if market_type == MarketType.moneyline:
        return 1.0
    elif market_type == MarketType.spread:
        return 0.85
    elif market_type in (MarketType.total, MarketType.prop):
        return 0.90
    else:
        return 1.0


def calculate_underdog_bonus(american_odds: Any) -> int:
    if american_odds is None or isinstance(american_odds, bool):
        return 0
    if not isinstance(american_odds, (int, float)) or not math.isfinite(american_odds):
        return 0
    if american_odds >= 500:
        return 4
    elif american_odds >= 400:
        return 3
    elif american_odds >= 300:
        return 2
    return 0


def calculate_coin_cost(implied_probability: Any, tier: Any) -> CoinCostResult:
    """Coin price of a pick. Increasing in probability, scaled by tier, capped at 375."""
    multiplier = get_tier_multiplier(tier)
    resolved_tier = tier if isinstance(tier, PickTier) else PickTier.FREE
    error = _probability_error(implied_probability)
    if error:
        default_cost = round_half_up((C_MIN + C_MAX) / 2 * multiplier)
        return CoinCostResult(
            coin_cost=default_cost,
            raw_coin_cost=float(default_cost),
            implied_probability=0.5,
            tier=resolved_tier,
            tier_multiplier=multiplier,
            is_valid=False,
            error=error,
        )

    p = clamp_probability(implied_probability)
    raw = (C_MIN + (C_MAX - C_MIN) * p ** ALPHA) * multiplier
    return CoinCostResult(
        coin_cost=round_half_up(min(MAX_COIN_COST, raw)),
        raw_coin_cost=raw,
        implied_probability=p,
        tier=resolved_tier,
        tier_multiplier=multiplier,
        is_valid=True,
    )


def calculate_points(implied_probability: Any, american_odds: Any, market_type: Any) -> PointsResult:
    """Display points for a pick. Decreasing in probability, clamped to [5, 40]."""
    modifier = get_market_modifier(market_type)
    market_name = market_type.value if isinstance(market_type, MarketType) else str(market_type)
    error = _probability_error(implied_probability)
    if error:
        default_points = round_half_up((P_MIN + P_MAX) / 2 * modifier)
        return PointsResult(
            points=default_points,
            raw_points=float(default_points),
            implied_probability=0.5,
            market_type=market_name,
            market_modifier=modifier,
            underdog_bonus=0,
            is_valid=False,
            error=error,
        )

    p = clamp_probability(implied_probability)
    bonus = calculate_underdog_bonus(american_odds)
    raw = (P_MIN + (P_MAX - P_MIN) * (1 - p) ** BETA) * modifier + bonus
    return PointsResult(
        points=round_half_up(_clamp(raw, MIN_POINTS, MAX_POINTS)),
        raw_points=raw,
        implied_probability=p,
        market_type=market_name,
        market_modifier=modifier,
        underdog_bonus=bonus,
        is_valid=True,
    )


def get_min_coin_spend(pick_count: int) -> int:
    if pick_count < 2:
        return 0
    return MIN_SLIP_SPEND[min(pick_count, 8)]


def validate_minimum_spend(coin_costs: Iterable[int]) -> MinSpendValidation:
    costs = list(coin_costs)
    pick_count = len(costs)
    total = sum(costs)
    minimum = get_min_coin_spend(pick_count)
    shortfall = max(0, minimum - total)
    ok = total >= minimum
    reason = None
    if not ok:
        reason = (
            f"Minimum spend for {pick_count} picks is {minimum} coins. "
            f"Current total: {total} ({shortfall} coins short)"
        )
    return MinSpendValidation(
        ok=ok,
        total_coin_cost=total,
        min_coin_spend=minimum,
        shortfall=shortfall,
        pick_count=pick_count,
        reason=reason,
    )
