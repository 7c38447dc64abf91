"""
backend/pointlock/services/odds_converter.py

Purpose:
    American odds validation and conversion to decimal odds and implied
    probability. Conversions never raise: invalid input yields a neutral
    result (2.0 decimal, 0.5 probability) flagged with ``is_valid=False``.

Dependencies:
    - math
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

MIN_VALID_ODDS = -99999
MAX_VALID_ODDS = 99999

NEUTRAL_DECIMAL_ODDS = 2.0
NEUTRAL_PROBABILITY = 0.5


@dataclass(frozen=True)
class OddsConversion:
    decimal_odds: float
    implied_probability: float
    is_valid: bool
    error: str | None = None


def is_valid_american_odds(odds: Any) -> bool:
    """True for finite numbers in [-99999, 99999] outside the open band (-100, 100)."""
    if isinstance(odds, bool) or not isinstance(odds, (int, float)):
        return False
    if not math.isfinite(odds):
        return False
    if odds < MIN_VALID_ODDS or odds > MAX_VALID_ODDS:
        return False
    return not (-100 < odds < 100)


def invalid_odds_reason(odds: Any) -> str:
    if isinstance(odds, bool) or not isinstance(odds, (int, float)) or not math.isfinite(odds):
        return f"Odds must be a finite number, got {odds!r}"
    if odds < MIN_VALID_ODDS or odds > MAX_VALID_ODDS:
        return f"Odds {odds} outside [{MIN_VALID_ODDS}, {MAX_VALID_ODDS}]"
    return f"Odds {odds} are not valid American odds (between -100 and +100)"


def american_to_decimal_odds(odds: Any) -> float:
    if not is_valid_american_odds(odds):
        return NEUTRAL_DECIMAL_ODDS
    if odds >= 100:
        return odds / 100 + 1
    return 100 / abs(odds) + 1


def american_to_implied_probability(odds: Any) -> float:
    if not is_valid_american_odds(odds):
        return NEUTRAL_PROBABILITY
    if odds >= 100:
        return 100 / (odds + 100)
    return abs(odds) / (abs(odds) + 100)


def convert_american_odds(odds: Any) -> OddsConversion:
    """Convert American odds into decimal odds and implied probability."""
    if not is_valid_american_odds(odds):
        return OddsConversion(
            decimal_odds=NEUTRAL_DECIMAL_ODDS,
            implied_probability=NEUTRAL_PROBABILITY,
            is_valid=False,
            error=invalid_odds_reason(odds),
        )
    return OddsConversion(
        decimal_odds=american_to_decimal_odds(odds),
        implied_probability=american_to_implied_probability(odds),
        is_valid=True,
    )
