"""
backend/tests/test_odds_converter.py

Purpose:
    American odds validation and conversion, including neutral defaults for
    illegal odds.
"""

from __future__ import annotations

import pytest

from pointlock.services.odds_converter import (
    american_to_decimal_odds,
    american_to_implied_probability,
    convert_american_odds,
    is_valid_american_odds,
)


@pytest.mark.parametrize("odds", [100, -100, 150, -110, 99999, -99999, 250.0])
def test_valid_american_odds(odds):
    assert is_valid_american_odds(odds) is True


@pytest.mark.parametrize(
    "odds",
    [0, 50, -50, 99, -99, 100000, -100000, float("nan"), float("inf"), None, "150", True],
)
def test_invalid_american_odds(odds):
    assert is_valid_american_odds(odds) is False


def test_positive_odds_conversion():
    assert american_to_decimal_odds(150) == pytest.approx(2.5)
    assert american_to_implied_probability(150) == pytest.approx(0.4)
    assert american_to_decimal_odds(100) == pytest.approx(2.0)
    assert american_to_implied_probability(100) == pytest.approx(0.5)


def test_negative_odds_conversion():
    assert american_to_decimal_odds(-200) == pytest.approx(1.5)
    assert american_to_implied_probability(-200) == pytest.approx(2 / 3)
    assert american_to_implied_probability(-110) == pytest.approx(110 / 210)


def test_invalid_odds_return_neutral_defaults():
    result = convert_american_odds(50)
    assert result.is_valid is False
    assert result.decimal_odds == 2.0
    assert result.implied_probability == 0.5
    assert "between -100 and +100" in result.error

    out_of_range = convert_american_odds(-250000)
    assert out_of_range.is_valid is False
    assert "outside" in out_of_range.error


def test_convert_valid_odds_has_no_error():
    result = convert_american_odds(-150)
    assert result.is_valid is True
    assert result.error is None
    assert result.decimal_odds == pytest.approx(1 + 100 / 150)
    assert result.implied_probability == pytest.approx(0.6)
