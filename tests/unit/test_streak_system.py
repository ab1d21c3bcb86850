"""Unit tests for daily streaks (xp_engine/gamification/streak_system.py)"""
from datetime import date, timedelta
from decimal import Decimal

import pytest

from xp_engine.exceptions import StreakClockSkewError, ValidationError
from xp_engine.gamification.streak_system import (
    next_streak_milestone,
    streak_multiplier,
    update_streak,
)

TODAY = date(2026, 3, 10)


# ============================================================================
# update_streak Tests
# ============================================================================

def test_first_activity_starts_streak():
    assert update_streak(None, TODAY, 0) == 1


@pytest.mark.parametrize("current", [0, 1, 6, 45])
def test_same_day_leaves_streak_unchanged(current):
    assert update_streak(TODAY, TODAY, current) == current


@pytest.mark.parametrize("current", [1, 2, 6, 29, 89])
def test_next_day_increments_by_one(current):
    assert update_streak(TODAY - timedelta(days=1), TODAY, current) == current + 1


@pytest.mark.parametrize("gap", [2, 3, 30, 400])
def test_gap_resets_to_one(gap):
    assert update_streak(TODAY - timedelta(days=gap), TODAY, 12) == 1


def test_month_boundary_counts_as_consecutive():
    assert update_streak(date(2026, 2, 28), date(2026, 3, 1), 4) == 5


def test_clock_skew_is_rejected():
    """An activity dated before the last one never decrements the streak"""
    with pytest.raises(StreakClockSkewError) as exc_info:
        update_streak(TODAY + timedelta(days=1), TODAY, 8)

    assert isinstance(exc_info.value, ValidationError)
    assert exc_info.value.field == "today"


# ============================================================================
# Multiplier Tests
# ============================================================================

@pytest.mark.parametrize("streak,expected", [
    (0, Decimal("1.0")),
    (2, Decimal("1.0")),
    (3, Decimal("1.10")),
    (6, Decimal("1.10")),
    (7, Decimal("1.25")),
    (14, Decimal("1.50")),
    (30, Decimal("2.00")),
    (59, Decimal("2.00")),
    (60, Decimal("2.50")),
    (90, Decimal("3.00")),
    (365, Decimal("3.00")),
])
def test_streak_multiplier_thresholds(streak, expected):
    assert streak_multiplier(streak) == expected


def test_streak_multiplier_never_below_one_and_non_decreasing():
    previous = Decimal("1.0")
    for streak in range(0, 200):
        value = streak_multiplier(streak)
        assert value >= Decimal("1.0")
        assert value >= previous
        previous = value


# ============================================================================
# Milestone Tests
# ============================================================================

def test_next_streak_milestone():
    milestone = next_streak_milestone(6)

    assert milestone["days"] == 7
    assert milestone["days_remaining"] == 1
    assert milestone["multiplier"] == Decimal("1.25")


def test_next_streak_milestone_at_top_is_none():
    assert next_streak_milestone(90) is None
