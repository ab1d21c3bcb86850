"""Unit tests for leveling (xp_engine/gamification/xp_system.py)"""
import pytest

from xp_engine.gamification.reward_table import LEVEL_THRESHOLDS
from xp_engine.gamification.xp_system import MAX_LEVEL, calculate_level_progress, level_for_xp


# ============================================================================
# Level Calculation Tests
# ============================================================================

@pytest.mark.parametrize("total_xp,level", [
    (0, 1),
    (99, 1),
    (100, 2),
    (249, 2),
    (250, 3),
    (850, 5),
    (5000, 10),
    (54999, 19),
    (55000, 20),
    (10_000_000, 20),
])
def test_level_for_xp(total_xp, level):
    assert level_for_xp(total_xp) == level


def test_every_floor_starts_its_level():
    for index, floor in enumerate(LEVEL_THRESHOLDS):
        assert level_for_xp(floor) == index + 1
        if floor:
            assert level_for_xp(floor - 1) == index


def test_level_for_negative_xp_raises():
    with pytest.raises(ValueError):
        level_for_xp(-1)


# ============================================================================
# Progress Tests
# ============================================================================

def test_progress_level_1():
    progress = calculate_level_progress(50)

    assert progress.level == 1
    assert progress.level_floor == 0
    assert progress.next_level_floor == 100
    assert progress.percent_to_next == 50
    assert progress.xp_to_next == 50


def test_progress_exactly_on_floor():
    progress = calculate_level_progress(250)

    assert progress.level == 3
    assert progress.percent_to_next == 0
    assert progress.xp_to_next == 250


def test_progress_rounds_down():
    # Level 4: 500 -> 850 (350 wide); 150/350 = 42.8%
    progress = calculate_level_progress(650)

    assert progress.level == 4
    assert progress.percent_to_next == 42


def test_progress_at_top_level_is_pinned():
    """No division past the last floor"""
    for total in (55000, 60000, 1_000_000):
        progress = calculate_level_progress(total)
        assert progress.level == MAX_LEVEL
        assert progress.next_level_floor is None
        assert progress.percent_to_next == 100
        assert progress.xp_to_next == 0
