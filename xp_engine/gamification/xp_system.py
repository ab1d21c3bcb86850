"""
XP and Leveling System

Level floors (cumulative XP):
- Levels 1-5: 0, 100, 250, 500, 850
- Levels 6-10: 1300, 1900, 2700, 3700, 5000
- Levels 11-15: 6500, 8500, 11000, 14000, 18000
- Levels 16-20: 23000, 29000, 36000, 45000, 55000

Level 20 is the top of the table. XP keeps accruing past 55000 but the level
stays at 20 and progress is pinned at 100%.
"""

from bisect import bisect_right
from typing import Sequence

from xp_engine.gamification.reward_table import LEVEL_THRESHOLDS
from xp_engine.models.rewards import LevelProgress

MAX_LEVEL = len(LEVEL_THRESHOLDS)


def level_for_xp(total_xp: int, thresholds: Sequence[int] = LEVEL_THRESHOLDS) -> int:
    """Highest level whose floor is <= total_xp"""
    if total_xp < 0:
        raise ValueError(f"total_xp cannot be negative, got {total_xp}")
    return max(1, bisect_right(thresholds, total_xp))


def calculate_level_progress(
    total_xp: int,
    thresholds: Sequence[int] = LEVEL_THRESHOLDS
) -> LevelProgress:
    """
    Calculate level and progress toward the next one

    Returns:
        LevelProgress with level, floors, percent_to_next (0-100) and xp_to_next
    """
    level = level_for_xp(total_xp, thresholds)
    floor = thresholds[level - 1]

    if level >= len(thresholds):
        return LevelProgress(
            level=level,
            level_floor=floor,
            next_level_floor=None,
            percent_to_next=100,
            xp_to_next=0,
        )

    next_floor = thresholds[level]
    percent = (total_xp - floor) * 100 // (next_floor - floor)

    return LevelProgress(
        level=level,
        level_floor=floor,
        next_level_floor=next_floor,
        percent_to_next=min(100, max(0, percent)),
        xp_to_next=next_floor - total_xp,
    )
