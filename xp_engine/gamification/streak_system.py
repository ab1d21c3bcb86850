"""
Daily Engagement Streaks

A streak counts consecutive calendar days with at least one rewarded
activity.

Logic:
- First activity ever: streak starts at 1
- Same day as last activity: unchanged
- Day after last activity: +1
- Gap of more than one day: reset to 1
- Activity dated before the last activity: rejected (clock skew)

The multiplier applied to an award comes from the streak *after* today's
activity has been counted.
"""

from datetime import date
from decimal import Decimal
from typing import Dict, Optional
import logging

from xp_engine.exceptions import StreakClockSkewError
from xp_engine.gamification.reward_table import STREAK_MULTIPLIERS

logger = logging.getLogger(__name__)


def update_streak(
    last_active_date: Optional[date],
    today: date,
    current_streak: int
) -> int:
    """
    Compute the streak after an activity on `today`

    Args:
        last_active_date: Date of the previous rewarded activity (None if never)
        today: Date of this activity
        current_streak: Streak stored before this activity

    Returns:
        New streak length

    Raises:
        StreakClockSkewError: If today is earlier than last_active_date
    """
    if last_active_date is None:
        return 1

    diff_days = (today - last_active_date).days

    if diff_days < 0:
        raise StreakClockSkewError(
            f"Activity on {today.isoformat()} precedes last activity on "
            f"{last_active_date.isoformat()}",
            value=today.isoformat()
        )
    if diff_days == 0:
        return current_streak
    if diff_days == 1:
        return current_streak + 1
    return 1


def streak_multiplier(streak: int) -> Decimal:
    """
    Multiplier for the highest threshold not exceeding `streak`

    Below the first threshold the multiplier is 1.0.
    """
    multiplier = Decimal("1.0")
    for threshold, value in STREAK_MULTIPLIERS:
        if streak >= threshold:
            multiplier = value
        else:
            break
    return multiplier


def next_streak_milestone(streak: int) -> Optional[Dict[str, object]]:
    """
    The next multiplier step the user can reach

    Returns:
        {'days': int, 'days_remaining': int, 'multiplier': Decimal} or None at the top
    """
    for threshold, value in STREAK_MULTIPLIERS:
        if streak < threshold:
            return {
                "days": threshold,
                "days_remaining": threshold - streak,
                "multiplier": value,
            }
    return None
