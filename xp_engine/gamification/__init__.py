"""
XP reward economy

This package implements:
- Reward table and the parameterized reward roller
- Daily engagement streaks and their multipliers
- Leveling from cumulative XP
- The award ledger (idempotent, optimistic concurrency)
- One-time achievements
- XP redemption for checkout discounts
"""

from xp_engine.gamification.reward_roller import RewardRoller, select_tier
from xp_engine.gamification.streak_system import update_streak, streak_multiplier
from xp_engine.gamification.xp_system import level_for_xp, calculate_level_progress
from xp_engine.gamification.achievement_system import AchievementEvaluator
from xp_engine.gamification.ledger import XPLedger
from xp_engine.gamification.redemption import (
    RedemptionEngine,
    RedemptionPolicy,
    max_redeemable_xp,
    xp_to_discount,
    discount_to_xp,
    get_next_discount_tier,
    get_near_miss_message,
)

__all__ = [
    "RewardRoller",
    "select_tier",
    "update_streak",
    "streak_multiplier",
    "level_for_xp",
    "calculate_level_progress",
    "AchievementEvaluator",
    "XPLedger",
    "RedemptionEngine",
    "RedemptionPolicy",
    "max_redeemable_xp",
    "xp_to_discount",
    "discount_to_xp",
    "get_next_discount_tier",
    "get_near_miss_message",
]
