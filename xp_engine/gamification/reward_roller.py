"""
Reward Roller

One probabilistic reward primitive, parameterized by a tier schedule:

    roller = RewardRoller()
    amount, tier = roller.roll(ActivityKind.PAGE_VIEW)

The draw is a uniform r in [0, 100) taken from the OS entropy source by
default, so outcomes cannot be predicted from earlier responses. Tests pass a
seeded random.Random (or any object with a random() method) instead.
"""

import logging
import random
from decimal import Decimal
from typing import Optional, Protocol, Sequence, Tuple

from xp_engine.gamification.reward_table import (
    PURCHASE_RARITY_EXTRA,
    PURCHASE_RARITY_SCHEDULE,
    STANDARD_SCHEDULE,
    TierThreshold,
    get_tier_points,
)
from xp_engine.models.rewards import ActivityKind, RewardTier

logger = logging.getLogger(__name__)


class RandomSource(Protocol):
    def random(self) -> float: ...


def select_tier(draw: float, schedule: Sequence[TierThreshold]) -> RewardTier:
    """
    Map a draw in [0, 100) onto a tier

    Thresholds are cumulative and checked in order; a draw that clears every
    threshold is BASE.
    """
    if not 0 <= draw < 100:
        raise ValueError(f"draw must be in [0, 100), got {draw}")

    value = Decimal(str(draw))
    for threshold in schedule:
        if value < threshold.upper_bound:
            return threshold.tier
    return RewardTier.BASE


class RewardRoller:
    """Draws reward tiers against a fixed probability schedule"""

    def __init__(
        self,
        rng: Optional[RandomSource] = None,
        schedule: Sequence[TierThreshold] = STANDARD_SCHEDULE,
        bundle_schedule: Sequence[TierThreshold] = PURCHASE_RARITY_SCHEDULE,
    ):
        self.rng = rng or random.SystemRandom()
        self.schedule = tuple(schedule)
        self.bundle_schedule = tuple(bundle_schedule)

    def draw(self) -> float:
        """Uniform draw in [0, 100)"""
        return self.rng.random() * 100

    def roll_tier(self, schedule: Optional[Sequence[TierThreshold]] = None) -> RewardTier:
        return select_tier(self.draw(), schedule or self.schedule)

    def roll(self, activity: ActivityKind) -> Tuple[int, RewardTier]:
        """
        Roll the reward for one activity

        Returns:
            (points, tier)
        """
        points = get_tier_points(activity)
        tier = self.roll_tier()
        logger.debug(f"Rolled {tier.value} for {ActivityKind(activity).value}: {points[tier]} XP")
        return points[tier], tier

    def roll_bundle_bonus(self, purchase_xp: int) -> Tuple[int, RewardTier]:
        """
        Extra rarity roll layered on a bundle purchase

        Args:
            purchase_xp: XP already rolled for the purchase itself

        Returns:
            (extra points, tier); extra is 0 on a BASE roll
        """
        tier = self.roll_tier(self.bundle_schedule)
        return purchase_xp * PURCHASE_RARITY_EXTRA[tier], tier
