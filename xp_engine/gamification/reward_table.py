"""
Reward Table

Static configuration for the XP economy. Values encode product decisions and
are kept verbatim from the live reward tables; change them here and nowhere
else.

Variable reinforcement schedule (per activity):
- 80% base
- 15% bonus
- 4% rare
- 1% jackpot

Streak multipliers:
- 3 days: 1.10x
- 7 days: 1.25x
- 14 days: 1.50x
- 30 days: 2.00x
- 60 days: 2.50x
- 90 days: 3.00x
"""

from decimal import Decimal
from typing import Dict, List, NamedTuple, Tuple

from xp_engine.models.rewards import (
    AchievementDefinition,
    ActivityKind,
    DiscountTier,
    RequirementType,
    RewardTier,
)


class TierThreshold(NamedTuple):
    """Draws strictly below `upper_bound` (out of 100) land on `tier`"""
    upper_bound: Decimal
    tier: RewardTier


# Points per tier for each activity
XP_REWARDS: Dict[ActivityKind, Dict[RewardTier, int]] = {
    ActivityKind.PAGE_VIEW: {
        RewardTier.BASE: 2, RewardTier.BONUS: 5, RewardTier.RARE: 15, RewardTier.JACKPOT: 50,
    },
    ActivityKind.DOCUMENT_VIEW: {
        RewardTier.BASE: 5, RewardTier.BONUS: 10, RewardTier.RARE: 25, RewardTier.JACKPOT: 75,
    },
    ActivityKind.NEWSLETTER_SIGNUP: {
        RewardTier.BASE: 25, RewardTier.BONUS: 50, RewardTier.RARE: 100, RewardTier.JACKPOT: 250,
    },
    ActivityKind.CONSULTATION_BOOKED: {
        RewardTier.BASE: 75, RewardTier.BONUS: 150, RewardTier.RARE: 300, RewardTier.JACKPOT: 750,
    },
    ActivityKind.DOCUMENT_PURCHASE: {
        RewardTier.BASE: 50, RewardTier.BONUS: 100, RewardTier.RARE: 200, RewardTier.JACKPOT: 500,
    },
    ActivityKind.INTAKE_COMPLETE: {
        RewardTier.BASE: 40, RewardTier.BONUS: 80, RewardTier.RARE: 160, RewardTier.JACKPOT: 400,
    },
    ActivityKind.RETURN_VISIT: {
        RewardTier.BASE: 10, RewardTier.BONUS: 20, RewardTier.RARE: 50, RewardTier.JACKPOT: 150,
    },
}

# Cumulative thresholds, checked in order; anything above the last is BASE
STANDARD_SCHEDULE: Tuple[TierThreshold, ...] = (
    TierThreshold(Decimal("1"), RewardTier.JACKPOT),
    TierThreshold(Decimal("5"), RewardTier.RARE),
    TierThreshold(Decimal("20"), RewardTier.BONUS),
)

# Extra roll for bundle purchases: 1% jackpot, 4% rare, 10% bonus
PURCHASE_RARITY_SCHEDULE: Tuple[TierThreshold, ...] = (
    TierThreshold(Decimal("1"), RewardTier.JACKPOT),
    TierThreshold(Decimal("5"), RewardTier.RARE),
    TierThreshold(Decimal("15"), RewardTier.BONUS),
)

# Additional multiples of the rolled purchase XP granted by the bundle roll
PURCHASE_RARITY_EXTRA: Dict[RewardTier, int] = {
    RewardTier.BASE: 0,
    RewardTier.BONUS: 1,
    RewardTier.RARE: 2,
    RewardTier.JACKPOT: 4,
}

BUNDLE_MULTIPLIER = Decimal("3.0")
FIRST_PURCHASE_BONUS_XP = 500
FIRST_BUNDLE_BONUS_XP = 200

# (minimum streak days, multiplier), ascending
STREAK_MULTIPLIERS: Tuple[Tuple[int, Decimal], ...] = (
    (3, Decimal("1.10")),
    (7, Decimal("1.25")),
    (14, Decimal("1.50")),
    (30, Decimal("2.00")),
    (60, Decimal("2.50")),
    (90, Decimal("3.00")),
)

# Floor XP for each level; index 0 is level 1
LEVEL_THRESHOLDS: Tuple[int, ...] = (
    0, 100, 250, 500, 850, 1300, 1900, 2700, 3700, 5000,
    6500, 8500, 11000, 14000, 18000, 23000, 29000, 36000, 45000, 55000,
)

DISCOUNT_TIERS: Tuple[DiscountTier, ...] = (
    DiscountTier(xp_cost=500, discount_amount=Decimal("5"), label="$5 off"),
    DiscountTier(xp_cost=1000, discount_amount=Decimal("10"), label="$10 off"),
    DiscountTier(xp_cost=1500, discount_amount=Decimal("15"), label="$15 off"),
    DiscountTier(xp_cost=2000, discount_amount=Decimal("20"), label="$20 off"),
    DiscountTier(xp_cost=2500, discount_amount=Decimal("25"), label="$25 off"),
    DiscountTier(xp_cost=5000, discount_amount=Decimal("50"), label="$50 off"),
)

# Users within this many XP of a tier (after a purchase) get a near-miss nudge
NEAR_MISS_WINDOW_XP = 200

ACHIEVEMENT_CATALOG: Tuple[AchievementDefinition, ...] = (
    AchievementDefinition(
        id="ach_first_visit", slug="first_visit", name="First Steps",
        description="Visit the site for the first time",
        requirement_type=RequirementType.VISIT_COUNT, requirement_value=1, xp_reward=10,
    ),
    AchievementDefinition(
        id="ach_regular_visitor", slug="regular_visitor", name="Regular Visitor",
        description="View 10 pages",
        requirement_type=RequirementType.VISIT_COUNT, requirement_value=10, xp_reward=50,
    ),
    AchievementDefinition(
        id="ach_streak_3", slug="streak_3", name="Warming Up",
        description="Stay engaged three days in a row",
        requirement_type=RequirementType.STREAK_DAYS, requirement_value=3, xp_reward=30,
    ),
    AchievementDefinition(
        id="ach_streak_7", slug="streak_7", name="Week Warrior",
        description="Stay engaged seven days in a row",
        requirement_type=RequirementType.STREAK_DAYS, requirement_value=7, xp_reward=75,
    ),
    AchievementDefinition(
        id="ach_streak_30", slug="streak_30", name="Month of Momentum",
        description="Stay engaged thirty days in a row",
        requirement_type=RequirementType.STREAK_DAYS, requirement_value=30, xp_reward=300,
    ),
    AchievementDefinition(
        id="ach_first_purchase", slug="first_purchase_badge", name="First Document",
        description="Purchase your first legal document",
        requirement_type=RequirementType.PURCHASE_COUNT, requirement_value=1, xp_reward=100,
    ),
    AchievementDefinition(
        id="ach_loyal_client", slug="loyal_client", name="Loyal Client",
        description="Purchase five legal documents",
        requirement_type=RequirementType.PURCHASE_COUNT, requirement_value=5, xp_reward=250,
    ),
    AchievementDefinition(
        id="ach_first_consultation", slug="first_consultation", name="Expert Advice",
        description="Book your first consultation",
        requirement_type=RequirementType.CONSULTATION_COUNT, requirement_value=1, xp_reward=100,
    ),
    AchievementDefinition(
        id="ach_newsletter", slug="newsletter_subscriber", name="In the Loop",
        description="Subscribe to the newsletter",
        requirement_type=RequirementType.NEWSLETTER_SUBSCRIBED, requirement_value=1, xp_reward=25,
    ),
    AchievementDefinition(
        id="ach_intake_complete", slug="intake_complete_badge", name="Ready to Start",
        description="Complete the client intake form",
        requirement_type=RequirementType.INTAKE_COMPLETED, requirement_value=1, xp_reward=50,
    ),
)


def get_tier_points(activity: ActivityKind) -> Dict[RewardTier, int]:
    """Points table for one activity"""
    return XP_REWARDS[ActivityKind(activity)]


def validate_tables() -> List[str]:
    """
    Check the static tables for ordering mistakes

    Returns:
        List of problems (empty when the tables are consistent)
    """
    problems = []

    for activity, points in XP_REWARDS.items():
        ordered = [points[t] for t in (RewardTier.BASE, RewardTier.BONUS, RewardTier.RARE, RewardTier.JACKPOT)]
        if ordered != sorted(ordered) or len(set(ordered)) != len(ordered):
            problems.append(f"{activity.value}: tier points must strictly increase")

    for name, schedule in (("standard", STANDARD_SCHEDULE), ("purchase", PURCHASE_RARITY_SCHEDULE)):
        bounds = [t.upper_bound for t in schedule]
        if bounds != sorted(bounds) or bounds[-1] > 100:
            problems.append(f"{name} schedule thresholds must ascend within [0, 100]")

    thresholds = [t for t, _ in STREAK_MULTIPLIERS]
    multipliers = [m for _, m in STREAK_MULTIPLIERS]
    if thresholds != sorted(thresholds) or multipliers != sorted(multipliers):
        problems.append("streak multipliers must be non-decreasing")
    if multipliers and multipliers[0] < 1:
        problems.append("streak multipliers must be at least 1.0")

    if LEVEL_THRESHOLDS[0] != 0 or any(
        b <= a for a, b in zip(LEVEL_THRESHOLDS, LEVEL_THRESHOLDS[1:])
    ):
        problems.append("level thresholds must start at 0 and strictly increase")

    for a, b in zip(DISCOUNT_TIERS, DISCOUNT_TIERS[1:]):
        if b.xp_cost <= a.xp_cost or b.discount_amount <= a.discount_amount:
            problems.append("discount tiers must strictly increase in cost and discount")
            break

    slugs = [a.slug for a in ACHIEVEMENT_CATALOG]
    if len(set(slugs)) != len(slugs):
        problems.append("achievement slugs must be unique")

    return problems
