"""Domain models for the XP reward economy"""
from xp_engine.models.rewards import (
    ActivityKind,
    RewardTier,
    RequirementType,
    SOURCE_ACHIEVEMENT,
    SOURCE_REDEMPTION,
    UserRewardProfile,
    XPTransaction,
    AchievementDefinition,
    UserAchievement,
    DiscountTier,
    LevelProgress,
    AwardResult,
    RedemptionResult,
    AchievementRetry,
    normalize_user_id,
)

__all__ = [
    "ActivityKind",
    "RewardTier",
    "RequirementType",
    "SOURCE_ACHIEVEMENT",
    "SOURCE_REDEMPTION",
    "UserRewardProfile",
    "XPTransaction",
    "AchievementDefinition",
    "UserAchievement",
    "DiscountTier",
    "LevelProgress",
    "AwardResult",
    "RedemptionResult",
    "AchievementRetry",
    "normalize_user_id",
]
