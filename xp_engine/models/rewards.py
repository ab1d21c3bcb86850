"""Reward economy models"""
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from xp_engine.exceptions import ValidationError


class ActivityKind(str, Enum):
    """Activities that earn XP"""
    PAGE_VIEW = "page_view"
    DOCUMENT_VIEW = "document_view"
    NEWSLETTER_SIGNUP = "newsletter_signup"
    CONSULTATION_BOOKED = "consultation_booked"
    DOCUMENT_PURCHASE = "document_purchase"
    INTAKE_COMPLETE = "intake_complete"
    RETURN_VISIT = "return_visit"


class RewardTier(str, Enum):
    """Variable reinforcement tiers"""
    BASE = "base"
    BONUS = "bonus"
    RARE = "rare"
    JACKPOT = "jackpot"


class RequirementType(str, Enum):
    """What an achievement measures"""
    VISIT_COUNT = "visit_count"
    STREAK_DAYS = "streak_days"
    PURCHASE_COUNT = "purchase_count"
    CONSULTATION_COUNT = "consultation_count"
    NEWSLETTER_SUBSCRIBED = "newsletter_subscribed"
    INTAKE_COMPLETED = "intake_completed"


# Non-activity ledger sources
SOURCE_ACHIEVEMENT = "achievement"
SOURCE_REDEMPTION = "redemption"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_user_id(user_id: str) -> str:
    """Stable profile key: emails and ids are compared case-insensitively"""
    normalized = (user_id or "").strip().lower()
    if not normalized:
        raise ValidationError("user_id cannot be empty", field="user_id", value=user_id)
    return normalized


class UserRewardProfile(BaseModel):
    """Cached per-user projection of the ledger"""
    user_id: str
    total_xp: int = Field(0, ge=0)
    redeemed_xp: int = Field(0, ge=0)
    current_level: int = Field(1, ge=1)
    current_streak: int = Field(0, ge=0)
    longest_streak: int = Field(0, ge=0)
    last_active_date: Optional[date] = None
    # Bumped on every write; compared on commit to detect lost updates
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class XPTransaction(BaseModel):
    """Immutable ledger entry"""
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    amount: int
    source: str
    multiplier: Decimal = Decimal("1.0")
    description: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    idempotency_key: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class AchievementDefinition(BaseModel):
    """Catalog entry"""
    id: str
    slug: str
    name: str
    description: str = ""
    requirement_type: RequirementType
    requirement_value: int = Field(..., ge=1)
    xp_reward: int = Field(..., ge=0)


class UserAchievement(BaseModel):
    """User's unlocked achievement"""
    user_id: str
    achievement_id: str
    earned_at: datetime = Field(default_factory=utcnow)


class DiscountTier(BaseModel):
    """Quick-pick redemption step"""
    xp_cost: int
    discount_amount: Decimal
    label: str


class LevelProgress(BaseModel):
    """Where a user sits between two level floors"""
    level: int
    level_floor: int
    next_level_floor: Optional[int] = None
    percent_to_next: int
    xp_to_next: int


class AwardResult(BaseModel):
    """Outcome of one award call, replayed verbatim for duplicate events"""
    user_id: str
    activity: ActivityKind
    base_xp: int
    bonus_xp: int
    total_xp_earned: int
    tier: RewardTier
    streak_multiplier: Decimal
    bundle_tier: Optional[RewardTier] = None
    bonuses: list[str] = Field(default_factory=list)
    new_balance: int
    current_streak: int
    leveled_up: bool
    new_level: int
    achievements_earned: list[str] = Field(default_factory=list)
    transaction_id: str
    idempotency_key: Optional[str] = None
    replayed: bool = False


class RedemptionResult(BaseModel):
    """Approved redemption"""
    user_id: str
    approved: bool = True
    xp_redeemed: int
    discount_amount: Decimal
    remaining_xp: int
    new_level: int
    transaction_id: str
    order_id: Optional[str] = None
    message: str = ""
    replayed: bool = False


class AchievementRetry(BaseModel):
    """Queued achievement evaluation that failed after an award"""
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    context: dict[str, Any] = Field(default_factory=dict)
    error: str = ""
    attempts: int = 0
    created_at: datetime = Field(default_factory=utcnow)
