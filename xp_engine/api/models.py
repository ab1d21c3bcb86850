"""Pydantic models for API request/response validation"""
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from xp_engine.models.rewards import LevelProgress


class AwardRequest(BaseModel):
    """Request to award XP for an activity"""
    user_id: str = Field(..., min_length=1, description="User identifier (e.g. email)")
    activity: str = Field(..., description="Activity kind, e.g. page_view or document_purchase")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Opaque event data")
    idempotency_key: Optional[str] = Field(
        default=None,
        description="Stable id of the triggering event; repeats replay the first result"
    )


class RedemptionRequest(BaseModel):
    """Request to validate (and apply) an XP redemption"""
    user_id: str = Field(..., min_length=1)
    xp_to_redeem: int = Field(..., description="XP to spend")
    order_total: Decimal = Field(..., description="Order total in dollars")
    order_id: Optional[str] = Field(default=None, description="Checkout id used for idempotency")


class RedemptionResponse(BaseModel):
    """Approved or rejected redemption"""
    user_id: str
    approved: bool
    rejected: bool = False
    reason: Optional[str] = None
    limit: Optional[int] = None
    message: str = ""
    xp_redeemed: int = 0
    discount_amount: Decimal = Decimal("0")
    remaining_xp: Optional[int] = None
    new_level: Optional[int] = None
    transaction_id: Optional[str] = None
    order_id: Optional[str] = None
    replayed: bool = False


class AchievementSummary(BaseModel):
    id: str
    slug: str
    name: str
    earned_at: datetime


class ProfileResponse(BaseModel):
    """Reward profile with level progress"""
    user_id: str
    total_xp: int
    redeemed_xp: int
    current_level: int
    current_streak: int
    longest_streak: int
    last_active_date: Optional[date] = None
    streak_multiplier: Decimal
    next_streak_milestone: Optional[Dict[str, Any]] = None
    progress: LevelProgress
    achievements: List[AchievementSummary]


class TransactionResponse(BaseModel):
    id: str
    amount: int
    source: str
    multiplier: Decimal
    description: str
    metadata: Dict[str, Any]
    created_at: datetime


class HistoryResponse(BaseModel):
    """Ledger entries, newest first"""
    user_id: str
    transactions: List[TransactionResponse]


class NearMissResponse(BaseModel):
    """Checkout nudge"""
    user_id: str
    has_near_miss: bool
    message: str
    xp_needed: int
    discount_unlocked: Decimal
    balance: int
    potential_xp: int
    next_tier: Optional[Dict[str, Any]] = None
    next_tier_xp_needed: int = 0


class RedemptionOption(BaseModel):
    xp_cost: int
    discount_amount: Decimal
    label: str
    available: bool


class RedemptionOptionsResponse(BaseModel):
    """Quick-pick discount tiers for an order"""
    user_id: str
    balance: int
    order_total: Decimal
    max_xp: int
    max_discount: Decimal
    reason: str
    options: List[RedemptionOption]


class HealthCheckResponse(BaseModel):
    """Health check response"""
    status: str = Field(..., description="Service status")
    store: str = Field(..., description="Reward store status")
    timestamp: datetime = Field(..., description="Check timestamp")


class ErrorResponse(BaseModel):
    """Error response model"""
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    user_message: Optional[str] = None
    request_id: Optional[str] = None
    retryable: bool = False
