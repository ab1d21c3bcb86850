"""
Redemption Engine

Converts XP into checkout discounts.

Rules:
- Fixed rate: XP_TO_DOLLAR_RATE XP = $1 (100 by default)
- Nothing below MIN_REDEMPTION_XP can be redeemed
- At most the user's balance, and at most MAX_DISCOUNT_PERCENTAGE of the order

The cap is always re-derived from the stored balance at commit time; a
client-supplied balance is never trusted.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_CEILING, ROUND_DOWN
from typing import Any, Dict, List, Optional
import logging

from xp_engine import config
from xp_engine.db.store import EVENT_REDEMPTION, LedgerChange, RewardStore
from xp_engine.exceptions import (
    DuplicateEventError,
    RedemptionRejectedError,
    RejectionReason,
    ValidationError,
)
from xp_engine.gamification.ledger import round_xp
from xp_engine.gamification.reward_table import DISCOUNT_TIERS, NEAR_MISS_WINDOW_XP, get_tier_points
from xp_engine.gamification.streak_system import streak_multiplier
from xp_engine.gamification.xp_system import level_for_xp
from xp_engine.models.rewards import (
    SOURCE_REDEMPTION,
    ActivityKind,
    DiscountTier,
    RedemptionResult,
    RewardTier,
    UserRewardProfile,
    XPTransaction,
    normalize_user_id,
    utcnow,
)
from xp_engine.observability.metrics import xp_redemptions_total
from xp_engine.resilience.retry import BASE_DELAY, retry_with_backoff

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


@dataclass(frozen=True)
class RedemptionPolicy:
    """Conversion rate and limits"""
    xp_to_dollar_rate: int = config.XP_TO_DOLLAR_RATE
    min_redemption_xp: int = config.MIN_REDEMPTION_XP
    max_discount_percentage: int = config.MAX_DISCOUNT_PERCENTAGE


DEFAULT_POLICY = RedemptionPolicy()


def xp_to_discount(xp: int, policy: RedemptionPolicy = DEFAULT_POLICY) -> Decimal:
    """Dollar value of `xp`, rounded down to the cent"""
    return (Decimal(xp) / policy.xp_to_dollar_rate).quantize(CENTS, rounding=ROUND_DOWN)


def discount_to_xp(dollars: Decimal, policy: RedemptionPolicy = DEFAULT_POLICY) -> int:
    """XP needed for a discount of `dollars`, rounded up"""
    xp = Decimal(str(dollars)) * policy.xp_to_dollar_rate
    return int(xp.to_integral_value(rounding=ROUND_CEILING))


def order_cap_xp(order_total: Decimal, policy: RedemptionPolicy = DEFAULT_POLICY) -> int:
    """Most XP an order of `order_total` can absorb under the percentage cap"""
    cap_dollars = Decimal(str(order_total)) * policy.max_discount_percentage / 100
    return int((cap_dollars * policy.xp_to_dollar_rate).to_integral_value(rounding=ROUND_DOWN))


def max_redeemable_xp(
    order_total: Decimal,
    user_xp: int,
    policy: RedemptionPolicy = DEFAULT_POLICY
) -> Dict[str, Any]:
    """
    Largest redemption allowed for this order and balance

    Returns:
        {'max_xp': int, 'max_discount': Decimal, 'reason': str}
        max_xp is 0 when the balance (or the order cap) is below the minimum
    """
    if user_xp < policy.min_redemption_xp:
        return {
            "max_xp": 0,
            "max_discount": Decimal("0.00"),
            "reason": (
                f"Minimum {policy.min_redemption_xp} XP required to redeem "
                f"(${xp_to_discount(policy.min_redemption_xp, policy)} off)"
            ),
        }

    cap_xp = order_cap_xp(order_total, policy)
    if cap_xp < policy.min_redemption_xp:
        return {
            "max_xp": 0,
            "max_discount": Decimal("0.00"),
            "reason": f"Order total too small for the minimum {policy.min_redemption_xp} XP redemption",
        }

    if cap_xp < user_xp:
        return {
            "max_xp": cap_xp,
            "max_discount": xp_to_discount(cap_xp, policy),
            "reason": (
                f"Maximum {policy.max_discount_percentage}% discount applies "
                f"(${xp_to_discount(cap_xp, policy)} off this order)"
            ),
        }

    return {
        "max_xp": user_xp,
        "max_discount": xp_to_discount(user_xp, policy),
        "reason": f"Redeem up to {user_xp} XP (${xp_to_discount(user_xp, policy)} off)",
    }


def check_redemption(
    xp_to_redeem: int,
    user_xp: int,
    order_total: Decimal,
    policy: RedemptionPolicy = DEFAULT_POLICY
) -> None:
    """
    Raise RedemptionRejectedError if the request breaks a rule

    Checked in order: positive amount, balance, minimum, order cap.
    """
    if xp_to_redeem <= 0:
        raise RedemptionRejectedError(
            f"XP to redeem must be positive, got {xp_to_redeem}",
            reason=RejectionReason.INVALID_AMOUNT,
            value=xp_to_redeem
        )
    if xp_to_redeem > user_xp:
        raise RedemptionRejectedError(
            f"Requested {xp_to_redeem} XP but balance is {user_xp}",
            reason=RejectionReason.EXCEEDS_BALANCE,
            value=xp_to_redeem,
            limit=user_xp
        )
    if xp_to_redeem < policy.min_redemption_xp:
        raise RedemptionRejectedError(
            f"Requested {xp_to_redeem} XP, minimum is {policy.min_redemption_xp}",
            reason=RejectionReason.BELOW_MINIMUM,
            value=xp_to_redeem,
            limit=policy.min_redemption_xp
        )
    cap = order_cap_xp(order_total, policy)
    if xp_to_redeem > cap:
        raise RedemptionRejectedError(
            f"Requested {xp_to_redeem} XP exceeds the {policy.max_discount_percentage}% "
            f"order cap of {cap} XP",
            reason=RejectionReason.EXCEEDS_ORDER_CAP,
            value=xp_to_redeem,
            limit=cap
        )


def get_next_discount_tier(user_xp: int, tiers=DISCOUNT_TIERS) -> Dict[str, Any]:
    """
    The first discount tier the user has not reached

    Returns:
        {'next_tier': DiscountTier | None, 'xp_needed': int, 'message': str}
    """
    for tier in tiers:
        if user_xp < tier.xp_cost:
            xp_needed = tier.xp_cost - user_xp
            return {
                "next_tier": tier,
                "xp_needed": xp_needed,
                "message": f"Just {xp_needed} XP to unlock {tier.label}!",
            }

    return {
        "next_tier": None,
        "xp_needed": 0,
        "message": "You've unlocked maximum discount potential!",
    }


def get_near_miss_message(
    user_xp: int,
    cart_total: Decimal,
    potential_xp: int,
    tiers=DISCOUNT_TIERS
) -> Dict[str, Any]:
    """
    Nudge shown at checkout when the purchase gets the user to (or near) a tier

    Args:
        user_xp: Current balance
        cart_total: Cart value; tiers worth more than the cart are skipped
        potential_xp: XP this purchase is expected to earn

    Returns:
        {'has_near_miss', 'message', 'xp_needed', 'discount_unlocked'}
    """
    after_purchase = user_xp + potential_xp
    cart_total = Decimal(str(cart_total))

    for tier in tiers:
        if user_xp >= tier.xp_cost or tier.discount_amount > cart_total:
            continue

        if after_purchase >= tier.xp_cost:
            xp_needed = tier.xp_cost - user_xp
            return {
                "has_near_miss": True,
                "message": (
                    f"Complete this purchase to earn {potential_xp} XP and unlock {tier.label}! "
                    f"You need just {xp_needed} more XP."
                ),
                "xp_needed": xp_needed,
                "discount_unlocked": tier.discount_amount,
            }

        if tier.xp_cost - after_purchase < NEAR_MISS_WINDOW_XP:
            xp_needed = tier.xp_cost - after_purchase
            return {
                "has_near_miss": True,
                "message": (
                    f"You're so close! Just {xp_needed} more XP after this purchase "
                    f"to unlock {tier.label}!"
                ),
                "xp_needed": xp_needed,
                "discount_unlocked": tier.discount_amount,
            }

    return {
        "has_near_miss": False,
        "message": f"Complete this purchase to earn {potential_xp} XP!",
        "xp_needed": 0,
        "discount_unlocked": Decimal("0"),
    }


def parse_order_total(order_total: Any, field: str = "order_total") -> Decimal:
    try:
        value = Decimal(str(order_total))
    except ArithmeticError:
        raise ValidationError(f"{field} must be a number", field=field, value=order_total)
    if not value.is_finite() or value <= 0:
        raise ValidationError(f"{field} must be positive", field=field, value=str(order_total))
    return value


class RedemptionEngine:
    """Validates and applies XP redemptions against a RewardStore"""

    def __init__(
        self,
        store: RewardStore,
        policy: RedemptionPolicy = DEFAULT_POLICY,
        max_retries: int = config.LEDGER_MAX_RETRIES,
        retry_base_delay: float = BASE_DELAY
    ):
        self.store = store
        self.policy = policy
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay

    async def _balance(self, user_id: str) -> UserRewardProfile:
        return await self.store.get_profile(user_id) or UserRewardProfile(user_id=user_id)

    async def validate_redemption(
        self,
        user_id: str,
        xp_to_redeem: int,
        order_total: Any,
        order_id: Optional[str] = None
    ) -> RedemptionResult:
        """
        Validate a redemption and debit the balance if it is allowed

        Args:
            user_id: User identifier
            xp_to_redeem: XP the user wants to spend
            order_total: Order value in dollars
            order_id: Optional checkout id; a repeated id replays the first approval

        Returns:
            Approved RedemptionResult

        Raises:
            RedemptionRejectedError: A redemption rule was broken (carries reason)
            ValidationError: order_total is not a positive number
            StorageError / ConflictError: Retries exhausted; nothing was debited
        """
        user_id = normalize_user_id(user_id)
        total = parse_order_total(order_total)

        if order_id:
            stored = await self.store.get_event_result(user_id, EVENT_REDEMPTION, order_id)
            if stored is not None:
                return self._replay(stored)

        try:
            result = await retry_with_backoff(
                self._attempt_redemption,
                user_id,
                xp_to_redeem,
                total,
                order_id,
                max_retries=self.max_retries,
                base_delay=self.retry_base_delay
            )
        except RedemptionRejectedError as e:
            xp_redemptions_total.labels(outcome=e.reason.value).inc()
            raise
        except DuplicateEventError as e:
            if e.original is None:
                raise
            return self._replay(e.original)

        xp_redemptions_total.labels(outcome="approved").inc()
        logger.info(
            f"Redeemed {result.xp_redeemed} XP for ${result.discount_amount} "
            f"(user {user_id}, order {order_id}), {result.remaining_xp} XP left"
        )
        return result

    def _replay(self, stored: Dict[str, Any]) -> RedemptionResult:
        xp_redemptions_total.labels(outcome="replayed").inc()
        result = RedemptionResult.model_validate(stored)
        logger.info(f"Replaying redemption for order {result.order_id} ({result.user_id})")
        return result.model_copy(update={"replayed": True})

    async def _attempt_redemption(
        self,
        user_id: str,
        xp_to_redeem: int,
        order_total: Decimal,
        order_id: Optional[str]
    ) -> RedemptionResult:
        profile = await self._balance(user_id)
        check_redemption(xp_to_redeem, profile.total_xp, order_total, self.policy)

        discount = xp_to_discount(xp_to_redeem, self.policy)
        remaining = profile.total_xp - xp_to_redeem
        new_level = level_for_xp(remaining)

        transaction = XPTransaction(
            user_id=user_id,
            amount=-xp_to_redeem,
            source=SOURCE_REDEMPTION,
            description=f"Redeemed for ${discount} discount",
            metadata={
                "order_id": order_id,
                "order_total": str(order_total),
                "discount_amount": str(discount),
            },
            idempotency_key=order_id,
        )
        result = RedemptionResult(
            user_id=user_id,
            xp_redeemed=xp_to_redeem,
            discount_amount=discount,
            remaining_xp=remaining,
            new_level=new_level,
            transaction_id=transaction.id,
            order_id=order_id,
            message=f"${discount} discount applied",
        )

        await self.store.commit(LedgerChange(
            profile=profile.model_copy(update={
                "total_xp": remaining,
                "redeemed_xp": profile.redeemed_xp + xp_to_redeem,
                "current_level": new_level,
                "version": profile.version + 1,
                "updated_at": utcnow(),
            }),
            expected_version=profile.version,
            transactions=[transaction],
            event_kind=EVENT_REDEMPTION if order_id else None,
            event_key=order_id,
            event_result=result.model_dump(mode="json"),
        ))
        return result

    async def redemption_options(self, user_id: str, order_total: Any) -> Dict[str, Any]:
        """Quick-pick discount tiers for checkout, each flagged as available or not"""
        user_id = normalize_user_id(user_id)
        total = parse_order_total(order_total)
        profile = await self._balance(user_id)
        limits = max_redeemable_xp(total, profile.total_xp, self.policy)

        options: List[Dict[str, Any]] = []
        for tier in DISCOUNT_TIERS:
            options.append({
                "xp_cost": tier.xp_cost,
                "discount_amount": tier.discount_amount,
                "label": tier.label,
                "available": self.policy.min_redemption_xp <= tier.xp_cost <= limits["max_xp"],
            })

        return {
            "user_id": user_id,
            "balance": profile.total_xp,
            "order_total": total,
            "max_xp": limits["max_xp"],
            "max_discount": limits["max_discount"],
            "reason": limits["reason"],
            "options": options,
        }

    async def near_miss(self, user_id: str, cart_total: Any) -> Dict[str, Any]:
        """
        Near-miss nudge for a cart, assuming the purchase rolls base XP with
        the user's current streak multiplier
        """
        user_id = normalize_user_id(user_id)
        total = parse_order_total(cart_total, field="cart_total")
        profile = await self._balance(user_id)

        base = get_tier_points(ActivityKind.DOCUMENT_PURCHASE)[RewardTier.BASE]
        potential_xp = round_xp(Decimal(base) * streak_multiplier(profile.current_streak))

        nudge = get_near_miss_message(profile.total_xp, total, potential_xp)
        next_tier = get_next_discount_tier(profile.total_xp)
        tier: Optional[DiscountTier] = next_tier["next_tier"]
        return {
            **nudge,
            "user_id": user_id,
            "balance": profile.total_xp,
            "potential_xp": potential_xp,
            "next_tier": tier.model_dump(mode="json") if tier else None,
            "next_tier_xp_needed": next_tier["xp_needed"],
        }
