"""
RewardService - XP Economy Facade

Single entry point for the operations the surrounding application uses:
award, profile, history, redemption and checkout nudges. Route handlers and
webhooks call this instead of the individual engines.
"""

import logging
from typing import Any, Dict, List, Optional

from xp_engine.db.store import RewardStore
from xp_engine.exceptions import RecordNotFoundError
from xp_engine.gamification.achievement_system import AchievementEvaluator
from xp_engine.gamification.integrations import CheckoutXPResult, handle_checkout_completed
from xp_engine.gamification.ledger import XPLedger
from xp_engine.gamification.redemption import RedemptionEngine
from xp_engine.gamification.streak_system import next_streak_milestone, streak_multiplier
from xp_engine.gamification.xp_system import calculate_level_progress
from xp_engine.models.rewards import AwardResult, RedemptionResult, XPTransaction, normalize_user_id

logger = logging.getLogger(__name__)


class RewardService:
    """
    Service for the XP reward economy.

    Responsibilities:
    - Awarding XP for activities and completed checkouts
    - Profile, level progress and achievement views
    - Redemption validation and checkout helpers
    - Ledger audit and achievement retry draining
    """

    def __init__(
        self,
        store: RewardStore,
        ledger: XPLedger,
        redemption: RedemptionEngine,
        evaluator: Optional[AchievementEvaluator] = None
    ):
        self.store = store
        self.ledger = ledger
        self.redemption = redemption
        self.evaluator = evaluator or ledger.evaluator
        logger.debug("RewardService initialized")

    async def award(
        self,
        user_id: str,
        activity: str,
        metadata: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None
    ) -> AwardResult:
        return await self.ledger.award(user_id, activity, metadata, idempotency_key)

    async def checkout_completed(
        self,
        email: str,
        session_id: str,
        amount_total: int,
        line_items: Optional[List[Dict[str, Any]]] = None
    ) -> CheckoutXPResult:
        return await handle_checkout_completed(self.ledger, email, session_id, amount_total, line_items)

    async def get_profile(self, user_id: str) -> Dict[str, Any]:
        """
        Profile view with level progress and earned achievements

        Raises:
            RecordNotFoundError: The user has never been awarded XP
        """
        user_id = normalize_user_id(user_id)
        profile = await self.store.get_profile(user_id)
        if profile is None:
            raise RecordNotFoundError(
                f"No reward profile for {user_id}",
                record_type="Reward profile",
                record_id=user_id
            )

        catalog = {a.id: a for a in await self.store.list_achievements()}
        earned = []
        for ua in await self.store.list_user_achievements(user_id):
            definition = catalog.get(ua.achievement_id)
            earned.append({
                "id": ua.achievement_id,
                "slug": definition.slug if definition else ua.achievement_id,
                "name": definition.name if definition else ua.achievement_id,
                "earned_at": ua.earned_at,
            })
        earned.sort(key=lambda a: a["earned_at"])

        return {
            "user_id": user_id,
            "total_xp": profile.total_xp,
            "redeemed_xp": profile.redeemed_xp,
            "current_level": profile.current_level,
            "current_streak": profile.current_streak,
            "longest_streak": profile.longest_streak,
            "last_active_date": profile.last_active_date,
            "streak_multiplier": streak_multiplier(profile.current_streak),
            "next_streak_milestone": next_streak_milestone(profile.current_streak),
            "progress": calculate_level_progress(profile.total_xp),
            "achievements": earned,
        }

    async def get_history(self, user_id: str, limit: int = 50) -> List[XPTransaction]:
        return await self.ledger.get_xp_history(user_id, limit=limit)

    async def verify_ledger(self, user_id: str) -> Dict[str, Any]:
        return await self.ledger.verify_ledger(user_id)

    async def validate_redemption(
        self,
        user_id: str,
        xp_to_redeem: int,
        order_total: Any,
        order_id: Optional[str] = None
    ) -> RedemptionResult:
        return await self.redemption.validate_redemption(user_id, xp_to_redeem, order_total, order_id)

    async def redemption_options(self, user_id: str, order_total: Any) -> Dict[str, Any]:
        return await self.redemption.redemption_options(user_id, order_total)

    async def near_miss(self, user_id: str, cart_total: Any) -> Dict[str, Any]:
        return await self.redemption.near_miss(user_id, cart_total)

    async def achievement_progress(self, user_id: str) -> List[Dict[str, Any]]:
        user_id = normalize_user_id(user_id)
        profile = await self.store.get_profile(user_id)
        return await self.evaluator.get_progress(user_id, streak=profile.current_streak if profile else 0)

    async def retry_pending_achievements(self, limit: int = 50) -> int:
        resolved = await self.evaluator.retry_pending(limit=limit)
        if resolved:
            logger.info(f"Resolved {resolved} queued achievement evaluations")
        return resolved
