"""
XP Ledger

The award operation: roll, apply streak (and bundle) multipliers, append
ledger entries and update the profile snapshot in one atomic commit per user.

Concurrency:
- Each commit is checked against the profile version read at the start of the
  attempt. A mismatch (ConflictError) re-runs the whole attempt, including the
  roll, up to max_retries times.
- An idempotency key is claimed in the same commit as the credit. A second
  call with the same key replays the stored AwardResult instead of crediting
  again.

Achievements are evaluated after the award is committed. A failure there is
logged and queued for retry; it never takes back the award.
"""

from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

from xp_engine.config import LEDGER_MAX_RETRIES
from xp_engine.db.store import EVENT_AWARD, LedgerChange, RewardStore
from xp_engine.exceptions import (
    AchievementGrantError,
    DuplicateEventError,
    StreakClockSkewError,
    ValidationError,
)
from xp_engine.gamification.achievement_system import AchievementEvaluator
from xp_engine.gamification.reward_roller import RewardRoller
from xp_engine.gamification.reward_table import (
    BUNDLE_MULTIPLIER,
    FIRST_BUNDLE_BONUS_XP,
    FIRST_PURCHASE_BONUS_XP,
)
from xp_engine.gamification.streak_system import streak_multiplier, update_streak
from xp_engine.gamification.xp_system import level_for_xp
from xp_engine.models.rewards import (
    SOURCE_ACHIEVEMENT,
    AchievementRetry,
    ActivityKind,
    AwardResult,
    RewardTier,
    UserRewardProfile,
    XPTransaction,
    normalize_user_id,
    utcnow,
)
from xp_engine.observability.metrics import (
    xp_achievement_failures_total,
    xp_award_replays_total,
    xp_awarded_points_total,
    xp_awards_total,
)
from xp_engine.resilience.retry import BASE_DELAY, retry_with_backoff

logger = logging.getLogger(__name__)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def round_xp(amount: Decimal) -> int:
    """Round half up to whole XP"""
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def event_record(result: AwardResult, level_before: int, final: bool) -> Dict[str, Any]:
    """
    Idempotency record for an award

    A non-final record was stored with the credit, before achievements were
    applied; whoever replays it finishes the job.
    """
    return {**result.model_dump(mode="json"), "level_before": level_before, "final": final}


def parse_activity(activity: Any) -> ActivityKind:
    try:
        return ActivityKind(activity)
    except ValueError:
        raise ValidationError(
            f"Unknown activity kind: {activity}",
            field="activity",
            value=activity
        )


class XPLedger:
    """Awards XP against a RewardStore"""

    def __init__(
        self,
        store: RewardStore,
        roller: Optional[RewardRoller] = None,
        evaluator: Optional[AchievementEvaluator] = None,
        today: Optional[Callable[[], date]] = None,
        max_retries: int = LEDGER_MAX_RETRIES,
        retry_base_delay: float = BASE_DELAY
    ):
        self.store = store
        self.roller = roller or RewardRoller()
        self.evaluator = evaluator or AchievementEvaluator(
            store, max_retries=max_retries, retry_base_delay=retry_base_delay
        )
        self.today = today or utc_today
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay

    async def award(
        self,
        user_id: str,
        activity: Any,
        metadata: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None
    ) -> AwardResult:
        """
        Award XP for one activity

        Args:
            user_id: User identifier (normalized before use)
            activity: ActivityKind or its string value
            metadata: Event data copied onto the ledger entry. Only 'is_bundle'
                (purchases) changes the award; anything else, such as
                'amount_spent', is recorded as-is
            idempotency_key: Stable id of the triggering event (e.g. a payment
                session id). A repeated key replays the first result.

        Returns:
            AwardResult whose new_balance includes any achievement bonuses

        Raises:
            ValidationError: Unknown activity or empty user id
            StorageError / ConflictError: Retries exhausted; nothing was credited
        """
        user_id = normalize_user_id(user_id)
        activity = parse_activity(activity)
        metadata = dict(metadata or {})

        if idempotency_key:
            stored = await self.store.get_event_result(user_id, EVENT_AWARD, idempotency_key)
            if stored is not None:
                return await self._replay(stored, idempotency_key)

        try:
            result, level_before = await retry_with_backoff(
                self._attempt_award,
                user_id,
                activity,
                metadata,
                idempotency_key,
                max_retries=self.max_retries,
                base_delay=self.retry_base_delay
            )
        except DuplicateEventError as e:
            # Lost the race to a concurrent call carrying the same key
            if e.original is None:
                raise
            return await self._replay(e.original, idempotency_key)

        xp_awards_total.labels(activity=activity.value, tier=result.tier.value).inc()
        xp_awarded_points_total.labels(source=activity.value).inc(result.total_xp_earned)

        result = await self._finish(result, level_before)

        logger.info(
            f"Awarded {result.total_xp_earned} XP ({result.tier.value}) to {user_id} "
            f"for {activity.value} - balance {result.new_balance}, level {result.new_level}"
        )
        return result

    async def _replay(self, stored: Dict[str, Any], idempotency_key: str) -> AwardResult:
        xp_award_replays_total.inc()
        result = AwardResult.model_validate(stored)
        if not stored.get("final"):
            # First call has not recorded its achievements yet (still running or crashed)
            result = await self._finish(result, stored.get("level_before", result.new_level))
        logger.info(f"Replaying award {idempotency_key} for {result.user_id}")
        return result.model_copy(update={"replayed": True})

    async def _finish(self, result: AwardResult, level_before: int) -> AwardResult:
        """Apply achievements and mark the idempotency record final"""
        result = await self._apply_achievements(result, level_before)
        if result.idempotency_key:
            await self.store.update_event_result(
                result.user_id,
                EVENT_AWARD,
                result.idempotency_key,
                event_record(result, level_before, final=True)
            )
        return result

    async def _attempt_award(
        self,
        user_id: str,
        activity: ActivityKind,
        metadata: Dict[str, Any],
        idempotency_key: Optional[str]
    ):
        """One read-compute-commit pass; raises ConflictError if the profile moved"""
        profile = await self.store.get_profile(user_id)
        if profile is None:
            profile = UserRewardProfile(user_id=user_id)

        today = self.today()
        last_active = profile.last_active_date
        try:
            new_streak = update_streak(last_active, today, profile.current_streak)
        except StreakClockSkewError:
            logger.warning(
                f"Clock skew for {user_id}: activity on {today} before {last_active}, "
                f"keeping streak at {profile.current_streak}"
            )
            new_streak = profile.current_streak
            today = last_active

        multiplier = streak_multiplier(new_streak)
        base_xp, tier = self.roller.roll(activity)

        rolled = base_xp
        bundle_tier: Optional[RewardTier] = None
        is_purchase = activity == ActivityKind.DOCUMENT_PURCHASE
        is_bundle = is_purchase and metadata.get("is_bundle") is True
        if is_bundle:
            extra, bundle_tier = self.roller.roll_bundle_bonus(base_xp)
            rolled += extra
            multiplier = multiplier * BUNDLE_MULTIPLIER

        earned = round_xp(Decimal(rolled) * multiplier)

        event_meta = {"event": idempotency_key} if idempotency_key else {}
        main = XPTransaction(
            user_id=user_id,
            amount=earned,
            source=activity.value,
            multiplier=multiplier,
            description=f"{tier.value.upper()} reward for {activity.value.replace('_', ' ')}",
            metadata={**metadata, "tier": tier.value, **({"is_bundle": is_bundle} if is_purchase else {})},
            idempotency_key=idempotency_key,
        )
        transactions = [main]
        bonuses: List[str] = []

        if is_purchase:
            if await self.store.count_transactions(user_id, ActivityKind.DOCUMENT_PURCHASE.value) == 0:
                bonuses.append("first_purchase")
                transactions.append(XPTransaction(
                    user_id=user_id,
                    amount=FIRST_PURCHASE_BONUS_XP,
                    source=SOURCE_ACHIEVEMENT,
                    description="First purchase bonus",
                    metadata={"bonus": "first_purchase", **event_meta},
                    idempotency_key=idempotency_key,
                ))
            if is_bundle and await self.store.count_transactions(
                user_id, ActivityKind.DOCUMENT_PURCHASE.value, bundle_only=True
            ) == 0:
                bonuses.append("first_bundle")
                transactions.append(XPTransaction(
                    user_id=user_id,
                    amount=FIRST_BUNDLE_BONUS_XP,
                    source=SOURCE_ACHIEVEMENT,
                    description="First bundle bonus",
                    metadata={"bonus": "first_bundle", **event_meta},
                    idempotency_key=idempotency_key,
                ))

        total_earned = sum(t.amount for t in transactions)
        new_total = profile.total_xp + total_earned
        new_level = level_for_xp(new_total)

        updated = profile.model_copy(update={
            "total_xp": new_total,
            "current_level": new_level,
            "current_streak": new_streak,
            "longest_streak": max(profile.longest_streak, new_streak),
            "last_active_date": today,
            "version": profile.version + 1,
            "updated_at": utcnow(),
        })

        result = AwardResult(
            user_id=user_id,
            activity=activity,
            base_xp=base_xp,
            bonus_xp=total_earned - base_xp,
            total_xp_earned=total_earned,
            tier=tier,
            streak_multiplier=streak_multiplier(new_streak),
            bundle_tier=bundle_tier,
            bonuses=bonuses,
            new_balance=new_total,
            current_streak=new_streak,
            leveled_up=new_level > profile.current_level,
            new_level=new_level,
            transaction_id=main.id,
            idempotency_key=idempotency_key,
        )

        await self.store.commit(LedgerChange(
            profile=updated,
            expected_version=profile.version,
            transactions=transactions,
            event_kind=EVENT_AWARD if idempotency_key else None,
            event_key=idempotency_key,
            event_result=event_record(result, profile.current_level, final=False),
        ))
        return result, profile.current_level

    async def _apply_achievements(self, result: AwardResult, level_before: int) -> AwardResult:
        """
        Evaluate achievements and fold them into the result

        Evaluation failures are queued for retry, never raised. With an
        idempotency key the folded achievements are read back from the ledger
        entries tagged with that key, so every caller finishing the same event
        reports the same grants.
        """
        context = {"activity": result.activity.value, "streak": result.current_streak}
        try:
            granted = await self.evaluator.grant_achievements(
                result.user_id, context, event_key=result.idempotency_key
            )
        except Exception as e:
            granted = e.granted if isinstance(e, AchievementGrantError) else []
            xp_achievement_failures_total.inc()
            logger.error(
                f"Achievement check failed for {result.user_id} after award "
                f"{result.transaction_id}: {e}",
                exc_info=True
            )
            await self._queue_achievement_retry(result.user_id, context, e)

        if result.idempotency_key:
            unlocked = await self._event_achievements(result.user_id, result.idempotency_key)
        else:
            unlocked = [(a.slug, a.xp_reward) for a in granted]

        if not unlocked:
            return result

        new_balance = result.new_balance + sum(xp for _, xp in unlocked)
        new_level = level_for_xp(new_balance)
        return result.model_copy(update={
            "new_balance": new_balance,
            "new_level": new_level,
            "leveled_up": new_level > level_before,
            "achievements_earned": [slug for slug, _ in unlocked],
        })

    async def _event_achievements(self, user_id: str, idempotency_key: str) -> List[Tuple[str, int]]:
        """(slug, xp) of achievements granted while finishing one event"""
        return [
            (t.metadata["achievement"], t.amount)
            for t in await self.store.list_event_transactions(user_id, idempotency_key)
            if t.source == SOURCE_ACHIEVEMENT and "achievement" in t.metadata
        ]

    async def _queue_achievement_retry(self, user_id: str, context: Dict[str, Any], error: Exception) -> None:
        try:
            await self.store.enqueue_achievement_retry(
                AchievementRetry(user_id=user_id, context=context, error=str(error))
            )
        except Exception as e:
            logger.error(
                f"Could not queue achievement retry for {user_id} (context={context}): {e}",
                exc_info=True
            )

    # ==========================================
    # Ledger reads
    # ==========================================

    async def get_xp_history(self, user_id: str, limit: int = 50) -> List[XPTransaction]:
        """Newest ledger entries first"""
        return await self.store.list_transactions(normalize_user_id(user_id), limit=limit)

    async def verify_ledger(self, user_id: str) -> Dict[str, Any]:
        """
        Rebuild the balance from the ledger and compare it with the profile

        Returns:
            {'user_id', 'ledger_balance', 'profile_balance', 'redeemed_xp',
             'lifetime_xp', 'transaction_count', 'consistent'}
        """
        user_id = normalize_user_id(user_id)
        profile = await self.store.get_profile(user_id) or UserRewardProfile(user_id=user_id)
        transactions = await self.store.list_transactions(user_id, limit=None)

        ledger_balance = sum(t.amount for t in transactions)
        consistent = (
            ledger_balance == profile.total_xp
            and profile.current_level == level_for_xp(profile.total_xp)
        )
        if not consistent:
            logger.error(
                f"Ledger mismatch for {user_id}: ledger={ledger_balance}, "
                f"profile={profile.total_xp}, level={profile.current_level}"
            )

        return {
            "user_id": user_id,
            "ledger_balance": ledger_balance,
            "profile_balance": profile.total_xp,
            "redeemed_xp": profile.redeemed_xp,
            "lifetime_xp": profile.total_xp + profile.redeemed_xp,
            "transaction_count": len(transactions),
            "consistent": consistent,
        }
