"""
Achievement System

Grants one-time XP bonuses the first time a user crosses an achievement
threshold:
- visit_count: page views recorded in the ledger
- streak_days: current daily streak
- purchase_count: document purchases
- consultation_count: consultations booked
- newsletter_subscribed / intake_completed: the triggering activity itself

Each grant inserts the user_achievements row, appends an 'achievement'
ledger entry and credits the profile in one atomic write. The unique
(user, achievement) row is what makes a grant happen at most once, even when
two evaluations race.
"""

from typing import Any, Dict, List, Optional
import logging

from xp_engine.config import LEDGER_MAX_RETRIES
from xp_engine.db.store import LedgerChange, RewardStore
from xp_engine.exceptions import AchievementGrantError, DuplicateEventError
from xp_engine.gamification.xp_system import level_for_xp
from xp_engine.models.rewards import (
    SOURCE_ACHIEVEMENT,
    AchievementDefinition,
    ActivityKind,
    RequirementType,
    UserAchievement,
    UserRewardProfile,
    XPTransaction,
    utcnow,
)
from xp_engine.observability.metrics import xp_achievements_unlocked_total, xp_awarded_points_total
from xp_engine.resilience.retry import BASE_DELAY, retry_with_backoff

logger = logging.getLogger(__name__)

# Ledger source counted for each count-based requirement
COUNTED_SOURCES = {
    RequirementType.VISIT_COUNT: ActivityKind.PAGE_VIEW,
    RequirementType.PURCHASE_COUNT: ActivityKind.DOCUMENT_PURCHASE,
    RequirementType.CONSULTATION_COUNT: ActivityKind.CONSULTATION_BOOKED,
}

# Activity that satisfies each event-based requirement
TRIGGER_ACTIVITIES = {
    RequirementType.NEWSLETTER_SUBSCRIBED: ActivityKind.NEWSLETTER_SIGNUP,
    RequirementType.INTAKE_COMPLETED: ActivityKind.INTAKE_COMPLETE,
}


class AchievementEvaluator:
    """Checks achievement thresholds and grants the ones newly crossed"""

    def __init__(
        self,
        store: RewardStore,
        max_retries: int = LEDGER_MAX_RETRIES,
        retry_base_delay: float = BASE_DELAY
    ):
        self.store = store
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay

    async def evaluate(self, user_id: str, context: Dict[str, Any]) -> List[str]:
        """
        Grant every achievement the user has newly earned

        Args:
            user_id: Normalized user identifier
            context: {'activity': str, 'streak': int} describing the award that
                triggered this check

        Returns:
            Slugs of achievements granted by this call
        """
        granted = await self.grant_achievements(user_id, context)
        return [achievement.slug for achievement in granted]

    async def grant_achievements(
        self,
        user_id: str,
        context: Dict[str, Any],
        event_key: Optional[str] = None
    ) -> List[AchievementDefinition]:
        """
        Same as evaluate() but returns the full definitions

        Args:
            event_key: Idempotency key of the award being evaluated; each
                grant's ledger entry is tagged with it

        Raises:
            AchievementGrantError: A lookup or grant failed after other
                achievements were already granted (carried in `granted`)
        """
        catalog = await self.store.list_achievements()
        earned_ids = {ua.achievement_id for ua in await self.store.list_user_achievements(user_id)}

        counts: Dict[RequirementType, int] = {}
        granted: List[AchievementDefinition] = []

        try:
            for achievement in catalog:
                if achievement.id in earned_ids:
                    continue

                current = await self._current_value(user_id, achievement, context, counts)
                if current < achievement.requirement_value:
                    continue

                if await self._grant(user_id, achievement, event_key):
                    granted.append(achievement)
        except Exception as e:
            if not granted:
                raise
            raise AchievementGrantError(
                f"Achievement evaluation for {user_id} stopped after {len(granted)} grants: {e}",
                granted=granted,
                user_id=user_id,
                operation="grant_achievements",
                cause=e
            ) from e

        return granted

    async def get_progress(self, user_id: str, streak: int = 0) -> List[Dict[str, Any]]:
        """
        Progress toward every achievement

        Returns:
            [{'slug', 'name', 'earned', 'current', 'required', 'percentage'}]
        """
        catalog = await self.store.list_achievements()
        earned_ids = {ua.achievement_id for ua in await self.store.list_user_achievements(user_id)}
        counts: Dict[RequirementType, int] = {}
        context = {"activity": None, "streak": streak}

        progress = []
        for achievement in catalog:
            earned = achievement.id in earned_ids
            if achievement.requirement_type in TRIGGER_ACTIVITIES:
                source = TRIGGER_ACTIVITIES[achievement.requirement_type]
                current = min(1, await self.store.count_transactions(user_id, source.value))
            else:
                current = await self._current_value(user_id, achievement, context, counts)
            if earned:
                current = max(current, achievement.requirement_value)
            required = achievement.requirement_value
            progress.append({
                "slug": achievement.slug,
                "name": achievement.name,
                "earned": earned,
                "current": current,
                "required": required,
                "percentage": min(100, current * 100 // required),
            })
        return progress

    async def _current_value(
        self,
        user_id: str,
        achievement: AchievementDefinition,
        context: Dict[str, Any],
        counts: Dict[RequirementType, int]
    ) -> int:
        requirement = achievement.requirement_type

        if requirement == RequirementType.STREAK_DAYS:
            return int(context.get("streak") or 0)

        if requirement in TRIGGER_ACTIVITIES:
            return 1 if context.get("activity") == TRIGGER_ACTIVITIES[requirement].value else 0

        if requirement not in counts:
            source = COUNTED_SOURCES[requirement]
            counts[requirement] = await self.store.count_transactions(user_id, source.value)
        return counts[requirement]

    async def _grant(
        self,
        user_id: str,
        achievement: AchievementDefinition,
        event_key: Optional[str] = None
    ) -> bool:
        """Grant one achievement; False if another evaluation got there first"""
        try:
            await retry_with_backoff(
                self._attempt_grant,
                user_id,
                achievement,
                event_key,
                max_retries=self.max_retries,
                base_delay=self.retry_base_delay
            )
        except DuplicateEventError:
            logger.info(f"Achievement {achievement.slug} already granted to {user_id}")
            return False

        xp_achievements_unlocked_total.labels(slug=achievement.slug).inc()
        xp_awarded_points_total.labels(source=SOURCE_ACHIEVEMENT).inc(achievement.xp_reward)
        logger.info(
            f"User {user_id} unlocked achievement: {achievement.slug} "
            f"({achievement.name}) +{achievement.xp_reward} XP"
        )
        return True

    async def _attempt_grant(
        self,
        user_id: str,
        achievement: AchievementDefinition,
        event_key: Optional[str] = None
    ) -> None:
        profile: Optional[UserRewardProfile] = await self.store.get_profile(user_id)
        if profile is None:
            profile = UserRewardProfile(user_id=user_id)

        new_total = profile.total_xp + achievement.xp_reward
        updated = profile.model_copy(update={
            "total_xp": new_total,
            "current_level": level_for_xp(new_total),
            "version": profile.version + 1,
            "updated_at": utcnow(),
        })

        await self.store.commit(LedgerChange(
            profile=updated,
            expected_version=profile.version,
            transactions=[
                XPTransaction(
                    user_id=user_id,
                    amount=achievement.xp_reward,
                    source=SOURCE_ACHIEVEMENT,
                    description=f"Achievement unlocked: {achievement.name}",
                    metadata={"achievement": achievement.slug, **({"event": event_key} if event_key else {})},
                    idempotency_key=event_key,
                )
            ],
            achievement=UserAchievement(user_id=user_id, achievement_id=achievement.id),
        ))

    async def retry_pending(self, limit: int = 50) -> int:
        """
        Re-run achievement evaluations that failed after an award

        Returns:
            Number of queued evaluations resolved
        """
        resolved = 0
        for retry in await self.store.list_achievement_retries(limit=limit):
            try:
                granted = await self.evaluate(retry.user_id, retry.context)
            except Exception as e:
                logger.error(
                    f"Achievement retry {retry.id} for {retry.user_id} failed again: {e}",
                    exc_info=True
                )
                await self.store.record_achievement_retry_failure(retry.id, str(e))
                continue

            await self.store.resolve_achievement_retry(retry.id)
            resolved += 1
            if granted:
                logger.info(f"Achievement retry {retry.id} granted {granted} to {retry.user_id}")

        return resolved
