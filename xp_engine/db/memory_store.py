"""
In-process RewardStore

Single-process only: state lives in this object and disappears on restart.
Used by the test suite and for local development (REWARD_STORE=memory).
Never run more than one instance against it.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from xp_engine.db.store import LedgerChange, RewardStore
from xp_engine.exceptions import ConflictError, DuplicateEventError
from xp_engine.gamification.reward_table import ACHIEVEMENT_CATALOG
from xp_engine.models.rewards import (
    AchievementDefinition,
    AchievementRetry,
    UserAchievement,
    UserRewardProfile,
    XPTransaction,
)

logger = logging.getLogger(__name__)


class InMemoryRewardStore(RewardStore):
    """Dict-backed store with the same atomicity rules as the database"""

    def __init__(self, achievements: Optional[List[AchievementDefinition]] = None):
        self._profiles: Dict[str, UserRewardProfile] = {}
        self._transactions: Dict[str, List[XPTransaction]] = {}
        self._events: Dict[Tuple[str, str, str], Dict[str, Any]] = {}
        self._user_achievements: Dict[Tuple[str, str], UserAchievement] = {}
        self._retries: Dict[str, AchievementRetry] = {}
        self._achievements = list(achievements if achievements is not None else ACHIEVEMENT_CATALOG)
        self._lock = asyncio.Lock()
        logger.info("InMemoryRewardStore initialized - state is NOT persisted")

    async def get_profile(self, user_id: str) -> Optional[UserRewardProfile]:
        # Yield so concurrent callers interleave between read and commit
        await asyncio.sleep(0)
        profile = self._profiles.get(user_id)
        return profile.model_copy(deep=True) if profile else None

    async def commit(self, change: LedgerChange) -> None:
        async with self._lock:
            user_id = change.user_id

            if change.event_key:
                event_id = (user_id, change.event_kind, change.event_key)
                if event_id in self._events:
                    raise DuplicateEventError(
                        f"{change.event_kind} event {change.event_key} already processed",
                        idempotency_key=change.event_key,
                        original=dict(self._events[event_id]),
                        user_id=user_id,
                        operation="commit"
                    )

            if change.achievement:
                pair = (user_id, change.achievement.achievement_id)
                if pair in self._user_achievements:
                    raise DuplicateEventError(
                        f"Achievement {change.achievement.achievement_id} already earned",
                        user_id=user_id,
                        operation="commit"
                    )

            stored = self._profiles.get(user_id)
            stored_version = stored.version if stored else 0
            if stored_version != change.expected_version:
                raise ConflictError(
                    f"Profile for {user_id} is at version {stored_version}, "
                    f"expected {change.expected_version}",
                    expected_version=change.expected_version,
                    user_id=user_id,
                    operation="commit"
                )

            self._profiles[user_id] = change.profile.model_copy(deep=True)
            self._transactions.setdefault(user_id, []).extend(
                t.model_copy(deep=True) for t in change.transactions
            )
            if change.event_key:
                self._events[(user_id, change.event_kind, change.event_key)] = dict(change.event_result or {})
            if change.achievement:
                pair = (user_id, change.achievement.achievement_id)
                self._user_achievements[pair] = change.achievement.model_copy()

    async def get_event_result(self, user_id: str, kind: str, key: str) -> Optional[Dict[str, Any]]:
        result = self._events.get((user_id, kind, key))
        return dict(result) if result is not None else None

    async def update_event_result(self, user_id: str, kind: str, key: str, result: Dict[str, Any]) -> None:
        async with self._lock:
            if (user_id, kind, key) in self._events:
                self._events[(user_id, kind, key)] = dict(result)

    async def count_transactions(self, user_id: str, source: str, bundle_only: bool = False) -> int:
        return sum(
            1 for t in self._transactions.get(user_id, [])
            if t.source == source and (not bundle_only or t.metadata.get("is_bundle") is True)
        )

    async def list_transactions(self, user_id: str, limit: Optional[int] = 50) -> List[XPTransaction]:
        newest_first = [t.model_copy(deep=True) for t in reversed(self._transactions.get(user_id, []))]
        return newest_first if limit is None else newest_first[:limit]

    async def list_event_transactions(self, user_id: str, event_key: str) -> List[XPTransaction]:
        return [
            t.model_copy(deep=True) for t in self._transactions.get(user_id, [])
            if t.idempotency_key == event_key
        ]

    async def list_achievements(self) -> List[AchievementDefinition]:
        return list(self._achievements)

    async def list_user_achievements(self, user_id: str) -> List[UserAchievement]:
        return [ua for (uid, _), ua in self._user_achievements.items() if uid == user_id]

    async def enqueue_achievement_retry(self, retry: AchievementRetry) -> None:
        self._retries[retry.id] = retry.model_copy(deep=True)

    async def list_achievement_retries(self, limit: int = 50) -> List[AchievementRetry]:
        pending = sorted(self._retries.values(), key=lambda r: r.created_at)
        return [r.model_copy(deep=True) for r in pending[:limit]]

    async def resolve_achievement_retry(self, retry_id: str) -> None:
        self._retries.pop(retry_id, None)

    async def record_achievement_retry_failure(self, retry_id: str, error: str) -> None:
        retry = self._retries.get(retry_id)
        if retry:
            retry.attempts += 1
            retry.error = error
