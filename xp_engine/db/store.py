"""
Reward store interface

Everything the engine persists goes through a RewardStore. The ledger and
the user_achievements table are the source of truth; the profile row is a
cached projection guarded by a version counter.

Writes are expressed as one LedgerChange that the store applies atomically:
either every part lands or none does.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from xp_engine.models.rewards import (
    AchievementDefinition,
    AchievementRetry,
    UserAchievement,
    UserRewardProfile,
    XPTransaction,
)

# processed_events.kind values
EVENT_AWARD = "award"
EVENT_REDEMPTION = "redemption"


@dataclass
class LedgerChange:
    """
    One atomic write against a single user's ledger

    Attributes:
        profile: Profile state after the change (version already bumped)
        expected_version: Version read before the change; 0 means "profile
            must not exist yet"
        transactions: Ledger entries to append
        event_kind / event_key: Idempotency record to claim, if any
        event_result: JSON-safe result stored with the idempotency record
        achievement: UserAchievement row to insert, if any
    """
    profile: UserRewardProfile
    expected_version: int
    transactions: List[XPTransaction] = field(default_factory=list)
    event_kind: Optional[str] = None
    event_key: Optional[str] = None
    event_result: Optional[Dict[str, Any]] = None
    achievement: Optional[UserAchievement] = None

    @property
    def user_id(self) -> str:
        return self.profile.user_id


class RewardStore(ABC):
    """Durable, queryable storage for the XP economy"""

    # ==========================================
    # Profiles and ledger writes
    # ==========================================

    @abstractmethod
    async def get_profile(self, user_id: str) -> Optional[UserRewardProfile]:
        """Current profile snapshot, or None if the user was never awarded"""

    @abstractmethod
    async def commit(self, change: LedgerChange) -> None:
        """
        Apply a LedgerChange atomically

        Raises:
            DuplicateEventError: event_key already claimed for this user and
                kind (original carries the stored result), or the achievement
                row already exists (original is None)
            ConflictError: profile version no longer matches expected_version
            StorageError: store unavailable; nothing was written
        """

    # ==========================================
    # Idempotency records
    # ==========================================

    @abstractmethod
    async def get_event_result(self, user_id: str, kind: str, key: str) -> Optional[Dict[str, Any]]:
        """Stored result for a processed event, or None"""

    @abstractmethod
    async def update_event_result(self, user_id: str, kind: str, key: str, result: Dict[str, Any]) -> None:
        """Replace the stored result for a processed event"""

    # ==========================================
    # Ledger reads
    # ==========================================

    @abstractmethod
    async def count_transactions(self, user_id: str, source: str, bundle_only: bool = False) -> int:
        """Number of ledger entries from `source` (bundle purchases only if asked)"""

    @abstractmethod
    async def list_transactions(self, user_id: str, limit: Optional[int] = 50) -> List[XPTransaction]:
        """Ledger entries, newest first (all of them when limit is None)"""

    @abstractmethod
    async def list_event_transactions(self, user_id: str, event_key: str) -> List[XPTransaction]:
        """Ledger entries written for one idempotency key, oldest first"""

    # ==========================================
    # Achievements
    # ==========================================

    @abstractmethod
    async def list_achievements(self) -> List[AchievementDefinition]:
        """Achievement catalog"""

    @abstractmethod
    async def list_user_achievements(self, user_id: str) -> List[UserAchievement]:
        """Achievements the user has earned"""

    @abstractmethod
    async def enqueue_achievement_retry(self, retry: AchievementRetry) -> None:
        """Record an achievement evaluation that must be re-run"""

    @abstractmethod
    async def list_achievement_retries(self, limit: int = 50) -> List[AchievementRetry]:
        """Oldest queued evaluations first"""

    @abstractmethod
    async def resolve_achievement_retry(self, retry_id: str) -> None:
        """Remove a queued evaluation after it succeeded"""

    @abstractmethod
    async def record_achievement_retry_failure(self, retry_id: str, error: str) -> None:
        """Bump attempts and keep the latest error"""

    async def close(self) -> None:
        """Release resources held by the store"""
