"""Shared test helpers for xp-engine tests"""
from datetime import date
from itertools import cycle

from xp_engine.db.store import LedgerChange
from xp_engine.gamification.ledger import XPLedger
from xp_engine.gamification.reward_roller import RewardRoller
from xp_engine.gamification.xp_system import level_for_xp
from xp_engine.models.rewards import UserRewardProfile, XPTransaction

TODAY = date(2026, 3, 10)


class FixedDraws:
    """RNG stub: random() cycles through the given values in [0, 1)"""

    def __init__(self, *values: float):
        self._values = cycle(values or (0.5,))

    def random(self) -> float:
        return next(self._values)


async def seed_profile(store, user_id: str, total_xp: int = 0, **fields) -> UserRewardProfile:
    """Commit a profile (and a ledger entry matching its balance) directly"""
    fields.setdefault("current_level", level_for_xp(total_xp))
    profile = UserRewardProfile(user_id=user_id, total_xp=total_xp, version=1, **fields)
    transactions = []
    if total_xp:
        transactions.append(XPTransaction(
            user_id=user_id, amount=total_xp, source="return_visit", description="seed"
        ))
    await store.commit(LedgerChange(profile=profile, expected_version=0, transactions=transactions))
    return profile


def make_ledger(store, draws=(0.5,), today=TODAY, max_retries=5, evaluator=None) -> XPLedger:
    """Ledger with a fixed roller, a fixed date and no retry delay"""
    return XPLedger(
        store,
        roller=RewardRoller(rng=FixedDraws(*draws)),
        evaluator=evaluator,
        today=lambda: today,
        max_retries=max_retries,
        retry_base_delay=0
    )
