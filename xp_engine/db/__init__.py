"""Persistence for the reward economy"""
from xp_engine.db.store import RewardStore, LedgerChange, EVENT_AWARD, EVENT_REDEMPTION
from xp_engine.db.memory_store import InMemoryRewardStore

__all__ = ["RewardStore", "LedgerChange", "EVENT_AWARD", "EVENT_REDEMPTION", "InMemoryRewardStore"]
