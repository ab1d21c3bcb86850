"""Global test fixtures for xp-engine tests"""
import pytest

from xp_engine.db.memory_store import InMemoryRewardStore
from xp_engine.gamification.reward_roller import RewardRoller
from tests.helpers import FixedDraws


# ============================================================================
# Store Fixtures
# ============================================================================

@pytest.fixture
def store():
    """In-memory store seeded with the full achievement catalog"""
    return InMemoryRewardStore()


@pytest.fixture
def bare_store():
    """In-memory store with no achievements, so balances are exactly the award"""
    return InMemoryRewardStore(achievements=[])


# ============================================================================
# Engine Fixtures
# ============================================================================

@pytest.fixture
def base_roller():
    """Roller that always lands on BASE (draw 50 of 100)"""
    return RewardRoller(rng=FixedDraws(0.5))


@pytest.fixture
def test_user_id():
    """Standard test user ID"""
    return "client@example.com"


@pytest.fixture
def test_api_key():
    """Standard test API key"""
    return "test_api_key_12345"
