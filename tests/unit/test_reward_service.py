"""Unit tests for RewardService (xp_engine/services/reward_service.py)"""
from decimal import Decimal

import pytest

from xp_engine.exceptions import RecordNotFoundError
from xp_engine.gamification.redemption import RedemptionEngine
from xp_engine.services.container import ServiceContainer
from xp_engine.services.reward_service import RewardService
from tests.helpers import make_ledger


def make_service(store) -> RewardService:
    return RewardService(store, make_ledger(store), RedemptionEngine(store, retry_base_delay=0))


@pytest.mark.asyncio
async def test_get_profile_unknown_user(store):
    service = make_service(store)

    with pytest.raises(RecordNotFoundError):
        await service.get_profile("nobody@example.com")


@pytest.mark.asyncio
async def test_get_profile_includes_achievements_and_progress(store, test_user_id):
    service = make_service(store)
    await service.award(test_user_id, "page_view")

    profile = await service.get_profile(test_user_id)

    assert profile["total_xp"] == 12
    assert profile["streak_multiplier"] == Decimal("1.0")
    assert profile["next_streak_milestone"]["days"] == 3
    assert profile["progress"].level == 1
    assert [a["slug"] for a in profile["achievements"]] == ["first_visit"]


@pytest.mark.asyncio
async def test_checkout_completed_goes_through_ledger(bare_store, test_user_id):
    service = make_service(bare_store)

    result = await service.checkout_completed(test_user_id, "cs_svc", 4900)

    assert result["credited"] is True
    report = await service.verify_ledger(test_user_id)
    assert report["consistent"] is True


@pytest.mark.asyncio
async def test_achievement_progress_for_new_user(store, test_user_id):
    service = make_service(store)

    progress = await service.achievement_progress(test_user_id)

    assert all(p["earned"] is False for p in progress)


def test_container_builds_services_lazily(store):
    container = ServiceContainer(store=store)

    service = container.reward_service

    assert service is container.reward_service
    assert service.ledger is container.ledger
    assert service.redemption is container.redemption
