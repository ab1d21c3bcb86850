"""Tests for the XP reward HTTP API"""
from decimal import Decimal

import httpx
import pytest

from xp_engine import config
from xp_engine.api.middleware import limiter
from xp_engine.api.routes import get_reward_service
from xp_engine.api.server import create_api_application
from xp_engine.db.memory_store import InMemoryRewardStore
from xp_engine.gamification.redemption import RedemptionEngine, RedemptionPolicy
from xp_engine.services.container import init_container, shutdown_container
from xp_engine.services.reward_service import RewardService
from tests.helpers import make_ledger, seed_profile


@pytest.fixture
def api_store():
    return InMemoryRewardStore(achievements=[])


@pytest.fixture
async def client(monkeypatch, api_store, test_api_key):
    """API client over an in-memory store with a deterministic ledger"""
    monkeypatch.setattr(config, "API_KEYS", [test_api_key])
    monkeypatch.setattr(limiter, "enabled", False)

    init_container(api_store)
    service = RewardService(
        api_store,
        make_ledger(api_store),
        RedemptionEngine(
            api_store,
            policy=RedemptionPolicy(xp_to_dollar_rate=100, min_redemption_xp=500, max_discount_percentage=50),
            retry_base_delay=0,
        ),
    )

    app = create_api_application(use_lifespan=False)
    app.dependency_overrides[get_reward_service] = lambda: service

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    await shutdown_container()


@pytest.fixture
def headers(test_api_key):
    return {"Authorization": f"Bearer {test_api_key}"}


# ============================================================================
# Award / Profile / History
# ============================================================================

@pytest.mark.asyncio
async def test_award_then_profile(client, headers):
    response = await client.post(
        "/api/v1/xp/award",
        json={"user_id": "Client@Example.com", "activity": "page_view"},
        headers=headers
    )

    assert response.status_code == 200
    award = response.json()
    assert award["user_id"] == "client@example.com"
    assert award["total_xp_earned"] == 2
    assert award["tier"] == "base"
    assert Decimal(award["streak_multiplier"]) == Decimal("1.0")

    response = await client.get("/api/v1/xp/profile/client@example.com", headers=headers)

    assert response.status_code == 200
    profile = response.json()
    assert profile["total_xp"] == 2
    assert profile["current_streak"] == 1
    assert profile["current_level"] == 1
    assert profile["progress"]["level"] == 1
    assert profile["achievements"] == []


@pytest.mark.asyncio
async def test_award_with_idempotency_key_replays(client, headers):
    payload = {
        "user_id": "client@example.com",
        "activity": "document_purchase",
        "metadata": {"is_bundle": False},
        "idempotency_key": "cs_api_1",
    }

    first = (await client.post("/api/v1/xp/award", json=payload, headers=headers)).json()
    second = (await client.post("/api/v1/xp/award", json=payload, headers=headers)).json()

    assert first["replayed"] is False
    assert second["replayed"] is True
    assert second["new_balance"] == first["new_balance"]


@pytest.mark.asyncio
async def test_award_unknown_activity_is_bad_request(client, headers):
    response = await client.post(
        "/api/v1/xp/award",
        json={"user_id": "client@example.com", "activity": "jumping_jacks"},
        headers=headers
    )

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "ValidationError"
    assert body["retryable"] is False


@pytest.mark.asyncio
async def test_profile_unknown_user_is_not_found(client, headers):
    response = await client.get("/api/v1/xp/profile/nobody@example.com", headers=headers)

    assert response.status_code == 404
    assert response.json()["error"] == "RecordNotFoundError"


@pytest.mark.asyncio
async def test_history_newest_first(client, headers):
    for activity in ("page_view", "newsletter_signup"):
        await client.post(
            "/api/v1/xp/award",
            json={"user_id": "client@example.com", "activity": activity},
            headers=headers
        )

    response = await client.get("/api/v1/xp/history/client@example.com?limit=10", headers=headers)

    assert response.status_code == 200
    transactions = response.json()["transactions"]
    assert [t["source"] for t in transactions] == ["newsletter_signup", "page_view"]


# ============================================================================
# Redemption
# ============================================================================

@pytest.mark.asyncio
async def test_validate_redemption_rejected_is_ok_response(client, headers, api_store):
    await seed_profile(api_store, "client@example.com", total_xp=1750)

    response = await client.post(
        "/api/v1/xp/validate-redemption",
        json={"user_id": "client@example.com", "xp_to_redeem": 2000, "order_total": "100"},
        headers=headers
    )

    assert response.status_code == 200
    body = response.json()
    assert body["approved"] is False
    assert body["rejected"] is True
    assert body["reason"] == "exceeds_balance"


@pytest.mark.asyncio
async def test_validate_redemption_approved(client, headers, api_store):
    await seed_profile(api_store, "client@example.com", total_xp=1750)

    response = await client.post(
        "/api/v1/xp/validate-redemption",
        json={"user_id": "client@example.com", "xp_to_redeem": 1000, "order_total": "100.00"},
        headers=headers
    )

    assert response.status_code == 200
    body = response.json()
    assert body["approved"] is True
    assert Decimal(body["discount_amount"]) == Decimal("10.00")
    assert body["remaining_xp"] == 750


@pytest.mark.asyncio
async def test_redemption_options(client, headers, api_store):
    await seed_profile(api_store, "client@example.com", total_xp=1750)

    response = await client.get(
        "/api/v1/xp/redemption-options/client@example.com?order_total=100", headers=headers
    )

    assert response.status_code == 200
    body = response.json()
    assert body["max_xp"] == 1750
    assert [o["xp_cost"] for o in body["options"] if o["available"]] == [500, 1000, 1500]


@pytest.mark.asyncio
async def test_near_miss(client, headers, api_store):
    await seed_profile(api_store, "client@example.com", total_xp=450)

    response = await client.get("/api/v1/xp/near-miss/client@example.com?cart_total=80", headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["has_near_miss"] is True
    assert body["xp_needed"] == 50
    assert body["next_tier"]["xp_cost"] == 500


# ============================================================================
# Auth / Health / Metrics
# ============================================================================

@pytest.mark.asyncio
async def test_invalid_api_key_rejected(client):
    response = await client.get(
        "/api/v1/xp/profile/client@example.com",
        headers={"Authorization": "Bearer wrong_key"}
    )

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_unconfigured_api_keys_unavailable(client, monkeypatch):
    monkeypatch.setattr(config, "API_KEYS", [])

    response = await client.get(
        "/api/v1/xp/profile/client@example.com",
        headers={"Authorization": "Bearer anything"}
    )

    assert response.status_code == 503


@pytest.mark.asyncio
async def test_health_check(client):
    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["store"] == "connected"


@pytest.mark.asyncio
async def test_metrics_endpoint(client, headers):
    await client.post(
        "/api/v1/xp/award",
        json={"user_id": "client@example.com", "activity": "page_view"},
        headers=headers
    )

    response = await client.get("/metrics")

    assert response.status_code == 200
    assert "xp_awarded" in response.text
