"""Unit tests for the checkout webhook hook (xp_engine/gamification/integrations.py)"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from xp_engine.exceptions import StorageError
from xp_engine.gamification.integrations import handle_checkout_completed, is_bundle_purchase
from tests.helpers import make_ledger


def test_is_bundle_purchase():
    assert is_bundle_purchase([{"description": "Estate Planning BUNDLE"}]) is True
    assert is_bundle_purchase([{"description": "Simple Will"}, {"description": None}]) is False
    assert is_bundle_purchase([]) is False


@pytest.mark.asyncio
async def test_checkout_awards_purchase_xp(bare_store):
    ledger = make_ledger(bare_store)

    result = await handle_checkout_completed(
        ledger, "Client@Example.com", "cs_test_123", 4900, [{"description": "Simple Will"}]
    )

    assert result["credited"] is True
    assert result["xp_awarded"] == 550
    assert result["replayed"] is False

    history = await ledger.get_xp_history("client@example.com")
    purchase = next(t for t in history if t.source == "document_purchase")
    assert purchase.idempotency_key == "cs_test_123"
    assert purchase.metadata["amount_spent"] == "49.00"
    assert purchase.metadata["is_bundle"] is False


@pytest.mark.asyncio
async def test_checkout_detects_bundle(bare_store):
    ledger = make_ledger(bare_store)

    result = await handle_checkout_completed(
        ledger, "client@example.com", "cs_bundle", 19900, [{"description": "Business Starter Bundle"}]
    )

    assert result["xp_awarded"] == 150 + 500 + 200


@pytest.mark.asyncio
async def test_webhook_retry_does_not_double_award(bare_store):
    ledger = make_ledger(bare_store)

    first = await handle_checkout_completed(ledger, "client@example.com", "cs_retry", 4900)
    second = await handle_checkout_completed(ledger, "client@example.com", "cs_retry", 4900)

    assert second["replayed"] is True
    assert second["new_balance"] == first["new_balance"]
    assert (await bare_store.get_profile("client@example.com")).total_xp == first["new_balance"]


@pytest.mark.asyncio
async def test_storage_failure_is_reported_not_raised():
    ledger = MagicMock()
    ledger.award = AsyncMock(side_effect=StorageError())

    result = await handle_checkout_completed(ledger, "client@example.com", "cs_down", 4900)

    assert result["credited"] is False
    assert result["retryable"] is True


@pytest.mark.asyncio
async def test_unexpected_failure_is_reported_not_raised():
    ledger = MagicMock()
    ledger.award = AsyncMock(side_effect=RuntimeError("boom"))

    result = await handle_checkout_completed(ledger, "client@example.com", "cs_boom", 4900)

    assert result["credited"] is False
    assert result["error"] == "boom"


@pytest.mark.asyncio
async def test_missing_email_is_skipped():
    ledger = MagicMock()
    ledger.award = AsyncMock()

    result = await handle_checkout_completed(ledger, "", "cs_anon", 4900)

    assert result["credited"] is False
    ledger.award.assert_not_called()
