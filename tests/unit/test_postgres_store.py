"""Unit tests for the PostgreSQL reward store (xp_engine/db/postgres_store.py)"""
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import psycopg
import pytest

from xp_engine.db.postgres_store import PostgresRewardStore
from xp_engine.db.store import EVENT_AWARD, LedgerChange
from xp_engine.exceptions import ConflictError, DuplicateEventError, StorageError
from xp_engine.models.rewards import UserRewardProfile, XPTransaction


def make_store():
    """Store over a mocked pool: db.connection() -> conn, conn.cursor() -> cur"""
    mock_cursor = AsyncMock()

    mock_conn = MagicMock()
    mock_conn.cursor.return_value.__aenter__.return_value = mock_cursor
    mock_conn.transaction.return_value.__aenter__.return_value = None
    mock_conn.commit = AsyncMock()

    mock_db = MagicMock()
    mock_db.connection.return_value.__aenter__.return_value = mock_conn
    mock_db.close_pool = AsyncMock()

    return PostgresRewardStore(mock_db), mock_conn, mock_cursor


def make_change(expected_version=0, **kwargs) -> LedgerChange:
    profile = UserRewardProfile(
        user_id="client@example.com",
        total_xp=2,
        current_streak=1,
        longest_streak=1,
        last_active_date=date(2026, 3, 10),
        version=expected_version + 1,
    )
    return LedgerChange(
        profile=profile,
        expected_version=expected_version,
        transactions=[XPTransaction(user_id="client@example.com", amount=2, source="page_view")],
        **kwargs
    )


@pytest.mark.asyncio
async def test_get_profile_found():
    store, _, mock_cursor = make_store()
    mock_cursor.fetchone.return_value = {"user_id": "client@example.com", "total_xp": 120, "version": 4}

    profile = await store.get_profile("client@example.com")

    assert profile.total_xp == 120
    assert profile.version == 4
    sql, params = mock_cursor.execute.call_args[0]
    assert "FROM user_reward_profiles" in sql
    assert params == ("client@example.com",)


@pytest.mark.asyncio
async def test_get_profile_missing():
    store, _, mock_cursor = make_store()
    mock_cursor.fetchone.return_value = None

    assert await store.get_profile("nobody@example.com") is None


@pytest.mark.asyncio
async def test_get_profile_connection_failure():
    store, _, mock_cursor = make_store()
    mock_cursor.execute.side_effect = psycopg.OperationalError("connection refused")

    with pytest.raises(StorageError):
        await store.get_profile("client@example.com")


@pytest.mark.asyncio
async def test_commit_new_profile_inserts_ledger_rows():
    store, mock_conn, mock_cursor = make_store()
    mock_cursor.fetchone.return_value = {"user_id": "client@example.com"}

    await store.commit(make_change())

    mock_conn.transaction.assert_called_once()
    insert_sql = mock_cursor.execute.call_args_list[0][0][0]
    assert "INSERT INTO user_reward_profiles" in insert_sql
    mock_cursor.executemany.assert_called_once()
    rows = mock_cursor.executemany.call_args[0][1]
    assert len(rows) == 1
    assert rows[0][2] == 2


@pytest.mark.asyncio
async def test_commit_version_mismatch_raises_conflict():
    store, _, mock_cursor = make_store()
    mock_cursor.fetchone.return_value = None

    with pytest.raises(ConflictError) as exc_info:
        await store.commit(make_change(expected_version=3))

    assert exc_info.value.expected_version == 3
    update_sql = mock_cursor.execute.call_args[0][0]
    assert "WHERE user_id = %s AND version = %s" in update_sql
    mock_cursor.executemany.assert_not_called()


@pytest.mark.asyncio
async def test_commit_duplicate_event_returns_original():
    store, _, mock_cursor = make_store()
    mock_cursor.fetchone.side_effect = [None, {"result": {"new_balance": 52}}]

    with pytest.raises(DuplicateEventError) as exc_info:
        await store.commit(make_change(
            expected_version=1,
            event_kind=EVENT_AWARD,
            event_key="cs_1",
            event_result={"new_balance": 52},
        ))

    assert exc_info.value.idempotency_key == "cs_1"
    assert exc_info.value.original == {"new_balance": 52}
    mock_cursor.executemany.assert_not_called()


@pytest.mark.asyncio
async def test_count_transactions_bundle_filter():
    store, _, mock_cursor = make_store()
    mock_cursor.fetchone.return_value = {"total": 2}

    count = await store.count_transactions("client@example.com", "document_purchase", bundle_only=True)

    assert count == 2
    assert "is_bundle" in mock_cursor.execute.call_args[0][0]


@pytest.mark.asyncio
async def test_list_transactions_applies_limit():
    store, _, mock_cursor = make_store()
    mock_cursor.fetchall.return_value = []

    await store.list_transactions("client@example.com", limit=10)

    sql, params = mock_cursor.execute.call_args[0]
    assert "LIMIT %s" in sql
    assert params == ("client@example.com", 10)


@pytest.mark.asyncio
async def test_close_releases_pool():
    store, _, _ = make_store()

    await store.close()

    store.db.close_pool.assert_called_once()


@pytest.mark.asyncio
async def test_list_event_transactions_filters_by_key():
    store, _, mock_cursor = make_store()
    mock_cursor.fetchall.return_value = [{
        "id": "7f1c1c52-54a4-4b7e-9b8e-0a0f3c5f2d11",
        "user_id": "client@example.com",
        "amount": 25,
        "source": "achievement",
        "multiplier": 1,
        "description": "Achievement unlocked: In the Loop",
        "metadata": {"achievement": "newsletter_subscriber", "event": "signup-1"},
        "idempotency_key": "signup-1",
        "created_at": datetime(2026, 3, 10, tzinfo=timezone.utc),
    }]

    entries = await store.list_event_transactions("client@example.com", "signup-1")

    assert [e.metadata["achievement"] for e in entries] == ["newsletter_subscriber"]
    sql, params = mock_cursor.execute.call_args[0]
    assert "idempotency_key = %s" in sql
    assert params == ("client@example.com", "signup-1")
