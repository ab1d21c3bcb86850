"""PostgreSQL-backed RewardStore"""
import logging
from typing import Any, Dict, List, Optional

import psycopg
import psycopg_pool
from psycopg.types.json import Jsonb

from xp_engine.db.connection import Database
from xp_engine.db.store import LedgerChange, RewardStore
from xp_engine.exceptions import (
    ConflictError,
    DuplicateEventError,
    RewardEngineError,
    wrap_external_exception,
)
from xp_engine.models.rewards import (
    AchievementDefinition,
    AchievementRetry,
    UserAchievement,
    UserRewardProfile,
    XPTransaction,
)

logger = logging.getLogger(__name__)

PROFILE_COLUMNS = (
    "user_id, total_xp, redeemed_xp, current_level, current_streak, longest_streak, "
    "last_active_date, version, created_at, updated_at"
)
TRANSACTION_COLUMNS = (
    "id, user_id, amount, source, multiplier, description, metadata, idempotency_key, created_at"
)
DB_ERRORS = (psycopg.Error, psycopg_pool.PoolTimeout)


def _transaction_from_row(row: dict) -> XPTransaction:
    data = dict(row)
    data["id"] = str(data["id"])
    return XPTransaction(**data)


class PostgresRewardStore(RewardStore):
    """
    Reward store on PostgreSQL

    Concurrency control:
    - The profile row carries a version; commit() updates it with
      WHERE version = expected and reports ConflictError when no row matched
    - processed_events (user_id, kind, event_key) is the idempotency claim;
      the INSERT happens first so a concurrent duplicate blocks on the
      primary key and then sees the committed result
    - user_achievements has UNIQUE (user_id, achievement_id); a second grant
      inserts nothing and the whole change rolls back
    """

    def __init__(self, database: Database):
        self.db = database

    # ==========================================
    # Profiles and ledger writes
    # ==========================================

    async def get_profile(self, user_id: str) -> Optional[UserRewardProfile]:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        f"SELECT {PROFILE_COLUMNS} FROM user_reward_profiles WHERE user_id = %s",
                        (user_id,)
                    )
                    row = await cur.fetchone()
                    return UserRewardProfile(**row) if row else None
        except DB_ERRORS as e:
            raise wrap_external_exception(e, operation="get_profile", user_id=user_id)

    async def commit(self, change: LedgerChange) -> None:
        user_id = change.user_id
        profile = change.profile

        try:
            async with self.db.connection() as conn:
                async with conn.transaction():
                    async with conn.cursor() as cur:
                        if change.event_key:
                            await self._claim_event(cur, change)

                        if change.expected_version == 0:
                            await cur.execute(
                                """
                                INSERT INTO user_reward_profiles
                                    (user_id, total_xp, redeemed_xp, current_level, current_streak,
                                     longest_streak, last_active_date, version)
                                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                                ON CONFLICT (user_id) DO NOTHING
                                RETURNING user_id
                                """,
                                (
                                    user_id, profile.total_xp, profile.redeemed_xp, profile.current_level,
                                    profile.current_streak, profile.longest_streak,
                                    profile.last_active_date, profile.version,
                                )
                            )
                        else:
                            await cur.execute(
                                """
                                UPDATE user_reward_profiles
                                SET total_xp = %s,
                                    redeemed_xp = %s,
                                    current_level = %s,
                                    current_streak = %s,
                                    longest_streak = %s,
                                    last_active_date = %s,
                                    version = %s,
                                    updated_at = CURRENT_TIMESTAMP
                                WHERE user_id = %s AND version = %s
                                RETURNING user_id
                                """,
                                (
                                    profile.total_xp, profile.redeemed_xp, profile.current_level,
                                    profile.current_streak, profile.longest_streak,
                                    profile.last_active_date, profile.version,
                                    user_id, change.expected_version,
                                )
                            )

                        if await cur.fetchone() is None:
                            raise ConflictError(
                                f"Profile for {user_id} changed since version {change.expected_version}",
                                expected_version=change.expected_version,
                                user_id=user_id,
                                operation="commit"
                            )

                        if change.achievement:
                            await cur.execute(
                                """
                                INSERT INTO user_achievements (user_id, achievement_id, earned_at)
                                VALUES (%s, %s, %s)
                                ON CONFLICT (user_id, achievement_id) DO NOTHING
                                RETURNING achievement_id
                                """,
                                (user_id, change.achievement.achievement_id, change.achievement.earned_at)
                            )
                            if await cur.fetchone() is None:
                                raise DuplicateEventError(
                                    f"Achievement {change.achievement.achievement_id} already earned",
                                    user_id=user_id,
                                    operation="commit"
                                )

                        if change.transactions:
                            await cur.executemany(
                                f"""
                                INSERT INTO xp_transactions ({TRANSACTION_COLUMNS})
                                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                                """,
                                [
                                    (
                                        t.id, t.user_id, t.amount, t.source, t.multiplier,
                                        t.description, Jsonb(t.metadata), t.idempotency_key, t.created_at,
                                    )
                                    for t in change.transactions
                                ]
                            )
        except RewardEngineError:
            raise
        except DB_ERRORS as e:
            raise wrap_external_exception(e, operation="commit", user_id=user_id)

        logger.debug(f"Committed {len(change.transactions)} ledger entries for {user_id} (v{profile.version})")

    async def _claim_event(self, cur, change: LedgerChange) -> None:
        await cur.execute(
            """
            INSERT INTO processed_events (user_id, kind, event_key, result)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (user_id, kind, event_key) DO NOTHING
            RETURNING event_key
            """,
            (change.user_id, change.event_kind, change.event_key, Jsonb(change.event_result or {}))
        )
        if await cur.fetchone() is not None:
            return

        await cur.execute(
            "SELECT result FROM processed_events WHERE user_id = %s AND kind = %s AND event_key = %s",
            (change.user_id, change.event_kind, change.event_key)
        )
        row = await cur.fetchone()
        raise DuplicateEventError(
            f"{change.event_kind} event {change.event_key} already processed",
            idempotency_key=change.event_key,
            original=row["result"] if row else None,
            user_id=change.user_id,
            operation="commit"
        )

    # ==========================================
    # Idempotency records
    # ==========================================

    async def get_event_result(self, user_id: str, kind: str, key: str) -> Optional[Dict[str, Any]]:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        "SELECT result FROM processed_events WHERE user_id = %s AND kind = %s AND event_key = %s",
                        (user_id, kind, key)
                    )
                    row = await cur.fetchone()
                    return row["result"] if row else None
        except DB_ERRORS as e:
            raise wrap_external_exception(e, operation="get_event_result", user_id=user_id)

    async def update_event_result(self, user_id: str, kind: str, key: str, result: Dict[str, Any]) -> None:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        """
                        UPDATE processed_events
                        SET result = %s, updated_at = CURRENT_TIMESTAMP
                        WHERE user_id = %s AND kind = %s AND event_key = %s
                        """,
                        (Jsonb(result), user_id, kind, key)
                    )
                await conn.commit()
        except DB_ERRORS as e:
            raise wrap_external_exception(e, operation="update_event_result", user_id=user_id)

    # ==========================================
    # Ledger reads
    # ==========================================

    async def count_transactions(self, user_id: str, source: str, bundle_only: bool = False) -> int:
        query = "SELECT COUNT(*) AS total FROM xp_transactions WHERE user_id = %s AND source = %s"
        if bundle_only:
            query += " AND (metadata->>'is_bundle')::boolean IS TRUE"
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, (user_id, source))
                    row = await cur.fetchone()
                    return int(row["total"]) if row else 0
        except DB_ERRORS as e:
            raise wrap_external_exception(e, operation="count_transactions", user_id=user_id)

    async def list_transactions(self, user_id: str, limit: Optional[int] = 50) -> List[XPTransaction]:
        query = f"""
            SELECT {TRANSACTION_COLUMNS}
            FROM xp_transactions
            WHERE user_id = %s
            ORDER BY created_at DESC, id DESC
        """
        params: tuple = (user_id,)
        if limit is not None:
            query += " LIMIT %s"
            params = (user_id, limit)
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, params)
                    rows = await cur.fetchall()
                    return [_transaction_from_row(row) for row in rows]
        except DB_ERRORS as e:
            raise wrap_external_exception(e, operation="list_transactions", user_id=user_id)

    async def list_event_transactions(self, user_id: str, event_key: str) -> List[XPTransaction]:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        f"""
                        SELECT {TRANSACTION_COLUMNS}
                        FROM xp_transactions
                        WHERE user_id = %s AND idempotency_key = %s
                        ORDER BY created_at, id
                        """,
                        (user_id, event_key)
                    )
                    rows = await cur.fetchall()
                    return [_transaction_from_row(row) for row in rows]
        except DB_ERRORS as e:
            raise wrap_external_exception(e, operation="list_event_transactions", user_id=user_id)

    # ==========================================
    # Achievements
    # ==========================================

    async def list_achievements(self) -> List[AchievementDefinition]:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        """
                        SELECT id, slug, name, description, requirement_type, requirement_value, xp_reward
                        FROM achievements
                        ORDER BY requirement_type, requirement_value
                        """
                    )
                    rows = await cur.fetchall()
                    return [AchievementDefinition(**row) for row in rows]
        except DB_ERRORS as e:
            raise wrap_external_exception(e, operation="list_achievements")

    async def list_user_achievements(self, user_id: str) -> List[UserAchievement]:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        """
                        SELECT user_id, achievement_id, earned_at
                        FROM user_achievements
                        WHERE user_id = %s
                        ORDER BY earned_at
                        """,
                        (user_id,)
                    )
                    rows = await cur.fetchall()
                    return [UserAchievement(**row) for row in rows]
        except DB_ERRORS as e:
            raise wrap_external_exception(e, operation="list_user_achievements", user_id=user_id)

    async def enqueue_achievement_retry(self, retry: AchievementRetry) -> None:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        """
                        INSERT INTO achievement_retries (id, user_id, context, error, attempts, created_at)
                        VALUES (%s, %s, %s, %s, %s, %s)
                        """,
                        (retry.id, retry.user_id, Jsonb(retry.context), retry.error, retry.attempts, retry.created_at)
                    )
                await conn.commit()
        except DB_ERRORS as e:
            raise wrap_external_exception(e, operation="enqueue_achievement_retry", user_id=retry.user_id)

    async def list_achievement_retries(self, limit: int = 50) -> List[AchievementRetry]:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        """
                        SELECT id, user_id, context, error, attempts, created_at
                        FROM achievement_retries
                        ORDER BY created_at
                        LIMIT %s
                        """,
                        (limit,)
                    )
                    rows = await cur.fetchall()
                    return [AchievementRetry(**{**row, "id": str(row["id"])}) for row in rows]
        except DB_ERRORS as e:
            raise wrap_external_exception(e, operation="list_achievement_retries")

    async def resolve_achievement_retry(self, retry_id: str) -> None:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute("DELETE FROM achievement_retries WHERE id = %s", (retry_id,))
                await conn.commit()
        except DB_ERRORS as e:
            raise wrap_external_exception(e, operation="resolve_achievement_retry")

    async def record_achievement_retry_failure(self, retry_id: str, error: str) -> None:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        "UPDATE achievement_retries SET attempts = attempts + 1, error = %s WHERE id = %s",
                        (error, retry_id)
                    )
                await conn.commit()
        except DB_ERRORS as e:
            raise wrap_external_exception(e, operation="record_achievement_retry_failure")

    async def close(self) -> None:
        await self.db.close_pool()
