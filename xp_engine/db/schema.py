"""
Reward economy schema

Creates tables if they don't exist and seeds the achievement catalog.
Safe to call on every startup (CREATE ... IF NOT EXISTS, ON CONFLICT DO
UPDATE for catalog rows).
"""

import logging

from xp_engine.db.connection import Database
from xp_engine.gamification.reward_table import ACHIEVEMENT_CATALOG

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS user_reward_profiles (
        user_id TEXT PRIMARY KEY,
        total_xp INTEGER NOT NULL DEFAULT 0 CHECK (total_xp >= 0),
        redeemed_xp INTEGER NOT NULL DEFAULT 0 CHECK (redeemed_xp >= 0),
        current_level INTEGER NOT NULL DEFAULT 1 CHECK (current_level >= 1),
        current_streak INTEGER NOT NULL DEFAULT 0 CHECK (current_streak >= 0),
        longest_streak INTEGER NOT NULL DEFAULT 0 CHECK (longest_streak >= current_streak),
        last_active_date DATE,
        version INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS xp_transactions (
        id UUID PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES user_reward_profiles(user_id),
        amount INTEGER NOT NULL,
        source TEXT NOT NULL,
        multiplier NUMERIC(6, 2) NOT NULL DEFAULT 1.0 CHECK (multiplier >= 1.0),
        description TEXT NOT NULL DEFAULT '',
        metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
        idempotency_key TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_xp_transactions_user_created
        ON xp_transactions (user_id, created_at)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_xp_transactions_user_event
        ON xp_transactions (user_id, idempotency_key)
        WHERE idempotency_key IS NOT NULL
    """,
    """
    CREATE TABLE IF NOT EXISTS processed_events (
        user_id TEXT NOT NULL,
        kind TEXT NOT NULL,
        event_key TEXT NOT NULL,
        result JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (user_id, kind, event_key)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS achievements (
        id TEXT PRIMARY KEY,
        slug TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        requirement_type TEXT NOT NULL,
        requirement_value INTEGER NOT NULL CHECK (requirement_value >= 1),
        xp_reward INTEGER NOT NULL CHECK (xp_reward >= 0)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_achievements (
        user_id TEXT NOT NULL REFERENCES user_reward_profiles(user_id),
        achievement_id TEXT NOT NULL REFERENCES achievements(id),
        earned_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (user_id, achievement_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS achievement_retries (
        id UUID PRIMARY KEY,
        user_id TEXT NOT NULL,
        context JSONB NOT NULL DEFAULT '{}'::jsonb,
        error TEXT NOT NULL DEFAULT '',
        attempts INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
)

SEED_ACHIEVEMENT_SQL = """
    INSERT INTO achievements (id, slug, name, description, requirement_type, requirement_value, xp_reward)
    VALUES (%s, %s, %s, %s, %s, %s, %s)
    ON CONFLICT (id) DO UPDATE
    SET slug = EXCLUDED.slug,
        name = EXCLUDED.name,
        description = EXCLUDED.description,
        requirement_type = EXCLUDED.requirement_type,
        requirement_value = EXCLUDED.requirement_value,
        xp_reward = EXCLUDED.xp_reward
"""


async def init_schema(database: Database) -> None:
    """Create tables and seed the achievement catalog"""
    async with database.connection() as conn:
        async with conn.transaction():
            async with conn.cursor() as cur:
                for statement in SCHEMA_STATEMENTS:
                    await cur.execute(statement)

                for achievement in ACHIEVEMENT_CATALOG:
                    await cur.execute(
                        SEED_ACHIEVEMENT_SQL,
                        (
                            achievement.id,
                            achievement.slug,
                            achievement.name,
                            achievement.description,
                            achievement.requirement_type.value,
                            achievement.requirement_value,
                            achievement.xp_reward,
                        )
                    )

    logger.info(f"Reward schema ready ({len(ACHIEVEMENT_CATALOG)} achievements seeded)")
