"""PostgreSQL pool for the reward store"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional
import psycopg
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from xp_engine import config

logger = logging.getLogger(__name__)


class Database:
    """Owns the AsyncConnectionPool behind PostgresRewardStore"""

    def __init__(
        self,
        connection_string: Optional[str] = None,
        min_size: Optional[int] = None,
        max_size: Optional[int] = None
    ):
        self.connection_string = connection_string or config.DATABASE_URL
        self.min_size = min_size if min_size is not None else config.DB_POOL_MIN_SIZE
        self.max_size = max_size if max_size is not None else config.DB_POOL_MAX_SIZE
        self._pool: Optional[AsyncConnectionPool] = None

    async def init_pool(self) -> None:
        logger.info(f"Opening reward store pool ({self.min_size}-{self.max_size} connections)")
        self._pool = AsyncConnectionPool(
            self.connection_string,
            min_size=self.min_size,
            max_size=self.max_size,
            name="xp-engine",
            kwargs={"row_factory": dict_row},
            open=False
        )
        await self._pool.open()

    async def close_pool(self) -> None:
        if self._pool is None:
            return
        logger.info("Closing reward store pool")
        await self._pool.close()
        self._pool = None

    @property
    def is_ready(self) -> bool:
        return self._pool is not None

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """Borrow a dict_row connection; raises RuntimeError before init_pool()"""
        if self._pool is None:
            raise RuntimeError("Reward store pool not initialized")

        async with self._pool.connection() as conn:
            yield conn
