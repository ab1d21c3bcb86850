"""
Service Container - Dependency Injection Container

Simple DI container for the reward economy. Builds the store, engines and
RewardService once, lazily, on first access.
"""

from dataclasses import dataclass, field
from typing import Optional
import logging

from xp_engine import config

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """
    Simple dependency injection container for services.

    Services are lazy-loaded on first access via properties.
    Infrastructure (the RewardStore) is injected.
    """

    store: object  # RewardStore instance
    db: Optional[object] = None  # Database instance backing a PostgresRewardStore

    _ledger: Optional[object] = field(default=None, init=False, repr=False)
    _redemption: Optional[object] = field(default=None, init=False, repr=False)
    _reward_service: Optional[object] = field(default=None, init=False, repr=False)

    @property
    def ledger(self):
        """Get XPLedger instance (lazy-loaded)"""
        if self._ledger is None:
            from xp_engine.gamification.ledger import XPLedger
            self._ledger = XPLedger(self.store, max_retries=config.LEDGER_MAX_RETRIES)
            logger.debug("XPLedger instantiated")
        return self._ledger

    @property
    def redemption(self):
        """Get RedemptionEngine instance (lazy-loaded)"""
        if self._redemption is None:
            from xp_engine.gamification.redemption import RedemptionEngine, RedemptionPolicy
            policy = RedemptionPolicy(
                xp_to_dollar_rate=config.XP_TO_DOLLAR_RATE,
                min_redemption_xp=config.MIN_REDEMPTION_XP,
                max_discount_percentage=config.MAX_DISCOUNT_PERCENTAGE,
            )
            self._redemption = RedemptionEngine(
                self.store, policy=policy, max_retries=config.LEDGER_MAX_RETRIES
            )
            logger.debug("RedemptionEngine instantiated")
        return self._redemption

    @property
    def reward_service(self):
        """Get RewardService instance (lazy-loaded)"""
        if self._reward_service is None:
            from xp_engine.services.reward_service import RewardService
            self._reward_service = RewardService(self.store, self.ledger, self.redemption)
            logger.debug("RewardService instantiated")
        return self._reward_service


# Global container instance (initialized at API startup)
_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    """
    Get the global service container.

    Raises:
        RuntimeError: If container not initialized (call init_container first)
    """
    if _container is None:
        raise RuntimeError(
            "Service container not initialized. "
            "Call init_container() at startup before using services."
        )
    return _container


def init_container(store: object, db: Optional[object] = None) -> ServiceContainer:
    """
    Initialize the global service container.

    Args:
        store: RewardStore instance
        db: Database instance, when the store is backed by PostgreSQL

    Returns:
        ServiceContainer: The initialized container
    """
    global _container

    _container = ServiceContainer(store=store, db=db)
    logger.info(f"Service container initialized ({type(store).__name__})")
    return _container


async def build_container_from_config() -> ServiceContainer:
    """Create the configured store (opening the pool if needed) and the container"""
    config.validate_config()

    if config.REWARD_STORE == "memory":
        from xp_engine.db.memory_store import InMemoryRewardStore
        return init_container(InMemoryRewardStore())

    from xp_engine.db.connection import Database
    from xp_engine.db.postgres_store import PostgresRewardStore
    from xp_engine.db.schema import init_schema

    database = Database(config.DATABASE_URL)
    await database.init_pool()
    await init_schema(database)
    return init_container(PostgresRewardStore(database), db=database)


async def shutdown_container() -> None:
    """Close the store and forget the global container"""
    global _container

    if _container is None:
        return
    await _container.store.close()
    _container = None
    logger.info("Service container shut down")
