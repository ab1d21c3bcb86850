"""
Service Layer Package

Business logic facade between the HTTP/webhook layer and the reward engines.

- RewardService: award, profile, history, redemption, checkout helpers
- ServiceContainer: lazily builds the store, engines and RewardService
"""

from xp_engine.services.container import (
    ServiceContainer,
    get_container,
    init_container,
    build_container_from_config,
    shutdown_container,
)
from xp_engine.services.reward_service import RewardService

__all__ = [
    "ServiceContainer",
    "get_container",
    "init_container",
    "build_container_from_config",
    "shutdown_container",
    "RewardService",
]
