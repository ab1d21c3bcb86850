"""Retry logic with exponential backoff and jitter

Retries only failures the reward store marks as transient:
1. ConflictError - another writer bumped the profile version first
2. StorageError - the store was unreachable and nothing was written

Everything else (validation failures, duplicate events, query bugs) is
raised immediately.
"""

import asyncio
import random
import logging
from typing import Callable, Any, TypeVar

from xp_engine.exceptions import ConflictError, RewardEngineError
from xp_engine.observability.metrics import xp_ledger_conflicts_total

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Retry configuration
MAX_RETRIES = 3
BASE_DELAY = 0.05  # seconds
MAX_DELAY = 2.0  # seconds
JITTER = 0.1  # 10% random jitter


def is_retryable_error(exc: Exception) -> bool:
    """
    Determine if error is transient and should be retried.

    Args:
        exc: The exception to check

    Returns:
        True if error should be retried, False otherwise
    """
    return isinstance(exc, RewardEngineError) and exc.retryable


def calculate_backoff(attempt: int, base_delay: float = BASE_DELAY) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Formula: delay = min(base_delay * (2 ** attempt), MAX_DELAY) + jitter
    Jitter is random value between -10% and +10% of delay

    Args:
        attempt: The retry attempt number (0-indexed)
        base_delay: Delay before the first retry

    Returns:
        Delay in seconds
    """
    delay = min(base_delay * (2 ** attempt), MAX_DELAY)

    # Spread out writers that collided on the same profile
    jitter_amount = random.uniform(-JITTER * delay, JITTER * delay)
    final_delay = delay + jitter_amount

    return max(final_delay, 0.0)


async def retry_with_backoff(
    func: Callable[..., T],
    *args: Any,
    max_retries: int = MAX_RETRIES,
    base_delay: float = BASE_DELAY,
    **kwargs: Any
) -> T:
    """
    Retry async function with exponential backoff.

    Only retries transient errors. Gives up after max_retries attempts.

    Args:
        func: Async function to retry
        max_retries: Maximum number of retry attempts (default: 3)
        base_delay: Delay before the first retry
        *args, **kwargs: Arguments to pass to func

    Returns:
        Result from func

    Raises:
        Last exception if all retries exhausted or non-retryable error

    Example:
        result = await retry_with_backoff(self._attempt_award, user_id, activity, max_retries=5)
    """
    for attempt in range(max_retries + 1):
        try:
            return await func(*args, **kwargs)

        except Exception as e:
            if not is_retryable_error(e):
                raise

            name = getattr(func, "__name__", repr(func))

            if attempt == max_retries:
                logger.error(
                    f"[RETRY] All {max_retries} retries exhausted for {name}"
                )
                raise

            if isinstance(e, ConflictError):
                xp_ledger_conflicts_total.inc()

            backoff = calculate_backoff(attempt, base_delay)

            logger.info(
                f"[RETRY] Attempt {attempt + 1}/{max_retries} for {name} "
                f"after {backoff:.3f}s (error: {type(e).__name__})"
            )

            await asyncio.sleep(backoff)

    raise RuntimeError("Retry logic failed unexpectedly")
