"""
Prometheus metrics definitions for xp-engine.

Metrics are exposed at the /metrics endpoint for Prometheus scraping.
"""

import logging
from prometheus_client import Counter

logger = logging.getLogger(__name__)

# =============================================================================
# Award Metrics
# =============================================================================

xp_awards_total = Counter(
    "xp_awards_total",
    "Total XP awards committed",
    ["activity", "tier"],
)

xp_awarded_points_total = Counter(
    "xp_awarded_points_total",
    "Total XP points credited",
    ["source"],  # source: activity kind or 'achievement'
)

xp_award_replays_total = Counter(
    "xp_award_replays_total",
    "Award calls answered from an idempotency record",
)

xp_ledger_conflicts_total = Counter(
    "xp_ledger_conflicts_total",
    "Optimistic concurrency conflicts retried by the ledger",
)

# =============================================================================
# Redemption Metrics
# =============================================================================

xp_redemptions_total = Counter(
    "xp_redemptions_total",
    "Redemption requests by outcome",
    ["outcome"],  # outcome: approved, replayed, or a rejection reason
)

# =============================================================================
# Achievement Metrics
# =============================================================================

xp_achievements_unlocked_total = Counter(
    "xp_achievements_unlocked_total",
    "Achievements granted",
    ["slug"],
)

xp_achievement_failures_total = Counter(
    "xp_achievement_failures_total",
    "Achievement evaluations that failed after an award and were queued",
)
