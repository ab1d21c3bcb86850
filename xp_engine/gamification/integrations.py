"""
Payment Integration Hooks

Connects the checkout webhook to the ledger. The webhook only reports a
completed purchase; streaks, tiers and levels stay inside the engine.

Usage:
    from xp_engine.gamification.integrations import handle_checkout_completed

    # After the payment provider confirms the session
    await handle_checkout_completed(ledger, email, session_id, amount_total, line_items)

XP crediting is best-effort but durable: the session id is the idempotency
key, so the payment provider's own webhook retries re-run this safely, and a
failure here never fails the checkout.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, TypedDict

from xp_engine.exceptions import RewardEngineError
from xp_engine.gamification.ledger import XPLedger
from xp_engine.models.rewards import ActivityKind

logger = logging.getLogger(__name__)


class CheckoutXPResult(TypedDict):
    """Outcome of crediting a checkout"""
    credited: bool
    xp_awarded: int
    new_balance: Optional[int]
    replayed: bool
    retryable: bool
    error: Optional[str]


def is_bundle_purchase(line_items: Sequence[Dict[str, Any]]) -> bool:
    """A checkout counts as a bundle if any line item is described as one"""
    return any("bundle" in (item.get("description") or "").lower() for item in line_items)


async def handle_checkout_completed(
    ledger: XPLedger,
    email: str,
    session_id: str,
    amount_total: int,
    line_items: Optional[List[Dict[str, Any]]] = None
) -> CheckoutXPResult:
    """
    Award purchase XP for a completed checkout session

    Args:
        ledger: XPLedger to credit
        email: Customer email (normalized by the ledger)
        session_id: Payment session id, used as the idempotency key
        amount_total: Amount charged in cents
        line_items: [{'description': str, ...}] from the payment provider

    Returns:
        {
            'credited': bool,
            'xp_awarded': int,
            'new_balance': int | None,
            'replayed': bool,
            'retryable': bool,   # True when the provider should redeliver
            'error': str | None
        }
    """
    line_items = line_items or []
    logger.info(f"[XP] Checkout completed: session={session_id}, email={email}")

    if not email or not session_id:
        logger.warning(f"[XP] Skipping checkout {session_id}: missing email or session id")
        return CheckoutXPResult(
            credited=False, xp_awarded=0, new_balance=None,
            replayed=False, retryable=False, error="missing email or session id"
        )

    metadata = {
        "session_id": session_id,
        "amount_spent": str((Decimal(amount_total or 0) / 100).quantize(Decimal("0.01"))),
        "is_bundle": is_bundle_purchase(line_items),
        "item_count": len(line_items),
    }

    try:
        result = await ledger.award(
            email,
            ActivityKind.DOCUMENT_PURCHASE,
            metadata=metadata,
            idempotency_key=session_id
        )
    except RewardEngineError as e:
        logger.error(
            f"[XP] Could not credit checkout {session_id} for {email}: {e.message} "
            f"(retryable={e.retryable})"
        )
        return CheckoutXPResult(
            credited=False, xp_awarded=0, new_balance=None,
            replayed=False, retryable=e.retryable, error=e.message
        )
    except Exception as e:
        logger.error(f"[XP] Unexpected error crediting checkout {session_id}: {e}", exc_info=True)
        return CheckoutXPResult(
            credited=False, xp_awarded=0, new_balance=None,
            replayed=False, retryable=True, error=str(e)
        )

    logger.info(
        f"[XP] Checkout {session_id}: +{result.total_xp_earned} XP "
        f"(bonuses={result.bonuses}, replayed={result.replayed})"
    )
    return CheckoutXPResult(
        credited=True,
        xp_awarded=result.total_xp_earned,
        new_balance=result.new_balance,
        replayed=result.replayed,
        retryable=False,
        error=None,
    )
