"""API routes for the XP reward economy"""
import logging
from datetime import datetime, timezone
from decimal import Decimal

from fastapi import APIRouter, Depends, Query, Request

from xp_engine.api.auth import verify_api_key
from xp_engine.api.middleware import limiter
from xp_engine.api.models import (
    AwardRequest,
    ErrorResponse,
    HealthCheckResponse,
    HistoryResponse,
    NearMissResponse,
    ProfileResponse,
    RedemptionOptionsResponse,
    RedemptionRequest,
    RedemptionResponse,
    TransactionResponse,
)
from xp_engine.exceptions import RedemptionRejectedError
from xp_engine.models.rewards import AwardResult
from xp_engine.services.container import get_container
from xp_engine.services.reward_service import RewardService

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


def get_reward_service() -> RewardService:
    """RewardService from the global container"""
    return get_container().reward_service


@router.post("/api/v1/xp/award", response_model=AwardResult, responses=ERROR_RESPONSES)
@limiter.limit("120/minute")
async def award_xp(
    request: Request,
    body: AwardRequest,
    api_key: str = Depends(verify_api_key),
    service: RewardService = Depends(get_reward_service)
):
    """Award XP for one activity (idempotent when idempotency_key is set)"""
    return await service.award(body.user_id, body.activity, body.metadata, body.idempotency_key)


@router.get("/api/v1/xp/profile/{user_id}", response_model=ProfileResponse, responses=ERROR_RESPONSES)
@limiter.limit("60/minute")
async def get_profile(
    request: Request,
    user_id: str,
    api_key: str = Depends(verify_api_key),
    service: RewardService = Depends(get_reward_service)
):
    """Balance, level progress, streak and earned achievements"""
    return await service.get_profile(user_id)


@router.get("/api/v1/xp/history/{user_id}", response_model=HistoryResponse, responses=ERROR_RESPONSES)
@limiter.limit("60/minute")
async def get_history(
    request: Request,
    user_id: str,
    limit: int = Query(50, ge=1, le=500),
    api_key: str = Depends(verify_api_key),
    service: RewardService = Depends(get_reward_service)
):
    """Ledger entries, newest first"""
    transactions = await service.get_history(user_id, limit=limit)
    return HistoryResponse(
        user_id=user_id.strip().lower(),
        transactions=[TransactionResponse(**t.model_dump()) for t in transactions]
    )


@router.post("/api/v1/xp/validate-redemption", response_model=RedemptionResponse, responses=ERROR_RESPONSES)
@limiter.limit("30/minute")
async def validate_redemption(
    request: Request,
    body: RedemptionRequest,
    api_key: str = Depends(verify_api_key),
    service: RewardService = Depends(get_reward_service)
):
    """
    Validate and apply a redemption

    Rule violations come back as 200 with approved=false and a reason code so
    the checkout can explain them.
    """
    try:
        result = await service.validate_redemption(
            body.user_id, body.xp_to_redeem, body.order_total, body.order_id
        )
    except RedemptionRejectedError as e:
        return RedemptionResponse(
            user_id=body.user_id.strip().lower(),
            approved=False,
            rejected=True,
            reason=e.reason.value,
            limit=e.limit,
            message=e.user_message,
            order_id=body.order_id,
        )

    return RedemptionResponse(**result.model_dump())


@router.get("/api/v1/xp/redemption-options/{user_id}", response_model=RedemptionOptionsResponse, responses=ERROR_RESPONSES)
@limiter.limit("60/minute")
async def redemption_options(
    request: Request,
    user_id: str,
    order_total: Decimal = Query(..., gt=0),
    api_key: str = Depends(verify_api_key),
    service: RewardService = Depends(get_reward_service)
):
    """Quick-pick discount buttons for checkout"""
    return await service.redemption_options(user_id, order_total)


@router.get("/api/v1/xp/near-miss/{user_id}", response_model=NearMissResponse, responses=ERROR_RESPONSES)
@limiter.limit("60/minute")
async def near_miss(
    request: Request,
    user_id: str,
    cart_total: Decimal = Query(..., gt=0),
    api_key: str = Depends(verify_api_key),
    service: RewardService = Depends(get_reward_service)
):
    """Near-miss nudge for the current cart"""
    return await service.near_miss(user_id, cart_total)


@router.get("/health", response_model=HealthCheckResponse)
@limiter.limit("60/minute")
async def health_check(request: Request):
    """Health check endpoint (no auth, for monitoring systems)"""
    try:
        container = get_container()
        store_status = "connected"
        if container.db is not None and not container.db.is_ready:
            store_status = "disconnected"
    except RuntimeError as e:
        logger.error(f"Health check failed: {e}")
        store_status = "uninitialized"

    return HealthCheckResponse(
        status="healthy" if store_status == "connected" else "degraded",
        store=store_status,
        timestamp=datetime.now(timezone.utc)
    )
