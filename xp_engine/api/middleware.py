"""API middleware for rate limiting, CORS and error mapping"""
import logging
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from xp_engine.config import CORS_ORIGINS
from xp_engine.exceptions import (
    ConflictError,
    RecordNotFoundError,
    RewardEngineError,
    StorageError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Initialize rate limiter
limiter = Limiter(key_func=get_remote_address)


def setup_cors(app):
    """Configure CORS middleware"""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    logger.info(f"CORS configured for origins: {CORS_ORIGINS}")


def setup_rate_limiting(app):
    """Configure rate limiting"""
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    logger.info("Rate limiting configured")


def status_for_error(exc: RewardEngineError) -> int:
    """HTTP status for an engine error"""
    if isinstance(exc, (StorageError, ConflictError)):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(exc, RecordNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def setup_error_handlers(app):
    """Map the engine's exception hierarchy onto HTTP responses"""

    @app.exception_handler(RewardEngineError)
    async def reward_engine_error_handler(request: Request, exc: RewardEngineError):
        code = status_for_error(exc)
        headers = {"Retry-After": "1"} if exc.retryable else None
        return JSONResponse(status_code=code, content=exc.to_dict(), headers=headers)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error", "retryable": False}
        )
