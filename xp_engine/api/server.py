"""FastAPI application setup"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

import xp_engine
from xp_engine.api.routes import router
from xp_engine.api.metrics_routes import router as metrics_router
from xp_engine.api.middleware import setup_cors, setup_error_handlers, setup_rate_limiting
from xp_engine.config import LOG_LEVEL
from xp_engine.services.container import build_container_from_config, shutdown_container

# Configure logging
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO)
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for FastAPI application"""
    # Startup
    logger.info("Starting XP engine API...")
    container = await build_container_from_config()
    logger.info(f"Reward store ready: {type(container.store).__name__}")

    yield

    # Shutdown
    logger.info("Shutting down XP engine API...")
    await shutdown_container()


def create_api_application(use_lifespan: bool = True) -> FastAPI:
    """
    Create and configure FastAPI application

    Args:
        use_lifespan: Build the container from config on startup. Tests pass
            False and install their own container.
    """
    app = FastAPI(
        title="XP Engine API",
        description="XP reward and redemption engine",
        version=xp_engine.__version__,
        lifespan=lifespan if use_lifespan else None
    )

    # Setup middleware
    setup_cors(app)
    setup_rate_limiting(app)
    setup_error_handlers(app)

    # Include routes
    app.include_router(router)
    app.include_router(metrics_router)

    logger.info("FastAPI application created")

    return app


def main() -> None:
    """Run the API with uvicorn"""
    import os
    import uvicorn

    uvicorn.run(
        create_api_application(),
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", "8080")),
    )


if __name__ == "__main__":
    main()
