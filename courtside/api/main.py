"""
Courtside Matchmaking API Server

FastAPI server exposing the matchmaking queue, match lifecycle and
settlement endpoints.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import os
import uvicorn
from slowapi import _rate_limit_exceeded_handler  # type: ignore
from slowapi.errors import RateLimitExceeded  # type: ignore

from courtside.api.routes import router, limiter as routes_limiter
from courtside.database import db
from courtside.database.init_defaults import init_defaults
from courtside.models.schemas import HealthResponse
from courtside.services.queue_sweeper_service import get_queue_sweeper_service

# Set up logging
# Allow log level to be configured via environment variable (default: INFO)
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, log_level, logging.INFO)
logging.basicConfig(
    level=numeric_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup and shutdown events."""
    # Startup
    logger.info("Starting up Courtside Matchmaking API...")

    # Initialize database (create tables if they don't exist)
    try:
        await db.init_database()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    # Seed the default sport catalog
    if os.getenv("SKIP_DEFAULT_SEED", "false").lower() != "true":
        try:
            await init_defaults()
        except Exception as e:
            logger.error(f"Failed to initialize defaults: {e}", exc_info=True)

    # Start queue sweeper (expiry + re-matching)
    try:
        get_queue_sweeper_service().start()
        logger.info("✓ Queue sweeper worker started")
    except Exception as e:
        logger.error(f"Failed to start queue sweeper worker: {e}", exc_info=True)

    yield  # App is running

    # Shutdown
    logger.info("Shutting down Courtside Matchmaking API...")

    try:
        get_queue_sweeper_service().stop()
        logger.info("✓ Queue sweeper worker stopped")
    except Exception as e:
        logger.error(f"Error stopping queue sweeper worker: {e}", exc_info=True)

    await db.engine.dispose()


app = FastAPI(
    title="Courtside Matchmaking API",
    description="Skill-based matchmaking queue, match lifecycle and rating settlement",
    version="1.0.0",
    lifespan=lifespan,
)

# Setup rate limiter
app.state.limiter = routes_limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add CORS middleware; origins configured via ALLOWED_ORIGINS env var
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router)


@app.get("/health", response_model=HealthResponse)
async def health():
    """Liveness check."""
    return {"status": "ok", "message": "Courtside Matchmaking API is running"}


def run():
    """Run the API server with uvicorn."""
    uvicorn.run(
        app,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )


if __name__ == "__main__":
    run()
