"""
Main FastAPI application entry point.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from shelfwise.api import router as api_router
from shelfwise.core.config import get_settings
from shelfwise.core.database import SessionLocal
from shelfwise.core.logging import get_logger, setup_logging
from shelfwise.core.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware
from shelfwise.core.redis import close_redis_client, create_redis_client
from shelfwise.services.recommendation_service import RecommendationService

settings = get_settings()

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info(
        f"Starting {settings.APP_NAME}",
        extra={
            "extra_fields": {
                "environment": settings.ENVIRONMENT,
                "debug": settings.DEBUG,
                "redis": bool(settings.REDIS_URL),
            }
        },
    )

    redis_client = create_redis_client()
    app.state.redis = redis_client
    app.state.recommendations = RecommendationService.create(redis_client=redis_client)

    yield

    logger.info(f"Shutting down {settings.APP_NAME}")
    # Let in-flight cache writes land before the connections go away
    await app.state.recommendations.close()
    await close_redis_client(redis_client)


app = FastAPI(
    title=settings.APP_NAME,
    description="Personalized book recommendations from reading history, graph and collaborative signals",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None,
    lifespan=lifespan,
)

# CORS middleware - must be added first (outermost)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestLoggingMiddleware)


@app.get("/health")
async def health_check():
    """
    Health check endpoint for load balancers and monitoring.
    """
    return {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT,
    }


@app.get("/health/ready")
async def readiness_check():
    """
    Readiness check endpoint.

    Verifies the database is reachable and, when configured, Redis.
    """
    checks = {}

    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        checks["database"] = "connected"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        checks["database"] = "disconnected"

    redis_client = getattr(app.state, "redis", None)
    if redis_client is not None:
        try:
            await redis_client.ping()
            checks["redis"] = "connected"
        except Exception as e:
            logger.warning(f"Redis health check failed: {e}")
            checks["redis"] = "disconnected"

    status = "ready" if checks["database"] == "connected" else "not_ready"

    return {"status": status, "checks": checks}


app.include_router(api_router, prefix=settings.API_V1_PREFIX)
