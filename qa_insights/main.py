"""
FastAPI main application for QA Insights.

Provides report endpoints for test case health, flaky tests, issue
coverage, automation trends and milestone progress.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from fastapi import FastAPI, Request, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from fastapi_cache import FastAPICache
from fastapi_cache.backends.inmemory import InMemoryBackend

from qa_insights import __version__
from qa_insights.config import get_settings
from qa_insights.database import init_db, SessionLocal
from qa_insights.utils.auth import verify_api_key, verify_admin_api_key

# Configure logging from settings
settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper()),
    format=settings.LOG_FORMAT,
    handlers=[
        logging.StreamHandler(),  # Console output
    ]
)
logger = logging.getLogger(__name__)


def init_cache():
    """Initialize fastapi-cache with Redis when configured, in-memory otherwise."""
    if settings.CACHE_ENABLED and settings.REDIS_URL:
        try:
            from fastapi_cache.backends.redis import RedisBackend
            from redis import asyncio as aioredis
            redis = aioredis.from_url(settings.REDIS_URL, encoding="utf8", decode_responses=True)
            FastAPICache.init(RedisBackend(redis), prefix="qa-insights-cache")
            logger.info(f"Cache initialized with Redis: {settings.REDIS_URL}")
            return
        except Exception as e:
            logger.warning(f"Failed to connect to Redis, falling back to in-memory cache: {e}")

    # In-memory backend also serves the disabled case (expire=0 on endpoints)
    FastAPICache.init(InMemoryBackend(), prefix="qa-insights-cache")
    if settings.CACHE_ENABLED:
        logger.info("Cache initialized with in-memory backend")
    else:
        logger.info("Caching disabled")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI application.
    Handles startup and shutdown events.
    """
    logger.info("Starting QA Insights API")
    logger.info(f"Database: {settings.DATABASE_URL}")

    # Create tables if they don't exist (for development)
    init_db()
    init_cache()

    yield

    logger.info("Shutting down QA Insights API")


# Create FastAPI application
app = FastAPI(
    title="QA Insights API",
    description="""
    Test execution analytics: health scoring, flaky test ranking, issue
    coverage, automation trends and milestone progress.

    ## Authentication

    API key authentication can be enabled via environment variables:
    - Set `API_KEY` to require authentication for project reports
    - Set `ADMIN_API_KEY` to protect cross-project reports
    - Provide the key in the `X-API-Key` request header

    When authentication is disabled (no API keys set), all endpoints are publicly accessible.
    """,
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure rate limiting
if settings.RATE_LIMIT_ENABLED:
    rate_limit_string = f"{settings.RATE_LIMIT_PER_MINUTE}/minute"
    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[rate_limit_string]
    )
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    logger.info(f"Rate limiting enabled: {rate_limit_string}")
else:
    limiter = Limiter(key_func=get_remote_address, enabled=False)
    app.state.limiter = limiter
    logger.info("Rate limiting disabled")

# Configure CORS with specific allowed origins
allowed_origins = settings.ALLOWED_ORIGINS.split(",") if settings.ALLOWED_ORIGINS else []
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-API-Key"],
)

if settings.RATE_LIMIT_ENABLED:
    app.add_middleware(SlowAPIMiddleware)


# Global exception handlers
@app.exception_handler(SQLAlchemyError)
async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
    """Handle SQLAlchemy database errors."""
    logger.error(f"Database error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Database error",
            "detail": "An error occurred while accessing the database"
        }
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    """Handle ValueError exceptions (often from invalid input)."""
    logger.warning(f"Value error: {exc}")
    return JSONResponse(
        status_code=400,
        content={
            "error": "Invalid input",
            "detail": str(exc)
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.exception(f"Unexpected error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": "An unexpected error occurred"
        }
    )


# Health check endpoints
@app.get("/health", tags=["System"])
async def health_check():
    """
    Detailed health check endpoint for monitoring systems.

    Checks database connectivity and reports the cache backend.
    """
    health_status = {
        "status": "healthy",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {}
    }

    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        health_status["checks"]["database"] = {
            "status": "healthy",
            "message": "Database connection successful"
        }
    except SQLAlchemyError as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = {
            "status": "unhealthy",
            "message": f"Database connection failed: {str(e)}"
        }
        logger.error(f"Database health check failed: {e}")

    if settings.CACHE_ENABLED:
        health_status["checks"]["cache"] = {
            "status": "healthy",
            "message": "Cache is enabled",
            "backend": "redis" if settings.REDIS_URL else "in-memory"
        }
    else:
        health_status["checks"]["cache"] = {
            "status": "disabled",
            "message": "Caching disabled in configuration"
        }

    return health_status


@app.get("/health/live", tags=["System"])
async def liveness_probe():
    """
    Kubernetes liveness probe endpoint.

    Returns 200 while the application is running.
    """
    return {"status": "alive"}


@app.get("/health/ready", tags=["System"])
async def readiness_probe():
    """
    Kubernetes readiness probe endpoint.

    Returns 200 if ready to serve traffic, 503 if the database is unreachable.
    """
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        return {"status": "ready"}
    except SQLAlchemyError as e:
        logger.error(f"Readiness probe failed: {e}")
        return JSONResponse(
            status_code=503,
            content={"status": "not ready", "reason": "database unavailable"}
        )


@app.get("/api/v1", tags=["System"])
async def api_root():
    """
    API root endpoint.

    Returns:
        Welcome message with API documentation link
    """
    return {
        "message": "QA Insights API",
        "version": __version__,
        "docs": "/docs",
        "health": {
            "basic": "/health",
            "liveness": "/health/live",
            "readiness": "/health/ready"
        }
    }


# Import and register routers with API versioning
from qa_insights.routers import reports, milestones  # noqa: E402

app.include_router(
    reports.router,
    prefix="/api/v1/reports",
    tags=["Reports v1"],
    dependencies=[Depends(verify_api_key)]
)
app.include_router(
    reports.admin_router,
    prefix="/api/v1/admin/reports",
    tags=["Cross-project Reports v1"],
    dependencies=[Depends(verify_admin_api_key)]
)
app.include_router(
    milestones.router,
    prefix="/api/v1/milestones",
    tags=["Milestones v1"],
    dependencies=[Depends(verify_api_key)]
)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "qa_insights.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info"
    )
