"""
FastAPI Application Entry Point

DineFlow - Multi-tenant Restaurant Ordering Platform
Supports both Mock services (development) and Real APIs (production).

Endpoints:
    - /api/restaurants: Catalog (restaurants, categories, menu items, variants)
    - /api/inventory: Stock ledger, adjustments and analytics
    - /api/cart: Per-user shopping cart
    - /api/orders, /api/cancellations, /api/deliveries: Order workflow
    - /api/payments: Payments, gateway sessions and the Stripe webhook
    - /api/notifications, /api/feedback: Customer inbox and ratings
    - GET /health: System health check

Version: 4.0.0
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import redis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from dineflow.api import register_routers
from dineflow.api.dependencies import DbSession
from dineflow.core.config import get_settings, setup_logging
from dineflow.core.exceptions import DineFlowError
from dineflow.database import create_database
from dineflow.schemas import ErrorResponse, HealthResponse
from dineflow.services.notifications import get_notification_provider
from dineflow.services.payment import get_payment_gateway

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.

    The ``Database`` handle lives on ``app.state``; a handle placed there
    before startup (tests) is used as-is and left open.
    """
    current = get_settings()
    logger.info("=" * 60)
    logger.info(f"Starting {current.app_name}")
    logger.info(f"   Version: {current.app_version}")
    logger.info(f"   Environment: {current.env_mode.value}")
    logger.info(f"   Debug: {current.debug}")
    logger.info("=" * 60)

    owns_database = getattr(app.state, "database", None) is None
    if owns_database:
        app.state.database = create_database(current)
    await app.state.database.init()
    logger.info("Database initialized")

    logger.info(f"Payment Gateway: {get_payment_gateway().provider_name}")
    logger.info(f"Notification Provider: {get_notification_provider().provider_name}")

    if current.use_real_services:
        missing = current.validate_production_config()
        if missing:
            logger.warning(f"Missing production config: {missing}")

    logger.info("Application ready")

    yield  # Application runs

    logger.info("Shutting down...")
    if owns_database:
        await app.state.database.close()
        app.state.database = None
    logger.info("Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Multi-tenant restaurant ordering platform: catalog, inventory, cart, "
        "orders, payments, deliveries and notifications."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_routers(app)


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


def _ping_redis(url: str) -> None:
    client = redis.Redis.from_url(url, socket_timeout=2)
    try:
        client.ping()
    finally:
        client.close()


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(db: DbSession) -> HealthResponse:
    """Verify all system components are operational."""
    current = get_settings()

    # Check database
    db_status = "healthy"
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    # Check Redis
    redis_status = "healthy"
    try:
        await asyncio.to_thread(_ping_redis, current.redis_url)
    except Exception as e:
        redis_status = f"unhealthy: {str(e)}"
        logger.error(f"Redis health check failed: {e}")

    payment_status = "healthy" if await get_payment_gateway().health_check() else "unhealthy"
    notification_status = "healthy" if await get_notification_provider().health_check() else "unhealthy"

    overall = "operational" if all(
        s == "healthy" for s in [db_status, redis_status, payment_status, notification_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        redis=redis_status,
        payment_gateway=payment_status,
        notification_provider=notification_status,
        timestamp=datetime.now(timezone.utc),
    )


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(DineFlowError)
async def dineflow_exception_handler(request: Request, exc: DineFlowError) -> JSONResponse:
    """Domain failures keep their status code and message."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if get_settings().debug else "An unexpected error occurred",
        },
    )
