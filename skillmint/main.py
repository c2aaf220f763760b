from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from skillmint.config import settings
from skillmint.api.v1.router import api_router
from skillmint.core.exceptions import MoneyError, StoreUnavailable
from skillmint.database import async_session_factory
from skillmint.jobs.scheduler import start_scheduler, shutdown_scheduler, get_job_status
from skillmint.services.commission_service import CommissionRates
from skillmint.services.payment_service import get_payment_gateway

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Build the payment gateway and the live commission rates
    - Start background scheduler

    Tests may pre-populate app.state with a stub gateway.
    """
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    if getattr(app.state, "gateway", None) is None:
        app.state.gateway = get_payment_gateway()
    if getattr(app.state, "commission_rates", None) is None:
        app.state.commission_rates = CommissionRates()

    if settings.SCHEDULER_ENABLED:
        start_scheduler(app.state.gateway, app.state.commission_rates)
        logger.info("Background scheduler started")

    yield

    # Shutdown
    shutdown_scheduler()
    logger.info("Shutting down...")


# OpenAPI Tags with detailed descriptions
OPENAPI_TAGS = [
    {"name": "Orders", "description": "Course purchases through Razorpay or the wallet"},
    {"name": "Payments", "description": "Checkout verification and Razorpay webhooks"},
    {"name": "Refunds", "description": "Refund requests and admin decisions"},
    {"name": "Wallet", "description": "Balance, ledger history, top-ups and admin corrections"},
    {"name": "Withdrawals", "description": "Payout requests and the admin approval workflow"},
    {"name": "Commissions", "description": "Three-level affiliate commissions and rates"},
]

FULL_API_DESCRIPTION = """
## SkillMint Money Service

Orders, payments, wallets, affiliate commissions and withdrawals for the
SkillMint course marketplace.

### Authentication

All endpoints except the Razorpay webhook require JWT authentication.
Include token in Authorization header: `Bearer <token>`

### Errors

Every error response has the shape
`{"success": false, "code": "...", "message": "...", "details": {...}}`
with a stable `code` such as `INSUFFICIENT_FUNDS` or `SIGNATURE_MISMATCH`.
"""

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=FULL_API_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)


@app.exception_handler(MoneyError)
async def money_error_handler(request: Request, exc: MoneyError):
    """Render domain errors with their stable code."""
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Store error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    error = StoreUnavailable("The data store is temporarily unavailable")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    from sqlalchemy import text
    from datetime import datetime, timezone

    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown"
        },
        "jobs": get_job_status(),
    }

    # Check database connectivity
    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except SQLAlchemyError as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    # Return 503 if unhealthy
    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
    }
