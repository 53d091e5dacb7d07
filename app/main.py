"""
Queue Pulse — Contact-center queue telemetry API

Standalone FastAPI application. Polls the telephony platform for one queue
and serves aggregated KPIs at /dashboard/*.
"""

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.routers import dashboard
from app.services.dashboard import DashboardState
from app.services.telephony.errors import TelephonyError

# =============================================================================
# LOGGING
# =============================================================================

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


# =============================================================================
# LIFESPAN
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):  # type: ignore[no-untyped-def]
    """Application lifespan handler."""
    logger.info("Starting %s in %s mode", settings.app_name, settings.environment)
    state = DashboardState()
    app.state.dashboard = state

    # Optional auto-connect from environment
    if (
        settings.telephony_client_id
        and settings.telephony_client_secret
        and settings.telephony_queue_name
    ):
        try:
            await state.connect(
                settings.telephony_client_id,
                settings.telephony_client_secret,
                settings.telephony_queue_name,
            )
        except TelephonyError as e:
            logger.error("Auto-connect failed: %s", e)

    yield
    logger.info("Shutting down %s", settings.app_name)
    await state.disconnect()


# =============================================================================
# APP
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description="Queue Pulse — contact-center queue telemetry API",
    version="0.2.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Log all requests for debugging."""
    logger.debug("%s %s", request.method, request.url.path)
    response = await call_next(request)
    return response


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# =============================================================================
# ROUTERS
# =============================================================================

app.include_router(dashboard.router, prefix="/dashboard", tags=["Dashboard"])


# =============================================================================
# ROOT / HEALTH
# =============================================================================


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {"service": settings.app_name, "status": "ok"}


@app.get("/health")
async def health(request: Request) -> dict[str, str]:
    """Health check."""
    state: DashboardState = request.app.state.dashboard
    return {
        "status": "healthy",
        "service": settings.app_name,
        "queue": state.queue_name or "",
    }
