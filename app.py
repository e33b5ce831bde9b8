"""
CareAdherence Backend
FastAPI application for the recurrence, lifecycle and adherence engine
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Configuration and database
from config import settings
from database import init_db, DatabaseHealthCheck

from api import include_routers
from api.deps import error_status_code
from exceptions import CareEngineError
from services.expiry_service import ExpirySweeper
from tools.timeutils import utcnow

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format=settings.LOG_FORMAT
)
logger = logging.getLogger(__name__)


# ==================== LIFESPAN ====================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown"""
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"Environment: {settings.ENV}")

    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    sweeper = None
    if settings.SWEEPER_ENABLED:
        sweeper = ExpirySweeper()
        sweeper.start()
    app.state.sweeper = sweeper

    yield

    # Shutdown
    if sweeper:
        await sweeper.stop()
    logger.info(f"Shutting down {settings.APP_NAME}")


# ==================== APP INITIALIZATION ====================

app = FastAPI(
    title=settings.APP_NAME,
    description="""
    ## CareAdherence API

    Turns recurring care obligations into dated occurrences and tracks
    whether each one was honored.

    ### Features
    - **Templates**: daily / weekly / monthly recurrence for medications, vitals and appointments
    - **Materialization**: idempotent, resumable expansion into schedule events
    - **Lifecycle**: start, complete (typed payloads) and cancel with race-safe transitions
    - **Expiry sweep**: overdue events are marked missed in the background
    - **Adherence**: completion rates, vital trends and missed-event listings
    """,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Attach modular API routers (prefix /api/v1)
include_routers(app, prefix=settings.API_PREFIX)


# ==================== EXCEPTION HANDLERS ====================

@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": True,
            "message": exc.detail,
            "status_code": exc.status_code,
            "timestamp": utcnow().isoformat()
        }
    )


@app.exception_handler(CareEngineError)
async def engine_exception_handler(request, exc: CareEngineError):
    status_code = error_status_code(exc)
    if status_code >= 500:
        logger.error(f"Engine error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status_code,
        content={
            "error": True,
            "message": str(exc),
            "error_type": type(exc).__name__,
            "status_code": status_code,
            "timestamp": utcnow().isoformat()
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc: Exception):
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": True,
            "message": "An unexpected error occurred" if not settings.DEBUG else str(exc),
            "status_code": 500,
            "timestamp": utcnow().isoformat()
        }
    )


# ==================== HEALTH ENDPOINTS ====================

@app.get("/", tags=["Health"])
async def root():
    """Root endpoint - basic health check"""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "healthy",
        "timestamp": utcnow().isoformat()
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """Detailed health check endpoint"""
    db_connected = DatabaseHealthCheck.is_connected()
    sweeper = getattr(app.state, "sweeper", None)

    return {
        "status": "healthy" if db_connected else "degraded",
        "timestamp": utcnow().isoformat(),
        "checks": {
            "database": {
                "status": "up" if db_connected else "down",
                "type": "sqlite" if "sqlite" in settings.DATABASE_URL else "postgresql"
            },
            "sweeper": {
                "enabled": settings.SWEEPER_ENABLED,
                "running": bool(sweeper and sweeper.running),
                "ticks": sweeper.ticks if sweeper else 0,
                "failures": sweeper.failures if sweeper else 0
            }
        },
        "config": {
            "grace_minutes": settings.EVENT_GRACE_MINUTES,
            "sweep_interval_seconds": settings.SWEEP_INTERVAL_SECONDS,
            "materialize_horizon_days": settings.MATERIALIZE_HORIZON_DAYS
        },
        "version": settings.APP_VERSION,
        "environment": settings.ENV
    }


# ==================== MAIN ====================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
