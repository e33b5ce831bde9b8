"""
API Module
FastAPI routers for the CareAdherence engine
"""

from api.templates import router as templates_router, vital_types_router
from api.events import router as events_router
from api.adherence import router as adherence_router

from api.deps import (
    get_db,
    error_status_code,
    http_error,
    services,
)


__all__ = [
    # Routers
    "templates_router",
    "vital_types_router",
    "events_router",
    "adherence_router",
    # Dependencies
    "get_db",
    "error_status_code",
    "http_error",
    "services",
]


def include_routers(app, prefix: str = "/api/v1"):
    """
    Include all API routers in the FastAPI app

    Usage:
        from api import include_routers
        include_routers(app)
    """
    app.include_router(templates_router, prefix=prefix)
    app.include_router(vital_types_router, prefix=prefix)
    app.include_router(events_router, prefix=prefix)
    app.include_router(adherence_router, prefix=prefix)
