"""
API Dependencies
Common dependencies and error translation for FastAPI endpoints
"""

from typing import Tuple, Type
from fastapi import HTTPException, status

from database import get_db  # noqa: F401  (re-exported for routers)
from exceptions import (
    AggregationError,
    CareEngineError,
    EventNotFoundError,
    InvalidPayloadError,
    InvalidRecurrenceError,
    InvalidStateTransitionError,
    MaterializationPartialFailureError,
    TemplateNotFoundError,
)


# Engine error -> HTTP status, first match wins
ERROR_STATUS_CODES: Tuple[Tuple[Type[CareEngineError], int], ...] = (
    (InvalidRecurrenceError, status.HTTP_400_BAD_REQUEST),
    (InvalidPayloadError, status.HTTP_400_BAD_REQUEST),
    (TemplateNotFoundError, status.HTTP_404_NOT_FOUND),
    (EventNotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidStateTransitionError, status.HTTP_409_CONFLICT),
    (MaterializationPartialFailureError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (AggregationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def error_status_code(exc: CareEngineError) -> int:
    for error_type, code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def http_error(exc: CareEngineError) -> HTTPException:
    """Translate an engine error for endpoints that handle it inline"""
    return HTTPException(status_code=error_status_code(exc), detail=str(exc))


class ServiceDependency:
    """
    Dependency injection for services
    """

    @staticmethod
    def get_template_service():
        from services.template_service import template_service
        return template_service

    @staticmethod
    def get_materializer_service():
        from services.materializer_service import materializer_service
        return materializer_service

    @staticmethod
    def get_lifecycle_service():
        from services.lifecycle_service import lifecycle_service
        return lifecycle_service

    @staticmethod
    def get_expiry_service():
        from services.expiry_service import expiry_service
        return expiry_service

    @staticmethod
    def get_adherence_service():
        from services.adherence_service import adherence_service
        return adherence_service


# Service dependency instances
services = ServiceDependency()
