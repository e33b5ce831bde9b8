"""
Services Module
Business logic layer for the CareAdherence engine
"""

from services.template_service import TemplateService, template_service
from services.materializer_service import MaterializerService, materializer_service
from services.lifecycle_service import LifecycleService, lifecycle_service
from services.expiry_service import ExpiryService, ExpirySweeper, expiry_service
from services.adherence_service import AdherenceService, AdherenceSnapshot, adherence_service


__all__ = [
    # Service classes
    "TemplateService",
    "MaterializerService",
    "LifecycleService",
    "ExpiryService",
    "ExpirySweeper",
    "AdherenceService",
    "AdherenceSnapshot",
    # Singleton instances
    "template_service",
    "materializer_service",
    "lifecycle_service",
    "expiry_service",
    "adherence_service",
]
