"""
Templates API Router
Endpoints for recurrence template management and materialization
"""

from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session

from api.deps import get_db, http_error, services
from api.schemas.template import (
    VitalTypeCreate,
    VitalTypeResponse,
    TemplateCreate,
    TemplateResponse,
    TemplateCreateResponse,
    MaterializeRequest,
    MaterializeResponse,
    MaterializeDueRequest,
    MaterializeDueResponse,
    TemplateExtend,
    TemplateReschedule,
    RescheduleResponse,
    TemplateRetire,
    RetireResponse,
    TemplateProgress,
    PriorEventsImport,
    PriorEventsResponse,
)
from exceptions import CareEngineError
from models import OwnerType


router = APIRouter(prefix="/templates", tags=["templates"])
vital_types_router = APIRouter(prefix="/vital-types", tags=["vital-types"])


# ==================== VITAL TYPES ====================

@vital_types_router.post("/", response_model=VitalTypeResponse, status_code=status.HTTP_201_CREATED)
async def create_vital_type(
    vital_type_data: VitalTypeCreate,
    db: Session = Depends(get_db)
):
    """
    Register a vital sign with its unit and normal range
    """
    template_service = services.get_template_service()
    try:
        return await template_service.create_vital_type(db=db, **vital_type_data.model_dump())
    except CareEngineError as e:
        raise http_error(e)


@vital_types_router.get("/", response_model=List[VitalTypeResponse])
async def list_vital_types(db: Session = Depends(get_db)):
    """
    List registered vital types
    """
    template_service = services.get_template_service()
    return await template_service.get_vital_types(db=db)


# ==================== TEMPLATES ====================

@router.post("/", response_model=TemplateCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_template(
    template_data: TemplateCreate,
    db: Session = Depends(get_db)
):
    """
    Create a recurrence template and materialize its first occurrences

    Returns 400 for a malformed recurrence rule.
    """
    template_service = services.get_template_service()
    materializer_service = services.get_materializer_service()

    data = template_data.model_dump(exclude={"materialize_through"})
    try:
        template = await template_service.create_template(db=db, **data)
        through = template_data.materialize_through or materializer_service.default_horizon(template)
        event_ids = await materializer_service.materialize(template.id, through, db=db)
    except CareEngineError as e:
        raise http_error(e)

    db.refresh(template)
    return {
        "template": template,
        "event_ids": event_ids,
        "events_created": len(event_ids)
    }


@router.post("/materialize-due", response_model=MaterializeDueResponse)
async def materialize_due(
    request: MaterializeDueRequest,
    db: Session = Depends(get_db)
):
    """
    Materialize every active template through a date (nightly batch)
    """
    materializer_service = services.get_materializer_service()
    return await materializer_service.materialize_due(request.through_date, db=db)


@router.get("/patient/{patient_id}", response_model=List[TemplateResponse])
async def get_patient_templates(
    patient_id: int,
    owner_type: Optional[OwnerType] = Query(None, description="Filter by owner type"),
    active_only: bool = Query(True, description="Hide retired templates"),
    db: Session = Depends(get_db)
):
    """
    Get all templates for a patient
    """
    template_service = services.get_template_service()
    return await template_service.get_patient_templates(
        patient_id=patient_id,
        owner_type=owner_type,
        active_only=active_only,
        db=db
    )


@router.get("/{template_id}", response_model=TemplateResponse)
async def get_template(
    template_id: int,
    db: Session = Depends(get_db)
):
    """
    Get template by ID
    """
    template_service = services.get_template_service()
    template = await template_service.get_template(template_id, db=db)

    if not template:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Template {template_id} not found"
        )

    return template


@router.post("/{template_id}/materialize", response_model=MaterializeResponse)
async def materialize_template(
    template_id: int,
    request: MaterializeRequest,
    db: Session = Depends(get_db)
):
    """
    Materialize occurrences through a date; repeated calls create nothing new
    """
    materializer_service = services.get_materializer_service()
    try:
        event_ids = await materializer_service.materialize(template_id, request.through_date, db=db)
    except CareEngineError as e:
        raise http_error(e)

    return {
        "template_id": template_id,
        "through_date": request.through_date,
        "event_ids": event_ids,
        "events_created": len(event_ids)
    }


@router.post("/{template_id}/prior", response_model=PriorEventsResponse, status_code=status.HTTP_201_CREATED)
async def import_prior_events(
    template_id: int,
    request: PriorEventsImport,
    db: Session = Depends(get_db)
):
    """
    Import historical occurrences for reconciliation
    """
    materializer_service = services.get_materializer_service()
    try:
        event_ids = await materializer_service.import_prior_events(template_id, request.dates, db=db)
    except CareEngineError as e:
        raise http_error(e)

    return {
        "template_id": template_id,
        "event_ids": event_ids,
        "events_imported": len(event_ids)
    }


@router.put("/{template_id}/extend", response_model=TemplateResponse)
async def extend_template(
    template_id: int,
    request: TemplateExtend,
    db: Session = Depends(get_db)
):
    """
    Move a template's end date forward
    """
    template_service = services.get_template_service()
    try:
        return await template_service.extend_template(template_id, request.end_date, db=db)
    except CareEngineError as e:
        raise http_error(e)


@router.put("/{template_id}/reschedule", response_model=RescheduleResponse)
async def reschedule_template(
    template_id: int,
    request: TemplateReschedule,
    db: Session = Depends(get_db)
):
    """
    Change the time of day; pending events from `effective_from` move with it
    """
    template_service = services.get_template_service()
    try:
        return await template_service.reschedule_template(
            template_id,
            request.time_of_day,
            effective_from=request.effective_from,
            db=db
        )
    except CareEngineError as e:
        raise http_error(e)


@router.post("/{template_id}/retire", response_model=RetireResponse)
async def retire_template(
    template_id: int,
    request: TemplateRetire,
    db: Session = Depends(get_db)
):
    """
    Retire a template; pending events after `as_of` are cancelled
    """
    template_service = services.get_template_service()
    try:
        return await template_service.retire_template(template_id, as_of=request.as_of, db=db)
    except CareEngineError as e:
        raise http_error(e)


@router.get("/{template_id}/progress", response_model=TemplateProgress)
async def get_template_progress(
    template_id: int,
    db: Session = Depends(get_db)
):
    """
    Total and remaining occurrence counts
    """
    template_service = services.get_template_service()
    try:
        return await template_service.get_template_progress(template_id, db=db)
    except CareEngineError as e:
        raise http_error(e)
