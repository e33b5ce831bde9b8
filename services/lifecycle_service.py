"""
Lifecycle Service
Guarded state transitions for individual schedule events
"""

import logging
from typing import Dict, Optional, Any, Sequence
from datetime import datetime
from sqlalchemy.orm import Session
from sqlalchemy import and_

from database import get_db_context
import models
from models import EventStatus
from exceptions import EventNotFoundError, InvalidPayloadError, InvalidStateTransitionError
from payloads import VitalPayload, parse_payload
from tools.notification_service import EventDispatcher, EventSignal, SignalType, event_dispatcher
from tools.timeutils import to_naive_utc, utcnow


logger = logging.getLogger(__name__)


def get_event_or_raise(session: Session, event_id: int) -> models.ScheduleEvent:
    event = session.query(models.ScheduleEvent).filter(
        models.ScheduleEvent.id == event_id
    ).first()
    if not event:
        raise EventNotFoundError(f"Event {event_id} not found")
    return event


def conditional_transition(
    session: Session,
    event_id: int,
    sources: Sequence[EventStatus],
    values: Dict[str, Any]
) -> bool:
    """
    UPDATE schedule_events SET ... WHERE id = :id AND status IN (:sources)

    The single statement is the whole transition: of any number of racing
    callers exactly one sees a row affected.
    """
    updated = session.query(models.ScheduleEvent).filter(
        and_(
            models.ScheduleEvent.id == event_id,
            models.ScheduleEvent.status.in_(list(sources))
        )
    ).update(values, synchronize_session=False)
    return updated == 1


class LifecycleService:
    """
    Service for event state transitions

    pending -> started | completed | cancelled
    started -> completed | cancelled
    prior   -> completed | cancelled | expired
    (pending/started -> expired belongs to the expiry sweeper)
    """

    def __init__(self, dispatcher: Optional[EventDispatcher] = None):
        self.dispatcher = dispatcher or event_dispatcher

    def _transition(
        self,
        session: Session,
        event_id: int,
        attempted: str,
        sources: Sequence[EventStatus],
        values: Dict[str, Any]
    ) -> models.ScheduleEvent:
        if not conditional_transition(session, event_id, sources, values):
            session.rollback()
            current = session.query(models.ScheduleEvent.status).filter(
                models.ScheduleEvent.id == event_id
            ).scalar()
            if current is None:
                raise EventNotFoundError(f"Event {event_id} not found")
            status = current.value if isinstance(current, EventStatus) else current
            logger.warning(f"Rejected {attempted} of event {event_id} in status '{status}'")
            raise InvalidStateTransitionError(event_id, status, attempted)

        session.commit()
        event = get_event_or_raise(session, event_id)
        session.refresh(event)
        return event

    async def start_event(
        self,
        event_id: int,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> models.ScheduleEvent:
        """
        Mark a pending event as started (owner checked in)

        Raises:
            InvalidStateTransitionError: event is not pending
            EventNotFoundError: unknown event
        """
        def _start(session: Session) -> models.ScheduleEvent:
            ts = to_naive_utc(now) if now else utcnow()
            event = self._transition(
                session, event_id, "start", models.START_SOURCES,
                {"status": EventStatus.STARTED, "started_at": ts, "updated_at": ts}
            )
            logger.info(f"Started event {event_id}")
            return event

        if db:
            return _start(db)

        with get_db_context() as session:
            return _start(session)

    async def complete_event(
        self,
        event_id: int,
        payload: Any,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> models.ScheduleEvent:
        """
        Complete an event with an owner-specific payload

        Args:
            event_id: Event ID
            payload: Medication / vital / appointment payload (model or dict)
            now: Completion time, defaults to the current UTC time
            db: Database session

        Returns:
            The completed event

        Raises:
            InvalidPayloadError: payload does not fit the owner type of an open event
            InvalidStateTransitionError: event already terminal (a duplicate
                retry of a successful completion lands here too)
            EventNotFoundError: unknown event
        """
        def _complete(session: Session) -> models.ScheduleEvent:
            # owner_type and the template link never change after insert
            event = get_event_or_raise(session, event_id)

            # A retry against a resolved event is a state conflict, whatever its payload;
            # the conditional update below still decides any race after this read
            if event.status not in models.COMPLETE_SOURCES:
                logger.warning(f"Rejected complete of event {event_id} in status '{event.status.value}'")
                raise InvalidStateTransitionError(event_id, event.status.value, "complete")

            parsed = parse_payload(event.owner_type, payload)

            flagged = False
            if isinstance(parsed, VitalPayload):
                flagged = self._check_vital(session, event, parsed)

            ts = to_naive_utc(now) if now else utcnow()
            event = self._transition(
                session, event_id, "complete", models.COMPLETE_SOURCES,
                {
                    "status": EventStatus.COMPLETED,
                    "completed_at": ts,
                    "completion_payload": parsed.model_dump(mode="json"),
                    "flagged": flagged,
                    "updated_at": ts
                }
            )

            logger.info(f"Completed {event.owner_type.value} event {event_id}")
            self.dispatcher.emit(EventSignal.from_event(
                SignalType.EVENT_COMPLETED, event,
                payload=event.completion_payload, flagged=flagged
            ))
            return event

        if db:
            return _complete(db)

        with get_db_context() as session:
            return _complete(session)

    def _check_vital(
        self,
        session: Session,
        event: models.ScheduleEvent,
        payload: VitalPayload
    ) -> bool:
        """Validate the unit and return True when the reading is out of range"""
        vital_type = session.query(models.VitalType).join(
            models.RecurrenceTemplate,
            models.RecurrenceTemplate.vital_type_id == models.VitalType.id
        ).filter(
            models.RecurrenceTemplate.id == event.template_id
        ).first()

        if not vital_type:
            return False

        if vital_type.unit and payload.unit.strip().lower() != vital_type.unit.strip().lower():
            raise InvalidPayloadError(
                f"Unit '{payload.unit}' does not match {vital_type.name} unit '{vital_type.unit}'"
            )

        flagged = not vital_type.is_normal(payload.value)
        if flagged:
            logger.warning(
                f"{vital_type.name} reading {payload.value} {payload.unit} outside normal range "
                f"for event {event.id}"
            )
        return flagged

    async def cancel_event(
        self,
        event_id: int,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> models.ScheduleEvent:
        """
        Cancel an open event, recording why

        Raises:
            InvalidStateTransitionError: event already completed, cancelled or expired
            EventNotFoundError: unknown event
        """
        def _cancel(session: Session) -> models.ScheduleEvent:
            ts = to_naive_utc(now) if now else utcnow()
            event = self._transition(
                session, event_id, "cancel", models.CANCEL_SOURCES,
                {
                    "status": EventStatus.CANCELLED,
                    "cancelled_at": ts,
                    "cancel_reason": reason,
                    "updated_at": ts
                }
            )
            logger.info(f"Cancelled event {event_id}: {reason or 'no reason given'}")
            return event

        if db:
            return _cancel(db)

        with get_db_context() as session:
            return _cancel(session)

    async def expire_prior_event(
        self,
        event_id: int,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> models.ScheduleEvent:
        """Reconcile an imported `prior` event as missed"""
        def _expire(session: Session) -> models.ScheduleEvent:
            ts = to_naive_utc(now) if now else utcnow()
            event = self._transition(
                session, event_id, "expire", (EventStatus.PRIOR,),
                {"status": EventStatus.EXPIRED, "expired_at": ts, "updated_at": ts}
            )
            logger.info(f"Reconciled prior event {event_id} as expired")
            return event

        if db:
            return _expire(db)

        with get_db_context() as session:
            return _expire(session)

    async def get_event(
        self,
        event_id: int,
        db: Optional[Session] = None
    ) -> Optional[models.ScheduleEvent]:
        """Get event by ID"""
        def _get(session: Session) -> Optional[models.ScheduleEvent]:
            return session.query(models.ScheduleEvent).filter(
                models.ScheduleEvent.id == event_id
            ).first()

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)


# Singleton instance
lifecycle_service = LifecycleService()
