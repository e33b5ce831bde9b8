"""
Template Service
Business logic for recurrence template creation and maintenance
"""

import logging
from typing import Dict, List, Optional, Any
from datetime import datetime, date, time
from sqlalchemy.orm import Session
from sqlalchemy import and_

from config import settings
from database import get_db_context
import models
from models import EventStatus, Frequency, OwnerType
from exceptions import InvalidRecurrenceError, TemplateNotFoundError
from tools.recurrence import validate_recurrence, count_occurrences
from tools.timeutils import get_zone, occurrence_window, utcnow


logger = logging.getLogger(__name__)


def _ensure_time(val) -> time:
    """Accept a time object or an 'HH:MM' / 'HH:MM:SS' string"""
    if isinstance(val, time):
        return val
    if isinstance(val, str):
        for fmt in ("%H:%M", "%H:%M:%S"):
            try:
                return datetime.strptime(val, fmt).time()
            except ValueError:
                continue
    raise InvalidRecurrenceError(f"Cannot parse time_of_day: {val!r}")


def get_template_or_raise(session: Session, template_id: int) -> models.RecurrenceTemplate:
    template = session.query(models.RecurrenceTemplate).filter(
        models.RecurrenceTemplate.id == template_id
    ).first()
    if not template:
        raise TemplateNotFoundError(f"Template {template_id} not found")
    return template


class TemplateService:
    """
    Service for recurrence template management
    """

    async def create_vital_type(
        self,
        name: str,
        unit: Optional[str] = None,
        normal_min: Optional[float] = None,
        normal_max: Optional[float] = None,
        description: Optional[str] = None,
        db: Optional[Session] = None
    ) -> models.VitalType:
        """
        Register a measurable vital sign and its normal range

        Raises:
            InvalidRecurrenceError: range bounds reversed or name already taken
        """
        if normal_min is not None and normal_max is not None and normal_min > normal_max:
            raise InvalidRecurrenceError(
                f"normal_min {normal_min} is greater than normal_max {normal_max}"
            )

        def _create(session: Session) -> models.VitalType:
            existing = session.query(models.VitalType).filter(
                models.VitalType.name == name
            ).first()
            if existing:
                raise InvalidRecurrenceError(f"Vital type '{name}' already exists")

            vital_type = models.VitalType(
                name=name,
                unit=unit,
                normal_min=normal_min,
                normal_max=normal_max,
                description=description
            )
            session.add(vital_type)
            session.commit()
            session.refresh(vital_type)

            logger.info(f"Created vital type {vital_type.id}: {name} ({unit or 'no unit'})")
            return vital_type

        if db:
            return _create(db)

        with get_db_context() as session:
            return _create(session)

    async def get_vital_types(self, db: Optional[Session] = None) -> List[models.VitalType]:
        def _get(session: Session) -> List[models.VitalType]:
            return session.query(models.VitalType).order_by(models.VitalType.name).all()

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def create_template(
        self,
        patient_id: int,
        owner_type: OwnerType,
        owner_id: int,
        start_date: date,
        end_date: date,
        frequency: Frequency,
        time_of_day: Any,
        interval: int = 1,
        days_of_week: Optional[List[int]] = None,
        timezone: Optional[str] = None,
        critical: bool = False,
        vital_type_id: Optional[int] = None,
        title: Optional[str] = None,
        db: Optional[Session] = None
    ) -> models.RecurrenceTemplate:
        """
        Create a recurrence template

        The recurrence shape is validated before anything is written, so a
        malformed template never reaches the materializer.

        Args:
            patient_id: Patient ID (existence checked by the caller)
            owner_type: medication, vital or appointment
            owner_id: ID of the prescribed medication / vital / appointment
            start_date: First date (inclusive)
            end_date: Last date (inclusive)
            frequency: daily, weekly or monthly
            time_of_day: Local wall-clock time for every occurrence
            interval: Every n-th day / week / month
            days_of_week: ISO weekdays 1-7, required for weekly
            timezone: IANA zone of time_of_day
            critical: Carried onto every event for alerting
            vital_type_id: Vital type used for normal-range flagging
            title: Display label
            db: Database session

        Returns:
            Created RecurrenceTemplate

        Raises:
            InvalidRecurrenceError: malformed recurrence shape
        """
        days = validate_recurrence(frequency, interval, days_of_week, start_date, end_date)
        tod = _ensure_time(time_of_day)
        tz_name = timezone or settings.DEFAULT_TIMEZONE
        try:
            get_zone(tz_name)
        except ValueError as e:
            raise InvalidRecurrenceError(str(e)) from e

        try:
            owner = OwnerType(owner_type)
        except ValueError as e:
            raise InvalidRecurrenceError(f"Unknown owner type: {owner_type!r}") from e

        def _create(session: Session) -> models.RecurrenceTemplate:
            if vital_type_id is not None:
                if owner != OwnerType.VITAL:
                    raise InvalidRecurrenceError("vital_type_id only applies to vital templates")
                vital_type = session.query(models.VitalType).filter(
                    models.VitalType.id == vital_type_id
                ).first()
                if not vital_type:
                    raise InvalidRecurrenceError(f"Vital type {vital_type_id} not found")

            template = models.RecurrenceTemplate(
                patient_id=patient_id,
                owner_type=owner,
                owner_id=owner_id,
                title=title,
                start_date=start_date,
                end_date=end_date,
                frequency=Frequency(frequency),
                interval=interval,
                days_of_week=days or None,
                time_of_day=tod,
                timezone=tz_name,
                critical=critical,
                vital_type_id=vital_type_id
            )

            session.add(template)
            session.commit()
            session.refresh(template)

            logger.info(
                f"Created {template.frequency.value} {owner.value} template {template.id} "
                f"for patient {patient_id} ({start_date} to {end_date})"
            )
            return template

        if db:
            return _create(db)

        with get_db_context() as session:
            return _create(session)

    async def get_template(
        self,
        template_id: int,
        db: Optional[Session] = None
    ) -> Optional[models.RecurrenceTemplate]:
        """Get template by ID"""
        def _get(session: Session) -> Optional[models.RecurrenceTemplate]:
            return session.query(models.RecurrenceTemplate).filter(
                models.RecurrenceTemplate.id == template_id
            ).first()

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def get_patient_templates(
        self,
        patient_id: int,
        owner_type: Optional[OwnerType] = None,
        active_only: bool = True,
        db: Optional[Session] = None
    ) -> List[models.RecurrenceTemplate]:
        """Get all templates for a patient"""
        def _get(session: Session) -> List[models.RecurrenceTemplate]:
            query = session.query(models.RecurrenceTemplate).filter(
                models.RecurrenceTemplate.patient_id == patient_id
            )
            if owner_type:
                query = query.filter(models.RecurrenceTemplate.owner_type == OwnerType(owner_type))
            if active_only:
                query = query.filter(models.RecurrenceTemplate.retired_at.is_(None))
            return query.order_by(models.RecurrenceTemplate.start_date).all()

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def extend_template(
        self,
        template_id: int,
        new_end_date: date,
        db: Optional[Session] = None
    ) -> models.RecurrenceTemplate:
        """
        Move a template's end date forward

        Raises:
            InvalidRecurrenceError: new end date is earlier than the current one,
                or the template is retired
        """
        def _extend(session: Session) -> models.RecurrenceTemplate:
            template = get_template_or_raise(session, template_id)
            if template.is_retired:
                raise InvalidRecurrenceError(f"Template {template_id} is retired")
            if new_end_date < template.end_date:
                raise InvalidRecurrenceError(
                    f"New end date {new_end_date} is before current end date {template.end_date}"
                )

            template.end_date = new_end_date
            session.commit()
            session.refresh(template)

            logger.info(f"Extended template {template_id} through {new_end_date}")
            return template

        if db:
            return _extend(db)

        with get_db_context() as session:
            return _extend(session)

    async def reschedule_template(
        self,
        template_id: int,
        time_of_day: Any,
        effective_from: Optional[date] = None,
        db: Optional[Session] = None
    ) -> Dict[str, Any]:
        """
        Change the wall-clock time of a template

        Already materialized events on or after `effective_from` move to the
        new time only while they are still pending; each row is moved by a
        conditional update so an event started or completed meanwhile keeps
        its original window.

        Returns:
            {"template_id", "time_of_day", "events_rescheduled"}
        """
        tod = _ensure_time(time_of_day)

        def _reschedule(session: Session) -> Dict[str, Any]:
            template = get_template_or_raise(session, template_id)
            if template.is_retired:
                raise InvalidRecurrenceError(f"Template {template_id} is retired")

            from_date = effective_from or utcnow().date()
            template.time_of_day = tod

            candidates = session.query(
                models.ScheduleEvent.id,
                models.ScheduleEvent.occurrence_date
            ).filter(
                and_(
                    models.ScheduleEvent.template_id == template_id,
                    models.ScheduleEvent.status == EventStatus.PENDING,
                    models.ScheduleEvent.occurrence_date >= from_date
                )
            ).all()

            moved = 0
            for event_id, occurrence_date in candidates:
                start, end = occurrence_window(
                    occurrence_date, tod, template.timezone, settings.EVENT_GRACE_MINUTES
                )
                moved += session.query(models.ScheduleEvent).filter(
                    and_(
                        models.ScheduleEvent.id == event_id,
                        models.ScheduleEvent.status == EventStatus.PENDING
                    )
                ).update(
                    {"scheduled_start": start, "scheduled_end": end, "updated_at": utcnow()},
                    synchronize_session=False
                )

            session.commit()

            logger.info(
                f"Rescheduled template {template_id} to {tod.strftime('%H:%M')} "
                f"from {from_date}; moved {moved} pending events"
            )
            return {
                "template_id": template_id,
                "time_of_day": tod.strftime("%H:%M"),
                "events_rescheduled": moved
            }

        if db:
            return _reschedule(db)

        with get_db_context() as session:
            return _reschedule(session)

    async def retire_template(
        self,
        template_id: int,
        as_of: Optional[date] = None,
        db: Optional[Session] = None
    ) -> Dict[str, Any]:
        """
        Soft-retire a template

        Pending events dated after `as_of` are cancelled with reason
        "template retired"; history up to `as_of` is kept untouched and the
        materializer never goes past `as_of` again.
        """
        def _retire(session: Session) -> Dict[str, Any]:
            template = get_template_or_raise(session, template_id)
            now = utcnow()
            cutoff = as_of or now.date()
            retired_at = now if as_of is None else datetime.combine(as_of, time.min)

            retired = session.query(models.RecurrenceTemplate).filter(
                and_(
                    models.RecurrenceTemplate.id == template_id,
                    models.RecurrenceTemplate.retired_at.is_(None)
                )
            ).update({"retired_at": retired_at}, synchronize_session=False)

            cancelled = session.query(models.ScheduleEvent).filter(
                and_(
                    models.ScheduleEvent.template_id == template_id,
                    models.ScheduleEvent.status == EventStatus.PENDING,
                    models.ScheduleEvent.occurrence_date > cutoff
                )
            ).update(
                {
                    "status": EventStatus.CANCELLED,
                    "cancelled_at": now,
                    "cancel_reason": "template retired",
                    "updated_at": now
                },
                synchronize_session=False
            )

            session.commit()
            session.refresh(template)

            if retired:
                logger.info(
                    f"Retired template {template_id} as of {cutoff}; "
                    f"cancelled {cancelled} pending events"
                )
            return {
                "template_id": template_id,
                "retired_at": template.retired_at.isoformat() if template.retired_at else None,
                "events_cancelled": cancelled
            }

        if db:
            return _retire(db)

        with get_db_context() as session:
            return _retire(session)

    async def get_template_progress(
        self,
        template_id: int,
        today: Optional[date] = None,
        db: Optional[Session] = None
    ) -> Dict[str, Any]:
        """Total and remaining occurrence counts for a template"""
        def _get(session: Session) -> Dict[str, Any]:
            template = get_template_or_raise(session, template_id)
            current = today or utcnow().date()

            total = count_occurrences(template)
            remaining = 0
            if current <= template.end_date:
                remaining = count_occurrences(template, max(current, template.start_date))

            return {
                "template_id": template_id,
                "start_date": template.start_date.isoformat(),
                "end_date": template.end_date.isoformat(),
                "total": total,
                "remaining": remaining,
                "last_materialized_through": (
                    template.last_materialized_through.isoformat()
                    if template.last_materialized_through else None
                ),
                "retired": template.is_retired
            }

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)


# Singleton instance
template_service = TemplateService()
