"""
Materializer Service
Turns recurrence templates into persisted schedule events, idempotently
"""

import logging
from typing import Dict, List, Optional, Any, Iterable
from datetime import date, timedelta
from sqlalchemy.orm import Session
from sqlalchemy import and_, or_, insert
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from config import settings
from database import get_db_context
import models
from models import EventStatus
from exceptions import MaterializationPartialFailureError, TemplateNotFoundError
from services.template_service import get_template_or_raise
from tools.recurrence import expand
from tools.timeutils import occurrence_window, utcnow


logger = logging.getLogger(__name__)


def _event_values(
    template: models.RecurrenceTemplate,
    occurrence_date: date,
    status: EventStatus
) -> Dict[str, Any]:
    start, end = occurrence_window(
        occurrence_date,
        template.time_of_day,
        template.timezone,
        settings.EVENT_GRACE_MINUTES
    )
    now = utcnow()
    return {
        "template_id": template.id,
        "patient_id": template.patient_id,
        "owner_type": template.owner_type,
        "owner_id": template.owner_id,
        "critical": template.critical,
        "occurrence_date": occurrence_date,
        "scheduled_start": start,
        "scheduled_end": end,
        "status": status,
        "flagged": False,
        "created_at": now,
        "updated_at": now,
    }


def insert_if_absent(session: Session, values: Dict[str, Any]) -> Optional[int]:
    """
    Atomically insert one event unless (template_id, occurrence_date) exists

    Returns:
        The new event id, or None when the row already existed
    """
    table = models.ScheduleEvent.__table__
    dialect = session.get_bind().dialect.name

    if dialect in ("sqlite", "postgresql"):
        dialect_insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
        stmt = dialect_insert(table).values(**values).on_conflict_do_nothing(
            index_elements=["template_id", "occurrence_date"]
        ).returning(table.c.id)
        return session.execute(stmt).scalar_one_or_none()

    # Generic path: the unique constraint decides
    try:
        result = session.execute(insert(table).values(**values))
    except IntegrityError:
        session.rollback()
        return None
    return result.inserted_primary_key[0]


class MaterializerService:
    """
    Service for event materialization
    """

    def _advance_watermark(
        self,
        session: Session,
        template_id: int,
        through: date
    ) -> bool:
        """Move the watermark forward only; never overwrite a later value"""
        updated = session.query(models.RecurrenceTemplate).filter(
            and_(
                models.RecurrenceTemplate.id == template_id,
                or_(
                    models.RecurrenceTemplate.last_materialized_through.is_(None),
                    models.RecurrenceTemplate.last_materialized_through < through
                )
            )
        ).update(
            {"last_materialized_through": through},
            synchronize_session=False
        )
        return updated == 1

    def _materialize(
        self,
        session: Session,
        template_id: int,
        through_date: date
    ) -> List[int]:
        template = get_template_or_raise(session, template_id)

        through = through_date
        if template.retired_at is not None:
            through = min(through, template.retired_at.date())

        window_start = template.last_materialized_through or template.start_date
        if through < window_start:
            logger.debug(
                f"Template {template_id} already materialized through "
                f"{template.last_materialized_through}"
            )
            return []

        # Plain values up front; a failed commit expires the ORM row
        candidates = expand(template, window_start, through)
        values = [_event_values(template, d, EventStatus.PENDING) for d in candidates]

        # Each insert commits on its own so a failure keeps everything before it
        created: List[int] = []
        last_done: Optional[date] = None
        try:
            for row in values:
                event_id = insert_if_absent(session, row)
                session.commit()
                if event_id is not None:
                    created.append(event_id)
                last_done = row["occurrence_date"]
        except SQLAlchemyError as e:
            session.rollback()
            logger.exception(
                f"Storage error materializing template {template_id}; "
                f"stopping after {last_done}"
            )
            self._save_partial_watermark(session, template_id, last_done)
            raise MaterializationPartialFailureError(
                template_id, last_done, created, cause=e
            ) from e

        self._advance_watermark(session, template_id, through)
        session.commit()

        if created:
            logger.info(
                f"Materialized {len(created)} events for template {template_id} "
                f"through {through_date}"
            )
        return created

    def _save_partial_watermark(
        self,
        session: Session,
        template_id: int,
        last_done: Optional[date]
    ) -> None:
        """
        Move the watermark to the last date that was inserted. If storage is
        still failing the watermark simply stays behind; the retry re-inserts
        nothing it already has.
        """
        if last_done is None:
            return
        try:
            self._advance_watermark(session, template_id, last_done)
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            logger.exception(f"Could not save partial watermark for template {template_id}")

    async def materialize(
        self,
        template_id: int,
        through_date: date,
        db: Optional[Session] = None
    ) -> List[int]:
        """
        Materialize a template's occurrences through a date

        Safe to call repeatedly and concurrently: every row is an
        insert-if-absent on (template_id, occurrence_date), so a second call
        with the same arguments creates nothing.

        Args:
            template_id: Template ID
            through_date: Last date to materialize (inclusive)
            db: Database session

        Returns:
            IDs of newly created events (empty when nothing was missing)

        Raises:
            TemplateNotFoundError: unknown template
            MaterializationPartialFailureError: storage failure mid-batch
        """
        if db:
            return self._materialize(db, template_id, through_date)

        with get_db_context() as session:
            return self._materialize(session, template_id, through_date)

    async def materialize_due(
        self,
        through_date: date,
        db: Optional[Session] = None
    ) -> Dict[str, Any]:
        """
        Nightly batch: materialize every active template through a date

        A failing template is logged and reported; the batch carries on
        with the rest and the scheduler retries the failures next run.
        """
        def _run(session: Session) -> Dict[str, Any]:
            template_ids = [
                row.id for row in session.query(models.RecurrenceTemplate.id).filter(
                    and_(
                        models.RecurrenceTemplate.retired_at.is_(None),
                        or_(
                            models.RecurrenceTemplate.last_materialized_through.is_(None),
                            models.RecurrenceTemplate.last_materialized_through < through_date
                        )
                    )
                ).order_by(models.RecurrenceTemplate.id).all()
            ]

            created: Dict[int, int] = {}
            failed: Dict[int, str] = {}
            for template_id in template_ids:
                try:
                    created[template_id] = len(
                        self._materialize(session, template_id, through_date)
                    )
                except (MaterializationPartialFailureError, TemplateNotFoundError) as e:
                    failed[template_id] = str(e)

            logger.info(
                f"Materialization batch through {through_date}: "
                f"{sum(created.values())} events over {len(created)} templates, "
                f"{len(failed)} failed"
            )
            return {
                "through_date": through_date.isoformat(),
                "templates_processed": len(template_ids),
                "events_created": sum(created.values()),
                "created_by_template": created,
                "failed": failed
            }

        if db:
            return _run(db)

        with get_db_context() as session:
            return _run(session)

    async def import_prior_events(
        self,
        template_id: int,
        dates: Iterable[date],
        db: Optional[Session] = None
    ) -> List[int]:
        """
        Import historical occurrences as `prior` events for reconciliation

        Dates already present for the template are left untouched.
        """
        def _import(session: Session) -> List[int]:
            template = get_template_or_raise(session, template_id)
            created = []
            for occurrence_date in sorted(set(dates)):
                event_id = insert_if_absent(
                    session, _event_values(template, occurrence_date, EventStatus.PRIOR)
                )
                session.commit()
                if event_id is not None:
                    created.append(event_id)

            logger.info(f"Imported {len(created)} prior events for template {template_id}")
            return created

        if db:
            return _import(db)

        with get_db_context() as session:
            return _import(session)

    def default_horizon(self, template: models.RecurrenceTemplate, today: Optional[date] = None) -> date:
        """Initial materialization horizon used when a template is created"""
        current = today or utcnow().date()
        horizon = max(current, template.start_date) + timedelta(days=settings.MATERIALIZE_HORIZON_DAYS)
        return min(horizon, template.end_date)


# Singleton instance
materializer_service = MaterializerService()
