"""
Engine Exceptions
Error taxonomy raised by the recurrence / lifecycle / adherence services
"""

from datetime import date
from typing import List, Optional


class CareEngineError(Exception):
    """Base class for all engine errors"""


class InvalidRecurrenceError(CareEngineError, ValueError):
    """Malformed recurrence template (empty weekly day-set, bad interval, start after end)"""


class InvalidPayloadError(CareEngineError, ValueError):
    """Completion payload does not match the event's owner type"""


class InvalidStateTransitionError(CareEngineError):
    """
    Transition attempted from a terminal or disallowed source state.

    Always recoverable: the caller re-reads the event to learn its current
    status. A competing writer has already moved the event on.
    """

    def __init__(
        self,
        event_id: int,
        current_status: Optional[str],
        attempted: str
    ):
        self.event_id = event_id
        self.current_status = current_status
        self.attempted = attempted
        super().__init__(
            f"Cannot {attempted} event {event_id} from status '{current_status}'"
        )


class MaterializationPartialFailureError(CareEngineError):
    """Storage failure mid-batch; the watermark stops at the last inserted date"""

    def __init__(
        self,
        template_id: int,
        last_successful_date: Optional[date],
        created_ids: List[int],
        cause: Optional[BaseException] = None
    ):
        self.template_id = template_id
        self.last_successful_date = last_successful_date
        self.created_ids = created_ids
        self.cause = cause
        super().__init__(
            f"Materialization of template {template_id} stopped after "
            f"{last_successful_date.isoformat() if last_successful_date else 'no dates'} "
            f"({len(created_ids)} events created): {cause}"
        )


class TemplateNotFoundError(CareEngineError, LookupError):
    """Recurrence template does not exist"""


class EventNotFoundError(CareEngineError, LookupError):
    """Schedule event does not exist"""


class AggregationError(CareEngineError):
    """Adherence statistics could not be computed"""


__all__ = [
    "CareEngineError",
    "InvalidRecurrenceError",
    "InvalidPayloadError",
    "InvalidStateTransitionError",
    "MaterializationPartialFailureError",
    "TemplateNotFoundError",
    "EventNotFoundError",
    "AggregationError",
]
