"""
Tools Package
Pure helpers for the CareAdherence engine
"""

from .timeutils import (
    utcnow,
    to_naive_utc,
    get_zone,
    local_to_utc,
    occurrence_window
)

from .recurrence import (
    RecurrenceRule,
    validate_recurrence,
    expand,
    count_occurrences
)

from .notification_service import (
    SignalType,
    NotificationPriority,
    EventSignal,
    EventDispatcher,
    log_signal,
    event_dispatcher
)

__all__ = [
    # Time
    "utcnow",
    "to_naive_utc",
    "get_zone",
    "local_to_utc",
    "occurrence_window",

    # Recurrence
    "RecurrenceRule",
    "validate_recurrence",
    "expand",
    "count_occurrences",

    # Notifications
    "SignalType",
    "NotificationPriority",
    "EventSignal",
    "EventDispatcher",
    "log_signal",
    "event_dispatcher"
]
