"""
Test Tools Package
Tests for the tools module (recurrence expansion, time helpers, signal dispatch)
"""

__all__ = [
    "test_recurrence",
    "test_notification_service",
]
