"""
CareAdherence Test Suite
========================

This package contains all tests for the CareAdherence recurrence, lifecycle
and adherence engine.

Test Structure:
- test_api/: API endpoint tests for FastAPI routes
- test_services/: Service tests against an in-memory SQLite database
- test_tools/: Recurrence, time and signal dispatch tests
- conftest.py: Shared pytest fixtures

Running Tests:
    # Run all tests
    pytest

    # Run specific test module
    pytest tests/test_services/

    # Run with verbose output
    pytest -v

    # Run only marked tests
    pytest -m "unit"
    pytest -m "database"
"""
