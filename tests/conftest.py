"""
Pytest Configuration and Shared Fixtures
========================================

This module provides shared fixtures for all CareAdherence tests.
Fixtures include database sessions, the test client, template factories
and a recording signal dispatcher.
"""

import os
import sys
from datetime import date, time
from typing import Callable, Generator, List

# Keep the app off any real database and without a background sweeper
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SWEEPER_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base, get_db
from models import Frequency, OwnerType, RecurrenceTemplate, VitalType
from tools.notification_service import EventDispatcher, EventSignal, SignalType
from app import app


# ==================== DATABASE FIXTURES ====================

@pytest.fixture(scope="function")
def test_engine():
    """Create a test database engine with in-memory SQLite"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    # Enable foreign keys for SQLite
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    # Create all tables
    Base.metadata.create_all(bind=engine)

    yield engine

    # Cleanup
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine):
    """Session factory bound to the test engine"""
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """Create a test database session"""
    session = session_factory()

    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a FastAPI test client with database override"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


# ==================== SAMPLE DATA FIXTURES ====================

@pytest.fixture
def vital_type(db_session: Session) -> VitalType:
    """Systolic blood pressure, normal 90-140 mmHg"""
    vital = VitalType(
        name="Systolic blood pressure",
        unit="mmHg",
        normal_min=90,
        normal_max=140
    )
    db_session.add(vital)
    db_session.commit()
    db_session.refresh(vital)
    return vital


@pytest.fixture
def make_template(db_session: Session) -> Callable[..., RecurrenceTemplate]:
    """
    Factory for templates stored directly, bypassing validation.

    Defaults: daily medication for patient 1, 2025-01-01..2025-01-05 at 08:00 UTC.
    """
    def _make(**overrides) -> RecurrenceTemplate:
        data = {
            "patient_id": 1,
            "owner_type": OwnerType.MEDICATION,
            "owner_id": 1,
            "title": "Metformin 500mg",
            "start_date": date(2025, 1, 1),
            "end_date": date(2025, 1, 5),
            "frequency": Frequency.DAILY,
            "interval": 1,
            "days_of_week": None,
            "time_of_day": time(8, 0),
            "timezone": "UTC",
            "critical": False,
        }
        data.update(overrides)
        template = RecurrenceTemplate(**data)
        db_session.add(template)
        db_session.commit()
        db_session.refresh(template)
        return template

    return _make


@pytest.fixture
def recorded_signals() -> List[EventSignal]:
    return []


@pytest.fixture
def dispatcher(recorded_signals: List[EventSignal]) -> EventDispatcher:
    """Dispatcher that records every signal it receives"""
    events = EventDispatcher()
    for signal_type in SignalType:
        events.subscribe(signal_type, recorded_signals.append)
    return events


# ==================== PYTEST CONFIGURATION ====================

def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")
    config.addinivalue_line("markers", "api: mark test as an API test")
    config.addinivalue_line("markers", "database: mark test as requiring database")
