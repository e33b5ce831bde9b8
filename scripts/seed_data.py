#!/usr/bin/env python
"""
Seed Data
Script to seed the database with a demo care plan for development
"""

import sys
import os
import argparse
import asyncio
import logging
import random
from datetime import time, timedelta

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import SessionLocal, DatabaseHealthCheck, reset_db, init_db
from models import EventStatus, Frequency, OwnerType, ScheduleEvent, VitalType
from services.template_service import template_service
from services.materializer_service import materializer_service
from services.lifecycle_service import lifecycle_service
from services.expiry_service import expiry_service
from services.adherence_service import adherence_service
from tools.timeutils import utcnow


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


VITAL_TYPES = [
    {"name": "Systolic blood pressure", "unit": "mmHg", "normal_min": 90, "normal_max": 140},
    {"name": "Heart rate", "unit": "bpm", "normal_min": 60, "normal_max": 100},
    {"name": "Blood glucose", "unit": "mg/dL", "normal_min": 70, "normal_max": 140},
]


async def seed_vital_types(db) -> dict:
    """Create the vital types used by the demo templates"""
    created = {}
    for data in VITAL_TYPES:
        existing = db.query(VitalType).filter(VitalType.name == data["name"]).first()
        created[data["name"]] = existing or await template_service.create_vital_type(db=db, **data)
    logger.info(f"Vital types ready: {', '.join(created)}")
    return created


async def seed_templates(db, patient_id: int, vital_types: dict, days: int):
    """Create a medication, a vital and an appointment template starting `days` ago"""
    start = utcnow().date() - timedelta(days=days)
    end = start + timedelta(days=90)

    metformin = await template_service.create_template(
        patient_id=patient_id,
        owner_type=OwnerType.MEDICATION,
        owner_id=1,
        title="Metformin 500mg",
        start_date=start,
        end_date=end,
        frequency=Frequency.DAILY,
        time_of_day=time(8, 0),
        db=db
    )
    blood_pressure = await template_service.create_template(
        patient_id=patient_id,
        owner_type=OwnerType.VITAL,
        owner_id=1,
        title="Morning blood pressure",
        start_date=start,
        end_date=end,
        frequency=Frequency.WEEKLY,
        days_of_week=[1, 3, 5],
        time_of_day=time(7, 30),
        vital_type_id=vital_types["Systolic blood pressure"].id,
        db=db
    )
    checkup = await template_service.create_template(
        patient_id=patient_id,
        owner_type=OwnerType.APPOINTMENT,
        owner_id=1,
        title="GP check-up",
        start_date=start,
        end_date=end,
        frequency=Frequency.MONTHLY,
        time_of_day=time(10, 0),
        critical=True,
        db=db
    )
    return [metformin, blood_pressure, checkup]


async def seed_history(db, templates, adherence: float):
    """Complete most past events and leave the rest for the sweeper"""
    today = utcnow().date()
    for template in templates:
        await materializer_service.materialize(template.id, today + timedelta(days=7), db=db)

    past_events = db.query(ScheduleEvent).filter(
        ScheduleEvent.status == EventStatus.PENDING,
        ScheduleEvent.occurrence_date < today
    ).all()

    completed = 0
    for event in past_events:
        if random.random() > adherence:
            continue
        if event.owner_type == OwnerType.MEDICATION:
            payload = {"taken": True}
        elif event.owner_type == OwnerType.VITAL:
            payload = {"value": round(random.gauss(128, 12)), "unit": "mmHg"}
        else:
            payload = {"outcome": "attended"}
        await lifecycle_service.complete_event(
            event.id, payload, now=event.scheduled_start + timedelta(minutes=10), db=db
        )
        completed += 1

    expired = await expiry_service.sweep_expired(db=db)
    logger.info(f"Completed {completed} past events, expired {expired}")


def seed_all(clear_existing: bool = False, patient_id: int = 1, days: int = 30, adherence: float = 0.8):
    """Run all seed operations"""

    print("\n" + "=" * 60)
    print("Database Seeding")
    print("=" * 60)

    if clear_existing:
        logger.info("Clearing existing data...")
        reset_db()
    else:
        init_db()

    random.seed(42)
    db = SessionLocal()

    try:
        vital_types = asyncio.run(seed_vital_types(db))
        templates = asyncio.run(seed_templates(db, patient_id, vital_types, days))
        asyncio.run(seed_history(db, templates, adherence))

        today = utcnow().date()
        window_start = today - timedelta(days=days)

        print("\n" + "=" * 60)
        print("Seeding Complete!")
        print("=" * 60)
        print(f"\nDatabase Statistics:")
        for table, count in DatabaseHealthCheck.get_table_counts().items():
            print(f"  {table}: {count}")

        for category in OwnerType:
            snapshot = asyncio.run(
                adherence_service.get_stats(patient_id, category, window_start, today, db=db)
            )
            print(
                f"  {category.value:<12} rate {snapshot.completion_rate * 100:5.1f}%  "
                f"trend {snapshot.trend.value}"
            )

        print(f"\nDemo Patient ID: {patient_id}")

    except Exception as e:
        db.rollback()
        logger.error(f"Error during seeding: {e}")
        raise
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(
        description="Seed the database with a demo care plan"
    )
    parser.add_argument(
        "--clear",
        action="store_true",
        help="Drop and recreate all tables before seeding"
    )
    parser.add_argument(
        "--patient-id",
        type=int,
        default=1,
        help="Patient ID to attach the demo templates to (default: 1)"
    )
    parser.add_argument(
        "-d", "--days",
        type=int,
        default=30,
        help="Days of history to generate (default: 30)"
    )
    parser.add_argument(
        "--adherence",
        type=float,
        default=0.8,
        help="Share of past events to complete (default: 0.8)"
    )

    args = parser.parse_args()

    seed_all(
        clear_existing=args.clear,
        patient_id=args.patient_id,
        days=args.days,
        adherence=args.adherence
    )


if __name__ == "__main__":
    main()
