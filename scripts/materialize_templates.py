#!/usr/bin/env python
"""
Materialize Templates
Nightly batch: expand every active template into schedule events
"""

import sys
import os
import argparse
import asyncio
import logging
from datetime import date, timedelta

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import settings
from database import init_db
from services.materializer_service import materializer_service
from tools.timeutils import utcnow


logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL), format=settings.LOG_FORMAT)
logger = logging.getLogger(__name__)


def run_materialization(through_date: date) -> dict:
    """Run one batch and return its summary"""
    init_db()
    summary = asyncio.run(materializer_service.materialize_due(through_date))

    for template_id, reason in summary["failed"].items():
        logger.error(f"Template {template_id} failed: {reason}")

    print(
        f"Materialized {summary['events_created']} events across "
        f"{summary['templates_processed']} templates through {summary['through_date']}"
    )
    return summary


def main():
    parser = argparse.ArgumentParser(
        description="Materialize schedule events for all active templates"
    )
    parser.add_argument(
        "--through",
        type=date.fromisoformat,
        default=None,
        help="Last date to materialize, YYYY-MM-DD (default: today + horizon)"
    )
    parser.add_argument(
        "--horizon-days",
        type=int,
        default=settings.MATERIALIZE_HORIZON_DAYS,
        help=f"Days ahead of today when --through is omitted (default: {settings.MATERIALIZE_HORIZON_DAYS})"
    )

    args = parser.parse_args()

    through = args.through or utcnow().date() + timedelta(days=args.horizon_days)
    summary = run_materialization(through)

    # Non-zero exit lets the scheduler retry failed templates
    sys.exit(1 if summary["failed"] else 0)


if __name__ == "__main__":
    main()
