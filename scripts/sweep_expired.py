#!/usr/bin/env python
"""
Sweep Expired
One-shot expiry sweep for deployments that run it from cron
"""

import sys
import os
import argparse
import asyncio
import logging
from datetime import datetime, timezone

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import settings
from database import init_db
from services.expiry_service import expiry_service


logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL), format=settings.LOG_FORMAT)
logger = logging.getLogger(__name__)


def parse_now(value: str) -> datetime:
    """ISO timestamp; naive values are taken as UTC"""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def main():
    parser = argparse.ArgumentParser(
        description="Expire overdue pending/started schedule events"
    )
    parser.add_argument(
        "--now",
        type=parse_now,
        default=None,
        help="Sweep time as ISO timestamp (default: current UTC time)"
    )

    args = parser.parse_args()

    init_db()
    expired = asyncio.run(expiry_service.sweep_expired(now=args.now))
    print(f"Expired {expired} events")


if __name__ == "__main__":
    main()
