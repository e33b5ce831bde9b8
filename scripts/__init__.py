"""
Scripts for CareAdherence
Operational entry points: nightly materialization, expiry sweep, demo seeding
"""

from .seed_data import seed_all
from .materialize_templates import run_materialization

__all__ = [
    "seed_all",
    "run_materialization"
]
