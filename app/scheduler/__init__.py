"""Scheduling module for the periodic pending fan-out sweep."""

from .service import SweepScheduler

__all__ = [
    "SweepScheduler",
]
