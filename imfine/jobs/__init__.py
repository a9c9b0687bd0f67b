"""
Background Jobs for ImFine.

This module contains scheduled jobs:
- checkin_monitor: Minute-by-minute check-in transition scan
"""

from .checkin_monitor import run_monitor_job

__all__ = ["run_monitor_job"]
