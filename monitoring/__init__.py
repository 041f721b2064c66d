"""Instructor-facing monitoring: roster view, polling tick and unlocks."""

from monitoring.roster import RosterMonitor

__all__ = ["RosterMonitor"]
