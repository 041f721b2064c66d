"""
Core package for the session integrity engine.

Contains the headless SessionEngine state machine, its timers and the
collaborator interfaces. Zero UI dependencies.
"""

from core.engine import SessionEngine

__all__ = ["SessionEngine"]
