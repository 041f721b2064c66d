"""Persistence collaborator for session records."""

from storage.session_store import SessionStore

__all__ = ["SessionStore"]
