"""Exceptions raised by the integrity engine and its collaborators."""


class IntegrityError(Exception):
    """Base class for session integrity errors."""


class InvalidSessionError(IntegrityError):
    """
    Raised when an operation targets a session id with no backing record.

    The engine never fabricates a session; callers surface this as a
    load failure.
    """

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"No session record for id: {session_id}")


class PersistenceError(IntegrityError):
    """Raised internally by the session store when a write fails."""
