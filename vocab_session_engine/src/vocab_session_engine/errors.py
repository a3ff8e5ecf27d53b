"""
Session Engine Errors

Exceptions raised for caller mistakes. Remote and storage failures are never
raised to callers; they are logged and reported through result objects.
"""


class SessionEngineError(Exception):
    """Base class for all session engine errors."""


class EmptyAnswerError(SessionEngineError, ValueError):
    """Answer is empty after normalization - caller must re-prompt."""


class ItemLockedError(SessionEngineError):
    """Item already has a stored answer and cannot be answered again."""

    def __init__(self, item_id: str):
        super().__init__(f"Item {item_id} is already answered")
        self.item_id = item_id


class PhaseError(SessionEngineError):
    """Operation not allowed in the current study phase."""


class ModeError(SessionEngineError):
    """Operation not available in the session's mode."""


class SessionInUseError(SessionEngineError):
    """Another live controller already owns this session id."""

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} is already held by another controller")
        self.session_id = session_id


class SessionNotActiveError(SessionEngineError):
    """Controller has not started, or has already finished or closed."""
