"""
Domain exceptions raised by the pledge engine.
"""

from typing import Optional


class PledgeEngineError(Exception):
    """Base class for engine errors"""


class SessionNotFoundError(PledgeEngineError):
    def __init__(self, session_id: int):
        super().__init__(f"Pledge session {session_id} not found")
        self.session_id = session_id


class InvalidTransitionError(PledgeEngineError):
    """Requested status change is not an edge of the session state machine"""

    def __init__(self, current: str, target: Optional[str] = None, reason: Optional[str] = None):
        if target is None:
            message = reason or f"Operation not allowed from status '{current}'"
        else:
            message = f"Cannot move session from '{current}' to '{target}'"
            if reason:
                message = f"{message}: {reason}"
        super().__init__(message)
        self.current = current
        self.target = target


class ConcurrentExecutionError(PledgeEngineError):
    """Another trigger claimed the session first"""


class ExecutionAbortedError(PledgeEngineError):
    """A phase failed before any per-pledge work began"""


class PledgeValidationError(PledgeEngineError):
    """Pledge intake rejected"""


class SessionValidationError(PledgeEngineError):
    """Session create/update rejected"""
