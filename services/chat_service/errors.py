"""
Error taxonomy of the consultation messaging core.
"""

from infrastructure.storage.errors import TransportError, StoreUnavailableError


class ChatServiceError(Exception):
    """Base class for errors raised by the messaging core"""
    pass


class ValidationError(ChatServiceError, ValueError):
    """Input rejected before any store call (empty text, missing participant id)"""
    pass


class NotFoundError(ChatServiceError, LookupError):
    """A conversation or profile expected to exist is absent"""

    def __init__(self, message: str, path: str = ""):
        super().__init__(message)
        self.path = path


class SessionStateError(ChatServiceError):
    """Operation not allowed in the session's current state"""
    pass


class InconsistencyWarning(UserWarning):
    """Category of the log record written when an index view lags the message log; logged, never raised"""
    pass


__all__ = [
    'ChatServiceError',
    'ValidationError',
    'NotFoundError',
    'SessionStateError',
    'InconsistencyWarning',
    'TransportError',
    'StoreUnavailableError'
]
