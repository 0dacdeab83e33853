"""
Storage-level errors shared by every document store adapter.
"""


class TransportError(Exception):
    """The store could not be reached or the write was not confirmed. Safe to retry."""

    def __init__(self, message: str, path: str = ""):
        super().__init__(message)
        self.path = path


class StoreUnavailableError(TransportError):
    """Raised without touching the store while the circuit breaker is open"""
    pass


class InvalidPathError(ValueError):
    """A store path is empty or contains a forbidden segment"""
    pass
