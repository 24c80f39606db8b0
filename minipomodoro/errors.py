"""
Error types shared by the timer, the store and the coordinator.

Programmer errors (double start, calling before the session is loaded) derive
from RuntimeError. Everything that can go wrong with local storage derives from
PersistenceError so callers can catch one type.
"""


class AlreadyRunningError(RuntimeError):
    """Raised when starting or resuming a countdown that is already running."""


class NotReadyError(RuntimeError):
    """Raised when the session is used before its startup sequence finished."""


class PersistenceError(Exception):
    """Base class for local storage failures."""


class StoreOpenError(PersistenceError):
    pass


class ReadError(PersistenceError):
    pass


class WriteError(PersistenceError):
    pass


class UnknownCollectionError(PersistenceError):
    pass
