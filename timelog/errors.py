"""Error taxonomy shared by the timer, the reconciler and the store adapters."""

from __future__ import annotations

from typing import Optional


class TimeLogError(RuntimeError):
    """Base class for all tracking errors."""

    def __init__(self, message: str, *, session_id: Optional[int] = None) -> None:
        super().__init__(message)
        self.session_id = session_id


class ValidationError(TimeLogError):
    """Input is incomplete or malformed; the store was never contacted."""


class ConflictError(TimeLogError):
    """An open session already exists for the user.

    Callers should reconcile against the store instead of retrying the start.
    """


class NotFoundError(TimeLogError):
    """The session is unknown to the store or has already been closed."""


class PersistenceError(TimeLogError):
    """Generic store or transport failure. Never retried automatically."""


__all__ = [
    "TimeLogError",
    "ValidationError",
    "ConflictError",
    "NotFoundError",
    "PersistenceError",
]
