"""Exception types raised across the REST boundary and the sync engine."""

from __future__ import annotations


class PartySyncError(Exception):
    """Base class for PartySync errors."""


class GameApiTransportError(PartySyncError):
    """Raised when a request never produced an HTTP response (network, timeout)."""


class SessionFatalError(PartySyncError):
    """Raised when the session is gone or the player lost access to it."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ResultsAccessError(SessionFatalError):
    """Raised when the results endpoint refuses access (401/403)."""
