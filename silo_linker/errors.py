"""
Exception taxonomy for the silo link engine.

Only ``NotFoundError`` ever escapes ``LinkGraphBuilder.generate()``; every
other error is raised inside a single edge and converted into a skip record
by the engine.
"""

from __future__ import annotations

from typing import Any, Dict


class SiloLinkerError(Exception):
    """Base exception for all silo linker errors."""

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context: Dict[str, Any] = context
        super().__init__(message)


class NotFoundError(SiloLinkerError):
    """Raised when a silo or node does not exist."""
    pass


class InvalidStateError(SiloLinkerError):
    """Raised for unpublished nodes, excluded targets or anchors, duplicate pairs."""
    pass


class NoAnchorError(SiloLinkerError):
    """Raised when no anchor candidate survives cleaning and deduplication."""
    pass


class NoAttachableTextError(SiloLinkerError):
    """Raised when the mutator cannot find body text to wrap in a link."""
    pass


class SuggesterError(SiloLinkerError):
    """Raised when the anchor suggestion service fails or is unavailable."""
    pass


class RateLimitExceeded(SuggesterError):
    """Raised when the hourly suggester request ceiling has been reached."""

    def __init__(self, message: str, limit: int = 0, window: str = ""):
        super().__init__(message, limit=limit, window=window)
        self.limit = limit
        self.window = window


class PersistError(SiloLinkerError):
    """Raised when a store write fails."""
    pass
