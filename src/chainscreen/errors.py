"""
Exception hierarchy for chainscreen.

Callers can catch ChainscreenError for anything raised deliberately by the
platform, or one of the subclasses to tell the failure classes apart.
"""

from typing import Iterable, Optional


class ChainscreenError(Exception):
    """Base class for all platform errors."""

    pass


class ValidationError(ChainscreenError):
    """Raised when input is rejected before any state is touched."""

    pass


class DuplicateError(ValidationError):
    """Raised when a uniqueness constraint would be violated."""

    pass


class NotFoundError(ChainscreenError):
    """Raised when a referenced record does not exist in the caller's scope."""

    def __init__(self, resource: str, key: object):
        self.resource = resource
        self.key = key
        super().__init__(f"{resource} not found: {key}")


class StateTransitionError(ChainscreenError):
    """Raised when a case status change is not allowed."""

    def __init__(
        self,
        current: str,
        attempted: str,
        allowed: Iterable[str] = (),
        reason: Optional[str] = None,
    ):
        self.current = current
        self.attempted = attempted
        self.allowed = sorted(allowed)
        self.reason = reason

        message = f"Cannot move case from {current} to {attempted}"
        if reason:
            message += f": {reason}"
        else:
            allowed_text = ", ".join(self.allowed) if self.allowed else "none (terminal)"
            message += f" (allowed: {allowed_text})"
        super().__init__(message)


class ConcurrencyError(ChainscreenError):
    """Raised when a record changed between read and write."""

    pass


class UpstreamDataError(ChainscreenError):
    """Raised when the blockchain data source cannot be reached."""

    pass


class TraversalCancelledError(ChainscreenError):
    """Raised when a graph traversal is cancelled by its caller."""

    def __init__(self, hop_level: int):
        self.hop_level = hop_level
        super().__init__(f"Traversal cancelled before hop {hop_level}")
