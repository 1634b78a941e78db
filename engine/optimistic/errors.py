"""
Optimistic Engine: Errors

Four failure families:
  validation  MutationRejected, raised before anything is applied
  commit      CommitFailed / CommitTimeout / CommitCancelled, rolled back
  partial     AuditAppendFailed, counter kept, warning only
  programming InvalidTransition, DragInProgress, NoActiveDrag, EntityNotFound
"""

from __future__ import annotations


class OptimisticError(Exception):
    """Base class for engine errors."""
    pass


class MutationRejected(OptimisticError):
    """A mutation would violate an invariant. Nothing was applied."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


class EntityNotFound(OptimisticError):
    """The entity id is not in the cache."""
    pass


class InvalidTransition(OptimisticError):
    """A commit state machine was asked to leave a state it cannot leave."""
    pass


class CommitFailed(OptimisticError):
    """The remote store rejected the commit."""
    pass


class CommitTimeout(CommitFailed):
    """The remote store did not answer in time."""
    pass


class CommitCancelled(CommitFailed):
    """The commit was cancelled before a result was known."""

    def __init__(self, message: str = "commit cancelled", *, user_initiated: bool = False) -> None:
        super().__init__(message)
        self.user_initiated = user_initiated


class AuditAppendFailed(OptimisticError):
    """The counter change persisted but its audit record could not be written."""
    pass


class DragInProgress(OptimisticError):
    """A drag gesture is already active."""
    pass


class NoActiveDrag(OptimisticError):
    """No drag gesture is active."""
    pass


# ---------------------------------------------------------------------------
# User-facing messages
# ---------------------------------------------------------------------------


def describe_failure(exc: BaseException) -> str:
    """Turn a commit failure into a message suitable for a toast."""
    if isinstance(exc, CommitTimeout):
        return "The server took too long to respond"
    if isinstance(exc, CommitCancelled):
        return "The change was cancelled"

    text = str(exc)
    lowered = text.lower()

    if "row-level security" in lowered or "rls" in lowered or "permission" in lowered or "policy" in lowered:
        return "You do not have permission to perform this action"
    if "not authenticated" in lowered or "jwt" in lowered:
        return "Your session has expired. Please log in again."
    if "duplicate" in lowered or "unique" in lowered:
        return "A record with this identifier already exists"

    return text or type(exc).__name__
