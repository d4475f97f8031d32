"""Error taxonomy for the transition protocol.

"No transition available" is deliberately absent: it is a valid terminal
answer and surfaces as ``NoTransition`` / ``available=False``, never as an
exception.

Each class carries a stable ``code`` used by the HTTP error envelope and
the CLI's ``--json`` output.
"""

from __future__ import annotations


class TransitionError(Exception):
    """Base class for every failure the executor reports to its caller."""

    code = "TRANSITION_ERROR"


class ValidationFailedError(TransitionError, ValueError):
    """Raised by ``finish`` when a field value is missing or cannot be coerced.

    Raised before any provider call; the pending transition is untouched so
    the caller can re-prompt and retry with the same correlation id.
    """

    code = "VALIDATION_FAILED"

    def __init__(self, ref_name: str, reason: str) -> None:
        self.ref_name = ref_name
        self.reason = reason
        super().__init__(f"Field '{ref_name}': {reason}")


class CorrelationNotFoundError(TransitionError, LookupError):
    """Raised when a correlation id is unknown, consumed, cancelled, or expired.

    The window is closed: the caller must restart with a fresh ``begin``.
    """

    code = "CORRELATION_NOT_FOUND"

    def __init__(self, correlation_id: str) -> None:
        self.correlation_id = correlation_id
        super().__init__(
            f"Correlation id '{correlation_id}' not found or expired. "
            f"Start a new transition with begin()."
        )

    def __str__(self) -> str:
        # LookupError/KeyError repr-quotes a single arg; keep the plain message.
        return str(self.args[0])


class TransitionRejectedError(TransitionError):
    """Raised when the system of record refuses the change or cannot be reached.

    ``cause`` carries the provider exception verbatim (also chained as
    ``__cause__``).
    """

    code = "TRANSITION_REJECTED"

    def __init__(self, work_item_id: int, cause: Exception) -> None:
        self.work_item_id = work_item_id
        self.cause = cause
        super().__init__(f"Transition rejected for work item {work_item_id}: {cause}")


class TransitionAbandonedError(TransitionError):
    """Raised by ``begin`` when a newer attempt for the same item took over."""

    code = "TRANSITION_ABANDONED"

    def __init__(self, work_item_id: int) -> None:
        self.work_item_id = work_item_id
        super().__init__(f"Transition attempt for work item {work_item_id} was superseded by a newer attempt")
