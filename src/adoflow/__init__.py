"""adoflow -- state-transition engine for Azure DevOps work items."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("adoflow")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from adoflow.errors import (
    CorrelationNotFoundError,
    TransitionAbandonedError,
    TransitionError,
    TransitionRejectedError,
    ValidationFailedError,
)
from adoflow.executor import TransitionExecutor
from adoflow.models import Completed, FieldPrompt, NoTransition, Pending, PreviewEntry, TransitionOutcome

__all__ = [
    "Completed",
    "CorrelationNotFoundError",
    "FieldPrompt",
    "NoTransition",
    "Pending",
    "PreviewEntry",
    "TransitionAbandonedError",
    "TransitionError",
    "TransitionExecutor",
    "TransitionOutcome",
    "TransitionRejectedError",
    "ValidationFailedError",
    "__version__",
]
