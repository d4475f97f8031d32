# IMPORT CONSTRAINT: types/ modules must only import from typing, stdlib, and each other.
# NEVER import from executor.py, models.py, or any provider; this prevents circular imports.
"""Typed wire contracts for adoflow results, previews, and events."""

from __future__ import annotations

from adoflow.types.api import (
    CompletedDict,
    ErrorEnvelope,
    FieldPromptDict,
    NoTransitionDict,
    OutcomeDict,
    PendingDict,
    PreviewDict,
    TransitionResponse,
)

__all__ = [
    "CompletedDict",
    "ErrorEnvelope",
    "FieldPromptDict",
    "NoTransitionDict",
    "OutcomeDict",
    "PendingDict",
    "PreviewDict",
    "TransitionResponse",
]
