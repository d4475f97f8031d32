"""Data model for the transition protocol.

Everything here is a frozen dataclass: snapshots and results are handed to
callers and listeners, and must not change underneath them. ``to_dict()``
returns the wire shape declared in ``adoflow.types.api``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal, TypeAlias

from adoflow.types.api import (
    CompletedDict,
    FieldKind,
    FieldPromptDict,
    NoTransitionDict,
    OutcomeDict,
    PendingDict,
    PreviewDict,
)

VALID_FIELD_KINDS: frozenset[str] = frozenset({"number", "string", "picklist", "identity", "datetime"})


def iso_timestamp(ts: float) -> str:
    """Render an epoch timestamp as an ISO-8601 UTC string."""
    return datetime.fromtimestamp(ts, UTC).isoformat()


# ---------------------------------------------------------------------------
# Provider-facing records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkItemRef:
    """Snapshot of a work item taken at the start of a transition.

    ``rev`` is the revision the snapshot was read at; providers use it to
    reject the update if the item changed in between.
    """

    id: int
    current_state: str
    work_item_type: str
    rev: int | None = None


@dataclass(frozen=True)
class RequiredFieldSpec:
    """A field the provider says must be supplied to enter the next state."""

    ref_name: str
    name: str = ""
    field_type: str | None = None
    allowed_values: tuple[str, ...] = ()
    default_value: Any = None
    required: bool = True
    placeholder: str | None = None


@dataclass(frozen=True)
class NextState:
    """The provider's answer to "where can this item go next"."""

    target_state: str
    required_fields: tuple[RequiredFieldSpec, ...] = ()


# ---------------------------------------------------------------------------
# Prompts and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldPrompt:
    """Renderable description of one value the user must supply."""

    ref_name: str
    label: str
    kind: FieldKind
    required: bool = True
    allowed_values: tuple[str, ...] = ()
    default_value: Any = None
    placeholder: str | None = None

    def __post_init__(self) -> None:
        if self.kind not in VALID_FIELD_KINDS:
            allowed = sorted(VALID_FIELD_KINDS)
            msg = f"Invalid kind '{self.kind}' for field '{self.ref_name}': must be one of {allowed}"
            raise ValueError(msg)
        if self.kind == "picklist" and not self.allowed_values:
            msg = f"Picklist field '{self.ref_name}' must declare at least one allowed value"
            raise ValueError(msg)

    def to_dict(self) -> FieldPromptDict:
        result = FieldPromptDict(
            ref_name=self.ref_name,
            label=self.label,
            kind=self.kind,
            required=self.required,
            default_value=self.default_value,
        )
        if self.allowed_values:
            result["allowed_values"] = list(self.allowed_values)
        if self.placeholder:
            result["placeholder"] = self.placeholder
        return result


@dataclass(frozen=True)
class Completed:
    """The transition was applied without further input."""

    work_item_id: int
    target_state: str
    status: Literal["completed"] = field(default="completed", init=False)

    def to_dict(self) -> CompletedDict:
        return CompletedDict(status="completed", work_item_id=self.work_item_id, target_state=self.target_state)


@dataclass(frozen=True)
class Pending:
    """More input is needed before the system of record will accept the change."""

    correlation_id: str
    work_item_id: int
    current_state: str
    target_state: str
    prompts: tuple[FieldPrompt, ...]
    status: Literal["pending"] = field(default="pending", init=False)

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for p in self.prompts:
            if p.ref_name in seen:
                msg = f"Duplicate prompt ref_name '{p.ref_name}' in pending transition {self.correlation_id}"
                raise ValueError(msg)
            seen.add(p.ref_name)

    def to_dict(self) -> PendingDict:
        return PendingDict(
            status="pending",
            correlation_id=self.correlation_id,
            work_item_id=self.work_item_id,
            current_state=self.current_state,
            target_state=self.target_state,
            prompts=[p.to_dict() for p in self.prompts],
        )


@dataclass(frozen=True)
class NoTransition:
    """The workflow has no next state from the item's current state."""

    work_item_id: int
    current_state: str
    status: Literal["unavailable"] = field(default="unavailable", init=False)

    def to_dict(self) -> NoTransitionDict:
        return NoTransitionDict(status="unavailable", work_item_id=self.work_item_id, current_state=self.current_state)


TransitionResult: TypeAlias = Completed | Pending


@dataclass(frozen=True)
class TransitionOutcome:
    """Result of a successful ``finish``: the coerced fields that were applied."""

    work_item_id: int
    target_state: str
    fields: Mapping[str, Any]

    def to_dict(self) -> OutcomeDict:
        return OutcomeDict(
            status="completed",
            work_item_id=self.work_item_id,
            target_state=self.target_state,
            fields=dict(self.fields),
        )


# ---------------------------------------------------------------------------
# Internal bookkeeping
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransitionAttempt:
    work_item_id: int
    requested_at: float


@dataclass(frozen=True)
class PendingTransition:
    """Correlation registry entry linking a ``Pending`` result to its ``finish``."""

    correlation_id: str
    work_item_id: int
    target_state: str
    created_at: float
    prompts: tuple[FieldPrompt, ...] = ()
    current_state: str = ""
    rev: int | None = None


@dataclass(frozen=True)
class PreviewEntry:
    """Cached answer to "what would the next transition be" for one item."""

    work_item_id: int
    current_state: str
    target_state: str | None
    available: bool
    expires_at: float

    def to_dict(self) -> PreviewDict:
        return PreviewDict(
            work_item_id=self.work_item_id,
            current_state=self.current_state,
            target_state=self.target_state,
            available=self.available,
            expires_at=iso_timestamp(self.expires_at),
        )
