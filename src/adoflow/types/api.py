"""TypedDicts for executor results and HTTP adapter responses."""

from __future__ import annotations

from typing import Any, Literal, NotRequired, TypeAlias, TypedDict

FieldKind = Literal["number", "string", "picklist", "identity", "datetime"]


class FieldPromptDict(TypedDict):
    """One renderable form field for a state-required value.

    ``allowed_values`` is only present for picklists; ``placeholder`` only
    when the field has a hint to show.
    """

    ref_name: str
    label: str
    kind: FieldKind
    required: bool
    default_value: Any
    allowed_values: NotRequired[list[str]]
    placeholder: NotRequired[str]


class CompletedDict(TypedDict):
    status: Literal["completed"]
    work_item_id: int
    target_state: str


class PendingDict(TypedDict):
    """Pending transition payload, also the ``fields_required`` event body."""

    status: Literal["pending"]
    correlation_id: str
    work_item_id: int
    current_state: str
    target_state: str
    prompts: list[FieldPromptDict]


class NoTransitionDict(TypedDict):
    status: Literal["unavailable"]
    work_item_id: int
    current_state: str


TransitionResponse: TypeAlias = CompletedDict | PendingDict | NoTransitionDict


class OutcomeDict(TypedDict):
    """Result of a successful finish."""

    status: Literal["completed"]
    work_item_id: int
    target_state: str
    fields: dict[str, Any]


class PreviewDict(TypedDict):
    work_item_id: int
    current_state: str
    target_state: str | None
    available: bool
    expires_at: str


class ErrorBody(TypedDict):
    message: str
    code: str
    details: dict[str, Any]


class ErrorEnvelope(TypedDict):
    """Standard error envelope returned by the HTTP adapter."""

    error: ErrorBody
