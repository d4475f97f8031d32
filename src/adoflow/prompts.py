"""Field prompt builder and submission-time coercion.

``build_prompts`` turns the provider's required-field specs into renderable
prompts. ``coerce_values`` is the other half: it validates what the user
typed against those prompts and converts each value to what the system of
record expects. Both are pure functions.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterable, Mapping
from datetime import UTC, date, datetime, time
from typing import Any

from adoflow.errors import ValidationFailedError
from adoflow.models import FieldPrompt, RequiredFieldSpec
from adoflow.types.api import FieldKind

logger = logging.getLogger(__name__)

# Plain ASCII decimals only: no digit separators, no other scripts' digits.
_INTEGER = re.compile(r"[+-]?[0-9]+")
_DECIMAL = re.compile(r"[+-]?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")

# ADO field types (as reported by _apis/wit/fields) mapped to prompt kinds.
_DECLARED_TYPE_KINDS: dict[str, FieldKind] = {
    "integer": "number",
    "double": "number",
    "picklistinteger": "number",
    "picklistdouble": "number",
    "datetime": "datetime",
    "identity": "identity",
    "string": "string",
    "pickliststring": "string",
    "plaintext": "string",
    "html": "string",
    "history": "string",
    "treepath": "string",
    "boolean": "string",
    "guid": "string",
}

# Well-known fields: (label, kind, placeholder)
_KNOWN_FIELDS: dict[str, tuple[str, FieldKind, str | None]] = {
    "Microsoft.VSTS.Scheduling.StoryPoints": ("Story Points", "number", "Enter story points"),
    "System.AssignedTo": ("Assigned To", "identity", "Enter assignee or leave blank for current user"),
    "Microsoft.VSTS.Common.Priority": ("Priority", "number", "Enter priority (1-4)"),
    "Microsoft.VSTS.Scheduling.RemainingWork": ("Remaining Work", "number", "Enter remaining work hours"),
    "Microsoft.VSTS.Common.AcceptanceCriteria": ("Acceptance Criteria", "string", "Enter acceptance criteria"),
    "System.Description": ("Description", "string", "Enter description"),
    "Microsoft.VSTS.Common.ResolvedReason": ("Resolved Reason", "string", None),
}


# ---------------------------------------------------------------------------
# Building
# ---------------------------------------------------------------------------


def _kind_from_name(ref_name: str) -> FieldKind:
    """Guess a kind from the reference name when nothing better is known."""
    if any(token in ref_name for token in ("Points", "Priority", "Work")):
        return "number"
    if "AssignedTo" in ref_name or "CreatedBy" in ref_name:
        return "identity"
    if "Date" in ref_name or "Time" in ref_name:
        return "datetime"
    return "string"


def infer_kind(spec: RequiredFieldSpec) -> FieldKind:
    """Resolve the prompt kind: allowed values, then declared type, then name."""
    if spec.allowed_values:
        return "picklist"
    if spec.field_type:
        kind = _DECLARED_TYPE_KINDS.get(spec.field_type.lower())
        if kind is not None:
            return kind
        logger.debug("Unknown declared type '%s' for %s, inferring from name", spec.field_type, spec.ref_name)
    known = _KNOWN_FIELDS.get(spec.ref_name)
    if known is not None:
        return known[1]
    return _kind_from_name(spec.ref_name)


def default_for(kind: FieldKind, spec: RequiredFieldSpec) -> Any:
    """Initial form value for a prompt of ``kind``.

    Identity defaults to ``None``, meaning "the acting user" at submission.
    """
    if kind == "picklist":
        if spec.default_value is not None and str(spec.default_value) in spec.allowed_values:
            return str(spec.default_value)
        return spec.allowed_values[0]
    if kind == "string":
        return "" if spec.default_value is None else str(spec.default_value)
    return None


def build_prompt(spec: RequiredFieldSpec) -> FieldPrompt:
    kind = infer_kind(spec)
    known = _KNOWN_FIELDS.get(spec.ref_name)
    label = spec.name or (known[0] if known else spec.ref_name)
    placeholder = spec.placeholder or (known[2] if known else None)
    return FieldPrompt(
        ref_name=spec.ref_name,
        label=label,
        kind=kind,
        required=spec.required,
        allowed_values=tuple(spec.allowed_values) if kind == "picklist" else (),
        default_value=default_for(kind, spec),
        placeholder=placeholder,
    )


def build_prompts(specs: Iterable[RequiredFieldSpec]) -> list[FieldPrompt]:
    """Convert required-field specs into prompts, preserving input order.

    A ref name that appears twice keeps its first occurrence.
    """
    prompts: list[FieldPrompt] = []
    seen: set[str] = set()
    for spec in specs:
        if spec.ref_name in seen:
            logger.debug("Dropping duplicate field spec %s", spec.ref_name)
            continue
        seen.add(spec.ref_name)
        prompts.append(build_prompt(spec))
    return prompts


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


def is_populated(value: Any) -> bool:
    """None, empty strings, and whitespace-only strings are unpopulated."""
    if value is None:
        return False
    return not (isinstance(value, str) and value.strip() == "")


def _coerce_number(prompt: FieldPrompt, value: Any) -> int | float:
    if isinstance(value, bool):
        raise ValidationFailedError(prompt.ref_name, "expected a number, got a boolean")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValidationFailedError(prompt.ref_name, f"'{value}' is not a finite number")
        return value
    if isinstance(value, str):
        text = value.strip()
        if _INTEGER.fullmatch(text):
            return int(text)
        if not _DECIMAL.fullmatch(text):
            raise ValidationFailedError(prompt.ref_name, f"'{value}' is not a number")
        number = float(text)
        if not math.isfinite(number):
            raise ValidationFailedError(prompt.ref_name, f"'{value}' is not a finite number")
        return number
    raise ValidationFailedError(prompt.ref_name, f"expected a number, got {type(value).__name__}")


def format_datetime(value: datetime) -> str:
    """Canonical timestamp format: UTC, millisecond precision, ``Z`` suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    value = value.astimezone(UTC)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def _coerce_datetime(prompt: FieldPrompt, value: Any) -> str:
    if isinstance(value, datetime):
        return format_datetime(value)
    if isinstance(value, date):
        return format_datetime(datetime.combine(value, time.min))
    if isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationFailedError(prompt.ref_name, f"'{value}' is not an ISO-8601 date/time") from None
        return format_datetime(parsed)
    raise ValidationFailedError(prompt.ref_name, f"expected a date/time, got {type(value).__name__}")


def coerce_value(prompt: FieldPrompt, value: Any, *, acting_user: str | None = None) -> Any:
    """Convert one raw value per the prompt's kind.

    Returns ``None`` for an unpopulated optional value. Raises
    ``ValidationFailedError`` for a missing required value or a value that
    cannot be converted.
    """
    if prompt.kind == "identity" and not is_populated(value):
        value = acting_user
    if not is_populated(value):
        if prompt.required:
            raise ValidationFailedError(prompt.ref_name, "a value is required")
        return None

    if prompt.kind == "number":
        return _coerce_number(prompt, value)
    if prompt.kind == "datetime":
        return _coerce_datetime(prompt, value)
    if prompt.kind == "picklist":
        text = str(value).strip()
        if text not in prompt.allowed_values:
            allowed = ", ".join(prompt.allowed_values)
            raise ValidationFailedError(prompt.ref_name, f"'{text}' is not one of: {allowed}")
        return text
    return str(value).strip()


def coerce_values(
    prompts: Iterable[FieldPrompt],
    values: Mapping[str, Any],
    *,
    acting_user: str | None = None,
) -> dict[str, Any]:
    """Validate and convert a submitted value mapping against its prompts.

    Checks prompts in order and fails on the first bad field. Values for ref
    names that no prompt asked for are dropped. Optional prompts left empty
    are omitted from the result.
    """
    prompt_list = list(prompts)
    asked = {p.ref_name for p in prompt_list}
    unexpected = sorted(k for k in values if k not in asked)
    if unexpected:
        logger.warning("Ignoring values for unrequested fields: %s", ", ".join(unexpected))

    result: dict[str, Any] = {}
    for prompt in prompt_list:
        coerced = coerce_value(prompt, values.get(prompt.ref_name), acting_user=acting_user)
        if coerced is not None:
            result[prompt.ref_name] = coerced
    return result
