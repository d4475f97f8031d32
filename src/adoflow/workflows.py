# src/adoflow/workflows.py
"""Process definitions and the in-process workflow rules provider.

A process bundles work item types. Each type defines ordered states, ordered
transitions (optionally naming fields a transition requires), and a field
schema (optionally naming states at which a field must be populated).

``LocalWorkflowProvider`` enforces a process against a store of work items
(in memory, or a JSON file under ``.adoflow/``) the same way the ADO server
enforces its own rules: undefined transitions, missing required fields, and
stale revisions are rejected.
"""

from __future__ import annotations

import copy
import json
import logging
import re
import threading
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from adoflow.config import write_atomic
from adoflow.models import NextState, RequiredFieldSpec, WorkItemRef
from adoflow.process_data import BUILT_IN_PROCESSES
from adoflow.prompts import is_populated
from adoflow.provider import ProviderRejection

logger = logging.getLogger(__name__)

# Reference names are dotted identifiers, e.g. ``Microsoft.VSTS.Common.Priority``.
_REF_NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_]*(\.[A-Za-z0-9_]+)+$")

# Field types as ADO reports them, compared case-insensitively.
_VALID_FIELD_TYPES: frozenset[str] = frozenset(
    {
        "string",
        "integer",
        "double",
        "datetime",
        "identity",
        "html",
        "plaintext",
        "history",
        "treepath",
        "boolean",
        "guid",
        "pickliststring",
        "picklistinteger",
        "picklistdouble",
    }
)

MAX_STATES = 50
MAX_TRANSITIONS = 200
MAX_FIELDS = 50
MAX_NAME_LENGTH = 128

# ---------------------------------------------------------------------------
# Frozen definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldDefinition:
    """Schema for one field on a work item type."""

    ref_name: str
    name: str
    type: str = "string"
    allowed_values: tuple[str, ...] = ()
    default: Any = None
    required_at: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not _REF_NAME_PATTERN.match(self.ref_name):
            msg = f"Invalid field reference name '{self.ref_name}': expected a dotted name like 'System.Title'"
            raise ValueError(msg)
        if self.type.lower() not in _VALID_FIELD_TYPES:
            allowed = sorted(_VALID_FIELD_TYPES)
            msg = f"Invalid field type '{self.type}' for field '{self.ref_name}': must be one of {allowed}"
            raise ValueError(msg)

    def to_spec(self) -> RequiredFieldSpec:
        return RequiredFieldSpec(
            ref_name=self.ref_name,
            name=self.name,
            field_type=self.type,
            allowed_values=self.allowed_values,
            default_value=self.default,
        )


@dataclass(frozen=True)
class TransitionDefinition:
    """An allowed move between two states and the fields it requires."""

    from_state: str
    to_state: str
    requires_fields: tuple[str, ...] = ()


@dataclass(frozen=True)
class WorkItemTypeDefinition:
    """Complete workflow for one work item type."""

    name: str
    description: str
    states: tuple[str, ...]
    initial_state: str
    transitions: tuple[TransitionDefinition, ...]
    fields: tuple[FieldDefinition, ...] = ()

    def get_field(self, ref_name: str) -> FieldDefinition | None:
        return next((f for f in self.fields if f.ref_name == ref_name), None)

    def transitions_from(self, state: str) -> list[TransitionDefinition]:
        return [t for t in self.transitions if t.from_state == state]

    def find_transition(self, from_state: str, to_state: str) -> TransitionDefinition | None:
        return next((t for t in self.transitions if t.from_state == from_state and t.to_state == to_state), None)


@dataclass(frozen=True)
class ProcessDefinition:
    """A named bundle of work item types."""

    name: str
    version: str
    display_name: str
    description: str
    types: dict[str, WorkItemTypeDefinition]

    def get_type(self, type_name: str) -> WorkItemTypeDefinition | None:
        return self.types.get(type_name)


# ---------------------------------------------------------------------------
# Parsing and validation
# ---------------------------------------------------------------------------


def _check_list(owner: str, key: str, value: Any) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        msg = f"{owner}: '{key}' must be a list, got {type(value).__name__}"
        raise ValueError(msg)
    return value


def _check_name(owner: str, what: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        msg = f"{owner}: {what} must be a non-empty string"
        raise ValueError(msg)
    if len(value) > MAX_NAME_LENGTH:
        msg = f"{owner}: {what} '{value[:20]}...' exceeds {MAX_NAME_LENGTH} characters"
        raise ValueError(msg)
    return value


def parse_work_item_type(raw: dict[str, Any]) -> WorkItemTypeDefinition:
    """Parse a work item type from a JSON-compatible dict.

    Raises:
        ValueError: If the shape is wrong, a name is invalid, or a size limit is exceeded.
        KeyError: If ``name`` or ``initial_state`` is missing.
    """
    type_name = _check_name("Work item type", "'name'", raw["name"])
    owner = f"Type '{type_name}'"

    raw_states = raw.get("states")
    if not isinstance(raw_states, list):
        msg = f"{owner}: 'states' must be a list, got {type(raw_states).__name__}"
        raise ValueError(msg)
    raw_transitions = _check_list(owner, "transitions", raw.get("transitions", []))
    raw_fields = _check_list(owner, "fields", raw.get("fields", []))

    for i, t in enumerate(raw_transitions):
        if not isinstance(t, dict) or "from" not in t or "to" not in t:
            msg = f"{owner}: transition at index {i} must be a dict with 'from' and 'to'"
            raise ValueError(msg)
    for i, f in enumerate(raw_fields):
        if not isinstance(f, dict) or "ref_name" not in f:
            msg = f"{owner}: field at index {i} must be a dict with 'ref_name'"
            raise ValueError(msg)

    if len(raw_states) > MAX_STATES:
        msg = f"{owner} has {len(raw_states)} states (max {MAX_STATES})"
        raise ValueError(msg)
    if len(raw_transitions) > MAX_TRANSITIONS:
        msg = f"{owner} has {len(raw_transitions)} transitions (max {MAX_TRANSITIONS})"
        raise ValueError(msg)
    if len(raw_fields) > MAX_FIELDS:
        msg = f"{owner} has {len(raw_fields)} fields (max {MAX_FIELDS})"
        raise ValueError(msg)

    logger.debug("Parsing work item type: %s", type_name)

    states = tuple(_check_name(owner, f"state at index {i}", s) for i, s in enumerate(raw_states))
    transitions = tuple(
        TransitionDefinition(
            from_state=t["from"],
            to_state=t["to"],
            requires_fields=tuple(_check_list(owner, "requires_fields", t.get("requires_fields", []))),
        )
        for t in raw_transitions
    )
    fields = tuple(
        FieldDefinition(
            ref_name=f["ref_name"],
            name=f.get("name") or f["ref_name"],
            type=f.get("type", "string"),
            allowed_values=tuple(str(v) for v in _check_list(owner, "allowed_values", f.get("allowed_values", []))),
            default=f.get("default"),
            required_at=tuple(_check_list(owner, "required_at", f.get("required_at", []))),
        )
        for f in raw_fields
    )
    return WorkItemTypeDefinition(
        name=type_name,
        description=raw.get("description", ""),
        states=states,
        initial_state=raw["initial_state"],
        transitions=transitions,
        fields=fields,
    )


def validate_work_item_type(wit: WorkItemTypeDefinition) -> list[str]:
    """Check a parsed type for internal consistency.

    Returns:
        List of error messages. Empty list means valid.
    """
    errors: list[str] = []
    state_names = set(wit.states)

    if len(state_names) != len(wit.states):
        seen: set[str] = set()
        for s in wit.states:
            if s in seen:
                errors.append(f"duplicate state name '{s}'")
            seen.add(s)

    if wit.initial_state not in state_names:
        errors.append(f"initial_state '{wit.initial_state}' is not in states list")

    seen_pairs: set[tuple[str, str]] = set()
    for t in wit.transitions:
        if t.from_state not in state_names:
            errors.append(f"transition from_state '{t.from_state}' is not in states list")
        if t.to_state not in state_names:
            errors.append(f"transition to_state '{t.to_state}' is not in states list")
        if t.from_state == t.to_state:
            errors.append(f"transition {t.from_state}->{t.to_state} does not change state")
        if (t.from_state, t.to_state) in seen_pairs:
            errors.append(f"duplicate transition {t.from_state}->{t.to_state}")
        seen_pairs.add((t.from_state, t.to_state))

    field_names = [f.ref_name for f in wit.fields]
    for ref in sorted({r for r in field_names if field_names.count(r) > 1}):
        errors.append(f"duplicate field '{ref}'")
    for t in wit.transitions:
        for rf in t.requires_fields:
            if rf not in field_names:
                errors.append(f"transition {t.from_state}->{t.to_state} requires_fields '{rf}' not in fields")

    for f in wit.fields:
        for ra in f.required_at:
            if ra not in state_names:
                errors.append(f"field '{f.ref_name}' required_at '{ra}' is not in states list")
        if f.allowed_values and f.default is not None and str(f.default) not in f.allowed_values:
            errors.append(f"field '{f.ref_name}' default '{f.default}' is not one of its allowed values")

    # Every state must be reachable from the initial state
    if wit.initial_state in state_names:
        reachable: set[str] = set()
        queue = [wit.initial_state]
        while queue:
            current = queue.pop(0)
            if current in reachable:
                continue
            reachable.add(current)
            for t in wit.transitions:
                if t.from_state == current and t.to_state not in reachable:
                    queue.append(t.to_state)
        for s in sorted(state_names - reachable):
            errors.append(f"state '{s}' is unreachable from initial_state '{wit.initial_state}'")

    return errors


def parse_process(raw: dict[str, Any]) -> ProcessDefinition:
    """Parse and validate a process bundle.

    Invalid types are skipped with a warning so one bad type does not take
    down the rest of the process.

    Raises:
        ValueError: If the bundle itself is malformed or has no valid types.
    """
    if not isinstance(raw, dict):
        msg = f"Process must be a JSON object, got {type(raw).__name__}"
        raise ValueError(msg)
    process_name = _check_name("Process", "'process'", raw.get("process"))
    types_raw = raw.get("types")
    if not isinstance(types_raw, dict):
        msg = f"Process '{process_name}': 'types' must be an object, got {type(types_raw).__name__}"
        raise ValueError(msg)

    types: dict[str, WorkItemTypeDefinition] = {}
    for type_name, type_raw in types_raw.items():
        try:
            wit = parse_work_item_type(type_raw)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Skipping unparseable type %s in process %s: %s", type_name, process_name, exc)
            continue
        errors = validate_work_item_type(wit)
        if errors:
            logger.warning("Skipping invalid type %s in process %s: %s", type_name, process_name, errors)
            continue
        types[wit.name] = wit

    if not types:
        msg = f"Process '{process_name}' has no valid work item types"
        raise ValueError(msg)

    logger.debug("Parsed process: %s (%d types)", process_name, len(types))
    return ProcessDefinition(
        name=process_name,
        version=str(raw.get("version", "1.0")),
        display_name=raw.get("display_name", process_name),
        description=raw.get("description", ""),
        types=types,
    )


def load_process(name_or_path: str | Path) -> ProcessDefinition:
    """Load a built-in process by name, or a process from a ``.json`` file.

    Raises:
        ValueError: Unknown built-in name, unreadable file, or invalid process.
    """
    builtin = BUILT_IN_PROCESSES.get(str(name_or_path))
    if builtin is not None:
        return parse_process(copy.deepcopy(builtin))

    path = Path(name_or_path)
    if path.suffix != ".json":
        known = ", ".join(sorted(BUILT_IN_PROCESSES))
        msg = f"Unknown process '{name_or_path}' (built-in: {known}; or pass a .json file)"
        raise ValueError(msg)
    try:
        raw = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as exc:
        msg = f"Could not read process file {path}: {exc}"
        raise ValueError(msg) from exc
    logger.info("Loaded process file %s", path)
    return parse_process(raw)


# ---------------------------------------------------------------------------
# In-process provider
# ---------------------------------------------------------------------------


@dataclass
class LocalWorkItem:
    """Mutable record kept by ``LocalWorkflowProvider``."""

    id: int
    work_item_type: str
    state: str
    rev: int = 1
    fields: dict[str, Any] = field(default_factory=dict)
    reason: str | None = None

    def ref(self) -> WorkItemRef:
        return WorkItemRef(id=self.id, current_state=self.state, work_item_type=self.work_item_type, rev=self.rev)


class LocalWorkflowProvider:
    """Implements ``WorkflowRulesProvider`` from a ``ProcessDefinition``.

    Thread-safe. Every successful ``apply_transition`` bumps the item's rev.
    With ``store_path`` the work items are loaded from and saved back to a
    JSON file after every change; without it they live in memory only.
    """

    def __init__(self, process: ProcessDefinition, *, store_path: Path | None = None) -> None:
        self.process = process
        self.store_path = store_path
        self._lock = threading.Lock()
        self._items: dict[int, LocalWorkItem] = {}
        self._next_id = 1
        if store_path is not None and store_path.exists():
            self._load_store(store_path)

    def _load_store(self, path: Path) -> None:
        try:
            raw = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as exc:
            msg = f"Could not read work item store {path}: {exc}"
            raise ValueError(msg) from exc
        if not isinstance(raw, dict) or not isinstance(raw.get("items"), list):
            msg = f"Work item store {path} must be an object with an 'items' list"
            raise ValueError(msg)
        for entry in raw["items"]:
            try:
                item = LocalWorkItem(
                    id=int(entry["id"]),
                    work_item_type=str(entry["work_item_type"]),
                    state=str(entry["state"]),
                    rev=int(entry.get("rev", 1)),
                    fields=dict(entry.get("fields") or {}),
                    reason=entry.get("reason"),
                )
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                logger.warning("Skipping malformed work item in %s: %s", path, exc)
                continue
            self._items[item.id] = item
        next_id = raw.get("next_id")
        self._next_id = max([next_id if isinstance(next_id, int) else 1, *(i + 1 for i in self._items)])
        logger.debug("Loaded %d work item(s) from %s", len(self._items), path)

    def _save_store(self) -> None:
        """Persist every item. Caller holds ``_lock``."""
        if self.store_path is None:
            return
        data = {
            "process": self.process.name,
            "next_id": self._next_id,
            "items": [asdict(i) for i in sorted(self._items.values(), key=lambda i: i.id)],
        }
        write_atomic(self.store_path, json.dumps(data, indent=2, default=str) + "\n")

    def _type_for(self, type_name: str) -> WorkItemTypeDefinition:
        wit = self.process.get_type(type_name)
        if wit is None:
            msg = f"Work item type '{type_name}' is not defined in process '{self.process.name}'"
            raise ProviderRejection(msg, status_code=404)
        return wit

    def _item(self, work_item_id: int) -> LocalWorkItem:
        item = self._items.get(work_item_id)
        if item is None:
            raise ProviderRejection(f"Work item {work_item_id} does not exist", status_code=404)
        return item

    # -- Store --------------------------------------------------------------

    def add_work_item(
        self,
        work_item_type: str,
        *,
        state: str | None = None,
        fields: Mapping[str, Any] | None = None,
        work_item_id: int | None = None,
    ) -> LocalWorkItem:
        """Create a work item. ``state`` defaults to the type's initial state.

        Raises:
            ValueError: Unknown type or state, unknown field, or duplicate id.
        """
        wit = self.process.get_type(work_item_type)
        if wit is None:
            msg = f"Unknown work item type '{work_item_type}'"
            raise ValueError(msg)
        state = state or wit.initial_state
        if state not in wit.states:
            msg = f"State '{state}' is not defined for type '{work_item_type}'"
            raise ValueError(msg)
        fields = dict(fields or {})
        unknown = sorted(ref for ref in fields if wit.get_field(ref) is None)
        if unknown:
            msg = f"Unknown field(s) for type '{work_item_type}': {', '.join(unknown)}"
            raise ValueError(msg)

        with self._lock:
            item_id = work_item_id if work_item_id is not None else self._next_id
            if item_id in self._items:
                msg = f"Work item {item_id} already exists"
                raise ValueError(msg)
            self._next_id = max(self._next_id, item_id + 1)
            item = LocalWorkItem(id=item_id, work_item_type=work_item_type, state=state, fields=fields)
            self._items[item_id] = item
            self._save_store()
        logger.debug("Added %s %d in state '%s'", work_item_type, item_id, state)
        return copy.deepcopy(item)

    def get(self, work_item_id: int) -> LocalWorkItem:
        """A detached copy of the stored item."""
        with self._lock:
            return copy.deepcopy(self._item(work_item_id))

    def list_items(self) -> list[LocalWorkItem]:
        with self._lock:
            return [copy.deepcopy(i) for i in sorted(self._items.values(), key=lambda i: i.id)]

    # -- WorkflowRulesProvider ---------------------------------------------

    def get_work_item(self, work_item_id: int) -> WorkItemRef:
        with self._lock:
            return self._item(work_item_id).ref()

    def missing_fields(
        self,
        wit: WorkItemTypeDefinition,
        transition: TransitionDefinition,
        values: Mapping[str, Any],
    ) -> list[str]:
        """Fields the transition or its target state require that ``values`` leaves empty."""
        required = list(transition.requires_fields)
        required += [f.ref_name for f in wit.fields if transition.to_state in f.required_at]
        return [ref for ref in dict.fromkeys(required) if not is_populated(values.get(ref))]

    def query_next_state(self, item: WorkItemRef, *, with_fields: bool = True) -> NextState | None:
        wit = self._type_for(item.work_item_type)
        candidates = wit.transitions_from(item.current_state)
        if not candidates:
            return None
        transition = candidates[0]
        if not with_fields:
            return NextState(target_state=transition.to_state)
        with self._lock:
            stored = self._items.get(item.id)
            values = dict(stored.fields) if stored is not None else {}
        specs = []
        for ref in self.missing_fields(wit, transition, values):
            definition = wit.get_field(ref)
            specs.append(definition.to_spec() if definition is not None else RequiredFieldSpec(ref_name=ref))
        return NextState(target_state=transition.to_state, required_fields=tuple(specs))

    def apply_transition(
        self,
        work_item_id: int,
        target_state: str,
        fields: Mapping[str, Any],
        *,
        expected_rev: int | None = None,
        reason: str | None = None,
    ) -> None:
        """Set state and fields together, or change nothing.

        ``reason`` is kept on the item as its last transition reason.

        Raises:
            ProviderRejection: Stale rev (409), undefined transition or
                missing/unknown field (400), unknown item (404).
        """
        with self._lock:
            item = self._item(work_item_id)
            wit = self._type_for(item.work_item_type)
            if expected_rev is not None and item.rev != expected_rev:
                msg = f"Work item {work_item_id} has been modified (rev {item.rev}, expected {expected_rev})"
                raise ProviderRejection(msg, status_code=409)
            transition = wit.find_transition(item.state, target_state)
            if transition is None:
                msg = f"Transition '{item.state}' -> '{target_state}' is not allowed for type '{wit.name}'"
                raise ProviderRejection(msg, status_code=400)
            unknown = sorted(ref for ref in fields if wit.get_field(ref) is None)
            if unknown:
                msg = f"Field '{unknown[0]}' does not exist on type '{wit.name}'"
                raise ProviderRejection(msg, status_code=400)
            merged = {**item.fields, **fields}
            missing = self.missing_fields(wit, transition, merged)
            if missing:
                msg = f"Field '{missing[0]}' is required for state '{target_state}'"
                raise ProviderRejection(msg, status_code=400)

            previous = item.state
            item.state = target_state
            item.fields = merged
            item.reason = merged.get("System.Reason", reason)
            item.rev += 1
            self._save_store()
        logger.debug(
            "Work item %d: '%s' -> '%s' (rev %d)",
            work_item_id,
            previous,
            target_state,
            item.rev,
            extra={"work_item_id": work_item_id, "target_state": target_state},
        )
