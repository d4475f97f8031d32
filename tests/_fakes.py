"""Test doubles shared across the suite: a controllable clock and a scripted provider."""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from typing import Any

from adoflow.models import NextState, RequiredFieldSpec, WorkItemRef
from adoflow.provider import ProviderRejection

RESOLVED_REASON = "Microsoft.VSTS.Common.ResolvedReason"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedProvider:
    """WorkflowRulesProvider whose answers are set up by the test.

    Counts lookups, records applied transitions, and exposes hooks that run
    before a lookup or an apply so tests can block, fail, or assert.
    """

    def __init__(self) -> None:
        self.items: dict[int, WorkItemRef] = {}
        self.next_states: dict[int, NextState | None] = {}
        self.applied: list[tuple[int, str, dict[str, Any], int | None]] = []
        self.reasons: list[str | None] = []
        self.lookups = 0
        self.apply_error: Exception | None = None
        self.lookup_error: Exception | None = None
        self.before_lookup: Callable[[int], None] | None = None
        self.before_apply: Callable[[int], None] | None = None
        self._lock = threading.Lock()

    def add(
        self,
        item_id: int,
        state: str,
        next_state: NextState | None,
        *,
        work_item_type: str = "Task",
        rev: int = 1,
    ) -> None:
        self.items[item_id] = WorkItemRef(id=item_id, current_state=state, work_item_type=work_item_type, rev=rev)
        self.next_states[item_id] = next_state

    def get_work_item(self, work_item_id: int) -> WorkItemRef:
        if self.lookup_error is not None:
            raise self.lookup_error
        item = self.items.get(work_item_id)
        if item is None:
            raise ProviderRejection(f"Work item {work_item_id} does not exist", status_code=404)
        return item

    def query_next_state(self, item: WorkItemRef, *, with_fields: bool = True) -> NextState | None:
        with self._lock:
            self.lookups += 1
        if self.before_lookup is not None:
            self.before_lookup(item.id)
        next_state = self.next_states.get(item.id)
        if next_state is not None and not with_fields:
            return NextState(target_state=next_state.target_state)
        return next_state

    def apply_transition(
        self,
        work_item_id: int,
        target_state: str,
        fields: Mapping[str, Any],
        *,
        expected_rev: int | None = None,
        reason: str | None = None,
    ) -> None:
        if self.before_apply is not None:
            self.before_apply(work_item_id)
        if self.apply_error is not None:
            raise self.apply_error
        with self._lock:
            self.applied.append((work_item_id, target_state, dict(fields), expected_rev))
            self.reasons.append(reason)
            item = self.items[work_item_id]
            self.items[work_item_id] = WorkItemRef(
                id=item.id,
                current_state=target_state,
                work_item_type=item.work_item_type,
                rev=(item.rev or 0) + 1,
            )
            self.next_states[work_item_id] = None


def resolved_reason_spec() -> RequiredFieldSpec:
    return RequiredFieldSpec(
        ref_name=RESOLVED_REASON,
        name="Resolved Reason",
        field_type="string",
        allowed_values=("Fixed", "Won't Fix"),
    )


def never_called(work_item_id: int) -> None:
    msg = f"provider must not be called for work item {work_item_id}"
    raise AssertionError(msg)
