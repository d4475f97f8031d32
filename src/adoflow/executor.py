"""Transition executor: the begin / finish / cancel protocol.

``begin`` either applies the next transition straight away or parks it in
the correlation registry with prompts for the fields the workflow still
needs. ``finish`` validates and coerces the collected values, then applies
target state and fields as one update. A work item is never shown as
transitioned unless one of those two calls returned success.

Collaborators are passed in explicitly; ``adoflow.session`` wires them from
configuration.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from typing import Any

from adoflow.errors import TransitionAbandonedError, TransitionRejectedError
from adoflow.events import TransitionEvents
from adoflow.models import (
    Completed,
    NextState,
    NoTransition,
    Pending,
    PendingTransition,
    PreviewEntry,
    TransitionAttempt,
    TransitionOutcome,
    WorkItemRef,
)
from adoflow.preview import DEFAULT_TTL_SECONDS, PreviewCache
from adoflow.prompts import build_prompts, coerce_values
from adoflow.provider import ProviderError, WorkflowRulesProvider
from adoflow.registry import CorrelationRegistry

logger = logging.getLogger(__name__)


def _elapsed_ms(start: float) -> float:
    return round((time.monotonic() - start) * 1000, 1)


def default_reason(target_state: str) -> str:
    """``System.Reason`` recorded when a pending transition is finished."""
    return f"Moved to {target_state}"


class TransitionExecutor:
    """Drives work item transitions against a ``WorkflowRulesProvider``.

    Thread-safe. Calls for different work items run independently; provider
    calls are never made while holding a lock. Within one work item a newer
    ``begin`` supersedes older attempts and older pending transitions.
    """

    def __init__(
        self,
        provider: WorkflowRulesProvider,
        *,
        registry: CorrelationRegistry | None = None,
        cache: PreviewCache | None = None,
        events: TransitionEvents | None = None,
        acting_user: str | None = None,
        preview_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.provider = provider
        self.registry = registry if registry is not None else CorrelationRegistry(clock=clock)
        self.cache = cache if cache is not None else PreviewCache(self._load_preview, ttl=preview_ttl, clock=clock)
        self.events = events if events is not None else TransitionEvents()
        self.acting_user = acting_user
        self._clock = clock
        self._attempts_lock = threading.Lock()
        self._attempts: dict[int, TransitionAttempt] = {}

    # -- Provider access ----------------------------------------------------

    def _lookup(self, work_item_id: int, *, with_fields: bool = True) -> tuple[WorkItemRef, NextState | None]:
        try:
            item = self.provider.get_work_item(work_item_id)
            return item, self.provider.query_next_state(item, with_fields=with_fields)
        except ProviderError as exc:
            raise TransitionRejectedError(work_item_id, exc) from exc

    def _apply(
        self,
        work_item_id: int,
        target_state: str,
        fields: Mapping[str, Any],
        *,
        expected_rev: int | None,
        reason: str | None = None,
    ) -> None:
        try:
            self.provider.apply_transition(
                work_item_id, target_state, fields, expected_rev=expected_rev, reason=reason
            )
        except ProviderError as exc:
            logger.warning(
                "System of record rejected transition of work item %d to '%s': %s",
                work_item_id,
                target_state,
                exc,
                extra={"work_item_id": work_item_id, "target_state": target_state, "error": str(exc)},
            )
            raise TransitionRejectedError(work_item_id, exc) from exc

    def _load_preview(self, work_item_id: int) -> tuple[str, str | None]:
        item, next_state = self._lookup(work_item_id, with_fields=False)
        return item.current_state, next_state.target_state if next_state else None

    # -- Attempt tracking ---------------------------------------------------

    def _start_attempt(self, work_item_id: int) -> TransitionAttempt:
        attempt = TransitionAttempt(work_item_id=work_item_id, requested_at=self._clock())
        with self._attempts_lock:
            previous = self._attempts.get(work_item_id)
            self._attempts[work_item_id] = attempt
        if previous is not None:
            logger.debug("New attempt for work item %d supersedes one started at %s", work_item_id, previous.requested_at)
        return attempt

    def _end_attempt(self, attempt: TransitionAttempt) -> None:
        with self._attempts_lock:
            if self._attempts.get(attempt.work_item_id) is attempt:
                del self._attempts[attempt.work_item_id]

    # -- Protocol -----------------------------------------------------------

    def begin(self, work_item_id: int) -> Completed | Pending | NoTransition:
        """Start moving a work item to its next state.

        Returns ``Completed`` when no extra fields are needed (the change is
        already applied), ``Pending`` when values must be collected and passed
        to ``finish``, or ``NoTransition`` when the workflow has no next state.

        Raises:
            TransitionRejectedError: The provider refused or could not be reached.
            TransitionAbandonedError: A newer ``begin`` for the same item took over.
        """
        start = time.monotonic()
        attempt = self._start_attempt(work_item_id)
        try:
            item, next_state = self._lookup(work_item_id)
            if next_state is None:
                logger.info(
                    "No transition available for work item %d from '%s'",
                    work_item_id,
                    item.current_state,
                    extra={"work_item_id": work_item_id, "duration_ms": _elapsed_ms(start)},
                )
                return NoTransition(work_item_id=work_item_id, current_state=item.current_state)

            target = next_state.target_state
            prompts = build_prompts(next_state.required_fields)

            if not prompts:
                self._apply(work_item_id, target, {}, expected_rev=item.rev)
                stale = self.registry.pending_for(work_item_id)
                if stale is not None:
                    self.registry.discard(stale.correlation_id)
                self.cache.invalidate(work_item_id)
                completed = Completed(work_item_id=work_item_id, target_state=target)
                logger.info(
                    "Transitioned work item %d: '%s' -> '%s'",
                    work_item_id,
                    item.current_state,
                    target,
                    extra={"work_item_id": work_item_id, "target_state": target, "duration_ms": _elapsed_ms(start)},
                )
                self.events.emit_completed(completed)
                return completed

            with self._attempts_lock:
                if self._attempts.get(work_item_id) is not attempt:
                    raise TransitionAbandonedError(work_item_id)
                entry = self.registry.register(
                    work_item_id,
                    target,
                    prompts,
                    current_state=item.current_state,
                    rev=item.rev,
                )
            pending = Pending(
                correlation_id=entry.correlation_id,
                work_item_id=work_item_id,
                current_state=item.current_state,
                target_state=target,
                prompts=entry.prompts,
            )
            logger.info(
                "Transition of work item %d to '%s' needs %d field(s)",
                work_item_id,
                target,
                len(prompts),
                extra={
                    "work_item_id": work_item_id,
                    "correlation_id": entry.correlation_id,
                    "target_state": target,
                    "duration_ms": _elapsed_ms(start),
                },
            )
            self.events.emit_fields_required(pending)
            return pending
        finally:
            self._end_attempt(attempt)

    def finish(self, correlation_id: str, values: Mapping[str, Any] | None = None) -> TransitionOutcome:
        """Complete a pending transition with the collected field values.

        Raises:
            CorrelationNotFoundError: Unknown, consumed, cancelled, superseded,
                expired, or already being finished by another caller.
            ValidationFailedError: A required value is missing or a value does
                not coerce. Raised before any provider call.
            TransitionRejectedError: The provider refused the update. The
                pending transition survives for a corrected retry.
        """
        start = time.monotonic()
        entry = self.registry.get(correlation_id)
        fields = coerce_values(entry.prompts, values or {}, acting_user=self.acting_user)

        entry = self.registry.claim(correlation_id)
        try:
            self._apply(
                entry.work_item_id,
                entry.target_state,
                fields,
                expected_rev=entry.rev,
                reason=default_reason(entry.target_state),
            )
        except Exception:
            self.registry.release(correlation_id)
            raise

        self.registry.consume(correlation_id)
        self.cache.invalidate(entry.work_item_id)
        logger.info(
            "Finished transition of work item %d to '%s'",
            entry.work_item_id,
            entry.target_state,
            extra={
                "work_item_id": entry.work_item_id,
                "correlation_id": correlation_id,
                "target_state": entry.target_state,
                "duration_ms": _elapsed_ms(start),
            },
        )
        outcome = TransitionOutcome(work_item_id=entry.work_item_id, target_state=entry.target_state, fields=fields)
        self.events.emit_completed(outcome)
        return outcome

    def cancel(self, correlation_id: str) -> bool:
        """Drop a pending transition without applying it. Idempotent."""
        removed = self.registry.discard(correlation_id)
        if removed:
            logger.info("Cancelled pending transition %s", correlation_id, extra={"correlation_id": correlation_id})
        return removed

    def preview(self, work_item_id: int) -> PreviewEntry:
        """Predict the next transition without applying it (cached).

        Raises:
            TransitionRejectedError: The provider could not answer.
        """
        return self.cache.get(work_item_id)

    def pending(self, work_item_id: int) -> PendingTransition | None:
        """The live pending transition for a work item, if any."""
        return self.registry.pending_for(work_item_id)

    def refresh(self) -> None:
        """Forget every preview (and expired pending entries) after a full reload."""
        self.cache.invalidate_all()
        self.registry.purge_expired()
