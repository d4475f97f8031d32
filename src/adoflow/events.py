"""Push notifications for transition completion and field requests.

Each executor owns one ``TransitionEvents``; listeners subscribe explicitly.
Payloads are the same objects ``begin``/``finish`` return, so event-driven
callers render exactly what call/response callers do.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

from adoflow.models import Completed, Pending, TransitionOutcome

logger = logging.getLogger(__name__)

TRANSITION_COMPLETE = "workitem:transition_complete"
FIELDS_REQUIRED = "workitem:fields_required"

CompletedListener = Callable[[Completed | TransitionOutcome], Any]
FieldsRequiredListener = Callable[[Pending], Any]


class TransitionEvents:
    """Listener registry for one executor.

    A listener that raises is logged and skipped; it never undoes or fails
    the transition that triggered it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: dict[str, list[Callable[[Any], Any]]] = {
            TRANSITION_COMPLETE: [],
            FIELDS_REQUIRED: [],
        }

    def _subscribe(self, event: str, listener: Callable[[Any], Any]) -> Callable[[], None]:
        with self._lock:
            self._listeners[event].append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners[event]:
                    self._listeners[event].remove(listener)

        return unsubscribe

    def on_completed(self, listener: CompletedListener) -> Callable[[], None]:
        """Subscribe to completions. Returns an unsubscribe callable."""
        return self._subscribe(TRANSITION_COMPLETE, listener)

    def on_fields_required(self, listener: FieldsRequiredListener) -> Callable[[], None]:
        """Subscribe to pending-fields notifications. Returns an unsubscribe callable."""
        return self._subscribe(FIELDS_REQUIRED, listener)

    def _emit(self, event: str, payload: Completed | TransitionOutcome | Pending) -> None:
        with self._lock:
            listeners = list(self._listeners[event])
        for listener in listeners:
            try:
                listener(payload)
            except Exception:
                logger.warning(
                    "Listener for %s failed",
                    event,
                    exc_info=True,
                    extra={"work_item_id": payload.work_item_id},
                )

    def emit_completed(self, payload: Completed | TransitionOutcome) -> None:
        self._emit(TRANSITION_COMPLETE, payload)

    def emit_fields_required(self, payload: Pending) -> None:
        self._emit(FIELDS_REQUIRED, payload)
