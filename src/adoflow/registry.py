"""In-memory correlation registry for pending transitions.

Maps correlation ids to ``PendingTransition`` entries for one client
session. All operations take a single lock and never call out while holding
it, so a slow provider on one transition cannot stall the registry.

Entry lifecycle::

    register ──> live ──claim──> claimed ──consume──> gone
                  ^                 │
                  └─────release─────┘
    live/claimed ──discard / superseded / expired──> gone

A claimed entry is invisible to ``claim`` and ``get``: the second of two
racing ``finish`` calls observes ``CorrelationNotFoundError``.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable, Iterable

from adoflow.errors import CorrelationNotFoundError
from adoflow.models import FieldPrompt, PendingTransition

logger = logging.getLogger(__name__)


class CorrelationRegistry:
    """Thread-safe store of pending transitions keyed by correlation id.

    At most one entry exists per work item: registering a new one for the
    same item supersedes (removes) the old one. ``max_age`` (seconds), when
    set, expires entries passively on access; ``None`` keeps them until they
    are consumed, discarded, or superseded.
    """

    def __init__(
        self,
        *,
        max_age: float | None = None,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, PendingTransition] = {}
        self._by_item: dict[int, str] = {}
        self._claimed: set[str] = set()
        self._max_age = max_age
        self._clock = clock
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))

    @property
    def max_age(self) -> float | None:
        return self._max_age

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # -- Internal (caller holds the lock) -----------------------------------

    def _drop(self, correlation_id: str) -> PendingTransition | None:
        entry = self._entries.pop(correlation_id, None)
        self._claimed.discard(correlation_id)
        if entry is not None and self._by_item.get(entry.work_item_id) == correlation_id:
            del self._by_item[entry.work_item_id]
        return entry

    def _is_expired(self, entry: PendingTransition, now: float) -> bool:
        return self._max_age is not None and now - entry.created_at > self._max_age

    def _live(self, correlation_id: str) -> PendingTransition:
        entry = self._entries.get(correlation_id)
        if entry is None or correlation_id in self._claimed:
            raise CorrelationNotFoundError(correlation_id)
        if self._is_expired(entry, self._clock()):
            self._drop(correlation_id)
            logger.info(
                "Pending transition %s expired",
                correlation_id,
                extra={"correlation_id": correlation_id, "work_item_id": entry.work_item_id},
            )
            raise CorrelationNotFoundError(correlation_id)
        return entry

    # -- Public API ---------------------------------------------------------

    def register(
        self,
        work_item_id: int,
        target_state: str,
        prompts: Iterable[FieldPrompt] = (),
        *,
        current_state: str = "",
        rev: int | None = None,
    ) -> PendingTransition:
        """Create a new entry with a fresh id, superseding any for this item."""
        entry = PendingTransition(
            correlation_id=self._id_factory(),
            work_item_id=work_item_id,
            target_state=target_state,
            created_at=self._clock(),
            prompts=tuple(prompts),
            current_state=current_state,
            rev=rev,
        )
        with self._lock:
            if entry.correlation_id in self._entries:
                msg = f"Correlation id collision: {entry.correlation_id}"
                raise RuntimeError(msg)
            previous = self._by_item.get(work_item_id)
            if previous is not None:
                self._drop(previous)
                logger.info(
                    "Superseded pending transition %s for work item %d",
                    previous,
                    work_item_id,
                    extra={"correlation_id": previous, "work_item_id": work_item_id},
                )
            self._entries[entry.correlation_id] = entry
            self._by_item[work_item_id] = entry.correlation_id
        return entry

    def get(self, correlation_id: str) -> PendingTransition:
        """Look up a live entry. Raises ``CorrelationNotFoundError``."""
        with self._lock:
            return self._live(correlation_id)

    def claim(self, correlation_id: str) -> PendingTransition:
        """Atomically mark a live entry as in flight and return it.

        Exactly one of several concurrent claimers succeeds; the others get
        ``CorrelationNotFoundError``.
        """
        with self._lock:
            entry = self._live(correlation_id)
            self._claimed.add(correlation_id)
            return entry

    def release(self, correlation_id: str) -> bool:
        """Return a claimed entry to live. False if it was dropped meanwhile."""
        with self._lock:
            if correlation_id not in self._claimed:
                return False
            self._claimed.discard(correlation_id)
            return correlation_id in self._entries

    def consume(self, correlation_id: str) -> PendingTransition | None:
        """Remove an entry after it was applied."""
        with self._lock:
            return self._drop(correlation_id)

    def discard(self, correlation_id: str) -> bool:
        """Remove a live entry without applying it. Idempotent.

        Returns False when the id is unknown or currently claimed by a
        ``finish`` in flight (the first writer wins).
        """
        with self._lock:
            if correlation_id in self._claimed or correlation_id not in self._entries:
                return False
            self._drop(correlation_id)
            return True

    def pending_for(self, work_item_id: int) -> PendingTransition | None:
        """The live entry for a work item, if any."""
        with self._lock:
            correlation_id = self._by_item.get(work_item_id)
            if correlation_id is None:
                return None
            try:
                return self._live(correlation_id)
            except CorrelationNotFoundError:
                return None

    def purge_expired(self) -> list[str]:
        """Drop every expired, unclaimed entry. Returns the removed ids."""
        if self._max_age is None:
            return []
        with self._lock:
            now = self._clock()
            expired = [
                cid
                for cid, entry in self._entries.items()
                if cid not in self._claimed and self._is_expired(entry, now)
            ]
            for cid in expired:
                self._drop(cid)
        if expired:
            logger.info("Purged %d expired pending transition(s)", len(expired))
        return expired
