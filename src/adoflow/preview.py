"""Short-lived read-through cache of next-transition previews.

Previews drive icons and tooltips, so staleness inside the TTL is fine; a
completed transition still invalidates its entry immediately. Each entry
carries its own expiry and is checked at read time. No timer thread.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from adoflow.models import PreviewEntry

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30.0

# Loader answers (current_state, target_state or None) for a work item id.
PreviewLoader = Callable[[int], tuple[str, str | None]]


class PreviewCache:
    """Map of work item id to ``PreviewEntry``.

    The loader runs outside the lock, so a slow lookup for one item never
    blocks reads for another. Readers see either the old or the new entry,
    never a partial one. A load that races with ``invalidate`` or
    ``invalidate_all`` is returned to its caller but not stored.
    """

    def __init__(
        self,
        loader: PreviewLoader,
        *,
        ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if ttl < 0:
            msg = f"Preview TTL must be >= 0, got {ttl}"
            raise ValueError(msg)
        self._loader = loader
        self._ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[int, PreviewEntry] = {}
        # Bumped by invalidation so in-flight loads know their result is stale.
        self._generation = 0
        self._item_generation: dict[int, int] = {}
        # Per-item counters only live while a load for that item is in flight.
        self._loading: dict[int, int] = {}

    @property
    def ttl(self) -> float:
        return self._ttl

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _stamp(self, work_item_id: int) -> tuple[int, int]:
        return self._generation, self._item_generation.get(work_item_id, 0)

    def _finish_load(self, work_item_id: int) -> None:
        remaining = self._loading[work_item_id] - 1
        if remaining:
            self._loading[work_item_id] = remaining
        else:
            del self._loading[work_item_id]
            self._item_generation.pop(work_item_id, None)

    def peek(self, work_item_id: int) -> PreviewEntry | None:
        """Return the cached entry if unexpired, without loading. Evicts on expiry."""
        with self._lock:
            entry = self._entries.get(work_item_id)
            if entry is None:
                return None
            if self._clock() > entry.expires_at:
                del self._entries[work_item_id]
                return None
            return entry

    def get(self, work_item_id: int) -> PreviewEntry:
        """Cached entry if present and unexpired, else load, store, and return."""
        cached = self.peek(work_item_id)
        if cached is not None:
            logger.debug("Preview cache hit for work item %d", work_item_id)
            return cached

        with self._lock:
            stamp = self._stamp(work_item_id)
            self._loading[work_item_id] = self._loading.get(work_item_id, 0) + 1

        try:
            current_state, target_state = self._loader(work_item_id)
            entry = PreviewEntry(
                work_item_id=work_item_id,
                current_state=current_state,
                target_state=target_state,
                available=target_state is not None,
                expires_at=self._clock() + self._ttl,
            )
            with self._lock:
                stored = self._stamp(work_item_id) == stamp
                if stored:
                    self._entries[work_item_id] = entry
        finally:
            with self._lock:
                self._finish_load(work_item_id)
        if stored:
            logger.debug(
                "Cached preview for work item %d (expires in %.0fs)",
                work_item_id,
                self._ttl,
                extra={"work_item_id": work_item_id, "target_state": target_state},
            )
        else:
            logger.debug("Discarding preview for work item %d: invalidated during load", work_item_id)
        return entry

    def invalidate(self, work_item_id: int) -> None:
        """Drop one entry. Call after anything that may change the item's state."""
        with self._lock:
            self._entries.pop(work_item_id, None)
            if work_item_id in self._loading:
                self._item_generation[work_item_id] = self._item_generation.get(work_item_id, 0) + 1
        logger.debug("Invalidated preview for work item %d", work_item_id)

    def invalidate_all(self) -> None:
        """Drop every entry. Call when the full work item list is reloaded."""
        with self._lock:
            self._entries.clear()
            self._item_generation.clear()
            self._generation += 1
        logger.debug("Cleared all previews")
