"""
Discovery frontier: the stops known so far plus the queue of stops waiting
for their next departures poll.

Selection is strict FIFO. When the queue runs dry, every discovered stop is
queued again in discovery order (seeds first), so each stop keeps being
revisited instead of being polled once and forgotten.
"""

import logging
import threading
from collections import deque
from typing import Iterable

logger = logging.getLogger(__name__)


class Frontier:
    """
    Owned by the scheduler; ``discover`` may be called from ingestion workers.

    Invariants: every pending id is discovered, and the discovered set only
    grows.
    """

    def __init__(self, seed_stop_ids: Iterable[str] = ()):
        self._lock = threading.Lock()
        self._discovered: dict[str, None] = {}   # insertion-ordered set
        self._pending: deque[str] = deque()
        self._revisits = 0
        for stop_id in seed_stop_ids:
            self.discover(stop_id)

    def seen(self, stop_id: str) -> bool:
        with self._lock:
            return stop_id in self._discovered

    def discover(self, stop_id: str) -> bool:
        """Add a stop and queue it. Returns True only for the call that added it."""
        with self._lock:
            if stop_id in self._discovered:
                return False
            self._discovered[stop_id] = None
            self._pending.append(stop_id)
            return True

    def take_batch(self, n: int) -> list[str]:
        """Remove and return up to ``n`` pending stops, starting a revisit round if none are pending."""
        with self._lock:
            if not self._pending and self._discovered:
                self._pending.extend(self._discovered)
                self._revisits += 1
                logger.info(
                    f"Frontier queue empty, revisiting all {len(self._discovered)} discovered stops "
                    f"(round {self._revisits})"
                )
            batch = []
            while self._pending and len(batch) < n:
                batch.append(self._pending.popleft())
            return batch

    @property
    def discovered_count(self) -> int:
        with self._lock:
            return len(self._discovered)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def revisit_rounds(self) -> int:
        return self._revisits
