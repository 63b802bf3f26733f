"""
Deduplicating work queue for reconcile keys.

Semantics:
- A key waits in the queue at most once, however many times it is added.
- A key handed out by get() is "processing" until done(); re-adding it in
  the meantime parks it as dirty and it is queued again on done(), so two
  workers never hold the same key.
- add_rate_limited() re-adds after a per-key exponential backoff
  (base_delay * 2**failures, capped at max_delay); forget() resets it.
"""

import asyncio
import logging
from collections import deque
from typing import Optional

from hoh_reconcile.metrics import QUEUE_DEPTH, QUEUE_RETRIES

logger = logging.getLogger(__name__)


class WorkQueue:
    """asyncio work queue with per-key mutual exclusion."""

    def __init__(self, base_delay: float = 0.005, max_delay: float = 1000.0):
        self.base_delay = base_delay
        self.max_delay = max_delay

        self._queue: deque[str] = deque()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._failures: dict[str, int] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}

        self._not_empty = asyncio.Event()
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, key: str) -> None:
        """Mark ``key`` as needing reconciliation."""
        if self._shutting_down or key in self._dirty:
            return

        self._dirty.add(key)
        if key in self._processing:
            return

        self._queue.append(key)
        QUEUE_DEPTH.set(len(self._queue))
        self._not_empty.set()

    async def get(self) -> Optional[str]:
        """Wait for the next key. Returns None once the queue is shut down and drained."""
        while True:
            if self._queue:
                key = self._queue.popleft()
                if not self._queue:
                    self._not_empty.clear()
                QUEUE_DEPTH.set(len(self._queue))
                self._processing.add(key)
                self._dirty.discard(key)
                return key

            if self._shutting_down:
                return None

            await self._not_empty.wait()

    def done(self, key: str) -> None:
        """Finish processing ``key``; requeue it if it was re-added meanwhile."""
        self._processing.discard(key)
        if key in self._dirty:
            self._queue.append(key)
            QUEUE_DEPTH.set(len(self._queue))
            self._not_empty.set()

    def add_after(self, key: str, delay: float) -> None:
        """Add ``key`` once ``delay`` seconds have passed."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return

        existing = self._timers.pop(key, None)
        if existing is not None:
            existing.cancel()

        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(delay, self._fire, key)

    def _fire(self, key: str) -> None:
        self._timers.pop(key, None)
        self.add(key)

    def when(self, key: str) -> float:
        """Backoff delay for the next failure of ``key``; counts the failure."""
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        return min(self.base_delay * (2 ** failures), self.max_delay)

    def add_rate_limited(self, key: str) -> float:
        """Re-add ``key`` after its backoff delay. Returns the delay used."""
        delay = self.when(key)
        QUEUE_RETRIES.inc()
        logger.debug(f"Requeue {key} in {delay:.3f}s (attempt {self._failures[key]})")
        self.add_after(key, delay)
        return delay

    def forget(self, key: str) -> None:
        """Stop tracking failures for ``key``."""
        self._failures.pop(key, None)

    def num_requeues(self, key: str) -> int:
        return self._failures.get(key, 0)

    def shutdown(self) -> None:
        """Stop accepting keys and wake every waiting getter."""
        self._shutting_down = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._not_empty.set()
