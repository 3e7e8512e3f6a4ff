"""
Per-key de-duplicating work queue with delayed requeue.

Guarantees that a claim key is handed to at most one worker at a time:

- a key added while queued is not queued twice
- a key added while being processed is re-queued only after done()
- add_after() keeps only the earliest pending deadline per key

Usage:
    >>> queue = WorkQueue()
    >>> queue.add("team-a/tenant1")
    >>> key = await queue.get()
    >>> try:
    ...     await process(key)
    ... finally:
    ...     queue.done(key)
"""
import asyncio
from typing import Dict, Optional, Set, Tuple

from dbclaim.config.logging import get_logger

logger = get_logger(__name__)


class WorkQueue:
    """Work queue for claim keys; must be used from a single event loop."""

    def __init__(self):
        self._ready: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self._dirty: Set[str] = set()
        self._processing: Set[str] = set()
        self._waiting: Dict[str, Tuple[float, asyncio.TimerHandle]] = {}
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._dirty)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, key: str) -> None:
        """Mark key as needing processing."""
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            # Picked up again by done()
            return
        self._ready.put_nowait(key)

    def add_after(self, key: str, delay: float) -> None:
        """Add key once delay seconds have elapsed."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return

        loop = asyncio.get_running_loop()
        deadline = loop.time() + delay
        pending = self._waiting.get(key)
        if pending is not None:
            if pending[0] <= deadline:
                return
            pending[1].cancel()

        handle = loop.call_at(deadline, self._fire, key)
        self._waiting[key] = (deadline, handle)
        logger.debug("claim_requeue_scheduled", claim=key, delay_seconds=round(delay, 3))

    def _fire(self, key: str) -> None:
        self._waiting.pop(key, None)
        self.add(key)

    def forget(self, key: str) -> None:
        """Drop any delayed requeue for key."""
        pending = self._waiting.pop(key, None)
        if pending is not None:
            pending[1].cancel()

    async def get(self) -> Optional[str]:
        """Next key to process, or None once the queue is shut down."""
        while True:
            key = await self._ready.get()
            if key is None:
                return None
            # Skip stale entries for keys that were already handed out
            if key in self._processing or key not in self._dirty:
                continue
            self._dirty.discard(key)
            self._processing.add(key)
            return key

    def done(self, key: str) -> None:
        """Mark key as finished; re-queues it if it was added meanwhile."""
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._ready.put_nowait(key)

    def shutdown(self, workers: int = 1) -> None:
        """Stop accepting work and release up to ``workers`` blocked getters."""
        self._shutting_down = True
        for _, handle in self._waiting.values():
            handle.cancel()
        self._waiting.clear()
        for _ in range(workers):
            self._ready.put_nowait(None)
