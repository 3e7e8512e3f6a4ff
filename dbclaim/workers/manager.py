"""
Claim manager: feeds claim-changed notifications into the work queue and
runs concurrent reconcile workers over it.
"""
import asyncio
from typing import Dict, List, Optional

import structlog

from dbclaim.config.logging import get_logger
from dbclaim.services.claim_store import ClaimSource
from dbclaim.utils.retry import backoff_delay
from dbclaim.workers.reconciliation_worker import ReconciliationController
from dbclaim.workers.work_queue import WorkQueue

logger = get_logger(__name__)


class ClaimManager:
    """
    Runs ``workers`` reconcile loops; distinct claims proceed concurrently,
    a single claim is never reconciled by two workers at once.
    """

    def __init__(
        self,
        controller: ReconciliationController,
        source: ClaimSource,
        workers: int = 4,
        queue: Optional[WorkQueue] = None,
        backoff_initial: float = 1.0,
        backoff_max: float = 300.0,
        resync_interval: Optional[float] = None,
    ):
        self.controller = controller
        self.source = source
        self.workers = workers
        self.queue = queue or WorkQueue()
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max
        self.resync_interval = resync_interval
        self.running = False
        self._failures: Dict[str, int] = {}
        self._tasks: List[asyncio.Task] = []

    async def start(self):
        """Run until stop() is called."""
        self.running = True
        logger.info("claim_manager_started", workers=self.workers)

        watchers = [asyncio.create_task(self._watch())]
        if self.resync_interval:
            watchers.append(asyncio.create_task(self._resync()))
        self._tasks = [asyncio.create_task(self._worker(i)) for i in range(self.workers)]
        try:
            await asyncio.gather(*self._tasks)
        finally:
            for watcher in watchers:
                watcher.cancel()
            await asyncio.gather(*watchers, return_exceptions=True)
            self.running = False
            logger.info("claim_manager_stopped")

    async def stop(self):
        """Stop workers once their current pass completes."""
        logger.info("stopping_claim_manager")
        self.queue.shutdown(self.workers)

    async def _watch(self):
        async for key in self.source.watch():
            self.queue.add(key)

    async def _resync(self):
        """Periodically re-queue every claim so drift is caught without an event."""
        while True:
            await asyncio.sleep(self.resync_interval)
            keys = await self.source.list_keys()
            logger.info("claim_resync", claim_count=len(keys))
            for key in keys:
                self.queue.add(key)

    async def _worker(self, worker_id: int):
        log = logger.bind(worker_id=worker_id)
        log.debug("reconcile_worker_started")
        while True:
            key = await self.queue.get()
            if key is None:
                break
            try:
                # Every log line emitted during the pass carries the claim and worker
                with structlog.contextvars.bound_contextvars(claim=key, worker_id=worker_id):
                    await self.process(key)
            finally:
                self.queue.done(key)
        log.debug("reconcile_worker_stopped")

    async def process(self, key: str) -> None:
        """Reconcile one claim and schedule its next pass."""
        try:
            claim = await self.source.get(key)
            if claim is None:
                logger.info("claim_not_found_skipping", claim=key)
                self.queue.forget(key)
                self._failures.pop(key, None)
                return
            result = await self.controller.reconcile(claim)
        except Exception as e:
            # Claim source or status write-back failed; retry the whole pass later
            failures = self._failures.get(key, 0) + 1
            self._failures[key] = failures
            delay = backoff_delay(failures, initial_delay=self.backoff_initial, max_delay=self.backoff_max)
            logger.error(
                "reconcile_pass_error",
                claim=key,
                error=str(e),
                consecutive_failures=failures,
                requeue_after_seconds=delay,
                exc_info=True,
            )
            self.queue.add_after(key, delay)
            return

        self._failures.pop(key, None)
        if result.requeue:
            self.queue.add_after(key, result.requeue_after or 0.0)
