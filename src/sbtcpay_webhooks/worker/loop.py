"""Polling worker that drains the delivery queue one delivery at a time."""

import asyncio
import logging
from typing import Optional

from sbtcpay_webhooks.common.exceptions import QueueUnavailableError, StorageError
from sbtcpay_webhooks.deliveries.executor import DeliveryExecutor
from sbtcpay_webhooks.queue.redis_queue import DeliveryQueue

logger = logging.getLogger(__name__)


class WebhookWorker:
    """Single-threaded cooperative poll loop.

    At most one delivery executes at a time per worker. Several workers may
    share one queue; claiming is atomic in :class:`DeliveryQueue`.
    """

    def __init__(
        self,
        queue: DeliveryQueue,
        executor: DeliveryExecutor,
        poll_interval: float = 1.0,
    ):
        self.queue = queue
        self.executor = executor
        self.poll_interval = poll_interval
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            logger.info("Webhook worker is already running")
            return
        logger.info("Starting webhook worker")
        await self.queue.requeue_orphans()
        self._task = asyncio.create_task(self._run(), name="webhook-worker")

    def request_stop(self) -> None:
        """Ask the loop to exit after the current tick. Safe from signal handlers."""
        self._stopping.set()

    async def stop(self) -> None:
        """Stop ticking; waits for the delivery in progress, if any, to finish."""
        if self._task is None:
            return
        logger.info("Stopping webhook worker")
        self._stopping.set()
        await self._task
        self._task = None
        self._stopping.clear()

    async def run_forever(self) -> None:
        await self.start()
        if self._task is not None:
            await self._task
            self._task = None
            self._stopping.clear()

    async def _run(self) -> None:
        while not self._stopping.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Webhook worker stopped")

    async def tick(self) -> bool:
        """Process at most one queued delivery. Returns True if one was claimed."""
        try:
            delivery_id = await self.queue.dequeue()
        except QueueUnavailableError:
            logger.exception("Queue unavailable; will retry next tick")
            return False
        if delivery_id is None:
            return False

        logger.info("Processing webhook delivery %s", delivery_id)
        try:
            await self.executor.execute(delivery_id)
        except StorageError:
            logger.exception("Storage error processing delivery %s", delivery_id)
        except QueueUnavailableError:
            logger.exception("Queue error processing delivery %s", delivery_id)
        except Exception:
            logger.exception("Error processing webhook delivery %s", delivery_id)
        finally:
            try:
                await self.queue.complete(delivery_id)
            except QueueUnavailableError:
                # Stays in flight; the next startup's requeue_orphans recovers it.
                logger.exception("Could not mark delivery %s complete", delivery_id)
        return True

    async def status(self) -> dict:
        stats = await self.queue.stats()
        return {"running": self.running, **stats}
