import asyncio
import logging
from typing import Optional

from gateway.domain.payment_worker import PaymentWorker

logger = logging.getLogger(__name__)


class BackgroundWorker:
    """Background loop that drains the payment stream one message at a time."""

    def __init__(
        self,
        payment_worker: PaymentWorker,
        poll_interval: float = 0.1,
        pending_interval: float = 1.0,
    ):
        self.payment_worker = payment_worker
        self.poll_interval = poll_interval
        self.pending_interval = pending_interval
        self._task: Optional[asyncio.Task] = None
        self._running = False

    async def start(self) -> None:
        """Make sure the consumer group exists, then start the worker loop.

        A failure to create the group propagates: the worker cannot consume
        without it.
        """
        if self._running:
            return

        await self.payment_worker.ensure_consumer_group()

        self._running = True
        self._task = asyncio.create_task(self._worker_loop())
        logger.info(f"Background worker started as {self.payment_worker.consumer_name}")

    async def stop(self) -> None:
        """Stop the background worker loop."""
        if not self._running:
            return

        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        logger.info("Background worker stopped")

    def is_running(self) -> bool:
        """Check if the background worker is running."""
        return self._running

    async def run_forever(self) -> None:
        """Start the worker and block until it is cancelled."""
        await self.start()
        try:
            await self._task
        finally:
            await self.stop()

    async def _worker_loop(self) -> None:
        """Main worker loop; each iteration is isolated from the failures of the others."""
        loop = asyncio.get_running_loop()
        last_pending_sweep = loop.time()

        try:
            while self._running:
                try:
                    await self.payment_worker.process_next_payment()

                    if loop.time() - last_pending_sweep >= self.pending_interval:
                        last_pending_sweep = loop.time()
                        await self.payment_worker.process_pending_payments()

                except Exception as e:
                    logger.error(f"Error in background worker loop: {e}")

                await asyncio.sleep(self.poll_interval)

        except asyncio.CancelledError:
            logger.debug("Background worker loop cancelled")
        finally:
            self._running = False
