"""Background poller that re-fires webhook chains whose retry time has come."""

import asyncio
import logging
from typing import Optional

from matter_intake.config import settings
from matter_intake.webhooks.delivery import WebhookService

logger = logging.getLogger(__name__)


class RetryScheduler:
    """
    Polls the webhook log for due ``retry`` rows and redelivers them.

    ``run_once()`` does a single sweep and is what tests drive directly;
    ``start()``/``stop()`` wrap it in a loop for the running service.
    """

    def __init__(
        self,
        webhooks: WebhookService,
        poll_interval_sec: Optional[float] = None,
        batch_size: int = 50,
    ) -> None:
        self.webhooks = webhooks
        self.poll_interval_sec = poll_interval_sec or settings.webhooks.retry_poll_interval_sec
        self.batch_size = batch_size
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def run_once(self) -> int:
        """Redeliver every chain currently due. Returns how many were attempted."""
        due = await self.webhooks.log_store.list_due(self.webhooks.now(), limit=self.batch_size)
        for chain in due:
            try:
                await self.webhooks.redeliver(chain)
            except Exception:
                logger.exception("Retry of webhook %s failed unexpectedly", chain.id)
        if due:
            logger.info("Retry sweep attempted %d webhook(s)", len(due))
        return len(due)

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Retry sweep failed")
            await asyncio.sleep(self.poll_interval_sec)

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Webhook retry scheduler started (interval=%.0fs)", self.poll_interval_sec)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Webhook retry scheduler stopped")
