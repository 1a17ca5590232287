import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from app.repositories.client_repository import ClientRepository
from app.schemas.queue import ProcessQueueResult, SchedulerStatus
from app.services.queue_processor import QueueProcessor

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QueueScheduler:
    """Background task that processes every active client's queue.

    One cycle runs :meth:`QueueProcessor.process_client` for all active
    clients concurrently (at most ``max_parallel`` at a time), then
    sleeps ``interval_seconds``.  A failure for one client is logged and
    never stops the others or the loop.
    """

    def __init__(
        self,
        processor: QueueProcessor,
        clients: ClientRepository,
        interval_seconds: int = 300,
        max_parallel: int = 10,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._processor = processor
        self._clients = clients
        self._interval = interval_seconds
        self._max_parallel = max(1, max_parallel)
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._cycles = 0
        self._last_started: Optional[datetime] = None
        self._last_finished: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the loop; calling it while running does nothing."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info("Queue scheduler started (interval=%ds)", self._interval)

    async def stop(self) -> None:
        """Cancel the loop and wait for it; safe to call when stopped."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            logger.info("Queue scheduler stopped")

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            running=self.is_running,
            interval_seconds=self._interval,
            cycles_completed=self._cycles,
            last_cycle_started_at=self._last_started,
            last_cycle_finished_at=self._last_finished,
        )

    async def run_once(self) -> List[ProcessQueueResult]:
        """Process every active client once."""
        self._last_started = self._clock()
        clients = await self._clients.list_active()
        semaphore = asyncio.Semaphore(self._max_parallel)

        async def _guarded(client_id: str) -> ProcessQueueResult:
            async with semaphore:
                return await self._process_one(client_id)

        results = await asyncio.gather(*(_guarded(c.id) for c in clients))

        self._cycles += 1
        self._last_finished = self._clock()
        dialled = sum(r.successful for r in results)
        if dialled:
            logger.info(
                "Queue cycle %d: %d call(s) placed across %d client(s)",
                self._cycles,
                dialled,
                len(results),
            )
        return list(results)

    async def _process_one(self, client_id: str) -> ProcessQueueResult:
        try:
            return await self._processor.process_client(client_id)
        except Exception as exc:
            logger.error(
                "Queue processing failed for client %s", client_id, exc_info=True
            )
            return ProcessQueueResult(
                client_id=client_id, errors=[str(exc)], reason="Processing failed"
            )

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.error("Queue scheduler cycle failed", exc_info=True)
            await asyncio.sleep(self._interval)
