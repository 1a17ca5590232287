"""Tests for the periodic multi-client scheduler."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.repositories import ClientRepository
from app.schemas.queue import ProcessQueueResult
from app.services.queue_scheduler import QueueScheduler


def _processor(side_effect=None) -> MagicMock:
    processor = MagicMock()

    async def _process(client_id):
        return ProcessQueueResult(client_id=client_id, processed=1, successful=1)

    processor.process_client = AsyncMock(side_effect=side_effect or _process)
    return processor


class TestRunOnce:
    """A single cycle over all active clients."""

    @pytest.mark.asyncio
    async def test_processes_every_active_client(self, store, make_client, clock):
        await make_client("client-1")
        await make_client("client-2")
        await make_client("client-3", Status="inactive")
        processor = _processor()
        scheduler = QueueScheduler(processor, ClientRepository(store), clock=clock)

        results = await scheduler.run_once()

        processed = sorted(c.args[0] for c in processor.process_client.await_args_list)
        assert processed == ["client-1", "client-2"]
        assert len(results) == 2
        status = scheduler.status()
        assert status.cycles_completed == 1
        assert status.last_cycle_started_at == clock.now
        assert status.last_cycle_finished_at == clock.now

    @pytest.mark.asyncio
    async def test_one_failing_client_does_not_stop_the_others(
        self, store, make_client, clock
    ):
        await make_client("client-1")
        await make_client("client-2")

        async def _process(client_id):
            if client_id == "client-1":
                raise RuntimeError("record store exploded")
            return ProcessQueueResult(client_id=client_id, successful=1, processed=1)

        scheduler = QueueScheduler(
            _processor(_process), ClientRepository(store), clock=clock
        )

        results = {r.client_id: r for r in await scheduler.run_once()}

        assert results["client-1"].reason == "Processing failed"
        assert results["client-1"].errors == ["record store exploded"]
        assert results["client-2"].successful == 1

    @pytest.mark.asyncio
    async def test_parallelism_is_bounded(self, store, make_client):
        for n in range(5):
            await make_client(f"client-{n}")
        running = 0
        peak = 0

        async def _process(client_id):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return ProcessQueueResult(client_id=client_id)

        scheduler = QueueScheduler(
            _processor(_process), ClientRepository(store), max_parallel=2
        )
        await scheduler.run_once()

        assert peak == 2

    @pytest.mark.asyncio
    async def test_no_clients(self, store):
        processor = _processor()
        scheduler = QueueScheduler(processor, ClientRepository(store))
        assert await scheduler.run_once() == []
        processor.process_client.assert_not_awaited()


class TestLifecycle:
    """start / stop / status."""

    @pytest.mark.asyncio
    async def test_start_and_stop_are_idempotent(self, store):
        scheduler = QueueScheduler(_processor(), ClientRepository(store), interval_seconds=60)
        assert scheduler.is_running is False

        scheduler.start()
        first_task = scheduler._task
        scheduler.start()
        assert scheduler._task is first_task
        assert scheduler.is_running is True

        await scheduler.stop()
        assert scheduler.is_running is False
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_loop_survives_failing_cycles(self, store, make_client):
        await make_client("client-1")
        processor = _processor(RuntimeError("down"))
        scheduler = QueueScheduler(processor, ClientRepository(store), interval_seconds=0)

        scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert scheduler.status().cycles_completed >= 2
        assert processor.process_client.await_count >= 2

    @pytest.mark.asyncio
    async def test_status_when_stopped(self, store):
        scheduler = QueueScheduler(_processor(), ClientRepository(store), interval_seconds=120)
        status = scheduler.status()
        assert status.running is False
        assert status.interval_seconds == 120
        assert status.cycles_completed == 0
        assert status.last_cycle_started_at is None
