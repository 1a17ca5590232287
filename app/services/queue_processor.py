import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, List, Optional

from app.core.config import settings
from app.core.exceptions import CallProviderError, ClientNotFoundError
from app.repositories.call_repository import CallRepository
from app.repositories.client_repository import ClientRepository
from app.repositories.lead_repository import LeadRepository
from app.schemas.call import Call
from app.schemas.client import Client
from app.schemas.common import CallOutcome, CallStatus, ClientStatus
from app.schemas.queue import ProcessQueueResult, QueueItem
from app.services.processing_lock import ProcessingLockManager
from app.services.queue_store import QueueStore
from app.services.retell_service import RetellService
from app.services.scheduling_policy import (
    attempts_exhausted,
    cooldown_remaining,
    is_dialing_permitted,
)

logger = logging.getLogger(__name__)

# Outcome of dispatching one queue item
_DIALLED = "dialled"
_FAILED = "failed"
_SKIPPED = "skipped"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def processing_lock_name(client_id: str) -> str:
    return f"queue:process:{client_id}"


class QueueProcessor:
    """Runs one processing cycle for one client.

    The periodic scheduler and the manual ``POST .../queue/process``
    endpoint both come through :meth:`process_client`; a per-client lock
    guarantees that two cycles for the same client never overlap.

    Parameters:
        clock: Returns the current UTC time.  Injected so tests can pin it.
        sleep: Awaited between dispatches for ``delay_between_calls``
            pacing.  Defaults to :func:`asyncio.sleep`, which only
            suspends this client's cycle.
        stale_claim_timeout: How long an in-progress item may wait for its
            call outcome before it is released for retry.
    """

    def __init__(
        self,
        queue: QueueStore,
        clients: ClientRepository,
        leads: LeadRepository,
        calls: CallRepository,
        retell: RetellService,
        locks: ProcessingLockManager,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        stale_claim_timeout: Optional[timedelta] = None,
    ) -> None:
        self._queue = queue
        self._clients = clients
        self._leads = leads
        self._calls = calls
        self._retell = retell
        self._locks = locks
        self._clock = clock
        self._sleep = sleep
        self._stale_claim_timeout = stale_claim_timeout or timedelta(
            minutes=settings.QUEUE_STALE_CLAIM_MINUTES
        )

    async def process_client(self, client_id: str) -> ProcessQueueResult:
        async with self._locks.hold(processing_lock_name(client_id)) as acquired:
            if not acquired:
                logger.info("Queue for client %s is already being processed", client_id)
                return ProcessQueueResult(
                    client_id=client_id,
                    skipped=True,
                    reason="Queue is already being processed",
                )
            result = await self._process_locked(client_id)

        if result.processed:
            logger.info(
                "Client %s: processed %d, successful %d, failed %d",
                client_id,
                result.processed,
                result.successful,
                result.failed,
            )
        return result

    async def _process_locked(self, client_id: str) -> ProcessQueueResult:
        result = ProcessQueueResult(client_id=client_id)

        client = await self._clients.get(client_id)
        if client is None:
            raise ClientNotFoundError(f"Client {client_id} not found")
        if client.status != ClientStatus.active:
            result.reason = f"Client is {client.status.value}"
            return result
        if not self._retell.is_configured_for(client):
            result.reason = "Retell configuration is incomplete"
            return result

        schedule = client.schedule
        now = self._clock()
        await self._queue.release_stale_claims(
            client_id, now - self._stale_claim_timeout, schedule.retry_delays
        )

        if not is_dialing_permitted(now, schedule):
            result.reason = "Calling not allowed outside business hours"
            return result

        slots = schedule.max_concurrent - await self._queue.count_in_progress(client_id)
        if slots <= 0:
            result.reason = "Concurrency limit reached"
            return result

        items = await self._queue.list_eligible(client_id, now, limit=slots)
        for index, item in enumerate(items):
            if index and schedule.delay_between_calls > 0:
                await self._sleep(schedule.delay_between_calls / 1000)
                if not await self._locks.refresh(processing_lock_name(client_id)):
                    result.reason = "Processing lock lost during pacing"
                    break
                if not is_dialing_permitted(self._clock(), schedule):
                    result.reason = "Calling window closed during processing"
                    break

            try:
                outcome = await self._dispatch(client, item, result.errors)
            except Exception as exc:
                logger.error(
                    "Unexpected error dispatching queue item %s", item.id, exc_info=True
                )
                result.errors.append(f"Item {item.id}: {exc}")
                outcome = _FAILED
                await self._release_after_error(item, str(exc), schedule.retry_delays)

            if outcome == _SKIPPED:
                continue
            result.processed += 1
            if outcome == _DIALLED:
                result.successful += 1
            else:
                result.failed += 1

        return result

    async def _dispatch(self, client: Client, item: QueueItem, errors: List[str]) -> str:
        current = await self._queue.find(item.id)
        if current is None or current.status != item.status:
            logger.info("Queue item %s changed before dispatch; skipping", item.id)
            return _SKIPPED

        lead = await self._leads.get(item.lead_id)
        if lead is None or not lead.phone:
            reason = "Lead not found" if lead is None else "Lead has no phone number"
            await self._queue.mark_failed(item.id, retry=False, reason=reason)
            errors.append(f"Item {item.id}: {reason}")
            return _FAILED

        now = self._clock()
        # Only calls the provider accepted count as dial attempts
        history = [
            c
            for c in await self._calls.list_for_lead(lead.id)
            if c.client_id == client.id and c.call_id
        ]
        if attempts_exhausted(len(history), client.schedule.max_attempts):
            reason = f"Lead reached the maximum of {client.schedule.max_attempts} attempts"
            await self._queue.mark_failed(item.id, retry=False, reason=reason)
            errors.append(f"Item {item.id}: {reason}")
            return _FAILED

        last_attempt = _latest(
            [c.created_at for c in history] + [lead.last_contacted]
        )
        wait = cooldown_remaining(last_attempt, now, client.schedule.call_cooldown_hours)
        if wait:
            await self._queue.reschedule(
                item.id, now + wait, reason="Lead is in its call cooldown period"
            )
            logger.info("Lead %s in cooldown; item %s moved by %s", lead.id, item.id, wait)
            return _SKIPPED

        claimed = await self._queue.mark_in_progress(item.id)
        if claimed is None:
            logger.info("Queue item %s was claimed or cancelled elsewhere", item.id)
            return _SKIPPED

        call = Call(
            id="",
            lead_id=lead.id,
            client_id=client.id,
            queue_item_id=item.id,
            agent_id=client.retell.agent_id,
            phone_number=lead.phone,
            scheduled_at=item.scheduled_at,
            created_at=now,
        )
        try:
            call.call_id = await self._retell.create_call(client, lead, claimed)
        except CallProviderError as exc:
            await self._calls.create(
                call.model_copy(
                    update={
                        "status": CallStatus.failed,
                        "outcome": CallOutcome.failed,
                        "error": exc.detail,
                        "ended_at": now,
                    }
                )
            )
            await self._queue.mark_failed(
                item.id,
                retry=True,
                reason=exc.detail,
                delay_schedule=client.schedule.retry_delays,
            )
            errors.append(f"Item {item.id}: {exc.detail}")
            return _FAILED

        await self._calls.create(call)
        return _DIALLED

    async def _release_after_error(
        self, item: QueueItem, reason: str, delay_schedule: List[int]
    ) -> None:
        try:
            await self._queue.mark_failed(
                item.id, retry=True, reason=reason, delay_schedule=delay_schedule
            )
        except Exception:
            logger.warning("Could not record failure for item %s", item.id, exc_info=True)


def _latest(values: List[Optional[datetime]]) -> Optional[datetime]:
    present = [v for v in values if v is not None]
    return max(present) if present else None
