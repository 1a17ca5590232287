import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from app.core.config import settings
from app.core.constants import (
    ACTIVE_QUEUE_STATUSES,
    ALLOWED_QUEUE_TRANSITIONS,
    PRIORITY_RANK,
    WAITING_STATUSES,
)
from app.core.exceptions import (
    CallQueueError,
    DuplicateQueueItemError,
    InvalidQueueDataError,
    InvalidStatusTransitionError,
    QueueItemNotFoundError,
)
from app.repositories.queue_repository import QueueRepository
from app.schemas.client import ClientScheduleConfig
from app.schemas.common import QueuePriority, QueueStatus
from app.schemas.queue import (
    BatchScheduleRequest,
    BatchScheduleResult,
    QueueFilters,
    QueueItem,
    QueueItemCreate,
    QueueStats,
)
from app.services.processing_lock import ProcessingLockManager
from app.services.scheduling_policy import calculate_optimal_call_time, retry_delay

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _dispatch_order(item: QueueItem):
    return (PRIORITY_RANK.get(item.priority.value, len(PRIORITY_RANK)), item.scheduled_at)


class QueueStore:
    """Queue item lifecycle on top of :class:`QueueRepository`.

    Every status change is a compare-and-set on the item's current
    status, so a processor, a webhook and a user cancelling the same
    item cannot overwrite each other.  Methods used by background
    workers return ``None`` when they lose such a race; ``cancel``
    (called from the API) raises instead.
    """

    def __init__(
        self,
        repo: QueueRepository,
        locks: Optional[ProcessingLockManager] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repo = repo
        self._locks = locks or ProcessingLockManager()
        self._clock = clock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, item_id: str) -> QueueItem:
        item = await self._repo.get(item_id)
        if item is None:
            raise QueueItemNotFoundError(f"Queue item {item_id} not found")
        return item

    async def find(self, item_id: str) -> Optional[QueueItem]:
        return await self._repo.get(item_id)

    async def list_eligible(
        self, client_id: str, now: datetime, limit: Optional[int] = None
    ) -> List[QueueItem]:
        """Waiting items that are due, highest priority then oldest first."""
        items = await self._repo.list_for_client(client_id, WAITING_STATUSES)
        now = _aware(now)
        due = sorted((i for i in items if i.scheduled_at <= now), key=_dispatch_order)
        return due if limit is None else due[: max(limit, 0)]

    async def list_items(
        self, client_id: str, filters: Optional[QueueFilters] = None
    ) -> List[QueueItem]:
        filters = filters or QueueFilters()
        statuses = [filters.status.value] if filters.status else None
        items = await self._repo.list_for_client(client_id, statuses)

        if filters.priority:
            items = [i for i in items if i.priority == filters.priority]
        if filters.date_from:
            items = [i for i in items if i.scheduled_at >= _aware(filters.date_from)]
        if filters.date_to:
            items = [i for i in items if i.scheduled_at <= _aware(filters.date_to)]
        if filters.search:
            needle = filters.search.lower()
            items = [i for i in items if needle in i.lead_id.lower()]
        return sorted(items, key=_dispatch_order)

    async def count_in_progress(self, client_id: str) -> int:
        items = await self._repo.list_for_client(
            client_id, [QueueStatus.in_progress.value]
        )
        return len(items)

    async def stats(self, client_id: str) -> QueueStats:
        items = await self._repo.list_for_client(client_id)

        status_breakdown = {s.value: 0 for s in QueueStatus}
        priority_breakdown = {p.value: 0 for p in QueuePriority}
        for item in items:
            status_breakdown[item.status.value] += 1
            priority_breakdown[item.priority.value] += 1

        waits = [
            (i.started_at - i.created_at).total_seconds() / 60
            for i in items
            if i.started_at and i.created_at
        ]
        average_wait = round(sum(waits) / len(waits), 2) if waits else 0.0

        return QueueStats(
            client_id=client_id,
            total_items=len(items),
            pending_items=sum(status_breakdown[s] for s in WAITING_STATUSES),
            in_progress_items=status_breakdown[QueueStatus.in_progress.value],
            completed_items=status_breakdown[QueueStatus.completed.value],
            failed_items=status_breakdown[QueueStatus.failed.value],
            cancelled_items=status_breakdown[QueueStatus.cancelled.value],
            average_wait_time=average_wait,
            priority_breakdown=priority_breakdown,
            status_breakdown=status_breakdown,
        )

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        client_id: str,
        request: QueueItemCreate,
        schedule: Optional[ClientScheduleConfig] = None,
    ) -> QueueItem:
        """Add a lead to a client's queue.

        Raises :class:`DuplicateQueueItemError` if the lead already has a
        pending, scheduled or in-progress item for this client.  Without an
        explicit ``scheduled_at`` the item is due at the next moment the
        client's schedule permits dialing.
        """
        if not client_id or not request.lead_id:
            raise InvalidQueueDataError("client_id and lead_id are required")
        max_retries = (
            request.max_retries
            if request.max_retries is not None
            else settings.DEFAULT_MAX_RETRIES
        )
        if max_retries < 0:
            raise InvalidQueueDataError("max_retries must be zero or more")

        lock_name = f"queue:enqueue:{client_id}:{request.lead_id}"
        async with self._locks.hold(lock_name) as acquired:
            if not acquired:
                raise DuplicateQueueItemError(
                    f"Lead {request.lead_id} is already being queued"
                )

            active = await self._repo.list_for_lead(
                client_id, request.lead_id, ACTIVE_QUEUE_STATUSES
            )
            if active:
                raise DuplicateQueueItemError(
                    f"Lead {request.lead_id} already has an active queue item "
                    f"({active[0].id}, {active[0].status.value})"
                )

            now = self._clock()
            scheduled_at = request.scheduled_at
            if scheduled_at is None:
                scheduled_at = (
                    calculate_optimal_call_time(request.priority, schedule, now)
                    if schedule is not None
                    else now
                )
            else:
                scheduled_at = _aware(scheduled_at)

            item = QueueItem(
                id="",
                client_id=client_id,
                lead_id=request.lead_id,
                type=request.type,
                priority=request.priority,
                status=QueueStatus.pending,
                scheduled_at=scheduled_at,
                retry_count=0,
                max_retries=max_retries,
                assigned_to=request.assigned_to,
                notes=request.notes,
                tags=request.tags,
                metadata=request.metadata,
                created_at=now,
                updated_at=now,
            )
            created = await self._repo.create(item)

        logger.info(
            "Queued lead %s for client %s (item %s, priority %s, due %s)",
            created.lead_id,
            client_id,
            created.id,
            created.priority.value,
            created.scheduled_at.isoformat(),
        )
        return created

    async def schedule_batch(
        self,
        client_id: str,
        request: BatchScheduleRequest,
        schedule: Optional[ClientScheduleConfig] = None,
    ) -> BatchScheduleResult:
        """Enqueue many leads; per-lead errors are collected, never raised."""
        if len(request.lead_ids) > settings.BATCH_MAX_LEADS:
            raise InvalidQueueDataError(
                f"A batch may contain at most {settings.BATCH_MAX_LEADS} leads"
            )

        result = BatchScheduleResult()
        for lead_id in request.lead_ids:
            try:
                item = await self.enqueue(
                    client_id,
                    QueueItemCreate(
                        lead_id=lead_id,
                        type=request.type,
                        priority=request.priority,
                        scheduled_at=request.scheduled_at,
                        max_retries=request.max_retries,
                    ),
                    schedule,
                )
            except CallQueueError as exc:
                result.errors.append(f"Lead {lead_id}: {exc.detail}")
                continue
            except ValueError as exc:
                result.errors.append(f"Lead {lead_id!r}: {exc}")
                continue
            result.items.append(item)

        result.scheduled = len(result.items)
        logger.info(
            "Batch scheduled %d/%d lead(s) for client %s",
            result.scheduled,
            len(request.lead_ids),
            client_id,
        )
        return result

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    async def mark_in_progress(self, item_id: str) -> Optional[QueueItem]:
        """Claim a waiting item for dispatch; ``None`` if it is no longer waiting."""
        now = self._clock()
        return await self._repo.update_if(
            item_id,
            {"status": sorted(WAITING_STATUSES)},
            status=QueueStatus.in_progress,
            started_at=now,
            updated_at=now,
        )

    async def mark_completed(self, item_id: str) -> Optional[QueueItem]:
        now = self._clock()
        return await self._repo.update_if(
            item_id,
            {"status": QueueStatus.in_progress},
            status=QueueStatus.completed,
            completed_at=now,
            updated_at=now,
        )

    async def mark_failed(
        self,
        item_id: str,
        retry: bool,
        reason: str,
        delay_schedule: Optional[Sequence[int]] = None,
    ) -> Optional[QueueItem]:
        """Record a failed attempt.

        With ``retry`` the item goes back to ``pending`` after the back-off
        for its current retry count, until ``max_retries`` is used up, at
        which point it becomes ``failed``.  Without ``retry`` it fails
        immediately.  Retries only apply to in-progress items; a waiting
        item can still be failed permanently before it is dialled.
        """
        item = await self._repo.get(item_id)
        if item is None:
            return None

        allowed_from = [QueueStatus.in_progress.value]
        if not retry:
            allowed_from += sorted(WAITING_STATUSES)
        if item.status.value not in allowed_from:
            logger.info(
                "Not failing queue item %s: status is %s", item_id, item.status.value
            )
            return None

        now = self._clock()
        metadata: Dict[str, Any] = dict(item.metadata)
        metadata["last_error"] = reason

        if retry and item.retry_count + 1 <= item.max_retries:
            delay = retry_delay(
                item.retry_count,
                delay_schedule or settings.DEFAULT_RETRY_DELAYS_MINUTES,
            )
            metadata["last_retry_reason"] = reason
            updated = await self._repo.update_if(
                item_id,
                {"status": item.status},
                status=QueueStatus.pending,
                retry_count=item.retry_count + 1,
                scheduled_at=now + delay,
                metadata=metadata,
                updated_at=now,
            )
            if updated is not None:
                logger.info(
                    "Queue item %s retry %d/%d in %s: %s",
                    item_id,
                    updated.retry_count,
                    updated.max_retries,
                    delay,
                    reason,
                )
            return updated

        updated = await self._repo.update_if(
            item_id,
            {"status": item.status},
            status=QueueStatus.failed,
            completed_at=now,
            metadata=metadata,
            updated_at=now,
        )
        if updated is not None:
            logger.warning("Queue item %s failed permanently: %s", item_id, reason)
        return updated

    async def release_stale_claims(
        self,
        client_id: str,
        older_than: datetime,
        delay_schedule: Optional[Sequence[int]] = None,
    ) -> List[QueueItem]:
        """Send in-progress items claimed before *older_than* down the retry path.

        Covers dispatches whose call outcome never arrived, so they stop
        holding one of the client's concurrency slots.
        """
        older_than = _aware(older_than)
        claimed = await self._repo.list_for_client(
            client_id, [QueueStatus.in_progress.value]
        )
        released = []
        for item in claimed:
            claimed_at = item.started_at or item.updated_at
            if claimed_at is None or _aware(claimed_at) > older_than:
                continue
            updated = await self.mark_failed(
                item.id,
                retry=True,
                reason="No call outcome received",
                delay_schedule=delay_schedule,
            )
            if updated is not None:
                released.append(updated)
        if released:
            logger.warning(
                "Released %d stale in-progress item(s) for client %s",
                len(released),
                client_id,
            )
        return released

    async def reschedule(
        self, item_id: str, scheduled_at: datetime, reason: str
    ) -> Optional[QueueItem]:
        """Push a waiting item later without consuming a retry."""
        item = await self._repo.get(item_id)
        if item is None or item.status.value not in WAITING_STATUSES:
            return None
        metadata = {**item.metadata, "last_reschedule_reason": reason}
        return await self._repo.update_if(
            item_id,
            {"status": item.status},
            scheduled_at=scheduled_at,
            metadata=metadata,
            updated_at=self._clock(),
        )

    async def cancel(self, item_id: str) -> QueueItem:
        item = await self.get(item_id)
        self._check_transition(item, QueueStatus.cancelled)

        updated = await self._repo.update_if(
            item_id,
            {"status": item.status},
            status=QueueStatus.cancelled,
            updated_at=self._clock(),
        )
        if updated is None:
            current = await self.get(item_id)
            raise InvalidStatusTransitionError(
                f"Cannot cancel queue item {item_id}: status changed to "
                f"{current.status.value}"
            )
        logger.info("Cancelled queue item %s", item_id)
        return updated

    @staticmethod
    def _check_transition(item: QueueItem, new_status: QueueStatus) -> None:
        allowed = ALLOWED_QUEUE_TRANSITIONS.get(item.status.value, [])
        if new_status.value not in allowed:
            raise InvalidStatusTransitionError(
                f"Cannot transition from {item.status.value} to {new_status.value}"
            )

