import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import ValidationError

from app.api.deps import (
    get_cache_service,
    get_client_repo,
    get_queue_processor,
    get_queue_scheduler,
    get_queue_store,
)
from app.core.cache import CacheService
from app.core.config import settings
from app.core.exceptions import ClientNotFoundError, InvalidQueueDataError
from app.core.rate_limit import limiter
from app.repositories.client_repository import ClientRepository
from app.schemas.client import (
    Client,
    ClientScheduleConfig,
    ScheduleConfigResponse,
    ScheduleConfigUpdate,
)
from app.schemas.common import QueuePriority, QueueStatus
from app.schemas.queue import (
    BatchScheduleRequest,
    BatchScheduleResult,
    ProcessQueueResult,
    QueueFilters,
    QueueItemCreate,
    QueueItemResponse,
    QueueItemsResponse,
    QueueStats,
    SchedulerStatus,
)
from app.services.queue_processor import QueueProcessor
from app.services.queue_store import QueueStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Queue"])


async def _require_client(client_id: str, clients: ClientRepository) -> Client:
    client = await clients.get(client_id)
    if client is None:
        raise ClientNotFoundError(f"Client {client_id} not found")
    return client


async def get_queue_filters(
    status: Optional[QueueStatus] = Query(None),
    priority: Optional[QueuePriority] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    search: Optional[str] = Query(None, max_length=200),
) -> QueueFilters:
    try:
        return QueueFilters(
            status=status,
            priority=priority,
            date_from=date_from,
            date_to=date_to,
            search=search,
        )
    except ValidationError as exc:
        raise InvalidQueueDataError(exc.errors()[0]["msg"])


# ---------------------------------------------------------------------------
# Per-client queue
# ---------------------------------------------------------------------------


@router.post(
    "/clients/{client_id}/queue",
    response_model=QueueItemResponse,
    status_code=201,
)
@limiter.limit("60/minute")
async def add_to_queue(
    request: Request,
    client_id: str,
    request_body: QueueItemCreate,
    queue: QueueStore = Depends(get_queue_store),
    clients: ClientRepository = Depends(get_client_repo),
    cache: CacheService = Depends(get_cache_service),
) -> QueueItemResponse:
    """Queue one lead for a client.

    Without ``scheduled_at`` the item is due at the next instant the
    client's calling hours allow.  A lead with a pending, scheduled or
    in-progress item for this client is rejected with 409.
    """
    client = await _require_client(client_id, clients)
    item = await queue.enqueue(client_id, request_body, client.schedule)
    await cache.invalidate_queue_stats(client_id)
    return QueueItemResponse(data=item)


@router.get("/clients/{client_id}/queue", response_model=QueueItemsResponse)
async def list_queue(
    client_id: str,
    filters: QueueFilters = Depends(get_queue_filters),
    queue: QueueStore = Depends(get_queue_store),
) -> QueueItemsResponse:
    items = await queue.list_items(client_id, filters)
    return QueueItemsResponse(data=items, total=len(items))


@router.post("/clients/{client_id}/queue/process", response_model=ProcessQueueResult)
@limiter.limit("10/minute")
async def process_queue(
    request: Request,
    client_id: str,
    processor: QueueProcessor = Depends(get_queue_processor),
    cache: CacheService = Depends(get_cache_service),
) -> ProcessQueueResult:
    """Run one processing cycle for this client now.

    Shares the per-client lock with the periodic scheduler; if a cycle is
    already running the response has ``skipped=true``.
    """
    result = await processor.process_client(client_id)
    if result.processed:
        await cache.invalidate_queue_stats(client_id)
    return result


@router.get("/clients/{client_id}/queue/stats", response_model=QueueStats)
async def queue_stats(
    client_id: str,
    queue: QueueStore = Depends(get_queue_store),
    cache: CacheService = Depends(get_cache_service),
) -> QueueStats:
    cached = await cache.get_queue_stats(client_id)
    if cached is not None:
        return QueueStats(**cached)

    stats = await queue.stats(client_id)
    await cache.set_queue_stats(
        client_id, stats.model_dump(mode="json"), ttl=settings.QUEUE_STATS_CACHE_TTL
    )
    return stats


@router.post(
    "/clients/{client_id}/queue/schedule-batch",
    response_model=BatchScheduleResult,
    status_code=201,
)
@limiter.limit("10/minute")
async def schedule_batch(
    request: Request,
    client_id: str,
    request_body: BatchScheduleRequest,
    queue: QueueStore = Depends(get_queue_store),
    clients: ClientRepository = Depends(get_client_repo),
    cache: CacheService = Depends(get_cache_service),
) -> BatchScheduleResult:
    """Queue many leads at once; per-lead failures are reported in ``errors``."""
    client = await _require_client(client_id, clients)
    result = await queue.schedule_batch(client_id, request_body, client.schedule)
    if result.scheduled:
        await cache.invalidate_queue_stats(client_id)
    return result


@router.get("/clients/{client_id}/queue/config", response_model=ScheduleConfigResponse)
async def get_queue_config(
    client_id: str,
    clients: ClientRepository = Depends(get_client_repo),
) -> ScheduleConfigResponse:
    client = await _require_client(client_id, clients)
    return ScheduleConfigResponse(client_id=client.id, schedule=client.schedule)


@router.put("/clients/{client_id}/queue/config", response_model=ScheduleConfigResponse)
@limiter.limit("20/minute")
async def update_queue_config(
    request: Request,
    client_id: str,
    request_body: ScheduleConfigUpdate,
    clients: ClientRepository = Depends(get_client_repo),
) -> ScheduleConfigResponse:
    """Merge the given fields into the client's schedule configuration."""
    client = await _require_client(client_id, clients)
    updates = request_body.model_dump(exclude_unset=True, exclude_none=True)
    schedule = ClientScheduleConfig.model_validate(
        {**client.schedule.model_dump(), **updates}
    )
    updated = await clients.update_schedule(client_id, schedule)
    logger.info("Updated queue config for client %s: %s", client_id, sorted(updates))
    return ScheduleConfigResponse(client_id=updated.id, schedule=updated.schedule)


# ---------------------------------------------------------------------------
# Single items and scheduler
# ---------------------------------------------------------------------------


@router.get("/queue/scheduler/status", response_model=SchedulerStatus)
async def scheduler_status(scheduler=Depends(get_queue_scheduler)) -> SchedulerStatus:
    if scheduler is None:
        return SchedulerStatus(
            running=False,
            interval_seconds=settings.QUEUE_PROCESS_INTERVAL_SECONDS,
            cycles_completed=0,
        )
    return scheduler.status()


@router.get("/queue/{item_id}", response_model=QueueItemResponse)
async def get_queue_item(
    item_id: str,
    queue: QueueStore = Depends(get_queue_store),
) -> QueueItemResponse:
    return QueueItemResponse(data=await queue.get(item_id))


@router.delete("/queue/{item_id}", response_model=QueueItemResponse)
async def cancel_queue_item(
    item_id: str,
    queue: QueueStore = Depends(get_queue_store),
    cache: CacheService = Depends(get_cache_service),
) -> QueueItemResponse:
    """Cancel a waiting item.  In-progress and finished items return 400."""
    item = await queue.cancel(item_id)
    await cache.invalidate_queue_stats(item.client_id)
    return QueueItemResponse(data=item)
