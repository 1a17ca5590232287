import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Request
from redis.asyncio import Redis

from app.core.cache import CacheService
from app.core.config import settings
from app.core.exceptions import RecordStoreError
from app.core.record_store import InMemoryRecordStore, RecordStore
from app.services.processing_lock import ProcessingLockManager

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Process-wide singletons
# ---------------------------------------------------------------------------


@lru_cache
def get_record_store() -> RecordStore:
    """Build the record store selected by ``RECORD_STORE_BACKEND``."""
    backend = settings.RECORD_STORE_BACKEND.lower()
    if backend == "memory":
        logger.warning("Using the in-memory record store; data is not persisted")
        return InMemoryRecordStore()
    if backend == "sql":
        from app.core.database import AsyncSessionLocal
        from app.repositories.sql_record_store import SqlRecordStore

        return SqlRecordStore(AsyncSessionLocal)
    if backend == "airtable":
        from app.repositories.airtable_record_store import AirtableRecordStore

        return AirtableRecordStore(
            api_key=settings.AIRTABLE_API_KEY,
            base_id=settings.AIRTABLE_BASE_ID,
            api_url=settings.AIRTABLE_API_URL,
        )
    raise RecordStoreError(f"Unknown RECORD_STORE_BACKEND '{settings.RECORD_STORE_BACKEND}'")


@lru_cache
def get_lock_manager() -> ProcessingLockManager:
    """Shared lock manager.

    The Redis client connects lazily; while Redis is unreachable every
    lock falls back to the in-process ``asyncio.Lock`` held here, which is
    why the manager itself must be a singleton.
    """
    redis_client = Redis.from_url(settings.REDIS_URL, decode_responses=True)
    return ProcessingLockManager(
        cache=CacheService(redis_client=redis_client),
        ttl=settings.PROCESSING_LOCK_TTL,
    )


def build_queue_processor(
    store: RecordStore, locks: ProcessingLockManager
):
    """Wire a :class:`QueueProcessor`; shared by the API and the scheduler."""
    from app.repositories import (
        CallRepository,
        ClientRepository,
        LeadRepository,
        QueueRepository,
    )
    from app.services.queue_processor import QueueProcessor
    from app.services.queue_store import QueueStore
    from app.services.retell_service import RetellService

    return QueueProcessor(
        queue=QueueStore(QueueRepository(store), locks=locks),
        clients=ClientRepository(store),
        leads=LeadRepository(store),
        calls=CallRepository(store),
        retell=RetellService(),
        locks=locks,
    )


# ---------------------------------------------------------------------------
# Redis client factory
# ---------------------------------------------------------------------------


async def get_redis_client() -> Optional[Redis]:
    """Get an async Redis client instance using connection pooling."""
    try:
        client = Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
        await client.ping()
        return client
    except Exception:
        logger.warning("Redis unavailable – caching disabled for this request")
        return None


async def get_cache_service(
    redis_client: Optional[Redis] = Depends(get_redis_client),
) -> CacheService:
    """Build a :class:`CacheService` backed by the shared Redis client."""
    return CacheService(redis_client=redis_client)


# ---------------------------------------------------------------------------
# Repository factory functions
# ---------------------------------------------------------------------------


async def get_queue_repo(store: RecordStore = Depends(get_record_store)):
    from app.repositories.queue_repository import QueueRepository

    return QueueRepository(store)


async def get_call_repo(store: RecordStore = Depends(get_record_store)):
    from app.repositories.call_repository import CallRepository

    return CallRepository(store)


async def get_client_repo(store: RecordStore = Depends(get_record_store)):
    from app.repositories.client_repository import ClientRepository

    return ClientRepository(store)


async def get_lead_repo(store: RecordStore = Depends(get_record_store)):
    from app.repositories.lead_repository import LeadRepository

    return LeadRepository(store)


# ---------------------------------------------------------------------------
# Service factory functions
# ---------------------------------------------------------------------------


async def get_queue_store(
    repo=Depends(get_queue_repo),
    locks: ProcessingLockManager = Depends(get_lock_manager),
):
    from app.services.queue_store import QueueStore

    return QueueStore(repo, locks=locks)


async def get_queue_processor(
    store: RecordStore = Depends(get_record_store),
    locks: ProcessingLockManager = Depends(get_lock_manager),
):
    return build_queue_processor(store, locks)


async def get_outcome_mapper(
    calls=Depends(get_call_repo),
    queue=Depends(get_queue_store),
    clients=Depends(get_client_repo),
    leads=Depends(get_lead_repo),
):
    """Build a :class:`CallOutcomeMapper` with injected repositories."""
    from app.services.call_outcome_mapper import CallOutcomeMapper

    return CallOutcomeMapper(calls=calls, queue=queue, clients=clients, leads=leads)


async def get_queue_scheduler(request: Request):
    """The scheduler owned by the application lifespan (may be ``None``)."""
    return getattr(request.app.state, "queue_scheduler", None)
