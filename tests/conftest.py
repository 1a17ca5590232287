from typing import Any, AsyncGenerator, Awaitable, Callable, Dict
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.core.cache import CacheService
from app.core.constants import CLIENTS_TABLE, LEADS_TABLE
from app.core.record_store import InMemoryRecordStore
from app.repositories import (
    CallRepository,
    ClientRepository,
    LeadRepository,
    QueueRepository,
)
from app.services.processing_lock import ProcessingLockManager
from app.services.queue_processor import QueueProcessor
from app.services.queue_store import QueueStore
from app.services.retell_service import RetellService
from tests.helpers import WEDNESDAY_10AM, FixedClock


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(WEDNESDAY_10AM)


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def locks() -> ProcessingLockManager:
    """Lock manager without Redis: process-local locks only."""
    return ProcessingLockManager()


@pytest.fixture
def queue_store(store, locks, clock) -> QueueStore:
    return QueueStore(QueueRepository(store), locks=locks, clock=clock)


@pytest.fixture
def make_client(store) -> Callable[..., Awaitable[Dict[str, Any]]]:
    """Factory that inserts a dialable client with a Mon-Fri 09:00-17:00 schedule."""

    async def _make(client_id: str = "client-1", **overrides: Any) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "id": client_id,
            "Name": "Acme Realty",
            "Status": "active",
            "Timezone": "America/New_York",
            "ActiveDays": ["Mon", "Tue", "Wed", "Thu", "Fri"],
            "TimeWindows": [{"start": "09:00", "end": "17:00"}],
            "MaxConcurrent": 5,
            "DelayBetweenCalls": 0,
            "MaxAttempts": 6,
            "CallCooldownHours": 0,
            "RetryDelays": [5, 15, 30, 60],
            "RetellAgentId": "agent-1",
            "RetellFromNumber": "+15550000000",
            "RetellApiKey": "client-key",
            "RetellIsActive": True,
        }
        fields.update(overrides)
        return await store.create_record(CLIENTS_TABLE, fields)

    return _make


@pytest.fixture
def make_lead(store) -> Callable[..., Awaitable[Dict[str, Any]]]:
    async def _make(lead_id: str = "lead-1", **overrides: Any) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "id": lead_id,
            "FirstName": "Jane",
            "LastName": "Doe",
            "Email": "jane@example.com",
            "Phone": "+15551234567",
            "Source": "website",
            "Status": "new",
        }
        fields.update(overrides)
        return await store.create_record(LEADS_TABLE, fields)

    return _make


@pytest.fixture
def mock_retell() -> MagicMock:
    """A ``RetellService`` double that accepts every call."""
    retell = MagicMock(spec=RetellService)
    retell.is_configured_for = MagicMock(return_value=True)
    counter = {"n": 0}

    async def _create_call(client, lead, item):
        counter["n"] += 1
        return f"call-{counter['n']}"

    retell.create_call = AsyncMock(side_effect=_create_call)
    return retell


@pytest.fixture
def mock_sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def processor(store, queue_store, locks, mock_retell, clock, mock_sleep) -> QueueProcessor:
    return QueueProcessor(
        queue=queue_store,
        clients=ClientRepository(store),
        leads=LeadRepository(store),
        calls=CallRepository(store),
        retell=mock_retell,
        locks=locks,
        clock=clock,
        sleep=mock_sleep,
    )


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Return an ``AsyncMock`` that behaves like ``redis.asyncio.Redis``."""
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock(return_value=True)
    redis.setex = AsyncMock()
    redis.delete = AsyncMock()
    redis.eval = AsyncMock(return_value=1)
    redis.ping = AsyncMock()
    return redis


@pytest.fixture
def mock_cache(mock_redis) -> CacheService:
    """Return a ``CacheService`` backed by the mock Redis client."""
    return CacheService(redis_client=mock_redis)


@pytest_asyncio.fixture
async def async_client(
    store, locks, queue_store, processor
) -> AsyncGenerator[AsyncClient, None]:
    """Yield an ``httpx.AsyncClient`` wired to the FastAPI app.

    The record store, lock manager, queue store and processor are the
    in-memory test doubles above, all on the fixed clock.  Redis is
    reported unavailable and rate limits are off.
    """
    from app.core.rate_limit import limiter
    from app.dependencies import (
        get_lock_manager,
        get_queue_processor,
        get_queue_store,
        get_record_store,
        get_redis_client,
    )
    from app.main import app

    app.dependency_overrides[get_record_store] = lambda: store
    app.dependency_overrides[get_lock_manager] = lambda: locks
    app.dependency_overrides[get_redis_client] = lambda: None
    app.dependency_overrides[get_queue_processor] = lambda: processor
    app.dependency_overrides[get_queue_store] = lambda: queue_store
    limiter.enabled = False

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    limiter.enabled = True
    app.dependency_overrides.clear()
