"""API-layer dependency functions.

Re-exports all dependency factories from ``app.dependencies`` so that
endpoint modules only need to import from ``app.api.deps``.
"""

from app.dependencies import (
    # Singletons
    get_record_store,
    get_lock_manager,
    # Repository factories
    get_queue_repo,
    get_call_repo,
    get_client_repo,
    get_lead_repo,
    # Service factories
    get_queue_store,
    get_queue_processor,
    get_outcome_mapper,
    get_queue_scheduler,
    # Redis
    get_redis_client,
    get_cache_service,
)

__all__ = [
    "get_record_store",
    "get_lock_manager",
    "get_queue_repo",
    "get_call_repo",
    "get_client_repo",
    "get_lead_repo",
    "get_queue_store",
    "get_queue_processor",
    "get_outcome_mapper",
    "get_queue_scheduler",
    "get_redis_client",
    "get_cache_service",
]
