from contextlib import asynccontextmanager
from typing import Dict, Tuple, Type

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
import logging

from app.api.v1.router import router as api_v1_router
from app.core.exceptions import (
    CallProviderError,
    CallQueueError,
    ClientNotFoundError,
    DuplicateQueueItemError,
    InvalidQueueDataError,
    InvalidStatusTransitionError,
    ProviderConfigurationError,
    QueueItemNotFoundError,
    RecordStoreError,
)
from app.core.config import settings as app_settings
from app.core.rate_limit import limiter
from app.dependencies import build_queue_processor, get_lock_manager, get_record_store
from app.repositories.client_repository import ClientRepository
from app.services.queue_scheduler import QueueScheduler

# Configure logging
logging.basicConfig(level=app_settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Own the periodic queue scheduler for the life of the process."""
    store = get_record_store()
    scheduler = None
    if app_settings.QUEUE_SCHEDULER_ENABLED:
        scheduler = QueueScheduler(
            processor=build_queue_processor(store, get_lock_manager()),
            clients=ClientRepository(store),
            interval_seconds=app_settings.QUEUE_PROCESS_INTERVAL_SECONDS,
            max_parallel=app_settings.QUEUE_MAX_PARALLEL_CLIENTS,
        )
        scheduler.start()
    app.state.queue_scheduler = scheduler
    yield
    # Shutdown: stop the scheduler before releasing the store
    if scheduler is not None:
        await scheduler.stop()
    await store.close()


app = FastAPI(
    title="Lead Call Queue Scheduler",
    description="Schedules and dispatches outbound voice-AI calls to leads",
    version="0.1.0",
    lifespan=lifespan,
)

# Attach rate limiter state so slowapi middleware can find it
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS is limited to the configured origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        o.strip() for o in app_settings.CORS_ORIGINS.split(",") if o.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_v1_router)


# Domain errors: exception class -> (HTTP status, response "type")
_DOMAIN_ERRORS: Dict[Type[CallQueueError], Tuple[int, str]] = {
    QueueItemNotFoundError: (404, "queue_item_not_found"),
    ClientNotFoundError: (404, "client_not_found"),
    DuplicateQueueItemError: (409, "duplicate_queue_item"),
    InvalidQueueDataError: (422, "invalid_queue_data"),
    InvalidStatusTransitionError: (400, "invalid_status_transition"),
    ProviderConfigurationError: (400, "provider_configuration_error"),
    CallProviderError: (502, "call_provider_error"),
    RecordStoreError: (503, "record_store_unavailable"),
}


async def domain_error_handler(request: Request, exc: CallQueueError):
    status_code, error_type = next(
        _DOMAIN_ERRORS[cls] for cls in type(exc).__mro__ if cls in _DOMAIN_ERRORS
    )
    level = logging.ERROR if status_code >= 500 else logging.WARNING
    logger.log(
        level,
        "%s on %s %s: %s",
        error_type,
        request.method,
        request.url.path,
        exc.detail,
    )
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.detail, "type": error_type},
    )


for _error_class in _DOMAIN_ERRORS:
    app.add_exception_handler(_error_class, domain_error_handler)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning("Request validation error: %s", exc.errors())
    return JSONResponse(
        status_code=422,
        content={
            "detail": "Request validation failed",
            "errors": jsonable_encoder(exc.errors()),
            "type": "validation_error",
        },
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Catch-all handler for unexpected/unhandled exceptions.

    Returns a generic 500 response so that raw stack traces are never
    leaked to the client.
    """
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={
            "detail": "An unexpected internal error occurred. Please try again later.",
            "type": "internal_server_error",
        },
    )
