"""Pydantic schemas package – re-exports for convenience."""

# Common enums
from app.schemas.common import (
    QueuePriority as QueuePriority,
    QueueStatus as QueueStatus,
    QueueItemType as QueueItemType,
    CallStatus as CallStatus,
    CallOutcome as CallOutcome,
    ClientStatus as ClientStatus,
    LeadStatus as LeadStatus,
    SuccessResponse as SuccessResponse,
)

# Domain records
from app.schemas.queue import QueueItem as QueueItem
from app.schemas.call import Call as Call
from app.schemas.lead import Lead as Lead
from app.schemas.client import (
    Client as Client,
    ClientScheduleConfig as ClientScheduleConfig,
    RetellConfig as RetellConfig,
    TimeWindow as TimeWindow,
)

# Queue request / response schemas
from app.schemas.queue import (
    QueueItemCreate as QueueItemCreate,
    BatchScheduleRequest as BatchScheduleRequest,
    QueueFilters as QueueFilters,
    QueueItemResponse as QueueItemResponse,
    QueueItemsResponse as QueueItemsResponse,
    ProcessQueueResult as ProcessQueueResult,
    BatchScheduleResult as BatchScheduleResult,
    QueueStats as QueueStats,
    SchedulerStatus as SchedulerStatus,
)

# Webhook events
from app.schemas.webhook import (
    CallAnswered as CallAnswered,
    CallEnded as CallEnded,
    CallFailed as CallFailed,
    CallAnalyzed as CallAnalyzed,
    UnknownEvent as UnknownEvent,
    ProviderEvent as ProviderEvent,
    WebhookAck as WebhookAck,
)
