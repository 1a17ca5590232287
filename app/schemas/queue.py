"""Queue-specific Pydantic schemas (domain item, requests, responses)."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from typing_extensions import Self

from app.schemas.common import (
    QueueItemType,
    QueuePriority,
    QueueStatus,
    SuccessResponse,
)


class QueueItem(BaseModel):
    """One scheduled dial attempt for a lead."""

    id: str
    client_id: str
    lead_id: str
    type: QueueItemType = QueueItemType.call
    priority: QueuePriority = QueuePriority.normal
    status: QueueStatus = QueueStatus.pending
    scheduled_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    retry_count: int = 0
    max_retries: int = 3
    assigned_to: Optional[str] = None
    notes: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class QueueItemCreate(BaseModel):
    """Request body for POST /api/v1/clients/{client_id}/queue."""

    lead_id: str = Field(..., min_length=1)
    type: QueueItemType = QueueItemType.call
    priority: QueuePriority = QueuePriority.normal
    scheduled_at: Optional[datetime] = None
    max_retries: Optional[int] = Field(None, ge=0, le=10)
    assigned_to: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=2000)
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("lead_id")
    @classmethod
    def strip_lead_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("lead_id must not be blank")
        return value


class BatchScheduleRequest(BaseModel):
    """Request body for POST /api/v1/clients/{client_id}/queue/schedule-batch."""

    lead_ids: List[str] = Field(..., min_length=1)
    type: QueueItemType = QueueItemType.call
    priority: QueuePriority = QueuePriority.normal
    scheduled_at: Optional[datetime] = None
    max_retries: Optional[int] = Field(None, ge=0, le=10)


class QueueFilters(BaseModel):
    """Query filters for listing a client's queue."""

    status: Optional[QueueStatus] = None
    priority: Optional[QueuePriority] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    search: Optional[str] = None

    @model_validator(mode="after")
    def validate_date_range(self) -> Self:
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to")
        return self


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class QueueItemResponse(SuccessResponse):
    data: QueueItem


class QueueItemsResponse(SuccessResponse):
    data: List[QueueItem] = Field(default_factory=list)
    total: int = 0


class ProcessQueueResult(BaseModel):
    """Outcome of one processing cycle for one client."""

    client_id: str
    processed: int = 0
    successful: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)
    skipped: bool = False
    reason: Optional[str] = None


class BatchScheduleResult(BaseModel):
    scheduled: int = 0
    items: List[QueueItem] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class QueueStats(BaseModel):
    client_id: str
    total_items: int = 0
    pending_items: int = 0
    in_progress_items: int = 0
    completed_items: int = 0
    failed_items: int = 0
    cancelled_items: int = 0
    average_wait_time: float = Field(
        0.0, description="Mean minutes between creation and dispatch"
    )
    priority_breakdown: Dict[str, int] = Field(default_factory=dict)
    status_breakdown: Dict[str, int] = Field(default_factory=dict)


class SchedulerStatus(BaseModel):
    running: bool
    interval_seconds: int
    cycles_completed: int
    last_cycle_started_at: Optional[datetime] = None
    last_cycle_finished_at: Optional[datetime] = None
