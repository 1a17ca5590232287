from enum import Enum
from pydantic import BaseModel


class QueuePriority(str, Enum):
    urgent = "urgent"
    high = "high"
    normal = "normal"
    low = "low"


class QueueStatus(str, Enum):
    pending = "pending"
    scheduled = "scheduled"
    in_progress = "in_progress"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


class QueueItemType(str, Enum):
    call = "call"
    follow_up = "follow_up"
    meeting = "meeting"
    task = "task"


class CallStatus(str, Enum):
    initiated = "initiated"
    ringing = "ringing"
    answered = "answered"
    completed = "completed"
    failed = "failed"
    no_answer = "no-answer"


class CallOutcome(str, Enum):
    successful = "successful"
    no_answer = "no-answer"
    voicemail = "voicemail"
    busy = "busy"
    wrong_number = "wrong-number"
    failed = "failed"


class ClientStatus(str, Enum):
    active = "active"
    inactive = "inactive"
    prospect = "prospect"


class LeadStatus(str, Enum):
    new = "new"
    contacted = "contacted"
    qualified = "qualified"
    proposal = "proposal"
    closed = "closed"
    lost = "lost"


class SuccessResponse(BaseModel):
    """Generic success response base."""

    success: bool = True
