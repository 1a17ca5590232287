"""Call record schema."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from app.schemas.common import CallOutcome, CallStatus


class Call(BaseModel):
    """One dial attempt as placed through the voice-call provider.

    ``call_id`` is the provider's identifier and stays ``None`` when the
    dispatch failed before the provider accepted the call.
    """

    id: str
    lead_id: str
    client_id: str
    queue_item_id: Optional[str] = None
    agent_id: Optional[str] = None
    call_id: Optional[str] = None
    phone_number: str = ""
    status: CallStatus = CallStatus.initiated
    outcome: Optional[CallOutcome] = None
    duration: int = 0  # seconds
    recording_url: Optional[str] = None
    transcript: Optional[str] = None
    summary: Optional[str] = None
    sentiment: Optional[str] = None
    error: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
