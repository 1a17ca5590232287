"""Provider webhook events.

Inbound payloads are parsed into exactly one of the event models below;
anything that cannot be recognised becomes :class:`UnknownEvent` so the
mapper can log it without touching state.
"""

from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class _ProviderEventBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    call_id: str
    raw: Dict[str, Any] = Field(default_factory=dict, repr=False)


class CallAnswered(_ProviderEventBase):
    kind: Literal["answered"] = "answered"


class CallEnded(_ProviderEventBase):
    kind: Literal["ended"] = "ended"
    duration: int = 0  # seconds
    recording_url: Optional[str] = None
    transcript: Optional[str] = None
    disconnection_reason: Optional[str] = None


class CallFailed(_ProviderEventBase):
    kind: Literal["failed"] = "failed"
    reason: Optional[str] = None


class CallAnalyzed(_ProviderEventBase):
    kind: Literal["analyzed"] = "analyzed"
    summary: Optional[str] = None
    sentiment: Optional[str] = None


class UnknownEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["unknown"] = "unknown"
    event_type: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict, repr=False)


ProviderEvent = Union[CallAnswered, CallEnded, CallFailed, CallAnalyzed, UnknownEvent]


class WebhookAck(BaseModel):
    """Response body for POST /api/v1/webhook/retell (always HTTP 200)."""

    success: bool = True
    event: str
    applied: bool = False
