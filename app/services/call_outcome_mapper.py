"""Applies voice-provider webhook events to calls, queue items and leads.

Payloads are parsed into one of the closed event types in
``app.schemas.webhook`` first; only recognised events with a known
``call_id`` change state.  Every write is conditional on the call's
current status, so a repeated terminal event is a no-op.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from app.core.constants import RETRYABLE_CALL_OUTCOMES, TERMINAL_CALL_STATUSES
from app.core.exceptions import RecordStoreError
from app.repositories.call_repository import CallRepository
from app.repositories.client_repository import ClientRepository
from app.repositories.lead_repository import LeadRepository
from app.schemas.call import Call
from app.schemas.common import CallOutcome, CallStatus, LeadStatus
from app.schemas.webhook import (
    CallAnalyzed,
    CallAnswered,
    CallEnded,
    CallFailed,
    ProviderEvent,
    UnknownEvent,
)
from app.services.queue_store import QueueStore

logger = logging.getLogger(__name__)

_EVENT_ALIASES: Dict[str, str] = {
    "answered": "answered",
    "started": "answered",
    "ended": "ended",
    "completed": "ended",
    "failed": "failed",
    "analyzed": "analyzed",
}

# Retell ``disconnection_reason`` values with an unambiguous outcome
_DISCONNECTION_OUTCOMES: Dict[str, CallOutcome] = {
    "dial_no_answer": CallOutcome.no_answer,
    "no_answer": CallOutcome.no_answer,
    "dial_busy": CallOutcome.busy,
    "busy": CallOutcome.busy,
    "voicemail_reached": CallOutcome.voicemail,
    "invalid_destination": CallOutcome.wrong_number,
    "dial_failed": CallOutcome.failed,
}

_ACTIVE_CALL_STATUSES = sorted(
    s.value for s in CallStatus if s.value not in TERMINAL_CALL_STATUSES
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalise_event_name(name: Any) -> Optional[str]:
    if not isinstance(name, str):
        return None
    key = name.strip().lower().replace(".", "_")
    if key.startswith("call_"):
        key = key[len("call_"):]
    return _EVENT_ALIASES.get(key)


def _duration_seconds(call: Dict[str, Any]) -> int:
    for key in ("duration", "call_length"):
        if call.get(key) is not None:
            try:
                return int(float(call[key]))
            except (TypeError, ValueError):
                return 0
    if call.get("duration_ms") is not None:
        try:
            return int(float(call["duration_ms"]) / 1000)
        except (TypeError, ValueError):
            return 0
    return 0


def parse_provider_event(payload: Any) -> ProviderEvent:
    """Turn a raw webhook body into exactly one event type.

    Accepts ``{"event_type" | "event": ..., "call": {"call_id": ...}}`` as
    well as a flat body carrying ``call_id`` at the top level.
    """
    if not isinstance(payload, dict):
        return UnknownEvent(raw={"payload": payload})

    event_type = payload.get("event_type") or payload.get("event")
    call = payload.get("call") if isinstance(payload.get("call"), dict) else payload
    call_id = call.get("call_id") or payload.get("call_id")
    kind = _normalise_event_name(event_type)

    if kind is None or not call_id:
        return UnknownEvent(event_type=str(event_type) if event_type else None, raw=payload)

    call_id = str(call_id)
    if kind == "answered":
        return CallAnswered(call_id=call_id, raw=payload)
    if kind == "ended":
        return CallEnded(
            call_id=call_id,
            raw=payload,
            duration=_duration_seconds(call),
            recording_url=_string(call.get("recording_url")),
            transcript=_transcript(call),
            disconnection_reason=_string(call.get("disconnection_reason")),
        )
    if kind == "failed":
        return CallFailed(
            call_id=call_id,
            raw=payload,
            reason=_as_text(
                call.get("error")
                or call.get("disconnection_reason")
                or payload.get("reason")
            ),
        )

    analysis = call.get("call_analysis") or call.get("analysis_data")
    if not isinstance(analysis, dict):
        analysis = {}
    return CallAnalyzed(
        call_id=call_id,
        raw=payload,
        summary=_as_text(analysis.get("call_summary") or analysis.get("summary")),
        sentiment=_as_text(analysis.get("user_sentiment") or analysis.get("sentiment")),
    )


def _as_text(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _string(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _transcript(call: Dict[str, Any]) -> Optional[str]:
    """Transcript text; Retell's utterance list is flattened when no text is sent."""
    transcript = call.get("transcript")
    if isinstance(transcript, str):
        return transcript
    utterances = transcript if isinstance(transcript, list) else call.get("transcript_object")
    if not isinstance(utterances, list):
        return None
    lines = []
    for utterance in utterances:
        if not isinstance(utterance, dict):
            continue
        content = utterance.get("content")
        if not isinstance(content, str):
            continue
        role = utterance.get("role")
        lines.append(f"{role}: {content}" if isinstance(role, str) else content)
    return "\n".join(lines) or None


def determine_outcome(event: CallEnded) -> CallOutcome:
    """Classify an ended call.

    The provider's disconnection reason wins when it is conclusive;
    otherwise duration and transcript keywords decide.
    """
    reason = (event.disconnection_reason or "").lower()
    if reason in _DISCONNECTION_OUTCOMES:
        return _DISCONNECTION_OUTCOMES[reason]

    transcript = (event.transcript or "").lower()
    if event.duration < 30:
        return CallOutcome.no_answer
    if "voicemail" in transcript or "leave a message" in transcript:
        return CallOutcome.voicemail
    if "appointment" in transcript or "schedule" in transcript:
        return CallOutcome.successful
    if "wrong number" in transcript or "not here" in transcript:
        return CallOutcome.wrong_number
    return CallOutcome.successful if event.duration > 60 else CallOutcome.failed


class CallOutcomeMapper:
    """Routes parsed provider events into call, queue and lead state."""

    def __init__(
        self,
        calls: CallRepository,
        queue: QueueStore,
        clients: ClientRepository,
        leads: LeadRepository,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._calls = calls
        self._queue = queue
        self._clients = clients
        self._leads = leads
        self._clock = clock

    async def apply(self, event: ProviderEvent) -> bool:
        """Apply *event*; return ``True`` if any state changed."""
        if isinstance(event, UnknownEvent):
            logger.warning("Ignoring unrecognised webhook event %r", event.event_type)
            return False

        call = await self._calls.find_by_provider_id(event.call_id)
        if call is None:
            logger.warning("Webhook for unknown call_id %s ignored", event.call_id)
            return False

        if isinstance(event, CallAnswered):
            return await self._on_answered(call)
        if isinstance(event, CallEnded):
            return await self._on_ended(call, event)
        if isinstance(event, CallFailed):
            return await self._on_failed(call, event)
        if isinstance(event, CallAnalyzed):
            return await self._on_analyzed(call, event)
        return False

    async def _on_answered(self, call: Call) -> bool:
        updated = await self._calls.update_if(
            call.id,
            {"status": [CallStatus.initiated, CallStatus.ringing]},
            status=CallStatus.answered,
            started_at=self._clock(),
        )
        return updated is not None

    async def _on_ended(self, call: Call, event: CallEnded) -> bool:
        now = self._clock()
        outcome = determine_outcome(event)
        updated = await self._calls.update_if(
            call.id,
            {"status": _ACTIVE_CALL_STATUSES},
            status=CallStatus.completed,
            outcome=outcome,
            duration=event.duration,
            recording_url=event.recording_url,
            transcript=event.transcript,
            ended_at=now,
        )
        if updated is None:
            logger.info("Call %s already terminal; ended event ignored", call.id)
            return False

        if call.queue_item_id:
            if outcome.value in RETRYABLE_CALL_OUTCOMES:
                await self._retry_item(call, f"Call ended: {outcome.value}")
            else:
                await self._queue.mark_completed(call.queue_item_id)

        await self._update_lead(call.lead_id, outcome, now)
        logger.info("Call %s ended with outcome %s", call.id, outcome.value)
        return True

    async def _on_failed(self, call: Call, event: CallFailed) -> bool:
        reason = event.reason or "Call failed"
        updated = await self._calls.update_if(
            call.id,
            {"status": _ACTIVE_CALL_STATUSES},
            status=CallStatus.failed,
            outcome=CallOutcome.failed,
            error=reason,
            ended_at=self._clock(),
        )
        if updated is None:
            logger.info("Call %s already terminal; failed event ignored", call.id)
            return False
        if call.queue_item_id:
            await self._retry_item(call, reason)
        return True

    async def _on_analyzed(self, call: Call, event: CallAnalyzed) -> bool:
        changes = {}
        if event.summary is not None:
            changes["summary"] = event.summary
        if event.sentiment is not None:
            changes["sentiment"] = event.sentiment
        if not changes:
            return False
        return await self._calls.update_if(call.id, {}, **changes) is not None

    async def _retry_item(self, call: Call, reason: str) -> None:
        client = await self._clients.get(call.client_id)
        await self._queue.mark_failed(
            call.queue_item_id,
            retry=True,
            reason=reason,
            delay_schedule=client.schedule.retry_delays if client else None,
        )

    async def _update_lead(
        self, lead_id: str, outcome: CallOutcome, now: datetime
    ) -> None:
        lead = await self._leads.get(lead_id)
        if lead is None:
            logger.warning("Lead %s not found; contact history not updated", lead_id)
            return

        changes: Dict[str, Any] = {"last_contacted": now}
        if outcome == CallOutcome.wrong_number:
            changes["status"] = LeadStatus.lost
        elif outcome == CallOutcome.successful and lead.status == LeadStatus.new:
            changes["status"] = LeadStatus.contacted
        try:
            await self._leads.update(lead_id, **changes)
        except RecordStoreError:
            logger.warning("Could not update lead %s after call", lead_id, exc_info=True)
