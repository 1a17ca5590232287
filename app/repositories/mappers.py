"""Translation between record-store field bags and typed models.

Field names follow the record store's (Airtable-style) column naming.
Everything that reads a raw record goes through ``*_from_record``;
everything that writes one goes through ``*_to_fields``.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from app.core.exceptions import RecordStoreError
from app.core.record_store import Record
from app.schemas.call import Call
from app.schemas.client import Client, ClientScheduleConfig, RetellConfig, TimeWindow
from app.schemas.common import ClientStatus
from app.schemas.lead import Lead
from app.schemas.queue import QueueItem

# Client columns that make up the schedule; a record with none of them
# gets the default schedule, a record with some of them is taken literally.
SCHEDULE_FIELDS = (
    "Timezone",
    "ActiveDays",
    "TimeWindows",
    "MaxConcurrent",
    "DelayBetweenCalls",
    "MaxAttempts",
    "CallCooldownHours",
    "RetryDelays",
)


# ---------------------------------------------------------------------------
# Scalar helpers
# ---------------------------------------------------------------------------


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or datetime) into an aware UTC datetime."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _json_value(value: Any, default: Any) -> Any:
    """Decode JSON text written by stores that cannot hold objects."""
    if value is None:
        return default
    if isinstance(value, str):
        try:
            return json.loads(value)
        except (json.JSONDecodeError, TypeError):
            return default
    return value


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_list(value: Any) -> List[Any]:
    # Plain text that is not JSON is read as a comma-separated list
    decoded = _json_value(value, value)
    if isinstance(decoded, str):
        return [part.strip() for part in decoded.split(",") if part.strip()]
    if isinstance(decoded, list):
        return decoded
    return []


def _drop_none(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in fields.items() if v is not None}


def _validate(model, data: Dict[str, Any], record: Record, table: str):
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise RecordStoreError(
            f"Malformed {table} record {record.get('id')}: {exc.error_count()} error(s)"
        ) from exc


# ---------------------------------------------------------------------------
# Queue items
# ---------------------------------------------------------------------------


def queue_item_from_record(record: Record) -> QueueItem:
    data = {
        "id": record.get("id"),
        "client_id": record.get("ClientId"),
        "lead_id": record.get("LeadId"),
        "type": record.get("Type") or "call",
        "priority": record.get("Priority") or "normal",
        "status": record.get("Status") or "pending",
        "scheduled_at": parse_datetime(record.get("ScheduledAt"))
        or parse_datetime(record.get("createdTime")),
        "started_at": parse_datetime(record.get("StartedAt")),
        "completed_at": parse_datetime(record.get("CompletedAt")),
        "retry_count": _as_int(record.get("RetryCount"), 0),
        "max_retries": _as_int(record.get("MaxRetries"), 3),
        "assigned_to": record.get("AssignedTo"),
        "notes": record.get("Notes"),
        "tags": _as_list(record.get("Tags")),
        "metadata": _json_value(record.get("Metadata"), {}) or {},
        "created_at": parse_datetime(record.get("CreatedAt"))
        or parse_datetime(record.get("createdTime")),
        "updated_at": parse_datetime(record.get("UpdatedAt")),
    }
    return _validate(QueueItem, data, record, "Queue")


def queue_item_to_fields(item: QueueItem) -> Dict[str, Any]:
    return _drop_none(
        {
            "ClientId": item.client_id,
            "LeadId": item.lead_id,
            "Type": item.type.value,
            "Priority": item.priority.value,
            "Status": item.status.value,
            "ScheduledAt": format_datetime(item.scheduled_at),
            "StartedAt": format_datetime(item.started_at),
            "CompletedAt": format_datetime(item.completed_at),
            "RetryCount": item.retry_count,
            "MaxRetries": item.max_retries,
            "AssignedTo": item.assigned_to,
            "Notes": item.notes,
            "Tags": list(item.tags),
            "Metadata": dict(item.metadata),
            "CreatedAt": format_datetime(item.created_at),
            "UpdatedAt": format_datetime(item.updated_at),
        }
    )


# ---------------------------------------------------------------------------
# Calls
# ---------------------------------------------------------------------------


def call_from_record(record: Record) -> Call:
    data = {
        "id": record.get("id"),
        "lead_id": record.get("LeadId"),
        "client_id": record.get("ClientId"),
        "queue_item_id": record.get("QueueItemId"),
        "agent_id": record.get("AgentId"),
        "call_id": record.get("CallId"),
        "phone_number": record.get("PhoneNumber") or "",
        "status": record.get("Status") or "initiated",
        "outcome": record.get("Outcome"),
        "duration": _as_int(record.get("Duration"), 0),
        "recording_url": record.get("RecordingUrl"),
        "transcript": record.get("Transcript"),
        "summary": record.get("Summary"),
        "sentiment": record.get("Sentiment"),
        "error": record.get("Error"),
        "scheduled_at": parse_datetime(record.get("ScheduledAt")),
        "started_at": parse_datetime(record.get("StartedAt")),
        "ended_at": parse_datetime(record.get("EndedAt")),
        "created_at": parse_datetime(record.get("CreatedAt"))
        or parse_datetime(record.get("createdTime")),
    }
    return _validate(Call, data, record, "Calls")


def call_to_fields(call: Call) -> Dict[str, Any]:
    return _drop_none(
        {
            "LeadId": call.lead_id,
            "ClientId": call.client_id,
            "QueueItemId": call.queue_item_id,
            "AgentId": call.agent_id,
            "CallId": call.call_id,
            "PhoneNumber": call.phone_number,
            "Status": call.status.value,
            "Outcome": call.outcome.value if call.outcome else None,
            "Duration": call.duration,
            "RecordingUrl": call.recording_url,
            "Transcript": call.transcript,
            "Summary": call.summary,
            "Sentiment": call.sentiment,
            "Error": call.error,
            "ScheduledAt": format_datetime(call.scheduled_at),
            "StartedAt": format_datetime(call.started_at),
            "EndedAt": format_datetime(call.ended_at),
            "CreatedAt": format_datetime(call.created_at),
        }
    )


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


def schedule_from_record(record: Record) -> ClientScheduleConfig:
    """Build a schedule, never raising.

    A client that was never configured gets the default schedule.  Once
    any schedule column exists, missing or malformed pieces become empty
    values, which the policy engine treats as "not permitted".
    """
    if not any(field in record for field in SCHEDULE_FIELDS):
        return ClientScheduleConfig()

    windows: List[TimeWindow] = []
    for raw in _as_list(record.get("TimeWindows")):
        if isinstance(raw, dict) and "start" in raw and "end" in raw:
            windows.append(TimeWindow(start=str(raw["start"]), end=str(raw["end"])))

    retry_delays = [
        _as_int(v, -1) for v in _as_list(record.get("RetryDelays"))
    ]
    retry_delays = [v for v in retry_delays if v >= 0]

    defaults = ClientScheduleConfig()
    return ClientScheduleConfig(
        timezone=str(record.get("Timezone") or ""),
        active_days=[str(d) for d in _as_list(record.get("ActiveDays"))],
        time_windows=windows,
        max_concurrent=max(0, _as_int(record.get("MaxConcurrent"), defaults.max_concurrent)),
        delay_between_calls=max(0, _as_int(record.get("DelayBetweenCalls"), 0)),
        max_attempts=_as_int(record.get("MaxAttempts"), defaults.max_attempts),
        call_cooldown_hours=max(0.0, _as_float(record.get("CallCooldownHours"), 0.0)),
        retry_delays=retry_delays or defaults.retry_delays,
    )


def schedule_to_fields(schedule: ClientScheduleConfig) -> Dict[str, Any]:
    return {
        "Timezone": schedule.timezone,
        "ActiveDays": list(schedule.active_days),
        "TimeWindows": [w.model_dump() for w in schedule.time_windows],
        "MaxConcurrent": schedule.max_concurrent,
        "DelayBetweenCalls": schedule.delay_between_calls,
        "MaxAttempts": schedule.max_attempts,
        "CallCooldownHours": schedule.call_cooldown_hours,
        "RetryDelays": list(schedule.retry_delays),
    }


def client_from_record(record: Record) -> Client:
    try:
        status = ClientStatus(record.get("Status") or "active")
    except ValueError:
        status = ClientStatus.inactive

    retell = RetellConfig(
        agent_id=record.get("RetellAgentId"),
        from_number=record.get("RetellFromNumber"),
        api_key=record.get("RetellApiKey"),
        is_active=bool(record.get("RetellIsActive", False)),
    )
    return Client(
        id=record["id"],
        name=str(record.get("Name") or ""),
        status=status,
        schedule=schedule_from_record(record),
        retell=retell,
    )


def client_to_fields(client: Client) -> Dict[str, Any]:
    return _drop_none(
        {
            "Name": client.name,
            "Status": client.status.value,
            "RetellAgentId": client.retell.agent_id,
            "RetellFromNumber": client.retell.from_number,
            "RetellApiKey": client.retell.api_key,
            "RetellIsActive": client.retell.is_active,
            **schedule_to_fields(client.schedule),
        }
    )


# ---------------------------------------------------------------------------
# Leads
# ---------------------------------------------------------------------------


def lead_from_record(record: Record) -> Lead:
    data = {
        "id": record.get("id"),
        "first_name": record.get("FirstName") or "",
        "last_name": record.get("LastName") or "",
        "email": record.get("Email"),
        "phone": record.get("Phone"),
        "source": record.get("Source"),
        "status": record.get("Status") or "new",
        "last_contacted": parse_datetime(record.get("LastContacted")),
    }
    return _validate(Lead, data, record, "Leads")


# ---------------------------------------------------------------------------
# Partial updates
# ---------------------------------------------------------------------------

QUEUE_FIELD_NAMES: Dict[str, str] = {
    "client_id": "ClientId",
    "lead_id": "LeadId",
    "type": "Type",
    "priority": "Priority",
    "status": "Status",
    "scheduled_at": "ScheduledAt",
    "started_at": "StartedAt",
    "completed_at": "CompletedAt",
    "retry_count": "RetryCount",
    "max_retries": "MaxRetries",
    "assigned_to": "AssignedTo",
    "notes": "Notes",
    "tags": "Tags",
    "metadata": "Metadata",
    "created_at": "CreatedAt",
    "updated_at": "UpdatedAt",
}

CALL_FIELD_NAMES: Dict[str, str] = {
    "lead_id": "LeadId",
    "client_id": "ClientId",
    "queue_item_id": "QueueItemId",
    "agent_id": "AgentId",
    "call_id": "CallId",
    "phone_number": "PhoneNumber",
    "status": "Status",
    "outcome": "Outcome",
    "duration": "Duration",
    "recording_url": "RecordingUrl",
    "transcript": "Transcript",
    "summary": "Summary",
    "sentiment": "Sentiment",
    "error": "Error",
    "scheduled_at": "ScheduledAt",
    "started_at": "StartedAt",
    "ended_at": "EndedAt",
    "created_at": "CreatedAt",
}

LEAD_FIELD_NAMES: Dict[str, str] = {
    "first_name": "FirstName",
    "last_name": "LastName",
    "email": "Email",
    "phone": "Phone",
    "source": "Source",
    "status": "Status",
    "last_contacted": "LastContacted",
}


def _encode_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return format_datetime(value)
    if isinstance(value, Enum):
        return value.value
    return value


def changes_to_fields(names: Dict[str, str], changes: Dict[str, Any]) -> Dict[str, Any]:
    """Rename model attributes to record columns for a partial update.

    ``None`` values are written through so that a column can be cleared.
    """
    fields: Dict[str, Any] = {}
    for attr, value in changes.items():
        if attr not in names:
            raise ValueError(f"Unknown attribute '{attr}'")
        fields[names[attr]] = _encode_value(value)
    return fields


def expected_to_fields(names: Dict[str, str], expected: Dict[str, Any]) -> Dict[str, Any]:
    """Like :func:`changes_to_fields` but keeps collections as collections."""
    fields: Dict[str, Any] = {}
    for attr, value in expected.items():
        if isinstance(value, (list, tuple, set, frozenset)):
            fields[names[attr]] = [_encode_value(v) for v in value]
        else:
            fields[names[attr]] = _encode_value(value)
    return fields
