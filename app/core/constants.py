from typing import Dict, FrozenSet, List, Tuple

# Record store table names
LEADS_TABLE: str = "Leads"
CALLS_TABLE: str = "Calls"
QUEUE_TABLE: str = "Queue"
CLIENTS_TABLE: str = "Clients"

# Dispatch order: lower rank is dialled first
PRIORITY_RANK: Dict[str, int] = {
    "urgent": 0,
    "high": 1,
    "normal": 2,
    "low": 3,
}

QUEUE_STATUSES: FrozenSet[str] = frozenset(
    {"pending", "scheduled", "in_progress", "completed", "failed", "cancelled"}
)

# "scheduled" is a pending item with a future scheduled_at
WAITING_STATUSES: FrozenSet[str] = frozenset({"pending", "scheduled"})

# Statuses that block a second item for the same (client, lead)
ACTIVE_QUEUE_STATUSES: FrozenSet[str] = WAITING_STATUSES | {"in_progress"}

TERMINAL_QUEUE_STATUSES: FrozenSet[str] = frozenset(
    {"completed", "failed", "cancelled"}
)

ALLOWED_QUEUE_TRANSITIONS: Dict[str, List[str]] = {
    "pending": ["in_progress", "cancelled", "failed"],
    "scheduled": ["in_progress", "cancelled", "failed"],
    "in_progress": ["completed", "failed", "pending"],
    "completed": [],  # terminal
    "failed": [],  # terminal
    "cancelled": [],  # terminal
}

CALL_STATUSES: FrozenSet[str] = frozenset(
    {"initiated", "ringing", "answered", "completed", "failed", "no-answer"}
)
TERMINAL_CALL_STATUSES: FrozenSet[str] = frozenset(
    {"completed", "failed", "no-answer"}
)

CALL_OUTCOMES: FrozenSet[str] = frozenset(
    {"successful", "no-answer", "voicemail", "busy", "wrong-number", "failed"}
)
# Outcomes of an ended call that send the queue item back for another attempt
RETRYABLE_CALL_OUTCOMES: FrozenSet[str] = frozenset({"no-answer", "busy"})

WEEKDAY_ABBREVIATIONS: Tuple[str, ...] = (
    "Mon",
    "Tue",
    "Wed",
    "Thu",
    "Fri",
    "Sat",
    "Sun",
)

# Per-client schedule defaults (used when the client record has none)
DEFAULT_TIMEZONE: str = "America/New_York"
DEFAULT_ACTIVE_DAYS: List[str] = ["Mon", "Tue", "Wed", "Thu", "Fri"]
DEFAULT_TIME_WINDOWS: List[Dict[str, str]] = [{"start": "09:00", "end": "17:00"}]
DEFAULT_MAX_CONCURRENT: int = 5
DEFAULT_MAX_ATTEMPTS: int = 6
