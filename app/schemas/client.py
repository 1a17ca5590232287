"""Client and per-client scheduling configuration schemas."""

from typing import List, Optional

import pytz
from pydantic import BaseModel, Field, field_validator, model_validator
from typing_extensions import Self

from app.core.config import settings
from app.core.constants import (
    DEFAULT_ACTIVE_DAYS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_CONCURRENT,
    DEFAULT_TIMEZONE,
    DEFAULT_TIME_WINDOWS,
    WEEKDAY_ABBREVIATIONS,
)
from app.schemas.common import ClientStatus

_HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class TimeWindow(BaseModel):
    """A wall-clock dialing window, both ends in the client's timezone.

    Values are kept as raw strings so that malformed data read from the
    record store survives mapping; the policy engine treats a window it
    cannot parse as closed.
    """

    start: str
    end: str


class ClientScheduleConfig(BaseModel):
    """Compliance and pacing rules for one client's outbound dialing."""

    timezone: str = DEFAULT_TIMEZONE
    active_days: List[str] = Field(default_factory=lambda: list(DEFAULT_ACTIVE_DAYS))
    time_windows: List[TimeWindow] = Field(
        default_factory=lambda: [TimeWindow(**w) for w in DEFAULT_TIME_WINDOWS]
    )
    max_concurrent: int = DEFAULT_MAX_CONCURRENT
    delay_between_calls: int = 0  # milliseconds
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    call_cooldown_hours: float = 0
    retry_delays: List[int] = Field(
        default_factory=lambda: list(settings.DEFAULT_RETRY_DELAYS_MINUTES)
    )  # minutes


class RetellConfig(BaseModel):
    """Voice-AI agent settings for a client."""

    agent_id: Optional[str] = None
    from_number: Optional[str] = None
    api_key: Optional[str] = None  # falls back to RETELL_API_KEY
    is_active: bool = False

    @property
    def is_dialable(self) -> bool:
        return bool(self.is_active and self.agent_id and self.from_number)


class Client(BaseModel):
    """A tenant whose leads are being called."""

    id: str
    name: str = ""
    status: ClientStatus = ClientStatus.active
    schedule: ClientScheduleConfig = Field(default_factory=ClientScheduleConfig)
    retell: RetellConfig = Field(default_factory=RetellConfig)


# ---------------------------------------------------------------------------
# Request / response schemas
# ---------------------------------------------------------------------------


class TimeWindowIn(BaseModel):
    start: str = Field(..., pattern=_HHMM_PATTERN)
    end: str = Field(..., pattern=_HHMM_PATTERN)

    @model_validator(mode="after")
    def validate_order(self) -> Self:
        # zero-padded HH:mm compares correctly as text
        if self.start > self.end:
            raise ValueError("window start must not be after its end")
        return self


class ScheduleConfigUpdate(BaseModel):
    """Request body for PUT /api/v1/clients/{client_id}/queue/config.

    Every field is optional; omitted fields keep their current value.
    """

    timezone: Optional[str] = Field(None, min_length=1)
    active_days: Optional[List[str]] = None
    time_windows: Optional[List[TimeWindowIn]] = None
    max_concurrent: Optional[int] = Field(None, ge=1, le=100)
    delay_between_calls: Optional[int] = Field(None, ge=0, le=600_000)
    max_attempts: Optional[int] = Field(None, ge=0)  # 0 means no lifetime limit
    call_cooldown_hours: Optional[float] = Field(None, ge=0)
    retry_delays: Optional[List[int]] = Field(None, min_length=1)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        try:
            pytz.timezone(value)
        except pytz.exceptions.UnknownTimeZoneError:
            raise ValueError(f"Unknown timezone '{value}'")
        return value

    @field_validator("active_days")
    @classmethod
    def validate_active_days(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return value
        normalised = []
        for day in value:
            match = next(
                (d for d in WEEKDAY_ABBREVIATIONS if d.lower() == day.strip().lower()),
                None,
            )
            if match is None:
                raise ValueError(
                    f"Unknown weekday '{day}'; expected one of "
                    f"{', '.join(WEEKDAY_ABBREVIATIONS)}"
                )
            normalised.append(match)
        return normalised

    @field_validator("retry_delays")
    @classmethod
    def validate_retry_delays(cls, value: Optional[List[int]]) -> Optional[List[int]]:
        if value is not None and any(v < 0 for v in value):
            raise ValueError("retry_delays must be non-negative minutes")
        return value


class ScheduleConfigResponse(BaseModel):
    client_id: str
    schedule: ClientScheduleConfig
