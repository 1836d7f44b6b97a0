from __future__ import annotations

from datetime import date, datetime, time, tzinfo
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .config import WORKING_HOURS_END, WORKING_HOURS_START
from .errors import InvalidInputError


def _require_aware(value: datetime) -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError("datetime must carry a timezone")
    return value


class TimeInterval(BaseModel):
    """Half-open interval [start, end) between two aware instants."""
    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return _require_aware(value)

    @model_validator(mode="after")
    def _ordered(self) -> "TimeInterval":
        if self.start >= self.end:
            raise ValueError("start must be before end")
        return self

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def overlaps(self, other: "TimeInterval") -> bool:
        return self.start < other.end and self.end > other.start


class BusyPeriod(TimeInterval):
    event_id: Optional[str] = None
    title: Optional[str] = None


def _first_error_message(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    message = str(errors[0].get("msg") or "")
    return message.replace("Value error, ", "") or str(exc)


def make_interval(start: datetime, end: datetime, field: str = "interval") -> TimeInterval:
    try:
        return TimeInterval(start=start, end=end)
    except ValidationError as exc:
        raise InvalidInputError(field, _first_error_message(exc)) from exc


def make_busy_period(start: datetime,
                     end: datetime,
                     event_id: Optional[str] = None,
                     title: Optional[str] = None) -> BusyPeriod:
    try:
        return BusyPeriod(start=start, end=end, event_id=event_id, title=title)
    except ValidationError as exc:
        raise InvalidInputError("busy_period", _first_error_message(exc)) from exc


class WorkingHours(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: time = WORKING_HOURS_START
    end: time = WORKING_HOURS_END

    @model_validator(mode="after")
    def _ordered(self) -> "WorkingHours":
        if self.start >= self.end:
            raise ValueError("working hours must start before they end")
        return self

    def bounds_for(self, day: date, tz: tzinfo) -> Tuple[datetime, datetime]:
        return (datetime.combine(day, self.start, tzinfo=tz),
                datetime.combine(day, self.end, tzinfo=tz))

    def contains(self, interval: TimeInterval, tz: tzinfo) -> bool:
        """Start and end on the same local day, inside [start, end]."""
        local_start = interval.start.astimezone(tz)
        local_end = interval.end.astimezone(tz)
        if local_start.date() != local_end.date():
            return False
        return local_start.time() >= self.start and local_end.time() <= self.end


class Event(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    title: str
    start: datetime
    end: datetime
    location: Optional[str] = None
    description: Optional[str] = None
    attendees: List[str] = Field(default_factory=list)
    html_link: Optional[str] = None
    calendar_id: Optional[str] = None

    @property
    def interval(self) -> TimeInterval:
        return make_interval(self.start, self.end, "event")

    def as_busy_period(self) -> BusyPeriod:
        return make_busy_period(self.start, self.end, event_id=self.id, title=self.title)


class EventDraft(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = Field(min_length=1)
    start: datetime
    end: datetime
    location: Optional[str] = None
    description: Optional[str] = None
    attendees: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _ordered(self) -> "EventDraft":
        if self.start >= self.end:
            raise ValueError("start must be before end")
        return self

    @property
    def interval(self) -> TimeInterval:
        return make_interval(self.start, self.end, "draft")


class EventPatch(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    location: Optional[str] = None
    description: Optional[str] = None
    attendees: Optional[List[str]] = None

    def is_empty(self) -> bool:
        return not self.changes()

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class CandidateSlot(BaseModel):
    model_config = ConfigDict(frozen=True)

    interval: TimeInterval
    score: float
    rationale: str

    @property
    def start(self) -> datetime:
        return self.interval.start

    @property
    def end(self) -> datetime:
        return self.interval.end
