from __future__ import annotations

import re
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..config import LOW_CONFIDENCE_THRESHOLD
from ..models import BusyPeriod, CandidateSlot, Event, EventDraft, EventPatch, TimeInterval

Operation = Literal[
    "query",
    "schedule",
    "update",
    "cancel",
    "check_availability",
    "email_query",
    "email_search",
]

PartOfDay = Literal["morning", "afternoon", "evening"]

# Entity names in the order their follow-up questions are asked.
EntityName = Literal["title", "date_time", "duration"]

EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")


# ---------------------------------------------------------------------------
#  Intent
# ---------------------------------------------------------------------------

class Entities(BaseModel):
  """Entities extracted from one utterance. Every field may be absent."""
  model_config = ConfigDict(extra="ignore")

  date_time: Optional[datetime] = None
  has_date: bool = False
  has_time: bool = False
  part_of_day: Optional[PartOfDay] = None
  span_days: Optional[int] = Field(default=None, ge=1, le=31)
  duration: Optional[int] = Field(default=None, gt=0, le=24 * 60)
  title: Optional[str] = None
  current_title: Optional[str] = None
  new_title: Optional[str] = None
  location: Optional[str] = None
  description: Optional[str] = None
  search_query: Optional[str] = None
  attendees: List[str] = Field(default_factory=list)

  @field_validator("title", "current_title", "new_title", "location",
                   "description", "search_query")
  @classmethod
  def _strip_text(cls, value: Optional[str]) -> Optional[str]:
    if value is None:
      return None
    cleaned = " ".join(str(value).split())
    return cleaned or None

  @field_validator("date_time")
  @classmethod
  def _aware(cls, value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and (value.tzinfo is None or value.utcoffset() is None):
      raise ValueError("date_time must carry a timezone")
    return value

  @field_validator("attendees")
  @classmethod
  def _unique_emails(cls, value: List[str]) -> List[str]:
    seen: List[str] = []
    for item in value:
      email = str(item or "").strip().lower()
      if email and EMAIL_RE.match(email) and email not in seen:
        seen.append(email)
    return seen

  @model_validator(mode="after")
  def _temporal_flags(self) -> "Entities":
    if self.date_time is None:
      self.has_date = False
      self.has_time = False
    return self

  def present(self) -> Dict[str, Any]:
    """Fields carrying a value, the way a merge sees them."""
    data: Dict[str, Any] = {}
    for name, value in self.model_dump().items():
      if name in ("has_date", "has_time"):
        continue
      if value is None or value == []:
        continue
      data[name] = value
    if "date_time" in data:
      data["has_date"] = self.has_date
      data["has_time"] = self.has_time
    return data


class Intent(BaseModel):
  model_config = ConfigDict(extra="ignore")

  operation: Operation
  entities: Entities = Field(default_factory=Entities)
  confidence: float = Field(default=0.0, ge=0.0, le=1.0)
  source: Literal["model", "fallback"] = "model"

  @model_validator(mode="after")
  def _update_only_titles(self) -> "Intent":
    if self.operation != "update" and (self.entities.current_title or self.entities.new_title):
      raise ValueError("current_title/new_title are only valid for update")
    return self

  @property
  def low_confidence(self) -> bool:
    return self.confidence < LOW_CONFIDENCE_THRESHOLD


# ---------------------------------------------------------------------------
#  Conversation state
# ---------------------------------------------------------------------------

class ConversationState(BaseModel):
  """Partial intent carried across turns, keyed by ``id``."""
  model_config = ConfigDict(extra="ignore")

  id: str
  original_query: str
  operation: Operation
  pending_entities: Entities = Field(default_factory=Entities)
  missing_fields: List[str] = Field(default_factory=list)
  slot_options: List[TimeInterval] = Field(default_factory=list)
  event_options: List[str] = Field(default_factory=list)
  target_event_id: Optional[str] = None
  turns: int = 1
  created_at: float = 0.0
  updated_at: float = 0.0


class CompletenessResult(BaseModel):
  complete: bool
  entities: Entities
  missing_fields: List[str] = Field(default_factory=list)
  question: Optional[str] = None


# ---------------------------------------------------------------------------
#  Decisions
# ---------------------------------------------------------------------------

class EventCandidate(BaseModel):
  id: str
  short_id: str
  title: str
  start: datetime
  end: datetime


class _Decision(BaseModel):
  model_config = ConfigDict(extra="ignore")

  message: str
  conversation_id: Optional[str] = None
  low_confidence: bool = False


class NeedsFollowUp(_Decision):
  kind: Literal["needs_follow_up"] = "needs_follow_up"
  question: str
  missing_fields: List[str] = Field(default_factory=list)


class Conflict(_Decision):
  kind: Literal["conflict"] = "conflict"
  requested: TimeInterval
  conflicts: List[BusyPeriod] = Field(default_factory=list)
  alternatives: List[CandidateSlot] = Field(default_factory=list)


class ReadyToCreate(_Decision):
  kind: Literal["ready_to_create"] = "ready_to_create"
  draft: EventDraft
  event: Optional[Event] = None


class ReadyToUpdate(_Decision):
  kind: Literal["ready_to_update"] = "ready_to_update"
  event_id: str
  patch: EventPatch
  event: Optional[Event] = None


class ReadyToCancel(_Decision):
  kind: Literal["ready_to_cancel"] = "ready_to_cancel"
  event_id: str
  title: Optional[str] = None


class AmbiguousMatch(_Decision):
  kind: Literal["ambiguous_match"] = "ambiguous_match"
  candidates: List[EventCandidate] = Field(default_factory=list)


class NotFound(_Decision):
  kind: Literal["not_found"] = "not_found"
  title: Optional[str] = None
  nearby: List[EventCandidate] = Field(default_factory=list)


class EventsListed(_Decision):
  kind: Literal["events_listed"] = "events_listed"
  window: TimeInterval
  events: List[Event] = Field(default_factory=list)


class AvailabilityReport(_Decision):
  kind: Literal["availability"] = "availability"
  window: TimeInterval
  is_free: bool
  busy: List[BusyPeriod] = Field(default_factory=list)
  free: List[TimeInterval] = Field(default_factory=list)


class MailboxRequest(_Decision):
  kind: Literal["mailbox_request"] = "mailbox_request"
  operation: Literal["email_query", "email_search"]
  unread_only: bool = False
  search_query: Optional[str] = None


class Failed(_Decision):
  kind: Literal["failed"] = "failed"
  error_kind: Literal["validation", "upstream_unavailable"]
  field: Optional[str] = None
  operation: Optional[str] = None
  next_step: Optional[str] = None


SchedulingDecision = Annotated[
    Union[
        NeedsFollowUp,
        Conflict,
        ReadyToCreate,
        ReadyToUpdate,
        ReadyToCancel,
        AmbiguousMatch,
        NotFound,
        EventsListed,
        AvailabilityReport,
        MailboxRequest,
        Failed,
    ],
    Field(discriminator="kind"),
]
