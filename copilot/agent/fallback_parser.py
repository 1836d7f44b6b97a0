"""
Keyword fallback parser.

Used whenever the model-backed parser is unavailable or returns something
unusable. Results are always marked ``source="fallback"`` with a confidence
below the low-confidence threshold.
"""

from __future__ import annotations

import re
from datetime import datetime, tzinfo
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from ..errors import InvalidInputError
from .normalizer import match_temporal, strip_temporal
from .schemas import ConversationState, Entities, Intent, Operation

KEYWORD_CONFIDENCE = 0.6
DEFAULT_CONFIDENCE = 0.4

_EMAIL_WORDS_RE = re.compile(r"\b(e-?mails?|inbox|unread|messages?)\b", re.IGNORECASE)
_EMAIL_SEARCH_RE = re.compile(r"\b(search|find|look|from|about)\b", re.IGNORECASE)
_CANCEL_RE = re.compile(r"\b(cancel|delete|remove|drop|call off)\b", re.IGNORECASE)
_UPDATE_RE = re.compile(r"\b(update|modify|change|move|reschedule|rename|push|shift|edit)\b",
                        re.IGNORECASE)
_SCHEDULE_RE = re.compile(r"\b(schedule|book|create|set up|add|arrange)\b", re.IGNORECASE)
_AVAILABILITY_RE = re.compile(r"\b(free|available|availability|busy|open slots?)\b", re.IGNORECASE)
_QUERY_RE = re.compile(r"\b(what|show|list|agenda|upcoming|events|meetings|calendar)\b",
                       re.IGNORECASE)
_COMMAND_PATTERNS = (
    ("cancel", _CANCEL_RE),
    ("update", _UPDATE_RE),
    ("schedule", _SCHEDULE_RE),
    ("check_availability", _AVAILABILITY_RE),
)

_EMAIL_ADDRESS_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
_QUOTED_RE = re.compile(r"[\"“]([^\"”]+)[\"”]")

_HALF_HOUR_RE = re.compile(r"\bhalf\s+(?:an\s+)?hour\b", re.IGNORECASE)
_HOUR_AND_HALF_RE = re.compile(r"\b(?:an?|one)\s+hour\s+and\s+a\s+half\b", re.IGNORECASE)
_HOURS_RE = re.compile(r"\b(\d+(?:\.\d+)?|an?|one|two|three)\s*(?:hours?|hrs?|h)\b", re.IGNORECASE)
_MINUTES_RE = re.compile(r"\b(\d+)\s*(?:minutes?|mins?|m)\b", re.IGNORECASE)
_BARE_NUMBER_RE = re.compile(r"^\s*(\d{1,3})\s*$")

_MEETING_ABOUT_RE = re.compile(r"\bmeeting\s+(?:about|for|on|regarding)\s+([^,.\n]+)", re.IGNORECASE)
_SCHEDULE_TITLE_RE = re.compile(
    r"\b(?:schedule|book|create|set up|add|arrange)\s+(?:an?\s+|the\s+|my\s+)?(.+)$",
    re.IGNORECASE)
_TARGET_TITLE_RE = re.compile(
    r"\b(?:cancel|delete|remove|drop|call off|update|modify|change|move|reschedule|rename|push|shift|edit)"
    r"\s+(?:my\s+|the\s+|an?\s+)?(.+)$",
    re.IGNORECASE)
_TO_SPLIT_RE = re.compile(r"^(.+?)\s+(?:to|into|as)\s+(.+)$", re.IGNORECASE)
_TRAILING_WORDS_RE = re.compile(
    r"(?:\s+(?:at|on|for|with|from|in|by|to|and|please))+\s*$", re.IGNORECASE)
_LEADING_WORDS_RE = re.compile(r"^(?:(?:at|on|for|with|from|in|by|to|my|the|a|an)\s+)+",
                               re.IGNORECASE)
_MAILBOX_NOISE_RE = re.compile(r"\b(search|find|look|show|get|e-?mails?|messages?|about|for|me|my)\b",
                               re.IGNORECASE)

_GENERIC_TITLES = {"meeting", "a meeting", "event", "an event", "appointment", "call", "something",
                   "it", "that", "this", "at", "on", "for", "with", "to", "in", "by", "from", "and"}

_WORD_HOURS = {"a": 1.0, "an": 1.0, "one": 1.0, "two": 2.0, "three": 3.0}


def _command_hit(text: str) -> Optional[Tuple[int, int, Operation]]:
  # The earliest command word wins: "schedule a budget update" is a schedule.
  hits = []
  for operation, pattern in _COMMAND_PATTERNS:
    match = pattern.search(text)
    if match:
      hits.append((match.start(), match.end(), operation))
  return min(hits) if hits else None


def detect_operation(text: str) -> Tuple[Operation, float]:
  if _EMAIL_WORDS_RE.search(text):
    if _EMAIL_SEARCH_RE.search(text):
      return "email_search", KEYWORD_CONFIDENCE
    return "email_query", KEYWORD_CONFIDENCE
  hit = _command_hit(text)
  if hit:
    return hit[2], KEYWORD_CONFIDENCE
  if _QUERY_RE.search(text):
    return "query", KEYWORD_CONFIDENCE
  return "query", DEFAULT_CONFIDENCE


def extract_duration(text: str) -> Optional[int]:
  """Minutes mentioned in ``text``; relative offsets like "in 2 hours" are not durations."""
  cleaned = strip_temporal(text)
  if _HOUR_AND_HALF_RE.search(cleaned):
    return 90
  if _HALF_HOUR_RE.search(cleaned):
    return 30
  hours = _HOURS_RE.search(cleaned)
  minutes = _MINUTES_RE.search(cleaned)
  total = 0.0
  if hours:
    raw = hours.group(1).lower()
    total += _WORD_HOURS.get(raw) * 60 if raw in _WORD_HOURS else float(raw) * 60
  if minutes:
    total += int(minutes.group(1))
  if total <= 0:
    return None
  return int(round(total))


def extract_emails(text: str) -> List[str]:
  return _EMAIL_ADDRESS_RE.findall(text or "")


def _clean_title(raw: Optional[str]) -> Optional[str]:
  if not raw:
    return None
  value = _EMAIL_ADDRESS_RE.sub(" ", raw)
  value = re.sub(r"\b(?:for\s+)?(?:\d+(?:\.\d+)?|an?|one|two|three)\s*(?:hours?|hrs?|minutes?|mins?)\b",
                 " ", value, flags=re.IGNORECASE)
  value = re.sub(r"\b(?:for\s+)?half\s+(?:an\s+)?hour\b", " ", value, flags=re.IGNORECASE)
  value = " ".join(value.split()).strip(" ,.!?;:-")
  value = _TRAILING_WORDS_RE.sub("", value)
  value = _LEADING_WORDS_RE.sub("", value).strip(" ,.!?;:-")
  if not value or value.lower() in _GENERIC_TITLES:
    return None
  return value


def extract_title(text: str) -> Optional[str]:
  quoted = _QUOTED_RE.search(text or "")
  if quoted:
    return _clean_title(quoted.group(1))
  cleaned = strip_temporal(text)
  about = _MEETING_ABOUT_RE.search(cleaned)
  if about:
    title = _clean_title(about.group(1))
    if title:
      return title
  scheduled = _SCHEDULE_TITLE_RE.search(cleaned)
  if scheduled:
    # "a meeting with Sam" keeps the whole phrase; a bare "meeting" is not a title.
    return _clean_title(re.split(r"\s+(?:for|at|on)\s+", scheduled.group(1))[0])
  return None


def extract_target(text: str) -> Tuple[Optional[str], Optional[str]]:
  """(current title, new title) for update/cancel requests."""
  quoted = _QUOTED_RE.findall(text or "")
  if len(quoted) >= 2:
    return _clean_title(quoted[0]), _clean_title(quoted[1])
  match = _TARGET_TITLE_RE.search(text or "")
  if not match:
    return (_clean_title(quoted[0]) if quoted else None), None
  body = match.group(1)
  split = _TO_SPLIT_RE.match(body)
  if split:
    current = _clean_title(strip_temporal(split.group(1)))
    # "to 3pm" or "to 45 minutes" is a new time or length, not a new title.
    return current, _clean_title(strip_temporal(split.group(2)))
  return _clean_title(strip_temporal(body)), None


def extract_search_query(text: str) -> Optional[str]:
  value = _MAILBOX_NOISE_RE.sub(" ", text or "")
  value = " ".join(value.split()).strip(" ,.!?")
  return value or None


def _context_reply(text: str, context: ConversationState) -> Dict[str, Any]:
  """Bare answers to the pending question."""
  missing = context.missing_fields[0] if context.missing_fields else None
  filled: Dict[str, Any] = {}
  bare = _BARE_NUMBER_RE.match(text)
  if missing == "duration" and bare:
    filled["duration"] = int(bare.group(1))
  elif missing == "title" and not bare:
    title = _clean_title(strip_temporal(text)) or _clean_title(text)
    if title:
      if context.operation == "update":
        filled["current_title"] = title
      else:
        filled["title"] = title
  return filled


_ENTITY_LIMITS = {
    "duration": "A meeting must last between 1 minute and 24 hours.",
}


def _validated_entities(data: Dict[str, Any]) -> Entities:
  """Entities from the user's own words; an out-of-range value is a validation failure."""
  try:
    return Entities.model_validate(data)
  except ValidationError as exc:
    error = exc.errors()[0]
    field = str(error["loc"][0]) if error.get("loc") else "entities"
    detail = _ENTITY_LIMITS.get(field) or str(error.get("msg") or "")
    raise InvalidInputError(field, detail) from exc


class KeywordIntentParser:
  """Regex and keyword intent extraction with explicit low confidence."""

  def __init__(self, tz: Optional[tzinfo] = None):
    self.tz = tz

  def parse(self,
            text: str,
            context: Optional[ConversationState],
            reference: datetime) -> Intent:
    raw = " ".join((text or "").split())
    operation, confidence = detect_operation(raw)
    if context is not None and operation in ("cancel", "update", "schedule"):
      hit = _command_hit(raw)
      # "Budget update" answering a title question names the event.
      if hit and not raw[hit[1]:].strip(" .!?"):
        operation, confidence = context.operation, DEFAULT_CONFIDENCE
    data: Dict[str, Any] = {}

    temporal = match_temporal(raw, reference, self.tz)
    if temporal is not None:
      data.update(date_time=temporal.value,
                  has_date=temporal.has_date,
                  has_time=temporal.has_time,
                  part_of_day=temporal.part_of_day,
                  span_days=temporal.span_days if temporal.span_days > 1 else None)

    duration = extract_duration(raw)
    if duration:
      data["duration"] = duration
    emails = extract_emails(raw)
    if emails:
      data["attendees"] = emails

    if operation == "update":
      current, new = extract_target(raw)
      data["current_title"] = current
      data["new_title"] = new
    elif operation == "cancel":
      current, _ = extract_target(raw)
      data["title"] = current
    elif operation == "schedule":
      data["title"] = extract_title(raw)
    elif operation == "email_search":
      data["search_query"] = extract_search_query(raw)

    if context is not None and (confidence <= DEFAULT_CONFIDENCE or operation == "query"):
      # A reply with no command words continues the pending request.
      operation = context.operation
      for key, value in _context_reply(raw, context).items():
        if data.get(key) is None:
          data[key] = value
      confidence = KEYWORD_CONFIDENCE if data else DEFAULT_CONFIDENCE

    if operation != "update":
      data.pop("current_title", None)
      data.pop("new_title", None)
    return Intent(operation=operation,
                  entities=_validated_entities(data),
                  confidence=confidence,
                  source="fallback")

  async def parse_intent(self,
                         text: str,
                         context: Optional[ConversationState],
                         reference: datetime) -> Intent:
    return self.parse(text, context, reference)
