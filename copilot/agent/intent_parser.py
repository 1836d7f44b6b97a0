from __future__ import annotations

import logging
import re
from datetime import datetime, tzinfo
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI
from pydantic import BaseModel, ConfigDict, ValidationError

from ..config import INTENT_PARSER_MODEL, UPSTREAM_TIMEOUT_SECONDS
from ..errors import InvalidInputError, SchedulingError
from .collaborators import IntentParser, call_upstream
from .fallback_parser import KeywordIntentParser, extract_duration
from .llm_provider import request_json_object
from .normalizer import match_temporal
from .schemas import ConversationState, Entities, Intent, Operation

logger = logging.getLogger(__name__)

INTENT_SYSTEM_PROMPT = """You are a calendar assistant that parses scheduling requests.
Return JSON only. No markdown or extra text.
Current date/time is {now_iso}. Timezone is {timezone}.

Intents:
- query: list or review existing events
- schedule: create a new event
- update: change an existing event (title, time, duration, location)
- cancel: delete an existing event
- check_availability: ask whether a time is free
- email_query: read recent or unread emails
- email_search: search for specific emails

Output schema:
{{
  "intent": "one of the intents above",
  "entities": {{
    "dateTime": "local ISO string YYYY-MM-DDTHH:MM if a time is given, YYYY-MM-DD if only a date, null otherwise",
    "duration": "minutes as a number, null if not given",
    "title": "event title, null if not given",
    "currentTitle": "for update only: the existing event's title",
    "newTitle": "for update only: the new title",
    "attendees": ["email addresses"],
    "location": "string or null",
    "description": "string or null"
  }},
  "confidence": 0.0
}}
Never invent values the user did not give.
"""

INTENT_CONTEXT_PROMPT = """CONVERSATION CONTEXT:
- Original query: "{original_query}"
- Previous intent: {operation}
- Previously extracted entities: {entities}
- Missing information: {missing}

The user is answering a follow-up question. Keep the previous intent unless the
user clearly asks for something else, and return only what the new message adds.
"""

_OPERATION_ALIASES: Dict[str, Operation] = {
    "query": "query",
    "list": "query",
    "list_events": "query",
    "show": "query",
    "schedule": "schedule",
    "create": "schedule",
    "create_event": "schedule",
    "book": "schedule",
    "add": "schedule",
    "update": "update",
    "update_event": "update",
    "modify": "update",
    "reschedule": "update",
    "move": "update",
    "rename": "update",
    "cancel": "cancel",
    "cancel_event": "cancel",
    "delete": "cancel",
    "delete_event": "cancel",
    "remove": "cancel",
    "check_availability": "check_availability",
    "availability": "check_availability",
    "free_busy": "check_availability",
    "email_query": "email_query",
    "email": "email_query",
    "emails": "email_query",
    "email_search": "email_search",
    "search_email": "email_search",
    "search_emails": "email_search",
}

_OPERATION_KEYS = ("operation", "intent", "action", "type")
_ENTITY_BLOCK_KEYS = ("entities", "parameters", "params", "slots", "args", "arguments")
_DATETIME_KEYS = ("date_time", "datetime", "start", "start_time", "when")
_DURATION_KEYS = ("duration", "duration_minutes", "minutes", "length")
_TEXT_KEYS = ("title", "current_title", "new_title", "location", "description", "search_query")
_TEXT_ALIASES = {
    "summary": "title",
    "subject": "title",
    "name": "title",
    "old_title": "current_title",
    "original_title": "current_title",
    "target_title": "current_title",
    "renamed_to": "new_title",
    "query": "search_query",
    "search": "search_query",
}

_CAMEL_RE = re.compile(r"(?<=[a-z0-9])([A-Z])")


class RawIntentEnvelope(BaseModel):
  """Whatever the model returned; shape checks happen in normalize_intent_payload."""
  model_config = ConfigDict(extra="allow")


def _snake(key: Any) -> str:
  value = _CAMEL_RE.sub(r"_\1", str(key)).replace("-", "_").replace(" ", "_")
  return value.lower().strip("_")


def _snake_keys(raw: Dict[str, Any]) -> Dict[str, Any]:
  return {_snake(key): value for key, value in raw.items()}


def _flatten(raw: Dict[str, Any]) -> Dict[str, Any]:
  top = _snake_keys(raw)
  flat: Dict[str, Any] = {}
  for key, value in top.items():
    if key in _ENTITY_BLOCK_KEYS and isinstance(value, dict):
      continue
    flat[key] = value
  for key in _ENTITY_BLOCK_KEYS:
    block = top.get(key)
    if isinstance(block, dict):
      for inner_key, inner_value in _snake_keys(block).items():
        if inner_value is not None:
          flat[inner_key] = inner_value
  return flat


def _coerce_operation(flat: Dict[str, Any]) -> Operation:
  for key in _OPERATION_KEYS:
    value = flat.get(key)
    if isinstance(value, str) and value.strip():
      alias = _OPERATION_ALIASES.get(_snake(value.strip()))
      if alias:
        return alias
      raise InvalidInputError("operation", f"Unknown operation '{value}'.")
  raise InvalidInputError("operation", "No operation in parser output.")


def _coerce_confidence(value: Any) -> float:
  try:
    number = float(value)
  except (TypeError, ValueError):
    return 0.5
  if number > 1.0 and number <= 100.0:
    number = number / 100.0
  return min(max(number, 0.0), 1.0)


def _coerce_duration(value: Any) -> Optional[int]:
  if isinstance(value, bool) or value is None:
    return None
  if isinstance(value, (int, float)):
    return int(round(value)) if value > 0 else None
  if isinstance(value, str):
    text = value.strip()
    if re.fullmatch(r"\d+(?:\.\d+)?", text):
      return _coerce_duration(float(text))
    return extract_duration(text)
  return None


def _coerce_attendees(value: Any) -> List[str]:
  if value is None:
    return []
  items = value if isinstance(value, list) else re.split(r"[,;\s]+", str(value))
  emails: List[str] = []
  for item in items:
    if isinstance(item, dict):
      item = item.get("email")
    if isinstance(item, str) and item.strip():
      emails.append(item.strip())
  return emails


def _temporal_fields(value: Any, reference: datetime, tz: Optional[tzinfo]) -> Dict[str, Any]:
  if not isinstance(value, str) or not value.strip():
    return {}
  match = match_temporal(value, reference, tz)
  if match is None:
    return {}
  return {
      "date_time": match.value,
      "has_date": match.has_date,
      "has_time": match.has_time,
      "part_of_day": match.part_of_day,
      "span_days": match.span_days if match.span_days > 1 else None,
  }


def _safe_entities(data: Dict[str, Any]) -> Entities:
  """Validate, dropping any field the model got wrong instead of failing."""
  payload = dict(data)
  for _ in range(len(payload) + 1):
    try:
      return Entities.model_validate(payload)
    except ValidationError as exc:
      bad = {str(error["loc"][0]) for error in exc.errors() if error.get("loc")}
      if not bad:
        break
      for name in bad:
        logger.warning("dropping invalid entity %s=%r", name, payload.get(name))
        payload.pop(name, None)
  return Entities()


def normalize_intent_payload(raw: Dict[str, Any],
                             text: str,
                             reference: datetime,
                             tz: Optional[tzinfo] = None) -> Intent:
  """Turn loosely shaped parser output into a strict Intent.

  Accepts camelCase or snake_case keys, nested entity blocks, operation
  aliases, durations as numbers or phrases and attendees as a string or list.
  Raises InvalidInputError only when no usable operation is present.
  """
  flat = _flatten(raw)
  operation = _coerce_operation(flat)
  confidence = _coerce_confidence(flat.get("confidence"))

  data: Dict[str, Any] = {}
  for key in _TEXT_KEYS:
    if isinstance(flat.get(key), str):
      data[key] = flat[key]
  for alias, target in _TEXT_ALIASES.items():
    if target not in data and isinstance(flat.get(alias), str):
      data[target] = flat[alias]

  temporal: Dict[str, Any] = {}
  for key in _DATETIME_KEYS:
    temporal = _temporal_fields(flat.get(key), reference, tz)
    if temporal:
      break
  if not temporal and (flat.get("date") or flat.get("time")):
    combined = " ".join(str(flat.get(key) or "") for key in ("date", "time"))
    temporal = _temporal_fields(combined, reference, tz)
  if not temporal:
    temporal = _temporal_fields(text, reference, tz)
  data.update(temporal)

  for key in _DURATION_KEYS:
    duration = _coerce_duration(flat.get(key))
    if duration:
      data["duration"] = duration
      break
  attendees = _coerce_attendees(flat.get("attendees") or flat.get("participants"))
  if attendees:
    data["attendees"] = attendees

  if operation != "update":
    current = data.pop("current_title", None)
    data.pop("new_title", None)
    if current and not data.get("title"):
      data["title"] = current
  return Intent(operation=operation,
                entities=_safe_entities(data),
                confidence=confidence,
                source="model")


class LLMIntentParser:
  """Model-backed parser; raises on transport errors or unusable output."""

  def __init__(self,
               tz: tzinfo,
               model: str = INTENT_PARSER_MODEL,
               client: Optional[AsyncOpenAI] = None,
               max_completion_tokens: int = 2000):
    self.tz = tz
    self.model = model
    self.client = client
    self.max_completion_tokens = max_completion_tokens

  def _context_prompt(self, context: Optional[ConversationState]) -> Optional[str]:
    if context is None:
      return None
    entities = context.pending_entities.model_dump(mode="json", exclude_none=True)
    return INTENT_CONTEXT_PROMPT.format(
        original_query=context.original_query,
        operation=context.operation,
        entities=entities,
        missing=", ".join(context.missing_fields) or "none",
    )

  async def parse_intent(self,
                         text: str,
                         context: Optional[ConversationState],
                         reference: datetime) -> Intent:
    local_now = reference.astimezone(self.tz)
    system_prompt = INTENT_SYSTEM_PROMPT.format(
        now_iso=local_now.isoformat(timespec="minutes"),
        timezone=str(self.tz),
    )
    reply = await request_json_object(
        model=self.model,
        system_prompt=system_prompt,
        context_prompt=self._context_prompt(context),
        payload={"query": text},
        response_model=RawIntentEnvelope,
        max_completion_tokens=self.max_completion_tokens,
        client=self.client,
    )
    if reply.parsed is None:
      if not reply.available:
        raise RuntimeError("language model is not configured")
      raise ValueError(f"unusable parser output: {reply.raw_text[:200]!r}")
    return normalize_intent_payload(reply.parsed.model_dump(), text, reference, self.tz)


async def parse_intent_with_fallback(primary: Optional[IntentParser],
                                     fallback: KeywordIntentParser,
                                     text: str,
                                     context: Optional[ConversationState],
                                     reference: datetime,
                                     timeout: Optional[float] = UPSTREAM_TIMEOUT_SECONDS) -> Intent:
  """Primary parser first; the keyword parser on any failure.

  Low-confidence results are logged and flagged but never rejected.
  """
  if primary is not None:
    try:
      intent = await call_upstream("parse_intent",
                                   primary.parse_intent(text, context, reference),
                                   timeout=timeout)
    except SchedulingError as exc:
      logger.warning("intent parser failed, using keyword fallback: %s", exc)
    else:
      if intent.low_confidence:
        logger.warning("low-confidence parse: operation=%s confidence=%.2f source=%s",
                       intent.operation, intent.confidence, intent.source)
      return intent

  intent = fallback.parse(text, context, reference)
  logger.warning("low-confidence parse: operation=%s confidence=%.2f source=fallback",
                 intent.operation, intent.confidence)
  return intent
