from __future__ import annotations

from datetime import tzinfo
from typing import Dict, List, Optional

from .normalizer import combine_date_and_time
from .question_agent import build_follow_up_question
from .schemas import CompletenessResult, ConversationState, Entities, Intent, Operation

# Checked in order; only the first gap is asked about.
REQUIRED_FIELDS: Dict[str, List[str]] = {
    "schedule": ["title", "date_time", "duration"],
    "update": ["title"],
    "cancel": ["title"],
}


def merge_entities(pending: Optional[Entities],
                   incoming: Entities,
                   tz: Optional[tzinfo] = None) -> Entities:
  """Overlay ``incoming`` on ``pending``; a value in the new turn always wins.

  A bare time answering a pending date (or a bare date answering a pending
  time) is folded into one instant instead of replacing it.
  """
  if pending is None:
    return incoming.model_copy(deep=True)
  merged = pending.model_dump()
  fresh = incoming.present()
  merged.update(fresh)

  new_dt = incoming.date_time
  old_dt = pending.date_time
  if new_dt is not None and old_dt is not None:
    zone = tz or new_dt.tzinfo
    if incoming.has_time and not incoming.has_date and pending.has_date:
      merged["date_time"] = combine_date_and_time(old_dt, new_dt, zone)
      merged["has_date"] = True
      merged["has_time"] = True
      merged["span_days"] = None
    elif incoming.has_date and not incoming.has_time and pending.has_time:
      merged["date_time"] = combine_date_and_time(new_dt, old_dt, zone)
      merged["has_date"] = True
      merged["has_time"] = True
  if incoming.has_time:
    merged["part_of_day"] = None
  return Entities.model_validate(merged)


def _has_field(operation: Operation, entities: Entities, field: str) -> bool:
  if field == "title":
    if operation == "update":
      return bool(entities.current_title or entities.title)
    return bool(entities.title)
  if field == "date_time":
    return entities.date_time is not None and entities.has_time
  if field == "duration":
    return entities.duration is not None
  return getattr(entities, field, None) is not None


def missing_fields(operation: Operation, entities: Entities) -> List[str]:
  return [field for field in REQUIRED_FIELDS.get(operation, [])
          if not _has_field(operation, entities, field)]


def check_completeness(intent: Intent,
                       pending: Optional[ConversationState] = None,
                       tz: Optional[tzinfo] = None) -> CompletenessResult:
  entities = merge_entities(pending.pending_entities if pending else None,
                            intent.entities, tz)
  missing = missing_fields(intent.operation, entities)
  if not missing:
    return CompletenessResult(complete=True, entities=entities)
  question = build_follow_up_question(intent.operation, missing[0], entities, tz)
  return CompletenessResult(complete=False,
                            entities=entities,
                            missing_fields=missing,
                            question=question)
