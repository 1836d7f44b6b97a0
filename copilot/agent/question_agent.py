from __future__ import annotations

from datetime import tzinfo
from typing import Optional

from ..utils import format_day
from .schemas import Entities, Operation

_QUESTIONS = {
    ("schedule", "title"): "What would you like to call this meeting?",
    ("schedule", "date_time"): "What date and time would you prefer?",
    ("schedule", "duration"): "How long should this meeting be?",
    ("update", "title"): "Which event would you like to update? Please provide the event title.",
    ("cancel", "title"): "Which event would you like to cancel? Please provide the event title.",
}


def build_follow_up_question(operation: Operation,
                             missing_field: str,
                             entities: Entities,
                             tz: Optional[tzinfo] = None) -> str:
  if operation == "schedule" and missing_field == "date_time" and entities.date_time and entities.has_date:
    local = entities.date_time.astimezone(tz) if tz else entities.date_time
    return f"What time on {format_day(local)} works for you?"
  question = _QUESTIONS.get((operation, missing_field))
  if question:
    return question
  return f"Could you tell me the {missing_field.replace('_', ' ')}?"


def build_follow_up_message(operation: Operation,
                            entities: Entities,
                            question: str) -> str:
  if operation == "schedule":
    prefix = (f'I can schedule "{entities.title}" for you.'
              if entities.title else "I'd be happy to schedule that for you!")
    return f"{prefix} {question}"
  return question


def build_change_question(title: str) -> str:
  return (f'What would you like to change about "{title}"? '
          "You can give a new title, time, duration or location.")


def build_alternatives_question(count: int) -> str:
  if count <= 0:
    return "Would you like to try a different day or time?"
  if count == 1:
    return "Reply 1 to take the alternative, or suggest another time."
  choices = ", ".join(str(index) for index in range(1, count)) + f" or {count}"
  return f"Reply {choices} to pick an alternative, or suggest another time."


def build_disambiguation_question(count: int) -> str:
  return f"Reply with a number from 1 to {count}, or give a more specific title."
