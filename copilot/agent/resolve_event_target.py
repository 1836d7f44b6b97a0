from __future__ import annotations

import re
from typing import List, Optional, Sequence

from ..models import Event
from ..utils import normalize_text, short_id
from .schemas import EventCandidate

_ORDINALS = {
    "first": 1, "1st": 1, "one": 1,
    "second": 2, "2nd": 2, "two": 2,
    "third": 3, "3rd": 3, "three": 3,
    "fourth": 4, "4th": 4, "four": 4,
    "fifth": 5, "5th": 5, "five": 5,
    "last": -1,
}
_SELECTION_RE = re.compile(
    r"^(?:(?:option|number|no\.?|#)\s*)?(\d{1,2})\.?$"
    r"|^(?:the\s+)?(first|second|third|fourth|fifth|last|1st|2nd|3rd|4th|5th|one|two|three|four|five)"
    r"(?:\s+(?:one|option|slot|event))?$",
    re.IGNORECASE)


def _key(title: Optional[str]) -> str:
  return normalize_text(title or "").lower()


def match_events_by_title(title: str, events: Sequence[Event]) -> List[Event]:
  """Events whose title matches, exact matches ranked first.

  The exact pass compares case-insensitively. Events whose title contains the
  requested one come next, so "Weekly Sync" also finds "Weekly Sync Prep" and
  the caller can ask which one was meant. Only when neither pass finds
  anything are titles contained in the request tried ("Weekly Sync meeting"
  finds "Weekly Sync"). Calendar order is kept within each pass.
  """
  wanted = _key(title)
  if not wanted:
    return []
  exact = [event for event in events if _key(event.title) == wanted]
  exact_ids = {event.id for event in exact}
  longer = [event for event in events
            if event.id not in exact_ids and wanted in _key(event.title)]
  if exact or longer:
    return exact + longer
  return [event for event in events if _key(event.title) and _key(event.title) in wanted]


def to_candidate(event: Event) -> EventCandidate:
  return EventCandidate(id=event.id,
                        short_id=short_id(event.id),
                        title=event.title,
                        start=event.start,
                        end=event.end)


def parse_selection(text: str, option_count: int) -> Optional[int]:
  """Zero-based index for replies like "2", "#3" or "the second one"."""
  if option_count <= 0:
    return None
  match = _SELECTION_RE.match(normalize_text(text).strip(" .!?"))
  if not match:
    return None
  if match.group(1):
    number = int(match.group(1))
  else:
    number = _ORDINALS[match.group(2).lower()]
  if number == -1:
    return option_count - 1
  if 1 <= number <= option_count:
    return number - 1
  return None
