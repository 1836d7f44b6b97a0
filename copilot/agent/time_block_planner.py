"""
Time Block Planner: candidate slot search and scoring
- walks a search window in fixed steps
- drops candidates past the window, outside working hours, or overlapping busy time
- scores survivors by time-of-day preference and closeness to the requested time
"""

from __future__ import annotations

from datetime import datetime, timedelta, tzinfo
from typing import List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from ..config import MAX_ALTERNATIVES, SLOT_STEP_MINUTES
from ..errors import InvalidInputError
from ..models import BusyPeriod, CandidateSlot, TimeInterval, WorkingHours
from .conflict_manager import has_conflict


class SlotPreferences(BaseModel):
  """Scoring knobs. Hour bands are inclusive on both ends."""
  base_score: float = 0.8
  preferred_bands: List[Tuple[int, int, float]] = Field(
      default_factory=lambda: [(10, 11, 0.2), (14, 15, 0.15)])
  early_before_hour: int = 9
  late_after_hour: int = 16
  off_hours_penalty: float = 0.1
  proximity_weight: float = 0.5


class TimeBlockPlanner:
  """Finds free, in-hours slots for a meeting of a given length."""

  def __init__(self,
               working_hours: Optional[WorkingHours] = None,
               preferences: Optional[SlotPreferences] = None,
               step_minutes: int = SLOT_STEP_MINUTES):
    self.working_hours = working_hours if working_hours is not None else WorkingHours()
    self.preferences = preferences if preferences is not None else SlotPreferences()
    self.step = timedelta(minutes=step_minutes)

  def score(self, start: datetime, anchor: Optional[datetime] = None) -> Tuple[float, str]:
    prefs = self.preferences
    hour = start.hour
    value = prefs.base_score
    for low, high, bonus in prefs.preferred_bands:
      if low <= hour <= high:
        value += bonus
    if hour < prefs.early_before_hour or hour > prefs.late_after_hour:
      value -= prefs.off_hours_penalty
    if anchor is None:
      return round(value, 4), "Available slot"
    distance_hours = abs((start - anchor).total_seconds()) / 3600.0
    value += prefs.proximity_weight / (1.0 + distance_hours)
    rationale = "Earlier alternative" if start < anchor else "Later alternative"
    return round(value, 4), rationale

  def find_slots(self,
                 duration_minutes: int,
                 window: TimeInterval,
                 busy: Sequence[BusyPeriod],
                 tz: tzinfo,
                 max_results: int = MAX_ALTERNATIVES,
                 anchor: Optional[datetime] = None,
                 ignore_event_id: Optional[str] = None) -> List[CandidateSlot]:
    """Ranked candidates, best first; ties go to the earlier start.

    An empty list means nothing fits and is not an error.
    """
    if duration_minutes is None or duration_minutes <= 0:
      raise InvalidInputError("duration", "Duration must be a positive number of minutes.")
    if max_results <= 0:
      return []

    length = timedelta(minutes=duration_minutes)
    local_anchor = anchor.astimezone(tz) if anchor is not None else None
    survivors: List[CandidateSlot] = []
    cursor = window.start.astimezone(tz)
    window_end = window.end.astimezone(tz)
    while cursor < window_end:
      end = cursor + length
      if end > window_end:
        break
      candidate = TimeInterval(start=cursor, end=end)
      if (self.working_hours.contains(candidate, tz)
          and not has_conflict(candidate, busy, ignore_event_id=ignore_event_id)):
        score, rationale = self.score(cursor, local_anchor)
        survivors.append(CandidateSlot(interval=candidate, score=score, rationale=rationale))
      cursor = cursor + self.step

    survivors.sort(key=lambda slot: (-slot.score, slot.start))
    return survivors[:max_results]


def find_slots(duration_minutes: int,
               window: TimeInterval,
               working_hours: WorkingHours,
               busy: Sequence[BusyPeriod],
               tz: tzinfo,
               max_results: int = MAX_ALTERNATIVES,
               anchor: Optional[datetime] = None) -> List[CandidateSlot]:
  planner = TimeBlockPlanner(working_hours=working_hours)
  return planner.find_slots(duration_minutes, window, busy, tz,
                            max_results=max_results, anchor=anchor)
