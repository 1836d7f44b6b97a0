"""
Conflict Manager: proposed interval vs. busy periods
- half-open overlap: [start, end) touching another interval is not a conflict
- free gaps inside a window, for availability answers
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from ..models import BusyPeriod, TimeInterval


def find_conflicts(proposed: TimeInterval,
                   busy: Iterable[BusyPeriod],
                   ignore_event_id: Optional[str] = None) -> List[BusyPeriod]:
  """Busy periods overlapping ``proposed``, in input order.

  ``ignore_event_id`` skips the event being moved when checking a reschedule.
  """
  conflicts: List[BusyPeriod] = []
  for period in busy:
    if ignore_event_id and period.event_id == ignore_event_id:
      continue
    if proposed.start < period.end and proposed.end > period.start:
      conflicts.append(period)
  return conflicts


def has_conflict(proposed: TimeInterval,
                 busy: Iterable[BusyPeriod],
                 ignore_event_id: Optional[str] = None) -> bool:
  return bool(find_conflicts(proposed, busy, ignore_event_id=ignore_event_id))


def merge_busy(busy: Sequence[TimeInterval]) -> List[TimeInterval]:
  """Sorted union of overlapping or touching intervals."""
  merged: List[TimeInterval] = []
  for period in sorted(busy, key=lambda item: (item.start, item.end)):
    if merged and period.start <= merged[-1].end:
      last = merged[-1]
      if period.end > last.end:
        merged[-1] = TimeInterval(start=last.start, end=period.end)
      continue
    merged.append(TimeInterval(start=period.start, end=period.end))
  return merged


def free_intervals(window: TimeInterval, busy: Sequence[TimeInterval]) -> List[TimeInterval]:
  """Gaps of ``window`` not covered by any busy period."""
  gaps: List[TimeInterval] = []
  cursor = window.start
  for period in merge_busy(busy):
    if period.end <= window.start or period.start >= window.end:
      continue
    if period.start > cursor:
      gaps.append(TimeInterval(start=cursor, end=period.start))
    if period.end > cursor:
      cursor = period.end
  if cursor < window.end:
    gaps.append(TimeInterval(start=cursor, end=window.end))
  return gaps
