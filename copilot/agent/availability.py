from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

from pydantic import ValidationError

from ..config import GOOGLE_CALENDAR_ID, UPSTREAM_TIMEOUT_SECONDS
from ..models import BusyPeriod, TimeInterval
from .collaborators import CalendarBackend, call_upstream

logger = logging.getLogger(__name__)


class AvailabilityOracle:
  """Busy periods for a window, read through the calendar collaborator."""

  def __init__(self,
               calendar: CalendarBackend,
               calendar_ids: Optional[Sequence[str]] = None,
               timeout: Optional[float] = UPSTREAM_TIMEOUT_SECONDS):
    self.calendar = calendar
    self.calendar_ids = list(calendar_ids or [GOOGLE_CALENDAR_ID])
    self.timeout = timeout

  async def busy_periods(self, window: TimeInterval) -> List[BusyPeriod]:
    raw = await call_upstream("check_busy",
                              self.calendar.check_busy(window, self.calendar_ids),
                              timeout=self.timeout)
    periods: List[BusyPeriod] = []
    for item in raw or []:
      period = self._coerce(item)
      if period is None:
        continue
      if period.end <= window.start or period.start >= window.end:
        continue
      periods.append(period)
    periods.sort(key=lambda period: (period.start, period.end))
    return periods

  def _coerce(self, item: Any) -> Optional[BusyPeriod]:
    if isinstance(item, BusyPeriod):
      return item
    try:
      return BusyPeriod.model_validate(item)
    except ValidationError as exc:
      logger.warning("dropping malformed busy period %r: %s", item, exc.errors()[:1])
      return None
