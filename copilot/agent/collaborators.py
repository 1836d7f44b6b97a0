"""
Narrow interfaces to everything outside the scheduling core.

The calendar and the intent parser are network-bound; every call goes through
``call_upstream`` so it carries a timeout and fails with a typed error.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, List, Optional, Protocol, Sequence, TypeVar

from ..config import UPSTREAM_TIMEOUT_SECONDS
from ..errors import UpstreamUnavailableError
from ..models import BusyPeriod, Event, EventDraft, EventPatch, TimeInterval
from .schemas import ConversationState, Intent

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CalendarBackend(Protocol):

  async def list_events(self,
                        window: TimeInterval,
                        title_filter: Optional[str] = None) -> List[Event]:
    ...

  async def check_busy(self,
                       window: TimeInterval,
                       calendar_ids: Sequence[str]) -> List[BusyPeriod]:
    ...

  async def create_event(self, draft: EventDraft) -> Event:
    ...

  async def update_event(self, event_id: str, patch: EventPatch) -> Event:
    ...

  async def delete_event(self, event_id: str) -> None:
    ...


class IntentParser(Protocol):

  async def parse_intent(self,
                         text: str,
                         context: Optional[ConversationState],
                         reference: datetime) -> Intent:
    ...


async def call_upstream(operation: str,
                        awaitable: Awaitable[T],
                        timeout: Optional[float] = UPSTREAM_TIMEOUT_SECONDS,
                        shield: bool = False) -> T:
  """Await one collaborator call with a deadline.

  With ``shield`` the call keeps running if the surrounding request is
  cancelled; the cancellation still propagates so no later step executes.
  """
  task: Any = asyncio.ensure_future(awaitable)
  guarded = asyncio.shield(task) if shield else task
  try:
    return await asyncio.wait_for(guarded, timeout=timeout)
  except asyncio.TimeoutError as exc:
    if shield and not task.done():
      task.cancel()
    raise UpstreamUnavailableError(operation, f"timed out after {timeout:g}s") from exc
  except UpstreamUnavailableError:
    raise
  except Exception as exc:
    logger.exception("%s failed", operation)
    raise UpstreamUnavailableError(operation, str(exc) or exc.__class__.__name__) from exc
