from __future__ import annotations

import asyncio
import secrets
from typing import Dict, Iterable, List, Optional, Sequence

from .config import GOOGLE_CALENDAR_ID
from .models import BusyPeriod, Event, EventDraft, EventPatch, TimeInterval
from .utils import _log_debug


def _new_event_id() -> str:
    return f"evt_{secrets.token_hex(6)}"


class LocalCalendar:
    """In-memory calendar used when Google Calendar is not enabled.

    Events live only for the life of the process. Busy periods are derived
    from the stored events, so free/busy and event listing always agree.
    """

    def __init__(self,
                 events: Optional[Iterable[Event]] = None,
                 calendar_id: str = GOOGLE_CALENDAR_ID):
        self.calendar_id = calendar_id
        self._events: Dict[str, Event] = {}
        self._lock = asyncio.Lock()
        for event in events or []:
            self._events[event.id] = event

    def __len__(self) -> int:
        return len(self._events)

    def get(self, event_id: str) -> Optional[Event]:
        return self._events.get(event_id)

    def all_events(self) -> List[Event]:
        return sorted(self._events.values(), key=lambda e: (e.start, e.end))

    def _in_window(self, window: TimeInterval) -> List[Event]:
        return [e for e in self.all_events() if e.start < window.end and e.end > window.start]

    async def list_events(self,
                          window: TimeInterval,
                          title_filter: Optional[str] = None) -> List[Event]:
        events = self._in_window(window)
        if title_filter:
            needle = title_filter.strip().lower()
            events = [e for e in events if needle in e.title.lower()]
        return events

    async def check_busy(self,
                         window: TimeInterval,
                         calendar_ids: Sequence[str]) -> List[BusyPeriod]:
        if calendar_ids and self.calendar_id not in calendar_ids:
            return []
        return [e.as_busy_period() for e in self._in_window(window)]

    async def create_event(self, draft: EventDraft) -> Event:
        async with self._lock:
            event = Event(id=_new_event_id(),
                          title=draft.title,
                          start=draft.start,
                          end=draft.end,
                          location=draft.location,
                          description=draft.description,
                          attendees=list(draft.attendees),
                          calendar_id=self.calendar_id)
            self._events[event.id] = event
        _log_debug(f"[LOCAL CALENDAR] created {event.id} {event.title!r}")
        return event

    async def update_event(self, event_id: str, patch: EventPatch) -> Event:
        async with self._lock:
            current = self._events.get(event_id)
            if current is None:
                raise KeyError(f"event {event_id} not found")
            updated = Event.model_validate({**current.model_dump(), **patch.changes()})
            if updated.start >= updated.end:
                raise ValueError("patched event would end before it starts")
            self._events[event_id] = updated
        _log_debug(f"[LOCAL CALENDAR] updated {event_id} {sorted(patch.changes())}")
        return updated

    async def delete_event(self, event_id: str) -> None:
        async with self._lock:
            if self._events.pop(event_id, None) is None:
                raise KeyError(f"event {event_id} not found")
        _log_debug(f"[LOCAL CALENDAR] deleted {event_id}")
