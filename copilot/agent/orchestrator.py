"""
Scheduling Orchestrator: one conversational turn from text to decision
- loads pending conversation state and answers numbered option replies
- parses intent (model first, keyword fallback), merges it with the pending state
- asks for missing fields, checks conflicts, proposes alternatives
- resolves update/cancel targets and commits mutations through the calendar
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from typing import Callable, List, Optional, Sequence

from pydantic import ValidationError

from ..config import (ALTERNATIVE_SEARCH_DAYS, DEFAULT_AVAILABILITY_MINUTES, DEFAULT_TZ, ENABLE_GCAL,
                      GOOGLE_CALENDAR_ID, MATCH_WINDOW_DAYS, MAX_ALTERNATIVES,
                      NEARBY_TITLES_LIMIT, OPERATION_SWITCH_CONFIDENCE, SLOT_STEP_MINUTES,
                      UPSTREAM_TIMEOUT_SECONDS)
from ..errors import InvalidInputError, SchedulingError, UpstreamUnavailableError
from ..gcal import GoogleCalendarBackend
from ..llm import llm_available
from ..models import (BusyPeriod, CandidateSlot, Event, EventDraft, EventPatch, TimeInterval,
                      WorkingHours, make_interval)
from ..state import LocalCalendar
from ..utils import ceil_to_step, normalize_text, start_of_day
from .availability import AvailabilityOracle
from .collaborators import CalendarBackend, IntentParser, call_upstream
from .completeness import check_completeness
from .conflict_manager import find_conflicts, free_intervals
from .fallback_parser import KeywordIntentParser, extract_search_query
from .intent_parser import LLMIntentParser, parse_intent_with_fallback
from .normalizer import PART_OF_DAY_HOURS, combine_date_and_time
from .question_agent import build_change_question, build_follow_up_message
from .resolve_event_target import match_events_by_title, parse_selection, to_candidate
from .response_agent import (ambiguous_message, availability_message, cancelled_message,
                             conflict_message, created_message, events_listed_message,
                             failure_message, mailbox_message, not_found_message,
                             updated_message)
from .schemas import (AmbiguousMatch, AvailabilityReport, Conflict, ConversationState, Entities,
                      EventsListed, Failed, Intent, MailboxRequest, NeedsFollowUp, NotFound,
                      Operation, ReadyToCancel, ReadyToCreate, ReadyToUpdate, SchedulingDecision)
from .state import ConversationStore
from .time_block_planner import TimeBlockPlanner

logger = logging.getLogger(__name__)

_MUTATIONS = ("schedule", "update", "cancel")


@dataclass
class _Turn:
  """What one resolve call knows so far, for error recovery."""
  text: str
  pending: Optional[ConversationState]
  operation: Optional[Operation] = None
  entities: Optional[Entities] = None
  low_confidence: bool = False


class SchedulingOrchestrator:

  def __init__(self,
               calendar: CalendarBackend,
               parser: Optional[IntentParser] = None,
               fallback_parser: Optional[KeywordIntentParser] = None,
               store: Optional[ConversationStore] = None,
               tz: tzinfo = DEFAULT_TZ,
               working_hours: Optional[WorkingHours] = None,
               planner: Optional[TimeBlockPlanner] = None,
               calendar_ids: Optional[Sequence[str]] = None,
               now_provider: Optional[Callable[[], datetime]] = None,
               timeout: Optional[float] = UPSTREAM_TIMEOUT_SECONDS,
               max_alternatives: int = MAX_ALTERNATIVES):
    self.calendar = calendar
    self.parser = parser
    self.fallback_parser = fallback_parser if fallback_parser is not None else KeywordIntentParser(tz)
    # ConversationStore defines __len__, so an empty injected store is falsy.
    self.store = store if store is not None else ConversationStore()
    self.tz = tz
    self.working_hours = working_hours if working_hours is not None else WorkingHours()
    self.planner = (planner if planner is not None
                    else TimeBlockPlanner(working_hours=self.working_hours))
    self.oracle = AvailabilityOracle(calendar, calendar_ids or [GOOGLE_CALENDAR_ID], timeout)
    self.now_provider = now_provider
    self.timeout = timeout
    self.max_alternatives = max_alternatives

  def _now(self) -> datetime:
    now = self.now_provider() if self.now_provider else datetime.now(self.tz)
    return now.astimezone(self.tz)

  # ---------------------------------------------------------------------------
  #  Entry point
  # ---------------------------------------------------------------------------

  async def resolve(self,
                    query: str,
                    conversation_id: Optional[str] = None,
                    commit: bool = True) -> SchedulingDecision:
    """Resolve one user turn into exactly one decision.

    With ``commit=False`` nothing is written to the calendar; the decision
    describes what would have been done. Failures come back as ``Failed``
    with any pending conversation left intact.
    """
    turn = _Turn(text=normalize_text(query), pending=self.store.get(conversation_id))
    if conversation_id and turn.pending is None:
      logger.info("conversation %s unknown or expired; starting fresh", conversation_id)
    if not turn.text:
      return self._failed(InvalidInputError("query", "The request is empty."), turn)
    try:
      return await self._resolve(turn, commit)
    except SchedulingError as exc:
      return self._failed(exc, turn)

  async def _resolve(self, turn: _Turn, commit: bool) -> SchedulingDecision:
    now = self._now()
    pending = turn.pending

    if pending is not None:
      selected = await self._answer_selection(turn, commit)
      if selected is not None:
        return selected

    intent = await parse_intent_with_fallback(self.parser, self.fallback_parser, turn.text,
                                              pending, now, timeout=self.timeout)
    turn.low_confidence = intent.low_confidence
    if pending is not None:
      if self._switches(intent, pending):
        logger.info("abandoning pending %s for %s", pending.operation, intent.operation)
        self.store.delete(pending.id)
        pending = turn.pending = None
      elif intent.operation != pending.operation:
        intent = _retarget(intent, pending.operation)

    operation = intent.operation
    turn.operation = operation
    entities = intent.entities
    if operation in _MUTATIONS:
      result = check_completeness(intent, pending, self.tz)
      entities = turn.entities = result.entities
      if not result.complete:
        state = self._remember(turn, operation, entities, result.missing_fields)
        return NeedsFollowUp(message=build_follow_up_message(operation, entities, result.question),
                             question=result.question,
                             missing_fields=result.missing_fields,
                             conversation_id=state.id,
                             low_confidence=turn.low_confidence)

    if operation == "schedule":
      return await self._schedule(turn, entities, now, commit)
    if operation in ("update", "cancel"):
      return await self._modify(turn, operation, entities, now, commit)
    if operation == "check_availability":
      return await self._availability(turn, entities, now)
    if operation in ("email_query", "email_search"):
      return self._mailbox(turn, operation, entities)
    return await self._query(turn, entities, now)

  def _switches(self, intent: Intent, pending: ConversationState) -> bool:
    return (intent.operation != pending.operation
            and intent.operation != "query"
            and intent.confidence >= OPERATION_SWITCH_CONFIDENCE)

  async def _answer_selection(self, turn: _Turn, commit: bool) -> Optional[SchedulingDecision]:
    """A numbered reply to offered alternatives or candidates, if it is one."""
    pending = turn.pending
    if pending.slot_options:
      index = parse_selection(turn.text, len(pending.slot_options))
      if index is None:
        return None
      slot = pending.slot_options[index]
      entities = pending.pending_entities.model_copy(update={
          "date_time": slot.start,
          "has_date": True,
          "has_time": True,
          "part_of_day": None,
          "duration": slot.duration_minutes,
      })
      turn.operation, turn.entities = pending.operation, entities
      now = self._now()
      if pending.operation == "schedule":
        return await self._schedule(turn, entities, now, commit)
      return await self._modify(turn, pending.operation, entities, now, commit)
    if pending.event_options:
      index = parse_selection(turn.text, len(pending.event_options))
      if index is None:
        return None
      pending.target_event_id = pending.event_options[index]
      pending.event_options = []
      turn.operation, turn.entities = pending.operation, pending.pending_entities
      return await self._modify(turn, pending.operation, pending.pending_entities,
                                self._now(), commit)
    return None

  # ---------------------------------------------------------------------------
  #  Schedule
  # ---------------------------------------------------------------------------

  def _search_window(self, requested: TimeInterval, now: datetime) -> Optional[TimeInterval]:
    day_start = start_of_day(requested.start.astimezone(self.tz))
    start = max(day_start, ceil_to_step(now, SLOT_STEP_MINUTES))
    end = day_start + timedelta(days=ALTERNATIVE_SEARCH_DAYS)
    if start >= end:
      return None
    return TimeInterval(start=start, end=end)

  async def _busy_around(self, requested: TimeInterval,
                         search: Optional[TimeInterval]) -> List[BusyPeriod]:
    start, end = requested.start, requested.end
    if search is not None:
      start, end = min(start, search.start), max(end, search.end)
    return await self.oracle.busy_periods(TimeInterval(start=start, end=end))

  def _alternatives(self,
                    duration: int,
                    search: Optional[TimeInterval],
                    busy: Sequence[BusyPeriod],
                    anchor: datetime,
                    ignore_event_id: Optional[str] = None) -> List[CandidateSlot]:
    if search is None:
      return []
    return self.planner.find_slots(duration, search, busy, self.tz,
                                   max_results=self.max_alternatives,
                                   anchor=anchor,
                                   ignore_event_id=ignore_event_id)

  def _conflict(self,
                turn: _Turn,
                operation: Operation,
                entities: Entities,
                requested: TimeInterval,
                conflicts: List[BusyPeriod],
                alternatives: List[CandidateSlot],
                target_event_id: Optional[str] = None) -> Conflict:
    state = self._remember(turn, operation, entities, ["date_time"],
                           slot_options=[slot.interval for slot in alternatives],
                           target_event_id=target_event_id)
    return Conflict(message=conflict_message(requested, conflicts, alternatives, self.tz),
                    requested=requested,
                    conflicts=conflicts,
                    alternatives=alternatives,
                    conversation_id=state.id,
                    low_confidence=turn.low_confidence)

  async def _schedule(self, turn: _Turn, entities: Entities, now: datetime,
                      commit: bool) -> SchedulingDecision:
    start = entities.date_time
    requested = make_interval(start, start + timedelta(minutes=entities.duration), "date_time")
    search = self._search_window(requested, now)
    busy = await self._busy_around(requested, search)
    conflicts = find_conflicts(requested, busy)
    if conflicts:
      alternatives = self._alternatives(entities.duration, search, busy, requested.start)
      return self._conflict(turn, "schedule", entities, requested, conflicts, alternatives)

    draft = _build_draft(entities, requested)
    event = None
    if commit:
      event = await call_upstream("create_event", self.calendar.create_event(draft),
                                  timeout=self.timeout, shield=True)
    self._forget(turn)
    return ReadyToCreate(message=created_message(draft, self.tz, commit),
                         draft=draft,
                         event=event,
                         low_confidence=turn.low_confidence)

  # ---------------------------------------------------------------------------
  #  Update / cancel
  # ---------------------------------------------------------------------------

  async def _modify(self, turn: _Turn, operation: Operation, entities: Entities,
                    now: datetime, commit: bool) -> SchedulingDecision:
    pending = turn.pending
    target_id = pending.target_event_id if pending is not None else None
    title = (entities.current_title or entities.title) if operation == "update" else entities.title
    window = make_interval(now, now + timedelta(days=MATCH_WINDOW_DAYS), "match_window")
    events = await call_upstream("list_events", self.calendar.list_events(window),
                                 timeout=self.timeout)
    events = sorted(events, key=lambda event: event.start)

    if target_id:
      matches = [event for event in events if event.id == target_id]
    else:
      matches = match_events_by_title(title or "", events)

    if not matches:
      self._forget(turn)
      nearby = [to_candidate(event) for event in events[:NEARBY_TITLES_LIMIT]]
      shown = title or "that event"
      return NotFound(message=not_found_message(shown, nearby, len(events), self.tz),
                      title=title,
                      nearby=nearby,
                      low_confidence=turn.low_confidence)

    if len(matches) > 1:
      candidates = [to_candidate(event) for event in matches]
      state = self._remember(turn, operation, entities, ["title"],
                             event_options=[event.id for event in matches])
      return AmbiguousMatch(message=ambiguous_message(title or "", candidates, self.tz),
                            candidates=candidates,
                            conversation_id=state.id,
                            low_confidence=turn.low_confidence)

    event = matches[0]
    if operation == "cancel":
      if commit:
        await call_upstream("delete_event", self.calendar.delete_event(event.id),
                            timeout=self.timeout, shield=True)
      self._forget(turn)
      return ReadyToCancel(message=cancelled_message(event, self.tz, commit),
                           event_id=event.id,
                           title=event.title,
                           low_confidence=turn.low_confidence)
    return await self._update(turn, event, entities, now, commit)

  async def _update(self, turn: _Turn, event: Event, entities: Entities, now: datetime,
                    commit: bool) -> SchedulingDecision:
    patch = self._build_patch(event, entities)
    if patch.is_empty():
      question = build_change_question(event.title)
      state = self._remember(turn, "update", entities, ["changes"], target_event_id=event.id)
      return NeedsFollowUp(message=question,
                           question=question,
                           missing_fields=["changes"],
                           conversation_id=state.id,
                           low_confidence=turn.low_confidence)

    if patch.start is not None or patch.end is not None:
      moved = make_interval(patch.start or event.start, patch.end or event.end, "date_time")
      search = self._search_window(moved, now)
      busy = await self._busy_around(moved, search)
      conflicts = find_conflicts(moved, busy, ignore_event_id=event.id)
      if conflicts:
        alternatives = self._alternatives(moved.duration_minutes, search, busy, moved.start,
                                          ignore_event_id=event.id)
        return self._conflict(turn, "update", entities, moved, conflicts, alternatives,
                              target_event_id=event.id)

    updated = None
    if commit:
      updated = await call_upstream("update_event", self.calendar.update_event(event.id, patch),
                                    timeout=self.timeout, shield=True)
    self._forget(turn)
    return ReadyToUpdate(message=updated_message(event, patch, self.tz, commit),
                         event_id=event.id,
                         patch=patch,
                         event=updated,
                         low_confidence=turn.low_confidence)

  def _build_patch(self, event: Event, entities: Entities) -> EventPatch:
    """Only fields that actually differ from the stored event."""
    changes = {}
    if entities.new_title and entities.new_title != event.title:
      changes["title"] = entities.new_title

    length = timedelta(minutes=entities.duration) if entities.duration else event.end - event.start
    start = event.start
    if entities.date_time is not None:
      if entities.has_time and not entities.has_date:
        start = combine_date_and_time(event.start, entities.date_time, self.tz)
      elif entities.has_date and not entities.has_time:
        start = combine_date_and_time(entities.date_time, event.start, self.tz)
      else:
        start = entities.date_time
    end = start + length
    if start != event.start:
      changes["start"] = start
    if end != event.end:
      changes["end"] = end

    if entities.location and entities.location != event.location:
      changes["location"] = entities.location
    if entities.description and entities.description != event.description:
      changes["description"] = entities.description
    if entities.attendees and sorted(entities.attendees) != sorted(event.attendees):
      changes["attendees"] = entities.attendees
    return EventPatch(**changes)

  # ---------------------------------------------------------------------------
  #  Read-only operations
  # ---------------------------------------------------------------------------

  async def _query(self, turn: _Turn, entities: Entities, now: datetime) -> EventsListed:
    anchor = entities.date_time or now
    day_start = start_of_day(anchor.astimezone(self.tz))
    window = make_interval(day_start, day_start + timedelta(days=entities.span_days or 1), "window")
    events = await call_upstream("list_events", self.calendar.list_events(window),
                                 timeout=self.timeout)
    events = sorted(events, key=lambda event: event.start)
    return EventsListed(message=events_listed_message(window, events, self.tz),
                        window=window,
                        events=events,
                        low_confidence=turn.low_confidence)

  def _availability_window(self, entities: Entities, now: datetime) -> TimeInterval:
    anchor = (entities.date_time or now).astimezone(self.tz)
    if entities.date_time is not None and entities.has_time:
      minutes = entities.duration or DEFAULT_AVAILABILITY_MINUTES
      return make_interval(anchor, anchor + timedelta(minutes=minutes), "window")
    day = anchor.date()
    if entities.part_of_day:
      first, last = PART_OF_DAY_HOURS[entities.part_of_day]
      return make_interval(datetime.combine(day, first, tzinfo=self.tz),
                           datetime.combine(day, last, tzinfo=self.tz), "window")
    if entities.span_days and entities.span_days > 1:
      day_start = start_of_day(anchor)
      return make_interval(day_start, day_start + timedelta(days=entities.span_days), "window")
    start, end = self.working_hours.bounds_for(day, self.tz)
    return make_interval(start, end, "window")

  async def _availability(self, turn: _Turn, entities: Entities,
                          now: datetime) -> AvailabilityReport:
    window = self._availability_window(entities, now)
    busy = find_conflicts(window, await self.oracle.busy_periods(window))
    free = free_intervals(window, busy)
    return AvailabilityReport(message=availability_message(window, busy, free, self.tz),
                              window=window,
                              is_free=not busy,
                              busy=busy,
                              free=free,
                              low_confidence=turn.low_confidence)

  def _mailbox(self, turn: _Turn, operation: Operation, entities: Entities) -> MailboxRequest:
    unread_only = "unread" in turn.text.lower()
    search_query = None
    if operation == "email_search":
      search_query = entities.search_query or extract_search_query(turn.text)
    return MailboxRequest(message=mailbox_message(unread_only, search_query),
                          operation=operation,
                          unread_only=unread_only,
                          search_query=search_query,
                          low_confidence=turn.low_confidence)

  # ---------------------------------------------------------------------------
  #  State and failures
  # ---------------------------------------------------------------------------

  def _remember(self,
                turn: _Turn,
                operation: Operation,
                entities: Entities,
                missing: List[str],
                slot_options: Optional[List[TimeInterval]] = None,
                event_options: Optional[List[str]] = None,
                target_event_id: Optional[str] = None) -> ConversationState:
    pending = turn.pending
    if pending is None or pending.operation != operation:
      if pending is not None:
        self.store.delete(pending.id)
      pending = self.store.create(turn.text, operation, entities)
    else:
      pending.turns += 1
    pending.pending_entities = entities
    pending.missing_fields = list(missing)
    pending.slot_options = list(slot_options or [])
    pending.event_options = list(event_options or [])
    if target_event_id is not None:
      pending.target_event_id = target_event_id
    turn.pending = self.store.save(pending)
    return turn.pending

  def _forget(self, turn: _Turn) -> None:
    if turn.pending is not None:
      self.store.delete(turn.pending.id)
      turn.pending = None

  def _failed(self, error: SchedulingError, turn: _Turn) -> Failed:
    conversation_id = turn.pending.id if turn.pending is not None else None
    if (isinstance(error, UpstreamUnavailableError) and turn.operation in _MUTATIONS
        and turn.entities is not None):
      # Keep the request so "try again" can resume it.
      target = turn.pending.target_event_id if turn.pending is not None else None
      conversation_id = self._remember(turn, turn.operation, turn.entities, [],
                                       target_event_id=target).id
    explanation, next_step = failure_message(error)
    logger.warning("resolve failed (%s): %s", error.kind, error.message)
    return Failed(message=f"{explanation} {next_step}",
                  error_kind=error.kind,
                  field=getattr(error, "field", None),
                  operation=getattr(error, "operation", None),
                  next_step=next_step,
                  conversation_id=conversation_id,
                  low_confidence=turn.low_confidence)


def _retarget(intent: Intent, operation: Operation) -> Intent:
  """The same entities, read as a reply to the pending ``operation``."""
  entities = intent.entities
  if operation != "update" and (entities.current_title or entities.new_title):
    entities = entities.model_copy(update={
        "title": entities.title or entities.current_title,
        "current_title": None,
        "new_title": None,
    })
  return Intent(operation=operation,
                entities=entities,
                confidence=intent.confidence,
                source=intent.source)


def _build_draft(entities: Entities, interval: TimeInterval) -> EventDraft:
  try:
    return EventDraft(title=entities.title or "",
                      start=interval.start,
                      end=interval.end,
                      location=entities.location,
                      description=entities.description,
                      attendees=entities.attendees)
  except ValidationError as exc:
    error = exc.errors()[0]
    field = str(error["loc"][0]) if error.get("loc") else "draft"
    raise InvalidInputError(field, str(error.get("msg"))) from exc


def build_default_orchestrator() -> SchedulingOrchestrator:
  """Google Calendar when enabled, otherwise the in-memory calendar."""
  if ENABLE_GCAL:
    calendar: CalendarBackend = GoogleCalendarBackend()
  else:
    calendar = LocalCalendar()
  parser = LLMIntentParser(DEFAULT_TZ) if llm_available() else None
  return SchedulingOrchestrator(calendar=calendar, parser=parser, tz=DEFAULT_TZ)
