"""
Deterministic user-facing wording for every decision the orchestrator makes.
Every message that needs a reply ends with what the user can say next.
"""

from __future__ import annotations

from datetime import tzinfo
from typing import List, Optional, Sequence, Tuple

from ..config import ALTERNATIVE_SEARCH_DAYS, MATCH_WINDOW_DAYS
from ..errors import InvalidInputError, SchedulingError, UpstreamUnavailableError
from ..models import BusyPeriod, CandidateSlot, Event, EventDraft, EventPatch, TimeInterval
from ..utils import format_day, format_minutes, format_span, format_when
from .question_agent import build_alternatives_question, build_disambiguation_question
from .schemas import EventCandidate


def _numbered(lines: Sequence[str]) -> str:
  return "\n".join(f"{index}. {line}" for index, line in enumerate(lines, start=1))


def _candidate_line(candidate: EventCandidate, tz: tzinfo) -> str:
  return f'"{candidate.title}" on {format_when(candidate.start, tz)} (ID: {candidate.short_id})'


def created_message(draft: EventDraft, tz: tzinfo, committed: bool) -> str:
  span = format_span(draft.start, draft.end, tz)
  length = format_minutes(draft.interval.duration_minutes)
  if committed:
    return f'Scheduled "{draft.title}" for {span} ({length}).'
  return f'Ready to schedule "{draft.title}" for {span} ({length}).'


def conflict_message(requested: TimeInterval,
                     conflicts: Sequence[BusyPeriod],
                     alternatives: Sequence[CandidateSlot],
                     tz: tzinfo) -> str:
  names = ", ".join(f'"{period.title}"' for period in conflicts if period.title)
  clash = f"conflicts with {names}" if names else "overlaps an existing commitment"
  head = f"{format_span(requested.start, requested.end, tz)} {clash}."
  if not alternatives:
    return (f"{head} No alternative slots found within the next {ALTERNATIVE_SEARCH_DAYS} days. "
            f"{build_alternatives_question(0)}")
  lines = [f"{format_span(slot.start, slot.end, tz)} ({slot.rationale})" for slot in alternatives]
  return (f"{head} Here are some alternatives:\n{_numbered(lines)}\n"
          f"{build_alternatives_question(len(alternatives))}")


def ambiguous_message(title: str, candidates: Sequence[EventCandidate], tz: tzinfo) -> str:
  lines = [_candidate_line(candidate, tz) for candidate in candidates]
  return (f'Found {len(candidates)} events matching "{title}":\n{_numbered(lines)}\n'
          f"{build_disambiguation_question(len(candidates))}")


def not_found_message(title: str,
                      nearby: Sequence[EventCandidate],
                      total_upcoming: int,
                      tz: tzinfo) -> str:
  if not nearby:
    return (f'No events found matching "{title}" in the next {MATCH_WINDOW_DAYS} days. '
            "Check the title or try a different date range.")
  lines = [_candidate_line(candidate, tz) for candidate in nearby]
  message = f'No events found matching "{title}". Did you mean one of these?\n{_numbered(lines)}'
  if total_upcoming > len(nearby):
    message += f"\n... and {total_upcoming - len(nearby)} more events."
  return message + "\nTry using the exact event title or a more specific search."


def updated_message(event: Event, patch: EventPatch, tz: tzinfo, committed: bool) -> str:
  changes: List[str] = []
  if patch.title:
    changes.append(f'renamed to "{patch.title}"')
  if patch.start or patch.end:
    start = patch.start or event.start
    end = patch.end or event.end
    changes.append(f"moved to {format_span(start, end, tz)}")
  if patch.location:
    changes.append(f"location set to {patch.location}")
  if patch.description:
    changes.append("description updated")
  if patch.attendees:
    changes.append(f"attendees set to {', '.join(patch.attendees)}")
  summary = "; ".join(changes) or "no changes"
  verb = "Updated" if committed else "Ready to update"
  return f'{verb} "{event.title}": {summary}.'


def cancelled_message(event: Event, tz: tzinfo, committed: bool) -> str:
  verb = "Cancelled" if committed else "Ready to cancel"
  return f'{verb} "{event.title}" on {format_when(event.start, tz)}.'


def events_listed_message(window: TimeInterval, events: Sequence[Event], tz: tzinfo) -> str:
  local_start = window.start.astimezone(tz)
  days = (window.end - window.start).days
  label = format_day(local_start) if days <= 1 else f"the {days} days from {format_day(local_start)}"
  if not events:
    return f"You have no events on {label}." if days <= 1 else f"You have no events in {label}."
  lines = [f'"{event.title}" {format_span(event.start, event.end, tz)}' for event in events]
  noun = "event" if len(events) == 1 else "events"
  where = f"on {label}" if days <= 1 else f"in {label}"
  return f"You have {len(events)} {noun} {where}:\n{_numbered(lines)}"


def availability_message(window: TimeInterval,
                         busy: Sequence[BusyPeriod],
                         free: Sequence[TimeInterval],
                         tz: tzinfo) -> str:
  span = format_span(window.start, window.end, tz)
  if not busy:
    return f"You're free {span}."
  busy_lines = [f"{format_span(period.start, period.end, tz)}"
                + (f' ("{period.title}")' if period.title else "") for period in busy]
  message = f"You're busy during part of {span}:\n{_numbered(busy_lines)}"
  if free:
    gaps = ", ".join(format_span(gap.start, gap.end, tz) for gap in free)
    message += f"\nFree: {gaps}."
  else:
    message += "\nThere is no free time in that window."
  return message


def mailbox_message(unread_only: bool, search_query: Optional[str]) -> str:
  if search_query:
    return f'Searching your mailbox for "{search_query}".'
  if unread_only:
    return "Fetching your unread emails."
  return "Fetching your recent emails."


def failure_message(error: SchedulingError) -> Tuple[str, str]:
  """(explanation, next step) for a typed failure."""
  if isinstance(error, UpstreamUnavailableError):
    return (f"The calendar service is not responding ({error.operation}: {error.detail}).",
            "Please try the same request again in a moment.")
  if isinstance(error, InvalidInputError):
    return (f"I couldn't use the {error.field.replace('_', ' ')}: {error.detail}",
            f"Please rephrase the {error.field.replace('_', ' ')} and try again.")
  return (error.message, "Please try again.")
