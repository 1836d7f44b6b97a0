from __future__ import annotations

import asyncio
import json
import logging
import pathlib
from datetime import datetime, timedelta, tzinfo
from typing import Any, Dict, List, Optional, Sequence

from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

from .config import DEFAULT_TZ, GCAL_SCOPES, GOOGLE_CALENDAR_ID, GOOGLE_TOKEN_FILE
from .models import BusyPeriod, Event, EventDraft, EventPatch, TimeInterval
from .utils import _log_debug

logger = logging.getLogger(__name__)


# -------------------------
# Google Calendar service
# -------------------------
def load_gcal_token(token_path: pathlib.Path) -> Optional[Dict[str, Any]]:
  if not token_path.exists():
    return None
  try:
    return json.loads(token_path.read_text(encoding="utf-8"))
  except (OSError, ValueError) as exc:
    _log_debug(f"[GCAL] token load failed: {exc}")
    return None


def save_gcal_token(token_path: pathlib.Path, data: Dict[str, Any]) -> None:
  token_path.parent.mkdir(parents=True, exist_ok=True)
  token_path.write_text(json.dumps(data), encoding="utf-8")


def get_gcal_service(token_path: pathlib.Path = GOOGLE_TOKEN_FILE):
  token_data = load_gcal_token(token_path)
  if not token_data:
    raise RuntimeError(f"Google OAuth token not found at {token_path}.")

  creds = Credentials.from_authorized_user_info(token_data, GCAL_SCOPES)

  if creds.expired and creds.refresh_token:
    creds.refresh(GoogleRequest())
    save_gcal_token(token_path, json.loads(creds.to_json()))

  service = build("calendar", "v3", credentials=creds)
  return service


def _convert_gcal_time(obj: Dict[str, Any], tz: tzinfo) -> Optional[datetime]:
  """dateTime values as instants; all-day dates as local midnight."""
  if not isinstance(obj, dict):
    return None

  dt_value = obj.get("dateTime")
  if isinstance(dt_value, str):
    try:
      dt = datetime.fromisoformat(dt_value.replace("Z", "+00:00"))
    except ValueError:
      return None
    if dt.tzinfo is None:
      dt = dt.replace(tzinfo=tz)
    return dt.astimezone(tz)

  date_value = obj.get("date")
  if isinstance(date_value, str):
    try:
      day = datetime.strptime(date_value, "%Y-%m-%d").date()
    except ValueError:
      return None
    return datetime(day.year, day.month, day.day, tzinfo=tz)

  return None


def _normalize_gcal_event(raw: Dict[str, Any],
                          calendar_id: Optional[str],
                          tz: tzinfo) -> Optional[Event]:
  start = _convert_gcal_time(raw.get("start") or {}, tz)
  end = _convert_gcal_time(raw.get("end") or {}, tz)
  if start is None or raw.get("status") == "cancelled":
    return None
  if end is None or end <= start:
    end = start + timedelta(hours=1)

  attendees: List[str] = []
  attendees_raw = raw.get("attendees")
  if isinstance(attendees_raw, list):
    for item in attendees_raw:
      if not isinstance(item, dict):
        continue
      email = item.get("email")
      if isinstance(email, str) and email.strip():
        attendees.append(email.strip())

  return Event(id=raw.get("id") or "",
               title=raw.get("summary") or "(no title)",
               start=start,
               end=end,
               location=raw.get("location"),
               description=raw.get("description"),
               attendees=attendees,
               html_link=raw.get("htmlLink"),
               calendar_id=calendar_id)


def _build_gcal_attendees(attendees: Optional[List[str]]) -> Optional[List[Dict[str, str]]]:
  if attendees is None:
    return None
  return [{"email": email} for email in attendees if email]


def _event_time(value: datetime, tz: tzinfo) -> Dict[str, str]:
  return {"dateTime": value.isoformat(), "timeZone": str(tz)}


def _build_gcal_event_body(draft: EventDraft, tz: tzinfo) -> Dict[str, Any]:
  body: Dict[str, Any] = {
      "summary": draft.title,
      "start": _event_time(draft.start, tz),
      "end": _event_time(draft.end, tz),
  }
  if draft.location:
    body["location"] = draft.location
  if draft.description:
    body["description"] = draft.description
  attendees = _build_gcal_attendees(draft.attendees)
  if attendees:
    body["attendees"] = attendees
  return body


def _build_gcal_patch_body(patch: EventPatch, tz: tzinfo) -> Dict[str, Any]:
  body: Dict[str, Any] = {}
  if patch.title is not None:
    body["summary"] = patch.title
  if patch.start is not None:
    body["start"] = _event_time(patch.start, tz)
  if patch.end is not None:
    body["end"] = _event_time(patch.end, tz)
  if patch.location is not None:
    body["location"] = patch.location
  if patch.description is not None:
    body["description"] = patch.description
  attendees = _build_gcal_attendees(patch.attendees)
  if attendees is not None:
    body["attendees"] = attendees
  return body


class GoogleCalendarBackend:
  """Calendar collaborator over the Google Calendar v3 API.

  The client library is blocking, so each call runs in a worker thread.
  Errors propagate; the orchestrator turns them into typed failures.
  """

  def __init__(self,
               service: Any = None,
               token_path: pathlib.Path = GOOGLE_TOKEN_FILE,
               calendar_id: str = GOOGLE_CALENDAR_ID,
               tz: tzinfo = DEFAULT_TZ):
    self._service = service
    self.token_path = token_path
    self.calendar_id = calendar_id
    self.tz = tz

  def service(self):
    if self._service is None:
      self._service = get_gcal_service(self.token_path)
    return self._service

  # -------------------------
  # blocking calls
  # -------------------------
  def _list_events_sync(self, window: TimeInterval,
                        title_filter: Optional[str]) -> List[Event]:
    events: List[Event] = []
    page_token: Optional[str] = None
    while True:
      params: Dict[str, Any] = {
          "calendarId": self.calendar_id,
          "singleEvents": True,
          "orderBy": "startTime",
          "timeMin": window.start.isoformat(),
          "timeMax": window.end.isoformat(),
          "pageToken": page_token,
      }
      if title_filter:
        params["q"] = title_filter
      response = self.service().events().list(**params).execute()
      for item in response.get("items", []) or []:
        event = _normalize_gcal_event(item, self.calendar_id, self.tz)
        if event is not None:
          events.append(event)
      page_token = response.get("nextPageToken")
      if not page_token:
        break
    _log_debug(f"[GCAL] listed {len(events)} events in {window.start} - {window.end}")
    return events

  def _check_busy_sync(self, window: TimeInterval,
                       calendar_ids: Sequence[str]) -> List[BusyPeriod]:
    body = {
        "timeMin": window.start.isoformat(),
        "timeMax": window.end.isoformat(),
        "timeZone": str(self.tz),
        "items": [{"id": calendar_id} for calendar_id in calendar_ids],
    }
    response = self.service().freebusy().query(body=body).execute()
    periods: List[BusyPeriod] = []
    for calendar_id, entry in (response.get("calendars") or {}).items():
      errors = entry.get("errors") or []
      if errors:
        reason = errors[0].get("reason", "unknown")
        raise RuntimeError(f"free/busy unavailable for {calendar_id}: {reason}")
      for item in entry.get("busy") or []:
        start = _convert_gcal_time({"dateTime": item.get("start")}, self.tz)
        end = _convert_gcal_time({"dateTime": item.get("end")}, self.tz)
        if start is None or end is None or start >= end:
          logger.warning("skipping malformed busy block %r from %s", item, calendar_id)
          continue
        periods.append(BusyPeriod(start=start, end=end))
    return periods

  def _create_event_sync(self, draft: EventDraft) -> Event:
    created = self.service().events().insert(
        calendarId=self.calendar_id,
        body=_build_gcal_event_body(draft, self.tz)).execute()
    event = _normalize_gcal_event(created, self.calendar_id, self.tz)
    if event is None:
      raise RuntimeError("Google Calendar returned an unreadable event.")
    return event

  def _update_event_sync(self, event_id: str, patch: EventPatch) -> Event:
    updated = self.service().events().patch(
        calendarId=self.calendar_id,
        eventId=event_id,
        body=_build_gcal_patch_body(patch, self.tz)).execute()
    event = _normalize_gcal_event(updated, self.calendar_id, self.tz)
    if event is None:
      raise RuntimeError("Google Calendar returned an unreadable event.")
    return event

  def _delete_event_sync(self, event_id: str) -> None:
    self.service().events().delete(calendarId=self.calendar_id,
                                   eventId=event_id).execute()

  # -------------------------
  # CalendarBackend
  # -------------------------
  async def list_events(self,
                        window: TimeInterval,
                        title_filter: Optional[str] = None) -> List[Event]:
    return await asyncio.to_thread(self._list_events_sync, window, title_filter)

  async def check_busy(self,
                       window: TimeInterval,
                       calendar_ids: Sequence[str]) -> List[BusyPeriod]:
    return await asyncio.to_thread(self._check_busy_sync, window, list(calendar_ids))

  async def create_event(self, draft: EventDraft) -> Event:
    return await asyncio.to_thread(self._create_event_sync, draft)

  async def update_event(self, event_id: str, patch: EventPatch) -> Event:
    return await asyncio.to_thread(self._update_event_sync, event_id, patch)

  async def delete_event(self, event_id: str) -> None:
    await asyncio.to_thread(self._delete_event_sync, event_id)
