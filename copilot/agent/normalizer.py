"""
Temporal normalizer: free-text date/time expressions to absolute instants.

Relative words resolve against a reference instant in the calendar's local
timezone. Date-only input lands on local midnight. Strings with a timezone
marker are trusted as absolute; everything else is read as local calendar
fields. When several expressions appear, the highest-confidence one wins and
ties go to the earliest in the text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import List, Optional, Tuple

from dateutil import parser as dateutil_parser

PART_OF_DAY_HOURS = {
    "morning": (time(9, 0), time(12, 0)),
    "afternoon": (time(12, 0), time(17, 0)),
    "evening": (time(17, 0), time(21, 0)),
}

_ISO_RE = re.compile(
    r"\b(\d{4})-(\d{2})-(\d{2})"
    r"(?:[T ](\d{1,2}):(\d{2})(?::(\d{2})(?:\.\d+)?)?\s*(Z|[+-]\d{2}:?\d{2})?)?",
    re.IGNORECASE)

_RELATIVE_DAY_WORDS = (
    (re.compile(r"\b(?:the\s+)?day after tomorrow\b", re.IGNORECASE), 2),
    (re.compile(r"\btomorrow\b", re.IGNORECASE), 1),
    (re.compile(r"\b(?:today|tonight)\b", re.IGNORECASE), 0),
    (re.compile(r"\byesterday\b", re.IGNORECASE), -1),
)
_WEEK_RE = re.compile(r"\b(next|this)\s+week\b", re.IGNORECASE)
_IN_N_RE = re.compile(
    r"\bin\s+(\d{1,3}|an?|one|two|three)\s+(minute|min|hour|hr|day|week)s?\b",
    re.IGNORECASE)
_WEEKDAY_NAMES = {
    "monday": 0, "mon": 0,
    "tuesday": 1, "tue": 1, "tues": 1,
    "wednesday": 2, "wed": 2,
    "thursday": 3, "thu": 3, "thur": 3, "thurs": 3,
    "friday": 4, "fri": 4,
    "saturday": 5, "sat": 5,
    "sunday": 6, "sun": 6,
}
_WEEKDAY_RE = re.compile(
    r"\b(?:(next|this|coming)\s+)?(" + "|".join(sorted(_WEEKDAY_NAMES, key=len, reverse=True)) + r")\b",
    re.IGNORECASE)
_MONTHS = (r"jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|"
           r"aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?")
_MONTH_DAY_RE = re.compile(
    r"\b(?:(" + _MONTHS + r")\.?\s+(\d{1,2})(?:st|nd|rd|th)?(?:,?\s+(\d{4}))?"
    r"|(\d{1,2})(?:st|nd|rd|th)?\s+(?:of\s+)?(" + _MONTHS + r")\.?(?:,?\s+(\d{4}))?)\b",
    re.IGNORECASE)
_NUMERIC_DATE_RE = re.compile(r"\b(\d{1,2})/(\d{1,2})(?:/(\d{2}|\d{4}))?\b")

_AMPM_RE = re.compile(r"\b(\d{1,2})(?::(\d{2}))?\s*(a\.?m\.?|p\.?m\.?)(?![a-z])", re.IGNORECASE)
_CLOCK_RE = re.compile(r"\b([01]?\d|2[0-3]):([0-5]\d)\b")
_NOON_RE = re.compile(r"\b(noon|midday|midnight)\b", re.IGNORECASE)
_AT_HOUR_RE = re.compile(
    r"\bat\s+(\d{1,2})\b(?!\s*(?:[:.]\d|a\.?m|p\.?m|%|\d|minutes?|mins?|hours?|hrs?|days?))",
    re.IGNORECASE)
_PART_OF_DAY_RE = re.compile(r"\b(morning|afternoon|evening|tonight)\b", re.IGNORECASE)

_WORD_NUMBERS = {"a": 1, "an": 1, "one": 1, "two": 2, "three": 3}


@dataclass
class TemporalMatch:
  """A resolved temporal expression and what it actually stated."""

  value: datetime
  has_date: bool
  has_time: bool
  confidence: float
  matched_text: str
  part_of_day: Optional[str] = None
  span_days: int = 1


@dataclass
class _DateHit:
  position: int
  day: date
  confidence: float
  text: str
  span_days: int = 1


@dataclass
class _TimeHit:
  position: int
  clock: time
  confidence: float
  text: str


def normalize_input_as_text(value: Optional[str]) -> str:
  if not isinstance(value, str):
    return ""
  return value.strip()


def _offset_from_marker(marker: str) -> tzinfo:
  if marker.upper() == "Z":
    return timezone.utc
  sign = -1 if marker[0] == "-" else 1
  digits = marker[1:].replace(":", "")
  hours, minutes = int(digits[:2]), int(digits[2:4])
  return timezone(sign * timedelta(hours=hours, minutes=minutes))


def _match_iso(text: str, tz: tzinfo) -> Optional[TemporalMatch]:
  match = _ISO_RE.search(text)
  if not match:
    return None
  year, month, day = int(match.group(1)), int(match.group(2)), int(match.group(3))
  try:
    day_value = date(year, month, day)
  except ValueError:
    return None
  if match.group(4) is None:
    return TemporalMatch(value=datetime.combine(day_value, time(0, 0), tzinfo=tz),
                         has_date=True,
                         has_time=False,
                         confidence=0.95,
                         matched_text=match.group(0))
  hour, minute = int(match.group(4)), int(match.group(5))
  second = int(match.group(6) or 0)
  if hour > 23 or minute > 59 or second > 59:
    return None
  marker = match.group(7)
  if marker:
    absolute = datetime(year, month, day, hour, minute, second,
                        tzinfo=_offset_from_marker(marker))
    value = absolute.astimezone(tz)
  else:
    value = datetime(year, month, day, hour, minute, second, tzinfo=tz)
  return TemporalMatch(value=value,
                       has_date=True,
                       has_time=True,
                       confidence=0.95,
                       matched_text=match.group(0))


def _next_weekday(today: date, weekday: int, allow_today: bool) -> date:
  days_ahead = (weekday - today.weekday()) % 7
  if days_ahead == 0 and not allow_today:
    days_ahead = 7
  return today + timedelta(days=days_ahead)


def _roll_forward(candidate: date, today: date, explicit_year: bool) -> date:
  if explicit_year or candidate >= today:
    return candidate
  try:
    return candidate.replace(year=candidate.year + 1)
  except ValueError:
    return candidate.replace(year=candidate.year + 1, day=28)


def _parse_fragment(fragment: str, today: date) -> Optional[date]:
  default = datetime(today.year, today.month, today.day)
  try:
    parsed = dateutil_parser.parse(fragment, default=default, dayfirst=False)
  except (ValueError, OverflowError):
    return None
  return parsed.date()


def _date_hits(text: str, today: date) -> List[_DateHit]:
  hits: List[_DateHit] = []
  for pattern, offset in _RELATIVE_DAY_WORDS:
    for match in pattern.finditer(text):
      hits.append(_DateHit(match.start(), today + timedelta(days=offset), 0.9, match.group(0)))

  for match in _WEEK_RE.finditer(text):
    if match.group(1).lower() == "next":
      monday = today + timedelta(days=7 - today.weekday())
      hits.append(_DateHit(match.start(), monday, 0.8, match.group(0), span_days=7))
    else:
      hits.append(_DateHit(match.start(), today, 0.8, match.group(0),
                           span_days=7 - today.weekday()))

  for match in _IN_N_RE.finditer(text):
    unit = match.group(2).lower()
    if unit not in ("day", "week"):
      continue
    amount = _amount(match.group(1))
    days = amount * 7 if unit == "week" else amount
    hits.append(_DateHit(match.start(), today + timedelta(days=days), 0.85, match.group(0)))

  for match in _WEEKDAY_RE.finditer(text):
    qualifier = (match.group(1) or "").lower()
    weekday = _WEEKDAY_NAMES[match.group(2).lower()]
    # "next Friday" and bare "Friday" both mean the first one strictly after today.
    day_value = _next_weekday(today, weekday, allow_today=qualifier == "this")
    hits.append(_DateHit(match.start(), day_value, 0.85, match.group(0)))

  for match in _MONTH_DAY_RE.finditer(text):
    parsed = _parse_fragment(match.group(0), today)
    if parsed is None:
      continue
    explicit_year = bool(match.group(3) or match.group(6))
    hits.append(_DateHit(match.start(), _roll_forward(parsed, today, explicit_year), 0.9,
                         match.group(0)))

  for match in _NUMERIC_DATE_RE.finditer(text):
    month, day = int(match.group(1)), int(match.group(2))
    if not (1 <= month <= 12 and 1 <= day <= 31):
      continue
    parsed = _parse_fragment(match.group(0), today)
    if parsed is None:
      continue
    hits.append(_DateHit(match.start(), _roll_forward(parsed, today, bool(match.group(3))), 0.8,
                         match.group(0)))
  return hits


def _time_hits(text: str) -> List[_TimeHit]:
  hits: List[_TimeHit] = []
  for match in _AMPM_RE.finditer(text):
    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    if not 1 <= hour <= 12 or minute > 59:
      continue
    is_pm = match.group(3).lower().startswith("p")
    if hour == 12:
      hour = 12 if is_pm else 0
    elif is_pm:
      hour += 12
    hits.append(_TimeHit(match.start(), time(hour, minute), 0.9, match.group(0)))

  for match in _CLOCK_RE.finditer(text):
    tail = text[match.end():match.end() + 5].lower().lstrip()
    if tail.startswith(("am", "pm", "a.m", "p.m")):
      continue
    hits.append(_TimeHit(match.start(), time(int(match.group(1)), int(match.group(2))), 0.85,
                         match.group(0)))

  for match in _NOON_RE.finditer(text):
    word = match.group(1).lower()
    clock = time(0, 0) if word == "midnight" else time(12, 0)
    hits.append(_TimeHit(match.start(), clock, 0.9, match.group(0)))

  for match in _AT_HOUR_RE.finditer(text):
    hour = int(match.group(1))
    if hour > 23:
      continue
    # "at 3" during a working day means the afternoon.
    if 1 <= hour <= 7:
      hour += 12
    hits.append(_TimeHit(match.start(), time(hour, 0), 0.7, match.group(0)))
  return hits


def _amount(raw: str) -> int:
  value = raw.lower()
  if value in _WORD_NUMBERS:
    return _WORD_NUMBERS[value]
  return int(value)


def _best(hits):
  return sorted(hits, key=lambda hit: (-hit.confidence, hit.position))[0]


def _strip_spans(text: str, spans: List[Tuple[int, int]]) -> str:
  chars = list(text)
  for start, end in spans:
    for index in range(start, end):
      chars[index] = " "
  return "".join(chars)


def match_temporal(text: str,
                   reference: datetime,
                   tz: Optional[tzinfo] = None) -> Optional[TemporalMatch]:
  """Resolve the strongest temporal expression in ``text``.

  Returns None when the text carries no date or time at all.
  """
  raw = normalize_input_as_text(text)
  if not raw:
    return None
  local_tz = tz or reference.tzinfo or timezone.utc
  local_ref = reference.astimezone(local_tz)
  today = local_ref.date()

  iso = _match_iso(raw, local_tz)
  if iso is not None:
    return iso

  for match in _IN_N_RE.finditer(raw):
    unit = match.group(2).lower()
    if unit in ("minute", "min", "hour", "hr"):
      amount = _amount(match.group(1))
      delta = timedelta(hours=amount) if unit in ("hour", "hr") else timedelta(minutes=amount)
      return TemporalMatch(value=(local_ref + delta).replace(second=0, microsecond=0),
                           has_date=True,
                           has_time=True,
                           confidence=0.85,
                           matched_text=match.group(0))

  date_hits = _date_hits(raw, today)
  # The day number in "on March 3" is not a clock hour.
  time_text = _strip_spans(raw, [(m.start(), m.end()) for m in _MONTH_DAY_RE.finditer(raw)])
  time_hits = _time_hits(time_text)
  part_match = _PART_OF_DAY_RE.search(raw)
  part_of_day = None
  if part_match:
    word = part_match.group(1).lower()
    part_of_day = "evening" if word == "tonight" else word

  if not date_hits and not time_hits and part_of_day is None:
    return None

  date_hit = _best(date_hits) if date_hits else None
  time_hit = _best(time_hits) if time_hits else None
  day_value = date_hit.day if date_hit else today
  clock = time_hit.clock if time_hit else time(0, 0)
  confidences = [hit.confidence for hit in (date_hit, time_hit) if hit is not None]
  texts = [hit.text for hit in (date_hit, time_hit) if hit is not None]
  if not texts and part_match:
    texts.append(part_match.group(0))
  return TemporalMatch(value=datetime.combine(day_value, clock, tzinfo=local_tz),
                       has_date=date_hit is not None,
                       has_time=time_hit is not None,
                       confidence=min(confidences) if confidences else 0.6,
                       matched_text=" ".join(texts),
                       part_of_day=None if time_hit else part_of_day,
                       span_days=date_hit.span_days if date_hit else 1)


def normalize(text: str,
              reference: datetime,
              tz: Optional[tzinfo] = None) -> Optional[datetime]:
  match = match_temporal(text, reference, tz)
  if match is None:
    return None
  return match.value


def combine_date_and_time(date_source: datetime, time_source: datetime,
                          tz: tzinfo) -> datetime:
  """Local date of one instant with the local clock time of another."""
  local_date = date_source.astimezone(tz).date()
  local_clock = time_source.astimezone(tz).time().replace(second=0, microsecond=0, tzinfo=None)
  return datetime.combine(local_date, local_clock, tzinfo=tz)


_STRIP_PATTERNS = (
    _ISO_RE,
    _WEEK_RE,
    _IN_N_RE,
    _MONTH_DAY_RE,
    _NUMERIC_DATE_RE,
    _AMPM_RE,
    _CLOCK_RE,
    _NOON_RE,
    _AT_HOUR_RE,
    _WEEKDAY_RE,
    re.compile(r"\b(?:this|tomorrow|today)?\s*(?:morning|afternoon|evening)\b|\btonight\b",
               re.IGNORECASE),
) + tuple(pattern for pattern, _ in _RELATIVE_DAY_WORDS)


def strip_temporal(text: str) -> str:
  """Text with every recognised date/time expression blanked out."""
  cleaned = normalize_input_as_text(text)
  for pattern in _STRIP_PATTERNS:
    cleaned = pattern.sub(" ", cleaned)
  return " ".join(cleaned.split())
