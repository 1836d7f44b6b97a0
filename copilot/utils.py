from __future__ import annotations

from datetime import datetime, timedelta, tzinfo
from typing import Optional
import re

from .config import LLM_DEBUG


def _log_debug(message: str) -> None:
    if LLM_DEBUG:
        print(message, flush=True)


def normalize_text(text: str) -> str:
    t = (text or "").strip()
    t = re.sub(r"\s+", " ", t)
    return t


def format_clock(value: datetime) -> str:
    """10:00 AM style, without a leading zero on the hour."""
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {suffix}"


def format_day(value: datetime) -> str:
    return f"{value.strftime('%a, %b')} {value.day}"


def format_when(value: datetime, tz: Optional[tzinfo] = None) -> str:
    local = value.astimezone(tz) if tz is not None else value
    return f"{format_day(local)} at {format_clock(local)}"


def format_span(start: datetime, end: datetime, tz: Optional[tzinfo] = None) -> str:
    local_start = start.astimezone(tz) if tz is not None else start
    local_end = end.astimezone(tz) if tz is not None else end
    if local_start.date() == local_end.date():
        return f"{format_when(local_start)} - {format_clock(local_end)}"
    return f"{format_when(local_start)} - {format_when(local_end)}"


def format_minutes(minutes: int) -> str:
    if minutes % 60 == 0:
        hours = minutes // 60
        return f"{hours} hour" if hours == 1 else f"{hours} hours"
    if minutes > 60:
        return f"{minutes // 60}h {minutes % 60}m"
    return f"{minutes} minutes"


def short_id(event_id: str) -> str:
    return (event_id or "")[-8:]


def ceil_to_step(value: datetime, step_minutes: int) -> datetime:
    """Round up to the next step boundary within the hour grid."""
    floored = value.replace(second=0, microsecond=0)
    remainder = floored.minute % step_minutes
    if remainder == 0 and floored == value:
        return floored
    return floored + timedelta(minutes=step_minutes - remainder)


def start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)
