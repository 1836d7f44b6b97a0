from __future__ import annotations

import os
import pathlib
import re
from datetime import time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
LLM_DEBUG = os.getenv("LLM_DEBUG", "0") == "1"
INTENT_PARSER_MODEL = os.getenv("COPILOT_INTENT_MODEL", "gpt-5-nano").strip()
INTENT_REASONING_EFFORT = os.getenv("OPENAI_REASONING_EFFORT", "low").strip() or "low"
INTENT_VERBOSITY = os.getenv("OPENAI_VERBOSITY", "low").strip() or "low"

_HHMM_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


def _parse_hhmm(raw: str, default: time) -> time:
    match = _HHMM_RE.match((raw or "").strip())
    if not match:
        return default
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return default
    return time(hour, minute)


def _resolve_default_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


DEFAULT_TIMEZONE_NAME = os.getenv("COPILOT_TIMEZONE", "UTC").strip() or "UTC"
DEFAULT_TZ = _resolve_default_timezone(DEFAULT_TIMEZONE_NAME)

# -------------------------
# Scheduling defaults
# -------------------------
WORKING_HOURS_START = _parse_hhmm(os.getenv("WORKING_HOURS_START", "09:00"), time(9, 0))
WORKING_HOURS_END = _parse_hhmm(os.getenv("WORKING_HOURS_END", "17:00"), time(17, 0))
SLOT_STEP_MINUTES = 30
MAX_ALTERNATIVES = int(os.getenv("MAX_ALTERNATIVES", "3"))
ALTERNATIVE_SEARCH_DAYS = 7
MATCH_WINDOW_DAYS = 30
NEARBY_TITLES_LIMIT = 5
DEFAULT_AVAILABILITY_MINUTES = 60

CONVERSATION_TTL_SECONDS = int(os.getenv("CONVERSATION_TTL_SECONDS", "1800"))
UPSTREAM_TIMEOUT_SECONDS = float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "10"))

# A parse below this is flagged as low confidence; it never blocks processing.
LOW_CONFIDENCE_THRESHOLD = 0.7
# A new operation needs at least this much confidence to abandon a pending one.
OPERATION_SWITCH_CONFIDENCE = 0.6

# -------------------------
# Google Calendar
# -------------------------
ENABLE_GCAL = os.getenv("ENABLE_GCAL", "0") == "1"
BASE_DIR = pathlib.Path(__file__).resolve().parent.parent
GOOGLE_TOKEN_FILE = pathlib.Path(
    os.getenv("GOOGLE_TOKEN_FILE", str(BASE_DIR / "gcal_tokens" / "token.json")))
GOOGLE_CALENDAR_ID = os.getenv("GOOGLE_CALENDAR_ID", "primary")
GCAL_SCOPES = [
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/calendar.readonly",
]

API_BASE = os.getenv("API_BASE", "/api")
