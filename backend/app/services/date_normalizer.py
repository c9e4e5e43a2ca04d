"""
Date normalizer for dates recovered from forwarded email headers.

Forwarded header blocks carry the original send time in whatever format the
forwarding client chose:

    Sat, Dec 27, 2025 at 8:33 PM          (Gmail)
    Thu, 1 Jan 2026 10:30:00 -0500        (RFC 2822, Apple Mail / Yahoo)
    Friday, January 2, 2026 9:15:04 AM    (Outlook "Sent:")
    December 27, 2025 at 8:33 PM

Parsing never raises. A result outside the sanity window
[now - 365 days, now + 1 day] is rejected, and the caller falls back to the
ingestion timestamp.
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, Optional

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

MAX_PAST = timedelta(days=365)
MAX_FUTURE = timedelta(days=1)

# US zone abbreviations mail clients print (Apple Mail: "3:00:12 PM EST");
# dateutil ignores them without an explicit mapping.
US_TZINFOS = {
    "EST": -5 * 3600,
    "EDT": -4 * 3600,
    "CST": -6 * 3600,
    "CDT": -5 * 3600,
    "MST": -7 * 3600,
    "MDT": -6 * 3600,
    "PST": -8 * 3600,
    "PDT": -7 * 3600,
}

_AT_RE = re.compile(r"\s+at\s+", re.IGNORECASE)
_MONTH_DAY_YEAR_RE = re.compile(r"([A-Za-z]+)\s+(\d{1,2}),?\s+(\d{4})")
_TIME_RE = re.compile(r"(\d{1,2}):(\d{2})(?::(\d{2}))?\s*(AM|PM)?", re.IGNORECASE)


def _to_utc(parsed: datetime) -> datetime:
    # Naive values are read as server local time, like a JS Date would.
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed.astimezone(timezone.utc)


def _parse_calendar(value: str) -> Optional[datetime]:
    """
    dateutil first, then the strict RFC 2822 parser.

    parsedate_to_datetime() silently drops an AM/PM marker, so it only sees
    values dateutil rejects (e.g. a trailing "(EST)" comment).
    """
    try:
        return date_parser.parse(value, tzinfos=US_TZINFOS)
    except (TypeError, ValueError, OverflowError):
        pass
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None


def _parse_without_at(value: str) -> Optional[datetime]:
    """Gmail puts "at" between date and time: "Sat, Dec 27, 2025 at 8:33 PM"."""
    stripped = _AT_RE.sub(" ", value)
    if stripped == value:
        return None
    return _parse_calendar(stripped)


def _parse_month_day_year(value: str) -> Optional[datetime]:
    """
    Last resort: pull out "Dec 27, 2025" plus an optional "8:33 PM" and
    reassemble them into something the calendar parser accepts.
    """
    date_match = _MONTH_DAY_YEAR_RE.search(value)
    if not date_match:
        return None
    month, day, year = date_match.groups()

    hours, minutes, seconds = 0, 0, 0
    time_match = _TIME_RE.search(value)
    if time_match:
        hours = int(time_match.group(1))
        minutes = int(time_match.group(2))
        seconds = int(time_match.group(3) or 0)
        meridiem = (time_match.group(4) or "").upper()
        if meridiem == "PM" and hours != 12:
            hours += 12
        if meridiem == "AM" and hours == 12:
            hours = 0

    try:
        return date_parser.parse(f"{month} {day}, {year} {hours}:{minutes:02d}:{seconds:02d}")
    except (ValueError, OverflowError):
        return None


_STRATEGIES: list[Callable[[str], Optional[datetime]]] = [
    _parse_calendar,
    _parse_without_at,
    _parse_month_day_year,
]


def parse_date_string(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a free-form email date string into a UTC datetime.

    Tries each strategy in order and returns the first success, or None.
    No sanity window is applied here; see parse_email_date().
    """
    if not value or not value.strip():
        return None
    value = value.strip()

    for strategy in _STRATEGIES:
        parsed = strategy(value)
        if parsed is not None:
            try:
                return _to_utc(parsed)
            except (ValueError, OverflowError):
                continue
    return None


def is_valid_email_date(value: datetime, now: Optional[datetime] = None) -> bool:
    """
    Return True when value lies within [now - 365 days, now + 1 day].

    The one-day allowance absorbs clock skew between mail servers.
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now - MAX_PAST <= value <= now + MAX_FUTURE


def parse_email_date(value: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Parse value and apply the sanity window.

    Returns None (DateUnparseable) when nothing parses or the result is out of
    range; never raises.
    """
    parsed = parse_date_string(value)
    if parsed is None:
        logger.debug("parse_email_date: could not parse %r", value)
        return None
    if not is_valid_email_date(parsed, now):
        logger.debug("parse_email_date: %s outside sanity window", parsed.isoformat())
        return None
    return parsed
