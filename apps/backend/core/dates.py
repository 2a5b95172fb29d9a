"""
Publish date resolution for listing text.

Listing pages expose dates in many shapes ("2 days ago", "05/03/2024",
"2024-03-05", "March 5, 2024"). Relative expressions are tried before absolute
ones, and the explicit date field before the container's free text.
"""

import re
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)

_RELATIVE_UNIT_RE = re.compile(
    r'\b(\d+)\+?\s*(minute|minutes|min|mins|hour|hours|hr|hrs|day|days|week|weeks)\s+ago\b',
    re.IGNORECASE,
)
_TODAY_RE = re.compile(r'\b(today|just now)\b', re.IGNORECASE)
_YESTERDAY_RE = re.compile(r'\byesterday\b', re.IGNORECASE)

_DAY_MONTH_YEAR_RE = re.compile(r'\b(\d{1,2})[/.\-](\d{1,2})[/.\-](\d{4})\b')
_YEAR_MONTH_DAY_RE = re.compile(r'\b(\d{4})[/.\-](\d{1,2})[/.\-](\d{1,2})\b')

# Generic parsing only runs when the text carries a month name or a 4-digit year
_MONTH_NAME_RE = re.compile(
    r'\b(jan(uary)?|feb(ruary)?|mar(ch)?|apr(il)?|may|june?|july?|aug(ust)?'
    r'|sep(t(ember)?)?|oct(ober)?|nov(ember)?|dec(ember)?)\b',
    re.IGNORECASE,
)
_YEAR_RE = re.compile(r'\b(19|20)\d{2}\b')


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _build_date(year: int, month: int, day: int) -> Optional[datetime]:
    if year < 2000 or not 1 <= month <= 12 or not 1 <= day <= 31:
        return None
    try:
        return datetime(year, month, day, tzinfo=timezone.utc)
    except ValueError:
        return None


def parse_date_from_relative_text(text: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """Parse "today", "yesterday" and "<n> <unit> ago" expressions relative to now."""
    if not text:
        return None
    now = now or _utcnow()

    match = _RELATIVE_UNIT_RE.search(text)
    if match:
        amount = int(match.group(1))
        unit = match.group(2).lower()
        if unit.startswith('min'):
            return now - timedelta(minutes=amount)
        if unit.startswith('h'):
            return now - timedelta(hours=amount)
        if unit.startswith('week'):
            return now - timedelta(weeks=amount)
        return now - timedelta(days=amount)

    if _YESTERDAY_RE.search(text):
        return now - ONE_DAY
    if _TODAY_RE.search(text):
        return now
    return None


def parse_date_from_absolute_text(text: Optional[str]) -> Optional[datetime]:
    """
    Parse an absolute date from text.

    Numeric day-month-year and year-month-day forms (separators / - .) are tried
    first; generic parsing via dateutil is the fallback.

    Returns:
        Timezone-aware UTC datetime, or None if nothing parses
    """
    if not text:
        return None

    match = _DAY_MONTH_YEAR_RE.search(text)
    if match:
        parsed = _build_date(int(match.group(3)), int(match.group(2)), int(match.group(1)))
        if parsed:
            return parsed

    match = _YEAR_MONTH_DAY_RE.search(text)
    if match:
        parsed = _build_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        if parsed:
            return parsed

    if not (_MONTH_NAME_RE.search(text) or _YEAR_RE.search(text)):
        return None

    try:
        parsed = date_parser.parse(text.strip())
    except (ValueError, OverflowError) as e:
        logger.debug(f"[dates] Could not parse {text[:60]!r}: {e}")
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    if parsed.year < 2000:
        return None
    return parsed


def parse_published_date(
    date_text: Optional[str],
    fallback_text: Optional[str],
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """Try relative then absolute parsing on date_text, then the same on fallback_text."""
    now = now or _utcnow()
    return (
        parse_date_from_relative_text(date_text, now)
        or parse_date_from_absolute_text(date_text)
        or parse_date_from_relative_text(fallback_text, now)
        or parse_date_from_absolute_text(fallback_text)
    )


def is_within_lookback_window(date: datetime, lookback_days: int, now: Optional[datetime] = None) -> bool:
    """Age must be at most lookback_days, and the date at most one day in the future."""
    now = now or _utcnow()
    if date.tzinfo is None:
        date = date.replace(tzinfo=timezone.utc)
    age = now - date
    return -ONE_DAY <= age <= timedelta(days=lookback_days)
