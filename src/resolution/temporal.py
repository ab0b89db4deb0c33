"""Deterministic temporal-language parsing for meeting references."""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta

MEETING_WORDS = "meeting|call|transcript|sync|session|conversation|chat|touchpoint|demo|visit"

_LAST = r"(last|latest|most\s+recent)"

TEMPORAL_PATTERNS: dict[str, re.Pattern[str]] = {
    "last_meeting_direct": re.compile(rf"\b{_LAST}\s+({MEETING_WORDS})\b", re.IGNORECASE),
    "last_meeting_with_company": re.compile(
        rf"\b{_LAST}\s+\S+(?:\s+\S+)?\s+({MEETING_WORDS})\b", re.IGNORECASE
    ),
    "last_meeting_with_suffix": re.compile(
        rf"\b{_LAST}\s+({MEETING_WORDS})\s+(?:with|from)\s+", re.IGNORECASE
    ),
    "date_reference": re.compile(
        rf"\b({MEETING_WORDS})\s+(?:on|from)\s+"
        r"(\w+\s+\d{1,2}(?:,?\s*\d{4})?|\d{1,2}[/-]\d{1,2}(?:[/-]\d{2,4})?)\b",
        re.IGNORECASE,
    ),
    "last_week": re.compile(rf"\b({MEETING_WORDS})\s+last\s+week\b", re.IGNORECASE),
    "last_month": re.compile(rf"\b({MEETING_WORDS})\s+last\s+month\b", re.IGNORECASE),
    "in_the_last": re.compile(
        rf"\b(?:in|from|during)\s+(?:the|our|their)?\s*{_LAST}\s+", re.IGNORECASE
    ),
    "recent_with_company": re.compile(
        rf"\b(?:our|the)?\s*recent\s+\S+(?:\s+\S+)?\s+({MEETING_WORDS})\b", re.IGNORECASE
    ),
    "company_then_temporal": re.compile(
        rf"\b\w+(?:\s+\w+)?,\s*(last|latest|recent)\s+({MEETING_WORDS})", re.IGNORECASE
    ),
}

# Every pattern that means "the most recent meeting"
LAST_MEETING_PATTERNS = (
    "last_meeting_direct",
    "last_meeting_with_company",
    "last_meeting_with_suffix",
    "in_the_last",
    "recent_with_company",
    "company_then_temporal",
)

MONTHS = {
    "jan": 1, "january": 1,
    "feb": 2, "february": 2,
    "mar": 3, "march": 3,
    "apr": 4, "april": 4,
    "may": 5,
    "jun": 6, "june": 6,
    "jul": 7, "july": 7,
    "aug": 8, "august": 8,
    "sep": 9, "sept": 9, "september": 9,
    "oct": 10, "october": 10,
    "nov": 11, "november": 11,
    "dec": 12, "december": 12,
}

_MONTH_NAME_DATE = re.compile(r"^(\w+)\s+(\d{1,2})(?:,?\s*(\d{4}))?$", re.IGNORECASE)
_NUMERIC_DATE = re.compile(r"^(\d{1,2})[/-](\d{1,2})(?:[/-](\d{2,4}))?$")


def has_temporal_meeting_reference(message: str) -> bool:
    return any(p.search(message) for p in TEMPORAL_PATTERNS.values())


def mentions_last_meeting(message: str) -> bool:
    return any(TEMPORAL_PATTERNS[name].search(message) for name in LAST_MEETING_PATTERNS)


def find_date_reference(message: str) -> str | None:
    """The raw date text following "meeting on/from", if any."""
    match = TEMPORAL_PATTERNS["date_reference"].search(message)
    return match.group(2) if match else None


def parse_date_reference(text: str, today: date) -> date | None:
    """Parse ``Aug 7``, ``August 7, 2025``, ``8/7`` or ``8-7-25`` (month first).

    A missing year means the year of *today*; two-digit years are 20xx.
    Returns ``None`` when the text is not a valid calendar date.
    """
    text = text.strip()

    match = _MONTH_NAME_DATE.match(text)
    if match:
        month = MONTHS.get(match.group(1).lower())
        if month is None:
            return None
        year = int(match.group(3)) if match.group(3) else today.year
        return _safe_date(year, month, int(match.group(2)))

    match = _NUMERIC_DATE.match(text)
    if match:
        year = int(match.group(3)) if match.group(3) else today.year
        if year < 100:
            year += 2000
        return _safe_date(year, int(match.group(1)), int(match.group(2)))

    return None


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def rolling_window(now: datetime, days: int) -> tuple[datetime, datetime]:
    """From midnight *days* ago up to *now*."""
    start = datetime.combine((now - timedelta(days=days)).date(), time.min, tzinfo=now.tzinfo)
    return start, now


def day_window(day: date, now: datetime) -> tuple[datetime, datetime]:
    """The full calendar day *day*, in the timezone of *now*."""
    start = datetime.combine(day, time.min, tzinfo=now.tzinfo)
    end = datetime.combine(day, time.max, tzinfo=now.tzinfo)
    return start, end


def format_meeting_date(value: date | datetime | None) -> str:
    """``Aug 7, 2025`` style display date."""
    if value is None:
        return ""
    return f"{value.strftime('%b')} {value.day}, {value.year}"
