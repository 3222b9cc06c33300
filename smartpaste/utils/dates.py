"""
Date parsing and normalization for bank SMS text.

Bank messages in the target markets write day before month, so numeric dates
are read DD/MM first and MM/DD only as a fallback.
"""

import re
from datetime import datetime, timezone
from typing import Optional

# Order matters: more specific formats come first
DATE_FORMATS = [
    '%Y-%m-%d %H:%M:%S', '%Y-%m-%d %H:%M', '%Y-%m-%d',
    '%Y/%m/%d %H:%M', '%Y/%m/%d',
    '%Y.%m.%d',
    '%d-%m-%Y %H:%M', '%d-%m-%Y',
    '%d/%m/%Y %H:%M', '%d/%m/%Y',
    '%d.%m.%Y',
    '%d-%m-%y %H:%M', '%d-%m-%y',
    '%d/%m/%y %H:%M', '%d/%m/%y',
    '%m/%d/%Y', '%m-%d-%Y',
    '%d-%b-%Y', '%d-%b-%y',
    '%d %b %Y %H:%M', '%d %b %Y', '%d %B %Y',
    '%d-%B-%Y', '%d %B %Y %H:%M',
    '%b %d %Y', '%B %d %Y',
]

# All-digit dates: 8 digits are year-first or day-first, 6 digits are DDMMYY
COMPACT_FORMATS = {
    8: ['%Y%m%d', '%d%m%Y'],
    6: ['%d%m%y'],
}

MIN_YEAR = 1970
MAX_YEAR = 2100

_SHORT_YEAR = re.compile(r'^(\d{1,2})([/\-.])(\d{1,2})\2(\d{2})(?:\s+(\d{1,2}):(\d{2}))?$')


def normalize_date(value: str) -> Optional[datetime]:
    """
    Parse a date substring into a naive datetime.

    Two-digit years are resolved manually (< 50 → 20yy, otherwise 19yy) before
    strptime gets a chance to guess.

    Returns:
        datetime or None if no format matches
    """
    if not value:
        return None

    trimmed = re.sub(r'(\d+)(?:st|nd|rd|th)\b', r'\1', value.strip())
    trimmed = re.sub(r'(\d)T(\d)', r'\1 \2', trimmed)
    trimmed = re.sub(r'[\s,]+', ' ', trimmed).strip()

    if trimmed.isdigit():
        return _parse_compact(trimmed)

    short = _SHORT_YEAR.match(trimmed)
    if short:
        dd, _, mm, yy, hh, mi = short.groups()
        year = int(yy)
        full_year = 2000 + year if year < 50 else 1900 + year
        try:
            return datetime(full_year, int(mm), int(dd), int(hh or 0), int(mi or 0))
        except ValueError:
            return None

    for fmt in DATE_FORMATS:
        try:
            parsed = datetime.strptime(trimmed, fmt)
        except ValueError:
            continue
        if MIN_YEAR <= parsed.year <= MAX_YEAR:
            return parsed

    return None


def _parse_compact(digits: str) -> Optional[datetime]:
    for fmt in COMPACT_FORMATS.get(len(digits), []):
        try:
            parsed = datetime.strptime(digits, fmt)
        except ValueError:
            continue
        if MIN_YEAR <= parsed.year <= MAX_YEAR:
            return parsed
    return None


def to_iso_timestamp(value: datetime) -> str:
    """Format as `YYYY-MM-DDTHH:MM:SS.mmmZ` (naive values are taken as UTC)."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime('%Y-%m-%dT%H:%M:%S.') + f"{value.microsecond // 1000:03d}Z"


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def now_iso() -> str:
    return to_iso_timestamp(utc_now())


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO timestamp back into a naive UTC datetime."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
