import re
from datetime import date, datetime, time
from typing import Optional, Tuple

import pandas as pd

_TIME_RE = re.compile(r'(\d{1,2}):(\d{2})(?::(\d{2}))?')
_ISO_DATE_RE = re.compile(r'^\d{4}-\d{2}-\d{2}$')
_MERIDIEM_RE = re.compile(r'\b(AM|PM)\b', re.IGNORECASE)
NEXT_DAY_SUFFIX = ' (+1)'


def _is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and pd.isna(value):
        return True
    if value is pd.NaT:
        return True
    return str(value).strip() == ''


def normalize_date_key(value) -> str:
    """
    Normalizes a date value to 'YYYY-MM-DD'.

    Accepts 'YYYY-MM-DD', 'DD/MM/YYYY', ISO datetimes ('2024-03-01T07:00:00Z',
    '2024-03-01 07:00') and date/datetime/Timestamp objects.
    Returns '' when no plausible date can be read.
    """
    if _is_blank(value):
        return ''
    if isinstance(value, (datetime, date)):
        return value.strftime('%Y-%m-%d')

    date_part = str(value).strip()
    if 'T' in date_part:
        date_part = date_part.split('T')[0]
    if ' ' in date_part:
        date_part = date_part.split(' ')[0]

    if '/' in date_part:
        parts = date_part.split('/')
        if len(parts) == 3 and all(p.isdigit() for p in parts):
            day, month, year = parts
            date_part = f"{year}-{month.zfill(2)}-{day.zfill(2)}"
        else:
            return ''

    date_part = date_part[:10]
    return date_part if _ISO_DATE_RE.match(date_part) else ''


def extract_time_part(value) -> str:
    """Strips a date prefix and any zone, offset or fractional suffix from a time string."""
    if _is_blank(value):
        return ''
    raw = str(value).strip()

    if 'T' in raw:
        raw = raw.split('T', 1)[1]
    elif ' ' in raw:
        # Keep the first token that looks like a clock time
        tokens = [t for t in raw.split(' ') if ':' in t]
        raw = tokens[0] if tokens else raw.split(' ')[1]

    raw = raw.split('Z')[0]
    raw = raw.split('+')[0]
    # A '-' this far in is an offset; earlier it could be part of a date
    if len(raw) > 8 and raw.rfind('-') > 2:
        raw = raw.split('-')[0]
    raw = raw.split('.')[0]
    return raw.strip()


def extract_time_hhmmss(value) -> str:
    """
    Extracts the first H:MM[:SS] match and returns it as 'HH:MM:SS'.
    Returns '' when nothing plausible is found; '' means absent, never midnight.
    """
    if _is_blank(value):
        return ''
    if isinstance(value, datetime):
        value = value.time()
    if isinstance(value, time):
        return value.strftime('%H:%M:%S')

    match = _TIME_RE.search(extract_time_part(value))
    if not match:
        return ''
    hours, minutes, seconds = int(match.group(1)), int(match.group(2)), int(match.group(3) or 0)

    # 12-hour clock exports ('07:15:00 PM')
    meridiem = _MERIDIEM_RE.search(str(value))
    if meridiem and 1 <= hours <= 12:
        if meridiem.group(1).upper() == 'PM' and hours != 12:
            hours += 12
        elif meridiem.group(1).upper() == 'AM' and hours == 12:
            hours = 0

    if hours > 23 or minutes > 59 or seconds > 59:
        return ''
    return f"{hours:02}:{minutes:02}:{seconds:02}"


def canonicalize_punch(date_value, time_value) -> Optional[Tuple[str, str]]:
    """
    Produces the canonical (date, time) pair for a punch.

    Args:
        date_value: Any supported date encoding.
        time_value: A time string, possibly embedded in an ISO datetime.
            When empty, the time is read from date_value instead.

    Returns:
        tuple | None: ('YYYY-MM-DD', 'HH:MM:SS'), or None when either side is unparseable.
    """
    date_key = normalize_date_key(date_value)
    time_key = extract_time_hhmmss(date_value if _is_blank(time_value) else time_value)
    if not date_key or not time_key:
        return None
    return date_key, time_key


def normalize_gap_boundary(value) -> str:
    """Drops the next-day suffix and truncates to 'HH:MM'."""
    if _is_blank(value):
        return ''
    return str(value).replace(NEXT_DAY_SUFFIX, '').strip()[:5]
