import io
import logging
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Set

import pandas as pd
import requests

from models import DayType, RawPunchEvent
from time_parsing import normalize_date_key

DEFAULT_FETCH_TIMEOUT = 15


class HolidayCalendar:
    """Company holiday dates, stored as canonical 'YYYY-MM-DD' keys."""

    def __init__(self, dates: Iterable = ()):
        self.dates: Set[str] = set()
        for value in dates:
            key = normalize_date_key(value)
            if key:
                self.dates.add(key)

    def __contains__(self, day) -> bool:
        return self.is_holiday(day)

    def __len__(self) -> int:
        return len(self.dates)

    def is_holiday(self, day) -> bool:
        return normalize_date_key(day) in self.dates

    def with_event_holidays(self, events: Iterable[RawPunchEvent]) -> "HolidayCalendar":
        """Returns a new calendar that also holds every date an event flags as a company holiday."""
        extra = {e.date for e in events if e.day_type == DayType.HOLIDAY}
        return HolidayCalendar(self.dates | extra)

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame) -> "HolidayCalendar":
        """
        Builds a calendar from a sheet with a date column.
        The date column is the first one whose header mentions a date, else the first column.
        """
        if df is None or df.empty:
            return cls()
        df = df.loc[:, ~df.columns.astype(str).str.contains('^Unnamed', na=False)]
        date_col = None
        for col in df.columns:
            if any(token in str(col).lower() for token in ("fecha", "date", "day", "holiday")):
                date_col = col
                break
        if date_col is None:
            date_col = df.columns[0]
        return cls(df[date_col].dropna().tolist())


def fetch_holiday_calendar(url: str, timeout: int = DEFAULT_FETCH_TIMEOUT) -> Optional[HolidayCalendar]:
    """
    Fetches a published holiday sheet as CSV.

    Returns None when the sheet cannot be fetched or read, so callers treat
    the holiday set as unknown rather than empty.
    """
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
        df_raw = pd.read_csv(io.StringIO(response.text), header=None)

        # Heuristic to find the header row: look for a date/holiday caption
        header_row_idx = 0
        for i, row in df_raw.iterrows():
            row_str = " ".join(row.astype(str).str.lower().fillna(""))
            if "fecha" in row_str or "date" in row_str or "holiday" in row_str:
                header_row_idx = i
                break

        df = pd.read_csv(io.StringIO(response.text), header=header_row_idx)
        calendar = HolidayCalendar.from_dataframe(df)
        logging.info(f"Loaded {len(calendar)} holidays from {url}")
        return calendar
    except (requests.RequestException, pd.errors.ParserError, pd.errors.EmptyDataError, ValueError) as e:
        logging.error(f"Error fetching holiday calendar from URL: {e}")
        return None


def expected_working_days(start_date: date, end_date: date, holidays: Optional[Iterable] = None,
                          weekend_days: Optional[List[int]] = None) -> List[str]:
    """
    Lists the dates between start_date and end_date (inclusive) that are neither
    weekend days nor holidays.

    Args:
        start_date (date): First day of the period.
        end_date (date): Last day of the period.
        holidays: HolidayCalendar or iterable of dates.
        weekend_days (list[int]): calendar weekday numbers (0=Monday). Defaults to Saturday and Sunday.

    Returns:
        list[str]: 'YYYY-MM-DD' keys in date order.
    """
    if start_date is None or end_date is None or start_date > end_date:
        return []
    if weekend_days is None:
        weekend_days = [5, 6]
    holiday_keys = holidays.dates if isinstance(holidays, HolidayCalendar) else {
        normalize_date_key(h) for h in (holidays or [])
    }

    days = []
    current_date = start_date
    while current_date <= end_date:
        key = current_date.strftime('%Y-%m-%d')
        if current_date.weekday() not in weekend_days and key not in holiday_keys:
            days.append(key)
        current_date += timedelta(days=1)
    return days


class EmployeeCalendar:
    """
    Per-employee personal calendar: employee_id -> {date: DayType}.
    Only VACATION days change reconciliation; other day types are kept for callers.
    """

    def __init__(self, mapping: Optional[Dict] = None):
        self.days: Dict[int, Dict[str, DayType]] = {}
        for employee_id, entries in (mapping or {}).items():
            for day, day_type in entries.items():
                self.set_day(employee_id, day, day_type)

    def set_day(self, employee_id, day, day_type) -> None:
        key = normalize_date_key(day)
        if not key:
            logging.warning(f"Ignoring unparseable calendar date {day!r} for employee {employee_id}")
            return
        if not isinstance(day_type, DayType):
            day_type = DayType.from_code(day_type)
        self.days.setdefault(int(employee_id), {})[key] = day_type

    def vacation_dates(self, employee_id) -> Set[str]:
        entries = self.days.get(int(employee_id), {})
        return {day for day, day_type in entries.items() if day_type == DayType.VACATION}
