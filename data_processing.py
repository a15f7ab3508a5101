import io
import logging
import os
from datetime import date
from typing import Iterable, List, Optional

import pandas as pd

from config import COLUMN_MAPPING, CRITICAL_COLUMNS
from models import DayType, RawPunchEvent
from time_parsing import canonicalize_punch, extract_time_hhmmss

_ENTRY_TOKENS = {'1', 'true', 't', 'yes', 'y', 'c/in', 'in', 'entrada', 'e', 'entry'}
_EXIT_TOKENS = {'0', 'false', 'f', 'no', 'n', 'c/out', 'out', 'salida', 's', 'exit'}


def _clean_text(value) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ''
    text = str(value).strip()
    return '' if text.lower() == 'nan' else text


def _optional_int(value) -> Optional[int]:
    number = pd.to_numeric(value, errors='coerce')
    if pd.isna(number):
        return None
    return int(number)


def parse_entry_flag(value) -> Optional[bool]:
    """Reads an entry/exit flag from booleans, 1/0 codes and clock status labels; None when unknown."""
    if isinstance(value, bool):
        return value
    text = _clean_text(value).lower()
    if text.endswith('.0'):
        text = text[:-2]
    if text in _ENTRY_TOKENS:
        return True
    if text in _EXIT_TOKENS:
        return False
    return None


def dedupe_events(events: Iterable[RawPunchEvent]) -> List[RawPunchEvent]:
    """
    Collapses repeated rows for the same physical punch.

    Two rows are the same punch when employee, date, time, direction, motive and
    absence range match; the one with the higher punch_id (the newer ERP record) wins.
    Original order is kept for the surviving rows.
    """
    winners = {}
    order = []
    for event in events:
        key = (event.employee_id, event.date, event.time_of_day, event.is_entry,
               event.motive_code, event.range_start, event.range_end)
        current = winners.get(key)
        if current is None:
            winners[key] = event
            order.append(key)
        elif (event.punch_id or 0) > (current.punch_id or 0):
            winners[key] = event
    return [winners[key] for key in order]


class PunchProcessor:
    """
    Turns ERP punch exports into canonical RawPunchEvent lists.

    Alias column names are resolved here, once, so the reconciliation modules
    only ever see one record shape. Rows that cannot be read are dropped and
    reported through the error log.
    """

    def __init__(self):
        self.true_global_min_date = None  # Earliest punch date across the last run
        self.true_global_max_date = None  # Latest punch date across the last run
        self.error_log = []  # To store any processing errors

    def _normalize_columns(self, df: pd.DataFrame, source_name: str) -> pd.DataFrame:
        """
        Renames alias columns to canonical field names.
        When several aliases of one field are present, each row takes the first non-empty one.
        """
        # Drop any columns that are unnamed (often generated from empty cells in Excel/CSV headers)
        df = df.loc[:, ~df.columns.astype(str).str.contains('^Unnamed', na=False)]

        normalized = pd.DataFrame(index=df.index)
        for standard_col, possible_names in COLUMN_MAPPING.items():
            present = [name for name in possible_names if name in df.columns]
            if not present:
                continue
            candidates = df[present].astype(object).apply(
                lambda col: col.map(lambda v: None if _clean_text(v) == '' else v)
            )
            normalized[standard_col] = candidates.bfill(axis=1).iloc[:, 0]

        # Single 'Date/Time' exports carry the date inside the time column
        if 'date' not in normalized.columns and 'time' in normalized.columns:
            normalized['date'] = normalized['time']

        missing_critical_cols = [col for col in CRITICAL_COLUMNS if col not in normalized.columns]
        if missing_critical_cols:
            alternatives = {col: COLUMN_MAPPING[col] for col in missing_critical_cols}
            raise ValueError(f"Missing critical columns in '{source_name}': {alternatives}")
        return normalized

    def _row_to_event(self, row: dict, source_name: str, row_number) -> Optional[RawPunchEvent]:
        employee_id = _optional_int(row.get('employee_id'))
        pair = canonicalize_punch(row.get('date'), row.get('time'))
        is_entry = parse_entry_flag(row.get('is_entry'))
        motive_code = _optional_int(row.get('motive_code'))
        if is_entry is None:
            # Exports without a direction column mark exits by their motive
            is_entry = motive_code in (None, 0) if 'is_entry' not in row else None

        if employee_id is None or pair is None or is_entry is None:
            reason = 'employee id' if employee_id is None else 'date/time' if pair is None else 'entry flag'
            message = f"Row {row_number}: unparseable {reason}; row dropped."
            logging.warning(f"{source_name}: {message}")
            self.error_log.append({'Filename': source_name, 'Error': message})
            return None

        punch_date, punch_time = pair
        range_start = extract_time_hhmmss(row.get('range_start')) or None
        range_end = extract_time_hhmmss(row.get('range_end')) or None
        shift_label = _clean_text(row.get('shift_label')) or None
        return RawPunchEvent(
            employee_id=employee_id,
            date=punch_date,
            time_of_day=punch_time,
            is_entry=is_entry,
            motive_code=motive_code,
            day_type=DayType.from_code(_optional_int(row.get('day_type'))),
            shift_label=shift_label,
            motive_desc=_clean_text(row.get('motive_desc')),
            range_start=range_start,
            range_end=range_end,
            employee_name=_clean_text(row.get('employee_name')),
            department=_clean_text(row.get('department')),
            punch_id=_optional_int(row.get('punch_id')),
        )

    def events_from_dataframe(self, df: pd.DataFrame, source_name: str = 'DataFrame') -> List[RawPunchEvent]:
        """
        Converts an ERP punch frame into canonical events.

        Args:
            df (pd.DataFrame): Punch rows with any of the COLUMN_MAPPING aliases.
            source_name (str): Label used in log and error messages.

        Returns:
            list[RawPunchEvent]: Deduplicated events in chronological order
            (stable for identical timestamps).
        """
        if df is None or df.empty:
            return []

        normalized = self._normalize_columns(df, source_name)
        events = []
        for row_number, row in zip(normalized.index, normalized.to_dict('records')):
            event = self._row_to_event(row, source_name, row_number)
            if event is not None:
                events.append(event)

        events = dedupe_events(events)
        events.sort(key=lambda e: (e.employee_id, e.date, e.time_of_day))

        if events:
            dates = [date.fromisoformat(e.date) for e in events]
            self.true_global_min_date = min(dates)
            self.true_global_max_date = max(dates)
        logging.info(f"{source_name}: {len(events)} punch events read from {len(df)} rows")
        return events

    def load_punch_file(self, source) -> List[RawPunchEvent]:
        """
        Reads a punch export (CSV or Excel) from a path or a file-like object.

        Raises:
            ValueError: For unsupported or unreadable files, or missing critical columns.
        """
        name = str(getattr(source, 'name', source))
        file_extension = os.path.splitext(name)[1].lower()
        try:
            if file_extension == '.csv':
                if hasattr(source, 'getvalue'):
                    df = pd.read_csv(io.StringIO(source.getvalue().decode('utf-8')))
                else:
                    df = pd.read_csv(source)
            elif file_extension in ['.xls', '.xlsx']:
                df = pd.read_excel(source)
            else:
                raise ValueError(f"Unsupported file type for '{name}'. Only .csv, .xls, and .xlsx are supported.")
        except (OSError, UnicodeDecodeError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            raise ValueError(f"Could not read file '{name}' (format error or corruption): {e}")
        return self.events_from_dataframe(df, os.path.basename(name))

    def process_files(self, sources: list) -> List[RawPunchEvent]:
        """Reads several punch files; a file that fails is logged and the rest continue."""
        self.error_log = []  # Reset error log for new processing run
        if not sources:
            self.error_log.append({'Filename': 'N/A', 'Error': 'No files to process.'})
            return []

        events = []
        for source in sources:
            name = str(getattr(source, 'name', source))
            try:
                events.extend(self.load_punch_file(source))
            except ValueError as e:
                error_message = f"Error processing {name}: {type(e).__name__}: {e}"
                logging.error(error_message)
                self.error_log.append({'Filename': name, 'Error': error_message})

        events = dedupe_events(events)
        events.sort(key=lambda e: (e.employee_id, e.date, e.time_of_day))
        if events:
            self.true_global_min_date = date.fromisoformat(min(e.date for e in events))
            self.true_global_max_date = date.fromisoformat(max(e.date for e in events))
        return events

    def get_error_log(self) -> list:
        """Returns the accumulated error log."""
        return self.error_log

    def get_global_dates(self) -> tuple[date, date]:
        """Returns the earliest and latest punch dates of the last run."""
        return self.true_global_min_date, self.true_global_max_date


def events_to_dataframe(events: Iterable[RawPunchEvent]) -> pd.DataFrame:
    """Canonical punch table, e.g. to hand adjusted events back to an export collaborator."""
    columns = ['employee_id', 'employee_name', 'department', 'date', 'time', 'is_entry', 'motive_code',
               'motive_desc', 'day_type', 'shift_label', 'range_start', 'range_end', 'punch_id']
    rows = [
        {
            'employee_id': e.employee_id,
            'employee_name': e.employee_name,
            'department': e.department,
            'date': e.date,
            'time': e.time_of_day,
            'is_entry': e.is_entry,
            'motive_code': e.motive_code,
            'motive_desc': e.motive_desc,
            'day_type': e.day_type.value,
            'shift_label': e.shift_label,
            'range_start': e.range_start,
            'range_end': e.range_end,
            'punch_id': e.punch_id,
        }
        for e in events
    ]
    return pd.DataFrame(rows, columns=columns)
