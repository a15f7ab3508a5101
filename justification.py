import logging
import math
import os
import re
from datetime import date, timedelta
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import pandas as pd

from config import (
    ANNUAL_CREDITS,
    MOTIVE_CATEGORIES,
    SPECIAL_TASK_MOTIVE,
    SPECIAL_TASK_TOKEN,
    minutes_to_hours,
    round_hours,
)
from models import JustifiedInterval, LeaveRange, RawPunchEvent, UnjustifiedGap, WorkdayDeviation
from time_parsing import extract_time_hhmmss, normalize_date_key, normalize_gap_boundary

GAP_KEY_PREFIX = "gap"
DEVIATION_KEY_PREFIX = "dev"

# --------------------------- Helpers ---------------------------

def _norm(s: str) -> str:
    return re.sub(r'[\s_.]+', '', str(s).strip().lower())


def canonicalize_motive(motive_id, motive_desc: str = "") -> str:
    """
    Canonical buckets for absence motives:
      - 'special_task'           => assigned-task time, never generic justification
      - 'vacation_prior_year'    => vacation code 8 carried over from last year
      - the MOTIVE_CATEGORIES name for every other known code
      - 'other'                  => unknown codes
    """
    desc = str(motive_desc or "").upper()
    if motive_id == SPECIAL_TASK_MOTIVE or SPECIAL_TASK_TOKEN in desc:
        return 'special_task'
    try:
        code = int(motive_id)
    except (TypeError, ValueError):
        return 'other'
    if code == 8 and 'ANTERIOR' in desc:
        return 'vacation_prior_year'
    return MOTIVE_CATEGORIES.get(code, 'other')


def is_special_task(interval: JustifiedInterval) -> bool:
    return canonicalize_motive(interval.motive_id, interval.motive_desc) == 'special_task'


def unique_intervals(intervals: Iterable[JustifiedInterval]) -> List[JustifiedInterval]:
    """Drops intervals repeating the same date, bounds and motive, keeping the first seen."""
    seen = set()
    unique = []
    for interval in intervals:
        key = (interval.date, interval.start[:5], interval.end[:5], interval.motive_id)
        if key in seen:
            continue
        seen.add(key)
        unique.append(interval)
    return unique


def _interval_minutes(interval: JustifiedInterval) -> int:
    """Interval length in minutes; an end before the start rolls over midnight."""
    return interval.duration_minutes


# --------------------------- Justified hours ---------------------------

def compute_justified_hours(base, intervals: Iterable[JustifiedInterval]) -> float:
    """
    Combines the externally computed justified hours with the justified intervals.

    The intervals (assigned-task ones excluded) are summed in minutes and rounded
    to 2 decimals as `inferred`. A missing or non-positive base yields `inferred`,
    a non-positive `inferred` yields the base, and otherwise the larger of the two
    wins so neither source can under-report the other.

    Args:
        base: Justified hours reported by the source system; may be None or NaN.
        intervals (Iterable[JustifiedInterval]): Justifications for the same employee and period.

    Returns:
        float: Justified hours.
    """
    minutes = sum(_interval_minutes(i) for i in intervals if not is_special_task(i))
    inferred = minutes_to_hours(minutes)

    try:
        base_value = float(base)
    except (TypeError, ValueError):
        base_value = float('nan')

    if not math.isfinite(base_value) or base_value <= 0:
        return inferred
    if inferred <= 0:
        return round_hours(base_value)
    return round_hours(max(base_value, inferred))


def compute_special_task_hours(intervals: Iterable[JustifiedInterval]) -> Tuple[int, float]:
    """Count and hours of assigned-task intervals, each distinct interval counted once."""
    tasks = unique_intervals(i for i in intervals if is_special_task(i))
    return len(tasks), minutes_to_hours(sum(_interval_minutes(i) for i in tasks))


def motive_hours(intervals: Iterable[JustifiedInterval]) -> Dict[str, float]:
    """Justified hours per motive category, rounded once per category."""
    minutes_by_category: Dict[str, int] = {}
    for interval in unique_intervals(intervals):
        category = canonicalize_motive(interval.motive_id, interval.motive_desc)
        if category == 'special_task':
            continue
        minutes_by_category[category] = minutes_by_category.get(category, 0) + _interval_minutes(interval)
    return {category: minutes_to_hours(total) for category, total in sorted(minutes_by_category.items())}


def remaining_credits(hours_by_category: Mapping[str, float], standard_shift_hours: float = 8) -> Dict[str, float]:
    """
    Yearly allowance left per credited category after this period's usage.
    Vacation is tracked in days (hours / standard shift hours).
    """
    remaining = {}
    for category, credit in ANNUAL_CREDITS.items():
        used = hours_by_category.get(category, 0.0)
        if category == 'vacation':
            used = used / standard_shift_hours
        remaining[category] = round_hours(credit - used)
    return remaining


# --------------------------- Incident keys ---------------------------

def gap_key(employee_id, day, start, end) -> str:
    """Stable identity of a gap; boundaries ignore the next-day suffix and seconds."""
    return (f"{GAP_KEY_PREFIX}-{employee_id}-{normalize_date_key(day)}-"
            f"{normalize_gap_boundary(start)}-{normalize_gap_boundary(end)}")


def deviation_key(employee_id, day) -> str:
    return f"{DEVIATION_KEY_PREFIX}-{employee_id}-{normalize_date_key(day)}"


def parse_incident_key(key: str) -> Optional[Tuple[str, str]]:
    """Returns (kind, employee_id) of an incident key, or None when it is not one."""
    parts = str(key).split('-')
    if len(parts) < 3 or parts[0] not in (GAP_KEY_PREFIX, DEVIATION_KEY_PREFIX):
        return None
    return parts[0], parts[1]


def split_resolved(employee_id, gaps: Iterable[UnjustifiedGap], deviations: Iterable[WorkdayDeviation],
                   justified_incidents: Optional[Mapping[str, int]] = None):
    """
    Separates anomalies a person has already justified from the pending ones.

    Args:
        employee_id: The employee the anomalies belong to.
        gaps, deviations: Detected anomalies.
        justified_incidents (Mapping[str, int]): Caller-held IncidentKey -> motive map. Read only.

    Returns:
        tuple: (pending_gaps, pending_deviations, resolved_keys)
    """
    justified_incidents = justified_incidents or {}
    pending_gaps, pending_deviations, resolved = [], [], []
    for gap in gaps:
        key = gap_key(employee_id, gap.date, gap.start, gap.end)
        if key in justified_incidents:
            resolved.append(key)
        else:
            pending_gaps.append(gap)
    for deviation in deviations:
        key = deviation_key(employee_id, deviation.date)
        if key in justified_incidents:
            resolved.append(key)
        else:
            pending_deviations.append(deviation)
    return pending_gaps, pending_deviations, resolved


def summarize_justified_incidents(justified_incidents: Mapping[str, int]) -> Dict[str, dict]:
    """Per employee: how many incidents were justified and with which motives."""
    summary: Dict[str, dict] = {}
    for key, motive_id in (justified_incidents or {}).items():
        parsed = parse_incident_key(key)
        if parsed is None:
            continue
        _, employee_id = parsed
        entry = summary.setdefault(employee_id, {'count': 0, 'motive_ids': set()})
        entry['count'] += 1
        if motive_id is not None:
            entry['motive_ids'].add(motive_id)
    return summary


# --------------------------- Leave ranges ---------------------------

def group_leave_ranges(events: Iterable[RawPunchEvent]) -> List[LeaveRange]:
    """
    Groups absence rows into leave ranges: same employee and motive on consecutive dates.
    """
    rows = sorted((e for e in events if e.is_absence_exit),
                  key=lambda e: (e.employee_id, e.motive_code, e.date))

    ranges: List[LeaveRange] = []
    current: List[RawPunchEvent] = []

    def _close(group: List[RawPunchEvent]):
        first, last = group[0], group[-1]
        ranges.append(LeaveRange(
            employee_id=first.employee_id,
            motive_id=first.motive_code,
            motive_desc=first.motive_desc,
            start_date=first.date,
            end_date=last.date,
            start_time=first.time_of_day,
            end_time=extract_time_hhmmss(last.range_end) or None,
            is_full_day=first.minute_of_day == 0 and not first.range_start,
            dates=tuple(sorted({e.date for e in group})),
        ))

    for row in rows:
        if current:
            prev = current[-1]
            same_leave = (row.employee_id == prev.employee_id and row.motive_code == prev.motive_code
                          and (date.fromisoformat(row.date) - date.fromisoformat(prev.date)).days <= 1)
            if not same_leave:
                _close(current)
                current = []
        current.append(row)
    if current:
        _close(current)
    return ranges


def expand_leave_range(leave: LeaveRange, employee_name: str = "", department: str = "") -> List[RawPunchEvent]:
    """Turns a leave range back into one absence row per calendar day."""
    start = date.fromisoformat(leave.start_date)
    end = date.fromisoformat(leave.end_date)
    rows = []
    current = start
    while current <= end:
        if leave.is_full_day:
            time_of_day, range_start, range_end = '00:00:00', None, None
        else:
            time_of_day = leave.start_time
            range_start, range_end = leave.start_time, leave.end_time
        rows.append(RawPunchEvent(
            employee_id=leave.employee_id,
            date=current.strftime('%Y-%m-%d'),
            time_of_day=time_of_day,
            is_entry=False,
            motive_code=leave.motive_id,
            motive_desc=leave.motive_desc,
            range_start=range_start,
            range_end=range_end,
            employee_name=employee_name,
            department=department,
        ))
        current += timedelta(days=1)
    return rows


# --------------------------- Justification workbook ---------------------------

def load_justification_file(source) -> Dict[int, List[JustifiedInterval]]:
    """
    Reads an HR justification workbook (CSV or Excel, every sheet).

    Each data row names an employee, a date, start and end times and a motive.
    The header row is detected by keywords; sheets without an id column are skipped.

    Args:
        source: A path or a file-like object with a `name`.

    Returns:
        dict[int, list[JustifiedInterval]]: Intervals by employee id.
    """
    if source is None:
        return {}

    name = str(getattr(source, 'name', source))
    extension = os.path.splitext(name)[1].lower()
    if extension in ('.xlsx', '.xls'):
        is_excel = True
    elif extension == '.csv':
        is_excel = False
    else:
        raise ValueError(f"Unsupported file type for '{name}'. Only .csv, .xls, and .xlsx are supported.")

    try:
        sheet_names = pd.ExcelFile(source).sheet_names if is_excel else ["CSV_Data"]
    except (OSError, ValueError) as e:
        raise ValueError(f"Failed to open justification file: {e}")

    intervals: Dict[int, List[JustifiedInterval]] = {}
    for sheet in sheet_names:
        try:
            if is_excel:
                raw = pd.read_excel(source, sheet_name=sheet, header=None, nrows=15)
            else:
                if hasattr(source, 'seek'):
                    source.seek(0)
                raw = pd.read_csv(source, header=None, nrows=15)

            header_row_idx = None
            header_keywords = ["operario", "employee", "id", "no.", "fecha", "date"]
            for i, row in raw.iterrows():
                row_str = " ".join(row.astype(str).str.lower().fillna(""))
                if any(k in row_str for k in header_keywords):
                    header_row_idx = i
                    break
            if header_row_idx is None:
                if raw.empty:
                    continue
                header_row_idx = 0

            if is_excel:
                df = pd.read_excel(source, sheet_name=sheet, header=header_row_idx)
            else:
                if hasattr(source, 'seek'):
                    source.seek(0)
                df = pd.read_csv(source, header=header_row_idx)
            if df.empty:
                continue

            norm_map = {_norm(c): c for c in df.columns}

            def get_col(candidates):
                for c in candidates:
                    n = _norm(c)
                    if n in norm_map:
                        return norm_map[n]
                return None

            id_col = get_col(['IDOperario', 'no.', 'id', 'employee', 'employeeid', 'emp id'])
            date_col = get_col(['Fecha', 'date', 'day'])
            start_col = get_col(['Inicio', 'start', 'from', 'desde'])
            end_col = get_col(['Fin', 'end', 'to', 'hasta'])
            motive_col = get_col(['IDMotivo', 'MotivoAusencia', 'motive', 'motive id', 'code'])
            desc_col = get_col(['DescMotivoAusencia', 'description', 'desc', 'reason'])
            if not (id_col and date_col and start_col and end_col):
                logging.warning(f"Sheet '{sheet}' has no id/date/start/end columns; skipped")
                continue

            skipped = 0
            for _, row in df.iterrows():
                employee_id = pd.to_numeric(row[id_col], errors='coerce')
                day = normalize_date_key(row[date_col])
                start = extract_time_hhmmss(row[start_col])
                end = extract_time_hhmmss(row[end_col])
                if pd.isna(employee_id) or not day or not start or not end:
                    skipped += 1
                    continue
                motive = pd.to_numeric(row[motive_col], errors='coerce') if motive_col else float('nan')
                desc = row[desc_col] if desc_col else ""
                intervals.setdefault(int(employee_id), []).append(JustifiedInterval(
                    date=day,
                    start=start[:5],
                    end=end[:5],
                    end_is_next_day=end < start,
                    motive_id=None if pd.isna(motive) else int(motive),
                    motive_desc="" if pd.isna(desc) else str(desc),
                    source="external",
                ))
            if skipped:
                logging.warning(f"Sheet '{sheet}': skipped {skipped} rows with unparseable id, date or times")

        except (KeyError, ValueError, pd.errors.ParserError) as e:
            logging.warning(f"Error processing sheet '{sheet}': {e}")
            continue

    return intervals
