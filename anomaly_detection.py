import logging
from datetime import date
from typing import Iterable, List, Optional, Set, Tuple

from config import ENGINE_CONFIGS, minutes_to_hours, minutes_to_time, time_to_minutes
from consolidation import DayConsolidation, merge_time_ranges, on_shift_axis, subtract_ranges
from holiday_calendar import expected_working_days
from models import DayType, JustifiedInterval, ShiftChange, TimeSlice, UnjustifiedGap, WorkdayDeviation
from time_parsing import NEXT_DAY_SUFFIX

DAY_MINUTES = 24 * 60


def _slice_axis_range(time_slice: TimeSlice, bounds: Tuple[int, int]) -> Optional[Tuple[int, int]]:
    minute_range = time_slice.minute_range()
    if minute_range is None:
        return None
    start = on_shift_axis(minute_range[0], bounds)
    return start, start + (minute_range[1] - minute_range[0])


def _interval_axis_range(interval: JustifiedInterval, bounds: Tuple[int, int]) -> Tuple[int, int]:
    start, end = interval.minute_range()
    axis_start = on_shift_axis(start, bounds)
    return axis_start, axis_start + (end - start)


def coverage_for_day(day: DayConsolidation, external: Iterable[JustifiedInterval] = ()) -> List[Tuple[int, int]]:
    """
    Minute ranges of the day that are already explained: external and punch-derived
    justifications, special-task time and synthetic slices.
    """
    bounds = day.bounds
    covers = [_interval_axis_range(i, bounds) for i in external if i.date == day.date]
    covers += [_interval_axis_range(i, bounds) for i in day.punch_justifications]
    covers += [_interval_axis_range(i, bounds) for i in day.special_task_intervals]
    for time_slice in day.slices:
        if time_slice.is_synthetic:
            synthetic = _slice_axis_range(time_slice, bounds)
            if synthetic:
                covers.append(synthetic)
    return merge_time_ranges(covers)


def time_slice_minute(time_slice: TimeSlice) -> int:
    return time_to_minutes(time_slice.start)


def _format_gap_end(minute: int) -> str:
    text = minutes_to_time(minute)
    return text + NEXT_DAY_SUFFIX if minute >= DAY_MINUTES else text


def detect_unjustified_gaps(day: DayConsolidation, covers: List[Tuple[int, int]],
                            rules: Optional[dict] = None) -> List[UnjustifiedGap]:
    """
    Finds unexplained time inside the shift window for one day.

    Three kinds of span are considered: shift start to a late first slice, holes
    between consecutive slices, and an early last exit to shift end. Justified time
    is subtracted from each span and whatever remains, if long enough, is a gap.
    Festive days report no gaps.

    Args:
        day (DayConsolidation): The consolidated day.
        covers (list[tuple]): Merged justified minute ranges from coverage_for_day.
        rules (dict): Effective rules for the employee.

    Returns:
        list[UnjustifiedGap]: Gaps sorted by start, unique per start time.
    """
    rules = rules or ENGINE_CONFIGS["default_rules"]
    if day.is_festive:
        return []

    bounds = day.bounds
    shift_start, shift_end = bounds
    real_slices = [s for s in day.slices if not s.is_synthetic]
    if not real_slices:
        return []

    closed_ranges = sorted(r for r in (_slice_axis_range(s, bounds) for s in real_slices) if r)
    open_starts = sorted(on_shift_axis(time_slice_minute(s), bounds) for s in real_slices if s.is_open)
    first_start = min([r[0] for r in closed_ranges] + open_starts)

    spans = []
    if first_start - shift_start > rules.get("late_entry_grace_minutes", 2):
        spans.append((shift_start, min(first_start, shift_end)))

    max_gap = rules.get("max_gap_hours", 5) * 60
    for (_, prev_end), (next_start, _) in zip(closed_ranges, closed_ranges[1:]):
        hole = next_start - prev_end
        if 0 < hole < max_gap and prev_end < shift_end and next_start > shift_start:
            spans.append((prev_end, next_start))

    if closed_ranges and not any(s >= closed_ranges[-1][1] for s in open_starts):
        last_end = max(closed_ranges[-1][1], shift_start)
        if last_end < shift_end:
            spans.append((last_end, shift_end))

    gap_min = rules.get("gap_min_minutes", 1)
    gaps = {}
    for span in spans:
        for start, end in subtract_ranges(span, covers):
            if end - start < gap_min:
                continue
            start_text = minutes_to_time(start)
            if start_text not in gaps:
                gaps[start_text] = UnjustifiedGap(date=day.date, start=start_text, end=_format_gap_end(end))
    return [gaps[k] for k in sorted(gaps, key=lambda t: on_shift_axis(time_to_minutes(t), bounds))]


def detect_missing_clock_out(day: DayConsolidation, covers: List[Tuple[int, int]]) -> bool:
    """True when the day has an unclosed entry whose remaining shift time is not justified."""
    open_slices = [s for s in day.slices if s.is_open]
    if not open_slices:
        return False
    shift_end = day.bounds[1]
    for time_slice in open_slices:
        start = on_shift_axis(time_slice_minute(time_slice), day.bounds)
        if start < shift_end and not subtract_ranges((start, shift_end), covers):
            continue
        return True
    return False


def detect_workday_deviation(day: DayConsolidation, covers: List[Tuple[int, int]],
                             rules: Optional[dict] = None) -> Optional[WorkdayDeviation]:
    """
    Compares actual worked boundaries with the shift's canonical boundaries.

    A deviation is recorded when the first start or last end drifts past the
    tolerance, or when the day falls short of the standard shift and nothing
    justifies any part of it. Festive days are skipped. On a day with an open
    slice the end is unknown, so only the first start is compared.
    """
    rules = rules or ENGINE_CONFIGS["default_rules"]
    if day.is_festive:
        return None

    bounds = day.bounds
    shift_start, shift_end = bounds
    ranges = sorted(_slice_axis_range(s, bounds) for s in day.worked_slices)
    open_starts = [on_shift_axis(time_slice_minute(s), bounds)
                   for s in day.slices if s.is_open and not s.is_synthetic]
    if not ranges and not open_starts:
        return None

    actual_start = min([r[0] for r in ranges] + open_starts)
    worked_minutes = sum(e - s for s, e in ranges)
    tolerance = rules.get("deviation_tolerance_minutes", 15)

    if open_starts:
        if abs(actual_start - shift_start) <= tolerance:
            return None
        return WorkdayDeviation(
            date=day.date,
            expected_start=minutes_to_time(shift_start),
            expected_end=minutes_to_time(shift_end),
            actual_start=minutes_to_time(actual_start),
            actual_end=None,
            actual_hours=minutes_to_hours(worked_minutes),
        )

    actual_end = max(r[1] for r in ranges)
    drifted = abs(actual_start - shift_start) > tolerance or abs(actual_end - shift_end) > tolerance

    covered_minutes = sum(e - s for s, e in covers)
    expected_minutes = rules.get("standard_shift_hours", 8) * 60
    short_day = (not covers and
                 worked_minutes + covered_minutes < expected_minutes - rules.get("short_day_tolerance_minutes", 3))

    if not drifted and not short_day:
        return None
    return WorkdayDeviation(
        date=day.date,
        expected_start=minutes_to_time(shift_start),
        expected_end=minutes_to_time(shift_end),
        actual_start=minutes_to_time(actual_start),
        actual_end=_format_gap_end(actual_end),
        actual_hours=minutes_to_hours(worked_minutes),
    )


def detect_absent_days(period_start: date, period_end: date, activity_dates: Set[str],
                       holidays, vacation_dates: Set[str] = frozenset(), rules: Optional[dict] = None,
                       active_from: Optional[date] = None, active_until: Optional[date] = None,
                       employee_id=None) -> List[str]:
    """
    Expected working days with no punch and no justification at all.

    Args:
        period_start (date), period_end (date): The analysed period.
        activity_dates (set[str]): Dates with any punch event or justified interval.
        holidays: HolidayCalendar or set of dates. None means the holiday set is
            unknown, in which case no day is reported absent.
        vacation_dates (set[str]): The employee's vacation dates.
        rules (dict): Effective rules (weekend_days).
        active_from (date), active_until (date): Employment window, when known.

    Returns:
        list[str]: Absent dates in order.
    """
    if holidays is None:
        logging.warning(f"No holiday calendar available; skipping absence detection for employee {employee_id}")
        return []
    rules = rules or ENGINE_CONFIGS["default_rules"]

    absent = []
    for day in expected_working_days(period_start, period_end, holidays, rules.get("weekend_days")):
        day_date = date.fromisoformat(day)
        if active_from and day_date < active_from:
            continue
        if active_until and day_date > active_until:
            continue
        if day in activity_dates or day in vacation_dates:
            continue
        absent.append(day)
    return absent


def detect_vacation_conflicts(days: Iterable[DayConsolidation], vacation_dates: Set[str] = frozenset()) -> List[str]:
    """Vacation days on which the employee still clocked in."""
    return sorted(
        d.date for d in days
        if d.has_entries and (d.day_type == DayType.VACATION or d.date in vacation_dates)
    )


def detect_shift_changes(days: Iterable[DayConsolidation], assigned_shift: str) -> List[ShiftChange]:
    """Worked days whose resolved shift differs from the assigned one."""
    return [
        ShiftChange(date=d.date, shift=d.shift)
        for d in sorted(days, key=lambda d: d.date)
        if d.has_entries and d.shift != assigned_shift
    ]
