import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set, Tuple

from config import (
    ENGINE_CONFIGS,
    SPECIAL_TASK_MOTIVE,
    SPECIAL_TASK_TOKEN,
    minutes_to_time,
    time_to_minutes,
)
from models import DayType, JustifiedInterval, RawPunchEvent, TimeSlice
from shift_resolution import ShiftResolver, consolidation_resolver, shift_bounds

# Entry/exit times within this many minutes of a registered absence range form a synthetic pair
SYNTHETIC_MATCH_MINUTES = 1
DAY_MINUTES = 24 * 60


@dataclass
class DayConsolidation:
    """Everything the detector and aggregator need about one employee-day."""
    date: str
    shift: str
    day_type: DayType = DayType.REGULAR
    is_festive: bool = False
    slices: List[TimeSlice] = field(default_factory=list)
    punch_justifications: List[JustifiedInterval] = field(default_factory=list)
    special_task_intervals: List[JustifiedInterval] = field(default_factory=list)
    has_entries: bool = False
    event_count: int = 0

    @property
    def bounds(self) -> Tuple[int, int]:
        return shift_bounds(self.shift)

    @property
    def worked_slices(self) -> List[TimeSlice]:
        """Closed slices backed by real punches."""
        return [s for s in self.slices if not s.is_synthetic and not s.is_open]

    @property
    def has_open_slice(self) -> bool:
        return any(s.is_open for s in self.slices)


# --- Interval arithmetic ---

def merge_time_ranges(ranges: Iterable[Tuple[int, int]]) -> List[Tuple[int, int]]:
    """Merges overlapping or touching (start, end) minute ranges into a sorted union."""
    ordered = sorted((s, e) for s, e in ranges if e > s)
    merged: List[Tuple[int, int]] = []
    for start, end in ordered:
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def subtract_ranges(span: Tuple[int, int], covers: Iterable[Tuple[int, int]]) -> List[Tuple[int, int]]:
    """Parts of `span` not covered by any of `covers`."""
    remaining = []
    cursor, end = span
    for cover_start, cover_end in merge_time_ranges(covers):
        if cover_end <= cursor or cover_start >= end:
            continue
        if cover_start > cursor:
            remaining.append((cursor, cover_start))
        cursor = max(cursor, cover_end)
        if cursor >= end:
            break
    if cursor < end:
        remaining.append((cursor, end))
    return remaining


def on_shift_axis(minute: int, bounds: Tuple[int, int]) -> int:
    """Moves early-morning minutes past 1440 when the shift crosses midnight."""
    start, end = bounds
    if end > DAY_MINUTES and minute < start and minute + DAY_MINUTES <= end + 12 * 60:
        return minute + DAY_MINUTES
    return minute


def _interval_from_minutes(day: str, start: int, end: int, motive_id, motive_desc: str,
                           is_synthetic: bool = False) -> JustifiedInterval:
    return JustifiedInterval(
        date=day,
        start=minutes_to_time(start),
        end=minutes_to_time(end),
        end_is_next_day=end >= DAY_MINUTES and start < DAY_MINUTES,
        motive_id=motive_id,
        motive_desc=motive_desc or "",
        is_synthetic=is_synthetic,
        source="punch",
    )


def _event_datetime(event: RawPunchEvent) -> datetime:
    """Punch instant; accepts HH:MM and HH:MM:SS times (seconds are ignored for pairing)."""
    return datetime.combine(date.fromisoformat(event.date), datetime.min.time()) + timedelta(minutes=event.minute_of_day)


def _parse_range_minute(value) -> Optional[int]:
    if value is None:
        return None
    text = str(value).strip()
    if 'T' in text:
        text = text.split('T', 1)[1]
    elif ' ' in text:
        text = text.split(' ')[-1]
    try:
        return time_to_minutes(text)
    except (TypeError, ValueError):
        return None


def is_synthetic_pair(entry: RawPunchEvent, exit_event: RawPunchEvent) -> bool:
    """An entry/exit pair that merely restates the exit's registered absence range."""
    if exit_event.is_plain_exit:
        return False
    range_start = _parse_range_minute(exit_event.range_start)
    range_end = _parse_range_minute(exit_event.range_end)
    if range_start is None or range_end is None:
        return False
    return (abs(entry.minute_of_day - range_start) <= SYNTHETIC_MATCH_MINUTES
            and abs(exit_event.minute_of_day - range_end) <= SYNTHETIC_MATCH_MINUTES)


def _is_festive(day: str, day_type: DayType, holidays: Optional[Set[str]], rules: dict) -> bool:
    if day_type == DayType.HOLIDAY:
        return True
    if holidays and day in holidays:
        return True
    weekday = date.fromisoformat(day).weekday()
    return weekday in rules.get("festive_weekdays", [])


# --- Consolidation ---

def _pair_slices(ordered: List[RawPunchEvent], max_pairing: timedelta) -> Dict[str, List[TimeSlice]]:
    """
    Pairs each entry with the next exit, stopping at an intervening entry.
    Slices are attributed to the entry's date.
    """
    slices_by_day: Dict[str, List[TimeSlice]] = {}
    i = 0
    while i < len(ordered):
        entry = ordered[i]
        if not entry.is_entry:
            i += 1
            continue

        match_index = None
        for j in range(i + 1, len(ordered)):
            candidate = ordered[j]
            if candidate.is_entry:
                break
            if _event_datetime(candidate) - _event_datetime(entry) <= max_pairing:
                match_index = j
            break

        start = entry.time_of_day[:5]
        if match_index is None:
            logging.debug(f"Employee {entry.employee_id}: entry {entry.date} {start} has no clock-out")
            slices_by_day.setdefault(entry.date, []).append(
                TimeSlice(date=entry.date, start=start, end=None, missing_clock_out=True)
            )
            i += 1
            continue

        exit_event = ordered[match_index]
        slices_by_day.setdefault(entry.date, []).append(
            TimeSlice(
                date=entry.date,
                start=start,
                end=exit_event.time_of_day[:5],
                is_synthetic=is_synthetic_pair(entry, exit_event),
                end_is_next_day=exit_event.date != entry.date,
            )
        )
        i = match_index + 1
    return slices_by_day


def _next_entry_minute(ordered: List[RawPunchEvent], index: int, bounds: Tuple[int, int]) -> Optional[int]:
    """Minute (on the exit day's shift axis) of the next entry after `index`, if it falls that day or the next."""
    exit_event = ordered[index]
    exit_day = date.fromisoformat(exit_event.date)
    for later in ordered[index + 1:]:
        if not later.is_entry:
            continue
        later_day = date.fromisoformat(later.date)
        if later_day == exit_day:
            return on_shift_axis(later.minute_of_day, bounds)
        if later_day == exit_day + timedelta(days=1) and bounds[1] > DAY_MINUTES:
            return later.minute_of_day + DAY_MINUTES
        return None
    return None


def _absence_interval(ordered: List[RawPunchEvent], index: int, bounds: Tuple[int, int]) -> Optional[JustifiedInterval]:
    """Justified span registered by an absence exit, clamped to the shift window."""
    exit_event = ordered[index]
    shift_start, shift_end = bounds
    range_start = _parse_range_minute(exit_event.range_start)
    range_end = _parse_range_minute(exit_event.range_end)
    exit_minute = on_shift_axis(exit_event.minute_of_day, bounds)

    if range_start is not None and range_end is not None:
        start = on_shift_axis(range_start, bounds)
        end = on_shift_axis(range_end, bounds)
        if end < start:
            end += DAY_MINUTES
    elif exit_event.minute_of_day == 0:
        # Whole-day absence registered at midnight
        start, end = shift_start, shift_end
    else:
        start = exit_minute
        next_entry = _next_entry_minute(ordered, index, bounds)
        end = next_entry if next_entry is not None and next_entry > start else shift_end

    start, end = max(start, shift_start), min(end, shift_end)
    if end <= start:
        return None
    return _interval_from_minutes(exit_event.date, start, end, exit_event.motive_code,
                                  exit_event.motive_desc, is_synthetic=range_start is not None)


def _special_task_interval(ordered: List[RawPunchEvent], index: int, bounds: Tuple[int, int],
                           max_hours: float) -> Optional[JustifiedInterval]:
    """Assigned-task time from a motive-14 exit until the return punch, or shift end without one."""
    exit_event = ordered[index]
    range_start = _parse_range_minute(exit_event.range_start)
    range_end = _parse_range_minute(exit_event.range_end)
    if range_start is not None and range_end is not None:
        start = on_shift_axis(range_start, bounds)
        end = on_shift_axis(range_end, bounds)
        if end < start:
            end += DAY_MINUTES
    else:
        start = on_shift_axis(exit_event.minute_of_day, bounds)
        next_entry = _next_entry_minute(ordered, index, bounds)
        end = next_entry if next_entry is not None and next_entry > start else bounds[1]

    duration = end - start
    if not 0 < duration < max_hours * 60:
        logging.debug(f"Employee {exit_event.employee_id}: special task on {exit_event.date} ignored ({duration} min)")
        return None
    return _interval_from_minutes(exit_event.date, start, end, SPECIAL_TASK_MOTIVE,
                                  exit_event.motive_desc or SPECIAL_TASK_TOKEN)


def consolidate_employee(events: Iterable[RawPunchEvent], resolver: Optional[ShiftResolver] = None,
                         holidays: Optional[Set[str]] = None, rules: Optional[dict] = None) -> List[DayConsolidation]:
    """
    Consolidates one employee's punches into per-day slices and punch-derived intervals.

    Args:
        events (Iterable[RawPunchEvent]): All punches of a single employee.
        resolver (ShiftResolver): Day shift resolution chain. Defaults to the consolidation chain.
        holidays (set[str] | None): Company holiday dates ('YYYY-MM-DD').
        rules (dict | None): Effective rules for the employee.

    Returns:
        list[DayConsolidation]: One entry per date with events, in date order.
    """
    rules = rules or ENGINE_CONFIGS["default_rules"]
    resolver = resolver or consolidation_resolver()

    # Stable sort keeps the original order for identical timestamps
    ordered = sorted(events, key=lambda e: (e.date, e.time_of_day))
    if not ordered:
        return []

    events_by_day: Dict[str, List[RawPunchEvent]] = {}
    for event in ordered:
        events_by_day.setdefault(event.date, []).append(event)

    days: Dict[str, DayConsolidation] = {}
    for day, day_events in events_by_day.items():
        day_type = DayType.REGULAR
        for event in day_events:
            if event.day_type != DayType.REGULAR:
                day_type = event.day_type
                break
        days[day] = DayConsolidation(
            date=day,
            shift=resolver.resolve_day(day_events) or "M",
            day_type=day_type,
            is_festive=_is_festive(day, day_type, holidays, rules),
            has_entries=any(e.is_entry for e in day_events),
            event_count=len(day_events),
        )

    max_pairing = timedelta(hours=rules.get("max_pairing_hours", 20))
    for day, slices in _pair_slices(ordered, max_pairing).items():
        consolidation = days[day]
        consolidation.slices = [
            TimeSlice(
                date=s.date, start=s.start, end=s.end, is_synthetic=s.is_synthetic,
                end_is_next_day=s.end_is_next_day, missing_clock_out=s.missing_clock_out,
                is_festive=consolidation.is_festive,
            )
            for s in slices
        ]

    max_task_hours = rules.get("max_special_task_hours", 9)
    for index, event in enumerate(ordered):
        if event.is_entry or event.is_plain_exit:
            continue
        consolidation = days[event.date]
        if event.is_special_task_exit:
            interval = _special_task_interval(ordered, index, consolidation.bounds, max_task_hours)
            if interval is not None:
                consolidation.special_task_intervals.append(interval)
        else:
            interval = _absence_interval(ordered, index, consolidation.bounds)
            if interval is not None:
                consolidation.punch_justifications.append(interval)

    return [days[day] for day in sorted(days)]
