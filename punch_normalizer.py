import logging
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Set

import pandas as pd

from config import HOLIDAY_TARGET_RANGES, REGULAR_SNAP_RULES, time_to_minutes
from models import AdjustmentCandidate, DayType, PunchKind, RawPunchEvent
from shift_resolution import ShiftResolver, normalizer_resolver


def _target_time(anchor: str) -> str:
    return f"{anchor[:5]}:00"


def _in_window(minute: int, rule: dict) -> bool:
    low, high = time_to_minutes(rule['min']), time_to_minutes(rule['max'])
    above_low = minute >= low if rule.get('min_inclusive', True) else minute > low
    below_high = minute <= high if rule.get('max_inclusive', True) else minute < high
    return above_low and below_high


def _punch_kind(event: RawPunchEvent) -> Optional[PunchKind]:
    if event.is_entry:
        return PunchKind.ENTRY
    if event.is_plain_exit:
        return PunchKind.EXIT
    return None


def holiday_target(event: RawPunchEvent, kind: PunchKind) -> Optional[str]:
    """
    Anchor for a holiday punch: the first window in HOLIDAY_TARGET_RANGES that
    matches the punch kind and contains its minute. Punches already on the anchor are left alone.
    """
    minute = event.minute_of_day
    for window in HOLIDAY_TARGET_RANGES:
        if window['kind'] != kind.value:
            continue
        if not _in_window(minute, window):
            continue
        if minute == time_to_minutes(window['target']):
            return None
        return window['target']
    return None


def regular_target(event: RawPunchEvent, kind: PunchKind, shift_code: Optional[str]) -> Optional[str]:
    """Anchor for a regular-day punch inside its shift's one-sided tolerance window (M and TN only)."""
    rule = REGULAR_SNAP_RULES.get(shift_code, {}).get(kind.value)
    if rule is None or not _in_window(event.minute_of_day, rule):
        return None
    if event.minute_of_day == time_to_minutes(rule['target']):
        return None
    return rule['target']


def find_adjustment_candidates(events: List[RawPunchEvent], assigned_shifts: Optional[Dict] = None,
                               flexible_employee_ids: Optional[Iterable] = None,
                               resolver: Optional[ShiftResolver] = None) -> List[AdjustmentCandidate]:
    """
    Proposes snapped punch times for entries and plain exits near a shift boundary.

    Holiday punches snap to the fixed holiday anchors. Regular punches resolve a
    shift (assignment map, event label, punch-hour inference) and snap only early
    entries and late exits.

    Args:
        events (list[RawPunchEvent]): Raw punches for the period, in feed order.
        assigned_shifts (dict): employee_id -> shift label.
        flexible_employee_ids: Employees exempt from snapping.
        resolver (ShiftResolver): Overrides the default resolution chain.

    Returns:
        list[AdjustmentCandidate]: One candidate at most per event, in event order.
    """
    flexible: Set[str] = {str(e) for e in (flexible_employee_ids or [])}
    resolver = resolver or normalizer_resolver(assigned_shifts)

    candidates = []
    for index, event in enumerate(events):
        if str(event.employee_id) in flexible:
            continue
        kind = _punch_kind(event)
        if kind is None:
            continue

        if event.day_type == DayType.HOLIDAY:
            target = holiday_target(event, kind)
        else:
            target = regular_target(event, kind, resolver.resolve(event))

        if target is None:
            continue
        candidates.append(AdjustmentCandidate(
            employee_id=event.employee_id,
            date=event.date,
            original_time=event.time_of_day,
            target_time=_target_time(target),
            kind=kind,
            event_index=index,
        ))

    logging.info(f"Punch normalizer proposed {len(candidates)} adjustments over {len(events)} events")
    return candidates


def apply_adjustments(events: List[RawPunchEvent], candidates: Iterable[AdjustmentCandidate],
                      selected: Optional[Iterable[AdjustmentCandidate]] = None) -> List[RawPunchEvent]:
    """
    Applies the selected candidates and returns a new event list.

    Only `time_of_day` of each selected event changes; the input list is not modified.
    A candidate whose event no longer matches (different employee, date or time)
    is stale and skipped.
    """
    chosen = list(candidates) if selected is None else list(selected)
    adjusted = list(events)
    for candidate in chosen:
        index = candidate.event_index
        if not 0 <= index < len(adjusted):
            logging.warning(f"Skipping adjustment for employee {candidate.employee_id}: event index {index} out of range")
            continue
        event = events[index]
        if (event.employee_id != candidate.employee_id or event.date != candidate.date
                or event.time_of_day != candidate.original_time):
            logging.warning(
                f"Skipping stale adjustment for employee {candidate.employee_id} on {candidate.date} "
                f"({candidate.original_time} -> {candidate.target_time})"
            )
            continue
        adjusted[index] = replace(event, time_of_day=candidate.target_time)
    return adjusted


def candidates_to_dataframe(candidates: Iterable[AdjustmentCandidate]) -> pd.DataFrame:
    """Preview table of proposed adjustments."""
    rows = [
        {
            'Employee': c.employee_id,
            'Date': c.date,
            'Kind': c.kind.value,
            'Original Time': c.original_time,
            'Target Time': c.target_time,
        }
        for c in candidates
    ]
    return pd.DataFrame(rows, columns=['Employee', 'Date', 'Kind', 'Original Time', 'Target Time'])
