import logging
from collections import Counter
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from config import (
    DEFAULT_SHIFT,
    SHIFT_INFERENCE_WINDOWS,
    SHIFT_SPECS,
    VIRTUAL_SHIFT_CODES,
    time_to_minutes,
)
from models import RawPunchEvent

# A strategy looks at one punch and either names a shift code or passes (None).
ShiftStrategy = Callable[[RawPunchEvent], Optional[str]]

# Weight applied to arrivals before a shift start when guessing the nearest shift
EARLY_ARRIVAL_PENALTY = 3
# Shifts with punch snapping windows
SNAP_SHIFT_CODES = ('M', 'TN')


def canonical_shift_code(label) -> Optional[str]:
    """
    Maps a free-text shift label to 'M', 'TN', 'N' or 'C'.
    Day-off codes and unknown labels return None.
    """
    if label is None:
        return None
    text = str(label).strip().upper()
    if not text or text == 'NAN' or text in VIRTUAL_SHIFT_CODES:
        return None
    if text in ('TN', 'T', 'TARDE') or 'TARDE' in text:
        return 'TN'
    if text in ('N', 'NOCHE') or 'NOCHE' in text:
        return 'N'
    if text == 'C' or text.startswith('CENTRAL'):
        return 'C'
    if text.startswith('M'):
        return 'M'
    return None


def from_assignment(assignments: Optional[Dict], allowed: Optional[Iterable[str]] = None) -> ShiftStrategy:
    """
    Strategy reading an explicit employee -> shift assignment map.
    With `allowed`, assignments to any other shift pass to the next strategy.
    """
    assignments = assignments or {}
    allowed = set(allowed) if allowed is not None else None

    def _resolve(event: RawPunchEvent) -> Optional[str]:
        label = assignments.get(event.employee_id, assignments.get(str(event.employee_id)))
        code = canonical_shift_code(label)
        if allowed is not None and code not in allowed:
            return None
        return code

    return _resolve


def from_shift_label(event: RawPunchEvent) -> Optional[str]:
    return canonical_shift_code(event.shift_label)


def from_snap_label(event: RawPunchEvent) -> Optional[str]:
    """Event label read as a snapping shift: night labels use the afternoon windows, others pass."""
    code = canonical_shift_code(event.shift_label)
    if code == 'N':
        return 'TN'
    return code if code in SNAP_SHIFT_CODES else None


def from_punch_window(event: RawPunchEvent) -> Optional[str]:
    """Guesses morning/afternoon from the hour of an entry or plain exit."""
    if event.is_entry:
        windows = SHIFT_INFERENCE_WINDOWS["ENTRY"]
    elif event.is_plain_exit:
        windows = SHIFT_INFERENCE_WINDOWS["EXIT"]
    else:
        return None
    hour = event.minute_of_day // 60
    for code, first_hour, last_hour in windows:
        if first_hour <= hour <= last_hour:
            return code
    return None


def from_nearest_start(event: RawPunchEvent) -> Optional[str]:
    """Picks the shift whose start is closest to an entry, penalizing early arrivals."""
    if not event.is_entry:
        return None
    minute = event.minute_of_day
    best_code, best_distance = None, None
    for code in ('M', 'TN', 'N'):
        start = time_to_minutes(SHIFT_SPECS[code]['start'])
        diff = minute - start
        # Compare on a circular clock so 00:30 is near a 23:00 start
        if diff > 12 * 60:
            diff -= 24 * 60
        elif diff < -12 * 60:
            diff += 24 * 60
        distance = abs(diff) * EARLY_ARRIVAL_PENALTY if diff < 0 else diff
        if best_distance is None or distance < best_distance:
            best_code, best_distance = code, distance
    return best_code


class ShiftResolver:
    """
    Resolves a shift for a punch by trying strategies in order.
    The first strategy returning a code wins; when all pass, `default` is used.
    """

    def __init__(self, strategies: Iterable[ShiftStrategy], default: Optional[str] = DEFAULT_SHIFT):
        self.strategies = list(strategies)
        self.default = default

    def resolve(self, event: RawPunchEvent) -> Optional[str]:
        for strategy in self.strategies:
            code = strategy(event)
            if code:
                return code
        logging.debug(f"No shift strategy matched employee {event.employee_id} on {event.date}; using {self.default}")
        return self.default

    def resolve_day(self, events: List[RawPunchEvent]) -> Optional[str]:
        """Resolves a day's shift from its first entry, or its first event when there is no entry."""
        if not events:
            return self.default
        anchor = next((e for e in events if e.is_entry), events[0])
        return self.resolve(anchor)


def consolidation_resolver(assignments: Optional[Dict] = None) -> ShiftResolver:
    """Resolver used when building day slices: assignment, label, nearest shift start."""
    return ShiftResolver([from_assignment(assignments), from_shift_label, from_nearest_start])


def normalizer_resolver(assignments: Optional[Dict] = None) -> ShiftResolver:
    """
    Resolver used for punch snapping: assignment, label, punch-hour windows.
    Only morning and afternoon have snap windows, so every strategy yields M, TN or nothing.
    """
    return ShiftResolver(
        [from_assignment(assignments, allowed=SNAP_SHIFT_CODES), from_snap_label, from_punch_window],
        default=None,
    )


def shift_bounds(code: Optional[str]) -> Tuple[int, int]:
    """
    Start/end minutes of a shift on its start day's axis.
    Shifts crossing midnight end past 1440. Unknown codes fall back to the default shift.
    """
    spec = SHIFT_SPECS.get(code or DEFAULT_SHIFT, SHIFT_SPECS[DEFAULT_SHIFT])
    start = time_to_minutes(spec['start'])
    end = time_to_minutes(spec['end'])
    if end <= start:
        end += 24 * 60
    return start, end


def assigned_shift_for(day_shifts: Iterable[str], explicit: Optional[str] = None) -> str:
    """
    The employee's assigned shift for a period: the explicit assignment when given,
    otherwise TN when more days were worked on TN than on M, else M.
    """
    explicit_code = canonical_shift_code(explicit)
    if explicit_code:
        return explicit_code
    counts = Counter(day_shifts)
    return 'TN' if counts.get('TN', 0) > counts.get('M', 0) else 'M'
