"""Record types shared by the reconciliation engine."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, List, Optional, Tuple

from config import PLAIN_PUNCH_MOTIVES, SPECIAL_TASK_MOTIVE, time_to_minutes


class DayType(Enum):
    REGULAR = 0
    HOLIDAY = 1
    VACATION = 2

    @classmethod
    def from_code(cls, code) -> "DayType":
        """Maps an ERP day-type code to a DayType; unknown codes are REGULAR."""
        try:
            return cls(int(code))
        except (TypeError, ValueError):
            return cls.REGULAR


class PunchKind(Enum):
    ENTRY = "ENTRY"
    EXIT = "EXIT"


@dataclass(frozen=True)
class RawPunchEvent:
    """
    One physical punch from the time clock.

    `date` is canonical 'YYYY-MM-DD' and `time_of_day` canonical 'HH:MM:SS'.
    Exits carry the absence motive that explains the time after them;
    `range_start`/`range_end` bound that absence when the ERP registered one.
    """
    employee_id: int
    date: str
    time_of_day: str
    is_entry: bool
    motive_code: Optional[int] = None
    day_type: DayType = DayType.REGULAR
    shift_label: Optional[str] = None
    motive_desc: str = ""
    range_start: Optional[str] = None
    range_end: Optional[str] = None
    employee_name: str = ""
    department: str = ""
    punch_id: Optional[int] = None

    @property
    def minute_of_day(self) -> int:
        return time_to_minutes(self.time_of_day)

    @property
    def is_plain_exit(self) -> bool:
        return not self.is_entry and self.motive_code in PLAIN_PUNCH_MOTIVES

    @property
    def is_special_task_exit(self) -> bool:
        return not self.is_entry and self.motive_code == SPECIAL_TASK_MOTIVE

    @property
    def is_absence_exit(self) -> bool:
        return not self.is_entry and not self.is_plain_exit and not self.is_special_task_exit


@dataclass(frozen=True)
class TimeSlice:
    date: str
    start: str
    end: Optional[str]
    is_synthetic: bool = False
    end_is_next_day: bool = False
    missing_clock_out: bool = False
    is_festive: bool = False

    @property
    def is_open(self) -> bool:
        return self.end is None

    def minute_range(self) -> Optional[Tuple[int, int]]:
        """Start/end minutes on the slice date's axis; None for an open slice."""
        if self.end is None:
            return None
        start = time_to_minutes(self.start)
        end = time_to_minutes(self.end)
        if self.end_is_next_day or end < start:
            end += 24 * 60
        return start, end

    @property
    def duration_minutes(self) -> int:
        bounds = self.minute_range()
        return 0 if bounds is None else bounds[1] - bounds[0]


@dataclass(frozen=True)
class UnjustifiedGap:
    date: str
    start: str
    end: str


@dataclass(frozen=True)
class JustifiedInterval:
    date: str
    start: str
    end: str
    motive_id: Optional[int] = None
    motive_desc: str = ""
    end_is_next_day: bool = False
    is_synthetic: bool = False
    source: str = "external"

    def minute_range(self) -> Tuple[int, int]:
        start = time_to_minutes(self.start)
        end = time_to_minutes(self.end)
        if self.end_is_next_day or end < start:
            end += 24 * 60
        return start, end

    @property
    def duration_minutes(self) -> int:
        start, end = self.minute_range()
        return end - start


@dataclass(frozen=True)
class WorkdayDeviation:
    date: str
    expected_start: str
    expected_end: str
    actual_start: Optional[str]
    actual_end: Optional[str]
    actual_hours: float = 0.0


@dataclass(frozen=True)
class ShiftChange:
    date: str
    shift: str


@dataclass(frozen=True)
class AdjustmentCandidate:
    employee_id: int
    date: str
    original_time: str
    target_time: str
    kind: PunchKind
    event_index: int


@dataclass(frozen=True)
class LeaveRange:
    employee_id: int
    motive_id: int
    motive_desc: str
    start_date: str
    end_date: str
    start_time: str
    end_time: Optional[str]
    is_full_day: bool
    dates: Tuple[str, ...] = ()


@dataclass
class EmployeeInfo:
    employee_id: int
    name: str = ""
    department: str = ""
    assigned_shift: Optional[str] = None
    flexible: bool = False
    active_from: Optional[date] = None
    active_until: Optional[date] = None


@dataclass(frozen=True)
class ProcessedEmployeeRecord:
    employee_id: int
    name: str
    department: str
    assigned_shift: str
    presence_hours: float
    justified_hours: float
    excess_hours: float
    holiday_hours: float
    special_task_count: int
    special_task_hours: float
    total_hours: float
    absent_days: List[str] = field(default_factory=list)
    missing_clock_outs: List[str] = field(default_factory=list)
    unjustified_gaps: List[UnjustifiedGap] = field(default_factory=list)
    workday_deviations: List[WorkdayDeviation] = field(default_factory=list)
    justified_intervals: List[JustifiedInterval] = field(default_factory=list)
    time_slices: List[TimeSlice] = field(default_factory=list)
    vacation_conflicts: List[str] = field(default_factory=list)
    shift_changes: List[ShiftChange] = field(default_factory=list)
    motive_hours: Dict[str, float] = field(default_factory=dict)
    remaining_credits: Dict[str, float] = field(default_factory=dict)
    resolved_incidents: List[str] = field(default_factory=list)
    pending_incident_count: int = 0
