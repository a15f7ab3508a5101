import logging
import threading
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Set

import pandas as pd

from anomaly_detection import (
    coverage_for_day,
    detect_absent_days,
    detect_missing_clock_out,
    detect_shift_changes,
    detect_unjustified_gaps,
    detect_vacation_conflicts,
    detect_workday_deviation,
)
from config import (
    EXCLUDED_EMPLOYEE_IDS,
    get_effective_rules_for_employee,
    minutes_to_hours,
    round_hours,
    time_to_minutes,
)
from consolidation import DayConsolidation, consolidate_employee, on_shift_axis
from holiday_calendar import EmployeeCalendar, HolidayCalendar
from justification import (
    compute_justified_hours,
    compute_special_task_hours,
    is_special_task,
    motive_hours,
    remaining_credits,
    split_resolved,
    unique_intervals,
)
from models import DayType, EmployeeInfo, JustifiedInterval, ProcessedEmployeeRecord, RawPunchEvent
from shift_resolution import assigned_shift_for, consolidation_resolver

SUMMARY_COLUMNS = [
    'No.', 'Name', 'Department', 'Assigned Shift',
    'Presence Hours', 'Justified Hours', 'Special Task Hours', 'Special Task Count',
    'Excess Hours', 'Holiday Hours', 'Total Hours',
    'Absent Days', 'Missing Clock-Outs', 'Unjustified Gaps', 'Workday Deviations',
    'Vacation Conflicts', 'Shift Changes', 'Pending Incidents', 'Status',
]


def _slice_minutes_outside_shift(day: DayConsolidation) -> int:
    """Worked minutes of the day falling outside the shift window."""
    shift_start, shift_end = day.bounds
    outside = 0
    for time_slice in day.worked_slices:
        start, end = time_slice.minute_range()
        start = on_shift_axis(start, day.bounds)
        end = start + time_slice.duration_minutes
        inside = max(0, min(end, shift_end) - max(start, shift_start))
        outside += (end - start) - inside
    return outside


def _festive_minutes(day: DayConsolidation, analysis_start: str) -> int:
    """Worked minutes on a festive day, counted from the holiday analysis start."""
    floor = time_to_minutes(analysis_start)
    total = 0
    for time_slice in day.worked_slices:
        start, end = time_slice.minute_range()
        total += max(0, end - max(start, floor))
    return total


class ReportGenerator:
    """
    Builds one ProcessedEmployeeRecord per employee for an analysed period.

    Every call recomputes from the inputs; no state carries over between calls
    other than the error log of the last run.
    """

    def __init__(self, rules_provider=None):
        """
        Initializes the ReportGenerator.

        Args:
            rules_provider (callable): (employee_id, department) -> rules dict.
                Defaults to config.get_effective_rules_for_employee.
        """
        self.rules_provider = rules_provider or get_effective_rules_for_employee
        self.error_log = []

    def generate(self, events: Iterable[RawPunchEvent],
                 employees: Optional[Iterable[EmployeeInfo]] = None,
                 period_start: Optional[date] = None,
                 period_end: Optional[date] = None,
                 holiday_calendar: Optional[HolidayCalendar] = None,
                 justifications: Optional[Mapping[int, List[JustifiedInterval]]] = None,
                 employee_calendar: Optional[EmployeeCalendar] = None,
                 justified_incidents: Optional[Mapping[str, int]] = None,
                 base_justified_hours: Optional[Mapping[int, float]] = None) -> List[ProcessedEmployeeRecord]:
        """
        Reconciles punches, justifications and calendars into per-employee records.

        Args:
            events: Raw punch events (any employees, any order).
            employees: Known employees. Employees with events but no entry here are
                built from the event's name/department; known employees without events
                still get a record (their absences).
            period_start, period_end: Analysed period. Defaults to the event date range.
            holiday_calendar: Company holidays. None means unknown: absence detection is skipped.
            justifications: employee_id -> externally registered justified intervals.
            employee_calendar: Personal calendars (vacation days).
            justified_incidents: Caller-held IncidentKey -> motive map of resolved anomalies.
            base_justified_hours: employee_id -> justified hours computed by the source system.

        Returns:
            list[ProcessedEmployeeRecord]: Sorted by department, name, then employee id.
        """
        self.error_log = []  # Reset error log for new processing run
        events = list(events)
        justifications = justifications or {}
        employee_calendar = employee_calendar or EmployeeCalendar()
        base_justified_hours = base_justified_hours or {}

        if period_start is None or period_end is None:
            if not events:
                logging.info("No events and no period given; nothing to reconcile")
                return []
            all_dates = sorted(e.date for e in events)
            period_start = period_start or date.fromisoformat(all_dates[0])
            period_end = period_end or date.fromisoformat(all_dates[-1])

        start_key = period_start.strftime('%Y-%m-%d')
        end_key = period_end.strftime('%Y-%m-%d')
        closing_key = (period_end + timedelta(days=1)).strftime('%Y-%m-%d')
        # Exits just after the period still close night shifts started inside it
        in_period = [
            e for e in events
            if start_key <= e.date <= end_key or (e.date == closing_key and not e.is_entry)
        ]

        holiday_set: Optional[Set[str]] = None
        if holiday_calendar is not None:
            holiday_set = holiday_calendar.with_event_holidays(in_period).dates
        festive_set = holiday_set if holiday_set is not None else HolidayCalendar().with_event_holidays(in_period).dates

        events_by_employee: Dict[int, List[RawPunchEvent]] = {}
        for event in in_period:
            events_by_employee.setdefault(event.employee_id, []).append(event)

        infos: Dict[int, EmployeeInfo] = {int(e.employee_id): e for e in (employees or [])}
        for employee_id, employee_events in events_by_employee.items():
            if employee_id not in infos:
                first = employee_events[0]
                infos[employee_id] = EmployeeInfo(employee_id=employee_id, name=first.employee_name,
                                                  department=first.department)

        records = []
        for employee_id in sorted(infos):
            if employee_id in EXCLUDED_EMPLOYEE_IDS or str(employee_id) in EXCLUDED_EMPLOYEE_IDS:
                continue
            info = infos[employee_id]
            try:
                records.append(self._build_record(
                    info,
                    events_by_employee.get(employee_id, []),
                    period_start, period_end,
                    holiday_set, festive_set,
                    justifications.get(employee_id, justifications.get(str(employee_id), [])),
                    employee_calendar.vacation_dates(employee_id),
                    justified_incidents,
                    base_justified_hours.get(employee_id),
                ))
            except Exception as e:
                error_message = f"Error reconciling employee {employee_id}: {type(e).__name__}: {e}"
                logging.exception(error_message)
                self.error_log.append({'Employee': employee_id, 'Error': error_message})

        records.sort(key=lambda r: (r.department or '', r.name or '', r.employee_id))
        logging.info(f"Reconciled {len(records)} employees for {start_key}..{end_key} "
                     f"({len(self.error_log)} failures)")
        return records

    def _build_record(self, info: EmployeeInfo, events: List[RawPunchEvent], period_start: date,
                      period_end: date, holiday_set: Optional[Set[str]], festive_set: Set[str],
                      external: List[JustifiedInterval], vacation_dates: Set[str],
                      justified_incidents: Optional[Mapping[str, int]],
                      base_hours) -> ProcessedEmployeeRecord:
        rules = self.rules_provider(info.employee_id, info.department)
        start_key = period_start.strftime('%Y-%m-%d')
        end_key = period_end.strftime('%Y-%m-%d')

        assignment = {info.employee_id: info.assigned_shift} if info.assigned_shift else None
        days = [
            d for d in consolidate_employee(events, consolidation_resolver(assignment), festive_set, rules)
            if start_key <= d.date <= end_key
        ]
        assigned = assigned_shift_for([d.shift for d in days if d.has_entries], info.assigned_shift)
        external = [i for i in external if start_key <= i.date <= end_key]

        # --- Per-day anomalies ---
        gaps, deviations, missing_clock_outs = [], [], []
        for day in days:
            covers = coverage_for_day(day, external)
            gaps.extend(detect_unjustified_gaps(day, covers, rules))
            if detect_missing_clock_out(day, covers):
                missing_clock_outs.append(day.date)
            deviation = detect_workday_deviation(day, covers, rules)
            if deviation is not None:
                deviations.append(deviation)

        event_vacations = {d.date for d in days if d.day_type == DayType.VACATION}
        activity_dates = {d.date for d in days} | {i.date for i in external}
        absent_days = detect_absent_days(
            period_start, period_end, activity_dates, holiday_set,
            vacation_dates | event_vacations, rules,
            info.active_from, info.active_until, employee_id=info.employee_id,
        )

        # --- Hours ---
        punch_justifications = [i for d in days for i in d.punch_justifications]
        special_intervals = [i for d in days for i in d.special_task_intervals]
        all_intervals = sorted(unique_intervals(external + punch_justifications + special_intervals),
                               key=lambda i: (i.date, i.start))

        if base_hours is None:
            base_hours = minutes_to_hours(sum(i.duration_minutes for i in punch_justifications
                                              if not is_special_task(i)))
        justified_hours = compute_justified_hours(base_hours, all_intervals)
        special_count, special_hours = compute_special_task_hours(all_intervals)
        special_minutes = sum(i.duration_minutes for i in unique_intervals(all_intervals) if is_special_task(i))

        presence_minutes = sum(s.duration_minutes for d in days for s in d.worked_slices)
        excess_minutes = sum(_slice_minutes_outside_shift(d) for d in days if not d.is_festive)
        holiday_minutes = sum(_festive_minutes(d, rules.get("holiday_analysis_start", "06:00"))
                              for d in days if d.is_festive)
        total_hours = round_hours(
            Decimal(presence_minutes) / Decimal(60) + Decimal(str(justified_hours)) + Decimal(special_minutes) / Decimal(60)
        )

        pending_gaps, pending_deviations, resolved = split_resolved(
            info.employee_id, gaps, deviations, justified_incidents
        )
        hours_by_motive = motive_hours(all_intervals)

        return ProcessedEmployeeRecord(
            employee_id=info.employee_id,
            name=info.name,
            department=info.department,
            assigned_shift=assigned,
            presence_hours=minutes_to_hours(presence_minutes),
            justified_hours=justified_hours,
            excess_hours=minutes_to_hours(excess_minutes),
            holiday_hours=minutes_to_hours(holiday_minutes),
            special_task_count=special_count,
            special_task_hours=special_hours,
            total_hours=total_hours,
            absent_days=absent_days,
            missing_clock_outs=missing_clock_outs,
            unjustified_gaps=pending_gaps,
            workday_deviations=pending_deviations,
            justified_intervals=all_intervals,
            time_slices=[s for d in days for s in d.slices],
            vacation_conflicts=detect_vacation_conflicts(days, vacation_dates),
            shift_changes=detect_shift_changes(days, assigned),
            motive_hours=hours_by_motive,
            remaining_credits=remaining_credits(hours_by_motive, rules.get("standard_shift_hours", 8)),
            resolved_incidents=resolved,
            pending_incident_count=(len(pending_gaps) + len(pending_deviations)
                                    + len(missing_clock_outs) + len(absent_days)),
        )

    def get_error_log(self) -> list:
        """Returns the accumulated error log."""
        return self.error_log


def incident_status(record: ProcessedEmployeeRecord) -> str:
    if record.pending_incident_count > 0:
        return 'Pending'
    if record.resolved_incidents:
        return 'Justified'
    return 'Correct'


def to_summary_dataframe(records: Iterable[ProcessedEmployeeRecord]) -> pd.DataFrame:
    """
    Flattens reconciliation records into the summary table consumed by export collaborators.
    Keeps the records' order.
    """
    rows = []
    for r in records:
        rows.append({
            'No.': r.employee_id,
            'Name': r.name,
            'Department': r.department,
            'Assigned Shift': r.assigned_shift,
            'Presence Hours': r.presence_hours,
            'Justified Hours': r.justified_hours,
            'Special Task Hours': r.special_task_hours,
            'Special Task Count': r.special_task_count,
            'Excess Hours': r.excess_hours,
            'Holiday Hours': r.holiday_hours,
            'Total Hours': r.total_hours,
            'Absent Days': len(r.absent_days),
            'Missing Clock-Outs': len(r.missing_clock_outs),
            'Unjustified Gaps': len(r.unjustified_gaps),
            'Workday Deviations': len(r.workday_deviations),
            'Vacation Conflicts': len(r.vacation_conflicts),
            'Shift Changes': len(r.shift_changes),
            'Pending Incidents': r.pending_incident_count,
            'Status': incident_status(r),
        })
    return pd.DataFrame(rows, columns=SUMMARY_COLUMNS)


class RecomputationSlot:
    """
    Holds the result of the most recent recomputation.

    Each run takes a token from begin(); publish() only accepts the newest token,
    so a slow run finishing after a newer one is discarded.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._latest_token = 0
        self._records = None

    def begin(self) -> int:
        with self._lock:
            self._latest_token += 1
            return self._latest_token

    def publish(self, token: int, records: List[ProcessedEmployeeRecord]) -> bool:
        with self._lock:
            if token != self._latest_token:
                logging.debug(f"Discarding stale recomputation {token} (latest is {self._latest_token})")
                return False
            self._records = records
            return True

    @property
    def records(self) -> Optional[List[ProcessedEmployeeRecord]]:
        with self._lock:
            return self._records
