from datetime import date

import pytest

from config import get_effective_rules_for_employee, minutes_to_hours
from holiday_calendar import EmployeeCalendar, HolidayCalendar
from justification import deviation_key, gap_key
from models import DayType, EmployeeInfo, RawPunchEvent
from report_generation import (
    SUMMARY_COLUMNS,
    RecomputationSlot,
    ReportGenerator,
    incident_status,
    to_summary_dataframe,
)

MONDAY = date(2024, 3, 4)
FRIDAY = date(2024, 3, 8)


@pytest.fixture
def generator():
    return ReportGenerator()


def _only(records):
    assert len(records) == 1
    return records[0]


def _day_events(make_punch, *pairs, **kwargs):
    events = []
    for start, end in pairs:
        events.append(make_punch(start, **kwargs))
        events.append(make_punch(end, is_entry=False, **kwargs))
    return events


class TestAbsences:

    def test_week_without_punches(self, generator):
        record = _only(generator.generate(
            [], employees=[EmployeeInfo(1, "Ana", "Logistics")],
            period_start=MONDAY, period_end=FRIDAY,
            holiday_calendar=HolidayCalendar(["2024-03-06"]),
        ))
        assert record.absent_days == ["2024-03-04", "2024-03-05", "2024-03-07", "2024-03-08"]
        assert record.pending_incident_count == 4
        assert record.presence_hours == 0.0
        assert record.justified_hours == 0.0
        assert incident_status(record) == "Pending"

    def test_vacation_days_are_not_absences(self, generator):
        record = _only(generator.generate(
            [], employees=[EmployeeInfo(1, "Ana", "Logistics")],
            period_start=MONDAY, period_end=FRIDAY,
            holiday_calendar=HolidayCalendar(["2024-03-06"]),
            employee_calendar=EmployeeCalendar({1: {"2024-03-05": DayType.VACATION}}),
        ))
        assert record.absent_days == ["2024-03-04", "2024-03-07", "2024-03-08"]

    def test_unknown_holidays_skip_absences(self, generator):
        record = _only(generator.generate(
            [], employees=[EmployeeInfo(1, "Ana", "Logistics")],
            period_start=MONDAY, period_end=FRIDAY,
            holiday_calendar=None,
        ))
        assert record.absent_days == []

    def test_base_justified_hours(self, generator):
        record = _only(generator.generate(
            [], employees=[EmployeeInfo(1, "Ana", "Logistics")],
            period_start=MONDAY, period_end=MONDAY,
            holiday_calendar=HolidayCalendar(),
            base_justified_hours={1: 6.0},
        ))
        assert record.justified_hours == 6.0
        assert record.total_hours == 6.0


class TestHours:

    def test_special_task_day(self, generator, make_punch):
        events = [
            make_punch("07:00"),
            make_punch("09:00", is_entry=False, motive_code=14),
            make_punch("13:00"),
            make_punch("15:00", is_entry=False),
        ]
        record = _only(generator.generate(events, period_start=MONDAY, period_end=MONDAY,
                                          holiday_calendar=HolidayCalendar()))
        assert record.presence_hours == 4.0
        assert record.justified_hours == 0.0
        assert (record.special_task_count, record.special_task_hours) == (1, 4.0)
        assert record.total_hours == 8.0
        assert record.unjustified_gaps == []
        assert record.workday_deviations == []
        assert incident_status(record) == "Correct"

    def test_presence_is_the_sum_of_worked_slices(self, generator, make_punch):
        events = _day_events(make_punch, ("07:00", "10:00"), ("10:20", "15:05"))
        record = _only(generator.generate(events, holiday_calendar=HolidayCalendar()))
        worked = sum(s.duration_minutes for s in record.time_slices if not s.is_synthetic and not s.is_open)
        assert record.presence_hours == minutes_to_hours(worked) == 7.75

    def test_excess_outside_the_shift(self, generator, make_punch):
        record = _only(generator.generate(_day_events(make_punch, ("06:30", "15:30")),
                                          holiday_calendar=HolidayCalendar()))
        assert record.presence_hours == 9.0
        assert record.excess_hours == 1.0

    def test_sunday_hours_count_from_analysis_start(self, generator, make_punch):
        events = _day_events(make_punch, ("05:00", "09:00"), day="2024-03-10")
        record = _only(generator.generate(events, holiday_calendar=HolidayCalendar()))
        assert record.presence_hours == 4.0
        assert record.holiday_hours == 3.0
        assert record.excess_hours == 0.0
        assert record.unjustified_gaps == []

    def test_night_exit_after_the_period_closes_the_shift(self, generator, make_punch):
        events = [
            make_punch("23:00", shift_label="N"),
            make_punch("07:05", is_entry=False, day="2024-03-05"),
        ]
        record = _only(generator.generate(events, period_start=MONDAY, period_end=MONDAY,
                                          holiday_calendar=HolidayCalendar()))
        assert record.presence_hours == 8.08
        assert record.missing_clock_outs == []
        assert record.assigned_shift == "M"
        assert [(c.date, c.shift) for c in record.shift_changes] == [("2024-03-04", "N")]

    def test_minute_precision_times_are_paired(self, generator):
        events = [
            RawPunchEvent(employee_id=1, date="2024-03-04", time_of_day="07:00", is_entry=True),
            RawPunchEvent(employee_id=1, date="2024-03-04", time_of_day="15:00", is_entry=False, motive_code=1),
        ]
        record = _only(generator.generate(events, period_start=MONDAY, period_end=MONDAY,
                                          holiday_calendar=HolidayCalendar()))
        assert record.presence_hours == 8.0
        assert record.missing_clock_outs == []
        assert generator.get_error_log() == []


class TestIncidents:

    def _late_day(self, make_punch):
        return _day_events(make_punch, ("07:30", "15:00"))

    def test_late_day_is_pending(self, generator, make_punch):
        record = _only(generator.generate(self._late_day(make_punch), holiday_calendar=HolidayCalendar()))
        assert [(g.start, g.end) for g in record.unjustified_gaps] == [("07:00", "07:30")]
        assert len(record.workday_deviations) == 1
        assert record.pending_incident_count == 2

    def test_justified_incidents_are_resolved(self, generator, make_punch):
        justified = {
            gap_key(1, "2024-03-04", "07:00", "07:30"): 4,
            deviation_key(1, "2024-03-04"): 4,
        }
        record = _only(generator.generate(self._late_day(make_punch), holiday_calendar=HolidayCalendar(),
                                          justified_incidents=justified))
        assert record.unjustified_gaps == []
        assert record.workday_deviations == []
        assert sorted(record.resolved_incidents) == sorted(justified)
        assert incident_status(record) == "Justified"
        assert justified == {
            gap_key(1, "2024-03-04", "07:00", "07:30"): 4,
            deviation_key(1, "2024-03-04"): 4,
        }

    def test_external_interval_covers_the_gap(self, generator, make_punch, make_interval):
        record = _only(generator.generate(
            self._late_day(make_punch), holiday_calendar=HolidayCalendar(),
            justifications={1: [make_interval("07:00", "07:30", motive_id=2)]},
        ))
        assert record.unjustified_gaps == []
        assert record.justified_hours == 0.5
        assert record.motive_hours == {"medical": 0.5}
        assert record.remaining_credits["medical"] == 15.5


class TestGenerator:

    def test_records_are_sorted(self, generator):
        employees = [EmployeeInfo(3, "Zoe", "A"), EmployeeInfo(1, "Bob", "B"), EmployeeInfo(2, "Amy", "A")]
        records = generator.generate([], employees=employees, period_start=MONDAY, period_end=MONDAY,
                                     holiday_calendar=HolidayCalendar())
        assert [r.employee_id for r in records] == [2, 3, 1]

    def test_employee_from_events(self, generator, make_punch):
        events = _day_events(make_punch, ("07:00", "15:00"), employee_id=9, employee_name="Luis", department="QA")
        record = _only(generator.generate(events, holiday_calendar=HolidayCalendar()))
        assert (record.employee_id, record.name, record.department) == (9, "Luis", "QA")

    def test_one_failing_employee_does_not_stop_the_run(self, make_punch):
        def rules(employee_id, department):
            if employee_id == 2:
                raise RuntimeError("broken rules")
            return get_effective_rules_for_employee(employee_id, department)

        generator = ReportGenerator(rules_provider=rules)
        events = (_day_events(make_punch, ("07:00", "15:00"), employee_id=1)
                  + _day_events(make_punch, ("07:00", "15:00"), employee_id=2))
        records = generator.generate(events, holiday_calendar=HolidayCalendar())
        assert [r.employee_id for r in records] == [1]
        assert [e['Employee'] for e in generator.get_error_log()] == [2]

    def test_summary_dataframe(self, generator, make_punch):
        records = generator.generate(_day_events(make_punch, ("07:30", "15:00")), holiday_calendar=HolidayCalendar())
        df = to_summary_dataframe(records)
        assert list(df.columns) == SUMMARY_COLUMNS
        row = df.iloc[0]
        assert row['Unjustified Gaps'] == 1
        assert row['Status'] == "Pending"


def test_recomputation_slot_keeps_the_newest_run():
    slot = RecomputationSlot()
    assert slot.records is None
    older = slot.begin()
    newer = slot.begin()
    assert slot.publish(newer, ["new"])
    assert not slot.publish(older, ["old"])
    assert slot.records == ["new"]
