from datetime import date

from anomaly_detection import (
    coverage_for_day,
    detect_absent_days,
    detect_missing_clock_out,
    detect_shift_changes,
    detect_unjustified_gaps,
    detect_vacation_conflicts,
    detect_workday_deviation,
)
from consolidation import consolidate_employee
from models import DayType, UnjustifiedGap


def _day(events, holidays=None):
    return consolidate_employee(events, holidays=holidays)[0]


def _gaps(events, external=(), holidays=None):
    day = _day(events, holidays)
    return detect_unjustified_gaps(day, coverage_for_day(day, external))


def _shift(make_punch, *pairs, **kwargs):
    events = []
    for start, end in pairs:
        events.append(make_punch(start, **kwargs))
        events.append(make_punch(end, is_entry=False, **kwargs))
    return events


def test_late_entry_gap(make_punch):
    assert _gaps(_shift(make_punch, ("07:30", "15:00"))) == [UnjustifiedGap("2024-03-04", "07:00", "07:30")]


def test_late_entry_within_grace_is_not_a_gap(make_punch):
    assert _gaps(_shift(make_punch, ("07:02", "15:00"))) == []


def test_gap_between_slices(make_punch):
    gaps = _gaps(_shift(make_punch, ("07:00", "10:00"), ("10:30", "15:00")))
    assert gaps == [UnjustifiedGap("2024-03-04", "10:00", "10:30")]


def test_justified_interval_suppresses_gap(make_punch, make_interval):
    events = _shift(make_punch, ("07:00", "10:00"), ("10:30", "15:00"))
    assert _gaps(events, [make_interval("10:00", "10:30")]) == []


def test_partially_justified_gap_reports_the_remainder(make_punch, make_interval):
    events = _shift(make_punch, ("07:00", "10:00"), ("10:30", "15:00"))
    assert _gaps(events, [make_interval("10:00", "10:15")]) == [UnjustifiedGap("2024-03-04", "10:15", "10:30")]


def test_interval_on_another_day_does_not_cover(make_punch, make_interval):
    events = _shift(make_punch, ("07:00", "10:00"), ("10:30", "15:00"))
    assert len(_gaps(events, [make_interval("10:00", "10:30", day="2024-03-05")])) == 1


def test_early_exit_gap(make_punch):
    assert _gaps(_shift(make_punch, ("07:00", "14:00"))) == [UnjustifiedGap("2024-03-04", "14:00", "15:00")]


def test_long_break_is_not_a_gap(make_punch):
    assert _gaps(_shift(make_punch, ("07:00", "08:00"), ("14:00", "15:00"))) == []


def test_festive_day_has_no_gaps(make_punch):
    events = _shift(make_punch, ("09:00", "12:00"))
    assert _gaps(events, holidays={"2024-03-04"}) == []


def test_special_task_covers_the_hole(make_punch):
    events = [
        make_punch("07:00"),
        make_punch("09:00", is_entry=False, motive_code=14),
        make_punch("13:00"),
        make_punch("15:00", is_entry=False),
    ]
    assert _gaps(events) == []


def test_gap_ending_next_day_carries_suffix(make_punch):
    events = [
        make_punch("23:00", shift_label="N"),
        make_punch("05:00", is_entry=False, day="2024-03-05"),
    ]
    assert _gaps(events) == [UnjustifiedGap("2024-03-04", "05:00", "07:00 (+1)")]


def test_missing_clock_out(make_punch, make_interval):
    day = _day([make_punch("07:00")])
    assert detect_missing_clock_out(day, coverage_for_day(day))
    assert not detect_missing_clock_out(day, coverage_for_day(day, [make_interval("07:00", "15:00")]))

    closed = _day(_shift(make_punch, ("07:00", "15:00")))
    assert not detect_missing_clock_out(closed, coverage_for_day(closed))


def test_boundary_drift_is_a_deviation(make_punch):
    day = _day(_shift(make_punch, ("06:30", "15:00")))
    deviation = detect_workday_deviation(day, coverage_for_day(day))
    assert deviation is not None
    assert (deviation.expected_start, deviation.expected_end) == ("07:00", "15:00")
    assert (deviation.actual_start, deviation.actual_end) == ("06:30", "15:00")
    assert deviation.actual_hours == 8.5


def test_small_drift_is_not_a_deviation(make_punch):
    day = _day(_shift(make_punch, ("07:05", "15:05")))
    assert detect_workday_deviation(day, coverage_for_day(day)) is None


def test_short_day_is_a_deviation_even_without_drift(make_punch):
    day = _day(_shift(make_punch, ("07:00", "10:00"), ("10:10", "15:00")))
    deviation = detect_workday_deviation(day, coverage_for_day(day))
    assert deviation is not None
    assert deviation.actual_hours == 7.83


def test_short_day_with_justification_is_not_a_deviation(make_punch, make_interval):
    day = _day(_shift(make_punch, ("07:00", "10:00"), ("10:10", "15:00")))
    assert detect_workday_deviation(day, coverage_for_day(day, [make_interval("10:00", "10:10")])) is None


def test_deviation_and_gap_are_independent(make_punch):
    day = _day(_shift(make_punch, ("07:30", "15:00")))
    covers = coverage_for_day(day)
    assert len(detect_unjustified_gaps(day, covers)) == 1
    assert detect_workday_deviation(day, covers) is not None


def test_open_day_compares_only_the_start(make_punch):
    day = _day([make_punch("06:30")])
    deviation = detect_workday_deviation(day, coverage_for_day(day))
    assert deviation is not None
    assert (deviation.actual_start, deviation.actual_end) == ("06:30", None)
    assert deviation.actual_hours == 0.0

    on_time = _day([make_punch("07:00")])
    assert detect_workday_deviation(on_time, coverage_for_day(on_time)) is None


def test_absences_skip_holidays():
    absent = detect_absent_days(date(2024, 3, 4), date(2024, 3, 8), set(), {"2024-03-06"})
    assert absent == ["2024-03-04", "2024-03-05", "2024-03-07", "2024-03-08"]


def test_absences_skip_activity_vacation_and_inactive_days():
    absent = detect_absent_days(
        date(2024, 3, 4), date(2024, 3, 8),
        activity_dates={"2024-03-07"},
        holidays=set(),
        vacation_dates={"2024-03-08"},
        active_from=date(2024, 3, 5),
    )
    assert absent == ["2024-03-05", "2024-03-06"]


def test_absence_detection_skipped_without_calendar():
    assert detect_absent_days(date(2024, 3, 4), date(2024, 3, 8), set(), None) == []


def test_vacation_conflicts(make_punch):
    days = consolidate_employee([
        make_punch("07:00", day_type=DayType.VACATION),
        make_punch("07:00", day="2024-03-05"),
    ])
    assert detect_vacation_conflicts(days) == ["2024-03-04"]
    assert detect_vacation_conflicts(days, {"2024-03-05"}) == ["2024-03-04", "2024-03-05"]


def test_shift_changes(make_punch):
    days = consolidate_employee([
        make_punch("07:00"),
        make_punch("15:00", day="2024-03-05"),
    ])
    changes = detect_shift_changes(days, "M")
    assert [(c.date, c.shift) for c in changes] == [("2024-03-05", "TN")]
