from dataclasses import replace

from consolidation import (
    consolidate_employee,
    is_synthetic_pair,
    merge_time_ranges,
    subtract_ranges,
)


def _single_day(events, **kwargs):
    days = consolidate_employee(events, **kwargs)
    assert len(days) == 1
    return days[0]


def test_entry_pairs_with_next_exit(make_punch):
    day = _single_day([make_punch("07:00"), make_punch("15:00", is_entry=False)])
    assert len(day.slices) == 1
    time_slice = day.slices[0]
    assert (time_slice.start, time_slice.end) == ("07:00", "15:00")
    assert not time_slice.is_synthetic
    assert time_slice.duration_minutes == 480
    assert day.shift == "M"


def test_unsorted_input_is_sorted_chronologically(make_punch):
    day = _single_day([make_punch("15:00", is_entry=False), make_punch("07:00")])
    assert [(s.start, s.end) for s in day.slices] == [("07:00", "15:00")]


def test_times_without_seconds_are_paired(make_punch):
    events = [replace(make_punch("07:00"), time_of_day="07:00"),
              replace(make_punch("15:00", is_entry=False), time_of_day="15:00")]
    day = _single_day(events)
    assert [(s.start, s.end) for s in day.slices] == [("07:00", "15:00")]
    assert day.worked_slices[0].duration_minutes == 480


def test_unmatched_entry_is_flagged_not_dropped(make_punch):
    day = _single_day([make_punch("07:00")])
    assert len(day.slices) == 1
    assert day.slices[0].end is None
    assert day.slices[0].missing_clock_out
    assert day.has_open_slice
    assert day.worked_slices == []


def test_entry_followed_by_entry_stays_open(make_punch):
    day = _single_day([make_punch("07:00"), make_punch("07:05"), make_punch("15:00", is_entry=False)])
    assert [(s.start, s.end) for s in day.slices] == [("07:00", None), ("07:05", "15:00")]


def test_night_shift_crosses_midnight(make_punch):
    events = [
        make_punch("22:50", shift_label="N"),
        make_punch("07:05", is_entry=False, day="2024-03-05"),
    ]
    days = consolidate_employee(events)
    night = days[0]
    assert night.date == "2024-03-04"
    assert night.shift == "N"
    assert night.slices[0].end_is_next_day
    assert night.slices[0].duration_minutes == 495
    assert days[1].slices == []


def test_exit_too_far_from_entry_is_not_paired(make_punch):
    events = [make_punch("07:00"), make_punch("07:00", is_entry=False, day="2024-03-05")]
    days = consolidate_employee(events)
    assert days[0].slices[0].missing_clock_out


def test_synthetic_pair_is_marked_and_justified(make_punch):
    events = [
        make_punch("07:00"),
        make_punch("11:34", is_entry=False, motive_code=2, range_start="07:00:00", range_end="11:34:00"),
        make_punch("11:34"),
        make_punch("15:00", is_entry=False),
    ]
    day = _single_day(events)
    assert [s.is_synthetic for s in day.slices] == [True, False]
    assert [s.start for s in day.worked_slices] == ["11:34"]
    assert len(day.punch_justifications) == 1
    interval = day.punch_justifications[0]
    assert (interval.start, interval.end, interval.motive_id) == ("07:00", "11:34", 2)
    assert is_synthetic_pair(events[0], events[1])
    assert not is_synthetic_pair(events[2], events[3])


def test_absence_exit_justifies_until_return(make_punch):
    events = [
        make_punch("07:00"),
        make_punch("10:00", is_entry=False, motive_code=2),
        make_punch("12:00"),
        make_punch("15:00", is_entry=False),
    ]
    day = _single_day(events)
    assert [(s.start, s.end) for s in day.slices] == [("07:00", "10:00"), ("12:00", "15:00")]
    interval = day.punch_justifications[0]
    assert (interval.start, interval.end, interval.source) == ("10:00", "12:00", "punch")


def test_midnight_absence_covers_whole_shift(make_punch):
    day = _single_day([make_punch("00:00", is_entry=False, motive_code=2)])
    assert day.slices == []
    interval = day.punch_justifications[0]
    assert (interval.start, interval.end) == ("07:00", "15:00")


def test_special_task_runs_until_return(make_punch):
    events = [
        make_punch("07:00"),
        make_punch("09:00", is_entry=False, motive_code=14),
        make_punch("13:00"),
        make_punch("15:00", is_entry=False),
    ]
    day = _single_day(events)
    assert day.punch_justifications == []
    task = day.special_task_intervals[0]
    assert (task.start, task.end, task.motive_id) == ("09:00", "13:00", 14)
    assert task.duration_minutes == 240


def test_special_task_without_return_runs_to_shift_end(make_punch):
    day = _single_day([make_punch("07:00"), make_punch("11:00", is_entry=False, motive_code=14)])
    task = day.special_task_intervals[0]
    assert (task.start, task.end) == ("11:00", "15:00")


def test_festive_days(make_punch):
    sunday = _single_day([make_punch("09:00", day="2024-03-10"), make_punch("12:00", is_entry=False, day="2024-03-10")])
    assert sunday.is_festive
    assert sunday.slices[0].is_festive

    holiday = _single_day([make_punch("09:00"), make_punch("12:00", is_entry=False)], holidays={"2024-03-04"})
    assert holiday.is_festive

    regular = _single_day([make_punch("09:00"), make_punch("12:00", is_entry=False)])
    assert not regular.is_festive


def test_interval_arithmetic():
    assert merge_time_ranges([(30, 40), (0, 10), (5, 20)]) == [(0, 20), (30, 40)]
    assert merge_time_ranges([(10, 10)]) == []
    assert subtract_ranges((0, 100), [(10, 20), (50, 120)]) == [(0, 10), (20, 50)]
    assert subtract_ranges((0, 100), [(0, 100)]) == []
