import pytest

from models import DayType, JustifiedInterval, RawPunchEvent


@pytest.fixture
def make_punch():
    """Factory for punch events; defaults to an entry on Monday 2024-03-04."""

    def _make(time_of_day, is_entry=True, day="2024-03-04", employee_id=1, motive_code=None,
              day_type=DayType.REGULAR, **kwargs):
        if not is_entry and motive_code is None:
            motive_code = 1
        if len(time_of_day) == 5:
            time_of_day += ":00"
        return RawPunchEvent(
            employee_id=employee_id,
            date=day,
            time_of_day=time_of_day,
            is_entry=is_entry,
            motive_code=motive_code,
            day_type=day_type,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_interval():
    def _make(start, end, day="2024-03-04", motive_id=4, **kwargs):
        return JustifiedInterval(date=day, start=start, end=end, motive_id=motive_id, **kwargs)

    return _make
