from __future__ import annotations

from datetime import time

import pytest

from solver.calendar_grid import (
    PeriodTemplate,
    Slot,
    build_calendar_grid,
    intervals_overlap,
    minutes_to_time,
    periods_from_window,
)
from solver.errors import ConfigurationError

from builders import hourly_periods


def test_grid_is_ordered_by_day_then_start():
    periods = list(reversed(hourly_periods(9, 2)))
    slots = build_calendar_grid([2, 0], periods)

    assert [(s.day_of_week, s.start_minutes) for s in slots] == [
        (0, 540),
        (0, 600),
        (2, 540),
        (2, 600),
    ]
    assert [s.period_index for s in slots] == [0, 1, 0, 1]


def test_breaks_never_become_slots():
    periods = [
        PeriodTemplate(0, time(9, 0), time(10, 0)),
        PeriodTemplate(1, time(10, 0), time(10, 15), is_teaching=False),
        PeriodTemplate(2, time(10, 15), time(11, 15)),
    ]
    slots = build_calendar_grid([0], periods)
    assert [s.label() for s in slots] == ["MON 09:00-10:00", "MON 10:15-11:15"]


def test_overlapping_periods_are_rejected():
    periods = [
        PeriodTemplate(0, time(9, 0), time(10, 0)),
        PeriodTemplate(1, time(9, 30), time(10, 30)),
    ]
    with pytest.raises(ConfigurationError) as exc:
        build_calendar_grid([0], periods)
    assert exc.value.code == "OVERLAPPING_PERIODS"


def test_empty_grid_is_a_configuration_error():
    with pytest.raises(ConfigurationError) as exc:
        build_calendar_grid([], hourly_periods(9, 3))
    assert exc.value.code == "NO_CALENDAR_SLOTS"


def test_invalid_teaching_day():
    with pytest.raises(ConfigurationError) as exc:
        build_calendar_grid([0, 7], hourly_periods(9, 1))
    assert exc.value.code == "INVALID_TEACHING_DAY"


def test_periods_from_window_drops_partial_tail():
    periods = periods_from_window(time(8, 0), time(11, 30), 60)
    assert [(p.start_time, p.end_time) for p in periods] == [
        (time(8, 0), time(9, 0)),
        (time(9, 0), time(10, 0)),
        (time(10, 0), time(11, 0)),
    ]


def test_period_length_must_be_positive():
    with pytest.raises(ConfigurationError):
        periods_from_window(time(8, 0), time(9, 0), 0)


def test_intervals_are_half_open():
    assert intervals_overlap(540, 600, 599, 660)
    assert not intervals_overlap(540, 600, 600, 660)
    assert Slot(0, 540, 600).overlaps(0, 570, 630)
    assert not Slot(0, 540, 600).overlaps(1, 570, 630)


def test_minutes_to_time_bounds():
    assert minutes_to_time(0) == time(0, 0)
    assert minutes_to_time(23 * 60 + 59) == time(23, 59)
    with pytest.raises(ValueError):
        minutes_to_time(24 * 60)
