from __future__ import annotations

from dataclasses import dataclass, field
from datetime import time
from typing import Iterable

from solver.errors import ConfigurationError


DAY_NAMES = ("MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN")


def time_to_minutes(t: time) -> int:
    return t.hour * 60 + t.minute


def minutes_to_time(total_minutes: int) -> time:
    if total_minutes < 0 or total_minutes >= 24 * 60:
        raise ValueError(f"minutes out of range for a time of day: {total_minutes}")
    return time(hour=total_minutes // 60, minute=total_minutes % 60)


def intervals_overlap(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    # Half-open intervals: touching ends do not overlap.
    return a_start < b_end and b_start < a_end


@dataclass(frozen=True)
class PeriodTemplate:
    """One row of the school's daily period template."""

    period_index: int
    start_time: time
    end_time: time
    is_teaching: bool = True

    @property
    def start_minutes(self) -> int:
        return time_to_minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        return time_to_minutes(self.end_time)


@dataclass(frozen=True, order=True)
class Slot:
    """One schedulable (day, period) unit of the weekly grid."""

    day_of_week: int
    start_minutes: int
    end_minutes: int
    period_index: int = field(default=0, compare=False)

    @property
    def key(self) -> tuple[int, int]:
        return (self.day_of_week, self.start_minutes)

    @property
    def start_time(self) -> time:
        return minutes_to_time(self.start_minutes)

    @property
    def end_time(self) -> time:
        return minutes_to_time(self.end_minutes)

    def overlaps(self, day_of_week: int, start_minutes: int, end_minutes: int) -> bool:
        return day_of_week == self.day_of_week and intervals_overlap(
            self.start_minutes, self.end_minutes, start_minutes, end_minutes
        )

    def label(self) -> str:
        day = DAY_NAMES[self.day_of_week] if 0 <= self.day_of_week < len(DAY_NAMES) else str(self.day_of_week)
        return f"{day} {self.start_time.strftime('%H:%M')}-{self.end_time.strftime('%H:%M')}"


def periods_from_window(day_start: time, day_end: time, period_minutes: int) -> list[PeriodTemplate]:
    """Back-to-back periods of `period_minutes` that fit inside the school day."""

    if period_minutes <= 0:
        raise ConfigurationError("INVALID_PERIOD_LENGTH", "period_minutes must be positive.")
    start = time_to_minutes(day_start)
    end = time_to_minutes(day_end)
    periods: list[PeriodTemplate] = []
    idx = 0
    while start + period_minutes <= end:
        periods.append(
            PeriodTemplate(
                period_index=idx,
                start_time=minutes_to_time(start),
                end_time=minutes_to_time(start + period_minutes),
            )
        )
        start += period_minutes
        idx += 1
    return periods


def build_calendar_grid(teaching_days: Iterable[int], periods: Iterable[PeriodTemplate]) -> list[Slot]:
    """Build the ordered slot list (day ascending, then period start ascending).

    Breaks (`is_teaching=False`) never become slots. Teaching periods must not
    overlap each other, otherwise one section could be double-booked by time
    without sharing a slot key.
    """

    days = sorted({int(d) for d in teaching_days})
    for d in days:
        if d < 0 or d > 6:
            raise ConfigurationError(
                "INVALID_TEACHING_DAY",
                f"Teaching day {d} is outside 0..6.",
                details={"day_of_week": d},
            )

    teaching = sorted(
        (p for p in periods if p.is_teaching),
        key=lambda p: (p.start_minutes, p.end_minutes, p.period_index),
    )
    for p in teaching:
        if p.end_minutes <= p.start_minutes:
            raise ConfigurationError(
                "INVALID_PERIOD",
                f"Period {p.period_index} ends before it starts.",
                details={"period_index": p.period_index},
            )
    for prev, cur in zip(teaching, teaching[1:]):
        if intervals_overlap(prev.start_minutes, prev.end_minutes, cur.start_minutes, cur.end_minutes):
            raise ConfigurationError(
                "OVERLAPPING_PERIODS",
                f"Periods {prev.period_index} and {cur.period_index} overlap.",
                details={"period_indices": [prev.period_index, cur.period_index]},
            )

    slots = [
        Slot(
            day_of_week=d,
            start_minutes=p.start_minutes,
            end_minutes=p.end_minutes,
            period_index=p.period_index,
        )
        for d in days
        for p in teaching
    ]
    if not slots:
        raise ConfigurationError(
            "NO_CALENDAR_SLOTS",
            "No schedulable slots: configure teaching days and a daily period template.",
        )
    return slots


def spread_order(slots: Iterable[Slot]) -> list[Slot]:
    """Slots period-major: the first period of every day, then the second, and so on.

    Searching in this order puts a subject's repeated lessons on different
    days before it doubles them up on one day.
    """

    return sorted(slots, key=lambda s: (s.start_minutes, s.day_of_week))
