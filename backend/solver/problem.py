from __future__ import annotations

from dataclasses import dataclass, field
from datetime import time
from typing import Any

from solver.calendar_grid import PeriodTemplate, time_to_minutes


@dataclass(frozen=True)
class SectionInfo:
    id: Any
    code: str = ""
    class_id: Any | None = None
    school_level_id: Any | None = None
    academic_year_id: Any | None = None
    strength: int | None = None


@dataclass(frozen=True)
class SubjectInfo:
    id: Any
    code: str = ""
    department_id: Any | None = None
    required_room_type: str | None = None


@dataclass(frozen=True)
class StaffInfo:
    id: Any
    code: str = ""
    max_periods_per_day: int | None = None
    max_periods_per_week: int | None = None


@dataclass(frozen=True)
class RoomInfo:
    id: Any
    code: str = ""
    room_type: str | None = None
    capacity: int | None = None


@dataclass(frozen=True)
class Requirement:
    section_id: Any
    subject_id: Any
    periods_per_week: int


@dataclass(frozen=True)
class Qualification:
    """A staff member may teach `subject_id` to a class, a level, or (neither set) anyone."""

    staff_id: Any
    subject_id: Any
    class_id: Any | None = None
    school_level_id: Any | None = None

    def covers(self, section: SectionInfo) -> bool:
        if self.class_id is None and self.school_level_id is None:
            return True
        if self.class_id is not None and self.class_id == section.class_id:
            return True
        if self.school_level_id is not None and self.school_level_id == section.school_level_id:
            return True
        return False

    def rank(self, section: SectionInfo) -> int:
        # Lower is more specific.
        if self.class_id is not None and self.class_id == section.class_id:
            return 0
        if self.school_level_id is not None and self.school_level_id == section.school_level_id:
            return 1
        return 2


@dataclass(frozen=True)
class Unavailability:
    owner_id: Any
    day_of_week: int
    start_time: time
    end_time: time

    @property
    def start_minutes(self) -> int:
        return time_to_minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        return time_to_minutes(self.end_time)


@dataclass(frozen=True)
class PinnedSlot:
    """A fixed lesson; `source` is PINNED for admin pins, LOCKED for carried-over entries."""

    section_id: Any
    subject_id: Any
    staff_id: Any
    day_of_week: int
    start_time: time
    end_time: time | None = None
    room_id: Any | None = None
    id: Any | None = None
    source: str = "PINNED"

    def sort_key(self) -> tuple:
        return (
            int(self.day_of_week),
            time_to_minutes(self.start_time),
            str(self.section_id),
            str(self.subject_id),
            str(self.staff_id),
            str(self.id),
        )


@dataclass
class GenerationOptions:
    max_steps: int = 250_000
    max_seconds: float | None = 20.0
    backtrack_limit: int = 2_000
    include_pinned: bool = True
    honor_unavailability: bool = True
    enforce_staff_load_limits: bool = True
    allow_roomless: bool = False
    default_period_minutes: int = 60
    spread_across_days: bool = False


@dataclass
class TimetableProblem:
    """All input data for one run, loaded up front."""

    teaching_days: list[int]
    periods: list[PeriodTemplate]
    sections: list[SectionInfo]
    subjects: list[SubjectInfo]
    staff: list[StaffInfo]
    rooms: list[RoomInfo]
    requirements: list[Requirement]
    qualifications: list[Qualification]
    staff_unavailability: list[Unavailability] = field(default_factory=list)
    room_unavailability: list[Unavailability] = field(default_factory=list)
    pinned_slots: list[PinnedSlot] = field(default_factory=list)
    school_id: Any | None = None
    academic_year_id: Any | None = None
