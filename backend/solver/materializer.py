from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import time
from typing import Any, Iterable

from solver.calendar_grid import minutes_to_time, time_to_minutes
from solver.conflict_tracker import Placement
from solver.demand import CompiledDemand, Lesson
from solver.errors import SolverInvariantError
from solver.search import SearchOutcome


@dataclass(frozen=True)
class GeneratedEntry:
    section_id: Any
    subject_id: Any
    staff_id: Any
    room_id: Any | None
    day_of_week: int
    start_time: time
    end_time: time
    source: str = "GENERATED"  # GENERATED | PINNED | LOCKED
    # Id of the PinnedSlot row (PINNED) or of the carried-over entry (LOCKED).
    source_id: Any | None = None

    @property
    def is_pinned(self) -> bool:
        return self.source == "PINNED"

    @property
    def is_locked(self) -> bool:
        return self.source == "LOCKED"

    def sort_key(self) -> tuple:
        return (
            self.day_of_week,
            time_to_minutes(self.start_time),
            str(self.section_id),
            str(self.subject_id),
            str(self.staff_id),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "section_id": self.section_id,
            "subject_id": self.subject_id,
            "staff_id": self.staff_id,
            "room_id": self.room_id,
            "day_of_week": self.day_of_week,
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
            "source": self.source,
            "source_id": self.source_id,
        }


@dataclass(frozen=True)
class UnplacedLesson:
    lesson_index: int
    section_id: Any
    subject_id: Any
    ordinal: int
    reason: str
    detail: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "lesson_index": self.lesson_index,
            "section_id": self.section_id,
            "subject_id": self.subject_id,
            "ordinal": self.ordinal,
            "reason": self.reason,
            "detail": dict(self.detail),
        }


@dataclass
class GenerationReport:
    total_lessons: int = 0
    placed_count: int = 0
    pinned_count: int = 0
    unplaced: list[UnplacedLesson] = field(default_factory=list)
    rejected_pins: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[dict[str, Any]] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=dict)
    budget_exhausted: bool = False

    @property
    def unplaced_count(self) -> int:
        return len(self.unplaced)

    @property
    def complete(self) -> bool:
        return not self.unplaced and not self.rejected_pins

    def reason_counts(self) -> dict[str, int]:
        return dict(sorted(Counter(u.reason for u in self.unplaced).items()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_lessons": self.total_lessons,
            "placed_count": self.placed_count,
            "pinned_count": self.pinned_count,
            "unplaced_count": self.unplaced_count,
            "unplaced_by_reason": self.reason_counts(),
            "unplaced": [u.to_dict() for u in self.unplaced],
            "rejected_pins": list(self.rejected_pins),
            "warnings": list(self.warnings),
            "stats": dict(self.stats),
            "budget_exhausted": self.budget_exhausted,
            "complete": self.complete,
        }


@dataclass
class GenerationResult:
    entries: list[GeneratedEntry]
    report: GenerationReport

    @property
    def placed_count(self) -> int:
        return self.report.placed_count

    @property
    def unplaced_lessons(self) -> list[UnplacedLesson]:
        return self.report.unplaced


def _entry_from_placement(p: Placement) -> GeneratedEntry:
    return GeneratedEntry(
        section_id=p.section_id,
        subject_id=p.subject_id,
        staff_id=p.staff_id,
        room_id=p.room_id,
        day_of_week=int(p.day_of_week),
        start_time=minutes_to_time(p.start_minutes),
        end_time=minutes_to_time(p.end_minutes),
        source=p.source,
        source_id=p.pin.id if p.pin is not None else None,
    )


def verify_no_conflicts(entries: Iterable[GeneratedEntry]) -> None:
    """Raise SolverInvariantError if any staff, room or section is booked twice at overlapping times."""

    by_owner: dict[tuple[str, Any, int], list[tuple[int, int, GeneratedEntry]]] = defaultdict(list)
    for e in entries:
        start, end = time_to_minutes(e.start_time), time_to_minutes(e.end_time)
        by_owner[("SECTION", e.section_id, e.day_of_week)].append((start, end, e))
        by_owner[("STAFF", e.staff_id, e.day_of_week)].append((start, end, e))
        if e.room_id is not None:
            by_owner[("ROOM", e.room_id, e.day_of_week)].append((start, end, e))

    for (resource, owner, day), items in by_owner.items():
        items.sort(key=lambda x: (x[0], x[1]))
        reach_end, reach_entry = -1, None
        prev_start, prev_entry = None, None
        for start, end, e in items:
            # Entries sharing a start clash even when one of them is empty.
            clash = prev_entry if start == prev_start else None
            if clash is None and reach_entry is not None and start < reach_end:
                clash = reach_entry
            if clash is not None:
                raise SolverInvariantError(
                    "DOUBLE_BOOKING",
                    f"{resource} {owner} is double-booked on day {day}.",
                    details={
                        "resource": resource,
                        "owner_id": str(owner),
                        "day_of_week": day,
                        "entries": [clash.to_dict(), e.to_dict()],
                    },
                )
            if end > reach_end:
                reach_end, reach_entry = end, e
            prev_start, prev_entry = start, e


def _unplaced(lesson: Lesson, reason: str, detail: dict[str, Any] | None = None) -> UnplacedLesson:
    return UnplacedLesson(
        lesson_index=lesson.index,
        section_id=lesson.section_id,
        subject_id=lesson.subject_id,
        ordinal=lesson.ordinal,
        reason=reason,
        detail=detail or {},
    )


def materialize(
    *,
    pin_placements: list[Placement],
    demand: CompiledDemand,
    outcome: SearchOutcome,
    rejected_pins: list[dict[str, Any]] | None = None,
    warnings: list[dict[str, Any]] | None = None,
) -> GenerationResult:
    entries = [_entry_from_placement(p) for p in pin_placements]
    entries += [_entry_from_placement(p) for _idx, p in sorted(outcome.placements.items())]
    entries.sort(key=lambda e: e.sort_key())
    verify_no_conflicts(entries)

    unplaced: list[UnplacedLesson] = []
    for lesson in demand.all_lessons:
        if lesson.reason is not None:
            unplaced.append(_unplaced(lesson, lesson.reason))
        elif lesson.index in outcome.reasons:
            unplaced.append(
                _unplaced(lesson, outcome.reasons[lesson.index], outcome.details.get(lesson.index))
            )

    report = GenerationReport(
        total_lessons=len(demand.all_lessons),
        placed_count=len(outcome.placements),
        pinned_count=len(pin_placements),
        unplaced=unplaced,
        rejected_pins=list(rejected_pins or []),
        warnings=list(warnings or []),
        stats=outcome.stats.to_dict(),
        budget_exhausted=outcome.stats.budget_exhausted,
    )
    return GenerationResult(entries=entries, report=report)
