from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable

from solver.errors import NO_ELIGIBLE_ROOM, NO_QUALIFIED_STAFF
from solver.problem import (
    Qualification,
    Requirement,
    RoomInfo,
    SectionInfo,
    StaffInfo,
    SubjectInfo,
)


PairKey = tuple[Any, Any]


@dataclass(frozen=True)
class Lesson:
    """One unit of teaching demand for a (section, subject) pair.

    `ordinal` numbers the lessons of a pair from 1. `room_ids` holds a single
    None when the lesson may be taught without a room.
    """

    index: int
    section_id: Any
    subject_id: Any
    ordinal: int
    staff_ids: tuple[Any, ...]
    room_ids: tuple[Any, ...]
    reason: str | None = None

    @property
    def key(self) -> PairKey:
        return (self.section_id, self.subject_id)

    @property
    def placeable(self) -> bool:
        return self.reason is None


@dataclass
class CompiledDemand:
    lessons: list[Lesson] = field(default_factory=list)
    unstaffable: list[Lesson] = field(default_factory=list)
    unroomable: list[Lesson] = field(default_factory=list)
    eligible_staff: dict[PairKey, tuple[Any, ...]] = field(default_factory=dict)
    eligible_rooms: dict[PairKey, tuple[Any, ...]] = field(default_factory=dict)
    periods_by_section: dict[Any, int] = field(default_factory=dict)
    total_demand: int = 0
    pinned_units: int = 0
    warnings: list[dict[str, Any]] = field(default_factory=list)

    @property
    def all_lessons(self) -> list[Lesson]:
        return sorted(self.lessons + self.unstaffable + self.unroomable, key=lambda l: l.index)


def _staff_sort_key(staff: StaffInfo | None, staff_id) -> tuple:
    return ((staff.code if staff is not None else "") or "", str(staff_id))


def eligible_staff_for(
    section: SectionInfo,
    subject_id,
    *,
    qualifications_by_subject: dict[Any, list[Qualification]],
    staff_by_id: dict[Any, StaffInfo],
) -> tuple[Any, ...]:
    """Active staff qualified for the subject in this section's class or level, most specific first."""

    best_rank: dict[Any, int] = {}
    for q in qualifications_by_subject.get(subject_id, []):
        if q.staff_id not in staff_by_id or not q.covers(section):
            continue
        r = q.rank(section)
        if q.staff_id not in best_rank or r < best_rank[q.staff_id]:
            best_rank[q.staff_id] = r
    return tuple(
        sorted(best_rank, key=lambda sid: (best_rank[sid],) + _staff_sort_key(staff_by_id.get(sid), sid))
    )


def eligible_rooms_for(section: SectionInfo, subject: SubjectInfo, rooms: Iterable[RoomInfo]) -> tuple[Any, ...]:
    """Rooms matching the subject's room type (exact matches before untyped rooms) that seat the section."""

    wanted = (subject.required_room_type or "").strip().upper() or None
    ranked: list[tuple[tuple, Any]] = []
    for r in rooms:
        rtype = (r.room_type or "").strip().upper() or None
        if wanted is not None and rtype is not None and rtype != wanted:
            continue
        if section.strength and r.capacity and r.capacity < section.strength:
            continue
        exact = 0 if (wanted is None or rtype == wanted) else 1
        ranked.append(((exact, r.code or "", str(r.id)), r.id))
    ranked.sort(key=lambda x: x[0])
    return tuple(rid for _k, rid in ranked)


def compile_demand(
    *,
    sections: Iterable[SectionInfo],
    subjects: Iterable[SubjectInfo],
    staff: Iterable[StaffInfo],
    rooms: Iterable[RoomInfo],
    requirements: Iterable[Requirement],
    qualifications: Iterable[Qualification],
    pinned_counts: dict[PairKey, int] | None = None,
    allow_roomless: bool = False,
) -> CompiledDemand:
    """Expand requirements into lessons with precomputed staff/room adjacency."""

    section_by_id = {s.id: s for s in sections}
    subject_by_id = {s.id: s for s in subjects}
    staff_by_id = {s.id: s for s in staff}
    room_list = list(rooms)
    pinned_counts = dict(pinned_counts or {})

    qualifications_by_subject: dict[Any, list[Qualification]] = defaultdict(list)
    for q in qualifications:
        qualifications_by_subject[q.subject_id].append(q)

    out = CompiledDemand()

    merged: dict[PairKey, int] = {}
    for req in requirements:
        if req.section_id not in section_by_id or req.subject_id not in subject_by_id:
            out.warnings.append(
                {
                    "conflict_type": "REQUIREMENT_OUT_OF_SCOPE",
                    "message": "Requirement references an inactive or unknown section/subject; ignored.",
                    "section_id": req.section_id,
                    "subject_id": req.subject_id,
                }
            )
            continue
        key = (req.section_id, req.subject_id)
        n = max(0, int(req.periods_per_week))
        if key in merged:
            out.warnings.append(
                {
                    "conflict_type": "DUPLICATE_REQUIREMENT",
                    "message": "Duplicate requirement for the same section and subject; the larger count is used.",
                    "section_id": req.section_id,
                    "subject_id": req.subject_id,
                }
            )
            n = max(n, merged[key])
        merged[key] = n

    def _pair_order(key: PairKey) -> tuple:
        sec = section_by_id[key[0]]
        subj = subject_by_id[key[1]]
        return (sec.code or "", str(sec.id), subj.code or "", str(subj.id))

    index = 0
    for key in sorted(merged, key=_pair_order):
        section = section_by_id[key[0]]
        subject = subject_by_id[key[1]]
        periods = merged[key]
        out.total_demand += periods
        out.periods_by_section[section.id] = out.periods_by_section.get(section.id, 0) + periods

        pinned = min(periods, pinned_counts.get(key, 0))
        out.pinned_units += pinned
        remaining = periods - pinned
        if remaining <= 0:
            continue

        staff_ids = eligible_staff_for(
            section,
            subject.id,
            qualifications_by_subject=qualifications_by_subject,
            staff_by_id=staff_by_id,
        )
        room_ids = eligible_rooms_for(section, subject, room_list)
        if not room_ids and allow_roomless:
            room_ids = (None,)
        out.eligible_staff[key] = staff_ids
        out.eligible_rooms[key] = room_ids

        reason = None
        if not staff_ids:
            reason = NO_QUALIFIED_STAFF
        elif not room_ids:
            reason = NO_ELIGIBLE_ROOM

        for ordinal in range(pinned + 1, periods + 1):
            lesson = Lesson(
                index=index,
                section_id=section.id,
                subject_id=subject.id,
                ordinal=ordinal,
                staff_ids=staff_ids,
                room_ids=room_ids,
                reason=reason,
            )
            index += 1
            if reason == NO_QUALIFIED_STAFF:
                out.unstaffable.append(lesson)
            elif reason == NO_ELIGIBLE_ROOM:
                out.unroomable.append(lesson)
            else:
                out.lessons.append(lesson)
    return out
