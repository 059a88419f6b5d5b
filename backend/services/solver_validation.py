from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from api.tenant import where_school
from models.class_subject import ClassSubject
from models.period import Period
from models.pinned_slot import PinnedSlot
from models.room import Room
from models.school import School
from models.school_class import SchoolClass
from models.section import Section
from models.section_subject_requirement import SectionSubjectRequirement
from models.staff import Staff
from models.staff_subject_qualification import StaffSubjectQualification
from models.subject import Subject
from models.subject_school_level import SubjectSchoolLevel
from models.timetable_conflict import TimetableConflict
from models.timetable_run import TimetableRun


@dataclass(frozen=True)
class ValidationConflict:
    conflict_type: str
    message: str
    severity: str = "ERROR"
    section_id: Any | None = None
    staff_id: Any | None = None
    subject_id: Any | None = None
    room_id: Any | None = None
    metadata: dict[str, Any] | None = None


def persist_conflicts(db: Session, *, run: TimetableRun, conflicts: Iterable[ValidationConflict]) -> None:
    for c in conflicts:
        db.add(
            TimetableConflict(
                school_id=run.school_id,
                run_id=run.id,
                severity=c.severity,
                conflict_type=c.conflict_type,
                message=c.message,
                section_id=c.section_id,
                staff_id=c.staff_id,
                subject_id=c.subject_id,
                room_id=c.room_id,
                metadata_json=c.metadata or {},
            )
        )


def _count(db: Session, model, school_id, *conditions) -> int:
    q = where_school(select(func.count()).select_from(model), model, school_id)
    for cond in conditions:
        q = q.where(cond)
    return int(db.execute(q).scalar_one())


def validate_prereqs(
    db: Session,
    *,
    school: School,
    sections: list[Section],
    infer_requirements: bool = False,
) -> list[ValidationConflict]:
    """Check that the reference data a generation run depends on exists.

    ERROR items abort the run before search; WARN/INFO items are stored with
    the run and returned alongside the result.
    """

    conflicts: list[ValidationConflict] = []
    section_ids = [s.id for s in sections]

    if not list(school.teaching_days or []):
        conflicts.append(
            ValidationConflict(
                conflict_type="MISSING_TEACHING_DAYS",
                message="School has no teaching days configured.",
            )
        )

    if _count(db, Period, school.id, Period.is_teaching.is_(True)) == 0:
        conflicts.append(
            ValidationConflict(
                severity="INFO",
                conflict_type="DEFAULT_PERIOD_TEMPLATE",
                message="No period template configured; using the school day window split into equal periods.",
                metadata={
                    "day_start_time": school.day_start_time.strftime("%H:%M") if school.day_start_time else None,
                    "day_end_time": school.day_end_time.strftime("%H:%M") if school.day_end_time else None,
                    "period_minutes": school.period_minutes,
                },
            )
        )

    if not sections:
        conflicts.append(
            ValidationConflict(
                conflict_type="NO_ACTIVE_SECTIONS",
                message="No active sections found for the scheduling horizon.",
            )
        )
        return conflicts

    if _count(db, Subject, school.id, Subject.is_active.is_(True)) == 0:
        conflicts.append(ValidationConflict(conflict_type="NO_SUBJECTS", message="No active subjects configured."))

    req_count = _count(
        db,
        SectionSubjectRequirement,
        school.id,
        SectionSubjectRequirement.section_id.in_(section_ids),
    )
    if req_count == 0:
        inferable = 0
        class_ids = [s.class_id for s in sections if s.class_id is not None]
        if infer_requirements and class_ids:
            inferable = _count(db, ClassSubject, school.id, ClassSubject.class_id.in_(class_ids))
            if inferable == 0:
                level_ids = (
                    select(SchoolClass.school_level_id)
                    .where(SchoolClass.id.in_(class_ids))
                    .where(SchoolClass.school_level_id.is_not(None))
                )
                inferable = _count(
                    db, SubjectSchoolLevel, school.id, SubjectSchoolLevel.school_level_id.in_(level_ids)
                )
        if inferable == 0:
            conflicts.append(
                ValidationConflict(
                    conflict_type="NO_REQUIREMENTS",
                    message="No section-subject requirements exist for the selected sections.",
                )
            )

    if _count(db, StaffSubjectQualification, school.id) == 0:
        conflicts.append(
            ValidationConflict(
                conflict_type="NO_QUALIFICATIONS",
                message="No staff-subject qualification links configured.",
            )
        )

    if _count(db, Room, school.id, Room.is_active.is_(True)) == 0:
        conflicts.append(
            ValidationConflict(
                severity="WARN",
                conflict_type="NO_ROOMS",
                message="No active rooms configured; lessons need allow_roomless to be placed.",
            )
        )

    # Pins that reference inactive staff/subjects/rooms are skipped by the loader; surface them.
    active_staff = set(
        db.execute(where_school(select(Staff.id).where(Staff.is_active.is_(True)), Staff, school.id)).scalars().all()
    )
    active_subjects = set(
        db.execute(where_school(select(Subject.id).where(Subject.is_active.is_(True)), Subject, school.id))
        .scalars()
        .all()
    )
    active_rooms = set(
        db.execute(where_school(select(Room.id).where(Room.is_active.is_(True)), Room, school.id)).scalars().all()
    )
    q_pins = (
        select(PinnedSlot)
        .where(PinnedSlot.section_id.in_(section_ids))
        .where(PinnedSlot.is_active.is_(True))
    )
    for pin in db.execute(where_school(q_pins, PinnedSlot, school.id)).scalars().all():
        problems: list[str] = []
        if pin.staff_id not in active_staff:
            problems.append("staff")
        if pin.subject_id not in active_subjects:
            problems.append("subject")
        if pin.room_id is not None and pin.room_id not in active_rooms:
            problems.append("room")
        if problems:
            conflicts.append(
                ValidationConflict(
                    severity="WARN",
                    conflict_type="PIN_REFERENCE_INACTIVE",
                    message=f"Pinned slot references an inactive or unknown {', '.join(problems)}; it is ignored.",
                    section_id=pin.section_id,
                    staff_id=pin.staff_id,
                    subject_id=pin.subject_id,
                    room_id=pin.room_id,
                    metadata={"pinned_slot_id": str(pin.id)},
                )
            )
    return conflicts
