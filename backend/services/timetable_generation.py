from __future__ import annotations

import logging
import math
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Iterator

from pydantic_core import to_jsonable_python
from sqlalchemy import delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from api.tenant import where_school
from core.config import settings
from models.class_subject import ClassSubject
from models.period import Period
from models.pinned_slot import PinnedSlot as PinnedSlotRow
from models.room import Room
from models.room_unavailability import RoomUnavailability
from models.school import School
from models.school_class import SchoolClass
from models.section import Section
from models.section_subject_requirement import SectionSubjectRequirement
from models.staff import Staff
from models.staff_subject_qualification import StaffSubjectQualification
from models.staff_unavailability import StaffUnavailability
from models.subject import Subject
from models.subject_school_level import SubjectSchoolLevel
from models.timetable_entry import TimetableEntry
from models.timetable_run import TimetableRun
from schemas.solver import GenerateTimetableRequest
from services.solver_validation import ValidationConflict, persist_conflicts, validate_prereqs
from solver.calendar_grid import PeriodTemplate, Slot, periods_from_window
from solver.errors import ConfigurationError, TimetableError
from solver.generator import generate_timetable, suggest_slot
from solver.materializer import GenerationResult
from solver.problem import (
    GenerationOptions,
    PinnedSlot,
    Qualification,
    Requirement,
    RoomInfo,
    SectionInfo,
    StaffInfo,
    SubjectInfo,
    TimetableProblem,
    Unavailability,
)


logger = logging.getLogger(__name__)


class GenerationInProgressError(TimetableError):
    """Another generation run for the same school is still in flight."""

    def __init__(self, school_id: Any, *, run_id: Any | None = None):
        details: dict[str, Any] = {"school_id": str(school_id)}
        if run_id is not None:
            details["run_id"] = str(run_id)
        super().__init__(
            "GENERATION_IN_PROGRESS",
            "A timetable generation run is already in progress for this school.",
            details=details,
        )


class RunGuard:
    """Process-wide guard allowing at most one in-flight run per school."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: set[Any] = set()

    @contextmanager
    def hold(self, school_id) -> Iterator[None]:
        with self._lock:
            if school_id in self._active:
                raise GenerationInProgressError(school_id)
            self._active.add(school_id)
        try:
            yield
        finally:
            with self._lock:
                self._active.discard(school_id)


RUN_GUARD = RunGuard()


@dataclass
class GenerationRun:
    run: TimetableRun
    result: GenerationResult
    issues: list[ValidationConflict] = field(default_factory=list)
    persisted: bool = True


def _utc(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes; every stored timestamp is UTC.
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


def find_active_run(db: Session, school_id, *, now: datetime | None = None) -> TimetableRun | None:
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(seconds=settings.run_stale_after_seconds)
    q = (
        select(TimetableRun)
        .where(TimetableRun.status == "RUNNING")
        .order_by(TimetableRun.created_at.desc())
    )
    for run in db.execute(where_school(q, TimetableRun, school_id)).scalars().all():
        if run.created_at is not None and _utc(run.created_at) >= cutoff:
            return run
    return None


def build_options(payload: GenerateTimetableRequest, *, school: School) -> GenerationOptions:
    max_seconds = payload.max_seconds or settings.solver_max_seconds
    if settings.is_production:
        max_seconds = min(max_seconds, settings.solver_production_max_seconds)
    return GenerationOptions(
        max_steps=payload.max_steps or settings.solver_max_steps,
        max_seconds=max_seconds,
        backtrack_limit=(
            payload.backtrack_limit if payload.backtrack_limit is not None else settings.solver_backtrack_limit
        ),
        include_pinned=payload.include_pinned,
        honor_unavailability=payload.honor_unavailability,
        enforce_staff_load_limits=payload.enforce_staff_load_limits,
        allow_roomless=payload.allow_roomless,
        spread_across_days=payload.spread_across_days,
        default_period_minutes=school.period_minutes or settings.default_period_minutes,
    )


def resolve_sections(
    db: Session,
    *,
    school_id,
    academic_year_id,
    section_ids: Iterable[uuid.UUID] | None = None,
) -> tuple[list[Section], list[Section]]:
    """(horizon, targeted): all active sections of the year, and the subset this run rewrites."""

    q = (
        select(Section)
        .where(Section.academic_year_id == academic_year_id)
        .where(Section.is_active.is_(True))
        .order_by(Section.code, Section.id)
    )
    horizon = list(db.execute(where_school(q, Section, school_id)).scalars().all())
    if section_ids is None:
        return horizon, horizon

    wanted = list(dict.fromkeys(section_ids))
    by_id = {s.id: s for s in horizon}
    unknown = [sid for sid in wanted if sid not in by_id]
    if unknown:
        raise ConfigurationError(
            "UNKNOWN_SECTIONS",
            "Some requested sections are not active sections of this academic year.",
            details={"section_ids": [str(sid) for sid in unknown]},
        )
    wanted_set = set(wanted)
    return horizon, [s for s in horizon if s.id in wanted_set]


def _periods_for(db: Session, school: School) -> list[PeriodTemplate]:
    q = where_school(select(Period), Period, school.id).order_by(Period.period_index)
    rows = db.execute(q).scalars().all()
    if not rows:
        return periods_from_window(
            school.day_start_time,
            school.day_end_time,
            school.period_minutes or settings.default_period_minutes,
        )
    return [
        PeriodTemplate(
            period_index=int(p.period_index),
            start_time=p.start_time,
            end_time=p.end_time,
            is_teaching=bool(p.is_teaching),
        )
        for p in rows
    ]


def _inferred_periods(weekly_hours: float | None) -> int:
    hours = 2.0 if weekly_hours is None else float(weekly_hours)
    # Half-up rounding: 2.5 hours become 3 periods.
    return max(1, int(math.floor(hours + 0.5)))


def _requirements_for(
    db: Session,
    *,
    school_id,
    sections: list[Section],
    subjects_by_id: dict[Any, Subject],
    level_by_class: dict[Any, Any] | None = None,
    infer: bool,
) -> list[Requirement]:
    section_ids = [s.id for s in sections]
    q = select(SectionSubjectRequirement).where(SectionSubjectRequirement.section_id.in_(section_ids))
    rows = db.execute(where_school(q, SectionSubjectRequirement, school_id)).scalars().all()
    out = [Requirement(r.section_id, r.subject_id, int(r.periods_per_week)) for r in rows]
    if not infer:
        return out

    explicit = {(r.section_id, r.subject_id) for r in out}
    class_ids = {s.class_id for s in sections if s.class_id is not None}
    if not class_ids:
        return out
    q_cs = select(ClassSubject).where(ClassSubject.class_id.in_(class_ids))
    curriculum: dict[Any, list[Any]] = {}
    for link in db.execute(where_school(q_cs, ClassSubject, school_id)).scalars().all():
        curriculum.setdefault(link.class_id, []).append(link.subject_id)

    # Classes without a curriculum of their own take their level's subjects.
    level_by_class = level_by_class or {}
    level_ids = {level_by_class.get(c) for c in class_ids if c not in curriculum} - {None}
    by_level: dict[Any, list[Any]] = {}
    if level_ids:
        q_sl = select(SubjectSchoolLevel).where(SubjectSchoolLevel.school_level_id.in_(level_ids))
        for link in db.execute(where_school(q_sl, SubjectSchoolLevel, school_id)).scalars().all():
            by_level.setdefault(link.school_level_id, []).append(link.subject_id)

    for section in sections:
        subject_ids = curriculum.get(section.class_id) or by_level.get(level_by_class.get(section.class_id), [])
        for subject_id in subject_ids:
            subject = subjects_by_id.get(subject_id)
            if subject is None or (section.id, subject_id) in explicit:
                continue
            explicit.add((section.id, subject_id))
            out.append(Requirement(section.id, subject_id, _inferred_periods(subject.weekly_hours)))
    return out


def _entry_booking(e: TimetableEntry) -> PinnedSlot:
    return PinnedSlot(
        section_id=e.section_id,
        subject_id=e.subject_id,
        staff_id=e.staff_id,
        room_id=e.room_id,
        day_of_week=int(e.day_of_week),
        start_time=e.start_time,
        end_time=e.end_time,
        id=e.id,
        source="LOCKED",
    )


def load_problem(
    db: Session,
    *,
    school: School,
    academic_year_id,
    section_ids: Iterable[uuid.UUID] | None = None,
    include_pinned: bool = True,
    lock_existing_entries: bool = False,
    infer_requirements: bool = False,
) -> TimetableProblem:
    """Load everything one run needs in a fixed number of queries.

    `sections` of the returned problem are the targeted sections. Entries of
    the horizon that this run must not move come back as LOCKED bookings:
    every entry of an untargeted section, and with `lock_existing_entries`
    the generated entries of targeted sections too.
    """

    horizon, targeted = resolve_sections(
        db, school_id=school.id, academic_year_id=academic_year_id, section_ids=section_ids
    )
    targeted_ids = {s.id for s in targeted}
    horizon_ids = [s.id for s in horizon]

    class_ids = {s.class_id for s in targeted if s.class_id is not None}
    level_by_class: dict[Any, Any] = {}
    if class_ids:
        q_cls = where_school(select(SchoolClass).where(SchoolClass.id.in_(class_ids)), SchoolClass, school.id)
        level_by_class = {c.id: c.school_level_id for c in db.execute(q_cls).scalars().all()}

    q_subjects = where_school(select(Subject).where(Subject.is_active.is_(True)), Subject, school.id)
    subjects_by_id = {s.id: s for s in db.execute(q_subjects).scalars().all()}
    q_staff = where_school(select(Staff).where(Staff.is_active.is_(True)), Staff, school.id)
    staff_rows = db.execute(q_staff).scalars().all()
    staff_ids = {t.id for t in staff_rows}
    q_rooms = where_school(select(Room).where(Room.is_active.is_(True)), Room, school.id)
    room_rows = db.execute(q_rooms).scalars().all()
    room_ids = {r.id for r in room_rows}

    q_quals = where_school(select(StaffSubjectQualification), StaffSubjectQualification, school.id)
    qualifications = [
        Qualification(q.staff_id, q.subject_id, class_id=q.class_id, school_level_id=q.school_level_id)
        for q in db.execute(q_quals).scalars().all()
        if q.staff_id in staff_ids
    ]

    q_su = where_school(select(StaffUnavailability), StaffUnavailability, school.id)
    staff_unavailability = [
        Unavailability(u.staff_id, int(u.day_of_week), u.start_time, u.end_time)
        for u in db.execute(q_su).scalars().all()
    ]
    q_ru = where_school(select(RoomUnavailability), RoomUnavailability, school.id)
    room_unavailability = [
        Unavailability(u.room_id, int(u.day_of_week), u.start_time, u.end_time)
        for u in db.execute(q_ru).scalars().all()
    ]

    pins: list[PinnedSlot] = []
    if horizon_ids:
        q_pins = (
            select(PinnedSlotRow)
            .where(PinnedSlotRow.section_id.in_(horizon_ids))
            .where(PinnedSlotRow.is_active.is_(True))
        )
        for p in db.execute(where_school(q_pins, PinnedSlotRow, school.id)).scalars().all():
            if p.staff_id not in staff_ids or p.subject_id not in subjects_by_id:
                continue
            if p.room_id is not None and p.room_id not in room_ids:
                continue
            pins.append(
                PinnedSlot(
                    section_id=p.section_id,
                    subject_id=p.subject_id,
                    staff_id=p.staff_id,
                    room_id=p.room_id,
                    day_of_week=int(p.day_of_week),
                    start_time=p.start_time,
                    end_time=p.end_time,
                    id=p.id,
                )
            )
    live_pin_ids = {p.id for p in pins} if include_pinned else set()

    bookings: list[PinnedSlot] = []
    if horizon_ids:
        q_entries = (
            select(TimetableEntry)
            .where(TimetableEntry.academic_year_id == academic_year_id)
            .where(TimetableEntry.section_id.in_(horizon_ids))
        )
        for e in db.execute(where_school(q_entries, TimetableEntry, school.id)).scalars().all():
            if e.is_pinned and e.pinned_slot_id in live_pin_ids:
                continue  # the PinnedSlot row itself is the booking
            if e.section_id not in targeted_ids:
                bookings.append(_entry_booking(e))
            elif lock_existing_entries and not e.is_pinned:
                bookings.append(_entry_booking(e))

    return TimetableProblem(
        teaching_days=[int(d) for d in (school.teaching_days or [])],
        periods=_periods_for(db, school),
        sections=[
            SectionInfo(
                id=s.id,
                code=s.code,
                class_id=s.class_id,
                school_level_id=level_by_class.get(s.class_id),
                academic_year_id=s.academic_year_id,
                strength=s.strength,
            )
            for s in targeted
        ],
        subjects=[
            SubjectInfo(
                id=s.id,
                code=s.code,
                department_id=s.department_id,
                required_room_type=s.required_room_type,
            )
            for s in subjects_by_id.values()
        ],
        staff=[
            StaffInfo(
                id=t.id,
                code=t.code,
                max_periods_per_day=t.max_periods_per_day,
                max_periods_per_week=t.max_periods_per_week,
            )
            for t in staff_rows
        ],
        rooms=[RoomInfo(id=r.id, code=r.code, room_type=r.room_type, capacity=r.capacity) for r in room_rows],
        requirements=_requirements_for(
            db,
            school_id=school.id,
            sections=targeted,
            subjects_by_id=subjects_by_id,
            level_by_class=level_by_class,
            infer=infer_requirements,
        ),
        qualifications=qualifications,
        staff_unavailability=staff_unavailability,
        room_unavailability=room_unavailability,
        pinned_slots=pins + bookings,
        school_id=school.id,
        academic_year_id=academic_year_id,
    )


_ISSUE_KEYS = {"severity", "conflict_type", "message", "section_id", "staff_id", "subject_id", "room_id"}


def _conflict_from_issue(issue: dict[str, Any]) -> ValidationConflict:
    return ValidationConflict(
        severity=issue.get("severity", "WARN"),
        conflict_type=issue["conflict_type"],
        message=issue["message"],
        section_id=issue.get("section_id"),
        staff_id=issue.get("staff_id"),
        subject_id=issue.get("subject_id"),
        room_id=issue.get("room_id"),
        metadata=to_jsonable_python({k: v for k, v in issue.items() if k not in _ISSUE_KEYS}),
    )


def result_issues(result: GenerationResult) -> list[ValidationConflict]:
    """Rejected pins, engine warnings and unplaced lessons as per-run issue rows."""

    report = result.report
    out = [_conflict_from_issue(i) for i in report.rejected_pins]
    out += [_conflict_from_issue(i) for i in report.warnings]
    for u in report.unplaced:
        out.append(
            ValidationConflict(
                severity="ERROR",
                conflict_type=u.reason,
                message=f"Lesson {u.ordinal} of this subject could not be placed ({u.reason}).",
                section_id=u.section_id,
                subject_id=u.subject_id,
                metadata=to_jsonable_python({"ordinal": u.ordinal, **u.detail}),
            )
        )
    return out


def _finish_run(run: TimetableRun, result: GenerationResult) -> None:
    run.report = to_jsonable_python(result.report.to_dict())
    run.status = "SUCCEEDED" if result.report.complete else "PARTIAL"
    run.finished_at = datetime.now(timezone.utc)


def persist_result(
    db: Session,
    *,
    run: TimetableRun,
    problem: TimetableProblem,
    result: GenerationResult,
    issues: Iterable[ValidationConflict] = (),
) -> int:
    """Write one run's entries, issues and report in a single transaction.

    Non-pinned entries of the targeted sections are replaced. Pinned entries
    are upserted by pinned slot id, so re-running with the same pins is a
    no-op for them. Entries of untargeted sections are never touched.
    Returns the number of entries written.
    """

    school_id = problem.school_id
    academic_year_id = problem.academic_year_id
    targeted = [s.id for s in problem.sections]
    targeted_set = set(targeted)
    own = [e for e in result.entries if e.section_id in targeted_set]
    kept_pin_ids = [e.source_id for e in own if e.is_pinned]

    written = 0
    if targeted:
        scope = (
            where_school(delete(TimetableEntry), TimetableEntry, school_id)
            .where(TimetableEntry.academic_year_id == academic_year_id)
            .where(TimetableEntry.section_id.in_(targeted))
        )
        db.execute(scope.where(TimetableEntry.is_pinned.is_(False)))
        db.execute(
            scope.where(TimetableEntry.is_pinned.is_(True)).where(
                or_(TimetableEntry.pinned_slot_id.is_(None), TimetableEntry.pinned_slot_id.not_in(kept_pin_ids))
            )
        )

    existing_pinned: dict[Any, TimetableEntry] = {}
    if kept_pin_ids:
        q = select(TimetableEntry).where(TimetableEntry.pinned_slot_id.in_(kept_pin_ids))
        existing_pinned = {
            e.pinned_slot_id: e for e in db.execute(where_school(q, TimetableEntry, school_id)).scalars().all()
        }

    for e in own:
        if e.is_pinned and e.source_id in existing_pinned:
            row = existing_pinned[e.source_id]
            row.section_id = e.section_id
            row.subject_id = e.subject_id
            row.staff_id = e.staff_id
            row.room_id = e.room_id
            row.day_of_week = e.day_of_week
            row.start_time = e.start_time
            row.end_time = e.end_time
            row.academic_year_id = academic_year_id
            row.run_id = run.id
            written += 1
            continue
        db.add(
            TimetableEntry(
                school_id=school_id,
                academic_year_id=academic_year_id,
                run_id=run.id,
                section_id=e.section_id,
                subject_id=e.subject_id,
                staff_id=e.staff_id,
                room_id=e.room_id,
                day_of_week=e.day_of_week,
                start_time=e.start_time,
                end_time=e.end_time,
                is_pinned=e.is_pinned,
                pinned_slot_id=e.source_id if e.is_pinned else None,
                is_locked=e.is_locked,
            )
        )
        written += 1

    persist_conflicts(db, run=run, conflicts=issues)
    _finish_run(run, result)
    db.commit()
    return written


def _run_parameters(payload: GenerateTimetableRequest, options: GenerationOptions) -> dict[str, Any]:
    return to_jsonable_python(
        {
            **payload.model_dump(),
            "effective": {
                "max_steps": options.max_steps,
                "max_seconds": options.max_seconds,
                "backtrack_limit": options.backtrack_limit,
            },
        }
    )


def run_generation(db: Session, *, school: School, payload: GenerateTimetableRequest) -> GenerationRun:
    """One generation run end to end: guard, run row, validation, load, solve, persist.

    Raises GenerationInProgressError when another run for the school is in
    flight and ConfigurationError (with `run_id` in its details) when the
    reference data is unusable.
    """

    with RUN_GUARD.hold(school.id):
        active = find_active_run(db, school.id)
        if active is not None:
            raise GenerationInProgressError(school.id, run_id=active.id)

        options = build_options(payload, school=school)
        run = TimetableRun(
            school_id=school.id,
            academic_year_id=payload.academic_year_id,
            status="RUNNING",
            parameters=_run_parameters(payload, options),
        )
        db.add(run)
        db.commit()
        run_id = run.id

        prereq: list[ValidationConflict] = []
        try:
            _horizon, targeted = resolve_sections(
                db,
                school_id=school.id,
                academic_year_id=payload.academic_year_id,
                section_ids=payload.section_ids,
            )
            prereq = validate_prereqs(
                db,
                school=school,
                sections=targeted,
                infer_requirements=payload.auto_infer_requirements,
            )
            errors = [c for c in prereq if c.severity == "ERROR"]
            if errors:
                raise ConfigurationError(
                    errors[0].conflict_type,
                    errors[0].message,
                    details={"conflicts": [c.conflict_type for c in errors]},
                )

            problem = load_problem(
                db,
                school=school,
                academic_year_id=payload.academic_year_id,
                section_ids=payload.section_ids,
                include_pinned=payload.include_pinned,
                lock_existing_entries=payload.lock_existing_entries,
                infer_requirements=payload.auto_infer_requirements,
            )
            result = generate_timetable(problem, options)
            issues = prereq + result_issues(result)

            if payload.persist:
                written = persist_result(db, run=run, problem=problem, result=result, issues=issues)
            else:
                persist_conflicts(db, run=run, conflicts=issues)
                _finish_run(run, result)
                db.commit()
                written = 0
            logger.info(
                "Generation run %s for school %s finished: status=%s entries_written=%s",
                run.id,
                school.id,
                run.status,
                written,
            )
            return GenerationRun(run=run, result=result, issues=issues, persisted=payload.persist)

        except ConfigurationError as exc:
            db.rollback()
            failed = [c for c in prereq if c.severity == "ERROR"] or [
                ValidationConflict(
                    conflict_type=exc.code,
                    message=str(exc),
                    metadata=to_jsonable_python(exc.details),
                )
            ]
            persist_conflicts(db, run=run, conflicts=failed)
            run.status = "FAILED_VALIDATION"
            run.notes = f"{exc.code}: {exc}"[:500]
            run.finished_at = datetime.now(timezone.utc)
            db.commit()
            exc.details["run_id"] = str(run.id)
            logger.warning("Generation run %s failed validation: %s", run.id, exc.code)
            raise
        except Exception as exc:
            logger.exception("Generation run %s crashed", run_id)
            db.rollback()
            try:
                run.status = "ERROR"
                run.notes = f"{type(exc).__name__}: {exc}"[:500]
                run.finished_at = datetime.now(timezone.utc)
                db.commit()
            except SQLAlchemyError:
                # The original error is the one worth surfacing.
                db.rollback()
                logger.warning("Could not mark run %s as ERROR", run_id)
            raise


def suggest_slot_for(
    db: Session,
    *,
    school: School,
    academic_year_id,
    section_id,
    staff_id,
    room_id=None,
    day_of_week: int | None = None,
    honor_unavailability: bool = True,
) -> Slot | None:
    """First free grid slot for one more lesson, given pins and the current timetable."""

    # With nothing targeted, every stored entry and active pin of the year is a booking.
    problem = load_problem(db, school=school, academic_year_id=academic_year_id, section_ids=[])
    options = GenerationOptions(
        honor_unavailability=honor_unavailability,
        default_period_minutes=school.period_minutes or settings.default_period_minutes,
    )
    return suggest_slot(
        problem,
        section_id=section_id,
        staff_id=staff_id,
        room_id=room_id,
        day_of_week=day_of_week,
        options=options,
    )
