from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.exc import OperationalError as SAOperationalError
from sqlalchemy.orm import Session

from api.deps import get_school
from api.tenant import get_by_id, where_school
from core.database import (
    DatabaseUnavailableError,
    get_db,
    is_transient_db_connectivity_error,
    validate_db_connection,
)
from models.academic_year import AcademicYear
from models.room import Room
from models.school import School
from models.section import Section
from models.staff import Staff
from models.timetable_conflict import TimetableConflict
from models.timetable_entry import TimetableEntry
from models.timetable_run import TimetableRun
from schemas.solver import (
    GenerateTimetableRequest,
    GenerateTimetableResponse,
    GenerationReportOut,
    ListRunConflictsResponse,
    ListRunsResponse,
    RunDetail,
    RunSummary,
    SolverConflict,
    SuggestSlotRequest,
    SuggestSlotResponse,
    TimetableEntryOut,
    UnplacedLessonOut,
)
from services.solver_validation import ValidationConflict
from services.timetable_generation import GenerationInProgressError, run_generation, suggest_slot_for
from solver.errors import ConfigurationError, SolverInvariantError


router = APIRouter()

logger = logging.getLogger(__name__)


def _get_academic_year(db: Session, academic_year_id: uuid.UUID, *, school_id: uuid.UUID) -> AcademicYear:
    ay = get_by_id(db, AcademicYear, academic_year_id, school_id)
    if ay is None:
        raise HTTPException(status_code=404, detail="ACADEMIC_YEAR_NOT_FOUND")
    return ay


def _conflict_out(c: ValidationConflict) -> SolverConflict:
    return SolverConflict(
        severity=c.severity,
        conflict_type=c.conflict_type,
        message=c.message,
        section_id=c.section_id,
        staff_id=c.staff_id,
        subject_id=c.subject_id,
        room_id=c.room_id,
        metadata=c.metadata or {},
    )


def _run_summary(r: TimetableRun) -> RunSummary:
    return RunSummary(
        id=r.id,
        created_at=r.created_at,
        finished_at=r.finished_at,
        status=str(r.status),
        academic_year_id=r.academic_year_id,
        parameters=r.parameters or {},
        notes=r.notes,
    )


@router.post("/generate", response_model=GenerateTimetableResponse)
def generate_timetable(
    payload: GenerateTimetableRequest,
    school: School = Depends(get_school),
    db: Session = Depends(get_db),
):
    try:
        # Explicit connectivity validation before creating any rows.
        validate_db_connection(db)
        _get_academic_year(db, payload.academic_year_id, school_id=school.id)

        outcome = run_generation(db, school=school, payload=payload)

    except GenerationInProgressError as exc:
        return JSONResponse(status_code=409, content=exc.to_dict())
    except ConfigurationError as exc:
        return JSONResponse(status_code=422, content=exc.to_dict())
    except DatabaseUnavailableError:
        db.rollback()
        raise
    except SAOperationalError as exc:
        db.rollback()
        if is_transient_db_connectivity_error(exc):
            raise DatabaseUnavailableError("Database temporarily unavailable") from exc
        raise
    except SolverInvariantError as exc:
        raise HTTPException(
            status_code=500,
            detail={
                "error": "SOLVER_INTEGRITY_ERROR",
                "type": str(exc.code),
                "message": str(exc),
            },
        )
    except IntegrityError:
        raise HTTPException(
            status_code=500,
            detail={
                "error": "SOLVER_DB_INTEGRITY_ERROR",
                "message": "Database integrity constraint violated while saving generated entries.",
            },
        )

    result = outcome.result
    report = result.report
    return GenerateTimetableResponse(
        run_id=outcome.run.id,
        status=str(outcome.run.status),
        persisted=outcome.persisted,
        placed_count=report.placed_count,
        unplaced_lessons=[
            UnplacedLessonOut(
                section_id=u.section_id,
                subject_id=u.subject_id,
                ordinal=u.ordinal,
                reason=u.reason,
                detail=u.detail,
            )
            for u in report.unplaced
        ],
        entries=[
            TimetableEntryOut(
                section_id=e.section_id,
                subject_id=e.subject_id,
                staff_id=e.staff_id,
                room_id=e.room_id,
                day_of_week=e.day_of_week,
                start_time=e.start_time,
                end_time=e.end_time,
                source=e.source,
                pinned_slot_id=e.source_id if e.is_pinned else None,
            )
            for e in result.entries
        ],
        report=GenerationReportOut(
            total_lessons=report.total_lessons,
            placed_count=report.placed_count,
            pinned_count=report.pinned_count,
            unplaced_count=report.unplaced_count,
            unplaced_by_reason=report.reason_counts(),
            rejected_pins=len(report.rejected_pins),
            budget_exhausted=report.budget_exhausted,
            complete=report.complete,
            stats=report.stats,
        ),
        conflicts=[_conflict_out(c) for c in outcome.issues],
    )


@router.post("/suggest", response_model=SuggestSlotResponse)
def suggest_slot(
    payload: SuggestSlotRequest,
    school: School = Depends(get_school),
    db: Session = Depends(get_db),
):
    _get_academic_year(db, payload.academic_year_id, school_id=school.id)
    section = get_by_id(db, Section, payload.section_id, school.id)
    if section is None or section.academic_year_id != payload.academic_year_id:
        raise HTTPException(status_code=404, detail="SECTION_NOT_FOUND")
    if get_by_id(db, Staff, payload.staff_id, school.id) is None:
        raise HTTPException(status_code=404, detail="STAFF_NOT_FOUND")
    if payload.room_id is not None and get_by_id(db, Room, payload.room_id, school.id) is None:
        raise HTTPException(status_code=404, detail="ROOM_NOT_FOUND")

    try:
        slot = suggest_slot_for(
            db,
            school=school,
            academic_year_id=payload.academic_year_id,
            section_id=payload.section_id,
            staff_id=payload.staff_id,
            room_id=payload.room_id,
            day_of_week=payload.day_of_week,
            honor_unavailability=payload.honor_unavailability,
        )
    except ConfigurationError as exc:
        return JSONResponse(status_code=422, content=exc.to_dict())

    if slot is None:
        raise HTTPException(status_code=404, detail="NO_FREE_SLOT")
    return SuggestSlotResponse(
        day_of_week=slot.day_of_week,
        period_index=slot.period_index,
        start_time=slot.start_time,
        end_time=slot.end_time,
    )


@router.get("/runs", response_model=ListRunsResponse)
def list_runs(
    academic_year_id: uuid.UUID | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    school: School = Depends(get_school),
    db: Session = Depends(get_db),
):
    q_runs = where_school(select(TimetableRun), TimetableRun, school.id)
    if academic_year_id is not None:
        q_runs = q_runs.where(TimetableRun.academic_year_id == academic_year_id)
    q_runs = q_runs.order_by(TimetableRun.created_at.desc()).limit(limit)
    rows = db.execute(q_runs).scalars().all()
    return ListRunsResponse(runs=[_run_summary(r) for r in rows])


@router.get("/runs/{run_id}", response_model=RunDetail)
def get_run(
    run_id: uuid.UUID,
    school: School = Depends(get_school),
    db: Session = Depends(get_db),
):
    run = get_by_id(db, TimetableRun, run_id, school.id)
    if run is None:
        raise HTTPException(status_code=404, detail="RUN_NOT_FOUND")

    q_conflicts_total = where_school(
        select(func.count(TimetableConflict.id)).where(TimetableConflict.run_id == run_id),
        TimetableConflict,
        school.id,
    )
    conflicts_total = db.execute(q_conflicts_total).scalar_one() or 0

    q_entries_total = where_school(
        select(func.count(TimetableEntry.id)).where(TimetableEntry.run_id == run_id),
        TimetableEntry,
        school.id,
    )
    entries_total = db.execute(q_entries_total).scalar_one() or 0

    return RunDetail(
        **_run_summary(run).model_dump(),
        report=run.report or {},
        conflicts_total=int(conflicts_total),
        entries_total=int(entries_total),
    )


@router.get("/runs/{run_id}/conflicts", response_model=ListRunConflictsResponse)
def list_run_conflicts(
    run_id: uuid.UUID,
    severity: str | None = Query(default=None),
    school: School = Depends(get_school),
    db: Session = Depends(get_db),
):
    run = get_by_id(db, TimetableRun, run_id, school.id)
    if run is None:
        raise HTTPException(status_code=404, detail="RUN_NOT_FOUND")

    q = select(TimetableConflict).where(TimetableConflict.run_id == run_id)
    if severity is not None:
        q = q.where(TimetableConflict.severity == severity.upper())
    q = where_school(q, TimetableConflict, school.id).order_by(
        TimetableConflict.created_at.asc(), TimetableConflict.id.asc()
    )
    rows = db.execute(q).scalars().all()

    return ListRunConflictsResponse(
        run_id=run_id,
        conflicts=[
            SolverConflict(
                id=c.id,
                severity=str(c.severity),
                conflict_type=c.conflict_type,
                message=c.message,
                section_id=c.section_id,
                staff_id=c.staff_id,
                subject_id=c.subject_id,
                room_id=c.room_id,
                metadata=c.metadata_json or {},
            )
            for c in rows
        ],
    )
