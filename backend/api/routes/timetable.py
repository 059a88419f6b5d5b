from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from api.deps import get_school
from api.tenant import get_by_id, where_school
from core.database import get_db
from models.academic_year import AcademicYear
from models.room import Room
from models.school import School
from models.section import Section
from models.staff import Staff
from models.subject import Subject
from models.timetable_entry import TimetableEntry
from schemas.solver import ListEntriesResponse, TimetableEntryOut


router = APIRouter()


def _source(e: TimetableEntry) -> str:
    if e.is_pinned:
        return "PINNED"
    if e.is_locked:
        return "LOCKED"
    return "GENERATED"


@router.get("/entries", response_model=ListEntriesResponse)
def list_entries(
    academic_year_id: uuid.UUID = Query(...),
    section_id: uuid.UUID | None = Query(default=None),
    staff_id: uuid.UUID | None = Query(default=None),
    school: School = Depends(get_school),
    db: Session = Depends(get_db),
):
    if get_by_id(db, AcademicYear, academic_year_id, school.id) is None:
        raise HTTPException(status_code=404, detail="ACADEMIC_YEAR_NOT_FOUND")

    q = (
        select(TimetableEntry, Section, Subject, Staff, Room)
        .join(Section, Section.id == TimetableEntry.section_id)
        .join(Subject, Subject.id == TimetableEntry.subject_id)
        .join(Staff, Staff.id == TimetableEntry.staff_id)
        .outerjoin(Room, Room.id == TimetableEntry.room_id)
        .where(TimetableEntry.academic_year_id == academic_year_id)
    )
    if section_id is not None:
        q = q.where(TimetableEntry.section_id == section_id)
    if staff_id is not None:
        q = q.where(TimetableEntry.staff_id == staff_id)
    q = where_school(q, TimetableEntry, school.id).order_by(
        TimetableEntry.day_of_week.asc(),
        TimetableEntry.start_time.asc(),
        Section.code.asc(),
    )
    rows = db.execute(q).all()

    return ListEntriesResponse(
        academic_year_id=academic_year_id,
        entries=[
            TimetableEntryOut(
                id=e.id,
                section_id=e.section_id,
                subject_id=e.subject_id,
                staff_id=e.staff_id,
                room_id=e.room_id,
                day_of_week=int(e.day_of_week),
                start_time=e.start_time,
                end_time=e.end_time,
                source=_source(e),
                pinned_slot_id=e.pinned_slot_id,
                section_code=sec.code,
                subject_code=subj.code,
                staff_code=staff.code,
                room_code=room.code if room is not None else None,
            )
            for e, sec, subj, staff, room in rows
        ],
    )
