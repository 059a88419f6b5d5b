from __future__ import annotations

import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, Time, Uuid
from sqlalchemy.sql import func

from models.base import Base


class TimetableEntry(Base):
    __tablename__ = "timetable_entries"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid, nullable=False, index=True)
    academic_year_id = Column(Uuid, nullable=False)
    run_id = Column(Uuid, nullable=True)
    section_id = Column(Uuid, nullable=False)
    subject_id = Column(Uuid, nullable=False)
    staff_id = Column(Uuid, nullable=False)
    room_id = Column(Uuid, nullable=True)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_pinned = Column(Boolean, nullable=False, default=False)
    pinned_slot_id = Column(Uuid, nullable=True, index=True)
    # Carried over verbatim from an earlier run (lock_existing_entries).
    is_locked = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
