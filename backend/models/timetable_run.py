from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, Enum, Text, Uuid
from sqlalchemy.sql import func

from models.base import Base, JSONType


RUN_STATUS = Enum(
    "RUNNING",
    "SUCCEEDED",
    "PARTIAL",
    "FAILED_VALIDATION",
    "ERROR",
    name="timetable_run_status",
)


class TimetableRun(Base):
    __tablename__ = "timetable_runs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid, nullable=False, index=True)
    academic_year_id = Column(Uuid, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    finished_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(RUN_STATUS, nullable=False, default="RUNNING")
    parameters = Column(JSONType, nullable=False, default=dict)
    report = Column(JSONType, nullable=False, default=dict)
    notes = Column(Text, nullable=True)
