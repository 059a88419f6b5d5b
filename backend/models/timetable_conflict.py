from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, Enum, Text, Uuid
from sqlalchemy.sql import func

from models.base import Base, JSONType


CONFLICT_SEVERITY = Enum(
    "INFO",
    "WARN",
    "ERROR",
    name="conflict_severity",
)


class TimetableConflict(Base):
    __tablename__ = "timetable_conflicts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid, nullable=False, index=True)
    run_id = Column(Uuid, nullable=False, index=True)
    severity = Column(CONFLICT_SEVERITY, nullable=False, default="ERROR")
    conflict_type = Column(Text, nullable=False)
    message = Column(Text, nullable=False)

    section_id = Column(Uuid, nullable=True)
    staff_id = Column(Uuid, nullable=True)
    subject_id = Column(Uuid, nullable=True)
    room_id = Column(Uuid, nullable=True)

    metadata_json = Column("metadata", JSONType, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
