from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, Uuid
from sqlalchemy.sql import func

from models.base import Base


class StaffSubjectQualification(Base):
    """Staff may teach a subject to one class, one school level, or (both null) any class."""

    __tablename__ = "staff_subject_qualifications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid, nullable=False, index=True)
    staff_id = Column(Uuid, nullable=False)
    subject_id = Column(Uuid, nullable=False)
    class_id = Column(Uuid, nullable=True)
    school_level_id = Column(Uuid, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
