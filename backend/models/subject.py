from __future__ import annotations

import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Float, Text, Uuid
from sqlalchemy.sql import func

from models.base import Base


class Subject(Base):
    __tablename__ = "subjects"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid, nullable=False, index=True)
    department_id = Column(Uuid, nullable=True)
    code = Column(Text, nullable=False)
    name = Column(Text, nullable=False)
    # When set, only rooms of this type (or untyped rooms) are eligible.
    required_room_type = Column(Text, nullable=True)
    weekly_hours = Column(Float, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        CheckConstraint("weekly_hours is null or weekly_hours >= 0", name="ck_subjects_weekly_hours"),
    )
