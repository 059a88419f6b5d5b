from __future__ import annotations

import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Text, Uuid
from sqlalchemy.sql import func

from models.base import Base


class Section(Base):
    __tablename__ = "sections"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid, nullable=False, index=True)
    class_id = Column(Uuid, nullable=True)
    academic_year_id = Column(Uuid, nullable=False)
    code = Column(Text, nullable=False)
    name = Column(Text, nullable=False)
    strength = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        CheckConstraint("strength >= 0", name="ck_sections_strength"),
    )
