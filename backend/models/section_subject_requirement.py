from __future__ import annotations

import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, UniqueConstraint, Uuid
from sqlalchemy.sql import func

from models.base import Base


class SectionSubjectRequirement(Base):
    __tablename__ = "section_subject_requirements"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid, nullable=False, index=True)
    section_id = Column(Uuid, nullable=False)
    subject_id = Column(Uuid, nullable=False)
    periods_per_week = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        CheckConstraint("periods_per_week >= 0", name="ck_requirements_periods"),
        UniqueConstraint("section_id", "subject_id", name="uq_requirements_section_subject"),
    )
