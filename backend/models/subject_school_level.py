from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, UniqueConstraint, Uuid
from sqlalchemy.sql import func

from models.base import Base


class SubjectSchoolLevel(Base):
    """Subject offered at a school level; inference falls back to it for classes without a curriculum."""

    __tablename__ = "subject_school_levels"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid, nullable=False, index=True)
    subject_id = Column(Uuid, nullable=False)
    school_level_id = Column(Uuid, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("subject_id", "school_level_id", name="uq_subject_school_levels_subject_level"),
    )
