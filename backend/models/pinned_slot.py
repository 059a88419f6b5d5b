from __future__ import annotations

import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Time, Uuid
from sqlalchemy.sql import func

from models.base import Base


class PinnedSlot(Base):
    """Administrator-fixed lesson; generation places it verbatim."""

    __tablename__ = "pinned_slots"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid, nullable=False, index=True)
    section_id = Column(Uuid, nullable=False)
    subject_id = Column(Uuid, nullable=False)
    staff_id = Column(Uuid, nullable=False)
    room_id = Column(Uuid, nullable=True)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        CheckConstraint("day_of_week >= 0 and day_of_week <= 6", name="ck_pinned_slots_day"),
        CheckConstraint("end_time IS NULL OR end_time > start_time", name="ck_pinned_slots_end_after_start"),
    )
