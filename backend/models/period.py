from __future__ import annotations

import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Time, UniqueConstraint, Uuid
from sqlalchemy.sql import func

from models.base import Base


class Period(Base):
    """One row of a school's daily period template."""

    __tablename__ = "periods"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid, nullable=False, index=True)
    period_index = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_teaching = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        CheckConstraint("period_index >= 0", name="ck_periods_index"),
        CheckConstraint("end_time > start_time", name="ck_periods_order"),
        UniqueConstraint("school_id", "period_index", name="uq_periods_school_index"),
    )
