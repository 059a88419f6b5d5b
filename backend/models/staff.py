from __future__ import annotations

import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Text, UniqueConstraint, Uuid
from sqlalchemy.sql import func

from models.base import Base


class Staff(Base):
    __tablename__ = "staff"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid, nullable=False, index=True)
    code = Column(Text, nullable=False)
    full_name = Column(Text, nullable=False)

    max_periods_per_day = Column(Integer, nullable=True)
    max_periods_per_week = Column(Integer, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("school_id", "code", name="uq_staff_school_code"),
        CheckConstraint("max_periods_per_day is null or max_periods_per_day >= 0", name="ck_staff_max_per_day"),
        CheckConstraint("max_periods_per_week is null or max_periods_per_week >= 0", name="ck_staff_max_per_week"),
    )
