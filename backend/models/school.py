from __future__ import annotations

import uuid
from datetime import time

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, Text, Time, Uuid
from sqlalchemy.sql import func

from models.base import Base, JSONType


DEFAULT_TEACHING_DAYS = [0, 1, 2, 3, 4]


class School(Base):
    __tablename__ = "schools"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)

    # Day numbers 0 (Monday) .. 6 (Sunday).
    teaching_days = Column(JSONType, nullable=False, default=lambda: list(DEFAULT_TEACHING_DAYS))

    # Fallback period template, used only when the school has no Period rows.
    day_start_time = Column(Time, nullable=False, default=time(8, 0))
    day_end_time = Column(Time, nullable=False, default=time(15, 0))
    period_minutes = Column(Integer, nullable=False, default=60)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        CheckConstraint("period_minutes > 0", name="ck_schools_period_minutes"),
        CheckConstraint("day_end_time > day_start_time", name="ck_schools_day_window"),
    )
