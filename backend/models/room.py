from __future__ import annotations

import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Text, UniqueConstraint, Uuid
from sqlalchemy.sql import func

from models.base import Base


class Room(Base):
    __tablename__ = "rooms"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid, nullable=False, index=True)
    code = Column(Text, nullable=False)
    name = Column(Text, nullable=False)
    # CLASSROOM, LAB, HALL, ... or null for a general-purpose room.
    room_type = Column(Text, nullable=True)
    capacity = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        CheckConstraint("capacity is null or capacity >= 0", name="ck_rooms_capacity"),
        UniqueConstraint("school_id", "code", name="uq_rooms_school_code"),
    )
