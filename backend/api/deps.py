from __future__ import annotations

import uuid

from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from core.database import get_db
from models.school import School


def get_school(school_id: uuid.UUID, db: Session = Depends(get_db)) -> School:
    """Resolve the `{school_id}` path segment; every route below it is scoped to this school."""

    school = db.get(School, school_id)
    if school is None:
        raise HTTPException(status_code=404, detail="SCHOOL_NOT_FOUND")
    return school
