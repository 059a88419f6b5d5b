from __future__ import annotations

from fastapi import APIRouter

from api.routes import solver, timetable


api_router = APIRouter()

# Every route is scoped to one school through the path.
_school = "/schools/{school_id}/timetable"
api_router.include_router(solver.router, prefix=_school, tags=["solver"])
api_router.include_router(timetable.router, prefix=_school, tags=["timetable"])
