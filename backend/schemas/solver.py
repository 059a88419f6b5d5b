from __future__ import annotations

from datetime import datetime, time
import uuid
from typing import Any, Literal

from pydantic import BaseModel, Field


RunStatus = Literal["RUNNING", "SUCCEEDED", "PARTIAL", "FAILED_VALIDATION", "ERROR"]


class GenerateTimetableRequest(BaseModel):
    academic_year_id: uuid.UUID
    # Subset of the horizon's sections; all active sections when omitted.
    section_ids: list[uuid.UUID] | None = None

    lock_existing_entries: bool = False
    include_pinned: bool = True
    honor_unavailability: bool = True
    auto_infer_requirements: bool = False
    enforce_staff_load_limits: bool = True
    allow_roomless: bool = False
    # Try each period across the week before the next period of the day.
    spread_across_days: bool = False

    # Budget overrides; server defaults apply when omitted.
    max_steps: int | None = Field(default=None, gt=0)
    max_seconds: float | None = Field(default=None, gt=0)
    backtrack_limit: int | None = Field(default=None, ge=0)

    persist: bool = True


class SolverConflict(BaseModel):
    id: uuid.UUID | None = None
    severity: Literal["INFO", "WARN", "ERROR"] = "ERROR"
    conflict_type: str
    message: str
    section_id: uuid.UUID | None = None
    staff_id: uuid.UUID | None = None
    subject_id: uuid.UUID | None = None
    room_id: uuid.UUID | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class UnplacedLessonOut(BaseModel):
    section_id: uuid.UUID
    subject_id: uuid.UUID
    ordinal: int
    reason: Literal["NO_QUALIFIED_STAFF", "NO_ELIGIBLE_ROOM", "NO_FREE_SLOT", "BUDGET_EXHAUSTED"]
    detail: dict[str, Any] = Field(default_factory=dict)


class TimetableEntryOut(BaseModel):
    id: uuid.UUID | None = None
    section_id: uuid.UUID
    subject_id: uuid.UUID
    staff_id: uuid.UUID
    room_id: uuid.UUID | None = None
    day_of_week: int
    start_time: time
    end_time: time
    source: Literal["GENERATED", "PINNED", "LOCKED"] = "GENERATED"
    pinned_slot_id: uuid.UUID | None = None

    # Optional display fields (filled by the grid read).
    section_code: str | None = None
    subject_code: str | None = None
    staff_code: str | None = None
    room_code: str | None = None


class GenerationReportOut(BaseModel):
    total_lessons: int = 0
    placed_count: int = 0
    pinned_count: int = 0
    unplaced_count: int = 0
    unplaced_by_reason: dict[str, int] = Field(default_factory=dict)
    rejected_pins: int = 0
    budget_exhausted: bool = False
    complete: bool = False
    stats: dict[str, Any] = Field(default_factory=dict)


class GenerateTimetableResponse(BaseModel):
    run_id: uuid.UUID
    status: RunStatus
    persisted: bool = True
    placed_count: int = 0
    unplaced_lessons: list[UnplacedLessonOut] = Field(default_factory=list)
    entries: list[TimetableEntryOut] = Field(default_factory=list)
    report: GenerationReportOut = Field(default_factory=GenerationReportOut)
    conflicts: list[SolverConflict] = Field(default_factory=list)


class SuggestSlotRequest(BaseModel):
    academic_year_id: uuid.UUID
    section_id: uuid.UUID
    staff_id: uuid.UUID
    room_id: uuid.UUID | None = None
    day_of_week: int | None = Field(default=None, ge=0, le=6)
    honor_unavailability: bool = True


class SuggestSlotResponse(BaseModel):
    day_of_week: int
    period_index: int
    start_time: time
    end_time: time


class RunSummary(BaseModel):
    id: uuid.UUID
    created_at: datetime
    finished_at: datetime | None = None
    status: str
    academic_year_id: uuid.UUID | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    notes: str | None = None


class RunDetail(RunSummary):
    report: dict[str, Any] = Field(default_factory=dict)
    conflicts_total: int
    entries_total: int


class ListRunsResponse(BaseModel):
    runs: list[RunSummary]


class ListRunConflictsResponse(BaseModel):
    run_id: uuid.UUID
    conflicts: list[SolverConflict]


class ListEntriesResponse(BaseModel):
    academic_year_id: uuid.UUID
    entries: list[TimetableEntryOut]
