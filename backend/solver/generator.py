from __future__ import annotations

import logging
from collections import Counter, defaultdict
from typing import Any, Iterable

from solver.calendar_grid import Slot, build_calendar_grid, minutes_to_time, spread_order, time_to_minutes
from solver.conflict_tracker import ConflictTracker, Placement
from solver.constraint_store import ConstraintStore
from solver.demand import compile_demand
from solver.errors import ConfigurationError
from solver.materializer import GenerationResult, materialize
from solver.problem import GenerationOptions, PinnedSlot, Qualification, TimetableProblem
from solver.search import SearchEngine


logger = logging.getLogger(__name__)


def _issue(conflict_type: str, message: str, *, severity: str = "WARN", **fields: Any) -> dict[str, Any]:
    out: dict[str, Any] = {"severity": severity, "conflict_type": conflict_type, "message": message}
    out.update({k: v for k, v in fields.items() if v is not None})
    return out


def _pin_fields(pin: PinnedSlot, store: ConstraintStore) -> dict[str, Any]:
    day, start, end = store.pin_interval(pin)
    return {
        "pinned_slot_id": pin.id,
        "section_id": pin.section_id,
        "subject_id": pin.subject_id,
        "staff_id": pin.staff_id,
        "room_id": pin.room_id,
        "day_of_week": day,
        "start_time": minutes_to_time(start).strftime("%H:%M"),
        "end_time": minutes_to_time(end).strftime("%H:%M"),
        "source": pin.source,
    }


def _check_reference_data(problem: TimetableProblem) -> None:
    if not problem.sections:
        raise ConfigurationError("NO_SECTIONS", "No active sections exist for the scheduling horizon.")
    if not problem.requirements:
        raise ConfigurationError("NO_REQUIREMENTS", "No section-subject requirements exist for the scheduling horizon.")
    if not problem.subjects:
        raise ConfigurationError("NO_SUBJECTS", "No active subjects exist for the school.")
    if not problem.qualifications:
        raise ConfigurationError("NO_QUALIFICATIONS", "No staff-subject qualification links exist for the school.")


def _precommit_pins(
    store: ConstraintStore,
    tracker: ConflictTracker,
    *,
    qualifications: Iterable[Qualification],
    problem: TimetableProblem,
    honor_unavailability: bool,
) -> tuple[list[Placement], list[dict[str, Any]], list[dict[str, Any]]]:
    placements: list[Placement] = []
    rejected: list[dict[str, Any]] = []
    warnings: list[dict[str, Any]] = []

    section_by_id = {s.id: s for s in problem.sections}
    quals_by_staff_subject: dict[tuple[Any, Any], list[Qualification]] = defaultdict(list)
    for q in qualifications:
        quals_by_staff_subject[(q.staff_id, q.subject_id)].append(q)

    for pin in store.pinned_slots():
        fields = _pin_fields(pin, store)
        _day, start, end = store.pin_interval(pin)
        if end <= start:
            rejected.append(
                _issue(
                    "PIN_INVALID_INTERVAL",
                    "Pinned lesson starts too late in the day to fit any time.",
                    severity="ERROR",
                    **fields,
                )
            )
            continue
        if pin.end_time is not None and time_to_minutes(pin.end_time) <= start:
            warnings.append(
                _issue(
                    "PIN_END_ADJUSTED",
                    "Pinned lesson ends at or before its start; the period end is used instead.",
                    given_end_time=pin.end_time.strftime("%H:%M"),
                    **fields,
                )
            )
        collision = tracker.commit_pin(pin)
        if collision is not None:
            logger.debug("Rejected pin %s: %s %s already pinned", pin.id, collision.resource, collision.owner_id)
            rejected.append(
                _issue(
                    "PIN_CONFLICT",
                    f"Pinned lesson collides with an earlier pin on {collision.resource.lower()} {collision.owner_id}.",
                    severity="ERROR",
                    resource=collision.resource,
                    owner_id=collision.owner_id,
                    kept_pinned_slot_id=collision.kept.id,
                    **fields,
                )
            )
            continue
        placement = tracker.pin_placement(pin)
        placements.append(placement)

        day, start, end = placement.day_of_week, placement.start_minutes, placement.end_minutes
        slot = placement.slot
        if slot is None or slot.end_minutes != end:
            warnings.append(
                _issue("PIN_OFF_GRID", "Pinned lesson does not line up with a grid period.", severity="INFO", **fields)
            )
        if honor_unavailability and not store.is_staff_available_at(pin.staff_id, day, start, end):
            warnings.append(
                _issue("PIN_DURING_UNAVAILABILITY", "Pinned lesson falls inside a staff unavailability window.", **fields)
            )
        if honor_unavailability and not store.is_room_available_at(pin.room_id, day, start, end):
            warnings.append(
                _issue("PIN_DURING_UNAVAILABILITY", "Pinned lesson falls inside a room unavailability window.", **fields)
            )
        section = section_by_id.get(pin.section_id)
        if pin.source == "PINNED" and section is not None:
            if not any(q.covers(section) for q in quals_by_staff_subject.get((pin.staff_id, pin.subject_id), [])):
                warnings.append(
                    _issue(
                        "PIN_STAFF_NOT_QUALIFIED",
                        "Pinned staff has no qualification link for this subject and section.",
                        **fields,
                    )
                )
    return placements, rejected, warnings


def generate_timetable(problem: TimetableProblem, options: GenerationOptions | None = None) -> GenerationResult:
    """Run one generation: grid, constraints, pin pre-commit, demand, search, materialize.

    Raises ConfigurationError before any search when reference data is
    missing. Every other problem is reported in the result.
    """

    options = options or GenerationOptions()
    slots = build_calendar_grid(problem.teaching_days, problem.periods)
    _check_reference_data(problem)

    store = ConstraintStore(
        slots=slots,
        staff_unavailability=problem.staff_unavailability,
        room_unavailability=problem.room_unavailability,
        pinned_slots=[
            p for p in problem.pinned_slots if options.include_pinned or p.source != "PINNED"
        ],
        default_period_minutes=options.default_period_minutes,
    )
    tracker = ConflictTracker(
        constraints=store,
        honor_unavailability=options.honor_unavailability,
        staff=problem.staff,
        enforce_load_limits=options.enforce_staff_load_limits,
    )

    pin_placements, rejected, warnings = _precommit_pins(
        store,
        tracker,
        qualifications=problem.qualifications,
        problem=problem,
        honor_unavailability=options.honor_unavailability,
    )
    pinned_counts = Counter((p.section_id, p.subject_id) for p in pin_placements)

    demand = compile_demand(
        sections=problem.sections,
        subjects=problem.subjects,
        staff=problem.staff,
        rooms=problem.rooms,
        requirements=problem.requirements,
        qualifications=problem.qualifications,
        pinned_counts=pinned_counts,
        allow_roomless=options.allow_roomless,
    )
    for w in demand.warnings:
        extra = {k: v for k, v in w.items() if k not in {"conflict_type", "message"}}
        warnings.append(_issue(w["conflict_type"], w["message"], **extra))
    for section_id, periods in sorted(demand.periods_by_section.items(), key=lambda kv: str(kv[0])):
        if periods > len(slots):
            warnings.append(
                _issue(
                    "SECTION_OVER_CAPACITY",
                    f"Section needs {periods} periods but the week has {len(slots)} slots.",
                    section_id=section_id,
                    required_periods=periods,
                    available_slots=len(slots),
                )
            )

    engine = SearchEngine(
        slots=spread_order(slots) if options.spread_across_days else slots,
        tracker=tracker,
        lessons=demand.lessons,
        max_steps=options.max_steps,
        max_seconds=options.max_seconds,
        backtrack_limit=options.backtrack_limit,
    )
    outcome = engine.run()

    result = materialize(
        pin_placements=pin_placements,
        demand=demand,
        outcome=outcome,
        rejected_pins=rejected,
        warnings=warnings,
    )
    report = result.report
    logger.info(
        "Timetable generated: lessons=%s placed=%s pinned=%s unplaced=%s rejected_pins=%s attempts=%s backtracks=%s budget_exhausted=%s",
        report.total_lessons,
        report.placed_count,
        report.pinned_count,
        report.unplaced_count,
        len(report.rejected_pins),
        outcome.stats.attempts,
        outcome.stats.backtracks,
        report.budget_exhausted,
    )
    return result


def suggest_slot(
    problem: TimetableProblem,
    *,
    section_id,
    staff_id,
    room_id=None,
    day_of_week: int | None = None,
    options: GenerationOptions | None = None,
) -> Slot | None:
    """First grid slot where the section, staff member and room are all free.

    `problem.pinned_slots` should carry every booking to respect (pins and
    current entries). Bookings that collide with each other are skipped.
    """

    options = options or GenerationOptions()
    slots = build_calendar_grid(problem.teaching_days, problem.periods)
    store = ConstraintStore(
        slots=slots,
        staff_unavailability=problem.staff_unavailability,
        room_unavailability=problem.room_unavailability,
        pinned_slots=problem.pinned_slots,
        default_period_minutes=options.default_period_minutes,
    )
    tracker = ConflictTracker(
        constraints=store,
        honor_unavailability=options.honor_unavailability,
        staff=problem.staff,
        enforce_load_limits=options.enforce_staff_load_limits,
    )
    for booking in store.pinned_slots():
        tracker.commit_pin(booking)

    for slot in slots:
        if day_of_week is not None and slot.day_of_week != int(day_of_week):
            continue
        if tracker.can_place(section_id, slot, staff_id, room_id):
            return slot
    return None
