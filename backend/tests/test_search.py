from __future__ import annotations

from datetime import time

from solver.calendar_grid import build_calendar_grid
from solver.conflict_tracker import ConflictTracker
from solver.constraint_store import ConstraintStore
from solver.demand import compile_demand
from solver.errors import BUDGET_EXHAUSTED, NO_FREE_SLOT
from solver.problem import Qualification, Requirement, RoomInfo, SectionInfo, StaffInfo, SubjectInfo, Unavailability
from solver.search import EXHAUSTED, PLACED, UNPLACED, SearchEngine

from builders import hourly_periods


def _engine(
    *,
    requirements,
    qualifications,
    staff=("T1",),
    rooms=("R1",),
    sections=("S1",),
    subjects=("A",),
    periods=2,
    staff_unavailability=(),
    max_steps=10_000,
    **kwargs,
):
    slots = build_calendar_grid([0], hourly_periods(9, periods))
    store = ConstraintStore(slots=slots, staff_unavailability=staff_unavailability)
    staff_info = [StaffInfo(t, code=t) for t in staff]
    tracker = ConflictTracker(constraints=store, staff=staff_info)
    demand = compile_demand(
        sections=[SectionInfo(s, code=s) for s in sections],
        subjects=[SubjectInfo(s, code=s) for s in subjects],
        staff=staff_info,
        rooms=[RoomInfo(r, code=r) for r in rooms],
        requirements=requirements,
        qualifications=qualifications,
    )
    engine = SearchEngine(slots=slots, tracker=tracker, lessons=demand.lessons, max_steps=max_steps, **kwargs)
    return engine, demand


def test_identical_lessons_fill_slots_in_grid_order():
    engine, _demand = _engine(requirements=[Requirement("S1", "A", 3)], qualifications=[Qualification("T1", "A")], periods=3)
    outcome = engine.run()

    starts = [outcome.placements[i].start_minutes for i in sorted(outcome.placements)]
    assert starts == [540, 600, 660]
    assert set(outcome.states.values()) == {PLACED}
    assert outcome.stats.backtracks == 0


def test_dead_end_is_resolved_by_backtracking():
    # A goes first (equal domain size, lower index) and grabs 09:00, but B can only
    # be taught at 09:00, so A has to move to 10:00.
    engine, demand = _engine(
        subjects=("A", "B"),
        staff=("T1", "T2", "T3"),
        requirements=[Requirement("S1", "A", 1), Requirement("S1", "B", 1)],
        qualifications=[Qualification("T1", "A"), Qualification("T2", "B"), Qualification("T3", "B")],
        staff_unavailability=[
            Unavailability("T2", 0, time(10, 0), time(11, 0)),
            Unavailability("T3", 0, time(10, 0), time(11, 0)),
        ],
    )
    outcome = engine.run()

    by_subject = {p.subject_id: p for p in outcome.placements.values()}
    assert by_subject["A"].start_minutes == 600
    assert by_subject["B"].start_minutes == 540
    assert by_subject["B"].staff_id == "T2"
    assert outcome.stats.backtracks >= 1
    assert len(outcome.placements) == len(demand.lessons) == 2


def test_unsatisfiable_lesson_is_exhausted_and_search_continues():
    engine, demand = _engine(
        sections=("S1", "S2", "S3"),
        periods=1,
        requirements=[Requirement("S1", "A", 1), Requirement("S2", "A", 1), Requirement("S3", "A", 1)],
        qualifications=[Qualification("T1", "A")],
        rooms=("R1", "R2", "R3"),
    )
    outcome = engine.run()

    assert len(outcome.placements) == 1
    assert sorted(outcome.states.values()) == [EXHAUSTED, EXHAUSTED, PLACED]
    assert sorted(outcome.reasons.values()) == [NO_FREE_SLOT, NO_FREE_SLOT]
    # The earliest lesson keeps the only slot.
    assert outcome.placements[demand.lessons[0].index].section_id == "S1"


def test_lesson_without_static_candidates_is_exhausted_up_front():
    engine, demand = _engine(
        requirements=[Requirement("S1", "A", 1)],
        qualifications=[Qualification("T1", "A")],
        staff_unavailability=[Unavailability("T1", 0, time(8, 0), time(12, 0))],
    )
    outcome = engine.run()

    idx = demand.lessons[0].index
    assert outcome.states[idx] == EXHAUSTED
    assert outcome.reasons[idx] == NO_FREE_SLOT
    assert outcome.details[idx] == {"static_candidates": 0}
    assert outcome.stats.attempts == 0


def test_step_budget_stops_the_search():
    engine, demand = _engine(requirements=[Requirement("S1", "A", 2)], qualifications=[Qualification("T1", "A")], max_steps=1)
    outcome = engine.run()

    assert outcome.stats.budget_exhausted
    assert outcome.placements == {}
    assert set(outcome.states.values()) == {UNPLACED}
    assert set(outcome.reasons.values()) == {BUDGET_EXHAUSTED}
    assert outcome.stats.attempts <= 1


def test_time_budget_uses_the_injected_clock():
    ticks = iter(range(0, 1000, 10))
    engine, _demand = _engine(
        requirements=[Requirement("S1", "A", 2)],
        qualifications=[Qualification("T1", "A")],
        max_seconds=5,
        clock=lambda: float(next(ticks)),
    )
    outcome = engine.run()

    assert outcome.stats.budget_exhausted
    assert set(outcome.reasons.values()) == {BUDGET_EXHAUSTED}


def test_same_input_same_placements():
    def run_once():
        engine, _demand = _engine(
            sections=("S1", "S2"),
            subjects=("A", "B"),
            staff=("T1", "T2"),
            rooms=("R1", "R2"),
            periods=3,
            requirements=[
                Requirement("S1", "A", 2),
                Requirement("S1", "B", 1),
                Requirement("S2", "A", 1),
                Requirement("S2", "B", 2),
            ],
            qualifications=[Qualification("T1", "A"), Qualification("T2", "B")],
        )
        return engine.run().placements

    first, second = run_once(), run_once()
    assert first == second
    assert len(first) == 6
