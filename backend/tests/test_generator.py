from __future__ import annotations

from collections import Counter
from datetime import time

import pytest

from solver.calendar_grid import time_to_minutes
from solver.errors import BUDGET_EXHAUSTED, NO_FREE_SLOT, ConfigurationError
from solver.generator import generate_timetable, suggest_slot
from solver.materializer import verify_no_conflicts
from solver.problem import (
    GenerationOptions,
    PinnedSlot,
    Qualification,
    Requirement,
    RoomInfo,
    SectionInfo,
    StaffInfo,
    SubjectInfo,
    Unavailability,
)

from builders import hourly_periods, small_problem


def _one_section_two_subjects(**overrides):
    # 1 section, 2 subjects x 2 periods, 1 staff member per subject, 5 slots.
    fields = dict(
        teaching_days=[0],
        periods=hourly_periods(9, 5),
        sections=[SectionInfo("S1", code="S1")],
        subjects=[SubjectInfo("A", code="A"), SubjectInfo("B", code="B")],
        staff=[StaffInfo("TA", code="TA"), StaffInfo("TB", code="TB")],
        rooms=[RoomInfo("R1", code="R1")],
        requirements=[Requirement("S1", "A", 2), Requirement("S1", "B", 2)],
        qualifications=[Qualification("TA", "A"), Qualification("TB", "B")],
    )
    fields.update(overrides)
    return small_problem(**fields)


def test_uncontended_problem_places_every_lesson():
    result = generate_timetable(_one_section_two_subjects())

    assert len(result.entries) == 4
    assert result.placed_count == 4
    assert result.unplaced_lessons == []
    assert result.report.rejected_pins == []
    assert result.report.complete
    assert Counter(e.subject_id for e in result.entries) == {"A": 2, "B": 2}


def test_staff_unavailability_limits_placements():
    problem = _one_section_two_subjects(
        staff_unavailability=[Unavailability("TA", 0, time(9, 0), time(13, 0))],
    )
    result = generate_timetable(problem)

    a_entries = [e for e in result.entries if e.subject_id == "A"]
    assert len(a_entries) <= 1
    assert all(e.start_time >= time(13, 0) for e in a_entries)
    assert len([e for e in result.entries if e.subject_id == "B"]) == 2
    assert [u.reason for u in result.unplaced_lessons] == [NO_FREE_SLOT]
    assert result.report.placed_count + result.report.unplaced_count == 4


def test_shared_staff_member_with_single_free_slot():
    problem = small_problem(
        periods=hourly_periods(9, 1),
        subjects=[SubjectInfo("A", code="A")],
        staff=[StaffInfo("T1", code="T1")],
        requirements=[Requirement("S1", "A", 1), Requirement("S2", "A", 1)],
        qualifications=[Qualification("T1", "A")],
    )
    result = generate_timetable(problem)

    assert len(result.entries) == 1
    assert [u.reason for u in result.unplaced_lessons] == [NO_FREE_SLOT]
    assert result.report.complete is False


def test_pins_appear_verbatim_and_reduce_demand():
    pin = PinnedSlot("S1", "A", "T1", day_of_week=0, start_time=time(9, 0), room_id="R1", id="P1")
    result = generate_timetable(small_problem(pinned_slots=[pin]))

    pinned = [e for e in result.entries if e.is_pinned]
    assert len(pinned) == 1
    e = pinned[0]
    assert (e.section_id, e.subject_id, e.staff_id, e.room_id) == ("S1", "A", "T1", "R1")
    assert (e.day_of_week, e.start_time, e.end_time, e.source_id) == (0, time(9, 0), time(10, 0), "P1")

    assert result.report.pinned_count == 1
    assert result.report.total_lessons == 3
    assert result.report.placed_count == 3
    assert len(result.entries) == 4


def test_colliding_pin_is_rejected_and_earlier_pin_kept():
    kept = PinnedSlot("S1", "A", "T1", day_of_week=0, start_time=time(9, 0), id="P1")
    clash = PinnedSlot("S2", "A", "T1", day_of_week=0, start_time=time(9, 0), id="P2")
    result = generate_timetable(small_problem(pinned_slots=[clash, kept]))

    assert [e.source_id for e in result.entries if e.is_pinned] == ["P1"]
    [rejected] = result.report.rejected_pins
    assert rejected["conflict_type"] == "PIN_CONFLICT"
    assert rejected["pinned_slot_id"] == "P2"
    assert rejected["resource"] == "STAFF"
    assert rejected["kept_pinned_slot_id"] == "P1"
    assert not result.report.complete
    # S2 still gets its A lesson through the search instead.
    assert result.report.unplaced == []


def test_locked_bookings_are_kept_when_pins_are_excluded():
    locked = PinnedSlot("S1", "A", "T1", day_of_week=0, start_time=time(9, 0), id="E1", source="LOCKED")
    pin = PinnedSlot("S2", "B", "T2", day_of_week=0, start_time=time(9, 0), id="P1")
    result = generate_timetable(
        small_problem(pinned_slots=[locked, pin]),
        GenerationOptions(include_pinned=False),
    )

    sources = Counter(e.source for e in result.entries)
    assert sources["LOCKED"] == 1
    assert sources["PINNED"] == 0
    assert len(result.entries) == 4


def test_pin_warnings():
    problem = small_problem(
        staff_unavailability=[Unavailability("T2", 0, time(9, 0), time(10, 0))],
        pinned_slots=[
            # Off the grid.
            PinnedSlot("S1", "A", "T1", day_of_week=0, start_time=time(9, 30), end_time=time(10, 0), id="P1"),
            # During T2's unavailability, and T2 is not qualified for A.
            PinnedSlot("S2", "A", "T2", day_of_week=0, start_time=time(9, 0), id="P2"),
        ],
    )
    result = generate_timetable(problem)
    kinds = Counter(w["conflict_type"] for w in result.report.warnings)

    assert kinds["PIN_OFF_GRID"] == 1
    assert kinds["PIN_DURING_UNAVAILABILITY"] == 1
    assert kinds["PIN_STAFF_NOT_QUALIFIED"] == 1


def test_pin_ending_before_it_starts_still_books_its_period():
    pin = PinnedSlot("S1", "A", "T1", day_of_week=0, start_time=time(9, 0), end_time=time(8, 0), id="P1")
    result = generate_timetable(small_problem(pinned_slots=[pin]))
    verify_no_conflicts(result.entries)

    s1 = sorted((e.start_time, e.end_time, e.subject_id) for e in result.entries if e.section_id == "S1")
    assert s1 == [(time(9, 0), time(10, 0), "A"), (time(10, 0), time(11, 0), "B")]
    [adjusted] = [w for w in result.report.warnings if w["conflict_type"] == "PIN_END_ADJUSTED"]
    assert (adjusted["pinned_slot_id"], adjusted["given_end_time"], adjusted["end_time"]) == ("P1", "08:00", "10:00")
    assert result.report.placed_count == 3


def test_late_pin_is_capped_at_midnight():
    pin = PinnedSlot("S1", "A", "T1", day_of_week=0, start_time=time(23, 30), id="P1")
    result = generate_timetable(small_problem(pinned_slots=[pin]))

    [pinned] = [e for e in result.entries if e.is_pinned]
    assert (pinned.start_time, pinned.end_time) == (time(23, 30), time(23, 59))
    assert "PIN_OFF_GRID" in {w["conflict_type"] for w in result.report.warnings}
    assert len(result.entries) == 4


def test_pin_with_no_room_left_in_the_day_is_rejected():
    pin = PinnedSlot("S1", "A", "T1", day_of_week=0, start_time=time(23, 59), id="P1")
    result = generate_timetable(small_problem(pinned_slots=[pin]))

    [rejected] = result.report.rejected_pins
    assert (rejected["conflict_type"], rejected["pinned_slot_id"]) == ("PIN_INVALID_INTERVAL", "P1")
    assert not any(e.is_pinned for e in result.entries)
    # The lesson is scheduled by the search instead.
    assert len(result.entries) == 4


def test_spread_across_days_puts_repeated_lessons_on_different_days():
    problem = _one_section_two_subjects(
        teaching_days=[0, 1],
        periods=hourly_periods(9, 2),
        requirements=[Requirement("S1", "A", 2)],
    )

    packed = generate_timetable(problem)
    assert sorted((e.day_of_week, e.start_time) for e in packed.entries) == [(0, time(9, 0)), (0, time(10, 0))]

    spread = generate_timetable(problem, GenerationOptions(spread_across_days=True))
    assert sorted((e.day_of_week, e.start_time) for e in spread.entries) == [(0, time(9, 0)), (1, time(9, 0))]


def test_section_over_capacity_is_reported():
    problem = small_problem(requirements=[Requirement("S1", "A", 3)])
    result = generate_timetable(problem)

    [warning] = [w for w in result.report.warnings if w["conflict_type"] == "SECTION_OVER_CAPACITY"]
    assert warning["section_id"] == "S1"
    assert warning["required_periods"] == 3
    assert warning["available_slots"] == 2
    assert result.report.placed_count == 2


def test_staff_load_limits_cap_placements():
    problem = small_problem(staff=[StaffInfo("T1", code="T1", max_periods_per_day=1), StaffInfo("T2", code="T2")])

    limited = generate_timetable(problem)
    assert sum(1 for e in limited.entries if e.staff_id == "T1") == 1
    assert [u.reason for u in limited.unplaced_lessons] == [NO_FREE_SLOT]

    relaxed = generate_timetable(problem, GenerationOptions(enforce_staff_load_limits=False))
    assert relaxed.report.complete


def test_budget_exhaustion_is_reported():
    result = generate_timetable(small_problem(), GenerationOptions(max_steps=1))

    assert result.report.budget_exhausted
    assert result.report.reason_counts() == {BUDGET_EXHAUSTED: 4}
    assert result.entries == []


def test_rerun_is_identical():
    problem = _one_section_two_subjects(
        sections=[SectionInfo("S1", code="S1"), SectionInfo("S2", code="S2")],
        rooms=[RoomInfo("R1", code="R1"), RoomInfo("R2", code="R2")],
        requirements=[
            Requirement("S1", "A", 2),
            Requirement("S1", "B", 2),
            Requirement("S2", "A", 2),
            Requirement("S2", "B", 1),
        ],
    )
    first = generate_timetable(problem)
    second = generate_timetable(problem)
    assert first.entries == second.entries
    assert first.report.placed_count == 7


def test_output_respects_every_hard_constraint():
    windows = [Unavailability("T1", 0, time(10, 0), time(11, 0))]
    problem = small_problem(
        teaching_days=[0, 1],
        periods=hourly_periods(9, 3),
        sections=[SectionInfo("S1", code="S1", class_id="C1"), SectionInfo("S2", code="S2", class_id="C2")],
        staff=[StaffInfo("T1", code="T1"), StaffInfo("T2", code="T2"), StaffInfo("T3", code="T3")],
        requirements=[
            Requirement("S1", "A", 3),
            Requirement("S1", "B", 2),
            Requirement("S2", "A", 3),
            Requirement("S2", "B", 2),
        ],
        qualifications=[
            Qualification("T1", "A", class_id="C1"),
            Qualification("T3", "A", class_id="C2"),
            Qualification("T2", "B"),
        ],
        staff_unavailability=windows,
    )
    result = generate_timetable(problem)
    verify_no_conflicts(result.entries)

    allowed = {("S1", "A"): {"T1"}, ("S2", "A"): {"T3"}, ("S1", "B"): {"T2"}, ("S2", "B"): {"T2"}}
    for e in result.entries:
        assert e.staff_id in allowed[(e.section_id, e.subject_id)]
        if e.staff_id == "T1" and e.day_of_week == 0:
            assert not (time_to_minutes(e.start_time) < 660 and time_to_minutes(e.end_time) > 600)
    assert result.report.placed_count == 10


def test_missing_reference_data_fails_before_search():
    with pytest.raises(ConfigurationError) as exc:
        generate_timetable(small_problem(requirements=[]))
    assert exc.value.code == "NO_REQUIREMENTS"

    with pytest.raises(ConfigurationError) as exc:
        generate_timetable(small_problem(teaching_days=[]))
    assert exc.value.code == "NO_CALENDAR_SLOTS"


def test_suggest_slot_skips_booked_time():
    booking = PinnedSlot("S1", "B", "T2", day_of_week=0, start_time=time(9, 0), id="E1", source="LOCKED")
    problem = small_problem(pinned_slots=[booking])

    slot = suggest_slot(problem, section_id="S1", staff_id="T1", room_id="R1")
    assert (slot.day_of_week, slot.start_time) == (0, time(10, 0))

    assert suggest_slot(problem, section_id="S2", staff_id="T2").start_time == time(10, 0)
    assert suggest_slot(problem, section_id="S2", staff_id="T1", day_of_week=3) is None
