from __future__ import annotations

from solver.demand import compile_demand, eligible_rooms_for, eligible_staff_for
from solver.errors import NO_ELIGIBLE_ROOM, NO_QUALIFIED_STAFF
from solver.problem import Qualification, Requirement, RoomInfo, SectionInfo, StaffInfo, SubjectInfo


SECTION = SectionInfo("S1", code="S1", class_id="C1", school_level_id="L1", strength=30)


def test_staff_ranked_by_specificity_then_code():
    staff = {sid: StaffInfo(sid, code=code) for sid, code in [("t-any", "A01"), ("t-lvl", "Z99"), ("t-cls", "M50")]}
    quals = {
        "MATH": [
            Qualification("t-any", "MATH"),
            Qualification("t-lvl", "MATH", school_level_id="L1"),
            Qualification("t-cls", "MATH", class_id="C1"),
            # Linked to another class: not eligible for S1.
            Qualification("t-other", "MATH", class_id="C2"),
        ]
    }
    out = eligible_staff_for(SECTION, "MATH", qualifications_by_subject=quals, staff_by_id=staff)
    assert out == ("t-cls", "t-lvl", "t-any")


def test_inactive_staff_are_not_eligible():
    quals = {"MATH": [Qualification("gone", "MATH")]}
    assert eligible_staff_for(SECTION, "MATH", qualifications_by_subject=quals, staff_by_id={}) == ()


def test_rooms_matching_type_come_before_untyped_rooms():
    rooms = [
        RoomInfo("r-general", code="G1"),
        RoomInfo("r-lab-b", code="LAB-B", room_type="lab"),
        RoomInfo("r-class", code="C1", room_type="CLASSROOM"),
        RoomInfo("r-lab-a", code="LAB-A", room_type="LAB"),
        RoomInfo("r-lab-small", code="LAB-0", room_type="LAB", capacity=10),
    ]
    subject = SubjectInfo("CHEM", code="CHEM", required_room_type="LAB")
    assert eligible_rooms_for(SECTION, subject, rooms) == ("r-lab-a", "r-lab-b", "r-general")


def test_untyped_subject_can_use_any_room_that_seats_the_section():
    rooms = [RoomInfo("r2", code="B", room_type="LAB"), RoomInfo("r1", code="A", capacity=40), RoomInfo("r0", code="C", capacity=5)]
    subject = SubjectInfo("HIST", code="HIST")
    assert eligible_rooms_for(SECTION, subject, rooms) == ("r1", "r2")


def _compile(**kwargs):
    base = dict(
        sections=[SECTION, SectionInfo("S2", code="S2", class_id="C2")],
        subjects=[SubjectInfo("MATH", code="MATH"), SubjectInfo("CHEM", code="CHEM", required_room_type="LAB")],
        staff=[StaffInfo("T1", code="T1")],
        rooms=[RoomInfo("R1", code="R1")],
        requirements=[Requirement("S1", "MATH", 3)],
        qualifications=[Qualification("T1", "MATH")],
    )
    base.update(kwargs)
    return compile_demand(**base)


def test_requirements_expand_into_numbered_lessons():
    demand = _compile(pinned_counts={("S1", "MATH"): 1})

    assert [(l.section_id, l.subject_id, l.ordinal) for l in demand.lessons] == [
        ("S1", "MATH", 2),
        ("S1", "MATH", 3),
    ]
    assert [l.index for l in demand.lessons] == [0, 1]
    assert demand.total_demand == 3
    assert demand.pinned_units == 1
    assert demand.periods_by_section == {"S1": 3}
    assert demand.eligible_staff[("S1", "MATH")] == ("T1",)


def test_pairs_are_ordered_by_section_then_subject_code():
    demand = _compile(
        requirements=[Requirement("S2", "MATH", 1), Requirement("S1", "MATH", 1)],
    )
    assert [l.section_id for l in demand.lessons] == ["S1", "S2"]


def test_unstaffable_and_unroomable_lessons_carry_a_reason():
    demand = _compile(
        requirements=[Requirement("S1", "CHEM", 2), Requirement("S2", "MATH", 1)],
        qualifications=[Qualification("T1", "CHEM")],
    )
    # R1 is untyped, so it can host CHEM; nobody is qualified for MATH.
    assert [l.reason for l in demand.unstaffable] == [NO_QUALIFIED_STAFF]
    assert demand.unroomable == []
    assert len(demand.lessons) == 2

    no_rooms = _compile(requirements=[Requirement("S1", "MATH", 1)], rooms=[])
    assert [l.reason for l in no_rooms.unroomable] == [NO_ELIGIBLE_ROOM]


def test_roomless_lessons_when_allowed():
    demand = _compile(rooms=[], allow_roomless=True)
    assert all(l.room_ids == (None,) for l in demand.lessons)
    assert len(demand.lessons) == 3


def test_out_of_scope_and_duplicate_requirements_warn():
    demand = _compile(
        requirements=[
            Requirement("S1", "MATH", 2),
            Requirement("S1", "MATH", 3),
            Requirement("S9", "MATH", 1),
        ]
    )
    kinds = sorted(w["conflict_type"] for w in demand.warnings)
    assert kinds == ["DUPLICATE_REQUIREMENT", "REQUIREMENT_OUT_OF_SCOPE"]
    assert len(demand.lessons) == 3


def test_zero_period_requirement_yields_no_lessons():
    demand = _compile(requirements=[Requirement("S1", "MATH", 0)])
    assert demand.all_lessons == []
    assert demand.total_demand == 0
