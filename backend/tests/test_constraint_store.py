from __future__ import annotations

from datetime import time

from solver.calendar_grid import build_calendar_grid
from solver.constraint_store import ConstraintStore
from solver.problem import PinnedSlot, Unavailability

from builders import hourly_periods


def _store(**kwargs) -> tuple[ConstraintStore, list]:
    slots = build_calendar_grid([0, 1], hourly_periods(9, 3))
    return ConstraintStore(slots=slots, **kwargs), slots


def test_staff_window_blocks_every_overlapping_slot():
    store, slots = _store(staff_unavailability=[Unavailability("T1", 0, time(9, 30), time(10, 30))])
    monday = [s for s in slots if s.day_of_week == 0]

    assert [store.is_staff_available("T1", s) for s in monday] == [False, False, True]
    # Other days and other staff are unaffected.
    assert all(store.is_staff_available("T1", s) for s in slots if s.day_of_week == 1)
    assert all(store.is_staff_available("T2", s) for s in slots)


def test_touching_window_does_not_block_neighbour():
    store, slots = _store(room_unavailability=[Unavailability("R1", 0, time(10, 0), time(11, 0))])
    monday = [s for s in slots if s.day_of_week == 0]
    assert [store.is_room_available("R1", s) for s in monday] == [True, False, True]


def test_inverted_window_is_normalised():
    store, _slots = _store(staff_unavailability=[Unavailability("T1", 0, time(11, 0), time(10, 0))])
    assert not store.is_staff_available_at("T1", 0, 600, 660)
    assert store.is_staff_available_at("T1", 0, 540, 600)


def test_zero_length_window_blocks_nothing():
    store, slots = _store(staff_unavailability=[Unavailability("T1", 0, time(9, 30), time(9, 30))])
    assert all(store.is_staff_available("T1", s) for s in slots)


def test_missing_room_is_always_available():
    store, slots = _store()
    assert store.is_room_available(None, slots[0])
    assert store.is_room_available_at(None, 0, 0, 1439)


def test_pin_interval_defaults():
    store, _slots = _store(default_period_minutes=45)

    on_grid = PinnedSlot("S1", "A", "T1", day_of_week=0, start_time=time(10, 0))
    off_grid = PinnedSlot("S1", "A", "T1", day_of_week=0, start_time=time(10, 30))
    explicit = PinnedSlot("S1", "A", "T1", day_of_week=0, start_time=time(10, 0), end_time=time(10, 20))

    assert store.pin_interval(on_grid) == (0, 600, 660)
    assert store.pin_interval(off_grid) == (0, 630, 675)
    assert store.pin_interval(explicit) == (0, 600, 620)


def test_pins_come_back_in_stable_order():
    late = PinnedSlot("S1", "A", "T1", day_of_week=1, start_time=time(9, 0), id="p-late")
    early_b = PinnedSlot("S2", "A", "T2", day_of_week=0, start_time=time(9, 0), id="p-b")
    early_a = PinnedSlot("S1", "B", "T3", day_of_week=0, start_time=time(9, 0), id="p-a")
    store, _slots = _store(pinned_slots=[late, early_b, early_a])

    assert [p.id for p in store.pinned_slots()] == ["p-a", "p-b", "p-late"]


def test_slots_overlapping_an_off_grid_interval():
    store, _slots = _store()
    hits = store.slots_overlapping(0, 570, 630)
    assert [(s.day_of_week, s.start_minutes) for s in hits] == [(0, 540), (0, 600)]


def test_pin_ending_before_it_starts_takes_the_period_end():
    store, _slots = _store(default_period_minutes=45)

    on_grid = PinnedSlot("S1", "A", "T1", day_of_week=0, start_time=time(9, 0), end_time=time(8, 0))
    zero = PinnedSlot("S1", "A", "T1", day_of_week=0, start_time=time(10, 0), end_time=time(10, 0))
    off_grid = PinnedSlot("S1", "A", "T1", day_of_week=0, start_time=time(10, 30), end_time=time(10, 15))

    assert store.pin_interval(on_grid) == (0, 540, 600)
    assert store.pin_interval(zero) == (0, 600, 660)
    assert store.pin_interval(off_grid) == (0, 630, 675)


def test_pin_end_never_runs_past_midnight():
    store, _slots = _store()
    late = PinnedSlot("S1", "A", "T1", day_of_week=0, start_time=time(23, 30))
    assert store.pin_interval(late) == (0, 1410, 1439)
