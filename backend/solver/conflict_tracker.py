from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass
from typing import Any

from solver.calendar_grid import Slot, intervals_overlap
from solver.constraint_store import ConstraintStore
from solver.problem import PinnedSlot, StaffInfo


@dataclass(frozen=True)
class Placement:
    section_id: Any
    subject_id: Any
    staff_id: Any
    room_id: Any | None
    day_of_week: int
    start_minutes: int
    end_minutes: int
    slot: Slot | None = None
    lesson_index: int | None = None
    pin: PinnedSlot | None = None

    @property
    def source(self) -> str:
        return self.pin.source if self.pin is not None else "GENERATED"


@dataclass(frozen=True)
class PinCollision:
    resource: str  # STAFF | ROOM | SECTION
    owner_id: Any
    kept: PinnedSlot


class ConflictTracker:
    """Occupancy of staff, rooms and sections per slot.

    Pins are committed once, before search, and never released. Generated
    placements are pushed and popped through `commit`/`release` only.
    """

    def __init__(
        self,
        *,
        constraints: ConstraintStore,
        honor_unavailability: bool = True,
        staff: list[StaffInfo] | None = None,
        enforce_load_limits: bool = True,
    ):
        self._constraints = constraints
        self._honor_unavailability = honor_unavailability

        self._busy_staff: dict[tuple[int, int], set] = defaultdict(set)
        self._busy_rooms: dict[tuple[int, int], set] = defaultdict(set)
        self._busy_sections: dict[tuple[int, int], set] = defaultdict(set)

        self._limits: dict[Any, tuple[int | None, int | None]] = {}
        if enforce_load_limits:
            for s in staff or []:
                if s.max_periods_per_day is not None or s.max_periods_per_week is not None:
                    self._limits[s.id] = (s.max_periods_per_day, s.max_periods_per_week)
        self._day_load: Counter = Counter()
        self._week_load: Counter = Counter()

        # (resource, owner, day) -> [(start, end, pin)] for pin-vs-pin checks off the grid.
        self._pin_intervals: dict[tuple[str, Any, int], list[tuple[int, int, PinnedSlot]]] = defaultdict(list)

    # --- queries ---------------------------------------------------------

    def is_section_free(self, section_id, slot: Slot) -> bool:
        return section_id not in self._busy_sections[slot.key]

    def is_staff_free(self, staff_id, slot: Slot) -> bool:
        return staff_id not in self._busy_staff[slot.key]

    def is_room_free(self, room_id, slot: Slot) -> bool:
        return room_id is None or room_id not in self._busy_rooms[slot.key]

    def staff_has_capacity(self, staff_id, day_of_week: int) -> bool:
        limits = self._limits.get(staff_id)
        if limits is None:
            return True
        per_day, per_week = limits
        if per_day is not None and self._day_load[(staff_id, day_of_week)] >= per_day:
            return False
        if per_week is not None and self._week_load[staff_id] >= per_week:
            return False
        return True

    def is_staff_usable(self, staff_id, slot: Slot) -> bool:
        """Free, available and within load limits; ignores the section and room."""

        if not self.is_staff_free(staff_id, slot):
            return False
        if self._honor_unavailability and not self._constraints.is_staff_available(staff_id, slot):
            return False
        return self.staff_has_capacity(staff_id, slot.day_of_week)

    def is_room_usable(self, room_id, slot: Slot) -> bool:
        if not self.is_room_free(room_id, slot):
            return False
        return not self._honor_unavailability or self._constraints.is_room_available(room_id, slot)

    def can_place(self, section_id, slot: Slot, staff_id, room_id) -> bool:
        return (
            self.is_section_free(section_id, slot)
            and self.is_staff_usable(staff_id, slot)
            and self.is_room_usable(room_id, slot)
        )

    def staff_load(self, staff_id) -> int:
        return self._week_load[staff_id]

    # --- mutation --------------------------------------------------------

    def commit(self, placement: Placement) -> None:
        key = placement.slot.key
        self._busy_sections[key].add(placement.section_id)
        self._busy_staff[key].add(placement.staff_id)
        if placement.room_id is not None:
            self._busy_rooms[key].add(placement.room_id)
        self._day_load[(placement.staff_id, placement.day_of_week)] += 1
        self._week_load[placement.staff_id] += 1

    def release(self, placement: Placement) -> None:
        key = placement.slot.key
        self._busy_sections[key].discard(placement.section_id)
        self._busy_staff[key].discard(placement.staff_id)
        if placement.room_id is not None:
            self._busy_rooms[key].discard(placement.room_id)
        self._day_load[(placement.staff_id, placement.day_of_week)] -= 1
        self._week_load[placement.staff_id] -= 1

    def commit_pin(self, pin: PinnedSlot) -> PinCollision | None:
        """Pre-commit a pin; returns the collision instead of committing when it clashes with an earlier pin."""

        day, start, end = self._constraints.pin_interval(pin)
        owners = (("SECTION", pin.section_id), ("STAFF", pin.staff_id), ("ROOM", pin.room_id))
        for resource, owner in owners:
            if owner is None:
                continue
            for s, e, other in self._pin_intervals[(resource, owner, day)]:
                if intervals_overlap(s, e, start, end):
                    return PinCollision(resource=resource, owner_id=owner, kept=other)

        for resource, owner in owners:
            if owner is not None:
                self._pin_intervals[(resource, owner, day)].append((start, end, pin))
        for slot in self._constraints.slots_overlapping(day, start, end):
            self._busy_sections[slot.key].add(pin.section_id)
            self._busy_staff[slot.key].add(pin.staff_id)
            if pin.room_id is not None:
                self._busy_rooms[slot.key].add(pin.room_id)
        self._day_load[(pin.staff_id, day)] += 1
        self._week_load[pin.staff_id] += 1
        return None

    def pin_placement(self, pin: PinnedSlot) -> Placement:
        day, start, end = self._constraints.pin_interval(pin)
        return Placement(
            section_id=pin.section_id,
            subject_id=pin.subject_id,
            staff_id=pin.staff_id,
            room_id=pin.room_id,
            day_of_week=day,
            start_minutes=start,
            end_minutes=end,
            slot=self._constraints.slot_at(day, start),
            pin=pin,
        )
