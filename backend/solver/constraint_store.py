from __future__ import annotations

from collections import defaultdict
from typing import Any, Iterable

from solver.calendar_grid import Slot, intervals_overlap, time_to_minutes
from solver.problem import PinnedSlot, Unavailability


# Latest representable end of a lesson within one day.
LAST_MINUTE = 24 * 60 - 1


class ConstraintStore:
    """Indexed unavailability windows and pinned slots for one run.

    Windows are kept per (owner, day). Overlapping or duplicated windows for
    the same owner simply add up to a union of forbidden time. Inverted
    windows are normalised rather than dropped; zero-length ones block nothing.
    """

    def __init__(
        self,
        *,
        slots: list[Slot],
        staff_unavailability: Iterable[Unavailability] = (),
        room_unavailability: Iterable[Unavailability] = (),
        pinned_slots: Iterable[PinnedSlot] = (),
        default_period_minutes: int = 60,
    ):
        self._slots = slots
        self._slot_by_key: dict[tuple[int, int], Slot] = {s.key: s for s in slots}
        self._default_period_minutes = int(default_period_minutes)

        self._staff_windows = self._index(staff_unavailability)
        self._room_windows = self._index(room_unavailability)
        self._staff_cache: dict[tuple[Any, tuple[int, int, int]], bool] = {}
        self._room_cache: dict[tuple[Any, tuple[int, int, int]], bool] = {}

        self._pins: list[PinnedSlot] = sorted(pinned_slots, key=lambda p: p.sort_key())

    @staticmethod
    def _index(rows: Iterable[Unavailability]) -> dict[tuple[Any, int], list[tuple[int, int]]]:
        out: dict[tuple[Any, int], list[tuple[int, int]]] = defaultdict(list)
        for u in rows:
            start, end = sorted((u.start_minutes, u.end_minutes))
            if start == end:
                continue
            out[(u.owner_id, int(u.day_of_week))].append((start, end))
        return out

    @staticmethod
    def _blocked(windows: list[tuple[int, int]], start: int, end: int) -> bool:
        return any(intervals_overlap(ws, we, start, end) for ws, we in windows)

    def _available(self, windows, cache, owner_id, day: int, start: int, end: int) -> bool:
        key = (owner_id, (day, start, end))
        hit = cache.get(key)
        if hit is None:
            hit = not self._blocked(windows.get((owner_id, day), []), start, end)
            cache[key] = hit
        return hit

    def is_staff_available(self, staff_id, slot: Slot) -> bool:
        return self._available(
            self._staff_windows, self._staff_cache, staff_id, slot.day_of_week, slot.start_minutes, slot.end_minutes
        )

    def is_room_available(self, room_id, slot: Slot) -> bool:
        if room_id is None:
            return True
        return self._available(
            self._room_windows, self._room_cache, room_id, slot.day_of_week, slot.start_minutes, slot.end_minutes
        )

    def is_staff_available_at(self, staff_id, day_of_week: int, start: int, end: int) -> bool:
        return not self._blocked(self._staff_windows.get((staff_id, int(day_of_week)), []), start, end)

    def is_room_available_at(self, room_id, day_of_week: int, start: int, end: int) -> bool:
        if room_id is None:
            return True
        return not self._blocked(self._room_windows.get((room_id, int(day_of_week)), []), start, end)

    def pinned_slots(self) -> list[PinnedSlot]:
        return list(self._pins)

    def slot_at(self, day_of_week: int, start_minutes: int) -> Slot | None:
        return self._slot_by_key.get((int(day_of_week), int(start_minutes)))

    def pin_interval(self, pin: PinnedSlot) -> tuple[int, int, int]:
        """(day, start, end) in minutes.

        A missing end, or one at or before the start, takes the grid period's
        end, else `default_period_minutes`. Ends are capped at 23:59.
        """

        day = int(pin.day_of_week)
        start = time_to_minutes(pin.start_time)
        end = time_to_minutes(pin.end_time) if pin.end_time is not None else None
        if end is None or end <= start:
            slot = self.slot_at(day, start)
            end = slot.end_minutes if slot is not None else start + self._default_period_minutes
        return day, start, min(end, LAST_MINUTE)

    def slots_overlapping(self, day_of_week: int, start: int, end: int) -> list[Slot]:
        return [s for s in self._slots if s.overlaps(day_of_week, start, end)]
