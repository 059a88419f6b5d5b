from __future__ import annotations

import logging
import time
from bisect import bisect_right
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable

from solver.calendar_grid import Slot
from solver.conflict_tracker import ConflictTracker, Placement
from solver.demand import Lesson, PairKey
from solver.errors import BUDGET_EXHAUSTED, NO_FREE_SLOT


logger = logging.getLogger(__name__)


UNPLACED = "UNPLACED"
PLACED = "PLACED"
EXHAUSTED = "EXHAUSTED"

_OUT_OF_BUDGET = object()


@dataclass
class SearchStats:
    attempts: int = 0
    backtracks: int = 0
    episodes: int = 0
    elapsed_seconds: float = 0.0
    budget_exhausted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempts": self.attempts,
            "backtracks": self.backtracks,
            "episodes": self.episodes,
            "elapsed_seconds": round(self.elapsed_seconds, 4),
            "budget_exhausted": self.budget_exhausted,
        }


@dataclass
class SearchOutcome:
    placements: dict[int, Placement] = field(default_factory=dict)
    states: dict[int, str] = field(default_factory=dict)
    reasons: dict[int, str] = field(default_factory=dict)
    details: dict[int, dict[str, Any]] = field(default_factory=dict)
    stats: SearchStats = field(default_factory=SearchStats)


class CandidateDomain:
    """Static (slot, staff, room) candidates of one (section, subject) pair.

    Candidates are stored per slot as (offset, slot, staff_ids, room_ids); the
    flat index of a candidate is `offset + staff_pos * len(room_ids) + room_pos`,
    which keeps grid, staff, room ordering without materialising every triple.
    """

    def __init__(self, segments: list[tuple[int, Slot, tuple, tuple]]):
        self.segments = segments
        self.offsets = [s[0] for s in segments]
        last = segments[-1] if segments else None
        self.size = (last[0] + len(last[2]) * len(last[3])) if last else 0

    @classmethod
    def build(cls, lesson: Lesson, slots: list[Slot], tracker: ConflictTracker) -> "CandidateDomain":
        segments: list[tuple[int, Slot, tuple, tuple]] = []
        offset = 0
        for slot in slots:
            if not tracker.is_section_free(lesson.section_id, slot):
                continue
            staff_ids = tuple(t for t in lesson.staff_ids if tracker.is_staff_usable(t, slot))
            if not staff_ids:
                continue
            room_ids = tuple(r for r in lesson.room_ids if tracker.is_room_usable(r, slot))
            if not room_ids:
                continue
            segments.append((offset, slot, staff_ids, room_ids))
            offset += len(staff_ids) * len(room_ids)
        return cls(segments)


@dataclass
class _Frame:
    pos: int
    index: int
    placement: Placement


class SearchEngine:
    """Most-constrained-first backtracking over an explicit stack of frames.

    The search runs in episodes. An episode tries to place every remaining
    lesson above the current floor (placements below the floor are frozen).
    A dead end pops the previous frame and resumes it at its next candidate.
    When nothing above the floor is left to pop, or the episode has spent its
    backtrack allowance, the deepest partial assignment the episode reached is
    restored, the lesson that blocked it becomes EXHAUSTED, and the floor moves
    up to the restored depth.
    """

    def __init__(
        self,
        *,
        slots: list[Slot],
        tracker: ConflictTracker,
        lessons: list[Lesson],
        max_steps: int,
        max_seconds: float | None = None,
        backtrack_limit: int = 2_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.slots = slots
        self.tracker = tracker
        self.lessons = lessons
        self.max_steps = int(max_steps)
        self.max_seconds = max_seconds
        self.backtrack_limit = int(backtrack_limit)
        self._clock = clock
        self._started = 0.0

        self.stats = SearchStats()
        self._domains: dict[PairKey, CandidateDomain] = {}
        self._sibling_index: dict[PairKey, list[int]] = defaultdict(list)

    # --- budget ----------------------------------------------------------

    def _out_of_budget(self) -> bool:
        if self.stats.attempts >= self.max_steps:
            return True
        if self.max_seconds is not None and self._clock() - self._started >= self.max_seconds:
            return True
        return False

    # --- ordering --------------------------------------------------------

    def domain(self, lesson: Lesson) -> CandidateDomain:
        dom = self._domains.get(lesson.key)
        if dom is None:
            dom = CandidateDomain.build(lesson, self.slots, self.tracker)
            self._domains[lesson.key] = dom
        return dom

    def _order(self, lessons: list[Lesson]) -> list[Lesson]:
        return sorted(lessons, key=lambda l: (self.domain(l).size, l.index))

    def _start_cursor(self, lesson: Lesson) -> int:
        # Identical lessons of one pair take strictly increasing candidates.
        placed = self._sibling_index.get(lesson.key)
        return placed[-1] + 1 if placed else 0

    # --- candidate scan --------------------------------------------------

    def _next_fit(self, lesson: Lesson, cursor: int):
        dom = self.domain(lesson)
        if cursor >= dom.size:
            return None
        tracker = self.tracker
        seg_i = max(bisect_right(dom.offsets, cursor) - 1, 0)
        while seg_i < len(dom.segments):
            offset, slot, staff_ids, room_ids = dom.segments[seg_i]
            n_rooms = len(room_ids)
            staff_pos, room_pos = divmod(max(cursor - offset, 0), n_rooms)

            if self._out_of_budget():
                return _OUT_OF_BUDGET
            self.stats.attempts += 1
            if not tracker.is_section_free(lesson.section_id, slot):
                seg_i += 1
                continue

            while staff_pos < len(staff_ids):
                staff_id = staff_ids[staff_pos]
                if self._out_of_budget():
                    return _OUT_OF_BUDGET
                self.stats.attempts += 1
                if tracker.is_staff_usable(staff_id, slot):
                    while room_pos < n_rooms:
                        room_id = room_ids[room_pos]
                        if tracker.is_room_usable(room_id, slot):
                            placement = Placement(
                                section_id=lesson.section_id,
                                subject_id=lesson.subject_id,
                                staff_id=staff_id,
                                room_id=room_id,
                                day_of_week=slot.day_of_week,
                                start_minutes=slot.start_minutes,
                                end_minutes=slot.end_minutes,
                                slot=slot,
                                lesson_index=lesson.index,
                            )
                            return offset + staff_pos * n_rooms + room_pos, placement
                        room_pos += 1
                staff_pos += 1
                room_pos = 0
            seg_i += 1
        return None

    # --- stack helpers ---------------------------------------------------

    def _push(self, stack: list[_Frame], frame: _Frame, lesson: Lesson) -> None:
        self.tracker.commit(frame.placement)
        self._sibling_index[lesson.key].append(frame.index)
        stack.append(frame)

    def _pop(self, stack: list[_Frame], order: list[Lesson]) -> _Frame:
        frame = stack.pop()
        self.tracker.release(frame.placement)
        self._sibling_index[order[frame.pos].key].pop()
        return frame

    def _restore(self, stack: list[_Frame], floor: int, snapshot: list[_Frame], order: list[Lesson]) -> None:
        while len(stack) > floor:
            self._pop(stack, order)
        for frame in snapshot:
            self._push(stack, _Frame(frame.pos, frame.index, frame.placement), order[frame.pos])

    # --- main loop -------------------------------------------------------

    def run(self) -> SearchOutcome:
        self._started = self._clock()
        outcome = SearchOutcome(stats=self.stats)

        live: list[Lesson] = []
        for lesson in self.lessons:
            if self.domain(lesson).size == 0:
                outcome.states[lesson.index] = EXHAUSTED
                outcome.reasons[lesson.index] = NO_FREE_SLOT
                outcome.details[lesson.index] = {"static_candidates": 0}
            else:
                live.append(lesson)
        order = self._order(live)
        n = len(order)

        stack: list[_Frame] = []
        exhausted: set[int] = set()
        floor = 0
        pos = 0
        cursor = self._start_cursor(order[0]) if n else 0
        best_pos = -1
        best_snapshot: list[_Frame] = []
        episode_backtracks = 0
        self.stats.episodes = 1 if n else 0

        while pos < n:
            if self._out_of_budget():
                self.stats.budget_exhausted = True
                if best_pos > pos:
                    self._restore(stack, floor, best_snapshot, order)
                    pos = best_pos
                break

            lesson = order[pos]
            hit = self._next_fit(lesson, cursor)
            if hit is _OUT_OF_BUDGET:
                continue
            if hit is not None:
                index, placement = hit
                self._push(stack, _Frame(pos, index, placement), lesson)
                pos += 1
                cursor = self._start_cursor(order[pos]) if pos < n else 0
                continue

            # Dead end at `pos`.
            if pos > best_pos:
                best_pos = pos
                best_snapshot = list(stack[floor:])

            if len(stack) > floor and episode_backtracks < self.backtrack_limit:
                frame = self._pop(stack, order)
                self.stats.backtracks += 1
                episode_backtracks += 1
                pos = frame.pos
                cursor = frame.index + 1
                continue

            self._restore(stack, floor, best_snapshot, order)
            blocked = order[best_pos]
            exhausted.add(best_pos)
            logger.debug(
                "Lesson %s (section=%s subject=%s #%s) exhausted after %s backtracks",
                blocked.index,
                blocked.section_id,
                blocked.subject_id,
                blocked.ordinal,
                episode_backtracks,
            )
            floor = len(stack)
            pos = best_pos + 1
            cursor = self._start_cursor(order[pos]) if pos < n else 0
            best_pos = -1
            best_snapshot = []
            episode_backtracks = 0
            if pos < n:
                self.stats.episodes += 1

        for frame in stack:
            idx = frame.placement.lesson_index
            outcome.placements[idx] = frame.placement
            outcome.states[idx] = PLACED
        for p, lesson in enumerate(order):
            if lesson.index in outcome.states:
                continue
            if p in exhausted:
                outcome.states[lesson.index] = EXHAUSTED
                outcome.reasons[lesson.index] = NO_FREE_SLOT
                outcome.details[lesson.index] = {"static_candidates": self.domain(lesson).size}
            else:
                outcome.states[lesson.index] = UNPLACED
                outcome.reasons[lesson.index] = BUDGET_EXHAUSTED

        self.stats.elapsed_seconds = self._clock() - self._started
        return outcome
