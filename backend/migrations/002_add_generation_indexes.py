from __future__ import annotations

"""Add DB indexes to speed up generation reads and the grid endpoint.

Safe to run multiple times (uses IF NOT EXISTS).

Run:
  python backend/migrations/002_add_generation_indexes.py --yes
"""

import argparse
import sys
from pathlib import Path

# Allow running this script from any working directory.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from sqlalchemy import text

from core.database import ENGINE


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--yes", action="store_true", help="Actually apply changes")
    args = parser.parse_args()

    statements = [
        # Horizon scoping
        "CREATE INDEX IF NOT EXISTS idx_sections_school_year_active ON sections (school_id, academic_year_id, is_active);",
        "CREATE INDEX IF NOT EXISTS idx_requirements_section ON section_subject_requirements (section_id);",
        "CREATE INDEX IF NOT EXISTS idx_qualifications_staff_subject ON staff_subject_qualifications (staff_id, subject_id);",
        "CREATE INDEX IF NOT EXISTS idx_pinned_slots_section_active ON pinned_slots (section_id, is_active);",
        "CREATE INDEX IF NOT EXISTS idx_subject_school_levels_level ON subject_school_levels (school_level_id);",

        # Unavailability lookups
        "CREATE INDEX IF NOT EXISTS idx_staff_unavailability_staff_day ON staff_unavailability (staff_id, day_of_week);",
        "CREATE INDEX IF NOT EXISTS idx_room_unavailability_room_day ON room_unavailability (room_id, day_of_week);",

        # Entry replacement and grid reads
        "CREATE INDEX IF NOT EXISTS idx_entries_school_year_section ON timetable_entries (school_id, academic_year_id, section_id);",
        "CREATE INDEX IF NOT EXISTS idx_entries_staff_day ON timetable_entries (staff_id, day_of_week);",

        # Run history and conflicts UI
        "CREATE INDEX IF NOT EXISTS idx_timetable_runs_school_created ON timetable_runs (school_id, created_at);",
        "CREATE INDEX IF NOT EXISTS idx_timetable_conflicts_type ON timetable_conflicts (conflict_type);",
    ]

    if not args.yes:
        print("Dry run. Re-run with --yes to apply.")
        for s in statements:
            print("---")
            print(s.strip())
        return

    with ENGINE.begin() as conn:
        for s in statements:
            conn.execute(text(s))

    print(f"OK: created/verified {len(statements)} indexes.")


if __name__ == "__main__":
    main()
