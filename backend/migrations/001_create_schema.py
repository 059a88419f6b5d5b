from __future__ import annotations

"""Create every table the timetable generator uses.

Safe to run multiple times (existing tables are left alone).

Run:
  python backend/migrations/001_create_schema.py --yes
"""

import argparse
import sys
from pathlib import Path

# Allow running this script from any working directory.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

import models  # noqa: F401  (registers every table on Base.metadata)
from core.database import ENGINE
from models.base import Base


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--yes", action="store_true", help="Actually apply changes")
    args = parser.parse_args()

    tables = sorted(Base.metadata.tables)
    if not args.yes:
        print("Dry run. Re-run with --yes to apply.")
        for name in tables:
            print(f"- {name}")
        return

    Base.metadata.create_all(ENGINE)
    print(f"OK: created/verified {len(tables)} tables.")


if __name__ == "__main__":
    main()
