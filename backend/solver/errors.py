from __future__ import annotations

from typing import Any


# Reason codes for lessons the run could not place.
NO_QUALIFIED_STAFF = "NO_QUALIFIED_STAFF"
NO_ELIGIBLE_ROOM = "NO_ELIGIBLE_ROOM"
NO_FREE_SLOT = "NO_FREE_SLOT"
BUDGET_EXHAUSTED = "BUDGET_EXHAUSTED"


class TimetableError(Exception):
    """Base class for errors carrying a machine-readable code."""

    def __init__(self, code: str, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        details = dict(self.details)
        # run_id is lifted out of details to the top level.
        return {"code": self.code, "message": str(self), "run_id": details.pop("run_id", None), "details": details}


class ConfigurationError(TimetableError):
    """Reference data is missing or malformed; the run aborts before search."""


class SolverInvariantError(TimetableError):
    """The committed state broke a hard invariant (e.g. a double booking)."""
