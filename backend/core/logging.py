from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

from core.config import BACKEND_DIR


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def logger_levels(environment: str, *, solver_level: str | None = None) -> dict[str, int]:
    """Per-logger levels for the generator's own packages and its noisy dependencies."""

    base = logging.INFO if environment == "production" else logging.DEBUG
    solver = logging.getLevelName(solver_level.upper()) if solver_level else logging.INFO
    if not isinstance(solver, int):
        raise ValueError(f"Unknown solver log level: {solver_level!r}")
    return {
        "solver": solver,
        "services": base,
        "api": base,
        "sqlalchemy.engine": logging.WARNING,
        "uvicorn": base,
        "uvicorn.error": base,
        "uvicorn.access": base,
    }


def _handlers(env: str, level: int) -> list[logging.Handler]:
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z")

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(formatter)
    handlers: list[logging.Handler] = [console]

    if env == "production":
        logs_dir = Path(BACKEND_DIR) / "logs"
        logs_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            logs_dir / "timetable.log",
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)
    return handlers


def setup_logging(*, environment: str, solver_level: str | None = None) -> None:
    """Configure application logging.

    - Dev: console logs, DEBUG level.
    - Prod: console + rotating `logs/timetable.log`, INFO level.

    Handlers are installed once; logger levels are re-applied on every call.
    """

    env = (environment or "development").lower().strip()
    level = logging.INFO if env == "production" else logging.DEBUG

    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, handlers=_handlers(env, level))

    for name, value in logger_levels(env, solver_level=solver_level).items():
        logging.getLogger(name).setLevel(value)
