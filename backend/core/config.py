from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic.aliases import AliasChoices
from pydantic_settings import BaseSettings, SettingsConfigDict


BACKEND_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=BACKEND_DIR / ".env", env_file_encoding="utf-8")

    database_url: str

    # Runtime
    environment: str = Field(default="development", validation_alias=AliasChoices("environment", "ENVIRONMENT"))
    frontend_origin: str = Field(
        default="http://localhost:3000",
        validation_alias=AliasChoices("frontend_origin", "FRONTEND_ORIGIN"),
    )

    # Search budget defaults; requests may override within the production cap.
    solver_max_steps: int = Field(
        default=250_000,
        gt=0,
        validation_alias=AliasChoices("solver_max_steps", "SOLVER_MAX_STEPS"),
    )
    solver_max_seconds: float = Field(
        default=20.0,
        gt=0,
        validation_alias=AliasChoices("solver_max_seconds", "SOLVER_MAX_SECONDS"),
    )
    solver_backtrack_limit: int = Field(
        default=2_000,
        ge=0,
        validation_alias=AliasChoices("solver_backtrack_limit", "SOLVER_BACKTRACK_LIMIT"),
    )
    solver_production_max_seconds: float = Field(
        default=30.0,
        gt=0,
        validation_alias=AliasChoices("solver_production_max_seconds", "SOLVER_PRODUCTION_MAX_SECONDS"),
    )

    # Level for the solver package loggers; INFO when unset.
    solver_log_level: str | None = Field(
        default=None,
        validation_alias=AliasChoices("solver_log_level", "SOLVER_LOG_LEVEL"),
    )

    default_period_minutes: int = Field(
        default=60,
        gt=0,
        validation_alias=AliasChoices("default_period_minutes", "DEFAULT_PERIOD_MINUTES"),
    )

    # A RUNNING run row older than this no longer blocks a new run for the school.
    run_stale_after_seconds: int = Field(
        default=900,
        gt=0,
        validation_alias=AliasChoices("run_stale_after_seconds", "RUN_STALE_AFTER_SECONDS"),
    )

    @field_validator("frontend_origin")
    @classmethod
    def _normalize_frontend_origin(cls, v: str) -> str:
        # Starlette CORS expects the Origin to match exactly (no trailing slash).
        return v.strip().rstrip("/")

    @field_validator("environment")
    @classmethod
    def _normalize_environment(cls, v: str) -> str:
        return (v or "development").strip().lower()

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


settings = Settings()
