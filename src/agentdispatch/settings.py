"""Environment-based configuration using pydantic-settings.

Loads logging options and runtime overrides from ``AGENTDISPATCH_*``
environment variables (and an optional ``.env`` file) and merges them onto
the YAML-backed :class:`~agentdispatch.config.Config`.
"""

from __future__ import annotations

from typing import Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .composition.budgeter import SizeUnit
from .config import BudgetConfig, Config, ExecutionConfig
from .errors import ConfigError


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="AGENTDISPATCH_", case_sensitive=False, extra="ignore"
    )

    # Logging
    log_level: str = Field(default="WARNING", description="Application log level")
    log_format: str = Field(default="text", description="Log format: json or text")

    # Overrides (unset means: keep the file/default value)
    definitions_dir: Optional[str] = None
    budget_ceiling: Optional[int] = None
    budget_unit: Optional[SizeUnit] = None
    deadline_seconds: Optional[float] = None
    parent_deadline_seconds: Optional[float] = None
    max_concurrency: Optional[int] = None
    runner: Optional[str] = None
    runner_command: Optional[str] = None

    def to_runtime_config(self, base: Optional[Config] = None) -> Config:
        """Merge environment settings into a runtime Config object.

        If a base Config is provided (e.g., loaded from YAML), environment
        variables take precedence.
        """
        if base is None:
            base = Config()

        budget = base.budget.model_dump()
        if self.budget_ceiling is not None:
            budget["ceiling"] = self.budget_ceiling
        if self.budget_unit is not None:
            budget["unit"] = self.budget_unit

        execution = base.execution.model_dump()
        for name in ("deadline_seconds", "parent_deadline_seconds", "max_concurrency", "runner", "runner_command"):
            value = getattr(self, name)
            if value is not None:
                execution[name] = value

        try:
            return Config(
                definitions_dir=self.definitions_dir or base.definitions_dir,
                budget=BudgetConfig(**budget),
                execution=ExecutionConfig(**execution),
            )
        except ValidationError as exc:
            raise ConfigError(f"invalid environment override ({exc})") from exc


def load_settings() -> AppSettings:
    try:
        return AppSettings()
    except ValidationError as exc:
        raise ConfigError(f"invalid AGENTDISPATCH_* environment variable ({exc})") from exc
