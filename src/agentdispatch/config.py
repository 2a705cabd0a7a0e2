import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .composition.budgeter import SizeUnit
from .errors import ConfigError


class BudgetConfig(BaseModel):
    ceiling: int = Field(default=32000, description="Bundle size ceiling")
    unit: SizeUnit = Field(default=SizeUnit.TOKENS, description="Unit for block sizes")

    @field_validator("ceiling")
    def validate_ceiling(cls, v):
        if v <= 0:
            raise ValueError("Budget ceiling must be positive")
        return v


class ExecutionConfig(BaseModel):
    deadline_seconds: Optional[float] = Field(
        default=300.0, description="Per-run deadline in seconds"
    )
    parent_deadline_seconds: Optional[float] = Field(
        default=None, description="Deadline for the whole invocation"
    )
    max_concurrency: int = Field(default=4, description="Maximum concurrent runs")
    runner: str = Field(default="echo", description="Runner type: echo|subprocess")
    runner_command: Optional[str] = Field(
        default=None, description="Executable + args for the subprocess runner"
    )

    @field_validator("deadline_seconds", "parent_deadline_seconds")
    def validate_deadline(cls, v):
        if v is not None and v <= 0:
            raise ValueError("Deadlines must be positive")
        return v

    @field_validator("max_concurrency")
    def validate_max_concurrency(cls, v):
        if not 1 <= v <= 64:
            raise ValueError("max_concurrency must be between 1 and 64")
        return v

    @field_validator("runner")
    def validate_runner(cls, v):
        if v not in {"echo", "subprocess"}:
            raise ValueError("runner must be 'echo' or 'subprocess'")
        return v


class Config(BaseModel):
    """Main configuration for agentdispatch."""

    definitions_dir: str = Field(
        default=".agentdispatch", description="Root of commands/agents/skills/rules"
    )
    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)

    @classmethod
    def from_file(cls, path: Path) -> "Config":
        """Load configuration from a YAML file."""
        if not path.exists():
            raise ConfigError(f"configuration file not found: {path}")

        with open(path, "r") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise ConfigError(f"{path} is not valid YAML ({exc})") from exc

        try:
            return cls(**data)
        except (TypeError, ValidationError) as exc:
            raise ConfigError(f"{path}: {exc}") from exc

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Config":
        """Load configuration using precedence: explicit path -> env var -> home file -> cwd file -> defaults.

        Environment overrides are applied on top by
        :meth:`agentdispatch.settings.AppSettings.to_runtime_config`.
        """
        explicit = path or (
            Path(os.getenv("AGENTDISPATCH_CONFIG")) if os.getenv("AGENTDISPATCH_CONFIG") else None
        )
        if explicit:
            return cls.from_file(Path(explicit))
        home_cfg = cls.default_config_path()
        if home_cfg.exists():
            return cls.from_file(home_cfg)
        local = Path("agentdispatch.yaml")
        if local.exists():
            return cls.from_file(local)
        return cls()

    def save_to_file(self, path: Path):
        """Save configuration to a YAML file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(self.model_dump(mode="json"), f, default_flow_style=False, indent=2)

    @staticmethod
    def default_config_path() -> Path:
        """Return the default per-user config path under ~/.agentdispatch."""
        return Path(os.path.expanduser("~/.agentdispatch/agentdispatch.yaml"))
