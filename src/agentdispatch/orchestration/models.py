"""Per-invocation execution models.

Requests and results are pydantic models so reports serialise cleanly;
:class:`RunRecord` is a mutable dataclass owned by the dispatcher and moved
through its lifecycle by :class:`~.state_machine.RunStateMachine`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..composition.models import ContextBundle, TrimRecord


class RunState(str, Enum):
    """Lifecycle of a single run."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self not in (RunState.PENDING, RunState.RUNNING)


class ResultStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ReportStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class ExecutionRequest(BaseModel):
    """One run of one agent against its own bundle."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    command_id: str
    agent_id: str
    bundle: ContextBundle
    arguments: str = ""
    bound_arguments: Dict[str, str] = Field(default_factory=dict)
    output_schema: Optional[Dict[str, Any]] = None
    deadline: Optional[float] = Field(default=None, gt=0, description="Seconds allowed for the run")


class ExecutionResult(BaseModel):
    status: ResultStatus
    output: Any = None
    error: Optional[str] = None
    schema_valid: Optional[bool] = None


@dataclass
class StateTransition:
    from_state: RunState
    to_state: RunState
    timestamp: datetime
    detail: Optional[str] = None


@dataclass
class RunRecord:
    """Mutable tracking state for one run."""
    run_id: str
    agent_id: str
    request: ExecutionRequest
    state: RunState = RunState.PENDING
    result: Optional[ExecutionResult] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    history: List[StateTransition] = field(default_factory=list)
    # set by the dispatcher before it cancels the run's task
    cancel_reason: Optional[RunState] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        if not self.started_at or not self.finished_at:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def error(self) -> Optional[str]:
        return self.result.error if self.result else None


class RunReport(BaseModel):
    """Per-agent entry in the aggregated report."""

    run_id: str
    agent_id: str
    state: RunState
    status: ResultStatus
    output: Any = None
    error: Optional[str] = None
    schema_valid: Optional[bool] = None
    duration_seconds: Optional[float] = None
    bundle_fingerprint: str = ""
    bundle_size: int = 0


class ReportTiming(BaseModel):
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_seconds: float = 0.0
    runs: Dict[str, Optional[float]] = Field(default_factory=dict)


class AggregatedReport(BaseModel):
    """Merged result of all sibling runs of one invocation."""

    status: ReportStatus
    command_id: str
    runs: List[RunReport] = Field(default_factory=list)
    outputs: Dict[str, Any] = Field(default_factory=dict)
    failures: Dict[str, str] = Field(default_factory=dict)
    trimming_log: Dict[str, Tuple[TrimRecord, ...]] = Field(default_factory=dict)
    timing: ReportTiming = Field(default_factory=ReportTiming)

    def run_for(self, agent_id: str) -> Optional[RunReport]:
        for run in self.runs:
            if run.agent_id == agent_id:
                return run
        return None
