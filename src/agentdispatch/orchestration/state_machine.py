"""
Run state management for dispatched executions.

Pending -> Running -> {Succeeded, Failed, TimedOut, Cancelled}. A pending run
may also be cancelled or timed out before it ever starts (parent cancellation
or deadline while it waits for a pool slot). Terminal states are final.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Optional

from .models import RunRecord, RunState, StateTransition

logger = logging.getLogger(__name__)


class RunStateMachine:
    """Validates and records run state transitions."""

    VALID_TRANSITIONS: Dict[RunState, FrozenSet[RunState]] = {
        RunState.PENDING: frozenset({RunState.RUNNING, RunState.CANCELLED, RunState.TIMED_OUT}),
        RunState.RUNNING: frozenset({
            RunState.SUCCEEDED, RunState.FAILED, RunState.TIMED_OUT, RunState.CANCELLED,
        }),
        RunState.SUCCEEDED: frozenset(),
        RunState.FAILED: frozenset(),
        RunState.TIMED_OUT: frozenset(),
        RunState.CANCELLED: frozenset(),
    }

    def can_transition(self, current: RunState, new: RunState) -> bool:
        return new in self.VALID_TRANSITIONS.get(current, frozenset())

    def transition(self, record: RunRecord, new_state: RunState, detail: Optional[str] = None) -> bool:
        """Move ``record`` to ``new_state`` if allowed.

        Returns True if the transition happened, False otherwise (the record is
        left untouched).
        """
        current = record.state
        if not self.can_transition(current, new_state):
            logger.debug("Rejected transition %s -> %s for run %s", current.value, new_state.value, record.run_id)
            return False

        now = datetime.now(timezone.utc)
        record.history.append(StateTransition(current, new_state, now, detail))
        record.state = new_state

        if new_state is RunState.RUNNING:
            record.started_at = now
        elif new_state.terminal:
            record.finished_at = now
            if record.started_at is None:
                record.started_at = now
        return True
