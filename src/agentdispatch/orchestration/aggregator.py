"""Merging sibling run results into one report.

The merge step only ever sees a terminal snapshot: :meth:`Aggregator.collect`
enters it after every run has finished or the parent deadline has cut the
remaining runs short. The aggregator never retries anything.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from .dispatcher import RunGroup
from .models import (
    AggregatedReport,
    ReportStatus,
    ReportTiming,
    ResultStatus,
    RunRecord,
    RunReport,
    RunState,
)

logger = logging.getLogger(__name__)

# Cancelled runs count the same as timed-out ones when merging.
_FAILED_STATES = frozenset({RunState.FAILED, RunState.TIMED_OUT, RunState.CANCELLED})


class Aggregator:
    """Applies the partial-failure policy to sibling runs."""

    async def collect(
        self,
        command_id: str,
        group: RunGroup,
        parent_deadline: Optional[float] = None,
    ) -> AggregatedReport:
        await group.join(parent_deadline)
        return self.merge(
            command_id,
            group.records,
            started_at=group.started_at,
            finished_at=group.finished_at,
        )

    def merge(
        self,
        command_id: str,
        records: Iterable[RunRecord],
        *,
        started_at: Optional[datetime] = None,
        finished_at: Optional[datetime] = None,
    ) -> AggregatedReport:
        records = list(records)
        unfinished = [r.run_id for r in records if not r.state.terminal]
        if unfinished:
            raise ValueError(f"Cannot merge runs that are still active: {', '.join(unfinished)}")

        runs: List[RunReport] = []
        outputs = {}
        failures = {}
        trimming_log = {}
        degraded = False

        for record in records:
            result = record.result
            status = result.status if result else ResultStatus.FAILED
            runs.append(
                RunReport(
                    run_id=record.run_id,
                    agent_id=record.agent_id,
                    state=record.state,
                    status=status,
                    output=result.output if result else None,
                    error=result.error if result else None,
                    schema_valid=result.schema_valid if result else None,
                    duration_seconds=record.duration_seconds,
                    bundle_fingerprint=record.request.bundle.fingerprint(),
                    bundle_size=record.request.bundle.total_size,
                )
            )
            trimming_log[record.agent_id] = record.request.bundle.trimming_log

            if record.state is RunState.SUCCEEDED:
                outputs[record.agent_id] = result.output if result else None
                if status is ResultStatus.PARTIAL:
                    degraded = True
            elif record.state in _FAILED_STATES:
                failures[record.agent_id] = self._failure_detail(record)

        status = self._status(len(outputs), len(failures), degraded)
        finished_at = finished_at or datetime.now(timezone.utc)
        started_at = started_at or min((r.started_at for r in records if r.started_at), default=finished_at)
        report = AggregatedReport(
            status=status,
            command_id=command_id,
            runs=runs,
            outputs=outputs,
            failures=failures,
            trimming_log=trimming_log,
            timing=ReportTiming(
                started_at=started_at,
                finished_at=finished_at,
                duration_seconds=(finished_at - started_at).total_seconds(),
                runs={r.agent_id: r.duration_seconds for r in records},
            ),
        )
        logger.info(
            "Command %s finished %s (%d succeeded, %d failed)",
            command_id, status.value, len(outputs), len(failures),
        )
        return report

    @staticmethod
    def _status(succeeded: int, failed: int, degraded: bool) -> ReportStatus:
        if succeeded == 0:
            return ReportStatus.FAILED
        if failed or degraded:
            return ReportStatus.PARTIAL
        return ReportStatus.SUCCESS

    @staticmethod
    def _failure_detail(record: RunRecord) -> str:
        error = record.error or "no error detail"
        return f"{record.state.value}: {error}"
