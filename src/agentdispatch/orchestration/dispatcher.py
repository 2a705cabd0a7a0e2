"""Concurrent dispatch of execution requests.

Each request runs as its own asyncio task inside a bounded pool. Runs share
nothing mutable: every request carries its own bundle, and a run's failure,
timeout or cancellation never touches its siblings.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

import jsonschema

from ..errors import RunnerError
from .models import ExecutionRequest, ExecutionResult, ResultStatus, RunRecord, RunState
from .runners import TaskRunner
from .state_machine import RunStateMachine

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, Dict[str, Any]], Union[None, Awaitable[None]]]


def evaluate_output(output: Any, schema: Optional[Dict[str, Any]]) -> ExecutionResult:
    """Check runner output against the agent's declared output schema.

    Conformant JSON objects come back parsed; anything else keeps the raw text
    and is reported as a partial result.
    """
    if schema is None:
        return ExecutionResult(status=ResultStatus.SUCCESS, output=output)

    payload = output
    if isinstance(output, (str, bytes)):
        try:
            payload = json.loads(output)
        except ValueError:
            return ExecutionResult(
                status=ResultStatus.PARTIAL,
                output=output,
                error="output is not valid JSON",
                schema_valid=False,
            )
    try:
        jsonschema.validate(instance=payload, schema=schema)
    except jsonschema.ValidationError as exc:
        return ExecutionResult(
            status=ResultStatus.PARTIAL,
            output=output,
            error=f"output does not match schema: {exc.message}",
            schema_valid=False,
        )
    except jsonschema.SchemaError as exc:
        return ExecutionResult(
            status=ResultStatus.PARTIAL,
            output=output,
            error=f"agent output schema is invalid: {exc.message}",
            schema_valid=False,
        )
    return ExecutionResult(status=ResultStatus.SUCCESS, output=payload, schema_valid=True)


def _interrupted_result(reason: RunState) -> ExecutionResult:
    if reason is RunState.TIMED_OUT:
        return ExecutionResult(status=ResultStatus.FAILED, error="parent deadline elapsed")
    return ExecutionResult(status=ResultStatus.CANCELLED, error="cancelled")


class RunGroup:
    """Sibling runs of one invocation, plus the join barrier over them."""

    def __init__(
        self,
        records: List[RunRecord],
        tasks: Dict[str, "asyncio.Task[None]"],
        state_machine: Optional[RunStateMachine] = None,
    ) -> None:
        self.records = records
        self._tasks = tasks
        self._state_machine = state_machine or RunStateMachine()
        self.started_at = datetime.now(timezone.utc)
        self.finished_at: Optional[datetime] = None

    @property
    def done(self) -> bool:
        return all(task.done() for task in self._tasks.values())

    def _cancel_active(self, reason: RunState) -> int:
        count = 0
        for record in self.records:
            task = self._tasks[record.run_id]
            if record.state.terminal or task.done():
                continue
            record.cancel_reason = reason
            task.cancel()
            count += 1
        return count

    def cancel(self) -> int:
        """Propagate cancellation to every run that has not finished yet."""
        count = self._cancel_active(RunState.CANCELLED)
        if count:
            logger.info("Cancelling %d active run(s)", count)
        return count

    async def _settle(self) -> None:
        await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        for record in self.records:
            if record.state.terminal:
                continue
            # cancelled before its task got to run
            reason = record.cancel_reason or RunState.CANCELLED
            result = _interrupted_result(reason)
            if self._state_machine.transition(record, reason, detail=result.error):
                record.result = result
        self.finished_at = datetime.now(timezone.utc)

    async def join(self, timeout: Optional[float] = None) -> bool:
        """Wait until every run is terminal or ``timeout`` elapses.

        Runs still active at the timeout are cancelled and marked timed out;
        they are awaited before returning so the caller always sees a
        consistent terminal snapshot. Returns True if nothing had to be cut
        short.
        """
        pending = [task for task in self._tasks.values() if not task.done()]
        if not pending:
            await self._settle()
            return True
        try:
            _, still_pending = await asyncio.wait(pending, timeout=timeout)
        except asyncio.CancelledError:
            self.cancel()
            await self._settle()
            raise
        if still_pending:
            logger.warning("Parent deadline of %ss elapsed with %d run(s) active", timeout, len(still_pending))
            self._cancel_active(RunState.TIMED_OUT)
        await self._settle()
        return not still_pending


class Dispatcher:
    """Runs execution requests concurrently through a :class:`TaskRunner`."""

    def __init__(
        self,
        runner: TaskRunner,
        *,
        max_concurrency: int = 4,
        default_deadline: Optional[float] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.runner = runner
        self.max_concurrency = max_concurrency
        self.default_deadline = default_deadline
        self.progress_callback = progress_callback
        self.state_machine = RunStateMachine()

    def launch(self, requests: Iterable[ExecutionRequest]) -> RunGroup:
        """Start one task per request and return the group handle.

        Must be called from inside a running event loop.
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)
        records: List[RunRecord] = []
        tasks: Dict[str, asyncio.Task] = {}
        for request in requests:
            if request.run_id in tasks:
                raise ValueError(f"Duplicate run id {request.run_id}")
            record = RunRecord(run_id=request.run_id, agent_id=request.agent_id, request=request)
            records.append(record)
            tasks[request.run_id] = asyncio.create_task(
                self._execute(record, semaphore), name=f"run:{request.run_id}"
            )
        logger.info("Dispatched %d run(s) (max concurrency %d)", len(records), self.max_concurrency)
        return RunGroup(records, tasks, self.state_machine)

    async def dispatch(
        self,
        requests: Iterable[ExecutionRequest],
        parent_deadline: Optional[float] = None,
    ) -> List[RunRecord]:
        group = self.launch(requests)
        await group.join(parent_deadline)
        return group.records

    async def _execute(self, record: RunRecord, semaphore: asyncio.Semaphore) -> None:
        request = record.request
        try:
            async with semaphore:
                if not self.state_machine.transition(record, RunState.RUNNING):
                    return
                await self._notify("run.started", {"run_id": record.run_id, "agent": record.agent_id})
                deadline = request.deadline if request.deadline is not None else self.default_deadline
                try:
                    if deadline is not None:
                        output = await asyncio.wait_for(self._call_runner(request), timeout=deadline)
                    else:
                        output = await self._call_runner(request)
                except asyncio.TimeoutError:
                    logger.warning(
                        "Run %s (%s) exceeded its deadline of %ss", record.run_id, record.agent_id, deadline,
                        extra={"run_id": record.run_id},
                    )
                    self._finish(
                        record,
                        RunState.TIMED_OUT,
                        ExecutionResult(status=ResultStatus.FAILED, error=f"timed out after {deadline}s"),
                    )
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    logger.error(
                        "Run %s (%s) failed: %s", record.run_id, record.agent_id, exc,
                        extra={"run_id": record.run_id},
                    )
                    self._finish(
                        record,
                        RunState.FAILED,
                        ExecutionResult(status=ResultStatus.FAILED, error=str(exc) or exc.__class__.__name__),
                    )
                else:
                    self._finish(record, RunState.SUCCEEDED, evaluate_output(output, request.output_schema))
        except asyncio.CancelledError:
            # cooperative cancellation: the runner has already unwound
            reason = record.cancel_reason or RunState.CANCELLED
            self._finish(record, reason, _interrupted_result(reason))
        if record.state.terminal:
            await self._notify(
                "run.finished",
                {"run_id": record.run_id, "agent": record.agent_id, "state": record.state.value},
            )

    async def _call_runner(self, request: ExecutionRequest) -> Any:
        # only wait_for's own expiry may surface as TimeoutError
        try:
            return await self.runner.run(request)
        except asyncio.TimeoutError as exc:
            raise RunnerError(f"runner timed out: {str(exc) or exc.__class__.__name__}") from exc

    def _finish(self, record: RunRecord, state: RunState, result: ExecutionResult) -> None:
        if self.state_machine.transition(record, state, detail=result.error):
            record.result = result
            logger.debug("Run %s finished as %s", record.run_id, state.value, extra={"run_id": record.run_id})

    async def _notify(self, event: str, data: Dict[str, Any]) -> None:
        if not self.progress_callback:
            return
        try:
            if asyncio.iscoroutinefunction(self.progress_callback):
                await self.progress_callback(event, data)
            else:
                self.progress_callback(event, data)
        except Exception as e:
            logger.error("Progress callback failed: %s", e)
