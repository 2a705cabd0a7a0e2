"""End-to-end tests for the invocation engine."""

import asyncio
import json

import pytest

from agentdispatch.config import Config, ExecutionConfig
from agentdispatch.engine import EXIT_FAILED, EXIT_OK, InvocationEngine
from agentdispatch.errors import (
    BudgetInfeasibleError,
    CommandNotFoundError,
    ConfigError,
    InvalidArgumentsError,
)
from agentdispatch.orchestration.models import ReportStatus, RunState
from agentdispatch.orchestration.runners import CallableRunner, EchoRunner


class RecordingRunner(CallableRunner):
    """Runner that records requests and behaves per agent."""

    def __init__(self, delays=None, failures=()):
        self.requests = []
        self.delays = delays or {}
        self.failures = set(failures)
        super().__init__(self._run)

    async def _run(self, request):
        self.requests.append(request)
        await asyncio.sleep(self.delays.get(request.agent_id, 0))
        if request.agent_id in self.failures:
            raise RuntimeError(f"{request.agent_id} failed")
        return json.dumps({"verdict": f"ok from {request.agent_id}"})


@pytest.fixture
def runner():
    return RecordingRunner()


@pytest.fixture
def engine(registry, runner):
    return InvocationEngine(registry, Config(), runner)


class TestCompose:
    def test_one_bundle_per_target(self, engine):
        bundles = engine.compose("review")
        assert [b.agent_id for b in bundles] == ["reviewer", "tester"]
        assert "rule:safety" in bundles[0].block_ids
        assert "rule:py-rule" in bundles[0].block_ids
        assert "rule:py-rule" not in bundles[1].block_ids

    def test_ceiling_defaults_to_config(self, engine):
        assert all(b.ceiling == 32000 for b in engine.compose("review"))
        assert all(b.ceiling == 500 for b in engine.compose("review", ceiling=500))

    def test_zero_ceiling_is_not_replaced_by_config(self, engine):
        with pytest.raises(BudgetInfeasibleError):
            engine.compose("review", ceiling=0)

    def test_prepare_builds_requests(self, engine):
        requests = engine.prepare("review", "app.py be strict")
        assert [r.run_id for r in requests] == ["review:reviewer", "review:tester"]
        assert requests[0].bound_arguments == {"target": "app.py", "notes": "be strict"}
        assert requests[0].output_schema is None
        assert requests[1].output_schema is not None
        assert all(r.deadline == 300.0 for r in requests)


class TestInvoke:
    @pytest.mark.asyncio
    async def test_success(self, engine, runner):
        outcome = await engine.invoke("review", "app.py")

        assert outcome.exit_code == EXIT_OK
        assert outcome.report.status is ReportStatus.SUCCESS
        assert outcome.report.outputs["tester"] == {"verdict": "ok from tester"}
        assert isinstance(outcome.report.outputs["reviewer"], str)
        assert {r.agent_id for r in runner.requests} == {"reviewer", "tester"}

    @pytest.mark.asyncio
    async def test_fanout_failure_is_partial(self, registry):
        engine = InvocationEngine(registry, Config(), RecordingRunner(failures={"tester"}))
        outcome = await engine.invoke("review", "app.py")

        assert outcome.exit_code == EXIT_OK
        assert outcome.report.status is ReportStatus.PARTIAL
        assert list(outcome.report.outputs) == ["reviewer"]
        assert outcome.report.failures == {"tester": "failed: tester failed"}

    @pytest.mark.asyncio
    async def test_all_failed(self, registry):
        engine = InvocationEngine(registry, Config(), RecordingRunner(failures={"reviewer", "tester"}))
        outcome = await engine.invoke("review", "app.py")

        assert outcome.exit_code == EXIT_FAILED
        assert outcome.report.status is ReportStatus.FAILED

    @pytest.mark.asyncio
    async def test_only_the_slow_run_times_out(self, registry):
        engine = InvocationEngine(registry, Config(), RecordingRunner(delays={"tester": 5}))
        outcome = await engine.invoke("review", "app.py", deadline=0.1)

        assert outcome.report.run_for("tester").state is RunState.TIMED_OUT
        assert outcome.report.run_for("reviewer").state is RunState.SUCCEEDED
        assert outcome.report.status is ReportStatus.PARTIAL

    @pytest.mark.asyncio
    async def test_parent_deadline(self, registry):
        config = Config(execution=ExecutionConfig(parent_deadline_seconds=0.1))
        engine = InvocationEngine(registry, config, RecordingRunner(delays={"tester": 5}))
        outcome = await engine.invoke("review", "app.py")

        assert outcome.report.failures == {"tester": "timed_out: parent deadline elapsed"}

    @pytest.mark.asyncio
    async def test_schema_mismatch_from_echo_runner(self, registry):
        engine = InvocationEngine(registry, Config(), EchoRunner())
        outcome = await engine.invoke("review", "app.py")

        # echo output has no "verdict", which the tester schema requires
        assert outcome.report.status is ReportStatus.PARTIAL
        assert outcome.report.run_for("tester").schema_valid is False
        assert outcome.exit_code == EXIT_OK

    @pytest.mark.asyncio
    async def test_cancelling_invocation_cancels_runs(self, registry):
        runner = RecordingRunner(delays={"reviewer": 5, "tester": 5})
        engine = InvocationEngine(registry, Config(), runner)
        task = asyncio.create_task(engine.invoke("review", "app.py"))
        await asyncio.sleep(0.05)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert len(runner.requests) == 2


class TestAbortBeforeDispatch:
    """Errors found while resolving or composing never start any run."""

    @pytest.mark.asyncio
    async def test_unknown_command(self, engine, runner):
        with pytest.raises(CommandNotFoundError):
            await engine.invoke("deploy")
        assert runner.requests == []

    @pytest.mark.asyncio
    async def test_missing_arguments(self, engine, runner):
        with pytest.raises(InvalidArgumentsError):
            await engine.invoke("review", "")
        assert runner.requests == []

    @pytest.mark.asyncio
    async def test_budget_infeasible(self, engine, runner):
        with pytest.raises(BudgetInfeasibleError):
            await engine.invoke("review", "app.py", ceiling=1)
        assert runner.requests == []

    @pytest.mark.asyncio
    async def test_zero_ceiling_aborts(self, engine, runner):
        with pytest.raises(BudgetInfeasibleError):
            await engine.invoke("review", "app.py", ceiling=0)
        assert runner.requests == []


class TestConstruction:
    def test_runner_from_config(self, registry):
        engine = InvocationEngine(registry, Config())
        assert isinstance(engine.runner, EchoRunner)

    def test_subprocess_runner_needs_command(self, registry):
        config = Config(execution=ExecutionConfig(runner="subprocess"))
        with pytest.raises(ConfigError):
            InvocationEngine(registry, config)

    def test_sync_run(self, registry, runner):
        outcome = InvocationEngine(registry, Config(), runner).run("docs", "intro")
        assert outcome.report.status is ReportStatus.SUCCESS
        assert runner.requests[0].bound_arguments == {"arguments": "intro"}
