"""Invocation surface: command name + argument string + context tags in,
aggregated report + process exit code out.

Everything that can fail before execution (resolution, argument binding,
composition of every fan-out bundle) happens before the first run is
dispatched, so those errors abort the whole invocation cleanly.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .composition import Composer, ContextBundle, SizeEstimator
from .config import Config
from .errors import ConfigError
from .orchestration.aggregator import Aggregator
from .orchestration.dispatcher import Dispatcher, ProgressCallback
from .orchestration.models import AggregatedReport, ExecutionRequest, ReportStatus
from .orchestration.resolver import Resolver, bind_arguments
from .orchestration.runners import TaskRunner, build_runner
from .registry import Registry

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1


def exit_code_for(status: ReportStatus) -> int:
    return EXIT_FAILED if status is ReportStatus.FAILED else EXIT_OK


@dataclass
class InvocationOutcome:
    report: AggregatedReport
    exit_code: int


class InvocationEngine:
    """Resolves, composes, dispatches and aggregates one command invocation."""

    def __init__(
        self,
        registry: Registry,
        config: Optional[Config] = None,
        runner: Optional[TaskRunner] = None,
        *,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        self.registry = registry
        self.config = config or Config()
        self.resolver = Resolver(registry)
        self.composer = Composer(SizeEstimator(self.config.budget.unit))
        if runner is None:
            try:
                runner = build_runner(self.config.execution.runner, self.config.execution.runner_command)
            except ValueError as exc:
                raise ConfigError(str(exc)) from exc
        self.runner = runner
        self.aggregator = Aggregator()
        self.progress_callback = progress_callback

    def compose(
        self,
        command: str,
        tags: Iterable[str] = (),
        agent: Optional[str] = None,
        ceiling: Optional[int] = None,
    ) -> List[ContextBundle]:
        """Compose one bundle per fan-out target without dispatching."""
        if ceiling is None:
            ceiling = self.config.budget.ceiling
        plans = self.resolver.resolve_targets(command, agent, tags)
        return [self.composer.compose(plan, ceiling) for plan in plans]

    def prepare(
        self,
        command: str,
        arguments: str = "",
        tags: Iterable[str] = (),
        agent: Optional[str] = None,
        ceiling: Optional[int] = None,
        deadline: Optional[float] = None,
    ) -> List[ExecutionRequest]:
        """Build one execution request per fan-out target."""
        if ceiling is None:
            ceiling = self.config.budget.ceiling
        if deadline is None:
            deadline = self.config.execution.deadline_seconds
        plans = self.resolver.resolve_targets(command, agent, tags)
        bound = bind_arguments(plans[0].command, arguments)

        requests = []
        for plan in plans:
            bundle = self.composer.compose(plan, ceiling)
            requests.append(
                ExecutionRequest(
                    run_id=f"{plan.command.id}:{plan.agent.id}",
                    command_id=plan.command.id,
                    agent_id=plan.agent.id,
                    bundle=bundle,
                    arguments=arguments or "",
                    bound_arguments=bound,
                    output_schema=plan.agent.output_schema,
                    deadline=deadline,
                )
            )
        return requests

    async def invoke(
        self,
        command: str,
        arguments: str = "",
        tags: Iterable[str] = (),
        agent: Optional[str] = None,
        ceiling: Optional[int] = None,
        deadline: Optional[float] = None,
        parent_deadline: Optional[float] = None,
    ) -> InvocationOutcome:
        requests = self.prepare(command, arguments, tags, agent, ceiling, deadline)
        logger.info("Invoking %s on %s", command, ", ".join(r.agent_id for r in requests))
        dispatcher = Dispatcher(
            self.runner,
            max_concurrency=self.config.execution.max_concurrency,
            progress_callback=self.progress_callback,
        )
        if parent_deadline is None:
            parent_deadline = self.config.execution.parent_deadline_seconds
        group = dispatcher.launch(requests)
        report = await self.aggregator.collect(command, group, parent_deadline)
        return InvocationOutcome(report=report, exit_code=exit_code_for(report.status))

    def run(self, command: str, arguments: str = "", **kwargs) -> InvocationOutcome:
        """Synchronous wrapper around :meth:`invoke`."""
        return asyncio.run(self.invoke(command, arguments, **kwargs))
