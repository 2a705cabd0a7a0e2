"""Task runners: the seam between the engine and whatever executes a bundle.

What a run actually does is opaque to the engine. A runner receives one
:class:`ExecutionRequest` and returns its output (text or a JSON-compatible
mapping) or raises. Runners must release anything they hold when cancelled
before letting the cancellation propagate.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shlex
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Union

from ..errors import RunnerError
from .models import ExecutionRequest

logger = logging.getLogger(__name__)


class TaskRunner(ABC):
    """Executes a single request."""

    name: str = "runner"

    @abstractmethod
    async def run(self, request: ExecutionRequest) -> Any:
        """Run ``request`` and return its output."""


class EchoRunner(TaskRunner):
    """Deterministic in-process runner used for dry runs and tests.

    Returns a JSON summary of what the agent would have received.
    """

    name = "echo"

    async def run(self, request: ExecutionRequest) -> Any:
        bundle = request.bundle
        return json.dumps(
            {
                "agent": request.agent_id,
                "command": request.command_id,
                "arguments": request.bound_arguments,
                "blocks": list(bundle.block_ids),
                "size": bundle.total_size,
                "fingerprint": bundle.fingerprint(),
            },
            sort_keys=True,
        )


class CallableRunner(TaskRunner):
    """Adapts a plain coroutine function ``fn(request) -> output``."""

    name = "callable"

    def __init__(self, fn: Callable[[ExecutionRequest], Awaitable[Any]]) -> None:
        self._fn = fn

    async def run(self, request: ExecutionRequest) -> Any:
        return await self._fn(request)


class SubprocessRunner(TaskRunner):
    """Pipes the rendered bundle to an external command over stdin.

    The child sees ``AGENTDISPATCH_AGENT``, ``AGENTDISPATCH_COMMAND`` and
    ``AGENTDISPATCH_ARGUMENTS`` in its environment; stdout is the run output.
    """

    name = "subprocess"

    def __init__(
        self,
        command: Union[str, Sequence[str]],
        *,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> None:
        argv = shlex.split(command) if isinstance(command, str) else list(command)
        if not argv:
            raise ValueError("SubprocessRunner needs a command to execute")
        self.argv = argv
        self.env = env or {}
        self.cwd = cwd

    def _child_env(self, request: ExecutionRequest) -> Dict[str, str]:
        env = dict(os.environ)
        env.update(self.env)
        env["AGENTDISPATCH_AGENT"] = request.agent_id
        env["AGENTDISPATCH_COMMAND"] = request.command_id
        env["AGENTDISPATCH_ARGUMENTS"] = request.arguments
        return env

    def _stdin_payload(self, request: ExecutionRequest) -> bytes:
        text = request.bundle.render()
        if request.arguments:
            text += f"\n\n<!-- arguments -->\n{request.arguments}"
        return text.encode("utf-8")

    async def run(self, request: ExecutionRequest) -> Any:
        logger.debug("Spawning %s for run %s", self.argv[0], request.run_id)
        process = await asyncio.create_subprocess_exec(
            *self.argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=self._child_env(request),
            cwd=self.cwd,
        )
        try:
            stdout, stderr = await process.communicate(self._stdin_payload(request))
        except asyncio.CancelledError:
            # deadline or parent cancellation: reap the child before reporting
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        if process.returncode != 0:
            err = stderr.decode("utf-8", errors="replace").strip()
            raise RunnerError(
                f"{self.argv[0]} exited with status {process.returncode}: {err or 'no stderr'}",
                exit_status=process.returncode,
                stderr=err,
            )
        return stdout.decode("utf-8", errors="replace")


def build_runner(kind: str, command: Optional[str] = None) -> TaskRunner:
    """Create a runner from configuration values."""
    if kind == EchoRunner.name:
        return EchoRunner()
    if kind == SubprocessRunner.name:
        if not command:
            raise ValueError("runner 'subprocess' requires execution.runner_command")
        return SubprocessRunner(command)
    raise ValueError(f"Unknown runner type: {kind}")
