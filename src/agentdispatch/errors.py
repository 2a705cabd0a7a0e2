"""Error taxonomy for agentdispatch with friendly, actionable CLI messages."""

from __future__ import annotations

from typing import Any, Optional

import click


class DispatchError(click.ClickException):
    """Base class for all errors that abort an invocation.

    Carries an optional hint shown under the message and a payload that can be
    rendered in logs and JSON reports.
    """

    #: Marker shown at the beginning of every error line
    emoji: str = "❌"

    #: Short, actionable suggestion shown after the main message.
    hint: Optional[str] = None

    #: Stable category name used in JSON output
    category: str = "dispatch_error"

    exit_code = 2

    def __init__(
        self,
        message: str,
        hint: Optional[str] = None,
        *,
        payload: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        if hint is not None:
            self.hint = hint
        self.payload = payload or {}

    @property
    def formatted_message(self) -> str:
        lines = [f"{self.emoji}  {click.style(self.message, fg='red', bold=True)}"]
        if self.hint:
            lines.append(click.style(f"💡 {self.hint}", fg="yellow"))
        return "\n".join(lines)

    def show(self, file=None) -> None:
        click.echo(self.formatted_message, err=True, file=file)

    def to_dict(self) -> dict[str, Any]:
        """Serializable representation for reports and structured logs."""
        data: dict[str, Any] = {
            "error": self.__class__.__name__,
            "category": self.category,
            "message": self.message,
        }
        if self.hint:
            data["hint"] = self.hint
        if self.payload:
            data["payload"] = self.payload
        return data


# --------------------------------------------------------------------------- #
#   Load-time errors
# --------------------------------------------------------------------------- #


class ConfigError(DispatchError):
    """Raised when there's a configuration problem."""

    emoji = "🔧"
    category = "config"

    def __init__(self, details: str):
        super().__init__(
            f"Configuration problem – {details}",
            "Check the YAML config file or the AGENTDISPATCH_* environment variables.",
        )


class DefinitionError(DispatchError):
    """Raised when a definition document cannot be parsed or validated."""

    emoji = "📄"
    category = "load"

    def __init__(self, source: str, details: str):
        super().__init__(
            f"Invalid definition {click.style(source, fg='magenta')}: {details}",
            "Definitions need a '---' delimited YAML front-matter block.",
            payload={"source": source},
        )
        self.source = source


class DuplicateIdError(DispatchError):
    """Raised when two definitions of the same kind share an identifier."""

    emoji = "👯"
    category = "load"

    def __init__(self, kind: str, identifier: str, first: str = "", second: str = ""):
        where = f" ({first} and {second})" if first and second else ""
        super().__init__(
            f"Duplicate {kind} id {click.style(identifier, fg='magenta')}{where}.",
            f"Rename one of the {kind} definitions or set an explicit 'id' in its front-matter.",
            payload={"kind": kind, "id": identifier},
        )
        self.kind = kind
        self.identifier = identifier


class RegistryNotInitializedError(DispatchError):
    """Raised when the process-wide registry is used before startup loaded it."""

    category = "load"

    def __init__(self) -> None:
        super().__init__(
            "The definition registry has not been initialised.",
            "Call init_registry() during startup.",
        )


# --------------------------------------------------------------------------- #
#   Resolution-time errors
# --------------------------------------------------------------------------- #


class CommandNotFoundError(DispatchError):
    """Raised when the invoked command is not registered."""

    emoji = "🚫"
    category = "resolution"

    def __init__(self, command: str):
        super().__init__(
            f"The command {click.style(command, fg='magenta')} is not recognized.",
            f"Run {click.style('agentdispatch list commands', fg='cyan')} to see available commands.",
            payload={"command": command},
        )
        self.command = command


class AgentNotFoundError(DispatchError):
    """Raised when a command targets an agent that is not registered."""

    emoji = "🔍"
    category = "resolution"

    def __init__(self, agent: str, command: Optional[str] = None):
        message = f"The agent {click.style(agent, fg='magenta')} could not be found"
        if command:
            message += f" (targeted by command {click.style(command, fg='magenta')})"
        super().__init__(
            message + ".",
            f"Run {click.style('agentdispatch list agents', fg='cyan')} to see registered agents.",
            payload={"agent": agent, "command": command},
        )
        self.agent = agent


class InvalidArgumentsError(DispatchError):
    """Raised when the argument string does not satisfy the command's schema."""

    emoji = "⚠️"
    category = "resolution"

    def __init__(self, command: str, missing: list[str]):
        names = ", ".join(missing)
        super().__init__(
            f"Missing required argument(s) for {click.style(command, fg='magenta')}: {names}.",
            "Pass the arguments after the command name.",
            payload={"command": command, "missing": list(missing)},
        )
        self.missing = list(missing)


# --------------------------------------------------------------------------- #
#   Composition-time errors
# --------------------------------------------------------------------------- #


class BudgetInfeasibleError(DispatchError):
    """Raised when mandatory content alone exceeds the budget ceiling."""

    emoji = "📏"
    category = "composition"
    exit_code = 3

    def __init__(self, required: int, ceiling: int, agent: Optional[str] = None):
        target = f" for agent {click.style(agent, fg='magenta')}" if agent else ""
        super().__init__(
            f"Mandatory content{target} needs {required} units but the ceiling is {ceiling}.",
            "Raise the budget with --budget or shorten the always-on rules.",
            payload={"required": required, "ceiling": ceiling, "agent": agent},
        )
        self.required = required
        self.ceiling = ceiling


# --------------------------------------------------------------------------- #
#   Execution-time errors (contained to a single run)
# --------------------------------------------------------------------------- #


class RunnerError(RuntimeError):
    """Raised by task runners when a single run fails.

    Never aborts the invocation: the Dispatcher records it on the failing run.
    """

    def __init__(self, message: str, *, exit_status: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.exit_status = exit_status
        self.stderr = stderr
