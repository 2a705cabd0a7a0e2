"""
agentdispatch.cli
~~~~~~~~~~~~~~~~~

Click entry point. Sub-commands:

* ``run``      - resolve, compose, dispatch and aggregate a command
* ``compose``  - show the bundle(s) a command would receive, without running
* ``list``     - list registered commands, agents, skills or rules
* ``config``   - show or write the YAML configuration

Exit codes: 0 success or partial success, 1 every run failed, 2 load or
resolution error, 3 mandatory content exceeds the budget ceiling.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .composition import ContextBundle
from .config import Config
from .engine import InvocationEngine
from .logging_config import configure_logging
from .orchestration.models import AggregatedReport, ReportStatus
from .registry import Registry, init_registry, reset_registry
from .settings import load_settings

console = Console(highlight=False)
err_console = Console(stderr=True, highlight=False)

_STATUS_STYLE = {
    ReportStatus.SUCCESS: "green",
    ReportStatus.PARTIAL: "yellow",
    ReportStatus.FAILED: "red",
}


@dataclass
class CliState:
    config: Config
    definitions_dir: Path
    registry: Optional[Registry] = None


# --------------------------------------------------------------------------- #
#   Helper utilities
# --------------------------------------------------------------------------- #
def _pretty_json(data: Any) -> str:
    """Indent JSON for terminal display."""
    return json.dumps(data, indent=2, sort_keys=True, default=str)


def _load_registry(ctx: click.Context) -> Registry:
    state: CliState = ctx.obj
    if state.registry is None:
        state.registry = init_registry(state.definitions_dir)
        ctx.call_on_close(reset_registry)
    return state.registry


def _progress(event: str, data: Dict[str, Any]) -> None:
    if event == "run.started":
        err_console.print(f"[dim]▶ {escape(data['agent'])} started[/dim]")
    elif event == "run.finished":
        err_console.print(f"[dim]■ {escape(data['agent'])} {data['state']}[/dim]")


def _bundle_table(bundle: ContextBundle) -> Table:
    table = Table(
        title=f"{bundle.agent_id}: {bundle.total_size}/{bundle.ceiling} {bundle.unit}",
        box=box.ROUNDED,
    )
    table.add_column("Block", style="cyan", no_wrap=True)
    table.add_column("Kind", style="blue")
    table.add_column("Size", justify="right")
    table.add_column("Included")
    for block in bundle.blocks:
        table.add_row(block.block_id, block.kind.value, str(block.size), "[green]yes[/green]")
    for record in bundle.trimming_log:
        table.add_row(record.block_id, record.kind.value, str(record.size), f"[yellow]{record.reason.value}[/yellow]")
    return table


def _print_report(report: AggregatedReport) -> None:
    style = _STATUS_STYLE[report.status]
    console.print(
        Panel(
            f"Command [bold]{escape(report.command_id)}[/bold] finished "
            f"[{style}]{report.status.value}[/{style}] in {report.timing.duration_seconds:.2f}s",
            title="Result",
            border_style=style,
        )
    )

    table = Table(box=box.ROUNDED)
    table.add_column("Agent", style="cyan", no_wrap=True)
    table.add_column("State")
    table.add_column("Status")
    table.add_column("Bundle", justify="right")
    table.add_column("Duration", justify="right")
    for run in report.runs:
        duration = f"{run.duration_seconds:.2f}s" if run.duration_seconds is not None else "-"
        table.add_row(run.agent_id, run.state.value, run.status.value, str(run.bundle_size), duration)
    console.print(table)

    for agent_id, output in report.outputs.items():
        text = output if isinstance(output, str) else _pretty_json(output)
        console.print(Panel(escape(text), title=f"✅ {escape(agent_id)}", border_style="green"))
    for agent_id, failure in report.failures.items():
        console.print(f"[red]❌ {escape(agent_id)}: {escape(failure)}[/red]")


# --------------------------------------------------------------------------- #
#   Root group
# --------------------------------------------------------------------------- #
@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, prog_name="agentdispatch")
@click.option("--log-level", default=None, help="Log level (override env)")
@click.option("--log-format", default=None, type=click.Choice(["json", "text"]))
@click.option(
    "--config", "config_path", default=None,
    type=click.Path(dir_okay=False, path_type=Path), help="Path to YAML config",
)
@click.option(
    "--definitions", "definitions_dir", default=None,
    type=click.Path(file_okay=False, path_type=Path), help="Definitions root directory",
)
@click.pass_context
def cli(ctx, log_level, log_format, config_path, definitions_dir) -> None:
    """AgentDispatch - command routing and context composition for agent runs."""
    settings = load_settings()
    configure_logging(log_level or settings.log_level, log_format or settings.log_format)
    config = settings.to_runtime_config(Config.load(config_path))
    ctx.obj = CliState(
        config=config,
        definitions_dir=definitions_dir or Path(config.definitions_dir),
    )


# --------------------------------------------------------------------------- #
#   run
# --------------------------------------------------------------------------- #
@cli.command(name="run")
@click.argument("command")
@click.argument("arguments", nargs=-1)
@click.option("--tag", "tags", multiple=True, help="Caller context tag (repeatable)")
@click.option("--agent", default=None, help="Override the command's primary agent")
@click.option("--budget", type=click.IntRange(min=1), default=None, help="Bundle size ceiling")
@click.option("--deadline", type=click.FloatRange(min=0, min_open=True), default=None,
              help="Per-run deadline in seconds")
@click.option("--parent-deadline", type=click.FloatRange(min=0, min_open=True), default=None,
              help="Deadline for the whole invocation in seconds")
@click.option("--json", "as_json", is_flag=True, help="Output the aggregated report as JSON")
@click.pass_context
def run_cmd(ctx, command, arguments, tags, agent, budget, deadline, parent_deadline, as_json) -> None:
    """🚀 Run COMMAND with optional ARGUMENTS."""
    state: CliState = ctx.obj
    engine = InvocationEngine(
        _load_registry(ctx),
        state.config,
        progress_callback=None if as_json else _progress,
    )
    outcome = engine.run(
        command,
        " ".join(arguments),
        tags=tags,
        agent=agent,
        ceiling=budget,
        deadline=deadline,
        parent_deadline=parent_deadline,
    )
    if as_json:
        click.echo(_pretty_json(outcome.report.model_dump(mode="json")))
    else:
        _print_report(outcome.report)
    ctx.exit(outcome.exit_code)


# --------------------------------------------------------------------------- #
#   compose
# --------------------------------------------------------------------------- #
@cli.command(name="compose")
@click.argument("command")
@click.option("--tag", "tags", multiple=True, help="Caller context tag (repeatable)")
@click.option("--agent", default=None, help="Override the command's primary agent")
@click.option("--budget", type=click.IntRange(min=1), default=None, help="Bundle size ceiling")
@click.option("--json", "as_json", is_flag=True, help="Output the bundles as JSON")
@click.option("--render", is_flag=True, help="Print the rendered text each runner would receive")
@click.pass_context
def compose_cmd(ctx, command, tags, agent, budget, as_json, render) -> None:
    """🧩 Show the context bundle(s) COMMAND would be dispatched with."""
    state: CliState = ctx.obj
    engine = InvocationEngine(_load_registry(ctx), state.config)
    bundles = engine.compose(command, tags=tags, agent=agent, ceiling=budget)

    if as_json:
        data = []
        for bundle in bundles:
            entry = bundle.model_dump(mode="json")
            entry["fingerprint"] = bundle.fingerprint()
            data.append(entry)
        click.echo(_pretty_json(data))
        return

    for bundle in bundles:
        if render:
            click.echo(bundle.render())
            continue
        console.print(_bundle_table(bundle))
        console.print(f"[dim]fingerprint {bundle.fingerprint()}[/dim]")


# --------------------------------------------------------------------------- #
#   list
# --------------------------------------------------------------------------- #
@cli.command(name="list")
@click.argument(
    "kind", required=False, default="commands",
    type=click.Choice(["commands", "agents", "skills", "rules"]),
)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def list_cmd(ctx, kind, as_json) -> None:
    """📋 List registered commands, agents, skills or rules."""
    registry = _load_registry(ctx)
    definitions = getattr(registry, kind)()

    if as_json:
        click.echo(_pretty_json([d.model_dump(mode="json") for d in definitions]))
        return

    if not definitions:
        console.print(f"[yellow]⚠️  No {kind} are registered under {escape(str(ctx.obj.definitions_dir))}.[/yellow]")
        return

    table = Table(title=kind.capitalize(), box=box.ROUNDED)
    table.add_column("Id", style="cyan", no_wrap=True)
    rows: List[List[str]] = []
    if kind == "commands":
        table.add_column("Agent")
        table.add_column("Fan-out")
        rows = [[d.id, d.agent, ", ".join(d.fanout)] for d in definitions]
    elif kind == "agents":
        table.add_column("Tags")
        rows = [[d.id, ", ".join(d.tags)] for d in definitions]
    elif kind == "skills":
        table.add_column("Tags")
        table.add_column("Sections", justify="right")
        rows = [[d.id, ", ".join(d.tags), str(len(d.sections))] for d in definitions]
    else:
        table.add_column("Scope")
        rows = [[d.id, "always-on" if d.always_on else ", ".join(d.scope)] for d in definitions]
    table.add_column("Description", style="blue")

    for row, definition in zip(rows, definitions):
        table.add_row(*row, definition.description)
    console.print(table)


# --------------------------------------------------------------------------- #
#   config
# --------------------------------------------------------------------------- #
@cli.group(name="config")
def config_group() -> None:
    """🔧 Inspect or create the YAML configuration."""
    pass


@config_group.command(name="show")
@click.pass_context
def config_show(ctx) -> None:
    """Print the effective configuration (file + environment)."""
    state: CliState = ctx.obj
    data = state.config.model_dump(mode="json")
    data["definitions_dir"] = str(state.definitions_dir)
    click.echo(_pretty_json(data))


@config_group.command(name="init")
@click.option(
    "--path", default=None, type=click.Path(dir_okay=False, path_type=Path),
    help="Where to write the file (default: ~/.agentdispatch/agentdispatch.yaml)",
)
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def config_init(path, force) -> None:
    """Write a configuration file with default values."""
    path = path or Config.default_config_path()
    if path.exists() and not force:
        raise click.ClickException(f"{path} already exists (use --force to overwrite)")
    Config().save_to_file(path)
    click.secho(f"✅ Wrote {path}", fg="green")


def main() -> None:
    cli(prog_name="agentdispatch")


if __name__ == "__main__":
    main()
