"""Command-line interface for the MCP optimizer.

A thin Click wrapper around ``OptimizationManager`` for inspecting what the
optimizer would do from the shell.

Examples
--------
$ mcp-optimizer optimize frontend-engineer "Create responsive UI component"
$ mcp-optimizer route playwright_browser_navigate --json
$ mcp-optimizer patterns
$ mcp-optimizer report

``MCP_OPTIMIZER_*`` environment variables (or a ``.env`` file) override the
configuration file passed with ``--config``.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .runtime.optimization_manager import OptimizationManager
from .schemas.common_enums import Priority
from .utils.config_manager import ConfigurationManager
from .utils.exceptions import OptimizerError
from .utils.logger_setup import setup_logging

logger = logging.getLogger(__name__)

_LOG_LEVELS = ["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"]
DEFAULT_CLI_LOG_LEVEL = "WARNING"


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _build_manager(ctx: click.Context) -> OptimizationManager:
    try:
        return OptimizationManager(config=ctx.obj["config"])
    except OptimizerError as exc:
        _fail(str(exc))


# ---------------------------------------------------------------------------
# Root Click group
# ---------------------------------------------------------------------------

@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(_LOG_LEVELS, case_sensitive=False),
    help="Logging verbosity. Overrides the configured level; WARNING when neither is set.",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="YAML configuration file",
)
@click.version_option(__version__, prog_name="mcp-optimizer")
@click.pass_context
def cli(ctx: click.Context, log_level: Optional[str], config_path: Optional[Path]) -> None:
    """MCP tool-integration optimizer."""
    load_dotenv()
    try:
        config = ConfigurationManager(config_path=config_path).get_config()
    except OptimizerError as exc:
        _fail(str(exc))

    # The shell stays quiet unless a level was asked for on the command line or in config
    if log_level is None and "level" not in config.logging.model_fields_set:
        log_level = DEFAULT_CLI_LOG_LEVEL
    setup_logging(
        level=log_level,
        config=config.logging,
        console_handler=RichHandler(rich_tracebacks=True, show_path=False),
    )
    ctx.obj = {"log_level": log_level, "config_path": config_path, "config": config}
    logger.debug(f"CLI context object initialized: {ctx.obj}")


# ---------------------------------------------------------------------------
# Sub-command: optimize
# ---------------------------------------------------------------------------

@cli.command()
@click.argument("agent_type")
@click.argument("task")
@click.option(
    "--priority",
    type=click.Choice([p.value for p in Priority], case_sensitive=False),
    default=Priority.MEDIUM.value,
    show_default=True,
)
@click.option("--local-only", is_flag=True, help="Exclude network-facing tools")
@click.option("--real-time", is_flag=True, help="Task needs live data; skip stored-memory tools")
@click.option("--json", "as_json", is_flag=True, help="Emit the result as JSON")
@click.pass_context
def optimize(
    ctx: click.Context,
    agent_type: str,
    task: str,
    priority: str,
    local_only: bool,
    real_time: bool,
    as_json: bool,
) -> None:
    """Select and route tools for AGENT_TYPE running TASK."""
    context: Dict[str, Any] = {
        "task_description": task,
        "priority": priority.lower(),
        "local_environment_only": local_only,
        "requires_real_time_data": real_time,
    }
    with _build_manager(ctx) as manager:
        try:
            result = manager.optimize(agent_type, context)
        except OptimizerError as exc:
            _fail(str(exc))

    if as_json:
        click.echo(json.dumps(result.model_dump(mode="json"), indent=2))
        return

    console = Console()
    table = Table(title=f"{agent_type} ({result.optimization_strategy})")
    table.add_column("#", justify="right")
    table.add_column("Tool")
    table.add_column("Category")
    table.add_column("Server")
    table.add_column("Score", justify="right")
    routes = {decision.tool: decision for decision in result.routing_decisions}
    for index, selected in enumerate(result.selected_tools, start=1):
        route = routes.get(selected.tool)
        table.add_row(
            str(index),
            selected.tool,
            selected.category.value,
            route.selected_server if route else "-",
            f"{selected.score:.1f}",
        )
    console.print(table)
    prediction = result.performance_prediction
    console.print(
        f"Optimization score: {result.optimization_score:.1f} ({prediction.optimization_level}), "
        f"estimated {prediction.estimated_execution_time_ms:.0f}ms, "
        f"success probability {prediction.success_probability:.0%}"
    )


# ---------------------------------------------------------------------------
# Sub-command: route
# ---------------------------------------------------------------------------

@cli.command()
@click.argument("tool")
@click.option("--json", "as_json", is_flag=True, help="Emit the decision as JSON")
@click.pass_context
def route(ctx: click.Context, tool: str, as_json: bool) -> None:
    """Show which server would service TOOL."""
    with _build_manager(ctx) as manager:
        try:
            decision = manager.route_request(tool)
        except OptimizerError as exc:
            _fail(str(exc))

    if as_json:
        click.echo(json.dumps(decision.model_dump(mode="json"), indent=2))
        return

    click.echo(f"{tool} -> {decision.selected_server}")
    click.echo(f"  rationale:  {decision.rationale}")
    click.echo(f"  latency:    {decision.estimated_latency_ms:.0f}ms")
    click.echo(f"  confidence: {decision.confidence:.2f}")
    if decision.fallback_servers:
        click.echo(f"  fallbacks:  {', '.join(decision.fallback_servers)}")


# ---------------------------------------------------------------------------
# Sub-command: patterns
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Emit the patterns as JSON")
@click.pass_context
def patterns(ctx: click.Context, as_json: bool) -> None:
    """List the integration pattern of every agent type."""
    with _build_manager(ctx) as manager:
        all_patterns = manager.catalog.get_all_patterns()

    if as_json:
        payload = {agent: pattern.model_dump(mode="json") for agent, pattern in all_patterns.items()}
        click.echo(json.dumps(payload, indent=2))
        return

    table = Table(title="Integration patterns")
    table.add_column("Agent type")
    table.add_column("Strategy")
    table.add_column("Level")
    table.add_column("Workflow")
    table.add_column("Domain tools")
    for agent_type, pattern in sorted(all_patterns.items()):
        table.add_row(
            agent_type,
            pattern.selection_strategy,
            pattern.optimization_level.value,
            pattern.workflow_pattern,
            "\n".join(pattern.domain_tools),
        )
    Console().print(table)


# ---------------------------------------------------------------------------
# Sub-command: report
# ---------------------------------------------------------------------------

@cli.command()
@click.pass_context
def report(ctx: click.Context) -> None:
    """Print the merged optimization report as JSON."""
    with _build_manager(ctx) as manager:
        system_report = manager.get_optimization_report()
    click.echo(json.dumps(system_report.model_dump(mode="json"), indent=2))


if __name__ == "__main__":
    cli()
