"""Command-line interface for MCP Conformance."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .baseline import evaluate_baseline, load_expected_failures, print_baseline_results
from .checks import has_failures
from .config import Config, get_config
from .exceptions import ConformanceError
from .models import ScenarioRunResult
from .registry import ScenarioInfo, ScenarioRegistry, build_default_registry
from .reporting import print_checks, print_summary
from .runner import Runner, save_results
from .scenarios import ScenarioKind

console = Console()


def load_env_config():
    """Load configuration from .env file."""
    env_file = Path(".env")
    if env_file.exists():
        load_dotenv(env_file)
        console.print(f"[dim]Loaded configuration from {env_file}[/dim]")
    get_config.cache_clear()


def configure_logging(level_name: str):
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format='%(message)s')
    if level > logging.DEBUG:
        # Request lines from httpx are only useful when debugging
        logging.getLogger("httpx").setLevel(logging.WARNING)


def select_scenarios(registry: ScenarioRegistry, requested: Sequence[str], kind: ScenarioKind) -> List[str]:
    """Resolve ``--scenario`` options, defaulting to every scenario of ``kind``.

    Raises:
        ScenarioNotFoundError: If a requested name is unknown
        click.BadParameter: If a requested scenario targets the other side
    """
    if not requested:
        return registry.names(kind)

    for name in requested:
        if registry.get(name).kind != kind:
            raise click.BadParameter(f"{name} is a {registry.get(name).kind.value} scenario", param_hint="--scenario")
    return list(requested)


def finish(
    results: Sequence[ScenarioRunResult],
    expected: Optional[List[str]],
    strict: bool,
    verbose: bool,
) -> int:
    """Print results and compute the process exit code."""
    for result in results:
        print_checks(result, console, verbose=verbose)
    print_summary(results, console, strict=strict)

    if expected is not None:
        evaluation = evaluate_baseline(results, expected)
        print_baseline_results(evaluation, console)
        return evaluation.exit_code

    return 1 if any(has_failures(r.checks, strict=strict) for r in results) else 0


@click.group()
@click.version_option(version=__version__, prog_name="mcp-conformance")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Logging level (defaults to LOG_LEVEL)",
)
@click.pass_context
def cli(ctx, log_level: Optional[str]):
    """MCP Conformance - authorization conformance tests for MCP clients and servers."""
    load_env_config()
    config = get_config()
    configure_logging(log_level or config.LOG_LEVEL)
    ctx.obj = config


@cli.command()
@click.option("--command", "-c", "client_command", required=True, help="Client command; the server URL is appended")
@click.option("--scenario", "-s", "scenarios", multiple=True, help="Scenario to run (repeatable, default all)")
@click.option("--timeout", type=float, default=None, help="Seconds the client may run (defaults to CLIENT_TIMEOUT)")
@click.option(
    "--expected-failures",
    type=click.Path(dir_okay=False),
    default=None,
    help="YAML baseline of scenarios allowed to fail",
)
@click.option("--output-dir", type=click.Path(file_okay=False), default=None, help="Results directory")
@click.option("--verbose", "-v", is_flag=True, help="Show all checks, not only failures and warnings")
@click.option("--strict", is_flag=True, help="Treat warnings as failures")
@click.option("--parallel", is_flag=True, help="Run scenarios concurrently")
@click.pass_obj
def client(
    config: Config,
    client_command: str,
    scenarios: Sequence[str],
    timeout: Optional[float],
    expected_failures: Optional[str],
    output_dir: Optional[str],
    verbose: bool,
    strict: bool,
    parallel: bool,
):
    """Run client-targeting scenarios against a client command.

    Example:
        mcp-conformance client -c "mcp-conformance-example-client" -s auth/basic-dcr
    """
    registry = build_default_registry()
    try:
        expected = load_expected_failures(expected_failures).client or [] if expected_failures else None
        names = select_scenarios(registry, scenarios, ScenarioKind.CLIENT)
        runner = Runner(registry, config)
        if len(names) == 1:
            entries = [asyncio.run(runner.run_client_scenario(names[0], client_command, timeout))]
        else:
            entries = asyncio.run(runner.run_client_suite(names, client_command, parallel=parallel, timeout=timeout))
    except (ConformanceError, FileNotFoundError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)

    for result, output in entries:
        result_dir = save_results(result, output_dir or config.RESULTS_DIR, client_output=output)
        console.print(f"[dim]Results saved to {result_dir}[/dim]")
        if output is None:
            continue
        if output.timed_out:
            console.print(f"[yellow]{result.scenario_name}: client timed out[/yellow]")
        elif output.exit_code != 0:
            console.print(f"[yellow]{result.scenario_name}: client exited with code {output.exit_code}[/yellow]")
            if verbose and output.stderr:
                console.print(output.stderr, markup=False)

    sys.exit(finish([result for result, _ in entries], expected, strict, verbose))


@cli.command()
@click.option("--url", "server_url", required=True, help="MCP server endpoint URL")
@click.option("--scenario", "-s", "scenarios", multiple=True, help="Scenario to run (repeatable, default all)")
@click.option(
    "--expected-failures",
    type=click.Path(dir_okay=False),
    default=None,
    help="YAML baseline of scenarios allowed to fail",
)
@click.option("--output-dir", type=click.Path(file_okay=False), default=None, help="Results directory")
@click.option("--verbose", "-v", is_flag=True, help="Show all checks, not only failures and warnings")
@click.option("--strict", is_flag=True, help="Treat warnings as failures")
@click.option("--parallel", is_flag=True, help="Run scenarios concurrently")
@click.pass_obj
def server(
    config: Config,
    server_url: str,
    scenarios: Sequence[str],
    expected_failures: Optional[str],
    output_dir: Optional[str],
    verbose: bool,
    strict: bool,
    parallel: bool,
):
    """Run server-targeting scenarios against an MCP server.

    Example:
        mcp-conformance server --url https://mcp.example.com/mcp
    """
    registry = build_default_registry()
    try:
        expected = load_expected_failures(expected_failures).server or [] if expected_failures else None
        names = select_scenarios(registry, scenarios, ScenarioKind.SERVER)
        runner = Runner(registry, config)
        if len(names) == 1:
            results = [asyncio.run(runner.run_server_scenario(names[0], server_url))]
        else:
            results = asyncio.run(runner.run_server_suite(names, server_url, parallel=parallel))
    except (ConformanceError, FileNotFoundError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)

    for result in results:
        result_dir = save_results(result, output_dir or config.RESULTS_DIR)
        console.print(f"[dim]Results saved to {result_dir}[/dim]")

    sys.exit(finish(results, expected, strict, verbose))


def _scenario_table(title: str, scenarios: Sequence[ScenarioInfo]) -> Table:
    table = Table(title=f"{title} ({len(scenarios)} total)")
    table.add_column("Name", style="cyan")
    table.add_column("Description", style="white")
    for info in scenarios:
        table.add_row(info.name, info.description)
    return table


@cli.command("list")
@click.option("--client", "show_client", is_flag=True, help="Only client-targeting scenarios")
@click.option("--server", "show_server", is_flag=True, help="Only server-targeting scenarios")
def list_scenarios(show_client: bool, show_server: bool):
    """List available scenarios."""
    registry = build_default_registry()
    if not show_client and not show_server:
        show_client = show_server = True

    if show_client:
        console.print(_scenario_table("Client Scenarios", registry.client_scenarios()))
    if show_server:
        console.print(_scenario_table("Server Scenarios", registry.server_scenarios()))


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
