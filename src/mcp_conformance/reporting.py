"""Terminal rendering of check lists and run summaries."""

from typing import Iterable, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .checks import count_statuses, has_failures
from .models import CheckStatus, ConformanceCheck, ScenarioRunResult

STATUS_ICONS = {
    CheckStatus.SUCCESS: "✓",
    CheckStatus.FAILURE: "✗",
    CheckStatus.WARNING: "⚠",
    CheckStatus.INFO: "ℹ",
    CheckStatus.SKIPPED: "⊘",
}

STATUS_COLORS = {
    CheckStatus.SUCCESS: "green",
    CheckStatus.FAILURE: "red",
    CheckStatus.WARNING: "yellow",
    CheckStatus.INFO: "cyan",
    CheckStatus.SKIPPED: "dim",
}

# Statuses shown without --verbose
REPORTED_STATUSES = (CheckStatus.FAILURE, CheckStatus.WARNING)


def visible_checks(checks: Iterable[ConformanceCheck], verbose: bool = False) -> List[ConformanceCheck]:
    """All checks when verbose, otherwise only failing and warning ones."""
    return [c for c in checks if verbose or c.status in REPORTED_STATUSES]


def print_checks(
    result: ScenarioRunResult,
    console: Optional[Console] = None,
    verbose: bool = False,
) -> None:
    """Print one scenario's checks with their spec citations."""
    console = console or Console()
    console.print()
    console.print(f"[bold]{escape(result.scenario_name)}[/bold]")

    for check in visible_checks(result.checks, verbose):
        color = STATUS_COLORS[check.status]
        icon = STATUS_ICONS[check.status]
        label = escape(f"[{check.id}]")
        console.print(f"[{color}]{icon} {label} {check.status.value}[/{color}] {escape(check.description)}")
        if check.error_message:
            console.print(f"   [{color}]{escape(check.error_message)}[/{color}]")
        for reference in check.spec_references or []:
            console.print(f"   [dim]{escape(reference.id)}: {reference.url}[/dim]")


def print_summary(
    results: Iterable[ScenarioRunResult],
    console: Optional[Console] = None,
    strict: bool = False,
) -> None:
    """Print a per-scenario status table."""
    console = console or Console()
    table = Table(title="Conformance Summary")
    table.add_column("Scenario", style="cyan")
    table.add_column("Passed", style="green", justify="right")
    table.add_column("Failed", style="red", justify="right")
    table.add_column("Warnings", style="yellow", justify="right")
    table.add_column("Skipped", style="dim", justify="right")
    table.add_column("Result")

    for result in results:
        counts = count_statuses(result.checks)
        failed = has_failures(result.checks, strict=strict)
        table.add_row(
            result.scenario_name,
            str(counts[CheckStatus.SUCCESS.value]),
            str(counts[CheckStatus.FAILURE.value]),
            str(counts[CheckStatus.WARNING.value]),
            str(counts[CheckStatus.SKIPPED.value]),
            "[red]FAIL[/red]" if failed else "[green]PASS[/green]",
        )

    console.print()
    console.print(table)
