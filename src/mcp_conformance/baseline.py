"""Expected-failures baseline loading and reconciliation.

A baseline file lists scenarios that are currently allowed to fail::

    server:
      - server/auth-as-cimd-supported
    client:
      - auth/basic-cimd

Reconciliation is symmetric: a run fails both on new failures and on
baseline entries that no longer reproduce.
"""

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Union

import yaml
from rich.console import Console

from .checks import has_baseline_failure
from .exceptions import BaselineError
from .models import BaselineEvaluation, ExpectedFailuresBaseline, ScenarioRunResult

logger = logging.getLogger(__name__)


def _scenario_list(parsed: dict, key: str) -> Optional[List[str]]:
    if key not in parsed:
        return None
    value = parsed[key]
    if not isinstance(value, list):
        raise BaselineError(
            f"Invalid expected-failures file: '{key}' must be an array of scenario names"
        )
    return [str(item) for item in value]


def load_expected_failures(path: Union[str, Path]) -> ExpectedFailuresBaseline:
    """Load an expected-failures YAML file.

    Args:
        path: Path to the baseline file

    Returns:
        Parsed baseline; an empty document yields an empty baseline

    Raises:
        FileNotFoundError: If the file does not exist
        BaselineError: If the file is not valid YAML or its structure is invalid
    """
    content = Path(path).read_text(encoding="utf-8")
    try:
        parsed = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise BaselineError(f"Invalid expected-failures file {path}: {e}") from e

    if parsed is None:
        return ExpectedFailuresBaseline()

    if not isinstance(parsed, dict):
        raise BaselineError(
            "Invalid expected-failures file: expected an object with 'server' and/or 'client' keys"
        )

    baseline = ExpectedFailuresBaseline(
        server=_scenario_list(parsed, "server"),
        client=_scenario_list(parsed, "client"),
    )
    logger.debug(
        f"Loaded baseline from {path}: "
        f"{len(baseline.server or [])} server, {len(baseline.client or [])} client entries"
    )
    return baseline


def evaluate_baseline(
    results: Iterable[ScenarioRunResult],
    expected_scenarios: Iterable[str],
) -> BaselineEvaluation:
    """Reconcile scenario results against the expected-failures baseline.

    A scenario has a failure if any check is FAILURE or WARNING.

    - failed and in baseline: expected failure
    - failed and not in baseline: unexpected failure
    - passed and in baseline: stale entry
    - passed and not in baseline: nothing

    Baseline entries for scenarios that were not run are ignored.
    """
    expected_set = set(expected_scenarios)
    evaluation = BaselineEvaluation()

    for result in results:
        failed = has_baseline_failure(result.checks)
        listed = result.scenario_name in expected_set

        if failed and listed:
            evaluation.expected_failures.append(result.scenario_name)
        elif failed:
            evaluation.unexpected_failures.append(result.scenario_name)
        elif listed:
            evaluation.stale_entries.append(result.scenario_name)

    evaluation.exit_code = 1 if evaluation.unexpected_failures or evaluation.stale_entries else 0
    return evaluation


def print_baseline_results(evaluation: BaselineEvaluation, console: Optional[Console] = None) -> None:
    """Print the reconciliation outcome."""
    console = console or Console()

    if evaluation.expected_failures:
        console.print("\n[yellow]Expected failures (in baseline):[/yellow]")
        for scenario in evaluation.expected_failures:
            console.print(f"  ~ {scenario}")

    if evaluation.stale_entries:
        console.print("\n[red]Stale baseline entries (now passing - remove from baseline):[/red]")
        for scenario in evaluation.stale_entries:
            console.print(f"  ✓ {scenario}")

    if evaluation.unexpected_failures:
        console.print("\n[red]Unexpected failures (not in baseline):[/red]")
        for scenario in evaluation.unexpected_failures:
            console.print(f"  ✗ {scenario}")

    if evaluation.exit_code == 0:
        console.print("\n[green]Baseline check passed: all failures are expected.[/green]")
        return

    if evaluation.stale_entries:
        console.print(
            "\n[red]Baseline is stale: update your expected-failures file to remove passing scenarios.[/red]"
        )
    if evaluation.unexpected_failures:
        console.print(
            "\n[red]Unexpected failures detected: these scenarios are not in your "
            "expected-failures baseline.[/red]"
        )
