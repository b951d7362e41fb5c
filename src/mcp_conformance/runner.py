"""Scenario runner for orchestrating conformance runs."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from .config import Config, get_config
from .models import CheckStatus, ClientRunOutput, ConformanceCheck, ScenarioRunResult
from .process import run_client_process
from .registry import ScenarioRegistry
from .scenarios import ServerScenario

logger = logging.getLogger(__name__)

ClientCommand = Union[str, Sequence[str]]
ClientSuiteEntry = Tuple[ScenarioRunResult, Optional[ClientRunOutput]]


def failed_scenario_result(name: str, error: BaseException) -> ScenarioRunResult:
    """Result standing in for a scenario that could not be run at all."""
    return ScenarioRunResult(
        scenario_name=name,
        checks=[
            ConformanceCheck(
                id=name,
                name=name,
                description="Failed to run scenario",
                status=CheckStatus.FAILURE,
                error_message=str(error) or type(error).__name__,
            )
        ],
    )


class Runner:
    """
    Runs scenarios from a registry and collects their checks.

    Every scenario is created fresh from the registry, so scenarios never
    share servers, sinks or PKCE material. In suite runs one scenario's
    failure is recorded as a synthetic FAILURE and never affects the others.
    """

    def __init__(self, registry: ScenarioRegistry, config: Optional[Config] = None):
        """
        Initialize the runner.

        Args:
            registry: Scenario registry to resolve names against
            config: Configuration (defaults to the global config)
        """
        self.registry = registry
        self.config = config or get_config()

    async def run_client_scenario(
        self,
        name: str,
        command: ClientCommand,
        timeout: Optional[float] = None,
    ) -> Tuple[ScenarioRunResult, ClientRunOutput]:
        """
        Run one client-targeting scenario against a spawned client.

        Args:
            name: Scenario name
            command: Client command; the server URL is appended as last argument
            timeout: Seconds the client may run (defaults to CLIENT_TIMEOUT)

        Returns:
            The scenario result and the client's captured output

        Raises:
            ScenarioNotFoundError: If the scenario is unknown
            SetupError: If the scenario's servers cannot be started
        """
        scenario = self.registry.create(name, self.config)
        timeout = timeout or self.config.CLIENT_TIMEOUT

        logger.info(f"Starting scenario: {name}")
        urls = await scenario.start()
        try:
            logger.info(f"Executing client against {urls.server_url}")
            output = await run_client_process(command, urls.server_url, urls.context, timeout)
            if output.timed_out:
                logger.warning(f"Client timed out after {timeout}s")
            elif output.exit_code != 0:
                logger.info(f"Client exited with code {output.exit_code}")
            checks = scenario.get_checks()
        finally:
            await scenario.stop()

        return ScenarioRunResult(scenario_name=name, checks=checks), output

    async def run_server_scenario(self, name: str, server_url: str) -> ScenarioRunResult:
        """
        Run one server-targeting scenario against ``server_url``.

        Raises:
            ScenarioNotFoundError: If the scenario is unknown
        """
        scenario = self.registry.create(name, self.config)
        if not isinstance(scenario, ServerScenario):
            raise TypeError(f"Scenario {name} does not target servers")

        logger.info(f"Running scenario '{name}' against server: {server_url}")
        checks = await scenario.run(server_url)
        return ScenarioRunResult(scenario_name=name, checks=checks)

    async def run_server_suite(
        self,
        names: Sequence[str],
        server_url: str,
        parallel: bool = False,
    ) -> List[ScenarioRunResult]:
        """Run several server scenarios; failures are isolated per scenario."""
        if parallel:
            outcomes = await asyncio.gather(
                *(self.run_server_scenario(name, server_url) for name in names),
                return_exceptions=True,
            )
        else:
            outcomes = []
            for name in names:
                try:
                    outcomes.append(await self.run_server_scenario(name, server_url))
                except Exception as e:
                    outcomes.append(e)

        results = []
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Scenario {name} failed to run: {outcome}")
                results.append(failed_scenario_result(name, outcome))
            else:
                results.append(outcome)
        return results

    async def run_client_suite(
        self,
        names: Sequence[str],
        command: ClientCommand,
        parallel: bool = False,
        timeout: Optional[float] = None,
    ) -> List[ClientSuiteEntry]:
        """Run several client scenarios; failures are isolated per scenario."""
        if parallel:
            outcomes = await asyncio.gather(
                *(self.run_client_scenario(name, command, timeout) for name in names),
                return_exceptions=True,
            )
        else:
            outcomes = []
            for name in names:
                try:
                    outcomes.append(await self.run_client_scenario(name, command, timeout))
                except Exception as e:
                    outcomes.append(e)

        results: List[ClientSuiteEntry] = []
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Scenario {name} failed to run: {outcome}")
                results.append((failed_scenario_result(name, outcome), None))
            else:
                results.append(outcome)
        return results


def result_dir_name(scenario_name: str, timestamp: Optional[datetime] = None) -> str:
    """Directory name for one scenario run, e.g. ``auth-basic-dcr-2025-01-01T00-00-00-000Z``."""
    timestamp = timestamp or datetime.now(timezone.utc)
    stamp = timestamp.strftime("%Y-%m-%dT%H-%M-%S-") + f"{timestamp.microsecond // 1000:03d}Z"
    return f"{scenario_name.replace('/', '-')}-{stamp}"


def save_results(
    result: ScenarioRunResult,
    output_dir: Union[str, Path],
    client_output: Optional[ClientRunOutput] = None,
    timestamp: Optional[datetime] = None,
) -> Path:
    """
    Persist a scenario's checks (and client output, if any).

    Args:
        result: Scenario result to save
        output_dir: Base results directory
        client_output: Captured client output for client runs
        timestamp: Override for the directory timestamp

    Returns:
        The directory the files were written to
    """
    result_dir = Path(output_dir) / result_dir_name(result.scenario_name, timestamp)
    result_dir.mkdir(parents=True, exist_ok=True)

    checks = [check.to_wire() for check in result.checks]
    (result_dir / "checks.json").write_text(json.dumps(checks, indent=2), encoding="utf-8")

    if client_output is not None:
        (result_dir / "stdout.txt").write_text(client_output.stdout, encoding="utf-8")
        (result_dir / "stderr.txt").write_text(client_output.stderr, encoding="utf-8")

    logger.debug(f"Results saved to {result_dir}")
    return result_dir
