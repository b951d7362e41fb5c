"""Scenario registration and lookup."""

import logging
from dataclasses import dataclass
from functools import partial
from typing import Callable, Dict, List, Optional

from .config import Config
from .exceptions import ScenarioNotFoundError
from .scenarios import (
    AuthAsCimdSupportedScenario,
    AuthAsGrantTypesScenario,
    AuthAsMetadataDiscoveryScenario,
    AuthAsPkceSupportScenario,
    AuthAsTokenAuthMethodsScenario,
    AuthDiscoveryMechanismScenario,
    AuthPrmDiscoveryScenario,
    AuthPrmResourceValidationScenario,
    AuthUnauthorizedResponseScenario,
    AuthWwwAuthenticateHeaderScenario,
    BasicAuthFlowScenario,
    BasicDcrScenario,
    BasicMetadataScenario,
    CimdScenario,
    ClientCredentialsScenario,
    CrossAppAccessScenario,
    MarchSpecBackcompatScenario,
    OfflineAccessNotSupportedScenario,
    OfflineAccessScopeScenario,
    PkceNoS256Scenario,
    PreRegistrationScenario,
    Scenario,
    ScenarioKind,
    ScopeFromScopesSupportedScenario,
    ScopeFromWwwAuthenticateScenario,
    ScopeOmittedWhenUndefinedScenario,
    ScopeRetryLimitScenario,
    ScopeStepUpScenario,
    StepUpAuthScenario,
    TokenEndpointAuthScenario,
    TokenRefreshBasicScenario,
    TokenRefreshRotationScenario,
)

logger = logging.getLogger(__name__)

ScenarioFactory = Callable[[Optional[Config]], Scenario]


@dataclass
class ScenarioInfo:
    """Metadata for a registered scenario."""
    name: str
    kind: ScenarioKind
    description: str
    factory: ScenarioFactory


class ScenarioRegistry:
    """Named scenario factories.

    Every lookup builds a fresh instance so that no state is shared between
    runs of the same scenario.
    """

    def __init__(self):
        self._scenarios: Dict[str, ScenarioInfo] = {}

    def register(self, factory: ScenarioFactory) -> ScenarioInfo:
        """Register a scenario factory.

        The factory is called once to read the scenario's name, kind and
        description.

        Args:
            factory: Callable taking an optional Config and returning a new scenario

        Returns:
            The stored registration
        """
        sample = factory(None)
        if not sample.name:
            raise ValueError(f"Scenario factory {factory!r} produced a scenario without a name")
        if sample.name in self._scenarios:
            raise ValueError(f"Scenario already registered: {sample.name}")

        info = ScenarioInfo(name=sample.name, kind=sample.kind, description=sample.description, factory=factory)
        self._scenarios[sample.name] = info
        logger.debug(f"Registered scenario: {sample.name} ({sample.kind.value})")
        return info

    def get(self, name: str) -> ScenarioInfo:
        """Get a registration by name.

        Raises:
            ScenarioNotFoundError: If no scenario has that name
        """
        info = self._scenarios.get(name)
        if info is None:
            raise ScenarioNotFoundError(name)
        return info

    def create(self, name: str, config: Optional[Config] = None) -> Scenario:
        """Build a fresh instance of the named scenario."""
        return self.get(name).factory(config)

    def names(self, kind: Optional[ScenarioKind] = None) -> List[str]:
        return [info.name for info in self._scenarios.values() if kind is None or info.kind == kind]

    def client_scenarios(self) -> List[ScenarioInfo]:
        return [info for info in self._scenarios.values() if info.kind == ScenarioKind.CLIENT]

    def server_scenarios(self) -> List[ScenarioInfo]:
        return [info for info in self._scenarios.values() if info.kind == ScenarioKind.SERVER]

    def __contains__(self, name: str) -> bool:
        return name in self._scenarios

    def __len__(self) -> int:
        return len(self._scenarios)


def build_default_registry() -> ScenarioRegistry:
    """Registry holding every built-in scenario."""
    registry = ScenarioRegistry()

    # Client-targeting
    registry.register(BasicDcrScenario)
    for variant in BasicMetadataScenario.VARIANTS:
        registry.register(partial(BasicMetadataScenario, variant))
    registry.register(CimdScenario)
    registry.register(PkceNoS256Scenario)
    registry.register(PreRegistrationScenario)
    for method in TokenEndpointAuthScenario.SLUGS:
        registry.register(partial(TokenEndpointAuthScenario, method))
    for scenario_class in (
        ScopeFromWwwAuthenticateScenario,
        ScopeFromScopesSupportedScenario,
        ScopeOmittedWhenUndefinedScenario,
        ScopeStepUpScenario,
        ScopeRetryLimitScenario,
        TokenRefreshBasicScenario,
        TokenRefreshRotationScenario,
        OfflineAccessScopeScenario,
        OfflineAccessNotSupportedScenario,
        MarchSpecBackcompatScenario,
    ):
        registry.register(scenario_class)
    for method in ClientCredentialsScenario.SLUGS:
        registry.register(partial(ClientCredentialsScenario, method))
    registry.register(CrossAppAccessScenario)

    # Server-targeting
    for scenario_class in (
        AuthPrmDiscoveryScenario,
        AuthAsMetadataDiscoveryScenario,
        AuthDiscoveryMechanismScenario,
        AuthAsCimdSupportedScenario,
        AuthAsPkceSupportScenario,
        AuthAsTokenAuthMethodsScenario,
        AuthAsGrantTypesScenario,
        AuthPrmResourceValidationScenario,
        AuthUnauthorizedResponseScenario,
        AuthWwwAuthenticateHeaderScenario,
        BasicAuthFlowScenario,
        StepUpAuthScenario,
    ):
        registry.register(scenario_class)

    return registry
