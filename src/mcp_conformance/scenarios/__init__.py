"""Conformance scenarios for MCP authorization."""

from .auth_flow import BasicAuthFlowScenario, StepUpAuthScenario
from .base import HarnessScenario, Scenario, ScenarioKind, ScenarioState, ServerScenario
from .client_auth import (
    BasicDcrScenario,
    BasicMetadataScenario,
    CimdScenario,
    MarchSpecBackcompatScenario,
    OfflineAccessNotSupportedScenario,
    OfflineAccessScopeScenario,
    PkceNoS256Scenario,
    PreRegistrationScenario,
    ScopeFromScopesSupportedScenario,
    ScopeFromWwwAuthenticateScenario,
    ScopeOmittedWhenUndefinedScenario,
    ScopeRetryLimitScenario,
    ScopeStepUpScenario,
    TokenEndpointAuthScenario,
    TokenRefreshBasicScenario,
    TokenRefreshRotationScenario,
)
from .client_extensions import ClientCredentialsScenario, CrossAppAccessScenario
from .server_auth import (
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
)

__all__ = [
    "AuthAsCimdSupportedScenario",
    "AuthAsGrantTypesScenario",
    "AuthAsMetadataDiscoveryScenario",
    "AuthAsPkceSupportScenario",
    "AuthAsTokenAuthMethodsScenario",
    "AuthDiscoveryMechanismScenario",
    "AuthPrmDiscoveryScenario",
    "AuthPrmResourceValidationScenario",
    "AuthUnauthorizedResponseScenario",
    "AuthWwwAuthenticateHeaderScenario",
    "BasicAuthFlowScenario",
    "BasicDcrScenario",
    "BasicMetadataScenario",
    "CimdScenario",
    "ClientCredentialsScenario",
    "CrossAppAccessScenario",
    "HarnessScenario",
    "MarchSpecBackcompatScenario",
    "OfflineAccessNotSupportedScenario",
    "OfflineAccessScopeScenario",
    "PkceNoS256Scenario",
    "PreRegistrationScenario",
    "Scenario",
    "ScenarioKind",
    "ScenarioState",
    "ScopeFromScopesSupportedScenario",
    "ScopeFromWwwAuthenticateScenario",
    "ScopeOmittedWhenUndefinedScenario",
    "ScopeRetryLimitScenario",
    "ScopeStepUpScenario",
    "ServerScenario",
    "StepUpAuthScenario",
    "TokenEndpointAuthScenario",
    "TokenRefreshBasicScenario",
    "TokenRefreshRotationScenario",
]
