"""MCP Conformance - conformance test engine for MCP authorization.

This package drives scripted scenarios against MCP clients and servers and
records machine-checkable verdicts against the MCP authorization
specification and the OAuth RFCs it builds on.
"""

from .baseline import evaluate_baseline, load_expected_failures
from .checks import CheckSink
from .discovery import build_as_metadata_discovery_attempts
from .models import (
    BaselineEvaluation,
    CheckStatus,
    ConformanceCheck,
    ScenarioRunResult,
)
from .registry import ScenarioRegistry, build_default_registry
from .runner import Runner

__version__ = "0.1.0"
__all__ = [
    "BaselineEvaluation",
    "CheckSink",
    "CheckStatus",
    "ConformanceCheck",
    "Runner",
    "ScenarioRegistry",
    "ScenarioRunResult",
    "build_as_metadata_discovery_attempts",
    "build_default_registry",
    "evaluate_baseline",
    "load_expected_failures",
]
