"""Data models for MCP Conformance."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class CheckStatus(str, Enum):
    """Outcome of a single conformance assertion."""

    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    WARNING = "WARNING"
    INFO = "INFO"
    SKIPPED = "SKIPPED"


class SpecReference(BaseModel):
    """Citation of the normative text an assertion is based on."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Short reference identifier (e.g. 'RFC-9728-discovery')")
    url: str = Field(..., description="Link to the governing section")


class ConformanceCheck(BaseModel):
    """Immutable record of one conformance assertion's outcome."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., description="Stable assertion identifier")
    name: str = Field(..., description="Human-readable check name")
    description: str = Field(..., description="What this check verifies")
    status: CheckStatus
    timestamp: datetime = Field(default_factory=utc_now)
    error_message: Optional[str] = Field(None, alias="errorMessage")
    details: Optional[Dict[str, Any]] = None
    spec_references: Optional[List[SpecReference]] = Field(None, alias="specReferences")

    def to_wire(self) -> Dict[str, Any]:
        """Serialize using the cross-process wire shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ScenarioRunResult(BaseModel):
    """Checks produced by one scenario invocation."""

    scenario_name: str
    checks: List[ConformanceCheck] = Field(default_factory=list)


class RequestType(str, Enum):
    """Classification of an observed outbound HTTP call."""

    PRM_DISCOVERY = "prm-discovery"
    AS_METADATA = "as-metadata"
    DCR_REGISTRATION = "dcr-registration"
    TOKEN_REQUEST = "token-request"
    AUTHORIZATION = "authorization"
    PROTOCOL_REQUEST = "protocol-request"
    UNKNOWN = "unknown"


class AuthChallenge(BaseModel):
    """Parsed WWW-Authenticate challenge."""

    scheme: str
    params: Dict[str, str] = Field(default_factory=dict)


class ObservedRequest(BaseModel):
    """One observed request/response pair."""

    timestamp: datetime = Field(default_factory=utc_now)
    method: str
    url: str
    request_headers: Dict[str, str] = Field(default_factory=dict)
    response_status: int
    response_headers: Dict[str, str] = Field(default_factory=dict)
    response_body: Any = None
    challenge: Optional[AuthChallenge] = None
    request_type: RequestType = RequestType.UNKNOWN


class DiscoveryKind(str, Enum):
    """Competing AS metadata discovery conventions."""

    RFC8414 = "RFC8414"
    OIDC = "OIDC"


class DiscoveryVariant(str, Enum):
    """Placement of the well-known suffix relative to the issuer path."""

    ROOT = "root"
    PATH_INSERT = "path-insert"
    PATH_APPEND = "path-append"


class DiscoveryAttempt(BaseModel):
    """One candidate AS metadata URL."""

    model_config = ConfigDict(frozen=True)

    url: str
    kind: DiscoveryKind
    variant: DiscoveryVariant


class DiscoveryResult(BaseModel):
    """Outcome of PRM or AS metadata resolution."""

    success: bool
    metadata: Optional[Dict[str, Any]] = None
    url: Optional[str] = None
    is_oidc: bool = False
    as_url: Optional[str] = None
    tried_urls: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class ExpectedFailuresBaseline(BaseModel):
    """Scenario names currently permitted to fail."""

    server: Optional[List[str]] = None
    client: Optional[List[str]] = None


class BaselineEvaluation(BaseModel):
    """Result of reconciling a run against the baseline."""

    expected_failures: List[str] = Field(default_factory=list)
    unexpected_failures: List[str] = Field(default_factory=list)
    stale_entries: List[str] = Field(default_factory=list)
    exit_code: int = 0


class ScenarioUrls(BaseModel):
    """Entry point a started scenario exposes to the implementation under test."""

    server_url: Optional[str] = None
    context: Optional[Dict[str, Any]] = Field(
        None, description="Auxiliary data for a driven client (e.g. pre-registered credentials)"
    )


class ClientRunOutput(BaseModel):
    """Captured output of a spawned client process."""

    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
