"""Scenario lifecycle shared by client- and server-targeting scenarios."""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import httpx
from fastapi import FastAPI

from ..checks import CheckSink
from ..config import Config, get_config
from ..exceptions import ScenarioStateError
from ..harness import (
    AuthServerOptions,
    ResourceServerOptions,
    ServerLifecycle,
    TokenVerifier,
    create_auth_server,
    create_resource_server,
)
from ..harness.resource_server import MCP_PATH
from ..models import ConformanceCheck, ScenarioUrls

logger = logging.getLogger(__name__)


class ScenarioKind(str, Enum):
    """Which side of the protocol a scenario tests."""

    CLIENT = "client"
    SERVER = "server"


class ScenarioState(str, Enum):
    CREATED = "created"
    STARTED = "started"
    STOPPED = "stopped"


class Scenario(ABC):
    """One named conformance test.

    Lifecycle is ``CREATED -> STARTED -> STOPPED``. Checks are collected in
    a per-instance :class:`CheckSink`; :meth:`get_checks` finalizes them
    once, synthesizing failures for expected assertions that never ran.
    """

    name: str = ""
    description: str = ""
    kind: ScenarioKind

    def __init__(self, config: Optional[Config] = None):
        self.config = config or get_config()
        self.sink = CheckSink()
        self.state = ScenarioState.CREATED
        self._finalized = False

    @abstractmethod
    async def start(self) -> ScenarioUrls:
        """Provision what the interaction needs and return its entry point."""

    @abstractmethod
    async def stop(self) -> None:
        """Release everything :meth:`start` acquired. Idempotent."""

    def expected_checks(self) -> Sequence[str]:
        """Assertion ids that must be present once the interaction is over."""
        return ()

    def finalize(self) -> None:
        """Add scenario-specific verdicts after the interaction."""

    def get_checks(self) -> List[ConformanceCheck]:
        if self.state == ScenarioState.CREATED:
            return []
        if not self._finalized:
            self._finalized = True
            self.finalize()
            for check_id in self.expected_checks():
                self.sink.ensure(check_id)
        return self.sink.checks

    def _mark_started(self) -> None:
        if self.state != ScenarioState.CREATED:
            raise ScenarioStateError(f"Scenario {self.name} cannot start from state {self.state.value}")
        self.state = ScenarioState.STARTED

    def _mark_stopped(self) -> None:
        if self.state == ScenarioState.STARTED:
            self.state = ScenarioState.STOPPED


class HarnessScenario(Scenario):
    """Client-targeting scenario backed by a fake authorization and resource server.

    Subclasses shape the servers through :meth:`auth_server_options`,
    :meth:`resource_server_options` and the request hooks, then judge the
    recorded traffic in :meth:`finalize`.
    """

    kind = ScenarioKind.CLIENT
    expected_ids: Sequence[str] = ()

    def __init__(self, config: Optional[Config] = None):
        super().__init__(config)
        self.verifier = TokenVerifier(self.sink)
        self.auth_server = ServerLifecycle(f"{self.name} auth", config=self.config)
        self.resource_server = ServerLifecycle(f"{self.name} resource", config=self.config)
        self.authorization_requests: List[Dict[str, Any]] = []
        self.token_requests: List[Dict[str, Any]] = []
        self.registration_requests: List[Dict[str, Any]] = []

    def auth_server_options(self) -> AuthServerOptions:
        return AuthServerOptions()

    def resource_server_options(self) -> ResourceServerOptions:
        return ResourceServerOptions()

    def issuer(self) -> str:
        """Issuer URL advertised in the protected resource metadata."""
        return self.auth_server.url

    def context(self) -> Optional[Dict[str, Any]]:
        """Auxiliary data handed to the client under test."""
        return None

    def on_authorization_request(self, params: Dict[str, Any]) -> None:
        self.authorization_requests.append(params)

    def on_token_request(self, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Record a token request; a returned dict rejects it or sets the granted scopes."""
        self.token_requests.append(data)
        return None

    def on_registration_request(self, registration: Dict[str, Any]) -> None:
        self.registration_requests.append(registration)

    def build_auth_app(self) -> FastAPI:
        return create_auth_server(
            self.sink,
            self.auth_server.get_url,
            self.auth_server_options(),
            token_verifier=self.verifier,
            on_authorization_request=self.on_authorization_request,
            on_token_request=self.on_token_request,
            on_registration_request=self.on_registration_request,
        )

    def build_resource_app(self) -> FastAPI:
        return create_resource_server(
            self.sink,
            self.resource_server.get_url,
            self.issuer,
            self.resource_server_options(),
            token_verifier=self.verifier,
        )

    def expected_checks(self) -> Sequence[str]:
        return self.expected_ids

    async def start(self) -> ScenarioUrls:
        self._mark_started()
        try:
            await self.auth_server.start(self.build_auth_app())
            await self.resource_server.start(self.build_resource_app())
        except BaseException:
            await self.stop()
            raise
        logger.debug(f"Scenario {self.name} serving on {self.resource_server.url}")
        return ScenarioUrls(server_url=f"{self.resource_server.url}{MCP_PATH}", context=self.context())

    async def stop(self) -> None:
        await self.resource_server.stop()
        await self.auth_server.stop()
        self._mark_stopped()


class ServerScenario(Scenario):
    """Server-targeting scenario that drives its own client against ``server_url``."""

    kind = ScenarioKind.SERVER

    def __init__(
        self,
        config: Optional[Config] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the scenario.

        Args:
            config: Configuration (defaults to the global config)
            transport: httpx transport for all scenario traffic (tests inject mocks)
        """
        super().__init__(config)
        self.transport = transport

    async def start(self) -> ScenarioUrls:
        self._mark_started()
        return ScenarioUrls()

    async def stop(self) -> None:
        self._mark_stopped()

    @abstractmethod
    async def drive(self, server_url: str, client: httpx.AsyncClient) -> None:
        """Exercise the server and record checks on ``self.sink``."""

    async def run(self, server_url: str) -> List[ConformanceCheck]:
        """Run the scenario against ``server_url`` and return its checks.

        An exception escaping :meth:`drive` becomes a single FAILURE check;
        checks recorded before it are kept.
        """
        if self.state == ScenarioState.CREATED:
            await self.start()
        try:
            async with httpx.AsyncClient(
                transport=self.transport, timeout=self.config.AUTH_FETCH_TIMEOUT
            ) as client:
                await self.drive(server_url, client)
        except Exception as e:
            logger.debug(f"Scenario {self.name} raised {type(e).__name__}: {e}")
            self.sink.record_exception(e)
        finally:
            await self.stop()
        return self.get_checks()
