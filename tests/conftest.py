"""Shared fixtures: an in-memory OAuth-protected MCP server for httpx.MockTransport."""

import json
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import httpx
import pytest

from mcp_conformance.config import Config

SERVER_URL = "https://mcp.example.com/mcp"
AS_URL = "https://auth.example.com"
PRM_URL = "https://mcp.example.com/.well-known/oauth-protected-resource/mcp"
ROOT_PRM_URL = "https://mcp.example.com/.well-known/oauth-protected-resource"
AS_METADATA_URL = "https://auth.example.com/.well-known/oauth-authorization-server"
OIDC_METADATA_URL = "https://auth.example.com/.well-known/openid-configuration"

VALID_TOKEN = "good-token"

Handler = Callable[[httpx.Request], httpx.Response]


def json_response(status: int, body: Any, headers: Optional[Dict[str, str]] = None) -> Handler:
    return lambda request: httpx.Response(status, json=body, headers=headers)


class FakeServer:
    """Route table over httpx.MockTransport; unknown URLs answer 404."""

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Handler] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, url: str, handler: Handler) -> "FakeServer":
        self.routes[(method.upper(), url)] = handler
        return self

    def remove(self, method: str, url: str) -> "FakeServer":
        self.routes.pop((method.upper(), url), None)
        return self

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url).split("?")[0]
        handler = self.routes.get((request.method, url))
        if handler is None:
            return httpx.Response(404, json={"error": "not_found"})
        return handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def urls_requested(self) -> List[str]:
        return [str(r.url).split("?")[0] for r in self.requests]


def prm_document(**overrides) -> Dict[str, Any]:
    document = {
        "resource": SERVER_URL,
        "authorization_servers": [AS_URL],
        "scopes_supported": ["mcp:read"],
    }
    document.update(overrides)
    return document


def as_metadata(**overrides) -> Dict[str, Any]:
    document = {
        "issuer": AS_URL,
        "authorization_endpoint": f"{AS_URL}/authorize",
        "token_endpoint": f"{AS_URL}/token",
        "registration_endpoint": f"{AS_URL}/register",
        "response_types_supported": ["code"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
        "code_challenge_methods_supported": ["S256"],
        "token_endpoint_auth_methods_supported": ["client_secret_basic", "none"],
    }
    document.update(overrides)
    return document


def challenge_header(error: Optional[str] = None) -> str:
    header = f'Bearer resource_metadata="{PRM_URL}", scope="mcp:read"'
    if error:
        header += f', error="{error}"'
    return header


def mcp_handler(request: httpx.Request) -> httpx.Response:
    """Protected MCP endpoint accepting only ``VALID_TOKEN``."""
    authorization = request.headers.get("authorization", "")
    if not authorization.startswith("Bearer "):
        return httpx.Response(
            401, json={"error": "unauthorized"}, headers={"WWW-Authenticate": challenge_header()}
        )
    if authorization[7:] != VALID_TOKEN:
        return httpx.Response(
            401,
            json={"error": "invalid_token"},
            headers={"WWW-Authenticate": challenge_header("invalid_token")},
        )

    message = json.loads(request.content)
    if "id" not in message:
        return httpx.Response(202)
    if message["method"] == "initialize":
        result = {"protocolVersion": "2025-06-18", "capabilities": {}, "serverInfo": {"name": "fake"}}
    elif message["method"] == "tools/list":
        result = {"tools": [{"name": "echo"}]}
    else:
        result = {}
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": message["id"], "result": result})


def authorize_handler(request: httpx.Request) -> httpx.Response:
    params = request.url.params
    query = urlencode({"code": "auth-code", "state": params.get("state", "")})
    return httpx.Response(302, headers={"Location": f"{params['redirect_uri']}?{query}"})


def conformant_server() -> FakeServer:
    """A fully conformant protected MCP server with DCR."""
    server = FakeServer()
    server.add("GET", PRM_URL, json_response(200, prm_document()))
    server.add("GET", AS_METADATA_URL, json_response(200, as_metadata()))
    server.add("POST", SERVER_URL, mcp_handler)
    server.add("POST", f"{AS_URL}/register", json_response(201, {"client_id": "client-1", "client_secret": "s3cret"}))
    server.add("GET", f"{AS_URL}/authorize", authorize_handler)
    server.add(
        "POST",
        f"{AS_URL}/token",
        json_response(200, {"access_token": VALID_TOKEN, "token_type": "Bearer", "expires_in": 3600}),
    )
    return server


@pytest.fixture
def config() -> Config:
    """Fresh configuration with short harness timeouts."""
    config = Config()
    config.HARNESS_READY_TIMEOUT = 5
    config.HARNESS_SHUTDOWN_GRACE = 2
    config.AUTH_FETCH_TIMEOUT = 5
    return config


@pytest.fixture
def fake_server() -> FakeServer:
    return conformant_server()
