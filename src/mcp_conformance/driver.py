"""OAuth-protected MCP client driver.

:class:`AuthFlowDriver` performs the full MCP authorization handshake
against a server: challenge detection, PRM and AS metadata discovery,
client identification, authorization code with PKCE, token exchange and
the authenticated retry. Every request goes through one
:class:`httpx.AsyncClient`, optionally wrapped in an
:class:`~mcp_conformance.observation.ObservingTransport` so a scenario can
assert on the traffic afterwards.

After the handshake, :meth:`AuthFlowDriver.request` keeps the session
authorized: an expired access token is refreshed, and an
``insufficient_scope`` challenge triggers a bounded step-up
re-authorization with the scope the server asked for. Machine-to-machine
clients use ``client_credentials`` or the cross-app access
(token exchange + JWT bearer) grant instead of the authorization code.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlsplit

import httpx
from authlib.common.security import generate_token
from authlib.oauth2.rfc7636 import create_s256_code_challenge
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse
from rich.console import Console

from .assertions import (
    CLIENT_ASSERTION_TYPE_JWT,
    GRANT_AUTHORIZATION_CODE,
    GRANT_CLIENT_CREDENTIALS,
    GRANT_JWT_BEARER,
    GRANT_REFRESH_TOKEN,
    GRANT_TOKEN_EXCHANGE,
    OFFLINE_ACCESS_SCOPE,
    TOKEN_TYPE_ID_JAG,
    TOKEN_TYPE_ID_TOKEN,
    sign_jwt,
)
from .auth_fetch import auth_fetch, get_base_url
from .config import Config, get_config
from .discovery import fetch_prm, resolve_as_metadata
from .exceptions import AuthFlowError
from .harness.lifecycle import ServerLifecycle
from .models import AuthChallenge
from .observation import ObservationSink, ObservingTransport, parse_www_authenticate

logger = logging.getLogger(__name__)

CLIENT_NAME = "mcp-conformance-client"

# Step-up re-authorizations per request before giving up
MAX_STEP_UP_ATTEMPTS = 2


def _create_callback_app(future: asyncio.Future, path: str) -> FastAPI:
    """Tiny app that receives the browser redirect in interactive mode."""
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    @app.get(path)
    async def callback(request: Request):
        params = dict(request.query_params)
        if not future.done():
            future.set_result(params)
        if "code" in params:
            return HTMLResponse("<h1>Authorization complete</h1><p>You can close this window.</p>")
        return HTMLResponse(
            f"<h1>Authorization failed</h1><p>{params.get('error', 'no code returned')}</p>",
            status_code=400,
        )

    return app


def parse_rpc_response(response: httpx.Response) -> Dict[str, Any]:
    """Extract the JSON-RPC message from a JSON or SSE response body."""
    content_type = response.headers.get("content-type", "")
    if content_type.startswith("text/event-stream"):
        for line in response.text.splitlines():
            if not line.startswith("data:"):
                continue
            try:
                message = json.loads(line[5:].strip())
            except ValueError:
                continue
            if isinstance(message, dict) and ("result" in message or "error" in message):
                return message
        raise AuthFlowError("No JSON-RPC response found in event stream")

    try:
        message = response.json()
    except ValueError as e:
        raise AuthFlowError(f"Invalid JSON-RPC response: {e}")
    if not isinstance(message, dict):
        raise AuthFlowError("JSON-RPC response is not an object")
    return message


def response_object(response: httpx.Response, what: str) -> Dict[str, Any]:
    """Decode a JSON object body from an authorization server response.

    Raises:
        AuthFlowError: If the body is not JSON or not an object
    """
    try:
        data = response.json()
    except ValueError as e:
        raise AuthFlowError(f"{what} returned a non-JSON body ({response.headers.get('content-type')})") from e
    if not isinstance(data, dict):
        raise AuthFlowError(f"{what} returned a JSON {type(data).__name__} instead of an object")
    return data


def challenge_of(response: httpx.Response) -> Optional[AuthChallenge]:
    header = response.headers.get("www-authenticate")
    return parse_www_authenticate(header) if header else None


def is_insufficient_scope(response: httpx.Response, challenge: Optional[AuthChallenge]) -> bool:
    """True for a step-up challenge: 403 with a Bearer challenge or ``error="insufficient_scope"``."""
    if challenge is None or response.status_code not in (401, 403):
        return False
    if challenge.params.get("error") == "insufficient_scope":
        return True
    return response.status_code == 403 and challenge.scheme.lower() == "bearer"


class AuthFlowDriver:
    """Drive an MCP client through the OAuth authorization flow."""

    def __init__(
        self,
        server_url: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        observer: Optional[ObservationSink] = None,
        client_name: str = CLIENT_NAME,
        redirect_uri: Optional[str] = None,
        cimd_url: Optional[str] = None,
        pre_registered: Optional[Dict[str, Any]] = None,
        grant_type: str = GRANT_AUTHORIZATION_CODE,
        private_key_pem: Optional[str] = None,
        signing_algorithm: str = "RS256",
        identity_assertion: Optional[Dict[str, Any]] = None,
        interactive: bool = False,
        interactive_timeout: Optional[float] = None,
        config: Optional[Config] = None,
        console: Optional[Console] = None,
    ):
        """Initialize the driver.

        Args:
            server_url: MCP endpoint URL
            transport: Underlying httpx transport (defaults to real HTTP)
            observer: Sink receiving every observed request/response pair
            client_name: Name sent in registrations and clientInfo
            redirect_uri: OAuth redirect URI
            cimd_url: Client ID metadata document URL used as client_id
            pre_registered: Credentials with ``client_id`` and optional ``client_secret``
            grant_type: ``authorization_code``, ``client_credentials`` or the JWT bearer grant
            private_key_pem: Key for ``private_key_jwt`` client authentication
            signing_algorithm: JWS algorithm for the client assertion
            identity_assertion: IdP details for cross-app access: ``idp_token_endpoint``,
                ``idp_id_token`` and ``idp_client_id``
            interactive: Wait for a real browser redirect instead of auto-approving
            interactive_timeout: Seconds to wait for the browser redirect
            config: Configuration (defaults to the global config)
            console: Console used for interactive prompts
        """
        self.config = config or get_config()
        self.server_url = server_url
        self.client_name = client_name
        self.redirect_uri = redirect_uri or self.config.DEFAULT_REDIRECT_URI
        self.cimd_url = cimd_url or self.config.CIMD_CLIENT_METADATA_URL
        self.pre_registered = pre_registered
        self.grant_type = grant_type
        self.private_key_pem = private_key_pem
        self.signing_algorithm = signing_algorithm
        self.identity_assertion = identity_assertion
        self.interactive = interactive
        self.interactive_timeout = interactive_timeout or self.config.AUTH_INTERACTIVE_TIMEOUT
        self.console = console or Console(stderr=True)

        if observer is not None:
            transport = ObservingTransport(observer, transport)
        self.client = httpx.AsyncClient(transport=transport, timeout=self.config.AUTH_FETCH_TIMEOUT)

        self.challenge: Optional[AuthChallenge] = None
        self.prm: Optional[Dict[str, Any]] = None
        self.as_metadata: Optional[Dict[str, Any]] = None
        self.client_id: Optional[str] = None
        self.client_secret: Optional[str] = None
        self.auth_method: Optional[str] = None
        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None
        self.session_id: Optional[str] = None
        self.authorization_count = 0
        self._request_id = 0

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    def _next_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def send_rpc(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None,
        notification: bool = False,
    ) -> httpx.Response:
        """POST one JSON-RPC message to the MCP endpoint."""
        message: Dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            message["params"] = params
        if not notification:
            message["id"] = self._next_id()

        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
            "MCP-Protocol-Version": self.config.MCP_PROTOCOL_VERSION,
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if self.session_id:
            headers["Mcp-Session-Id"] = self.session_id

        return await self.client.post(self.server_url, content=json.dumps(message), headers=headers)

    async def request(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        notification: bool = False,
    ) -> httpx.Response:
        """Send one JSON-RPC message, authorizing as the server demands.

        - 401 before any token: run the authorization flow
        - 403 ``insufficient_scope``: re-authorize with the challenge's scope,
          at most :data:`MAX_STEP_UP_ATTEMPTS` times
        - 401 with a refresh token: refresh once, re-authorize if that fails
        - any other 401: the token was rejected

        Raises:
            AuthFlowError: If the server keeps refusing the request
        """
        response = await self.send_rpc(method, params, token=self.access_token, notification=notification)
        refreshed = False
        step_ups = 0
        while True:
            challenge = challenge_of(response)
            if response.status_code == 401 and self.access_token is None:
                self.challenge = challenge or AuthChallenge(scheme="Bearer")
                logger.debug(f"Received 401 challenge: {self.challenge.params}")
                await self.authorize()
            elif is_insufficient_scope(response, challenge):
                if step_ups >= MAX_STEP_UP_ATTEMPTS:
                    raise AuthFlowError(
                        f"{method} still lacks scope after {step_ups} step-up authorizations"
                    )
                step_ups += 1
                self.challenge = challenge
                logger.debug(f"Stepping up authorization for {method}: {challenge.params.get('scope')}")
                await self.authorize()
            elif response.status_code == 401 and self.refresh_token and not refreshed:
                refreshed = True
                if not await self.refresh_access_token():
                    self.challenge = challenge or self.challenge
                    await self.authorize()
            elif response.status_code == 401:
                raise AuthFlowError("Server rejected the access token")
            else:
                return response
            response = await self.send_rpc(method, params, token=self.access_token, notification=notification)

    async def call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send a request and return its JSON-RPC ``result``.

        Raises:
            AuthFlowError: On HTTP failure or a JSON-RPC error
        """
        response = await self.request(method, params)
        if not response.is_success:
            raise AuthFlowError(f"{method} failed with status {response.status_code}")
        message = parse_rpc_response(response)
        if "error" in message:
            raise AuthFlowError(f"{method} returned error: {message['error']}")
        return message.get("result") or {}

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.call("tools/call", {"name": name, "arguments": arguments or {}})

    def _initialize_params(self) -> Dict[str, Any]:
        return {
            "protocolVersion": self.config.MCP_PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": {"name": self.client_name, "version": "1.0.0"},
        }

    async def connect(self) -> Dict[str, Any]:
        """Run the full flow and return the result of ``tools/list``.

        Raises:
            AuthFlowError: If any step of the authorization flow fails
            httpx.HTTPError: On transport failure
        """
        response = await self.request("initialize", self._initialize_params())
        if not response.is_success:
            raise AuthFlowError(f"initialize failed with status {response.status_code}")
        if self.access_token is None:
            logger.debug("Server did not require authorization")

        initialize = parse_rpc_response(response)
        if "error" in initialize:
            raise AuthFlowError(f"initialize returned error: {initialize['error']}")
        self.session_id = response.headers.get("mcp-session-id") or self.session_id

        await self.request("notifications/initialized", notification=True)
        return await self.call("tools/list", {})

    async def authorize(self) -> str:
        """Obtain an access token after a 401 or step-up challenge.

        Discovery and client identification run once; later calls reuse
        them and only repeat the grant.

        Returns:
            The access token
        """
        if self.as_metadata is None:
            self.prm = await self.discover_prm()
            self.as_metadata = await self.discover_as_metadata()

        if self.grant_type == GRANT_CLIENT_CREDENTIALS:
            return await self.request_client_credentials_token()
        if self.grant_type == GRANT_JWT_BEARER:
            return await self.request_cross_app_token()

        methods = self.as_metadata.get("code_challenge_methods_supported")
        if methods is not None and "S256" not in (methods if isinstance(methods, list) else []):
            raise AuthFlowError("Authorization server does not support PKCE S256")

        if self.client_id is None:
            await self.identify_client()

        verifier = generate_token(64)
        code = await self.request_authorization_code(verifier)
        return await self.exchange_code(code, verifier)

    async def discover_prm(self) -> Optional[Dict[str, Any]]:
        """Fetch Protected Resource Metadata, preferring the challenge's pointer.

        Without a pointer and without PRM at the well-known locations the
        server is treated as a 2025-03-26 deployment and ``None`` is returned.
        """
        metadata_url = self.challenge.params.get("resource_metadata") if self.challenge else None
        if metadata_url:
            response = await auth_fetch(metadata_url, client=self.client)
            if response.status != 200 or response.json_object is None:
                raise AuthFlowError(f"Failed to fetch PRM from {metadata_url}: status {response.status}")
            return response.json_object

        result = await fetch_prm(self.server_url, client=self.client)
        if not result.success:
            logger.debug(f"No protected resource metadata ({result.error}), using legacy discovery")
            return None
        return result.metadata

    def legacy_issuer(self) -> str:
        """Origin of the MCP server, which hosts the AS in 2025-03-26 deployments."""
        return get_base_url(self.server_url)

    async def discover_as_metadata(self) -> Dict[str, Any]:
        if self.prm is None:
            issuer = self.legacy_issuer()
            result = await resolve_as_metadata(issuer, client=self.client)
            if not result.success:
                raise AuthFlowError(
                    f"Failed to fetch PRM and no authorization server metadata at {issuer}: {result.error}"
                )
            return result.metadata

        servers = self.prm.get("authorization_servers")
        if not isinstance(servers, list) or not servers or not isinstance(servers[0], str):
            raise AuthFlowError("PRM missing authorization_servers array")

        result = await resolve_as_metadata(servers[0], client=self.client)
        if not result.success:
            raise AuthFlowError(result.error or "Failed to discover authorization server metadata")
        return result.metadata

    async def identify_client(self) -> None:
        """Pick the client identity: pre-registered, CIMD, then DCR."""
        if self.pre_registered and self.pre_registered.get("client_id"):
            self.client_id = self.pre_registered["client_id"]
            self.client_secret = self.pre_registered.get("client_secret")
            logger.debug(f"Using pre-registered client {self.client_id}")
            return

        if self.as_metadata.get("client_id_metadata_document_supported") is True:
            self.client_id = self.cimd_url
            self.client_secret = None
            logger.debug(f"Using client ID metadata document {self.cimd_url}")
            return

        registration_endpoint = self.as_metadata.get("registration_endpoint")
        if not registration_endpoint:
            raise AuthFlowError("No way to identify the client: no pre-registration, CIMD or DCR")

        await self.register_client(registration_endpoint)

    async def register_client(self, registration_endpoint: str) -> None:
        """Dynamically register the client (RFC 7591)."""
        registration_data = {
            "client_name": self.client_name,
            "redirect_uris": [self.redirect_uri],
            "grant_types": [GRANT_AUTHORIZATION_CODE, GRANT_REFRESH_TOKEN],
            "response_types": ["code"],
        }
        response = await self.client.post(registration_endpoint, json=registration_data)
        if response.status_code not in (200, 201):
            raise AuthFlowError(f"Client registration failed with status {response.status_code}")

        data = response_object(response, "Client registration")
        if "client_id" not in data:
            raise AuthFlowError("Client registration response missing client_id")
        self.client_id = data["client_id"]
        self.client_secret = data.get("client_secret")
        self.auth_method = data.get("token_endpoint_auth_method")
        logger.debug(f"Registered client {self.client_id}")

    def resource(self) -> str:
        """Canonical resource identifier for RFC 8707 indicators."""
        if self.prm and isinstance(self.prm.get("resource"), str):
            return self.prm["resource"]
        return self.server_url

    def requested_scope(self) -> Optional[str]:
        """Challenge scope, else PRM ``scopes_supported``, else nothing.

        ``offline_access`` is added when the authorization server offers it,
        so the grant can outlive the session through a refresh token.
        """
        scopes: List[str] = []
        if self.challenge and self.challenge.params.get("scope"):
            scopes = self.challenge.params["scope"].split()
        else:
            supported = self.prm.get("scopes_supported") if self.prm else None
            if isinstance(supported, list):
                scopes = [str(s) for s in supported]

        as_scopes = self.as_metadata.get("scopes_supported") if self.as_metadata else None
        if isinstance(as_scopes, list) and OFFLINE_ACCESS_SCOPE in as_scopes and OFFLINE_ACCESS_SCOPE not in scopes:
            scopes.append(OFFLINE_ACCESS_SCOPE)
        return " ".join(scopes) if scopes else None

    def build_authorization_url(self, state: str, verifier: str) -> str:
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "state": state,
            "code_challenge": create_s256_code_challenge(verifier),
            "code_challenge_method": "S256",
            "resource": self.resource(),
        }
        scope = self.requested_scope()
        if scope:
            params["scope"] = scope
        return str(httpx.URL(self.as_metadata["authorization_endpoint"]).copy_merge_params(params))

    async def request_authorization_code(self, verifier: str) -> str:
        """Run the authorization request and return the authorization code."""
        if not self.as_metadata.get("authorization_endpoint"):
            raise AuthFlowError("Authorization server metadata missing authorization_endpoint")

        state = generate_token(32)
        url = self.build_authorization_url(state, verifier)
        self.authorization_count += 1

        if self.interactive:
            params = await self._wait_for_browser(url)
        else:
            response = await self.client.get(url, follow_redirects=False)
            location = response.headers.get("location")
            if not response.is_redirect or not location:
                raise AuthFlowError(f"Authorization request returned {response.status_code} without redirect")
            params = {k: v[0] for k, v in parse_qs(urlsplit(location).query).items()}

        if "error" in params:
            raise AuthFlowError(f"Authorization denied: {params['error']}")
        if params.get("state") != state:
            raise AuthFlowError("Authorization response state mismatch")
        if not params.get("code"):
            raise AuthFlowError("Authorization response missing code")
        return params["code"]

    async def _wait_for_browser(self, url: str) -> Dict[str, str]:
        redirect = urlsplit(self.redirect_uri)
        future = asyncio.get_running_loop().create_future()
        callback_server = ServerLifecycle("callback", config=self.config)
        await callback_server.start(
            _create_callback_app(future, redirect.path or "/"),
            host=redirect.hostname,
            port=redirect.port,
        )
        try:
            self.console.print("[bold]Open this URL to authorize:[/bold]")
            self.console.print(url)
            self.console.print("[dim]Waiting for authorization callback...[/dim]")
            return await asyncio.wait_for(future, timeout=self.interactive_timeout)
        except asyncio.TimeoutError:
            raise AuthFlowError(f"No authorization callback within {self.interactive_timeout}s")
        finally:
            await callback_server.stop()

    def select_auth_method(self) -> str:
        """Choose the token endpoint client authentication method."""
        if self.auth_method:
            return self.auth_method
        if self.private_key_pem:
            return "private_key_jwt"
        if not self.client_secret:
            return "none"

        supported: Optional[List[str]] = self.as_metadata.get("token_endpoint_auth_methods_supported")
        if supported is None or "client_secret_basic" in supported:
            return "client_secret_basic"
        if "client_secret_post" in supported:
            return "client_secret_post"
        return "none"

    def client_assertion(self, audience: str) -> str:
        """Signed ``private_key_jwt`` assertion (RFC 7523) for ``audience``."""
        return sign_jwt(
            {"iss": self.client_id, "sub": self.client_id, "aud": audience},
            self.private_key_pem,
            self.signing_algorithm,
        )

    async def token_request(self, data: Dict[str, str]) -> str:
        """POST to the token endpoint with client authentication and keep the tokens.

        Returns:
            The new access token
        """
        token_endpoint = self.as_metadata.get("token_endpoint")
        if not token_endpoint:
            raise AuthFlowError("Authorization server metadata missing token_endpoint")

        auth = None
        method = self.select_auth_method()
        if method == "client_secret_basic" and self.client_secret:
            auth = httpx.BasicAuth(self.client_id, self.client_secret)
        elif method == "client_secret_post" and self.client_secret:
            data["client_id"] = self.client_id
            data["client_secret"] = self.client_secret
        elif method == "private_key_jwt" and self.private_key_pem:
            data["client_id"] = self.client_id
            data["client_assertion_type"] = CLIENT_ASSERTION_TYPE_JWT
            data["client_assertion"] = self.client_assertion(token_endpoint)
        else:
            data["client_id"] = self.client_id
        logger.debug(f"Token request ({data.get('grant_type')}) using {method}")

        response = await self.client.post(token_endpoint, data=data, auth=auth)
        if response.status_code != 200:
            raise AuthFlowError(f"Token request failed with status {response.status_code}")

        tokens = response_object(response, "Token endpoint")
        if not tokens.get("access_token"):
            raise AuthFlowError("Token response missing access_token")
        self.access_token = tokens["access_token"]
        # Without a new refresh token the current one stays valid
        if tokens.get("refresh_token"):
            self.refresh_token = tokens["refresh_token"]
        return self.access_token

    async def exchange_code(self, code: str, verifier: str) -> str:
        """Exchange the authorization code for an access token."""
        return await self.token_request({
            "grant_type": GRANT_AUTHORIZATION_CODE,
            "code": code,
            "redirect_uri": self.redirect_uri,
            "code_verifier": verifier,
            "resource": self.resource(),
        })

    async def refresh_access_token(self) -> bool:
        """Trade the refresh token for a new access token.

        Returns:
            False when the authorization server refused the refresh token
        """
        logger.debug("Access token rejected, refreshing")
        try:
            await self.token_request({
                "grant_type": GRANT_REFRESH_TOKEN,
                "refresh_token": self.refresh_token,
                "resource": self.resource(),
            })
        except AuthFlowError as e:
            logger.debug(f"Refresh failed: {e}")
            self.refresh_token = None
            return False
        return True

    async def request_client_credentials_token(self) -> str:
        """Machine-to-machine grant with the pre-registered client credentials."""
        if not self.pre_registered or not self.pre_registered.get("client_id"):
            raise AuthFlowError("client_credentials requires a pre-registered client_id")
        self.client_id = self.pre_registered["client_id"]
        self.client_secret = self.pre_registered.get("client_secret")

        data = {"grant_type": GRANT_CLIENT_CREDENTIALS, "resource": self.resource()}
        scope = self.requested_scope()
        if scope:
            data["scope"] = scope
        return await self.token_request(data)

    async def request_cross_app_token(self) -> str:
        """Cross-app access: trade the IdP ID token for an ID-JAG, then for an access token."""
        if not self.identity_assertion or not self.pre_registered:
            raise AuthFlowError("Cross-app access requires IdP details and client credentials")
        self.client_id = self.pre_registered.get("client_id")
        self.client_secret = self.pre_registered.get("client_secret")

        idp = self.identity_assertion
        response = await self.client.post(
            idp["idp_token_endpoint"],
            data={
                "grant_type": GRANT_TOKEN_EXCHANGE,
                "requested_token_type": TOKEN_TYPE_ID_JAG,
                "subject_token": idp["idp_id_token"],
                "subject_token_type": TOKEN_TYPE_ID_TOKEN,
                "audience": self.as_metadata.get("issuer", ""),
                "resource": self.resource(),
                "client_id": idp.get("idp_client_id", ""),
            },
        )
        if response.status_code != 200:
            raise AuthFlowError(f"Token exchange at the IdP failed with status {response.status_code}")
        exchanged = response_object(response, "IdP token exchange")
        if not exchanged.get("access_token"):
            raise AuthFlowError("IdP token exchange response missing the ID-JAG")

        return await self.token_request({"grant_type": GRANT_JWT_BEARER, "assertion": exchanged["access_token"]})
