"""Fake OAuth authorization server used by client-targeting scenarios."""

import logging
import secrets
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

from ..assertions import (
    GRANT_AUTHORIZATION_CODE,
    GRANT_CLIENT_CREDENTIALS,
    GRANT_REFRESH_TOKEN,
)
from ..checks import CheckSink
from ..models import CheckStatus
from ..observation import AS_WELL_KNOWN
from ..spec_references import SpecReferences
from .tokens import TokenVerifier

logger = logging.getLogger(__name__)

AUTHORIZATION_CODE = "test-auth-code"

RequestHook = Callable[[Dict[str, Any]], None]
# May return {"error": ..., "error_description": ..., "status_code": ...} to
# reject the request, or {"scopes": [...]} to decide what is granted.
TokenHook = Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]


class AuthServerOptions(BaseModel):
    """Knobs for the fake authorization server."""

    metadata_path: str = AS_WELL_KNOWN
    route_prefix: str = ""
    is_openid_configuration: bool = False
    include_registration_endpoint: bool = True
    code_challenge_methods_supported: Optional[List[str]] = ["S256"]
    token_endpoint_auth_methods_supported: Optional[List[str]] = ["none"]
    token_endpoint_auth_signing_alg_values_supported: Optional[List[str]] = None
    grant_types_supported: List[str] = [GRANT_AUTHORIZATION_CODE, GRANT_REFRESH_TOKEN]
    scopes_supported: Optional[List[str]] = None
    client_id_metadata_document_supported: Optional[bool] = None
    registration_auth_method: Optional[str] = None

    # Token issuance
    access_token_expires_in: int = 3600
    issue_refresh_token: bool = True
    rotate_refresh_tokens: bool = False
    grantable_scopes: Optional[List[str]] = None


def _add_query(url: str, params: Dict[str, str]) -> str:
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend(params.items())
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


async def read_form(request: Request) -> Dict[str, str]:
    """Parse an ``application/x-www-form-urlencoded`` body."""
    body = (await request.body()).decode("utf-8")
    return dict(parse_qsl(body, keep_blank_values=True))


def _token_error(error: str, description: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "error_description": description})


def create_auth_server(
    sink: CheckSink,
    base_url: Callable[[], str],
    options: Optional[AuthServerOptions] = None,
    token_verifier: Optional[TokenVerifier] = None,
    on_authorization_request: Optional[RequestHook] = None,
    on_token_request: Optional[TokenHook] = None,
    on_registration_request: Optional[RequestHook] = None,
) -> FastAPI:
    """Create the fake authorization server app.

    Every endpoint records a SUCCESS check when the client reaches it, so
    missing checks later reveal which step a client never performed.

    The token endpoint grants the scopes of the last authorization request
    for ``authorization_code``, the original grant's scopes for
    ``refresh_token`` and the requested ``scope`` otherwise, limited to
    ``grantable_scopes`` when set.

    Args:
        sink: Check sink of the owning scenario
        base_url: Callable returning the server's base URL once bound
        options: Metadata and behaviour knobs
        token_verifier: Verifier that issued tokens are registered with
        on_authorization_request: Hook receiving authorization query parameters
        on_token_request: Hook receiving token request data; may reject or set scopes
        on_registration_request: Hook receiving the registration body

    Returns:
        FastAPI application
    """
    options = options or AuthServerOptions()
    verifier = token_verifier or TokenVerifier(sink)
    prefix = options.route_prefix
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    authorized_scopes: List[str] = []
    refresh_tokens: Dict[str, List[str]] = {}

    def issuer() -> str:
        return f"{base_url()}{prefix}"

    @app.middleware("http")
    async def record_incoming(request: Request, call_next):
        sink.add(
            "incoming-auth-request",
            "IncomingAuthRequest",
            f"Received {request.method} request for {request.url.path}",
            CheckStatus.INFO,
            details={"method": request.method, "path": request.url.path},
        )
        return await call_next(request)

    @app.get(options.metadata_path)
    async def metadata(request: Request):
        sink.add(
            "authorization-server-metadata",
            "AuthorizationServerMetadata",
            "Client requested authorization server metadata",
            CheckStatus.SUCCESS,
            details={"url": str(request.url), "path": request.url.path},
            spec_references=[SpecReferences.RFC_8414_AS_DISCOVERY, SpecReferences.MCP_AUTH_SERVER_METADATA],
        )
        document: Dict[str, Any] = {
            "issuer": issuer(),
            "authorization_endpoint": f"{issuer()}/authorize",
            "token_endpoint": f"{issuer()}/token",
            "response_types_supported": ["code"],
            "grant_types_supported": options.grant_types_supported,
        }
        if options.include_registration_endpoint:
            document["registration_endpoint"] = f"{issuer()}/register"
        if options.code_challenge_methods_supported is not None:
            document["code_challenge_methods_supported"] = options.code_challenge_methods_supported
        if options.token_endpoint_auth_methods_supported is not None:
            document["token_endpoint_auth_methods_supported"] = options.token_endpoint_auth_methods_supported
        if options.token_endpoint_auth_signing_alg_values_supported is not None:
            document["token_endpoint_auth_signing_alg_values_supported"] = (
                options.token_endpoint_auth_signing_alg_values_supported
            )
        if options.scopes_supported is not None:
            document["scopes_supported"] = options.scopes_supported
        if options.client_id_metadata_document_supported is not None:
            document["client_id_metadata_document_supported"] = options.client_id_metadata_document_supported
        if options.is_openid_configuration:
            document["jwks_uri"] = f"{issuer()}/jwks"
            document["subject_types_supported"] = ["public"]
            document["id_token_signing_alg_values_supported"] = ["RS256"]
        return document

    @app.get(f"{prefix}/authorize")
    async def authorize(request: Request):
        query = dict(request.query_params)
        sink.add(
            "authorization-request",
            "AuthorizationRequest",
            "Client made authorization request",
            CheckStatus.SUCCESS,
            details={
                "response_type": query.get("response_type"),
                "client_id": query.get("client_id"),
                "redirect_uri": query.get("redirect_uri"),
                "state": query.get("state"),
                "code_challenge": "present" if query.get("code_challenge") else "missing",
                "code_challenge_method": query.get("code_challenge_method"),
                "resource": query.get("resource"),
                "scope": query.get("scope"),
            },
            spec_references=[SpecReferences.OAUTH_2_1_AUTHORIZATION_ENDPOINT],
        )
        if on_authorization_request:
            on_authorization_request(query)

        redirect_uri = query.get("redirect_uri")
        if not redirect_uri:
            return _token_error("invalid_request", "redirect_uri is required")

        authorized_scopes[:] = query.get("scope", "").split()
        params = {"code": AUTHORIZATION_CODE}
        if query.get("state"):
            params["state"] = query["state"]
        return RedirectResponse(_add_query(redirect_uri, params), status_code=302)

    @app.post(f"{prefix}/token")
    async def token(request: Request):
        form = await read_form(request)
        authorization = request.headers.get("authorization")
        grant_type = form.get("grant_type")
        sink.add(
            "token-request",
            "TokenRequest",
            "Client requested access token",
            CheckStatus.SUCCESS,
            details={
                "endpoint": request.url.path,
                "grantType": grant_type,
                "hasAuthorizationHeader": authorization is not None,
                "hasBodyClientSecret": "client_secret" in form,
                "hasCodeVerifier": "code_verifier" in form,
                "resource": form.get("resource"),
            },
            spec_references=[SpecReferences.OAUTH_2_1_TOKEN],
        )
        decision = on_token_request({"authorization": authorization, "form": form}) if on_token_request else None
        if decision and decision.get("error"):
            return _token_error(
                decision["error"], decision.get("error_description", ""), decision.get("status_code", 400)
            )

        if grant_type == GRANT_REFRESH_TOKEN:
            presented = form.get("refresh_token", "")
            if presented not in refresh_tokens:
                sink.add(
                    "refresh-token-invalid",
                    "RefreshTokenInvalid",
                    "Client presented a refresh token that is unknown or already rotated out",
                    CheckStatus.FAILURE,
                    error_message="Refresh token is not valid",
                    spec_references=[SpecReferences.OAUTH_2_1_REFRESH_TOKEN_ROTATION],
                )
                return _token_error("invalid_grant", "Refresh token is not valid")
            scopes = refresh_tokens[presented]
            if options.rotate_refresh_tokens:
                del refresh_tokens[presented]
        elif decision and "scopes" in decision:
            scopes = list(decision["scopes"])
        elif grant_type == GRANT_AUTHORIZATION_CODE:
            scopes = list(authorized_scopes)
        else:
            scopes = form.get("scope", "").split()

        if options.grantable_scopes is not None:
            scopes = [scope for scope in scopes if scope in options.grantable_scopes]

        response: Dict[str, Any] = {
            "access_token": verifier.issue(scopes, options.access_token_expires_in),
            "token_type": "Bearer",
            "expires_in": options.access_token_expires_in,
        }
        if scopes:
            response["scope"] = " ".join(scopes)

        # A refresh grant without rotation keeps the presented refresh token valid
        new_refresh = options.issue_refresh_token and grant_type != GRANT_CLIENT_CREDENTIALS
        if grant_type == GRANT_REFRESH_TOKEN and not options.rotate_refresh_tokens:
            new_refresh = False
        if new_refresh:
            refresh_token = f"test-refresh-{secrets.token_hex(8)}"
            refresh_tokens[refresh_token] = scopes
            response["refresh_token"] = refresh_token
        logger.debug(f"Issued {grant_type} token with scopes {scopes}")
        return response

    if options.include_registration_endpoint:

        @app.post(f"{prefix}/register")
        async def register(request: Request):
            try:
                registration = await request.json()
            except ValueError:
                registration = {}
            if not isinstance(registration, dict):
                registration = {}

            auth_method = options.registration_auth_method
            sink.add(
                "client-registration",
                "ClientRegistration",
                "Client registered with authorization server",
                CheckStatus.SUCCESS,
                details={
                    "endpoint": request.url.path,
                    "clientName": registration.get("client_name"),
                    "tokenEndpointAuthMethod": auth_method,
                },
                spec_references=[SpecReferences.RFC_7591_DCR_ENDPOINT, SpecReferences.MCP_AUTH_DCR],
            )
            if on_registration_request:
                on_registration_request(registration)

            response: Dict[str, Any] = {
                "client_id": f"test-client-{secrets.token_hex(4)}",
                "client_name": registration.get("client_name") or "test-client",
                "redirect_uris": registration.get("redirect_uris") or [],
            }
            if auth_method != "none":
                response["client_secret"] = f"test-secret-{secrets.token_hex(8)}"
            if auth_method:
                response["token_endpoint_auth_method"] = auth_method
            return JSONResponse(status_code=201, content=response)

    return app
