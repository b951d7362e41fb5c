"""Client-targeting authorization scenarios.

Each scenario stands up a fake authorization server and a fake MCP
resource server shaped for one discovery or registration variant, lets the
client under test connect, and judges the recorded traffic.
"""

import base64
import binascii
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..assertions import GRANT_REFRESH_TOKEN, OFFLINE_ACCESS_SCOPE
from ..auth_fetch import auth_fetch
from ..config import Config
from ..harness import AuthServerOptions, ResourceServerOptions, create_auth_server
from ..harness.resource_server import MCP_PATH, PATH_BASED_PRM
from ..models import CheckStatus, ScenarioUrls
from ..observation import AS_WELL_KNOWN, OIDC_WELL_KNOWN, PRM_WELL_KNOWN
from ..spec_references import SpecReferences
from .base import HarnessScenario

logger = logging.getLogger(__name__)

AUTH_FLOW_CHECKS = (
    "authorization-server-metadata",
    "client-registration",
    "authorization-request",
    "token-request",
)

TENANT_PATH = "/tenant1"
CUSTOM_PRM_PATH = "/custom/metadata/location.json"

PRE_REGISTERED_CLIENT_ID = "pre-registered-client"
PRE_REGISTERED_CLIENT_SECRET = "pre-registered-secret"

TOKEN_ENDPOINT_AUTH_METHODS = ("client_secret_basic", "client_secret_post", "none")


class BasicDcrScenario(HarnessScenario):
    name = "auth/basic-dcr"
    description = (
        "Client discovers path-based protected resource metadata, registers "
        "dynamically and completes the authorization code flow with PKCE."
    )
    expected_ids = ("prm-pathbased-requested",) + AUTH_FLOW_CHECKS

    def resource_server_options(self) -> ResourceServerOptions:
        return ResourceServerOptions(prm_path=PATH_BASED_PRM, reject_root_prm=True)


class BasicMetadataScenario(HarnessScenario):
    """Metadata discovery variants.

    - ``var1``: root PRM not advertised in WWW-Authenticate, OIDC metadata at the root
    - ``var2``: root PRM, issuer with a tenant path, OIDC metadata appended to the path
    - ``var3``: PRM at a custom path only reachable via WWW-Authenticate, issuer as var2
    """

    VARIANTS = {
        "var1": "PRM at root without WWW-Authenticate hint; OpenID configuration at the issuer root.",
        "var2": "PRM at root; issuer with a path and OpenID configuration appended to that path.",
        "var3": "PRM at a custom location advertised in WWW-Authenticate; issuer with a path.",
    }

    expected_ids = AUTH_FLOW_CHECKS

    def __init__(self, variant: str, config: Optional[Config] = None):
        if variant not in self.VARIANTS:
            raise ValueError(f"Unknown metadata variant: {variant}")
        self.variant = variant
        self.name = f"auth/basic-metadata-{variant}"
        self.description = self.VARIANTS[variant]
        super().__init__(config)

    @property
    def uses_tenant_issuer(self) -> bool:
        return self.variant in ("var2", "var3")

    def issuer(self) -> str:
        if self.uses_tenant_issuer:
            return f"{self.auth_server.url}{TENANT_PATH}"
        return self.auth_server.url

    def auth_server_options(self) -> AuthServerOptions:
        if self.uses_tenant_issuer:
            return AuthServerOptions(
                metadata_path=f"{TENANT_PATH}{OIDC_WELL_KNOWN}",
                route_prefix=TENANT_PATH,
                is_openid_configuration=True,
            )
        return AuthServerOptions(metadata_path=OIDC_WELL_KNOWN, is_openid_configuration=True)

    def resource_server_options(self) -> ResourceServerOptions:
        if self.variant == "var1":
            return ResourceServerOptions(prm_path=PRM_WELL_KNOWN, include_prm_in_www_auth=False)
        if self.variant == "var2":
            return ResourceServerOptions(prm_path=PRM_WELL_KNOWN)
        return ResourceServerOptions(prm_path=CUSTOM_PRM_PATH)

    def build_auth_app(self) -> FastAPI:
        app = super().build_auth_app()
        if not self.uses_tenant_issuer:
            return app

        @app.get(AS_WELL_KNOWN)
        async def wrong_metadata_path():
            self.sink.add(
                "authorization-server-metadata-wrong-path",
                "AuthorizationServerMetadataWrongPath",
                "Client requested root RFC 8414 metadata for an issuer with a path",
                CheckStatus.FAILURE,
                error_message=f"Issuer has path {TENANT_PATH}; metadata must be looked up relative to it",
                spec_references=[SpecReferences.RFC_8414_AS_DISCOVERY, SpecReferences.MCP_AUTH_SERVER_METADATA],
            )
            return JSONResponse(status_code=404, content={"error": "not_found"})

        return app


class CimdScenario(HarnessScenario):
    name = "auth/basic-cimd"
    description = (
        "Authorization server supports client ID metadata documents; the client "
        "should use its metadata document URL as client_id instead of registering."
    )
    expected_ids = ("authorization-server-metadata", "authorization-request", "token-request")

    def auth_server_options(self) -> AuthServerOptions:
        return AuthServerOptions(client_id_metadata_document_supported=True)

    def finalize(self) -> None:
        expected = self.config.CIMD_CLIENT_METADATA_URL
        references = [SpecReferences.IETF_CIMD, SpecReferences.IETF_CIMD_AS_METADATA]
        if not self.authorization_requests:
            self.sink.add(
                "cimd-client-id-used",
                "CIMDClientIdUsed",
                "Client uses its metadata document URL as client_id",
                CheckStatus.FAILURE,
                error_message="Client never made an authorization request",
                spec_references=references,
            )
            return

        client_id = self.authorization_requests[0].get("client_id")
        used = client_id == expected
        self.sink.add(
            "cimd-client-id-used",
            "CIMDClientIdUsed",
            "Client uses its metadata document URL as client_id",
            CheckStatus.SUCCESS if used else CheckStatus.WARNING,
            error_message=None if used else f"Client used client_id {client_id!r} instead of {expected!r}",
            details={"expectedClientId": expected, "actualClientId": client_id},
            spec_references=references,
        )


class PkceNoS256Scenario(HarnessScenario):
    name = "auth/pkce-no-s256-support"
    description = (
        "Authorization server advertises no S256 code challenge method; the client "
        "must refuse to start the authorization flow."
    )
    expected_ids = ("authorization-server-metadata",)

    def auth_server_options(self) -> AuthServerOptions:
        return AuthServerOptions(code_challenge_methods_supported=[])

    def finalize(self) -> None:
        refused = not self.authorization_requests
        self.sink.add(
            "pkce-s256-required",
            "PKCES256Required",
            "Client refuses authorization when S256 PKCE is not supported",
            CheckStatus.SUCCESS if refused else CheckStatus.FAILURE,
            error_message=None if refused else "Client sent an authorization request without S256 support",
            details={"authorizationRequests": len(self.authorization_requests)},
            spec_references=[SpecReferences.MCP_AUTH_PKCE, SpecReferences.OAUTH_2_1_PKCE],
        )


def _decode_basic(authorization: str) -> Optional[Tuple[str, str]]:
    """Decode an HTTP Basic credential into ``(user, password)``."""
    try:
        decoded = base64.b64decode(authorization[6:].strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    if ":" not in decoded:
        return None
    user, _, password = decoded.partition(":")
    return user, password


def detect_auth_method(token_request: Dict[str, Any]) -> str:
    """Infer the client authentication method a token request used."""
    authorization = token_request.get("authorization") or ""
    if authorization.lower().startswith("basic "):
        return "client_secret_basic"
    if "client_secret" in (token_request.get("form") or {}):
        return "client_secret_post"
    return "none"


class PreRegistrationScenario(HarnessScenario):
    name = "auth/pre-registration"
    description = (
        "Authorization server has no registration endpoint; the client must use "
        "pre-registered credentials supplied in its context."
    )
    expected_ids = ("authorization-server-metadata", "authorization-request", "token-request")

    def auth_server_options(self) -> AuthServerOptions:
        return AuthServerOptions(
            include_registration_endpoint=False,
            token_endpoint_auth_methods_supported=["client_secret_basic"],
        )

    def context(self) -> Optional[Dict[str, Any]]:
        return {"client_id": PRE_REGISTERED_CLIENT_ID, "client_secret": PRE_REGISTERED_CLIENT_SECRET}

    def finalize(self) -> None:
        references = [SpecReferences.OAUTH_2_1_CLIENT_AUTH]
        if not self.token_requests:
            self.sink.add(
                "pre-registration-auth",
                "PreRegistrationAuth",
                "Client authenticates with pre-registered credentials",
                CheckStatus.FAILURE,
                error_message="Client never made a token request",
                spec_references=references,
            )
            return

        request = self.token_requests[0]
        form = request.get("form") or {}
        authorization = request.get("authorization") or ""
        credentials = None
        if authorization.lower().startswith("basic "):
            credentials = _decode_basic(authorization)
        elif "client_secret" in form:
            credentials = (form.get("client_id"), form.get("client_secret"))

        matches = credentials == (PRE_REGISTERED_CLIENT_ID, PRE_REGISTERED_CLIENT_SECRET)
        self.sink.add(
            "pre-registration-auth",
            "PreRegistrationAuth",
            "Client authenticates with pre-registered credentials",
            CheckStatus.SUCCESS if matches else CheckStatus.FAILURE,
            error_message=None if matches else "Token request did not carry the pre-registered credentials",
            details={"authMethod": detect_auth_method(request), "clientId": credentials[0] if credentials else None},
            spec_references=references,
        )


class TokenEndpointAuthScenario(HarnessScenario):
    """Authorization server supports exactly one token endpoint auth method."""

    SLUGS = {"client_secret_basic": "basic", "client_secret_post": "post", "none": "none"}

    expected_ids = ("client-registration", "authorization-request", "token-request")

    def __init__(self, method: str, config: Optional[Config] = None):
        if method not in self.SLUGS:
            raise ValueError(f"Unknown token endpoint auth method: {method}")
        self.method = method
        self.name = f"auth/token-endpoint-auth-{self.SLUGS[method]}"
        self.description = f"Client must authenticate at the token endpoint using {method}."
        super().__init__(config)

    def auth_server_options(self) -> AuthServerOptions:
        return AuthServerOptions(
            token_endpoint_auth_methods_supported=[self.method],
            registration_auth_method=self.method,
        )

    def finalize(self) -> None:
        references = [SpecReferences.OAUTH_2_1_CLIENT_AUTH, SpecReferences.RFC_7591_DCR_RESPONSE]
        if not self.token_requests:
            self.sink.add(
                "token-endpoint-auth-method",
                "TokenEndpointAuthMethod",
                f"Client authenticates with {self.method}",
                CheckStatus.FAILURE,
                error_message="Client never made a token request",
                details={"expectedAuthMethod": self.method},
                spec_references=references,
            )
            return

        request = self.token_requests[0]
        actual = detect_auth_method(request)
        error = None
        if actual != self.method:
            error = f"Expected {self.method}, client used {actual}"
        elif actual == "client_secret_basic" and _decode_basic(request.get("authorization") or "") is None:
            error = "Basic authorization header does not decode to client_id:client_secret"

        self.sink.add(
            "token-endpoint-auth-method",
            "TokenEndpointAuthMethod",
            f"Client authenticates with {self.method}",
            CheckStatus.FAILURE if error else CheckStatus.SUCCESS,
            error_message=error,
            details={"expectedAuthMethod": self.method, "actualAuthMethod": actual},
            spec_references=references,
        )


SCOPE_BASIC = "mcp:basic"
SCOPE_READ = "mcp:read"
SCOPE_WRITE = "mcp:write"
SCOPE_ADMIN = "mcp:admin"

# Authorization requests a client may make for one operation before it must give up
SCOPE_RETRY_LIMIT = 3


def _requested_scopes(params: Dict[str, Any]) -> List[str]:
    return (params.get("scope") or "").split()


class _ScopeSelectionScenario(HarnessScenario, ABC):
    """Grade the scope of the client's first authorization request."""

    check_id: str = ""
    check_name: str = ""

    @abstractmethod
    def grade(self, requested: List[str]) -> Tuple[CheckStatus, Optional[str], Dict[str, Any]]:
        """Return status, error message and details for the requested scopes."""

    def finalize(self) -> None:
        references = [SpecReferences.MCP_AUTH_SCOPE_SELECTION]
        if not self.authorization_requests:
            self.sink.add(
                self.check_id,
                self.check_name,
                "Client did not make an authorization request",
                CheckStatus.FAILURE,
                error_message="No authorization request received",
                spec_references=references,
            )
            return

        params = self.authorization_requests[0]
        status, error, details = self.grade(_requested_scopes(params))
        details["requestedScope"] = params.get("scope") or "none"
        self.sink.add(
            self.check_id,
            self.check_name,
            self.description,
            status,
            error_message=error,
            details=details,
            spec_references=references,
        )


class ScopeFromWwwAuthenticateScenario(_ScopeSelectionScenario):
    name = "auth/scope-from-www-authenticate"
    description = "Client uses the scope parameter from the WWW-Authenticate challenge when provided."
    check_id = "scope-from-www-authenticate"
    check_name = "ScopeFromWwwAuthenticate"

    def resource_server_options(self) -> ResourceServerOptions:
        # Scope only in the challenge, not in PRM scopes_supported
        return ResourceServerOptions(required_scopes=[SCOPE_BASIC])

    def grade(self, requested):
        used = SCOPE_BASIC in requested
        error = None if used else f"Requested scope does not include {SCOPE_BASIC} from WWW-Authenticate"
        return CheckStatus.SUCCESS if used else CheckStatus.WARNING, error, {"expectedScope": SCOPE_BASIC}


class ScopeFromScopesSupportedScenario(_ScopeSelectionScenario):
    name = "auth/scope-from-scopes-supported"
    description = (
        "Without a scope in WWW-Authenticate, the client requests every scope "
        "listed in the PRM scopes_supported."
    )
    check_id = "scope-from-scopes-supported"
    check_name = "ScopeFromScopesSupported"

    SCOPES = [SCOPE_BASIC, SCOPE_READ, SCOPE_WRITE]

    def resource_server_options(self) -> ResourceServerOptions:
        return ResourceServerOptions(
            required_scopes=self.SCOPES,
            scopes_supported=self.SCOPES,
            include_scope_in_www_auth=False,
        )

    def grade(self, requested):
        missing = [scope for scope in self.SCOPES if scope not in requested]
        details: Dict[str, Any] = {"scopesSupported": " ".join(self.SCOPES)}
        if missing:
            details["missingScopes"] = " ".join(missing)
            return CheckStatus.WARNING, f"Client did not request {', '.join(missing)}", details
        return CheckStatus.SUCCESS, None, details


class ScopeOmittedWhenUndefinedScenario(_ScopeSelectionScenario):
    name = "auth/scope-omitted-when-undefined"
    description = (
        "With no scope in WWW-Authenticate and no scopes_supported in PRM, the "
        "client omits the scope parameter."
    )
    check_id = "scope-omitted-when-undefined"
    check_name = "ScopeOmittedWhenUndefined"

    def resource_server_options(self) -> ResourceServerOptions:
        return ResourceServerOptions(include_scope_in_www_auth=False)

    def grade(self, requested):
        if requested:
            return CheckStatus.WARNING, "Client sent a scope although none is defined", {}
        return CheckStatus.SUCCESS, None, {}


class ScopeStepUpScenario(HarnessScenario):
    name = "auth/scope-step-up"
    description = (
        "Initialize needs mcp:basic while tools/call needs mcp:write as well; the "
        "client must re-authorize with the scope from the insufficient_scope challenge."
    )

    INITIAL_SCOPES = [SCOPE_BASIC]
    TOOL_CALL_SCOPES = [SCOPE_BASIC, SCOPE_WRITE]

    def resource_server_options(self) -> ResourceServerOptions:
        return ResourceServerOptions(
            required_scopes=self.INITIAL_SCOPES,
            scopes_supported=self.TOOL_CALL_SCOPES,
            method_scopes={"tools/call": self.TOOL_CALL_SCOPES},
        )

    def finalize(self) -> None:
        references = [SpecReferences.MCP_AUTH_SCOPE_CHALLENGE, SpecReferences.RFC_6750_INSUFFICIENT_SCOPE]
        if not self.authorization_requests:
            self.sink.add(
                "scope-step-up",
                "ScopeStepUp",
                "Client did not make an authorization request",
                CheckStatus.FAILURE,
                error_message="No authorization request received",
                spec_references=references,
            )
            return

        unique: List[str] = []
        for params in self.authorization_requests:
            unique.extend(scope for scope in _requested_scopes(params) if scope not in unique)
        escalated = len(unique) >= 2
        self.sink.add(
            "scope-step-up",
            "ScopeStepUp",
            "Client escalates scopes for step-up authorization",
            CheckStatus.SUCCESS if escalated else CheckStatus.WARNING,
            error_message=None if escalated else "Client never requested the additional scope",
            details={"requestedScopes": " ".join(unique), "requestCount": len(self.authorization_requests)},
            spec_references=references,
        )


class ScopeRetryLimitScenario(HarnessScenario):
    name = "auth/scope-retry-limit"
    description = (
        "tools/list requires a scope the authorization server never grants; the "
        "client must stop re-authorizing after a bounded number of attempts."
    )

    def auth_server_options(self) -> AuthServerOptions:
        return AuthServerOptions(grantable_scopes=[SCOPE_BASIC])

    def resource_server_options(self) -> ResourceServerOptions:
        return ResourceServerOptions(
            required_scopes=[SCOPE_BASIC],
            scopes_supported=[SCOPE_BASIC, SCOPE_ADMIN],
            method_scopes={"tools/list": [SCOPE_BASIC, SCOPE_ADMIN]},
        )

    def finalize(self) -> None:
        count = len(self.authorization_requests)
        if count == 0:
            status, error = CheckStatus.FAILURE, "No authorization request received"
        elif count > SCOPE_RETRY_LIMIT:
            status, error = CheckStatus.FAILURE, f"Client made {count} authorization requests for an unobtainable scope"
        else:
            status, error = CheckStatus.SUCCESS, None
        self.sink.add(
            "scope-retry-limit",
            "ScopeRetryLimit",
            "Client bounds step-up retries when the scope is never granted",
            status,
            error_message=error,
            details={"authorizationRequests": count, "limit": SCOPE_RETRY_LIMIT},
            spec_references=[SpecReferences.MCP_AUTH_SCOPE_CHALLENGE],
        )


class _TokenRefreshScenario(HarnessScenario):
    """Access tokens live for ``access_token_lifetime`` seconds; refresh tokens are issued."""

    access_token_lifetime = 2
    rotate_refresh_tokens = False

    def __init__(self, config: Optional[Config] = None):
        super().__init__(config)
        self.refresh_requests: List[Dict[str, Any]] = []

    def auth_server_options(self) -> AuthServerOptions:
        return AuthServerOptions(
            access_token_expires_in=self.access_token_lifetime,
            rotate_refresh_tokens=self.rotate_refresh_tokens,
        )

    def context(self) -> Optional[Dict[str, Any]]:
        return {"name": self.name, "access_token_lifetime": self.access_token_lifetime}

    def on_token_request(self, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        form = data.get("form") or {}
        if form.get("grant_type") == GRANT_REFRESH_TOKEN:
            self.refresh_requests.append(data)
            self.on_refresh(len(self.refresh_requests))
        return super().on_token_request(data)

    def on_refresh(self, attempt: int) -> None:
        """Called for every refresh grant, numbered from 1."""


class TokenRefreshBasicScenario(_TokenRefreshScenario):
    name = "auth/token-refresh-basic"
    description = "Client uses the refresh_token grant once its short-lived access token expires."

    def finalize(self) -> None:
        references = [SpecReferences.OAUTH_2_1_REFRESH_TOKEN]
        if not self.refresh_requests:
            self.sink.add(
                "refresh-token-grant-used",
                "RefreshTokenGrantUsed",
                "Client uses grant_type=refresh_token after the access token expired",
                CheckStatus.FAILURE,
                error_message="Client never used the refresh_token grant",
                spec_references=references,
            )
            return

        self.sink.add(
            "refresh-token-grant-used",
            "RefreshTokenGrantUsed",
            "Client uses grant_type=refresh_token after the access token expired",
            CheckStatus.SUCCESS,
            details={"refreshAttempts": len(self.refresh_requests)},
            spec_references=references,
        )

        # Checks are in arrival order: a valid token after the first refresh grant is a refreshed one
        checks = self.sink.checks
        first_refresh = next(
            i for i, check in enumerate(checks)
            if check.id == "token-request" and (check.details or {}).get("grantType") == GRANT_REFRESH_TOKEN
        )
        used = any(check.id == "valid-bearer-token" for check in checks[first_refresh:])
        self.sink.add(
            "refreshed-token-used-successfully",
            "RefreshedTokenUsedSuccessfully",
            "Client uses the refreshed access token for a later MCP request",
            CheckStatus.SUCCESS if used else CheckStatus.FAILURE,
            error_message=None if used else "No request carried the refreshed access token",
            details={
                "validTokenUses": sum(1 for check in checks if check.id == "valid-bearer-token"),
                "expiredTokenRejections": sum(1 for check in checks if check.id == "expired-bearer-token"),
            },
            spec_references=references,
        )


class TokenRefreshRotationScenario(_TokenRefreshScenario):
    name = "auth/token-refresh-rotation"
    description = (
        "Every refresh grant rotates the refresh token; the client must store the "
        "new one and never present a rotated-out token."
    )
    rotate_refresh_tokens = True

    def context(self) -> Optional[Dict[str, Any]]:
        # Two refreshes show whether the rotated refresh token was kept
        return {**super().context(), "refresh_rounds": 2}

    def on_refresh(self, attempt: int) -> None:
        self.sink.add(
            f"refresh-rotation-attempt-{attempt}",
            f"RefreshRotationAttempt{attempt}",
            f"Client sent refresh_token grant (attempt {attempt}); the server rotates the refresh token",
            CheckStatus.SUCCESS,
            details={"attemptNumber": attempt},
            spec_references=[SpecReferences.OAUTH_2_1_REFRESH_TOKEN_ROTATION],
        )

    def finalize(self) -> None:
        if not self.refresh_requests:
            status, error = CheckStatus.FAILURE, "Client never used the refresh_token grant"
        elif self.sink.has("refresh-token-invalid"):
            status, error = CheckStatus.FAILURE, "Client reused a refresh token that had been rotated out"
        else:
            status, error = CheckStatus.SUCCESS, None
        self.sink.add(
            "refresh-rotation-result",
            "RefreshRotationResult",
            "Client stores rotated refresh tokens",
            status,
            error_message=error,
            details={"refreshAttempts": len(self.refresh_requests)},
            spec_references=[SpecReferences.OAUTH_2_1_REFRESH_TOKEN, SpecReferences.OAUTH_2_1_REFRESH_TOKEN_ROTATION],
        )


# Seconds to wait for a client's metadata document during teardown
CIMD_FETCH_TIMEOUT = 3.0


class OfflineAccessScopeScenario(HarnessScenario):
    name = "auth/offline-access-scope"
    description = (
        "Authorization server offers offline_access; the client should request it "
        "and declare the refresh_token grant in its client metadata."
    )

    def auth_server_options(self) -> AuthServerOptions:
        return AuthServerOptions(
            scopes_supported=[SCOPE_BASIC, OFFLINE_ACCESS_SCOPE],
            client_id_metadata_document_supported=True,
        )

    def resource_server_options(self) -> ResourceServerOptions:
        return ResourceServerOptions(scopes_supported=[SCOPE_BASIC])

    def on_registration_request(self, registration: Dict[str, Any]) -> None:
        super().on_registration_request(registration)
        self._record_grant_types(registration.get("grant_types"), "dynamic client registration")

    def _record_grant_types(self, grant_types: Any, source: str) -> None:
        declared = isinstance(grant_types, list) and GRANT_REFRESH_TOKEN in grant_types
        self.sink.add(
            "sep-2207-client-metadata-grant-types",
            "ClientMetadataGrantTypes",
            f"Client declares refresh_token in grant_types ({source})",
            CheckStatus.SUCCESS if declared else CheckStatus.WARNING,
            error_message=None if declared else "grant_types does not include refresh_token",
            details={"grantTypes": grant_types, "source": source},
            spec_references=[SpecReferences.SEP_2207_OFFLINE_ACCESS, SpecReferences.RFC_7591_DCR_REQUEST],
        )

    def _metadata_document_url(self) -> Optional[str]:
        for params in self.authorization_requests:
            client_id = params.get("client_id") or ""
            if client_id.startswith(("https://", "http://")):
                return client_id
        return None

    async def stop(self) -> None:
        url = self._metadata_document_url()
        if url and not self.sink.has("sep-2207-client-metadata-grant-types"):
            await self._inspect_metadata_document(url)
        await super().stop()

    async def _inspect_metadata_document(self, url: str) -> None:
        try:
            async with httpx.AsyncClient(timeout=CIMD_FETCH_TIMEOUT) as client:
                response = await auth_fetch(url, client=client)
        except httpx.HTTPError as e:
            logger.debug(f"Could not fetch client metadata document {url}: {e}")
            response = None

        if response is None or response.json_object is None:
            self.sink.add(
                "sep-2207-client-metadata-grant-types",
                "ClientMetadataGrantTypes",
                "Client used a metadata document that could not be fetched to verify grant_types",
                CheckStatus.INFO,
                details={"cimdUrl": url},
                spec_references=[SpecReferences.SEP_2207_OFFLINE_ACCESS, SpecReferences.IETF_CIMD],
            )
            return
        self._record_grant_types(response.json_object.get("grant_types"), "client metadata document")

    def finalize(self) -> None:
        references = [SpecReferences.SEP_2207_OFFLINE_ACCESS, SpecReferences.OIDC_OFFLINE_ACCESS]
        if not self.sink.has("sep-2207-client-metadata-grant-types"):
            self.sink.add(
                "sep-2207-client-metadata-grant-types",
                "ClientMetadataGrantTypes",
                "Client did not use DCR or a fetchable metadata document; grant_types could not be inspected",
                CheckStatus.INFO,
                spec_references=[SpecReferences.SEP_2207_OFFLINE_ACCESS],
            )

        if not self.authorization_requests:
            self.sink.add(
                "sep-2207-offline-access-requested",
                "OfflineAccessRequested",
                "Client did not make an authorization request",
                CheckStatus.FAILURE,
                error_message="No authorization request received",
                spec_references=references,
            )
            return

        params = self.authorization_requests[0]
        requested = OFFLINE_ACCESS_SCOPE in _requested_scopes(params)
        self.sink.add(
            "sep-2207-offline-access-requested",
            "OfflineAccessRequested",
            "Client requests offline_access when the authorization server supports it",
            CheckStatus.SUCCESS if requested else CheckStatus.INFO,
            details={"requestedScope": params.get("scope") or "none"},
            spec_references=references,
        )


class OfflineAccessNotSupportedScenario(HarnessScenario):
    name = "auth/offline-access-not-supported"
    description = "Authorization server does not list offline_access; the client must not request it."

    SCOPES = [SCOPE_BASIC, SCOPE_READ]

    def auth_server_options(self) -> AuthServerOptions:
        return AuthServerOptions(scopes_supported=self.SCOPES)

    def resource_server_options(self) -> ResourceServerOptions:
        return ResourceServerOptions(scopes_supported=self.SCOPES)

    def finalize(self) -> None:
        references = [SpecReferences.SEP_2207_OFFLINE_ACCESS]
        if not self.authorization_requests:
            self.sink.add(
                "sep-2207-offline-access-not-requested",
                "OfflineAccessNotRequested",
                "Client did not make an authorization request",
                CheckStatus.FAILURE,
                error_message="No authorization request received",
                spec_references=references,
            )
            return

        params = self.authorization_requests[0]
        requested = OFFLINE_ACCESS_SCOPE in _requested_scopes(params)
        self.sink.add(
            "sep-2207-offline-access-not-requested",
            "OfflineAccessNotRequested",
            "Client only requests offline_access when the authorization server lists it",
            CheckStatus.FAILURE if requested else CheckStatus.SUCCESS,
            error_message="Client requested offline_access which the server does not support" if requested else None,
            details={"requestedScope": params.get("scope") or "none"},
            spec_references=references,
        )


class MarchSpecBackcompatScenario(HarnessScenario):
    """2025-03-26 deployment: no PRM, authorization endpoints on the MCP server itself."""

    name = "auth/march-spec-backcompat"
    description = (
        "Server publishes no protected resource metadata and serves OAuth metadata "
        "at its own root, as in the 2025-03-26 revision."
    )
    expected_ids = AUTH_FLOW_CHECKS

    def issuer(self) -> str:
        return self.resource_server.url

    def resource_server_options(self) -> ResourceServerOptions:
        return ResourceServerOptions(prm_path=None, include_prm_in_www_auth=False)

    def build_auth_app(self) -> FastAPI:
        return create_auth_server(
            self.sink,
            self.resource_server.get_url,
            self.auth_server_options(),
            token_verifier=self.verifier,
            on_authorization_request=self.on_authorization_request,
            on_token_request=self.on_token_request,
            on_registration_request=self.on_registration_request,
        )

    def _missing_prm(self, check_id: str, name: str, location: str):
        async def handler(request: Request):
            self.sink.add(
                check_id,
                name,
                f"Client looked for PRM at the {location} location, which this server does not publish",
                CheckStatus.SUCCESS,
                details={"path": request.url.path},
                spec_references=[SpecReferences.MCP_AUTH_LEGACY_DISCOVERY],
            )
            return JSONResponse(
                status_code=404,
                content={"error": "not_found", "error_description": "Protected resource metadata not available"},
            )

        return handler

    def build_resource_app(self) -> FastAPI:
        app = super().build_resource_app()
        app.add_api_route(PRM_WELL_KNOWN, self._missing_prm("no-prm-root", "NoPRMRoot", "root"), methods=["GET"])
        app.add_api_route(PATH_BASED_PRM, self._missing_prm("no-prm-path", "NoPRMPath", "path-based"), methods=["GET"])
        # Routes above take precedence over the mounted authorization server
        app.mount("/", self.build_auth_app())
        return app

    async def start(self) -> ScenarioUrls:
        self._mark_started()
        try:
            await self.resource_server.start(self.build_resource_app())
        except BaseException:
            await self.stop()
            raise
        return ScenarioUrls(server_url=f"{self.resource_server.url}{MCP_PATH}", context=self.context())
