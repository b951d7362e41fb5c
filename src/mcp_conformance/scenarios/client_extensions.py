"""Machine-to-machine and enterprise authorization extensions.

Client credentials with either a signed JWT assertion or a client secret,
and cross-app access: the client trades an IdP ID token for an identity
assertion grant (ID-JAG) at the IdP, then presents that grant to the MCP
authorization server with the JWT bearer grant.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..assertions import (
    GRANT_CLIENT_CREDENTIALS,
    GRANT_JWT_BEARER,
    GRANT_TOKEN_EXCHANGE,
    ID_JAG_TYP,
    TOKEN_TYPE_ID_JAG,
    TOKEN_TYPE_ID_TOKEN,
    generate_signing_key,
    private_key_pem,
    sign_jwt,
    verify_jwt,
)
from ..config import Config
from ..exceptions import InvalidAssertionError
from ..harness import AuthServerOptions, ServerLifecycle
from ..harness.auth_server import read_form
from ..models import CheckStatus, ScenarioUrls
from ..spec_references import SpecReferences
from .base import HarnessScenario
from .client_auth import _decode_basic

logger = logging.getLogger(__name__)

CLIENT_CREDENTIALS_CLIENT_ID = "conformance-test-client"
CLIENT_CREDENTIALS_CLIENT_SECRET = "conformance-test-secret"

XAA_CLIENT_ID = "conformance-test-xaa-client"
XAA_CLIENT_SECRET = "conformance-test-xaa-secret"
IDP_CLIENT_ID = "conformance-test-idp-client"
IDP_SUBJECT = "conformance-test-user"

ASSERTION_ALGORITHM = "RS256"
IDP_ALGORITHM = "ES256"


def _rejection(error: str, description: str, status_code: int = 400) -> Dict[str, Any]:
    return {"error": error, "error_description": description, "status_code": status_code}


class ClientCredentialsScenario(HarnessScenario):
    """Client credentials grant authenticated with ``private_key_jwt`` or ``client_secret_basic``."""

    SLUGS = {"private_key_jwt": "jwt", "client_secret_basic": "basic"}

    expected_ids = (
        "authorization-server-metadata",
        "token-request",
        "client-credentials-grant",
        "client-credentials-auth",
    )

    def __init__(self, method: str, config: Optional[Config] = None):
        if method not in self.SLUGS:
            raise ValueError(f"Unknown client credentials auth method: {method}")
        self.method = method
        self.name = f"auth/client-credentials-{self.SLUGS[method]}"
        self.description = (
            f"Client obtains a token with the client_credentials grant, authenticating with {method}."
        )
        self._signing_key = None
        super().__init__(config)

    @property
    def signing_key(self):
        # Generated on first use; registration builds throwaway instances
        if self._signing_key is None:
            self._signing_key = generate_signing_key(ASSERTION_ALGORITHM)
        return self._signing_key

    def auth_server_options(self) -> AuthServerOptions:
        return AuthServerOptions(
            grant_types_supported=[GRANT_CLIENT_CREDENTIALS],
            token_endpoint_auth_methods_supported=[self.method],
            token_endpoint_auth_signing_alg_values_supported=(
                [ASSERTION_ALGORITHM] if self.method == "private_key_jwt" else None
            ),
            include_registration_endpoint=False,
            code_challenge_methods_supported=None,
        )

    def context(self) -> Optional[Dict[str, Any]]:
        if self.method == "private_key_jwt":
            return {
                "name": self.name,
                "client_id": CLIENT_CREDENTIALS_CLIENT_ID,
                "private_key_pem": private_key_pem(self.signing_key),
                "signing_algorithm": ASSERTION_ALGORITHM,
            }
        return {
            "name": self.name,
            "client_id": CLIENT_CREDENTIALS_CLIENT_ID,
            "client_secret": CLIENT_CREDENTIALS_CLIENT_SECRET,
        }

    def on_token_request(self, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        super().on_token_request(data)
        form = data.get("form") or {}
        grant_type = form.get("grant_type")
        if grant_type != GRANT_CLIENT_CREDENTIALS:
            self.sink.add(
                "client-credentials-grant",
                "ClientCredentialsGrant",
                "Client used the client_credentials grant",
                CheckStatus.FAILURE,
                error_message=f"Expected grant_type=client_credentials, got {grant_type}",
                spec_references=[SpecReferences.OAUTH_2_1_CLIENT_CREDENTIALS],
            )
            return _rejection("unsupported_grant_type", "Only client_credentials is supported")

        self.sink.add(
            "client-credentials-grant",
            "ClientCredentialsGrant",
            "Client used the client_credentials grant",
            CheckStatus.SUCCESS,
            details={"scope": form.get("scope")},
            spec_references=[SpecReferences.OAUTH_2_1_CLIENT_CREDENTIALS],
        )

        if self.method == "private_key_jwt":
            error = self._check_assertion(form)
            references = [SpecReferences.RFC_7523_CLIENT_ASSERTION]
        else:
            error = self._check_basic(data.get("authorization") or "")
            references = [SpecReferences.OAUTH_2_1_CLIENT_AUTH]
        self.sink.add(
            "client-credentials-auth",
            "ClientCredentialsAuth",
            f"Client authenticated to the token endpoint with {self.method}",
            CheckStatus.FAILURE if error else CheckStatus.SUCCESS,
            error_message=error,
            details={"method": self.method},
            spec_references=references,
        )
        if error:
            return _rejection("invalid_client", error, 401)
        return {"scopes": (form.get("scope") or "").split()}

    def _check_assertion(self, form: Dict[str, str]) -> Optional[str]:
        assertion = form.get("client_assertion")
        if not assertion:
            return "Token request has no client_assertion"
        token_endpoint = f"{self.auth_server.url}/token"
        try:
            verify_jwt(
                assertion,
                self.signing_key,
                algorithms=[ASSERTION_ALGORITHM],
                claims_options={
                    "iss": {"essential": True, "value": CLIENT_CREDENTIALS_CLIENT_ID},
                    "sub": {"essential": True, "value": CLIENT_CREDENTIALS_CLIENT_ID},
                    "aud": {"essential": True, "values": [token_endpoint, self.auth_server.url]},
                    "exp": {"essential": True},
                },
            )
        except InvalidAssertionError as e:
            return f"Client assertion rejected: {e}"
        return None

    def _check_basic(self, authorization: str) -> Optional[str]:
        if not authorization.lower().startswith("basic "):
            return "Token request has no HTTP Basic credentials"
        if _decode_basic(authorization) != (CLIENT_CREDENTIALS_CLIENT_ID, CLIENT_CREDENTIALS_CLIENT_SECRET):
            return "HTTP Basic credentials do not match the pre-registered client"
        return None

    def finalize(self) -> None:
        redirected = bool(self.authorization_requests)
        self.sink.add(
            "client-credentials-no-authorization-request",
            "ClientCredentialsNoAuthorizationRequest",
            "Client skips the authorization endpoint for the client_credentials grant",
            CheckStatus.WARNING if redirected else CheckStatus.SUCCESS,
            error_message="Client made an authorization request" if redirected else None,
            spec_references=[SpecReferences.OAUTH_2_1_CLIENT_CREDENTIALS],
        )


class CrossAppAccessScenario(HarnessScenario):
    name = "auth/cross-app-access-complete-flow"
    description = (
        "Client exchanges an IdP ID token for an ID-JAG at the IdP (RFC 8693), "
        "then trades the ID-JAG for an access token with the JWT bearer grant (RFC 7523)."
    )
    expected_ids = (
        "authorization-server-metadata",
        "complete-flow-token-exchange",
        "complete-flow-jwt-bearer",
    )

    def __init__(self, config: Optional[Config] = None):
        super().__init__(config)
        self.idp_server = ServerLifecycle(f"{self.name} idp", config=self.config)
        self._idp_key = None
        self.exchange_requests: List[Dict[str, str]] = []

    @property
    def idp_key(self):
        if self._idp_key is None:
            self._idp_key = generate_signing_key(IDP_ALGORITHM)
        return self._idp_key

    def auth_server_options(self) -> AuthServerOptions:
        return AuthServerOptions(
            grant_types_supported=[GRANT_JWT_BEARER],
            token_endpoint_auth_methods_supported=["client_secret_basic"],
            include_registration_endpoint=False,
            code_challenge_methods_supported=None,
        )

    def id_token(self) -> str:
        return sign_jwt(
            {"iss": self.idp_server.url, "sub": IDP_SUBJECT, "aud": IDP_CLIENT_ID},
            self.idp_key,
            IDP_ALGORITHM,
        )

    def context(self) -> Optional[Dict[str, Any]]:
        return {
            "name": self.name,
            "client_id": XAA_CLIENT_ID,
            "client_secret": XAA_CLIENT_SECRET,
            "idp_client_id": IDP_CLIENT_ID,
            "idp_id_token": self.id_token(),
            "idp_issuer": self.idp_server.url,
            "idp_token_endpoint": f"{self.idp_server.url}/token",
        }

    def _exchange_error(self, form: Dict[str, str]) -> Optional[str]:
        if form.get("grant_type") != GRANT_TOKEN_EXCHANGE:
            return f"Expected the token exchange grant, got {form.get('grant_type')}"
        if form.get("requested_token_type") != TOKEN_TYPE_ID_JAG:
            return f"requested_token_type must be {TOKEN_TYPE_ID_JAG}"
        if form.get("subject_token_type") != TOKEN_TYPE_ID_TOKEN:
            return f"subject_token_type must be {TOKEN_TYPE_ID_TOKEN}"
        if form.get("audience") != self.issuer():
            return f"audience must be the authorization server issuer {self.issuer()}"
        try:
            verify_jwt(
                form.get("subject_token", ""),
                self.idp_key,
                algorithms=[IDP_ALGORITHM],
                claims_options={
                    "iss": {"essential": True, "value": self.idp_server.url},
                    "aud": {"essential": True, "value": IDP_CLIENT_ID},
                },
            )
        except InvalidAssertionError as e:
            return f"subject_token is not the issued ID token: {e}"
        return None

    def build_idp_app(self) -> FastAPI:
        app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

        @app.post("/token")
        async def token_exchange(request: Request):
            form = await read_form(request)
            self.exchange_requests.append(form)
            error = self._exchange_error(form)
            self.sink.add(
                "complete-flow-token-exchange",
                "CompleteFlowTokenExchange",
                "Client exchanged the IdP ID token for an ID-JAG",
                CheckStatus.FAILURE if error else CheckStatus.SUCCESS,
                error_message=error,
                details={"audience": form.get("audience"), "resource": form.get("resource")},
                spec_references=[SpecReferences.RFC_8693_TOKEN_EXCHANGE, SpecReferences.SEP_990_CROSS_APP_ACCESS],
            )
            if error:
                return JSONResponse(status_code=400, content={"error": "invalid_request", "error_description": error})

            claims = {"iss": self.idp_server.url, "sub": IDP_SUBJECT, "aud": form["audience"], "client_id": XAA_CLIENT_ID}
            if form.get("resource"):
                claims["resource"] = form["resource"]
            id_jag = sign_jwt(
                claims,
                self.idp_key,
                IDP_ALGORITHM,
                typ=ID_JAG_TYP,
            )
            return {
                "issued_token_type": TOKEN_TYPE_ID_JAG,
                "access_token": id_jag,
                "token_type": "N_A",
                "expires_in": 300,
            }

        return app

    def on_token_request(self, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        super().on_token_request(data)
        form = data.get("form") or {}
        error = self._jwt_bearer_error(form, data.get("authorization") or "")
        self.sink.add(
            "complete-flow-jwt-bearer",
            "CompleteFlowJwtBearer",
            "Client presented the ID-JAG to the authorization server with the JWT bearer grant",
            CheckStatus.FAILURE if error else CheckStatus.SUCCESS,
            error_message=error,
            details={"grantType": form.get("grant_type")},
            spec_references=[SpecReferences.RFC_7523_JWT_BEARER, SpecReferences.IETF_ID_JAG],
        )
        if error:
            return _rejection("invalid_grant", error)
        return {"scopes": []}

    def _jwt_bearer_error(self, form: Dict[str, str], authorization: str) -> Optional[str]:
        if form.get("grant_type") != GRANT_JWT_BEARER:
            return f"Expected the JWT bearer grant, got {form.get('grant_type')}"
        if _decode_basic(authorization) != (XAA_CLIENT_ID, XAA_CLIENT_SECRET):
            return "Client did not authenticate with its client_secret_basic credentials"
        try:
            claims = verify_jwt(
                form.get("assertion", ""),
                self.idp_key,
                algorithms=[IDP_ALGORITHM],
                claims_options={
                    "iss": {"essential": True, "value": self.idp_server.url},
                    "aud": {"essential": True, "value": self.issuer()},
                },
            )
        except InvalidAssertionError as e:
            return f"Assertion is not a valid ID-JAG: {e}"
        if claims.get("client_id") != XAA_CLIENT_ID:
            return f"ID-JAG client_id must be {XAA_CLIENT_ID}"
        if claims.header.get("typ") != ID_JAG_TYP:
            return f"Assertion typ must be {ID_JAG_TYP}"
        return None

    async def start(self) -> ScenarioUrls:
        # The context handed out by the harness start embeds the IdP URL
        await self.idp_server.start(self.build_idp_app())
        try:
            return await super().start()
        except BaseException:
            await self.idp_server.stop()
            raise

    async def stop(self) -> None:
        await super().stop()
        await self.idp_server.stop()
