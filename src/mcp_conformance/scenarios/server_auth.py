"""Server-targeting authorization scenarios.

Each scenario inspects one aspect of an OAuth-protected MCP server's
authorization surface (protected resource metadata, authorization server
metadata, 401 challenges) and records one terminal check per assertion.
Assertions whose prerequisite is unavailable are recorded as SKIPPED.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlsplit

import httpx

from ..auth_fetch import AuthFetchResponse, auth_fetch, build_prm_url
from ..discovery import build_as_metadata_discovery_attempts, fetch_as_metadata, fetch_prm
from ..models import CheckStatus, DiscoveryKind
from ..spec_references import SpecReferences
from .base import ServerScenario

logger = logging.getLogger(__name__)

VALID_AUTH_METHODS = (
    "none",
    "client_secret_basic",
    "client_secret_post",
    "client_secret_jwt",
    "private_key_jwt",
    "tls_client_auth",
    "self_signed_tls_client_auth",
)

SECURE_SIGNING_ALGORITHMS = (
    "ES256", "ES384", "ES512",
    "RS256", "RS384", "RS512",
    "PS256", "PS384", "PS512",
)

STANDARD_GRANT_TYPES = (
    "authorization_code",
    "refresh_token",
    "client_credentials",
    "urn:ietf:params:oauth:grant-type:device_code",
    "urn:ietf:params:oauth:grant-type:jwt-bearer",
    "urn:ietf:params:oauth:grant-type:token-exchange",
)

DEPRECATED_GRANT_TYPES = ("implicit", "password")

VALID_BEARER_ERRORS = ("invalid_request", "invalid_token", "insufficient_scope")

# RFC 6749 scope-token: %x21 / %x23-5B / %x5D-7E
SCOPE_TOKEN = re.compile(r"^[\x21\x23-\x5B\x5D-\x7E]+$")

REQUEST_PROTOCOL_VERSION = "2025-03-26"


def is_absolute_url(value: Any) -> bool:
    """True if ``value`` is a string parseable as an absolute URL."""
    if not isinstance(value, str) or not value:
        return False
    try:
        parts = urlsplit(value)
    except ValueError:
        return False
    return bool(parts.scheme) and bool(parts.netloc)


def type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def initialize_request(request_id: int = 1, client_name: str = "conformance-auth-test") -> Dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "method": "initialize",
        "params": {
            "protocolVersion": REQUEST_PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": {"name": client_name, "version": "1.0.0"},
        },
        "id": request_id,
    }


def tools_list_request(request_id: int) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "method": "tools/list", "params": {}, "id": request_id}


async def first_ok_response(
    urls: Sequence[str], client: httpx.AsyncClient
) -> Tuple[Optional[AuthFetchResponse], Optional[str]]:
    """Return the first HTTP 200 response among ``urls`` regardless of body."""
    for url in urls:
        try:
            response = await auth_fetch(url, client=client)
        except httpx.HTTPError as e:
            logger.debug(f"Request to {url} failed: {e}")
            continue
        if response.status == 200:
            return response, url
    return None, None


class AuthPrmDiscoveryScenario(ServerScenario):
    name = "server/auth-prm-discovery"
    description = (
        "Server exposes Protected Resource Metadata at the path-based or root "
        "well-known location with the required resource and authorization_servers fields."
    )

    async def drive(self, server_url: str, client: httpx.AsyncClient) -> None:
        path_based_url = build_prm_url(server_url, True)
        root_url = build_prm_url(server_url, False)
        candidates = [path_based_url] if path_based_url == root_url else [path_based_url, root_url]

        response, used_url = await first_ok_response(candidates, client)
        if response is None:
            self.sink.add(
                "auth-prm-endpoint-exists",
                "PRM Endpoint Exists",
                "Server exposes Protected Resource Metadata at well-known endpoint",
                CheckStatus.FAILURE,
                error_message=f"No PRM found at {path_based_url} or {root_url}",
                details={"triedUrls": [path_based_url, root_url]},
                spec_references=[SpecReferences.RFC_9728_PRM_DISCOVERY, SpecReferences.MCP_AUTH_SERVER_LOCATION],
            )
            return

        self.sink.add(
            "auth-prm-endpoint-exists",
            "PRM Endpoint Exists",
            "Server exposes Protected Resource Metadata at well-known endpoint",
            CheckStatus.SUCCESS,
            details={"url": used_url, "status": response.status},
            spec_references=[SpecReferences.RFC_9728_PRM_DISCOVERY, SpecReferences.MCP_AUTH_PRM_DISCOVERY],
        )

        prm = response.json_object
        if prm is None:
            self.sink.add(
                "auth-prm-valid-json",
                "PRM Valid JSON",
                "PRM response is a valid JSON object",
                CheckStatus.FAILURE,
                error_message="Response is not a JSON object",
                details={"rawBody": response.raw_body[:500]},
                spec_references=[SpecReferences.RFC_9728_PRM_RESPONSE],
            )
            return
        self.sink.add(
            "auth-prm-valid-json",
            "PRM Valid JSON",
            "PRM response is a valid JSON object",
            CheckStatus.SUCCESS,
            spec_references=[SpecReferences.RFC_9728_PRM_RESPONSE],
        )

        resource = prm.get("resource")
        valid_resource = isinstance(resource, str) and bool(resource)
        self.sink.add(
            "auth-prm-has-resource",
            "PRM Has Resource Field",
            'PRM contains required "resource" identifier',
            CheckStatus.SUCCESS if valid_resource else CheckStatus.FAILURE,
            error_message=None if valid_resource else 'Missing or invalid "resource" field (must be non-empty string)',
            details={"resource": resource},
            spec_references=[SpecReferences.RFC_9728_PRM_RESPONSE],
        )

        servers = prm.get("authorization_servers")
        if not isinstance(servers, list) or not servers:
            self.sink.add(
                "auth-prm-has-authorization-servers",
                "PRM Has Authorization Servers",
                'PRM contains required "authorization_servers" array',
                CheckStatus.FAILURE,
                error_message='Missing or invalid "authorization_servers" field (must be non-empty array)',
                details={"authorization_servers": servers},
                spec_references=[SpecReferences.RFC_9728_PRM_RESPONSE],
            )
        else:
            invalid = [str(server) for server in servers if not is_absolute_url(server)]
            self.sink.add(
                "auth-prm-has-authorization-servers",
                "PRM Has Authorization Servers",
                'PRM contains required "authorization_servers" array with valid URLs',
                CheckStatus.FAILURE if invalid else CheckStatus.SUCCESS,
                error_message=f"Invalid URLs in authorization_servers: {', '.join(invalid)}" if invalid else None,
                details={"authorization_servers": servers, **({"invalidUrls": invalid} if invalid else {})},
                spec_references=[SpecReferences.RFC_9728_PRM_RESPONSE],
            )

        if "scopes_supported" not in prm:
            return
        scopes = prm["scopes_supported"]
        if not isinstance(scopes, list):
            self.sink.add(
                "auth-prm-scopes-supported-valid",
                "PRM Scopes Supported Valid",
                'PRM "scopes_supported" field is a valid array (if present)',
                CheckStatus.FAILURE,
                error_message='"scopes_supported" must be an array when present',
                details={"scopes_supported": scopes},
                spec_references=[SpecReferences.RFC_9728_PRM_RESPONSE],
            )
            return

        non_strings = [s for s in scopes if not isinstance(s, str)]
        self.sink.add(
            "auth-prm-scopes-supported-valid",
            "PRM Scopes Supported Valid",
            'PRM "scopes_supported" contains only string values',
            CheckStatus.WARNING if non_strings else CheckStatus.SUCCESS,
            error_message="Some scopes are not strings" if non_strings else None,
            details={"scopes_supported": scopes},
            spec_references=[SpecReferences.RFC_9728_PRM_RESPONSE],
        )


class AuthAsMetadataDiscoveryScenario(ServerScenario):
    name = "server/auth-as-metadata-discovery"
    description = (
        "Authorization server named in the PRM publishes RFC 8414 or OpenID "
        "Connect metadata with the fields needed for the authorization code flow."
    )

    async def drive(self, server_url: str, client: httpx.AsyncClient) -> None:
        prm_result = await fetch_prm(server_url, client=client)
        if not prm_result.success:
            self.sink.add(
                "auth-as-prm-prerequisite",
                "PRM Prerequisite",
                "Valid PRM with authorization_servers required for AS discovery",
                CheckStatus.SKIPPED,
                error_message="Cannot fetch valid PRM - run auth-prm-discovery first",
                spec_references=[SpecReferences.RFC_9728_PRM_DISCOVERY],
            )
            return

        servers = prm_result.metadata.get("authorization_servers")
        if not isinstance(servers, list) or not servers or not isinstance(servers[0], str):
            self.sink.add(
                "auth-as-prm-prerequisite",
                "PRM Prerequisite",
                "Valid PRM with authorization_servers required for AS discovery",
                CheckStatus.SKIPPED,
                error_message="PRM missing authorization_servers array",
                spec_references=[SpecReferences.RFC_9728_PRM_RESPONSE],
            )
            return

        self.sink.add(
            "auth-as-prm-prerequisite",
            "PRM Prerequisite",
            "Valid PRM with authorization_servers found",
            CheckStatus.SUCCESS,
            details={"authorizationServers": servers},
        )

        as_url = servers[0]
        attempts = build_as_metadata_discovery_attempts(as_url)
        tried = [attempt.url for attempt in attempts]
        response, used_url = await first_ok_response(tried, client)
        if response is None:
            self.sink.add(
                "auth-as-endpoint-exists",
                "AS Metadata Endpoint Exists",
                "Authorization Server exposes metadata at well-known endpoint",
                CheckStatus.FAILURE,
                error_message=f"No AS metadata found at {' or '.join(tried)}",
                details={"asUrl": as_url, "triedUrls": tried},
                spec_references=[SpecReferences.RFC_8414_AS_DISCOVERY, SpecReferences.OIDC_DISCOVERY],
            )
            return

        attempt = next(a for a in attempts if a.url == used_url)
        self.sink.add(
            "auth-as-endpoint-exists",
            "AS Metadata Endpoint Exists",
            "Authorization Server exposes metadata at well-known endpoint",
            CheckStatus.SUCCESS,
            details={"url": used_url, "discoveryType": attempt.kind.value, "variant": attempt.variant.value},
            spec_references=[
                SpecReferences.OIDC_DISCOVERY if attempt.kind == DiscoveryKind.OIDC
                else SpecReferences.RFC_8414_AS_DISCOVERY
            ],
        )

        metadata = response.json_object
        if metadata is None:
            self.sink.add(
                "auth-as-valid-json",
                "AS Metadata Valid JSON",
                "AS metadata response is a valid JSON object",
                CheckStatus.FAILURE,
                error_message="Response is not a JSON object",
                details={"rawBody": response.raw_body[:500]},
                spec_references=[SpecReferences.RFC_8414_AS_RESPONSE],
            )
            return
        self.sink.add(
            "auth-as-valid-json",
            "AS Metadata Valid JSON",
            "AS metadata response is a valid JSON object",
            CheckStatus.SUCCESS,
            spec_references=[SpecReferences.RFC_8414_AS_RESPONSE],
        )

        self._check_issuer(metadata, as_url)
        self._check_endpoint(metadata, "authorization_endpoint", "auth-as-has-authorization-endpoint")
        self._check_endpoint(metadata, "token_endpoint", "auth-as-has-token-endpoint")
        self._check_response_types(metadata)
        self._check_registration_endpoint(metadata)

    def _check_issuer(self, metadata: Dict[str, Any], as_url: str) -> None:
        issuer = metadata.get("issuer")
        if not isinstance(issuer, str) or not issuer:
            self.sink.add(
                "auth-as-has-issuer",
                "AS Metadata Has Issuer",
                'AS metadata contains required "issuer" field',
                CheckStatus.FAILURE,
                error_message='Missing or invalid "issuer" field (must be non-empty string)',
                details={"issuer": issuer},
                spec_references=[SpecReferences.RFC_8414_AS_FIELDS],
            )
            return

        matches = issuer in (as_url, as_url.rstrip("/")) or as_url.startswith(issuer)
        self.sink.add(
            "auth-as-has-issuer",
            "AS Metadata Has Issuer",
            'AS metadata contains required "issuer" field',
            CheckStatus.SUCCESS if matches else CheckStatus.WARNING,
            error_message=None if matches else f'Issuer "{issuer}" may not match AS URL "{as_url}"',
            details={"issuer": issuer, "asUrl": as_url, "matches": matches},
            spec_references=[SpecReferences.RFC_8414_AS_FIELDS],
        )

    def _check_endpoint(self, metadata: Dict[str, Any], field: str, check_id: str) -> None:
        value = metadata.get(field)
        name = f"AS Metadata Has {field.replace('_', ' ').title()}"
        description = f'AS metadata contains required "{field}" field'
        if not isinstance(value, str) or not value:
            self.sink.add(
                check_id,
                name,
                description,
                CheckStatus.FAILURE,
                error_message=f'Missing or invalid "{field}" field',
                details={field: value},
                spec_references=[SpecReferences.RFC_8414_AS_FIELDS],
            )
            return

        valid = is_absolute_url(value)
        self.sink.add(
            check_id,
            name,
            description,
            CheckStatus.SUCCESS if valid else CheckStatus.WARNING,
            error_message=None if valid else f"{field} is not a valid URL",
            details={field: value},
            spec_references=[SpecReferences.RFC_8414_AS_FIELDS],
        )

    def _check_response_types(self, metadata: Dict[str, Any]) -> None:
        response_types = metadata.get("response_types_supported")
        description = 'AS metadata contains "response_types_supported" with "code"'
        if not isinstance(response_types, list):
            self.sink.add(
                "auth-as-response-types-supported",
                "AS Supports Code Response Type",
                description,
                CheckStatus.FAILURE,
                error_message='Missing or invalid "response_types_supported" array',
                details={"response_types_supported": response_types},
                spec_references=[SpecReferences.RFC_8414_AS_FIELDS],
            )
            return

        has_code = "code" in response_types
        self.sink.add(
            "auth-as-response-types-supported",
            "AS Supports Code Response Type",
            description,
            CheckStatus.SUCCESS if has_code else CheckStatus.FAILURE,
            error_message=None if has_code else (
                '"response_types_supported" must include "code" for authorization code flow'
            ),
            details={"response_types_supported": response_types, "hasCode": has_code},
            spec_references=[SpecReferences.RFC_8414_AS_FIELDS, SpecReferences.OAUTH_2_1_AUTHORIZATION_ENDPOINT],
        )

    def _check_registration_endpoint(self, metadata: Dict[str, Any]) -> None:
        if "registration_endpoint" not in metadata:
            self.sink.add(
                "auth-as-registration-endpoint",
                "AS Registration Endpoint",
                "AS metadata advertises a dynamic client registration endpoint",
                CheckStatus.WARNING,
                error_message="No registration_endpoint - DCR not supported (CIMD may be alternative)",
                spec_references=[SpecReferences.RFC_7591_DCR_ENDPOINT, SpecReferences.MCP_AUTH_DCR],
            )
            return

        endpoint = metadata["registration_endpoint"]
        valid = is_absolute_url(endpoint)
        self.sink.add(
            "auth-as-registration-endpoint",
            "AS Registration Endpoint",
            "AS metadata advertises a dynamic client registration endpoint",
            CheckStatus.SUCCESS if valid else CheckStatus.WARNING,
            error_message=None if valid else "registration_endpoint is not a valid URL",
            details={"registration_endpoint": endpoint},
            spec_references=[SpecReferences.RFC_7591_DCR_ENDPOINT, SpecReferences.MCP_AUTH_DCR],
        )


class AuthDiscoveryMechanismScenario(ServerScenario):
    name = "server/auth-discovery-mechanism"
    description = (
        "Authorization server metadata is reachable through RFC 8414 and/or "
        "OpenID Connect discovery, and both agree when both are offered."
    )

    async def drive(self, server_url: str, client: httpx.AsyncClient) -> None:
        prm_result = await fetch_prm(server_url, client=client)
        if not prm_result.success:
            self.sink.add(
                "auth-discovery-prm-prerequisite",
                "PRM Prerequisite",
                "Valid PRM required to locate the authorization server",
                CheckStatus.SKIPPED,
                error_message=prm_result.error or "Cannot fetch PRM - run auth-prm-discovery first",
                spec_references=[SpecReferences.RFC_9728_PRM_DISCOVERY],
            )
            return

        servers = prm_result.metadata.get("authorization_servers")
        if not isinstance(servers, list) or not servers or not isinstance(servers[0], str):
            self.sink.add(
                "auth-discovery-prm-prerequisite",
                "PRM Prerequisite",
                "Valid PRM required to locate the authorization server",
                CheckStatus.SKIPPED,
                error_message="PRM missing authorization_servers array",
                spec_references=[SpecReferences.RFC_9728_PRM_RESPONSE],
            )
            return

        self.sink.add(
            "auth-discovery-prm-prerequisite",
            "PRM Prerequisite",
            "Valid PRM found",
            CheckStatus.SUCCESS,
            details={"authorizationServers": servers},
        )

        as_url = servers[0]
        attempts = build_as_metadata_discovery_attempts(as_url)
        tried = [a.url for a in attempts]
        family_urls = {
            kind: [a.url for a in attempts if a.kind == kind] for kind in (DiscoveryKind.RFC8414, DiscoveryKind.OIDC)
        }

        found: Dict[DiscoveryKind, Tuple[str, Dict[str, Any]]] = {}
        for attempt in attempts:
            if attempt.kind in found:
                continue
            try:
                response = await auth_fetch(attempt.url, client=client)
            except httpx.HTTPError as e:
                logger.debug(f"Discovery request to {attempt.url} failed: {e}")
                continue
            if response.status == 200 and response.json_object is not None:
                found[attempt.kind] = (attempt.url, response.json_object)

        for kind, check_id, name, reference in (
            (DiscoveryKind.RFC8414, "auth-discovery-rfc8414", "RFC 8414 Discovery", SpecReferences.RFC_8414_AS_DISCOVERY),
            (DiscoveryKind.OIDC, "auth-discovery-oidc", "OIDC Discovery", SpecReferences.OIDC_DISCOVERY),
        ):
            if kind in found:
                self.sink.add(
                    check_id,
                    name,
                    f"Authorization server metadata available via {kind.value}",
                    CheckStatus.SUCCESS,
                    details={"url": found[kind][0], "triedUrls": family_urls[kind]},
                    spec_references=[reference],
                )
            else:
                self.sink.add(
                    check_id,
                    name,
                    f"Authorization server metadata available via {kind.value}",
                    CheckStatus.INFO,
                    error_message=f"No response from {' or '.join(family_urls[kind])}",
                    details={"triedUrls": family_urls[kind]},
                    spec_references=[reference],
                )

        has_rfc8414 = DiscoveryKind.RFC8414 in found
        has_oidc = DiscoveryKind.OIDC in found
        if not found:
            self.sink.add(
                "auth-discovery-any-available",
                "Discovery Available",
                "At least one AS metadata discovery mechanism is available",
                CheckStatus.FAILURE,
                error_message="No discovery endpoint found - AS metadata not discoverable",
                details={
                    "rfc8414_urls": family_urls[DiscoveryKind.RFC8414],
                    "oidc_urls": family_urls[DiscoveryKind.OIDC],
                    "triedUrls": tried,
                },
                spec_references=[SpecReferences.MCP_AUTH_SERVER_METADATA],
            )
            return

        self.sink.add(
            "auth-discovery-any-available",
            "Discovery Available",
            "At least one AS metadata discovery mechanism is available",
            CheckStatus.SUCCESS,
            details={
                "rfc8414_available": has_rfc8414,
                "oidc_available": has_oidc,
                "mechanisms": [kind.value for kind in found],
                "triedUrls": tried,
            },
            spec_references=[SpecReferences.MCP_AUTH_SERVER_METADATA],
        )

        if has_rfc8414 and has_oidc:
            rfc8414 = found[DiscoveryKind.RFC8414][1]
            oidc = found[DiscoveryKind.OIDC][1]
            issues: List[str] = []
            if rfc8414.get("issuer") != oidc.get("issuer"):
                issues.append(f'issuer mismatch: RFC8414="{rfc8414.get("issuer")}" vs OIDC="{oidc.get("issuer")}"')
            if rfc8414.get("authorization_endpoint") != oidc.get("authorization_endpoint"):
                issues.append("authorization_endpoint differs between endpoints")
            if rfc8414.get("token_endpoint") != oidc.get("token_endpoint"):
                issues.append("token_endpoint differs between endpoints")
            self.sink.add(
                "auth-discovery-consistency",
                "Discovery Consistency",
                "RFC 8414 and OIDC metadata describe the same authorization server",
                CheckStatus.WARNING if issues else CheckStatus.SUCCESS,
                error_message=f"Inconsistencies found: {'; '.join(issues)}" if issues else None,
                details={"issues": issues, "rfc8414_issuer": rfc8414.get("issuer"), "oidc_issuer": oidc.get("issuer")},
                spec_references=[SpecReferences.RFC_8414_AS_RESPONSE, SpecReferences.OIDC_DISCOVERY],
            )

        self.sink.add(
            "auth-discovery-summary",
            "Discovery Summary",
            "Summary of available discovery mechanisms",
            CheckStatus.SUCCESS,
            details={
                "as_url": as_url,
                "rfc8414": {
                    "available": has_rfc8414,
                    "url": found[DiscoveryKind.RFC8414][0] if has_rfc8414 else None,
                    "triedUrls": family_urls[DiscoveryKind.RFC8414],
                },
                "oidc": {
                    "available": has_oidc,
                    "url": found[DiscoveryKind.OIDC][0] if has_oidc else None,
                    "triedUrls": family_urls[DiscoveryKind.OIDC],
                },
                "recommended": "RFC8414" if has_rfc8414 else "OIDC",
            },
        )


class _AsMetadataScenario(ServerScenario, ABC):
    """Scenario that needs the authorization server metadata up front."""

    prerequisite_id = ""

    async def drive(self, server_url: str, client: httpx.AsyncClient) -> None:
        result = await fetch_as_metadata(server_url, client=client)
        if not result.success:
            self.sink.add(
                self.prerequisite_id,
                "AS Metadata Prerequisite",
                "Valid AS metadata required",
                CheckStatus.SKIPPED,
                error_message=result.error or "Cannot fetch AS metadata - run auth-as-metadata-discovery first",
                spec_references=[SpecReferences.RFC_8414_AS_DISCOVERY],
            )
            return

        self.sink.add(
            self.prerequisite_id,
            "AS Metadata Prerequisite",
            "Valid AS metadata found",
            CheckStatus.SUCCESS,
            details={"asUrl": result.as_url, "metadataUrl": result.url},
        )
        self.inspect(result.metadata)

    @abstractmethod
    def inspect(self, metadata: Dict[str, Any]) -> None:
        """Record checks for the fetched metadata document."""


class AuthAsCimdSupportedScenario(_AsMetadataScenario):
    name = "server/auth-as-cimd-supported"
    description = "Authorization server advertises client ID metadata document support."
    prerequisite_id = "auth-cimd-as-prerequisite"

    def inspect(self, metadata: Dict[str, Any]) -> None:
        references = [SpecReferences.IETF_CIMD_AS_METADATA]
        supported = metadata.get("client_id_metadata_document_supported")

        if "client_id_metadata_document_supported" not in metadata:
            self.sink.add(
                "auth-cimd-field-present",
                "CIMD Support Field Present",
                "AS metadata contains client_id_metadata_document_supported",
                CheckStatus.INFO,
                error_message="Field not present - CIMD support unknown (DCR may be available)",
                spec_references=references,
            )
            self.sink.add(
                "auth-cimd-supported",
                "CIMD Supported",
                "Authorization server supports client ID metadata documents",
                CheckStatus.SKIPPED,
                error_message="Cannot determine - field not present in AS metadata",
                spec_references=references,
            )
        elif isinstance(supported, bool):
            self.sink.add(
                "auth-cimd-field-present",
                "CIMD Support Field Present",
                "AS metadata contains client_id_metadata_document_supported",
                CheckStatus.SUCCESS,
                details={"client_id_metadata_document_supported": supported},
                spec_references=references,
            )
            self.sink.add(
                "auth-cimd-supported",
                "CIMD Supported",
                "Authorization server supports client ID metadata documents",
                CheckStatus.SUCCESS if supported else CheckStatus.INFO,
                error_message=None if supported else (
                    "CIMD explicitly not supported - DCR or pre-registration required"
                ),
                details={"client_id_metadata_document_supported": supported},
                spec_references=references,
            )
        else:
            self.sink.add(
                "auth-cimd-field-present",
                "CIMD Support Field Present",
                "AS metadata contains client_id_metadata_document_supported",
                CheckStatus.WARNING,
                error_message=f"Invalid value type: expected boolean, got {type_name(supported)}",
                details={"client_id_metadata_document_supported": supported},
                spec_references=references,
            )
            self.sink.add(
                "auth-cimd-supported",
                "CIMD Supported",
                "Authorization server supports client ID metadata documents",
                CheckStatus.SKIPPED,
                error_message="Invalid field value type",
                spec_references=references,
            )

        has_dcr = isinstance(metadata.get("registration_endpoint"), str)
        has_cimd = supported is True
        self.sink.add(
            "auth-cimd-registration-options",
            "Registration Options Available",
            "Clients have a way to obtain a client_id without pre-registration",
            CheckStatus.SUCCESS if has_dcr or has_cimd else CheckStatus.WARNING,
            error_message=None if has_dcr or has_cimd else (
                "Neither DCR (registration_endpoint) nor CIMD available - pre-registration may be required"
            ),
            details={
                "dcr_available": has_dcr,
                "cimd_available": has_cimd,
                "registration_endpoint": metadata.get("registration_endpoint"),
            },
            spec_references=[SpecReferences.MCP_AUTH_DCR, SpecReferences.IETF_CIMD],
        )


class AuthAsPkceSupportScenario(_AsMetadataScenario):
    name = "server/auth-as-pkce-support"
    description = "Authorization server advertises PKCE with the S256 code challenge method."
    prerequisite_id = "auth-pkce-as-prerequisite"

    def inspect(self, metadata: Dict[str, Any]) -> None:
        references = [SpecReferences.RFC_7636_CODE_CHALLENGE, SpecReferences.MCP_AUTH_PKCE]
        field_description = "AS metadata contains code_challenge_methods_supported field"

        if "code_challenge_methods_supported" not in metadata:
            self.sink.add(
                "auth-pkce-field-present",
                "PKCE Methods Field Present",
                field_description,
                CheckStatus.WARNING,
                error_message="Field not present - PKCE support unknown (may still be supported)",
                spec_references=references,
            )
            self.sink.add(
                "auth-pkce-s256-supported",
                "PKCE S256 Supported",
                "Authorization server supports the S256 code challenge method",
                CheckStatus.SKIPPED,
                error_message="Cannot determine - code_challenge_methods_supported not advertised",
                spec_references=references,
            )
            return

        methods = metadata["code_challenge_methods_supported"]
        if not isinstance(methods, list):
            self.sink.add(
                "auth-pkce-field-present",
                "PKCE Methods Field Present",
                field_description,
                CheckStatus.FAILURE,
                error_message=f"Invalid type: expected array, got {type_name(methods)}",
                details={"code_challenge_methods_supported": methods},
                spec_references=references,
            )
            return

        self.sink.add(
            "auth-pkce-field-present",
            "PKCE Methods Field Present",
            field_description,
            CheckStatus.SUCCESS,
            details={"code_challenge_methods_supported": methods},
            spec_references=references,
        )

        has_s256 = "S256" in methods
        has_plain = "plain" in methods
        self.sink.add(
            "auth-pkce-s256-supported",
            "PKCE S256 Supported",
            "Authorization server supports the S256 code challenge method",
            CheckStatus.SUCCESS if has_s256 else CheckStatus.FAILURE,
            error_message=None if has_s256 else (
                "S256 not in code_challenge_methods_supported - required for secure PKCE"
            ),
            details={"code_challenge_methods_supported": methods, "s256_supported": has_s256},
            spec_references=references,
        )

        if has_plain and not has_s256:
            self.sink.add(
                "auth-pkce-plain-only",
                "PKCE Plain Only",
                'Check if only "plain" method is supported (security risk)',
                CheckStatus.WARNING,
                error_message='Only "plain" PKCE method supported - S256 is recommended for security',
                details={"code_challenge_methods_supported": methods, "plain_only": True},
                spec_references=references,
            )
        elif has_plain:
            self.sink.add(
                "auth-pkce-plain-only",
                "PKCE Plain Only",
                'Check if only "plain" method is supported (security risk)',
                CheckStatus.INFO,
                details={
                    "code_challenge_methods_supported": methods,
                    "note": "Both plain and S256 available - clients should use S256",
                },
                spec_references=references,
            )

        if has_s256:
            self.sink.add(
                "auth-pkce-ready",
                "PKCE Ready",
                "Authorization server is ready for MCP PKCE requirements",
                CheckStatus.SUCCESS,
                details={"recommended_method": "S256", "available_methods": methods},
                spec_references=references,
            )


class AuthAsTokenAuthMethodsScenario(_AsMetadataScenario):
    name = "server/auth-as-token-auth-methods"
    description = "Authorization server advertises valid token endpoint client authentication methods."
    prerequisite_id = "auth-token-auth-methods-prerequisite"

    def inspect(self, metadata: Dict[str, Any]) -> None:
        references = [SpecReferences.RFC_8414_AS_FIELDS, SpecReferences.OAUTH_2_1_CLIENT_AUTH]
        present_description = "AS metadata contains token_endpoint_auth_methods_supported field"

        if "token_endpoint_auth_methods_supported" not in metadata:
            self.sink.add(
                "auth-token-auth-methods-present",
                "Token Auth Methods Present",
                present_description,
                CheckStatus.INFO,
                error_message='Field not present - defaults to ["client_secret_basic"] per RFC 8414',
                details={"default_value": ["client_secret_basic"]},
                spec_references=references,
            )
            return

        methods = metadata["token_endpoint_auth_methods_supported"]
        if not isinstance(methods, list) or not methods:
            self.sink.add(
                "auth-token-auth-methods-present",
                "Token Auth Methods Present",
                present_description,
                CheckStatus.FAILURE,
                error_message=(
                    f"Invalid type: expected array, got {type_name(methods)}" if not isinstance(methods, list)
                    else "Empty array - at least one auth method must be supported"
                ),
                details={"token_endpoint_auth_methods_supported": methods},
                spec_references=references,
            )
            return

        self.sink.add(
            "auth-token-auth-methods-present",
            "Token Auth Methods Present",
            present_description,
            CheckStatus.SUCCESS,
            details={"token_endpoint_auth_methods_supported": methods},
            spec_references=references,
        )

        invalid = [m for m in methods if not isinstance(m, str) or m not in VALID_AUTH_METHODS]
        self.sink.add(
            "auth-token-auth-methods-valid",
            "Token Auth Methods Valid",
            "All advertised token endpoint auth methods are registered values",
            CheckStatus.WARNING if invalid else CheckStatus.SUCCESS,
            error_message=f"Unknown auth method(s): {', '.join(str(m) for m in invalid)}" if invalid else None,
            details={"token_endpoint_auth_methods_supported": methods, "invalid_methods": invalid},
            spec_references=references,
        )

        if methods == ["none"]:
            self.sink.add(
                "auth-token-auth-methods-public-only",
                "Public Clients Only",
                "Check if only public clients (no authentication) supported",
                CheckStatus.INFO,
                details={"note": 'Only "none" auth method supported - public clients only'},
                spec_references=references,
            )

        jwt_methods = [m for m in methods if m in ("private_key_jwt", "client_secret_jwt")]
        if jwt_methods:
            self._check_signing_algorithms(metadata, jwt_methods)

        has_basic = "client_secret_basic" in methods
        if has_basic:
            self.sink.add(
                "auth-token-auth-basic-supported",
                "Client Secret Basic Supported",
                "Authorization Server supports client_secret_basic authentication",
                CheckStatus.SUCCESS,
                details={"client_secret_basic": True},
                spec_references=references,
            )

        confidential = has_basic or "client_secret_post" in methods or bool(jwt_methods)
        self.sink.add(
            "auth-token-auth-confidential-client-ready",
            "Confidential Client Ready",
            "Authorization Server supports authentication for confidential clients",
            CheckStatus.SUCCESS if confidential else CheckStatus.INFO,
            details={
                "supports_confidential_clients": confidential,
                "token_endpoint_auth_methods_supported": methods,
            },
            spec_references=references,
        )

    def _check_signing_algorithms(self, metadata: Dict[str, Any], jwt_methods: List[str]) -> None:
        description = "Check token_endpoint_auth_signing_alg_values_supported for JWT auth"
        references = [SpecReferences.RFC_8414_AS_FIELDS]

        if "token_endpoint_auth_signing_alg_values_supported" not in metadata:
            self.sink.add(
                "auth-token-auth-jwt-signing-algs",
                "JWT Signing Algorithms",
                description,
                CheckStatus.WARNING,
                error_message=(
                    "JWT auth supported but token_endpoint_auth_signing_alg_values_supported not advertised"
                ),
                details={"jwt_auth_methods": jwt_methods},
                spec_references=references,
            )
            return

        algorithms = metadata["token_endpoint_auth_signing_alg_values_supported"]
        if not isinstance(algorithms, list):
            self.sink.add(
                "auth-token-auth-jwt-signing-algs",
                "JWT Signing Algorithms",
                description,
                CheckStatus.FAILURE,
                error_message=f"Invalid type: expected array, got {type_name(algorithms)}",
                details={"token_endpoint_auth_signing_alg_values_supported": algorithms},
                spec_references=references,
            )
            return

        secure = [alg for alg in algorithms if isinstance(alg, str) and alg in SECURE_SIGNING_ALGORITHMS]
        self.sink.add(
            "auth-token-auth-jwt-signing-algs",
            "JWT Signing Algorithms",
            description,
            CheckStatus.SUCCESS if secure else CheckStatus.WARNING,
            error_message=None if secure else "No secure signing algorithms found (ES256, RS256, etc. recommended)",
            details={"token_endpoint_auth_signing_alg_values_supported": algorithms, "secure_algorithms": secure},
            spec_references=references,
        )


class AuthAsGrantTypesScenario(_AsMetadataScenario):
    name = "server/auth-as-grant-types"
    description = "Authorization server advertises grant types suitable for MCP clients."
    prerequisite_id = "auth-grant-types-prerequisite"

    def inspect(self, metadata: Dict[str, Any]) -> None:
        references = [SpecReferences.RFC_8414_AS_FIELDS, SpecReferences.OAUTH_2_1_GRANT_TYPES]

        if "grant_types_supported" not in metadata:
            self.sink.add(
                "auth-grant-types-present",
                "Grant Types Present",
                "AS metadata contains grant_types_supported field",
                CheckStatus.WARNING,
                error_message='Field not present - defaults to ["authorization_code", "implicit"] per RFC 8414',
                details={"default_value": ["authorization_code", "implicit"]},
                spec_references=references,
            )
            self.sink.add(
                "auth-grant-types-authorization-code",
                "Authorization Code Grant",
                "Authorization server supports the authorization_code grant",
                CheckStatus.INFO,
                details={"authorization_code": "assumed (default)"},
                spec_references=references,
            )
            self.sink.add(
                "auth-grant-types-client-credentials",
                "Client Credentials Grant",
                "Authorization server supports the client_credentials grant",
                CheckStatus.INFO,
                details={"client_credentials": "unknown"},
                spec_references=references,
            )
            return

        grant_types = metadata["grant_types_supported"]
        if not isinstance(grant_types, list) or not grant_types:
            self.sink.add(
                "auth-grant-types-present",
                "Grant Types Present",
                "AS metadata contains grant_types_supported field",
                CheckStatus.FAILURE,
                error_message=(
                    f"Invalid type: expected array, got {type_name(grant_types)}" if not isinstance(grant_types, list)
                    else "Empty array - at least one grant type must be supported"
                ),
                details={"grant_types_supported": grant_types},
                spec_references=references,
            )
            return

        self.sink.add(
            "auth-grant-types-present",
            "Grant Types Present",
            "AS metadata contains grant_types_supported field",
            CheckStatus.SUCCESS,
            details={"grant_types_supported": grant_types},
            spec_references=references,
        )

        has_code = "authorization_code" in grant_types
        self.sink.add(
            "auth-grant-types-authorization-code",
            "Authorization Code Grant",
            "Authorization server supports the authorization_code grant",
            CheckStatus.SUCCESS if has_code else CheckStatus.WARNING,
            error_message=None if has_code else "authorization_code not in grant_types_supported",
            details={"authorization_code": has_code},
            spec_references=references,
        )

        has_refresh = "refresh_token" in grant_types
        self.sink.add(
            "auth-grant-types-refresh-token",
            "Refresh Token Grant",
            "Authorization server supports the refresh_token grant",
            CheckStatus.SUCCESS if has_refresh else CheckStatus.INFO,
            details={"refresh_token": has_refresh},
            spec_references=references,
        )

        has_client_credentials = "client_credentials" in grant_types
        self.sink.add(
            "auth-grant-types-client-credentials",
            "Client Credentials Grant",
            "Authorization server supports the client_credentials grant",
            CheckStatus.SUCCESS if has_client_credentials else CheckStatus.INFO,
            details={"client_credentials": has_client_credentials},
            spec_references=references,
        )

        if "implicit" in grant_types:
            self.sink.add(
                "auth-grant-types-implicit-deprecated",
                "Implicit Grant Deprecated",
                "Authorization server does not offer the implicit grant",
                CheckStatus.WARNING,
                error_message="implicit grant is deprecated in OAuth 2.1 - use authorization_code with PKCE instead",
                details={"implicit": True},
                spec_references=references,
            )
        if "password" in grant_types:
            self.sink.add(
                "auth-grant-types-password-deprecated",
                "Password Grant Deprecated",
                "Authorization server does not offer the password grant",
                CheckStatus.WARNING,
                error_message="password grant (Resource Owner Password Credentials) is removed in OAuth 2.1",
                details={"password": True},
                spec_references=references,
            )

        custom = [
            g for g in grant_types
            if not isinstance(g, str) or (g not in STANDARD_GRANT_TYPES and g not in DEPRECATED_GRANT_TYPES)
        ]
        if custom:
            self.sink.add(
                "auth-grant-types-custom",
                "Custom Grant Types",
                "Authorization server advertises non-standard grant types",
                CheckStatus.INFO,
                details={"custom_grant_types": custom},
                spec_references=references,
            )

        self.sink.add(
            "auth-grant-types-sep1046-ready",
            "Machine-to-Machine Ready",
            "Authorization server supports client_credentials for machine-to-machine access",
            CheckStatus.SUCCESS if has_client_credentials else CheckStatus.INFO,
            details={"sep1046_ready": has_client_credentials, "grant_types_supported": grant_types},
            spec_references=references,
        )


class AuthPrmResourceValidationScenario(ServerScenario):
    name = "server/auth-prm-resource-validation"
    description = 'PRM "resource" is an absolute HTTPS URI without fragment that identifies this server.'

    async def drive(self, server_url: str, client: httpx.AsyncClient) -> None:
        references = [SpecReferences.RFC_9728_PRM_FIELDS, SpecReferences.RFC_8707_RESOURCE_PARAMETER]
        prm_result = await fetch_prm(server_url, client=client)
        if not prm_result.success:
            self.sink.add(
                "auth-prm-resource-prerequisite",
                "PRM Prerequisite",
                "Valid PRM required to validate the resource field",
                CheckStatus.SKIPPED,
                error_message=prm_result.error or "Cannot fetch PRM - run auth-prm-discovery first",
                spec_references=[SpecReferences.RFC_9728_PRM_DISCOVERY],
            )
            return
        self.sink.add(
            "auth-prm-resource-prerequisite",
            "PRM Prerequisite",
            "Valid PRM found",
            CheckStatus.SUCCESS,
            details={"prmUrl": prm_result.url},
        )

        resource = prm_result.metadata.get("resource")
        if not isinstance(resource, str) or not resource:
            self.sink.add(
                "auth-prm-resource-exists",
                "PRM Resource Exists",
                'PRM contains a "resource" field',
                CheckStatus.FAILURE,
                error_message='Missing or invalid "resource" field (must be non-empty string)',
                details={"resource": resource},
                spec_references=references,
            )
            return
        self.sink.add(
            "auth-prm-resource-exists",
            "PRM Resource Exists",
            'PRM contains a "resource" field',
            CheckStatus.SUCCESS,
            details={"resource": resource},
            spec_references=references,
        )

        if not is_absolute_url(resource):
            self.sink.add(
                "auth-prm-resource-valid-uri",
                "PRM Resource Valid URI",
                '"resource" is a valid absolute URI',
                CheckStatus.FAILURE,
                error_message=f'"{resource}" is not a valid absolute URI',
                details={"resource": resource, "valid": False},
                spec_references=references,
            )
            return
        self.sink.add(
            "auth-prm-resource-valid-uri",
            "PRM Resource Valid URI",
            '"resource" is a valid absolute URI',
            CheckStatus.SUCCESS,
            details={"resource": resource, "valid": True},
            spec_references=references,
        )

        parts = urlsplit(resource)
        https = parts.scheme == "https"
        self.sink.add(
            "auth-prm-resource-https",
            "PRM Resource Uses HTTPS",
            '"resource" uses the https scheme',
            CheckStatus.SUCCESS if https else CheckStatus.WARNING,
            error_message=None if https else f"Resource uses {parts.scheme}: - HTTPS is recommended for security",
            details={"resource": resource, "protocol": f"{parts.scheme}:"},
            spec_references=[SpecReferences.MCP_AUTH_CANONICAL_URI],
        )

        has_fragment = bool(parts.fragment)
        self.sink.add(
            "auth-prm-resource-no-fragment",
            "PRM Resource Has No Fragment",
            '"resource" has no fragment component',
            CheckStatus.FAILURE if has_fragment else CheckStatus.SUCCESS,
            error_message="Resource URI contains fragment - not allowed per RFC 8707" if has_fragment else None,
            details={"resource": resource, **({"fragment": f"#{parts.fragment}"} if has_fragment else {})},
            spec_references=[SpecReferences.RFC_8707_RESOURCE_PARAMETER],
        )

        self._check_matches_server(resource, server_url)

    def _check_matches_server(self, resource: str, server_url: str) -> None:
        references = [SpecReferences.MCP_AUTH_CANONICAL_URI]
        resource_parts = urlsplit(resource)
        server_parts = urlsplit(server_url)
        if not server_parts.scheme or not server_parts.netloc:
            self.sink.add(
                "auth-prm-resource-matches-server",
                "PRM Resource Matches Server",
                '"resource" identifies this MCP server',
                CheckStatus.SKIPPED,
                error_message="Cannot parse server URL for comparison",
                details={"resource": resource, "serverUrl": server_url},
                spec_references=references,
            )
            return

        exact = resource.rstrip("/") == server_url.rstrip("/")
        same_host = resource_parts.netloc == server_parts.netloc
        resource_is_prefix = server_url.startswith(resource.rstrip("/"))
        server_is_prefix = resource.startswith(server_url.rstrip("/"))

        if exact or (same_host and (resource_is_prefix or server_is_prefix)):
            relationship = "exact" if exact else "resource_is_prefix" if resource_is_prefix else "server_is_prefix"
            self.sink.add(
                "auth-prm-resource-matches-server",
                "PRM Resource Matches Server",
                '"resource" identifies this MCP server',
                CheckStatus.SUCCESS,
                details={"resource": resource, "serverUrl": server_url, "relationship": relationship},
                spec_references=references,
            )
        elif same_host:
            self.sink.add(
                "auth-prm-resource-matches-server",
                "PRM Resource Matches Server",
                '"resource" identifies this MCP server',
                CheckStatus.WARNING,
                error_message="Same host but paths differ significantly - verify this is intentional",
                details={"resource": resource, "serverUrl": server_url, "sameHost": True},
                spec_references=references,
            )
        else:
            self.sink.add(
                "auth-prm-resource-matches-server",
                "PRM Resource Matches Server",
                '"resource" identifies this MCP server',
                CheckStatus.WARNING,
                error_message=(
                    f"Resource host ({resource_parts.netloc}) differs from server host ({server_parts.netloc})"
                ),
                details={"resource": resource, "serverUrl": server_url, "sameHost": False},
                spec_references=references,
            )


class AuthUnauthorizedResponseScenario(ServerScenario):
    name = "server/auth-401-unauthorized"
    description = "Unauthenticated MCP requests are rejected with 401 and a WWW-Authenticate challenge."

    async def drive(self, server_url: str, client: httpx.AsyncClient) -> None:
        try:
            response = await auth_fetch(server_url, method="POST", body=initialize_request(), client=client)
        except httpx.HTTPError as e:
            self.sink.add(
                "auth-401-request-completes",
                "Request Completes",
                "Unauthenticated request to the MCP endpoint completes",
                CheckStatus.FAILURE,
                error_message=f"Request failed: {e}",
            )
            return

        references = [SpecReferences.RFC_7235_401_RESPONSE, SpecReferences.MCP_AUTH_ERROR_HANDLING]
        if response.status == 401:
            self.sink.add(
                "auth-401-status-code",
                "Returns 401 Unauthorized",
                "Server returns 401 for unauthenticated requests",
                CheckStatus.SUCCESS,
                details={"status": response.status},
                spec_references=references,
            )
        elif response.status == 200:
            self.sink.add(
                "auth-401-status-code",
                "Returns 401 Unauthorized",
                "Server returns 401 for unauthenticated requests",
                CheckStatus.WARNING,
                error_message="Server allowed unauthenticated request (may use step-up auth)",
                details={"status": response.status},
                spec_references=references,
            )
            response = await self._call_protected_method(server_url, client, response)
        else:
            self.sink.add(
                "auth-401-status-code",
                "Returns 401 Unauthorized",
                "Server returns 401 for unauthenticated requests",
                CheckStatus.FAILURE,
                error_message=f"Expected 401, got {response.status}",
                details={"status": response.status, "body": response.body},
                spec_references=references,
            )

        # Absent header and non-JSON body only count against a 401
        if response.raw_www_authenticate:
            self.sink.add(
                "auth-401-www-authenticate-present",
                "WWW-Authenticate Present",
                "401 response includes a WWW-Authenticate header",
                CheckStatus.SUCCESS,
                details={"wwwAuthenticate": response.raw_www_authenticate},
                spec_references=[SpecReferences.RFC_7235_WWW_AUTHENTICATE],
            )
        elif response.status == 401:
            self.sink.add(
                "auth-401-www-authenticate-present",
                "WWW-Authenticate Present",
                "401 response includes a WWW-Authenticate header",
                CheckStatus.FAILURE,
                error_message="401 response missing required WWW-Authenticate header",
                spec_references=[SpecReferences.RFC_7235_WWW_AUTHENTICATE],
            )

        if isinstance(response.body, (dict, list)):
            self.sink.add(
                "auth-401-response-json",
                "401 Response Is JSON",
                "Error response body is JSON",
                CheckStatus.SUCCESS,
                details={"bodyType": type_name(response.body)},
                spec_references=[SpecReferences.RFC_6750_ERROR_CODES],
            )
        elif response.status == 401:
            self.sink.add(
                "auth-401-response-json",
                "401 Response Is JSON",
                "Error response body is JSON",
                CheckStatus.WARNING,
                error_message="Response body is not valid JSON",
                details={"rawBody": response.raw_body[:200]},
                spec_references=[SpecReferences.RFC_6750_ERROR_CODES],
            )

    async def _call_protected_method(
        self, server_url: str, client: httpx.AsyncClient, fallback: AuthFetchResponse
    ) -> AuthFetchResponse:
        try:
            tools = await auth_fetch(server_url, method="POST", body=tools_list_request(2), client=client)
        except httpx.HTTPError as e:
            logger.debug(f"tools/list check failed: {e}")
            return fallback

        if tools.status == 401:
            self.sink.add(
                "auth-401-protected-method",
                "Protected Method Returns 401",
                "Protected methods require authentication",
                CheckStatus.SUCCESS,
                details={"method": "tools/list", "status": tools.status},
                spec_references=[SpecReferences.MCP_AUTH_ERROR_HANDLING],
            )
            return tools

        self.sink.add(
            "auth-401-protected-method",
            "Protected Method Returns 401",
            "Protected methods require authentication",
            CheckStatus.WARNING,
            error_message=f"tools/list returned {tools.status}, not 401",
            details={"method": "tools/list", "status": tools.status},
            spec_references=[SpecReferences.MCP_AUTH_ERROR_HANDLING],
        )
        return fallback


class AuthWwwAuthenticateHeaderScenario(ServerScenario):
    name = "server/auth-www-authenticate-header"
    description = "The 401 challenge uses the Bearer scheme with well-formed resource_metadata, scope and error."

    async def drive(self, server_url: str, client: httpx.AsyncClient) -> None:
        try:
            response = await auth_fetch(server_url, method="POST", body=tools_list_request(1), client=client)
        except httpx.HTTPError as e:
            self.sink.add(
                "auth-www-auth-request-completes",
                "Request Completes",
                "Unauthenticated request to the MCP endpoint completes",
                CheckStatus.FAILURE,
                error_message=f"Request failed: {e}",
            )
            return

        if response.status != 401:
            try:
                await auth_fetch(
                    server_url,
                    method="POST",
                    body=initialize_request(0, client_name="conformance-test"),
                    client=client,
                )
                response = await auth_fetch(server_url, method="POST", body=tools_list_request(1), client=client)
            except httpx.HTTPError as e:
                logger.debug(f"Retry after initialize failed: {e}")

        if response.status != 401:
            self.sink.add(
                "auth-www-auth-401-received",
                "401 Received",
                "Server returns 401 so the challenge can be inspected",
                CheckStatus.SKIPPED,
                error_message=f"Server returned {response.status}, not 401 - cannot test WWW-Authenticate",
                details={"status": response.status},
            )
            return

        challenge = response.www_authenticate
        if challenge is None:
            self.sink.add(
                "auth-www-auth-header-exists",
                "WWW-Authenticate Exists",
                "401 response includes a WWW-Authenticate header",
                CheckStatus.FAILURE,
                error_message="Missing WWW-Authenticate header in 401 response",
                spec_references=[SpecReferences.RFC_7235_WWW_AUTHENTICATE],
            )
            return
        self.sink.add(
            "auth-www-auth-header-exists",
            "WWW-Authenticate Exists",
            "401 response includes a WWW-Authenticate header",
            CheckStatus.SUCCESS,
            details={"raw": response.raw_www_authenticate},
            spec_references=[SpecReferences.RFC_7235_WWW_AUTHENTICATE],
        )

        bearer = challenge.scheme.lower() == "bearer"
        self.sink.add(
            "auth-www-auth-bearer-scheme",
            "Bearer Scheme",
            "Challenge uses the Bearer scheme",
            CheckStatus.SUCCESS if bearer else CheckStatus.FAILURE,
            error_message=None if bearer else f'Expected "Bearer" scheme, got "{challenge.scheme}"',
            details={"scheme": challenge.scheme},
            spec_references=[SpecReferences.RFC_6750_WWW_AUTHENTICATE],
        )

        self._check_resource_metadata(challenge.params)
        if "scope" in challenge.params:
            self._check_scope(challenge.params["scope"])
        if "error" in challenge.params:
            self._check_error(challenge.params)

    def _check_resource_metadata(self, params: Dict[str, str]) -> None:
        references = [SpecReferences.RFC_9728_WWW_AUTHENTICATE, SpecReferences.MCP_AUTH_SERVER_LOCATION]
        value = params.get("resource_metadata")
        if not value:
            self.sink.add(
                "auth-www-auth-resource-metadata",
                "Resource Metadata Parameter",
                "WWW-Authenticate includes resource_metadata URL (recommended)",
                CheckStatus.WARNING,
                error_message="Missing resource_metadata parameter (recommended for MCP)",
                details={"params": params},
                spec_references=references,
            )
            return

        valid = is_absolute_url(value)
        self.sink.add(
            "auth-www-auth-resource-metadata",
            "Resource Metadata Parameter",
            "WWW-Authenticate includes resource_metadata URL (recommended)",
            CheckStatus.SUCCESS if valid else CheckStatus.FAILURE,
            error_message=None if valid else f"Invalid resource_metadata URL: {value}",
            details={"resource_metadata": value},
            spec_references=references,
        )

    def _check_scope(self, scope: str) -> None:
        references = [SpecReferences.RFC_6750_WWW_AUTHENTICATE, SpecReferences.MCP_AUTH_SCOPE_SELECTION]
        scopes = [s for s in scope.split(" ") if s]
        if not scopes and scope:
            self.sink.add(
                "auth-www-auth-scope-format",
                "Scope Format",
                "Scope parameter contains valid scope tokens",
                CheckStatus.WARNING,
                error_message="Scope parameter is present but empty or malformed",
                details={"scope": scope, "parsed": scopes},
                spec_references=references,
            )
            return

        invalid = [s for s in scopes if not SCOPE_TOKEN.match(s)]
        self.sink.add(
            "auth-www-auth-scope-format",
            "Scope Format",
            "Scope parameter contains valid scope tokens",
            CheckStatus.WARNING if invalid else CheckStatus.SUCCESS,
            error_message=f"Some scope tokens may contain invalid characters: {', '.join(invalid)}" if invalid else None,
            details={"scope": scope, "scopes": scopes},
            spec_references=references,
        )

    def _check_error(self, params: Dict[str, str]) -> None:
        error = params["error"]
        known = error in VALID_BEARER_ERRORS
        self.sink.add(
            "auth-www-auth-error-code",
            "Error Code",
            "Challenge error parameter uses an RFC 6750 error code",
            CheckStatus.SUCCESS if known else CheckStatus.WARNING,
            error_message=None if known else f"Unknown error code: {error}",
            details={"error": error, "error_description": params.get("error_description")},
            spec_references=[SpecReferences.RFC_6750_ERROR_CODES],
        )
