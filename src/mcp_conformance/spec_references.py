"""Citations of the normative text that checks are judged against."""

from .models import SpecReference

_MCP_AUTH = "https://modelcontextprotocol.io/specification/2025-06-18/basic/authorization"
_OAUTH_2_1 = "https://datatracker.ietf.org/doc/html/draft-ietf-oauth-v2-1-13"
_CIMD = "https://datatracker.ietf.org/doc/html/draft-ietf-oauth-client-id-metadata-document-00"
_MCP_AUTH_2025_03_26 = "https://modelcontextprotocol.io/specification/2025-03-26/basic/authorization"
_ID_JAG = "https://datatracker.ietf.org/doc/html/draft-ietf-oauth-identity-assertion-authz-grant"


class SpecReferences:
    """Namespace of spec references used across scenarios."""

    # RFC 9728: Protected Resource Metadata
    RFC_9728_PRM_DISCOVERY = SpecReference(
        id="RFC-9728-discovery", url="https://www.rfc-editor.org/rfc/rfc9728.html#section-3"
    )
    RFC_9728_PRM_RESPONSE = SpecReference(
        id="RFC-9728-response", url="https://www.rfc-editor.org/rfc/rfc9728.html#section-3.2"
    )
    RFC_9728_PRM_FIELDS = SpecReference(
        id="RFC-9728-fields", url="https://www.rfc-editor.org/rfc/rfc9728.html#section-2"
    )
    RFC_9728_WWW_AUTHENTICATE = SpecReference(
        id="RFC-9728-www-authenticate", url="https://www.rfc-editor.org/rfc/rfc9728.html#section-5"
    )

    # RFC 8414: Authorization Server Metadata
    RFC_8414_AS_DISCOVERY = SpecReference(
        id="RFC-8414-discovery", url="https://www.rfc-editor.org/rfc/rfc8414.html#section-3"
    )
    RFC_8414_AS_RESPONSE = SpecReference(
        id="RFC-8414-response", url="https://www.rfc-editor.org/rfc/rfc8414.html#section-3.2"
    )
    RFC_8414_AS_FIELDS = SpecReference(
        id="RFC-8414-fields", url="https://www.rfc-editor.org/rfc/rfc8414.html#section-2"
    )
    OIDC_DISCOVERY = SpecReference(
        id="OIDC-discovery",
        url="https://openid.net/specs/openid-connect-discovery-1_0.html#ProviderConfig",
    )

    # RFC 7591: Dynamic Client Registration
    RFC_7591_DCR_ENDPOINT = SpecReference(
        id="RFC-7591-endpoint", url="https://www.rfc-editor.org/rfc/rfc7591.html#section-3"
    )
    RFC_7591_DCR_REQUEST = SpecReference(
        id="RFC-7591-request", url="https://www.rfc-editor.org/rfc/rfc7591.html#section-3.1"
    )
    RFC_7591_DCR_RESPONSE = SpecReference(
        id="RFC-7591-response", url="https://www.rfc-editor.org/rfc/rfc7591.html#section-3.2"
    )

    # RFC 7636: PKCE
    RFC_7636_CODE_CHALLENGE = SpecReference(
        id="RFC-7636-code-challenge", url="https://www.rfc-editor.org/rfc/rfc7636.html#section-4.2"
    )

    # RFC 8707: Resource Indicators
    RFC_8707_RESOURCE_PARAMETER = SpecReference(
        id="RFC-8707-resource", url="https://www.rfc-editor.org/rfc/rfc8707.html#section-2"
    )

    # RFC 6750 / RFC 7235: Bearer tokens and HTTP authentication
    RFC_6750_BEARER_TOKEN = SpecReference(
        id="RFC-6750-bearer", url="https://www.rfc-editor.org/rfc/rfc6750.html#section-2.1"
    )
    RFC_6750_WWW_AUTHENTICATE = SpecReference(
        id="RFC-6750-www-authenticate", url="https://www.rfc-editor.org/rfc/rfc6750.html#section-3"
    )
    RFC_6750_ERROR_CODES = SpecReference(
        id="RFC-6750-errors", url="https://www.rfc-editor.org/rfc/rfc6750.html#section-3.1"
    )
    RFC_7235_401_RESPONSE = SpecReference(
        id="RFC-7235-401", url="https://www.rfc-editor.org/rfc/rfc7235.html#section-3.1"
    )
    RFC_7235_WWW_AUTHENTICATE = SpecReference(
        id="RFC-7235-www-authenticate", url="https://www.rfc-editor.org/rfc/rfc7235.html#section-4.1"
    )

    # OAuth 2.1
    OAUTH_2_1_AUTHORIZATION_ENDPOINT = SpecReference(
        id="OAuth-2.1-authorization-endpoint", url=f"{_OAUTH_2_1}#section-4.1.1"
    )
    OAUTH_2_1_TOKEN = SpecReference(id="OAuth-2.1-token-request", url=f"{_OAUTH_2_1}#section-4.1.3")
    OAUTH_2_1_CLIENT_AUTH = SpecReference(id="OAuth-2.1-client-auth", url=f"{_OAUTH_2_1}#section-2.4")
    OAUTH_2_1_PKCE = SpecReference(id="OAuth-2.1-pkce", url=f"{_OAUTH_2_1}#section-7.5.2")
    OAUTH_2_1_GRANT_TYPES = SpecReference(id="OAuth-2.1-grant-types", url=f"{_OAUTH_2_1}#section-4")

    # MCP Authorization
    MCP_AUTH_SERVER_LOCATION = SpecReference(
        id="MCP-2025-06-18-server-location", url=f"{_MCP_AUTH}#authorization-server-location"
    )
    MCP_AUTH_PRM_DISCOVERY = SpecReference(
        id="MCP-2025-06-18-prm-discovery", url=f"{_MCP_AUTH}#authorization-server-location"
    )
    MCP_AUTH_SERVER_METADATA = SpecReference(
        id="MCP-2025-06-18-server-metadata", url=f"{_MCP_AUTH}#server-metadata-discovery"
    )
    MCP_AUTH_DCR = SpecReference(
        id="MCP-2025-06-18-dcr", url=f"{_MCP_AUTH}#dynamic-client-registration"
    )
    MCP_AUTH_ACCESS_TOKEN = SpecReference(
        id="MCP-2025-06-18-access-token", url=f"{_MCP_AUTH}#access-token-usage"
    )
    MCP_AUTH_ERROR_HANDLING = SpecReference(
        id="MCP-2025-06-18-error-handling", url=f"{_MCP_AUTH}#error-handling"
    )
    MCP_AUTH_CANONICAL_URI = SpecReference(
        id="MCP-2025-06-18-canonical-uri", url=f"{_MCP_AUTH}#canonical-server-uri"
    )
    MCP_AUTH_PKCE = SpecReference(
        id="MCP-2025-06-18-pkce", url=f"{_MCP_AUTH}#authorization-code-protection"
    )
    MCP_AUTH_SCOPE_SELECTION = SpecReference(
        id="MCP-scope-selection", url=f"{_MCP_AUTH}#scope-selection-strategy"
    )

    # Client ID Metadata Documents
    IETF_CIMD = SpecReference(id="IETF-CIMD", url=_CIMD)
    IETF_CIMD_AS_METADATA = SpecReference(id="IETF-CIMD-as-metadata", url=f"{_CIMD}#section-4")

    # Scope challenges and 2025-03-26 compatibility
    MCP_AUTH_SCOPE_CHALLENGE = SpecReference(
        id="MCP-scope-challenge-handling", url=f"{_MCP_AUTH}#scope-challenge-handling"
    )
    MCP_AUTH_LEGACY_DISCOVERY = SpecReference(
        id="MCP-2025-03-26-server-metadata-discovery", url=f"{_MCP_AUTH_2025_03_26}#server-metadata-discovery"
    )
    MCP_AUTH_LEGACY_DEFAULT_ENDPOINTS = SpecReference(
        id="MCP-2025-03-26-default-endpoints",
        url=f"{_MCP_AUTH_2025_03_26}#fallbacks-for-servers-without-metadata-discovery",
    )

    # Refresh tokens and offline access
    OAUTH_2_1_REFRESH_TOKEN = SpecReference(id="OAuth-2.1-refresh-token", url=f"{_OAUTH_2_1}#section-4.3")
    OAUTH_2_1_REFRESH_TOKEN_ROTATION = SpecReference(
        id="OAuth-2.1-refresh-token-rotation", url=f"{_OAUTH_2_1}#section-4.3.1"
    )
    SEP_2207_OFFLINE_ACCESS = SpecReference(
        id="SEP-2207-offline-access", url="https://github.com/modelcontextprotocol/modelcontextprotocol/pull/2207"
    )
    OIDC_OFFLINE_ACCESS = SpecReference(
        id="OIDC-offline-access", url="https://openid.net/specs/openid-connect-core-1_0.html#OfflineAccess"
    )

    # RFC 6750 insufficient_scope
    RFC_6750_INSUFFICIENT_SCOPE = SpecReference(
        id="RFC-6750-insufficient-scope", url="https://www.rfc-editor.org/rfc/rfc6750.html#section-3.1"
    )

    # Machine-to-machine and cross-app access
    OAUTH_2_1_CLIENT_CREDENTIALS = SpecReference(
        id="OAuth-2.1-client-credentials", url=f"{_OAUTH_2_1}#section-4.2"
    )
    RFC_7523_CLIENT_ASSERTION = SpecReference(
        id="RFC-7523-client-assertion", url="https://www.rfc-editor.org/rfc/rfc7523.html#section-2.2"
    )
    RFC_7523_JWT_BEARER = SpecReference(
        id="RFC-7523-jwt-bearer", url="https://www.rfc-editor.org/rfc/rfc7523.html#section-2.1"
    )
    RFC_8693_TOKEN_EXCHANGE = SpecReference(
        id="RFC-8693-token-exchange", url="https://www.rfc-editor.org/rfc/rfc8693.html#section-2.1"
    )
    IETF_ID_JAG = SpecReference(id="IETF-ID-JAG", url=_ID_JAG)
    SEP_990_CROSS_APP_ACCESS = SpecReference(
        id="SEP-990", url="https://github.com/modelcontextprotocol/modelcontextprotocol/pull/990"
    )
