"""Tests for request classification, challenge parsing and the observing transport."""

import httpx
import pytest

from mcp_conformance.models import RequestType
from mcp_conformance.observation import (
    ObservingTransport,
    RequestObserver,
    classify_request,
    parse_www_authenticate,
    sanitize_headers,
)

from conftest import PRM_URL, SERVER_URL, conformant_server


class TestParseWwwAuthenticate:
    """Test WWW-Authenticate parsing."""

    def test_quoted_params(self):
        challenge = parse_www_authenticate('Bearer scope="mcp:read", resource_metadata="https://x/y"')

        assert challenge.scheme == "Bearer"
        assert challenge.params == {"scope": "mcp:read", "resource_metadata": "https://x/y"}

    def test_unquoted_and_mixed_case_keys(self):
        challenge = parse_www_authenticate("Bearer Error=invalid_token, realm=mcp")

        assert challenge.params == {"error": "invalid_token", "realm": "mcp"}

    def test_escaped_quote(self):
        challenge = parse_www_authenticate('Bearer error_description="say \\"hi\\"", error="invalid_token"')

        assert challenge.params["error_description"] == 'say "hi"'
        assert challenge.params["error"] == "invalid_token"

    def test_scheme_only(self):
        challenge = parse_www_authenticate("Basic")

        assert challenge.scheme == "Basic"
        assert challenge.params == {}

    def test_stops_at_non_pair(self):
        challenge = parse_www_authenticate('Bearer realm="a", garbage, scope="b"')

        assert challenge.params == {"realm": "a"}


class TestClassifyRequest:
    """Test request classification priority."""

    @pytest.mark.parametrize("method,url,expected", [
        ("GET", PRM_URL, RequestType.PRM_DISCOVERY),
        ("GET", "https://a/.well-known/oauth-authorization-server", RequestType.AS_METADATA),
        ("GET", "https://a/.well-known/openid-configuration/t", RequestType.AS_METADATA),
        ("POST", "https://a/register", RequestType.DCR_REGISTRATION),
        ("GET", "https://a/register", RequestType.UNKNOWN),
        ("POST", "https://a/token", RequestType.TOKEN_REQUEST),
        ("GET", "https://a/authorize?x=1", RequestType.AUTHORIZATION),
        ("POST", SERVER_URL, RequestType.PROTOCOL_REQUEST),
        ("GET", SERVER_URL, RequestType.UNKNOWN),
    ])
    def test_classification(self, method, url, expected):
        assert classify_request(method, url) == expected

    def test_well_known_beats_protocol(self):
        """PRM URLs for an /mcp resource are discovery, not protocol traffic."""
        assert classify_request("POST", PRM_URL) == RequestType.PRM_DISCOVERY


class TestSanitizeHeaders:
    def test_bearer_redacted(self):
        headers = httpx.Headers({"Authorization": "Bearer secret", "Accept": "application/json"})

        sanitized = sanitize_headers(headers)

        assert sanitized["authorization"] == "Bearer [REDACTED]"
        assert sanitized["accept"] == "application/json"
        assert "secret" not in str(sanitized)


class TestObservingTransport:
    """Test that observation never consumes the caller's body."""

    @pytest.mark.asyncio
    async def test_records_and_passes_through(self):
        observer = RequestObserver()
        transport = ObservingTransport(observer.record, conformant_server().transport)

        async with httpx.AsyncClient(transport=transport) as client:
            prm = await client.get(PRM_URL)
            unauthorized = await client.post(SERVER_URL, json={"jsonrpc": "2.0", "id": 1, "method": "initialize"})

        assert prm.json()["resource"] == SERVER_URL
        assert unauthorized.status_code == 401

        assert len(observer) == 2
        first = observer.first(RequestType.PRM_DISCOVERY)
        assert first.response_body["resource"] == SERVER_URL

        protocol = observer.first(RequestType.PROTOCOL_REQUEST)
        assert protocol.response_status == 401
        assert protocol.challenge.scheme == "Bearer"
        assert protocol.challenge.params["resource_metadata"] == PRM_URL

    @pytest.mark.asyncio
    async def test_credentials_are_masked(self):
        observer = RequestObserver()
        transport = ObservingTransport(observer.record, conformant_server().transport)

        async with httpx.AsyncClient(transport=transport) as client:
            await client.post(
                SERVER_URL,
                json={"jsonrpc": "2.0", "id": 1, "method": "tools/list"},
                headers={"Authorization": "Bearer good-token"},
            )

        observed = observer.requests[0]
        assert observed.request_headers["authorization"] == "Bearer [REDACTED]"
        assert observed.response_body["result"]["tools"][0]["name"] == "echo"

    @pytest.mark.asyncio
    async def test_transport_errors_propagate(self):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        observer = RequestObserver()
        transport = ObservingTransport(observer.record, httpx.MockTransport(refuse))

        async with httpx.AsyncClient(transport=transport) as client:
            with pytest.raises(httpx.ConnectError):
                await client.get(SERVER_URL)

        assert len(observer) == 0
