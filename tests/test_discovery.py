"""Tests for PRM and authorization server metadata discovery."""

import httpx
import pytest

from mcp_conformance.auth_fetch import build_prm_url
from mcp_conformance.discovery import (
    build_as_metadata_discovery_attempts,
    fetch_as_metadata,
    fetch_prm,
    resolve_as_metadata,
)
from mcp_conformance.models import DiscoveryKind, DiscoveryVariant

from conftest import (
    AS_METADATA_URL,
    AS_URL,
    OIDC_METADATA_URL,
    PRM_URL,
    ROOT_PRM_URL,
    SERVER_URL,
    FakeServer,
    as_metadata,
    json_response,
    prm_document,
)


class TestDiscoveryAttempts:
    """Test the ordered AS metadata candidate list."""

    def test_root_issuer_yields_two_attempts(self):
        """Root issuers try RFC 8414 then OIDC at the origin."""
        attempts = build_as_metadata_discovery_attempts("https://auth.example.com")

        assert [a.url for a in attempts] == [
            "https://auth.example.com/.well-known/oauth-authorization-server",
            "https://auth.example.com/.well-known/openid-configuration",
        ]
        assert [a.kind for a in attempts] == [DiscoveryKind.RFC8414, DiscoveryKind.OIDC]
        assert all(a.variant == DiscoveryVariant.ROOT for a in attempts)

    def test_root_issuer_with_trailing_slash(self):
        """A lone trailing slash is still a root issuer."""
        attempts = build_as_metadata_discovery_attempts("https://auth.example.com/")
        assert len(attempts) == 2

    def test_path_issuer_yields_three_attempts(self):
        """Issuers with a path try path-insert variants before OIDC path-append."""
        attempts = build_as_metadata_discovery_attempts("https://auth.example.com/tenant1")

        assert [a.url for a in attempts] == [
            "https://auth.example.com/.well-known/oauth-authorization-server/tenant1",
            "https://auth.example.com/.well-known/openid-configuration/tenant1",
            "https://auth.example.com/tenant1/.well-known/openid-configuration",
        ]
        assert [a.variant for a in attempts] == [
            DiscoveryVariant.PATH_INSERT,
            DiscoveryVariant.PATH_INSERT,
            DiscoveryVariant.PATH_APPEND,
        ]

    def test_path_append_has_no_double_slash(self):
        """A trailing slash on the issuer path is dropped before appending."""
        attempts = build_as_metadata_discovery_attempts("https://auth.example.com/tenant1/")

        assert attempts[2].url == "https://auth.example.com/tenant1/.well-known/openid-configuration"
        assert "//.well-known" not in attempts[2].url


class TestPrmUrls:
    """Test PRM well-known URL construction."""

    def test_path_based_inserts_well_known(self):
        assert build_prm_url(SERVER_URL, True) == PRM_URL

    def test_root_drops_path(self):
        assert build_prm_url(SERVER_URL, False) == ROOT_PRM_URL

    def test_path_based_without_path_is_root(self):
        assert build_prm_url("https://mcp.example.com", True) == ROOT_PRM_URL


class TestResolveAsMetadata:
    """Test walking the discovery attempts."""

    @pytest.mark.asyncio
    async def test_first_json_object_wins(self):
        """OIDC is used when RFC 8414 is missing."""
        server = FakeServer().add("GET", OIDC_METADATA_URL, json_response(200, as_metadata()))

        async with httpx.AsyncClient(transport=server.transport) as client:
            result = await resolve_as_metadata(AS_URL, client=client)

        assert result.success
        assert result.url == OIDC_METADATA_URL
        assert result.is_oidc
        assert result.tried_urls == [AS_METADATA_URL, OIDC_METADATA_URL]

    @pytest.mark.asyncio
    async def test_defects_are_swallowed(self):
        """Non-JSON bodies, non-object JSON and transport errors move on to the next attempt."""
        server = FakeServer()
        server.add("GET", "https://auth.example.com/.well-known/oauth-authorization-server/t",
                   lambda request: httpx.Response(200, text="<html>"))

        def broken(request):
            raise httpx.ConnectError("refused", request=request)

        server.add("GET", "https://auth.example.com/.well-known/openid-configuration/t", broken)
        server.add("GET", "https://auth.example.com/t/.well-known/openid-configuration",
                   json_response(200, as_metadata(issuer="https://auth.example.com/t")))

        async with httpx.AsyncClient(transport=server.transport) as client:
            result = await resolve_as_metadata("https://auth.example.com/t", client=client)

        assert result.success
        assert result.metadata["issuer"] == "https://auth.example.com/t"
        assert len(result.tried_urls) == 3

    @pytest.mark.asyncio
    async def test_exhaustion_reports_tried_urls(self):
        server = FakeServer()
        async with httpx.AsyncClient(transport=server.transport) as client:
            result = await resolve_as_metadata(AS_URL, client=client)

        assert not result.success
        assert result.tried_urls == [AS_METADATA_URL, OIDC_METADATA_URL]
        assert AS_METADATA_URL in result.error


class TestFetchPrm:
    """Test PRM retrieval order."""

    @pytest.mark.asyncio
    async def test_path_based_first(self, fake_server):
        fake_server.add("GET", ROOT_PRM_URL, json_response(200, prm_document(resource="root")))

        async with httpx.AsyncClient(transport=fake_server.transport) as client:
            result = await fetch_prm(SERVER_URL, client=client)

        assert result.success
        assert result.url == PRM_URL
        assert result.metadata["resource"] == SERVER_URL

    @pytest.mark.asyncio
    async def test_falls_back_to_root(self):
        server = FakeServer().add("GET", ROOT_PRM_URL, json_response(200, prm_document()))

        async with httpx.AsyncClient(transport=server.transport) as client:
            result = await fetch_prm(SERVER_URL, client=client)

        assert result.success
        assert result.tried_urls == [PRM_URL, ROOT_PRM_URL]

    @pytest.mark.asyncio
    async def test_missing_prm(self):
        async with httpx.AsyncClient(transport=FakeServer().transport) as client:
            result = await fetch_prm(SERVER_URL, client=client)

        assert not result.success
        assert result.error == f"No valid PRM found at {PRM_URL} or {ROOT_PRM_URL}"

    @pytest.mark.asyncio
    async def test_fetch_as_metadata_follows_prm(self, fake_server):
        async with httpx.AsyncClient(transport=fake_server.transport) as client:
            result = await fetch_as_metadata(SERVER_URL, client=client)

        assert result.success
        assert result.as_url == AS_URL
        assert result.url == AS_METADATA_URL

    @pytest.mark.asyncio
    async def test_fetch_as_metadata_without_servers(self):
        server = FakeServer().add("GET", PRM_URL, json_response(200, {"resource": SERVER_URL}))
        async with httpx.AsyncClient(transport=server.transport) as client:
            result = await fetch_as_metadata(SERVER_URL, client=client)

        assert not result.success
        assert result.error == "PRM missing authorization_servers array"
