"""Tests for server-targeting scenarios against in-memory servers."""

import json

import httpx
import pytest

from mcp_conformance.models import CheckStatus
from mcp_conformance.scenarios import (
    AuthAsCimdSupportedScenario,
    AuthAsGrantTypesScenario,
    AuthAsMetadataDiscoveryScenario,
    AuthAsPkceSupportScenario,
    AuthAsTokenAuthMethodsScenario,
    AuthDiscoveryMechanismScenario,
    AuthPrmDiscoveryScenario,
    AuthPrmResourceValidationScenario,
    AuthUnauthorizedResponseScenario,
    AuthWwwAuthenticateHeaderScenario,
    BasicAuthFlowScenario,
    StepUpAuthScenario,
)
from mcp_conformance.scenarios.server_auth import _AsMetadataScenario

from conftest import (
    AS_METADATA_URL,
    AS_URL,
    OIDC_METADATA_URL,
    PRM_URL,
    ROOT_PRM_URL,
    SERVER_URL,
    FakeServer,
    as_metadata,
    conformant_server,
    json_response,
    prm_document,
)


async def run(scenario_class, server: FakeServer, config, server_url: str = SERVER_URL):
    scenario = scenario_class(config, transport=server.transport)
    checks = await scenario.run(server_url)
    return {check.id: check for check in checks}


def statuses(checks):
    return {check_id: check.status for check_id, check in checks.items()}


def no_failures(checks) -> bool:
    return all(check.status != CheckStatus.FAILURE for check in checks.values())


class TestPrmDiscovery:
    """Test server/auth-prm-discovery."""

    @pytest.mark.asyncio
    async def test_conformant(self, config, fake_server):
        checks = await run(AuthPrmDiscoveryScenario, fake_server, config)

        assert statuses(checks) == {
            "auth-prm-endpoint-exists": CheckStatus.SUCCESS,
            "auth-prm-valid-json": CheckStatus.SUCCESS,
            "auth-prm-has-resource": CheckStatus.SUCCESS,
            "auth-prm-has-authorization-servers": CheckStatus.SUCCESS,
            "auth-prm-scopes-supported-valid": CheckStatus.SUCCESS,
        }
        assert checks["auth-prm-endpoint-exists"].details["url"] == PRM_URL

    @pytest.mark.asyncio
    async def test_root_fallback(self, config):
        server = FakeServer().add("GET", ROOT_PRM_URL, json_response(200, prm_document()))

        checks = await run(AuthPrmDiscoveryScenario, server, config)

        assert checks["auth-prm-endpoint-exists"].status == CheckStatus.SUCCESS
        assert checks["auth-prm-endpoint-exists"].details["url"] == ROOT_PRM_URL

    @pytest.mark.asyncio
    async def test_missing_prm_stops_after_first_check(self, config):
        checks = await run(AuthPrmDiscoveryScenario, FakeServer(), config)

        assert list(checks) == ["auth-prm-endpoint-exists"]
        assert checks["auth-prm-endpoint-exists"].status == CheckStatus.FAILURE
        assert checks["auth-prm-endpoint-exists"].details["triedUrls"] == [PRM_URL, ROOT_PRM_URL]

    @pytest.mark.asyncio
    async def test_non_json_body(self, config):
        server = FakeServer().add("GET", PRM_URL, lambda request: httpx.Response(200, text="hello"))

        checks = await run(AuthPrmDiscoveryScenario, server, config)

        assert checks["auth-prm-endpoint-exists"].status == CheckStatus.SUCCESS
        assert checks["auth-prm-valid-json"].status == CheckStatus.FAILURE
        assert "auth-prm-has-resource" not in checks

    @pytest.mark.asyncio
    async def test_invalid_fields(self, config):
        document = prm_document(resource="", authorization_servers=["not a url"], scopes_supported=["ok", 3])
        server = FakeServer().add("GET", PRM_URL, json_response(200, document))

        checks = await run(AuthPrmDiscoveryScenario, server, config)

        assert checks["auth-prm-has-resource"].status == CheckStatus.FAILURE
        assert checks["auth-prm-has-authorization-servers"].status == CheckStatus.FAILURE
        assert checks["auth-prm-has-authorization-servers"].details["invalidUrls"] == ["not a url"]
        assert checks["auth-prm-scopes-supported-valid"].status == CheckStatus.WARNING

    @pytest.mark.asyncio
    async def test_scopes_check_absent_without_field(self, config):
        document = prm_document()
        del document["scopes_supported"]
        server = FakeServer().add("GET", PRM_URL, json_response(200, document))

        checks = await run(AuthPrmDiscoveryScenario, server, config)

        assert "auth-prm-scopes-supported-valid" not in checks


class TestAsMetadataDiscovery:
    """Test server/auth-as-metadata-discovery."""

    @pytest.mark.asyncio
    async def test_conformant(self, config, fake_server):
        checks = await run(AuthAsMetadataDiscoveryScenario, fake_server, config)

        assert all(check.status == CheckStatus.SUCCESS for check in checks.values())
        assert checks["auth-as-endpoint-exists"].details["discoveryType"] == "RFC8414"
        for check_id in (
            "auth-as-has-issuer",
            "auth-as-has-authorization-endpoint",
            "auth-as-has-token-endpoint",
            "auth-as-response-types-supported",
            "auth-as-registration-endpoint",
        ):
            assert check_id in checks

    @pytest.mark.asyncio
    async def test_prm_missing_is_skipped(self, config):
        checks = await run(AuthAsMetadataDiscoveryScenario, FakeServer(), config)

        assert statuses(checks) == {"auth-as-prm-prerequisite": CheckStatus.SKIPPED}

    @pytest.mark.asyncio
    async def test_oidc_only(self, config):
        server = FakeServer()
        server.add("GET", PRM_URL, json_response(200, prm_document()))
        server.add("GET", OIDC_METADATA_URL, json_response(200, as_metadata()))

        checks = await run(AuthAsMetadataDiscoveryScenario, server, config)

        assert checks["auth-as-endpoint-exists"].details["discoveryType"] == "OIDC"

    @pytest.mark.asyncio
    async def test_no_metadata(self, config):
        server = FakeServer().add("GET", PRM_URL, json_response(200, prm_document()))

        checks = await run(AuthAsMetadataDiscoveryScenario, server, config)

        assert checks["auth-as-endpoint-exists"].status == CheckStatus.FAILURE
        assert checks["auth-as-endpoint-exists"].details["triedUrls"] == [AS_METADATA_URL, OIDC_METADATA_URL]

    @pytest.mark.asyncio
    async def test_field_problems(self, config):
        metadata = as_metadata(issuer="https://other.example.com", response_types_supported=["token"])
        del metadata["registration_endpoint"]
        server = FakeServer()
        server.add("GET", PRM_URL, json_response(200, prm_document()))
        server.add("GET", AS_METADATA_URL, json_response(200, metadata))

        checks = await run(AuthAsMetadataDiscoveryScenario, server, config)

        assert checks["auth-as-has-issuer"].status == CheckStatus.WARNING
        assert checks["auth-as-response-types-supported"].status == CheckStatus.FAILURE
        assert checks["auth-as-registration-endpoint"].status == CheckStatus.WARNING


class TestDiscoveryMechanism:
    """Test server/auth-discovery-mechanism."""

    @pytest.mark.asyncio
    async def test_rfc8414_only(self, config, fake_server):
        checks = await run(AuthDiscoveryMechanismScenario, fake_server, config)

        assert checks["auth-discovery-rfc8414"].status == CheckStatus.SUCCESS
        assert checks["auth-discovery-oidc"].status == CheckStatus.INFO
        assert checks["auth-discovery-any-available"].status == CheckStatus.SUCCESS
        assert "auth-discovery-consistency" not in checks
        assert checks["auth-discovery-summary"].details["recommended"] == "RFC8414"

    @pytest.mark.asyncio
    async def test_inconsistent_documents(self, config, fake_server):
        fake_server.add("GET", OIDC_METADATA_URL, json_response(200, as_metadata(token_endpoint="https://x/token")))

        checks = await run(AuthDiscoveryMechanismScenario, fake_server, config)

        assert checks["auth-discovery-oidc"].status == CheckStatus.SUCCESS
        assert checks["auth-discovery-consistency"].status == CheckStatus.WARNING
        assert "token_endpoint" in checks["auth-discovery-consistency"].error_message

    @pytest.mark.asyncio
    async def test_nothing_discoverable(self, config):
        server = FakeServer().add("GET", PRM_URL, json_response(200, prm_document()))

        checks = await run(AuthDiscoveryMechanismScenario, server, config)

        assert checks["auth-discovery-any-available"].status == CheckStatus.FAILURE
        assert "auth-discovery-summary" not in checks


class TestAsMetadataFieldScenarios:
    """Test the scenarios that inspect single AS metadata fields."""

    @staticmethod
    def server_with(metadata):
        server = FakeServer()
        server.add("GET", PRM_URL, json_response(200, prm_document()))
        server.add("GET", AS_METADATA_URL, json_response(200, metadata))
        return server

    @pytest.mark.asyncio
    @pytest.mark.parametrize("scenario_class,prerequisite", [
        (AuthAsCimdSupportedScenario, "auth-cimd-as-prerequisite"),
        (AuthAsPkceSupportScenario, "auth-pkce-as-prerequisite"),
        (AuthAsTokenAuthMethodsScenario, "auth-token-auth-methods-prerequisite"),
        (AuthAsGrantTypesScenario, "auth-grant-types-prerequisite"),
    ])
    async def test_prerequisite_skipped(self, config, scenario_class, prerequisite):
        checks = await run(scenario_class, FakeServer(), config)

        assert statuses(checks) == {prerequisite: CheckStatus.SKIPPED}

    @pytest.mark.asyncio
    async def test_cimd_unknown(self, config, fake_server):
        checks = await run(AuthAsCimdSupportedScenario, fake_server, config)

        assert checks["auth-cimd-field-present"].status == CheckStatus.INFO
        assert checks["auth-cimd-supported"].status == CheckStatus.SKIPPED
        assert checks["auth-cimd-registration-options"].status == CheckStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_cimd_supported(self, config):
        checks = await run(
            AuthAsCimdSupportedScenario, self.server_with(as_metadata(client_id_metadata_document_supported=True)), config
        )

        assert checks["auth-cimd-supported"].status == CheckStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_cimd_wrong_type_without_dcr(self, config):
        metadata = as_metadata(client_id_metadata_document_supported="yes")
        del metadata["registration_endpoint"]

        checks = await run(AuthAsCimdSupportedScenario, self.server_with(metadata), config)

        assert checks["auth-cimd-field-present"].status == CheckStatus.WARNING
        assert "got string" in checks["auth-cimd-field-present"].error_message
        assert checks["auth-cimd-registration-options"].status == CheckStatus.WARNING

    @pytest.mark.asyncio
    async def test_pkce_s256(self, config, fake_server):
        checks = await run(AuthAsPkceSupportScenario, fake_server, config)

        assert checks["auth-pkce-s256-supported"].status == CheckStatus.SUCCESS
        assert checks["auth-pkce-ready"].status == CheckStatus.SUCCESS
        assert "auth-pkce-plain-only" not in checks

    @pytest.mark.asyncio
    async def test_pkce_plain_only(self, config):
        checks = await run(
            AuthAsPkceSupportScenario, self.server_with(as_metadata(code_challenge_methods_supported=["plain"])), config
        )

        assert checks["auth-pkce-s256-supported"].status == CheckStatus.FAILURE
        assert checks["auth-pkce-plain-only"].status == CheckStatus.WARNING
        assert "auth-pkce-ready" not in checks

    @pytest.mark.asyncio
    async def test_pkce_not_advertised(self, config):
        metadata = as_metadata()
        del metadata["code_challenge_methods_supported"]

        checks = await run(AuthAsPkceSupportScenario, self.server_with(metadata), config)

        assert checks["auth-pkce-field-present"].status == CheckStatus.WARNING
        assert checks["auth-pkce-s256-supported"].status == CheckStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_token_auth_methods(self, config, fake_server):
        checks = await run(AuthAsTokenAuthMethodsScenario, fake_server, config)

        assert checks["auth-token-auth-methods-present"].status == CheckStatus.SUCCESS
        assert checks["auth-token-auth-methods-valid"].status == CheckStatus.SUCCESS
        assert checks["auth-token-auth-basic-supported"].status == CheckStatus.SUCCESS
        assert checks["auth-token-auth-confidential-client-ready"].status == CheckStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_token_auth_public_only_and_unknown(self, config):
        checks = await run(
            AuthAsTokenAuthMethodsScenario,
            self.server_with(as_metadata(token_endpoint_auth_methods_supported=["none"])),
            config,
        )

        assert checks["auth-token-auth-methods-public-only"].status == CheckStatus.INFO
        assert checks["auth-token-auth-confidential-client-ready"].status == CheckStatus.INFO

        checks = await run(
            AuthAsTokenAuthMethodsScenario,
            self.server_with(as_metadata(token_endpoint_auth_methods_supported=["magic"])),
            config,
        )
        assert checks["auth-token-auth-methods-valid"].status == CheckStatus.WARNING

    @pytest.mark.asyncio
    async def test_token_auth_jwt_without_algorithms(self, config):
        checks = await run(
            AuthAsTokenAuthMethodsScenario,
            self.server_with(as_metadata(token_endpoint_auth_methods_supported=["private_key_jwt"])),
            config,
        )

        assert checks["auth-token-auth-jwt-signing-algs"].status == CheckStatus.WARNING

    @pytest.mark.asyncio
    async def test_token_auth_empty_list(self, config):
        checks = await run(
            AuthAsTokenAuthMethodsScenario,
            self.server_with(as_metadata(token_endpoint_auth_methods_supported=[])),
            config,
        )

        assert checks["auth-token-auth-methods-present"].status == CheckStatus.FAILURE

    @pytest.mark.asyncio
    async def test_grant_types(self, config, fake_server):
        checks = await run(AuthAsGrantTypesScenario, fake_server, config)

        assert checks["auth-grant-types-authorization-code"].status == CheckStatus.SUCCESS
        assert checks["auth-grant-types-refresh-token"].status == CheckStatus.SUCCESS
        assert checks["auth-grant-types-client-credentials"].status == CheckStatus.INFO
        assert checks["auth-grant-types-sep1046-ready"].status == CheckStatus.INFO

    @pytest.mark.asyncio
    async def test_deprecated_and_custom_grants(self, config):
        grants = ["authorization_code", "implicit", "password", "urn:example:custom"]
        checks = await run(
            AuthAsGrantTypesScenario, self.server_with(as_metadata(grant_types_supported=grants)), config
        )

        assert checks["auth-grant-types-implicit-deprecated"].status == CheckStatus.WARNING
        assert checks["auth-grant-types-password-deprecated"].status == CheckStatus.WARNING
        assert checks["auth-grant-types-custom"].details["custom_grant_types"] == ["urn:example:custom"]


class TestPrmResourceValidation:
    """Test server/auth-prm-resource-validation."""

    @pytest.mark.asyncio
    async def test_exact_match(self, config, fake_server):
        checks = await run(AuthPrmResourceValidationScenario, fake_server, config)

        assert no_failures(checks)
        assert checks["auth-prm-resource-https"].status == CheckStatus.SUCCESS
        assert checks["auth-prm-resource-matches-server"].details["relationship"] == "exact"

    @pytest.mark.asyncio
    async def test_fragment_and_http(self, config):
        server = FakeServer().add(
            "GET", PRM_URL, json_response(200, prm_document(resource="http://mcp.example.com/mcp#frag"))
        )

        checks = await run(AuthPrmResourceValidationScenario, server, config)

        assert checks["auth-prm-resource-https"].status == CheckStatus.WARNING
        assert checks["auth-prm-resource-no-fragment"].status == CheckStatus.FAILURE
        assert checks["auth-prm-resource-no-fragment"].details["fragment"] == "#frag"

    @pytest.mark.asyncio
    async def test_other_host(self, config):
        server = FakeServer().add("GET", PRM_URL, json_response(200, prm_document(resource="https://elsewhere.example/mcp")))

        checks = await run(AuthPrmResourceValidationScenario, server, config)

        assert checks["auth-prm-resource-matches-server"].status == CheckStatus.WARNING
        assert checks["auth-prm-resource-matches-server"].details["sameHost"] is False

    @pytest.mark.asyncio
    async def test_relative_resource(self, config):
        server = FakeServer().add("GET", PRM_URL, json_response(200, prm_document(resource="/mcp")))

        checks = await run(AuthPrmResourceValidationScenario, server, config)

        assert checks["auth-prm-resource-valid-uri"].status == CheckStatus.FAILURE
        assert "auth-prm-resource-https" not in checks


class TestUnauthorizedResponse:
    """Test server/auth-401-unauthorized."""

    @pytest.mark.asyncio
    async def test_conformant(self, config, fake_server):
        checks = await run(AuthUnauthorizedResponseScenario, fake_server, config)

        assert statuses(checks) == {
            "auth-401-status-code": CheckStatus.SUCCESS,
            "auth-401-www-authenticate-present": CheckStatus.SUCCESS,
            "auth-401-response-json": CheckStatus.SUCCESS,
        }

    @pytest.mark.asyncio
    async def test_open_server_is_checked_for_protection(self, config):
        def open_mcp(request):
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {}})

        server = FakeServer().add("POST", SERVER_URL, open_mcp)

        checks = await run(AuthUnauthorizedResponseScenario, server, config)

        assert checks["auth-401-status-code"].status == CheckStatus.WARNING
        assert checks["auth-401-protected-method"].status == CheckStatus.WARNING
        # Header and body rules only apply to a 401
        assert "auth-401-www-authenticate-present" not in checks
        assert "auth-401-response-json" in checks

    @pytest.mark.asyncio
    async def test_open_initialize_with_protected_tools_list(self, config):
        def mcp(request):
            if b"tools/list" in request.content:
                return httpx.Response(
                    401,
                    json={"error": "unauthorized"},
                    headers={"WWW-Authenticate": f'Bearer resource_metadata="{PRM_URL}"'},
                )
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {}})

        server = FakeServer().add("POST", SERVER_URL, mcp)

        checks = await run(AuthUnauthorizedResponseScenario, server, config)

        assert statuses(checks) == {
            "auth-401-status-code": CheckStatus.WARNING,
            "auth-401-protected-method": CheckStatus.SUCCESS,
            "auth-401-www-authenticate-present": CheckStatus.SUCCESS,
            "auth-401-response-json": CheckStatus.SUCCESS,
        }

    @pytest.mark.asyncio
    async def test_forbidden_text_response(self, config):
        server = FakeServer().add("POST", SERVER_URL, lambda request: httpx.Response(403, text="forbidden"))

        checks = await run(AuthUnauthorizedResponseScenario, server, config)

        assert statuses(checks) == {"auth-401-status-code": CheckStatus.FAILURE}
        assert checks["auth-401-status-code"].error_message == "Expected 401, got 403"

    @pytest.mark.asyncio
    async def test_missing_header_and_text_body(self, config):
        server = FakeServer().add("POST", SERVER_URL, lambda request: httpx.Response(401, text="nope"))

        checks = await run(AuthUnauthorizedResponseScenario, server, config)

        assert checks["auth-401-www-authenticate-present"].status == CheckStatus.FAILURE
        assert checks["auth-401-response-json"].status == CheckStatus.WARNING

    @pytest.mark.asyncio
    async def test_transport_failure(self, config):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        scenario = AuthUnauthorizedResponseScenario(config, transport=httpx.MockTransport(refuse))
        checks = await scenario.run(SERVER_URL)

        assert [c.id for c in checks] == ["auth-401-request-completes"]
        assert checks[0].status == CheckStatus.FAILURE


class TestWwwAuthenticateHeader:
    """Test server/auth-www-authenticate-header."""

    @pytest.mark.asyncio
    async def test_conformant(self, config, fake_server):
        checks = await run(AuthWwwAuthenticateHeaderScenario, fake_server, config)

        assert statuses(checks) == {
            "auth-www-auth-header-exists": CheckStatus.SUCCESS,
            "auth-www-auth-bearer-scheme": CheckStatus.SUCCESS,
            "auth-www-auth-resource-metadata": CheckStatus.SUCCESS,
            "auth-www-auth-scope-format": CheckStatus.SUCCESS,
        }

    @pytest.mark.asyncio
    async def test_error_code_and_missing_metadata(self, config):
        header = 'Bearer error="bad_thing"'
        server = FakeServer().add(
            "POST", SERVER_URL, lambda request: httpx.Response(401, headers={"WWW-Authenticate": header})
        )

        checks = await run(AuthWwwAuthenticateHeaderScenario, server, config)

        assert checks["auth-www-auth-resource-metadata"].status == CheckStatus.WARNING
        assert checks["auth-www-auth-error-code"].status == CheckStatus.WARNING
        assert "auth-www-auth-scope-format" not in checks

    @pytest.mark.asyncio
    async def test_wrong_scheme(self, config):
        server = FakeServer().add(
            "POST", SERVER_URL, lambda request: httpx.Response(401, headers={"WWW-Authenticate": 'Basic realm="x"'})
        )

        checks = await run(AuthWwwAuthenticateHeaderScenario, server, config)

        assert checks["auth-www-auth-bearer-scheme"].status == CheckStatus.FAILURE

    @pytest.mark.asyncio
    async def test_no_401_is_skipped(self, config):
        server = FakeServer().add(
            "POST", SERVER_URL, lambda request: httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {}})
        )

        checks = await run(AuthWwwAuthenticateHeaderScenario, server, config)

        assert statuses(checks) == {"auth-www-auth-401-received": CheckStatus.SKIPPED}


class TestBasicAuthFlow:
    """Test server-auth/basic-auth-flow."""

    @pytest.mark.asyncio
    async def test_conformant_server(self, config, fake_server):
        checks = await run(BasicAuthFlowScenario, fake_server, config)

        assert no_failures(checks), [c for c in checks.values() if c.status == CheckStatus.FAILURE]
        assert checks["auth-invalid-token-rejected"].status == CheckStatus.SUCCESS
        assert checks["auth-401-response"].status == CheckStatus.SUCCESS
        assert checks["auth-prm-discovery"].status == CheckStatus.SUCCESS
        assert checks["auth-as-metadata-discovery"].status == CheckStatus.SUCCESS
        assert checks["auth-dcr-registration"].status == CheckStatus.SUCCESS
        assert checks["auth-token-request"].status == CheckStatus.SUCCESS
        assert checks["auth-authenticated-request"].status == CheckStatus.SUCCESS
        assert checks["auth-flow-completion"].status == CheckStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_token_endpoint_failure(self, config, fake_server):
        fake_server.add("POST", "https://auth.example.com/token", json_response(400, {"error": "invalid_grant"}))

        checks = await run(BasicAuthFlowScenario, fake_server, config)

        assert checks["auth-token-request"].status == CheckStatus.FAILURE
        assert checks["auth-authenticated-request"].status == CheckStatus.SKIPPED
        assert checks["auth-flow-completion"].status == CheckStatus.FAILURE

    @pytest.mark.asyncio
    async def test_no_prm_skips_later_steps(self, config, fake_server):
        fake_server.remove("GET", PRM_URL)

        checks = await run(BasicAuthFlowScenario, fake_server, config)

        assert checks["auth-401-response"].status == CheckStatus.SUCCESS
        assert checks["auth-prm-discovery"].status == CheckStatus.FAILURE
        assert checks["auth-dcr-registration"].status == CheckStatus.SKIPPED
        assert checks["auth-flow-completion"].status == CheckStatus.FAILURE

    @pytest.mark.asyncio
    async def test_server_accepting_any_token(self, config):
        server = conformant_server().add(
            "POST", SERVER_URL, json_response(200, {"jsonrpc": "2.0", "id": 1, "result": {}})
        )

        checks = await run(BasicAuthFlowScenario, server, config)

        assert checks["auth-invalid-token-rejected"].status == CheckStatus.FAILURE
        assert checks["auth-401-response"].status == CheckStatus.FAILURE
        assert checks["auth-prm-discovery"].status == CheckStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_html_registration_response(self, config, fake_server):
        fake_server.add(
            "POST",
            f"{AS_URL}/register",
            lambda request: httpx.Response(201, text="<html>oops</html>", headers={"Content-Type": "text/html"}),
        )

        checks = await run(BasicAuthFlowScenario, fake_server, config)

        assert "scenario-error" not in checks
        assert checks["auth-401-response"].status == CheckStatus.SUCCESS
        assert checks["auth-prm-discovery"].status == CheckStatus.SUCCESS
        assert checks["auth-dcr-registration"].status == CheckStatus.SUCCESS
        assert checks["auth-dcr-response"].status == CheckStatus.FAILURE
        assert checks["auth-flow-completion"].status == CheckStatus.FAILURE
        assert "non-JSON body" in checks["auth-flow-completion"].error_message


class TestAsMetadataScenarioBase:
    def test_subclass_must_inspect(self, config):
        class Incomplete(_AsMetadataScenario):
            name = "server/incomplete"
            prerequisite_id = "incomplete-prerequisite"

        with pytest.raises(TypeError):
            Incomplete(config)


def step_up_server(insufficient_header=None, forbidden_status=403):
    """Conformant server whose admin-action tool needs a token from a second authorization."""
    server = conformant_server()
    tokens = iter(["basic-token", "admin-token"])
    server.add(
        "POST",
        f"{AS_URL}/token",
        lambda request: httpx.Response(200, json={"access_token": next(tokens, "admin-token"), "token_type": "Bearer"}),
    )
    header = insufficient_header or (
        f'Bearer error="insufficient_scope", scope="mcp:read mcp:admin", resource_metadata="{PRM_URL}"'
    )

    def mcp(request):
        authorization = request.headers.get("authorization", "")
        if not authorization:
            return httpx.Response(
                401, headers={"WWW-Authenticate": f'Bearer resource_metadata="{PRM_URL}", scope="mcp:read"'}
            )
        message = json.loads(request.content)
        if "id" not in message:
            return httpx.Response(202)
        if message["method"] == "tools/call" and authorization != "Bearer admin-token":
            return httpx.Response(forbidden_status, json={"error": "insufficient_scope"}, headers={"WWW-Authenticate": header})
        result = {"tools": [{"name": "admin-action"}]} if message["method"] == "tools/list" else {}
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": message["id"], "result": result})

    server.add("POST", SERVER_URL, mcp)
    return server


class TestStepUpAuth:
    """Test server-auth/step-up-auth."""

    @pytest.mark.asyncio
    async def test_conformant_step_up(self, config):
        checks = await run(StepUpAuthScenario, step_up_server(), config)

        assert statuses(checks) == {
            "step-up-403-response": CheckStatus.SUCCESS,
            "step-up-scope-in-header": CheckStatus.SUCCESS,
            "step-up-resource-metadata": CheckStatus.SUCCESS,
            "step-up-re-auth": CheckStatus.SUCCESS,
            "step-up-success-after-escalation": CheckStatus.SUCCESS,
        }
        assert checks["step-up-scope-in-header"].details["scope"] == "mcp:read mcp:admin"

    @pytest.mark.asyncio
    async def test_403_without_insufficient_scope_error(self, config):
        server = step_up_server(insufficient_header="Bearer")

        checks = await run(StepUpAuthScenario, server, config)

        assert checks["step-up-403-response"].status == CheckStatus.WARNING
        assert "step-up-scope-in-header" not in checks
        assert checks["step-up-re-auth"].status == CheckStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_challenge_without_scope_or_metadata(self, config):
        server = step_up_server(insufficient_header='Bearer error="insufficient_scope"')

        checks = await run(StepUpAuthScenario, server, config)

        assert checks["step-up-scope-in-header"].status == CheckStatus.WARNING
        assert checks["step-up-resource-metadata"].status == CheckStatus.INFO

    @pytest.mark.asyncio
    async def test_no_elevated_scope_required(self, config, fake_server):
        checks = await run(StepUpAuthScenario, fake_server, config)

        assert statuses(checks) == {"step-up-403-response": CheckStatus.INFO}

    @pytest.mark.asyncio
    async def test_flow_failure(self, config, fake_server):
        fake_server.remove("GET", PRM_URL)

        checks = await run(StepUpAuthScenario, fake_server, config)

        assert checks["step-up-auth-flow"].status == CheckStatus.FAILURE
        assert "Failed to fetch PRM" in checks["step-up-auth-flow"].error_message
        assert checks["step-up-403-response"].status == CheckStatus.INFO
